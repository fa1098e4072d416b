from __future__ import annotations

import time
from typing import Callable, Optional

DEFAULT_THROTTLE_INTERVAL_MS = 10_000


def _wall_ms() -> int:
    return int(time.time() * 1000)


class ThrottleController:
    """Rate-limits reporting of the book. It never gates merging."""

    def __init__(
        self,
        interval_ms: int = DEFAULT_THROTTLE_INTERVAL_MS,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        if int(interval_ms) < 0:
            raise ValueError(f"interval_ms must be >= 0 (got {interval_ms!r})")
        self.interval_ms = int(interval_ms)
        self._clock = clock or _wall_ms
        self.last_emit_ms: Optional[int] = None

    def should_emit(self, now_ms: Optional[int] = None) -> bool:
        now = self._clock() if now_ms is None else int(now_ms)
        if self.last_emit_ms is None or now - self.last_emit_ms >= self.interval_ms:
            self.last_emit_ms = now
            return True
        return False

    def reset(self) -> None:
        self.last_emit_ms = None
