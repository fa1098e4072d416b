from __future__ import annotations

from dm_core.errors import InvalidArgument
from dm_core.types import UpdateBatch
from dm_mirror import settings


class BinanceAdapter:
    name = "binance"

    def __init__(self, ws_base_url: str | None = None) -> None:
        self.ws_base_url = ws_base_url or settings.BINANCE_WS_BASE_URL

    def normalize_symbol(self, symbol: str) -> str:
        sym = (symbol or "").strip().upper()
        if not sym:
            raise InvalidArgument("symbol must be non-empty")
        return sym

    def normalize_depth(self, depth) -> int:
        # Plain ASCII digits only: no sign, no underscores, no float text.
        text = "" if isinstance(depth, bool) else str(depth).strip()
        if not (text.isascii() and text.isdigit()) or int(text) <= 0:
            raise InvalidArgument(f"depth must be a positive integer (got {depth!r})")
        return int(text)

    def stream_symbol(self, symbol: str) -> str:
        return self.normalize_symbol(symbol).lower()

    def ws_url(self, symbol: str) -> str:
        sym = self.stream_symbol(symbol)
        return f"{self.ws_base_url}/stream?streams={sym}@depth@100ms"

    def parse_depth(self, data: dict) -> UpdateBatch:
        """Build an ``UpdateBatch`` from a ``depthUpdate`` payload.

        Raises ValueError when the update ids are missing or inverted.
        """
        try:
            first, last = int(data["U"]), int(data["u"])
        except (KeyError, TypeError) as exc:
            raise ValueError(f"depth frame without usable U/u ids: {exc!r}") from exc
        if first > last:
            raise ValueError(f"depth frame with U={first} > u={last}")
        return UpdateBatch(
            first_update_id=first,
            last_update_id=last,
            bids=data.get("b", []),
            asks=data.get("a", []),
            event_time_ms=int(data.get("E", 0)),
            raw=data,
        )
