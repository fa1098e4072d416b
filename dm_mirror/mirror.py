from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from dm_core.errors import BootstrapFailed, FeedUnavailable, InvalidArgument
from dm_core.sync_engine import OrderBookSyncEngine, SyncResult
from dm_core.throttle import ThrottleController
from dm_core.types import BookView, UpdateBatch
from dm_mirror import settings
from dm_mirror.snapshot import call_with_retry

log = logging.getLogger("depth_mirror.mirror")


class MirrorPhase(str, Enum):
    CONNECTING = "connecting"
    SNAPSHOT = "snapshot"
    SYNCED = "synced"
    RESYNCING = "resyncing"
    STOPPED = "stopped"


@dataclass
class MirrorStats:
    applied: int = 0
    stale: int = 0
    buffered: int = 0
    gaps: int = 0
    resyncs: int = 0
    disconnects: int = 0
    emitted: int = 0


class OrderBookMirror:
    """Keeps a local book for one symbol in step with the feed.

    Threading:
      - ``on_update``/``on_disconnect`` run on the feed's stream thread.
      - ``start()``/``run()`` run on the caller's thread; the initial snapshot
        is fetched without holding ``_lock`` so diffs arriving meanwhile are
        buffered by the engine instead of blocking the stream.
      - A gap found inside ``on_update`` rebootstraps on the stream thread
        while holding ``_lock`` (re-entrant).
      - ``view()`` may be called from any thread.

    Every accepted diff is merged. The throttle only decides whether the
    reporter sees the book after that diff.
    """

    def __init__(
        self,
        feed,
        symbol: str,
        depth: int,
        reporter: Optional[Callable[[BookView], None]] = None,
        throttle: Optional[ThrottleController] = None,
        snapshot_depth: Optional[int] = None,
        max_buffer_size: Optional[int] = None,
        max_bootstrap_attempts: Optional[int] = None,
        snapshot_attempts: Optional[int] = None,
        heartbeat_sec: Optional[float] = None,
    ) -> None:
        if not symbol or not symbol.strip():
            raise InvalidArgument("symbol must be non-empty")
        if isinstance(depth, bool) or not isinstance(depth, int) or depth <= 0:
            raise InvalidArgument(f"depth must be a positive integer (got {depth!r})")

        self.feed = feed
        self.symbol = symbol.strip().upper()
        self.depth = depth
        self.reporter = reporter
        self.throttle = throttle or ThrottleController(settings.THROTTLE_INTERVAL_MS)
        self.snapshot_depth = snapshot_depth or settings.SNAPSHOT_DEPTH or depth
        self.max_bootstrap_attempts = max(
            1, int(max_bootstrap_attempts or settings.MAX_BOOTSTRAP_ATTEMPTS)
        )
        self.snapshot_attempts = max(1, int(snapshot_attempts or settings.SNAPSHOT_RETRY_MAX))
        self.heartbeat_sec = settings.HEARTBEAT_SEC if heartbeat_sec is None else float(heartbeat_sec)

        self.engine = OrderBookSyncEngine(
            symbol=self.symbol,
            max_buffer_size=settings.MAX_BUFFER_SIZE if max_buffer_size is None else max_buffer_size,
        )
        self.stats = MirrorStats()
        self.phase = MirrorPhase.CONNECTING
        self.subscription = None
        self.fatal_error: Optional[BaseException] = None

        self._lock = threading.RLock()
        self._stopped = threading.Event()
        self._last_hb = time.monotonic()

    # ---- lifecycle ---------------------------------------------------------

    def start(self) -> None:
        """Subscribe first, then bootstrap, so no diff is lost in between."""
        self.subscription = self.feed.subscribe_updates(
            self.symbol, self.on_update, on_disconnect=self.on_disconnect
        )
        try:
            self._bootstrap("initial")
        except Exception:
            self.stop()
            raise

    def run(self, poll_s: float = 0.5) -> None:
        """Start and block until stopped. Re-raises a fatal resync error."""
        self.start()
        while not self._stopped.wait(poll_s):
            with self._lock:
                self._heartbeat()
        if self.fatal_error is not None:
            raise self.fatal_error

    def stop(self) -> None:
        with self._lock:
            if self.phase is MirrorPhase.STOPPED:
                return
            self._set_phase(MirrorPhase.STOPPED)
        if self.subscription is not None:
            self.subscription.close()
        self._stopped.set()

    # ---- reads -------------------------------------------------------------

    def view(self, n: Optional[int] = None) -> BookView:
        return self.engine.lob.view(self.depth if n is None else n)

    # ---- feed callbacks ----------------------------------------------------

    def on_update(self, update: UpdateBatch) -> SyncResult:
        with self._lock:
            if self.phase is MirrorPhase.STOPPED:
                return SyncResult("stale", "stopped")

            result = self.engine.feed_depth_event(update)
            if result.action == "applied":
                self.stats.applied += 1
                self._maybe_emit()
            elif result.action == "stale":
                self.stats.stale += 1
                log.debug("Stale update discarded: %s", result.details)
            elif result.action == "buffered":
                self.stats.buffered += 1
            elif result.action == "gap":
                self.stats.gaps += 1
                if self.engine.snapshot_loaded:
                    self._resync(result.details)
                else:
                    # The bootstrap in progress will adopt against a fresh buffer.
                    log.warning("Update buffer dropped before snapshot: %s", result.details)
            self._heartbeat()
            return result

    def on_disconnect(self, typ: str, details: dict) -> None:
        with self._lock:
            self.stats.disconnects += 1
            log.warning("Stream lost (%s %s); next update forces a resync", typ, details)
            self.engine.mark_stream_lost(typ)

    # ---- internals ---------------------------------------------------------

    def _set_phase(self, new_phase: MirrorPhase, reason: str | None = None) -> None:
        if self.phase == new_phase:
            return
        prev = self.phase
        self.phase = new_phase
        log.info("Phase %s -> %s%s", prev.value, new_phase.value, f" ({reason})" if reason else "")

    def _fetch_snapshot(self):
        return call_with_retry(
            lambda: self.feed.get_snapshot(self.symbol, self.snapshot_depth),
            attempts=self.snapshot_attempts,
            backoff_s=settings.SNAPSHOT_RETRY_BACKOFF_S,
            backoff_max_s=settings.SNAPSHOT_RETRY_BACKOFF_MAX_S,
        )

    def _bootstrap(self, tag: str) -> SyncResult:
        for attempt in range(1, self.max_bootstrap_attempts + 1):
            with self._lock:
                self._set_phase(MirrorPhase.SNAPSHOT, tag)
            snapshot = self._fetch_snapshot()
            with self._lock:
                result = self.engine.adopt_snapshot(snapshot)
                if result.action == "synced":
                    self.throttle.reset()
                    self._set_phase(MirrorPhase.SYNCED, tag)
                    log.info("Snapshot %s adopted: %s", tag, result.details)
                    return result
                self.stats.gaps += 1
                log.warning(
                    "Snapshot %s attempt %d/%d not bridged: %s",
                    tag,
                    attempt,
                    self.max_bootstrap_attempts,
                    result.details,
                )
                self.engine.reset_for_resync()
        raise BootstrapFailed(
            f"{self.symbol}: snapshot not bridged to stream after {self.max_bootstrap_attempts} attempts"
        )

    def _resync(self, reason: str) -> None:
        self.stats.resyncs += 1
        tag = f"resync_{self.stats.resyncs:06d}"
        self._set_phase(MirrorPhase.RESYNCING, reason)
        log.warning("Resync triggered: %s", reason)
        self.engine.reset_for_resync()
        try:
            self._bootstrap(tag)
        except (FeedUnavailable, BootstrapFailed) as exc:
            log.exception("Resync %s failed; closing stream", tag)
            self.fatal_error = exc
            self.stop()

    def _maybe_emit(self) -> None:
        if self.reporter is None or not self.throttle.should_emit():
            return
        self.stats.emitted += 1
        view = self.engine.lob.view(self.depth)
        try:
            self.reporter(view)
        except Exception:
            log.exception("Reporter failed")

    def _heartbeat(self) -> None:
        if self.heartbeat_sec <= 0:
            return
        now = time.monotonic()
        if now - self._last_hb < self.heartbeat_sec:
            return
        self._last_hb = now
        s = self.stats
        log.info(
            "HEARTBEAT phase=%s lastUpdateId=%s applied=%d stale=%d gaps=%d resyncs=%d "
            "disconnects=%d emitted=%d buffer=%d",
            self.phase.value,
            self.engine.lob.last_update_id,
            s.applied,
            s.stale,
            s.gaps,
            s.resyncs,
            s.disconnects,
            s.emitted,
            len(self.engine.buffer),
        )
