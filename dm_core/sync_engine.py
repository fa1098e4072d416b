from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from .local_orderbook import LocalOrderBook
from .types import Snapshot, UpdateBatch


class SyncDecision(str, Enum):
    ACCEPT = "accept"
    STALE = "stale"
    GAP = "gap"


def evaluate(update: UpdateBatch, last_update_id: int) -> SyncDecision:
    """Classify a diff against the book position ``last_update_id``.

    STALE is checked first: an old duplicate is never reported as a gap.
    """
    first = int(update.first_update_id)
    last = int(update.last_update_id)
    lu = int(last_update_id)

    if last <= lu:
        return SyncDecision.STALE
    if first > lu + 1:
        return SyncDecision.GAP
    return SyncDecision.ACCEPT


@dataclass
class SyncResult:
    action: str  # "buffered" | "synced" | "applied" | "stale" | "gap"
    details: str = ""


class OrderBookSyncEngine:
    """Pure state machine for diff-depth book synchronization.

    No WS, no REST, no files. The caller fetches snapshots and owns the stream.

    Key behaviors:
      - buffer every diff until a snapshot is adopted
      - replay the buffer through ``evaluate`` once the snapshot id is known
      - apply diffs sequentially once synced
      - on a gap or a lost stream, refuse to merge until reset, but keep
        holding diffs so the next snapshot can bridge over the hole
    """

    def __init__(self, symbol: str = "", max_buffer_size: Optional[int] = 200_000):
        self.symbol = symbol
        self.lob = LocalOrderBook(symbol=symbol)
        self.snapshot_loaded: bool = False
        self.buffer: List[UpdateBatch] = []
        self.max_buffer_size = int(max_buffer_size) if max_buffer_size is not None else None
        self.invalid_reason: Optional[str] = None

    @property
    def synced(self) -> bool:
        return self.snapshot_loaded and self.invalid_reason is None

    def adopt_snapshot(self, snapshot: Snapshot) -> SyncResult:
        """Replace the book with ``snapshot`` and replay buffered diffs.

        Returns "synced", or "gap" if the buffer cannot be bridged to the
        snapshot. On gap the book stays at the last consistent id, refuses
        further diffs until ``reset_for_resync`` and keeps the whole buffer
        for the next attempt.
        """
        if getattr(snapshot, "last_update_id", None) is None:
            raise ValueError("Snapshot missing last_update_id; cannot sync.")

        lob = LocalOrderBook(symbol=self.symbol)
        lob.load_snapshot(snapshot.bids, snapshot.asks, snapshot.last_update_id)
        self.lob = lob
        self.snapshot_loaded = True
        self.invalid_reason = None

        pending = sorted(self.buffer, key=lambda ev: int(ev.first_update_id))
        self.buffer = []
        replayed = 0
        for ev in pending:
            decision = evaluate(ev, lob.last_update_id)
            if decision is SyncDecision.STALE:
                continue
            if decision is SyncDecision.GAP:
                self.invalid_reason = (
                    f"bridge_impossible U={ev.first_update_id} lastUpdateId={lob.last_update_id}"
                )
                self.buffer = pending
                return SyncResult("gap", self.invalid_reason)
            lob.apply_update(ev)
            replayed += 1

        return SyncResult("synced", f"lastUpdateId={lob.last_update_id} replayed={replayed}")

    def reset_for_resync(self) -> None:
        """Discard the book and sync flags; a fresh snapshot is required.

        Held diffs survive: the next ``adopt_snapshot`` replays them and the
        ones older than the new snapshot fall out as STALE.
        """
        self.lob = LocalOrderBook(symbol=self.symbol)
        self.snapshot_loaded = False
        self.invalid_reason = None

    def mark_stream_lost(self, reason: str = "") -> None:
        """Treat the next diff as a gap: continuity across a reconnect is unknown."""
        if not self.snapshot_loaded:
            return
        self.invalid_reason = f"stream_disconnect {reason}".strip()

    def _hold(self, ev: UpdateBatch) -> bool:
        self.buffer.append(ev)
        if self.max_buffer_size and len(self.buffer) > self.max_buffer_size:
            self.buffer.clear()
            return False
        return True

    def feed_depth_event(self, ev: UpdateBatch) -> SyncResult:
        if not self.snapshot_loaded:
            if not self._hold(ev):
                return SyncResult("gap", "buffer_overflow")
            return SyncResult("buffered", "no_snapshot")

        if self.invalid_reason is not None:
            self._hold(ev)
            return SyncResult("gap", self.invalid_reason)

        last = int(self.lob.last_update_id)
        decision = evaluate(ev, last)
        if decision is SyncDecision.STALE:
            return SyncResult("stale", f"U={ev.first_update_id} u={ev.last_update_id} last={last}")
        if decision is SyncDecision.GAP:
            self.invalid_reason = f"gap U={ev.first_update_id} u={ev.last_update_id} last={last}"
            self._hold(ev)
            return SyncResult("gap", self.invalid_reason)

        self.lob.apply_update(ev)
        return SyncResult("applied", f"lastUpdateId={self.lob.last_update_id}")
