from __future__ import annotations

import threading
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from itertools import islice
from typing import Iterable, List, Optional, Tuple

from sortedcontainers import SortedDict

from .types import BookView, Level, Side, UpdateBatch


def _to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        dec = value
    else:
        try:
            dec = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise ValueError(f"not a decimal value: {value!r}") from exc
    if not dec.is_finite():
        raise ValueError(f"not a finite decimal value: {value!r}")
    return dec


def parse_levels(levels: Iterable, label: str = "levels") -> List[Level]:
    """Validate raw ``[price, qty]`` pairs into Levels without touching any book."""
    out: List[Level] = []
    for i, row in enumerate(levels or ()):
        try:
            price, qty = row[0], row[1]
        except (TypeError, IndexError, KeyError) as exc:
            raise ValueError(f"{label}[{i}] is not a [price, qty] pair: {row!r}") from exc
        p = _to_decimal(price)
        q = _to_decimal(qty)
        if p < 0 or q < 0:
            raise ValueError(f"{label}[{i}] has a negative value: {row!r}")
        out.append(Level(p, q))
    return out


@dataclass
class LocalOrderBook:
    """In-memory L2 book keyed by Decimal price.

    Both sides are ascending SortedDicts; bids are read in reverse. Every
    mutation and every multi-field read holds ``_lock``, so a reader never
    observes a batch applied to one side and not the other.
    """

    symbol: str = ""
    bids: SortedDict = field(default_factory=SortedDict)
    asks: SortedDict = field(default_factory=SortedDict)
    last_update_id: Optional[int] = None
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    def _side(self, side: Side) -> SortedDict:
        side = Side(side)
        return self.bids if side is Side.BID else self.asks

    @staticmethod
    def _apply_level(side: SortedDict, level: Level) -> None:
        # qty == 0 removes; zero is never stored.
        if level.qty == 0:
            side.pop(level.price, None)
        else:
            side[level.price] = level.qty

    def load_snapshot(self, bids, asks, last_update_id: int) -> None:
        bid_levels = parse_levels(bids, "bids")
        ask_levels = parse_levels(asks, "asks")
        with self._lock:
            self.bids.clear()
            self.asks.clear()
            for level in bid_levels:
                self._apply_level(self.bids, level)
            for level in ask_levels:
                self._apply_level(self.asks, level)
            self.last_update_id = int(last_update_id)

    def apply_update(self, update: UpdateBatch) -> None:
        """Merge one accepted batch into both sides and advance last_update_id.

        Entries are validated before the book is touched, so a malformed batch
        leaves the book unchanged.
        """
        bid_levels = parse_levels(update.bids, "bids")
        ask_levels = parse_levels(update.asks, "asks")
        new_last = int(update.last_update_id)
        with self._lock:
            if self.last_update_id is not None and new_last < self.last_update_id:
                raise ValueError(
                    f"update u={new_last} would move last_update_id back from {self.last_update_id}"
                )
            for level in bid_levels:
                self._apply_level(self.bids, level)
            for level in ask_levels:
                self._apply_level(self.asks, level)
            self.last_update_id = new_last

    def best_bid(self) -> Optional[Level]:
        with self._lock:
            if not self.bids:
                return None
            return Level(*self.bids.peekitem(-1))

    def best_ask(self) -> Optional[Level]:
        with self._lock:
            if not self.asks:
                return None
            return Level(*self.asks.peekitem(0))

    def _iter_side(self, side: Side):
        side = Side(side)
        if side is Side.BID:
            return reversed(self.bids.items())
        return iter(self.asks.items())

    def top_n(self, side: Side, n: int) -> List[Level]:
        if n <= 0:
            return []
        with self._lock:
            return [Level(p, q) for p, q in islice(self._iter_side(side), n)]

    def view(self, n: int) -> BookView:
        with self._lock:
            return BookView(
                symbol=self.symbol,
                last_update_id=self.last_update_id,
                bids=self.top_n(Side.BID, n),
                asks=self.top_n(Side.ASK, n),
            )

    def levels(self) -> Tuple[List[Level], List[Level]]:
        with self._lock:
            bids = [Level(p, q) for p, q in self._iter_side(Side.BID)]
            asks = [Level(p, q) for p, q in self._iter_side(Side.ASK)]
            return bids, asks

    def depth_size(self, side: Side) -> int:
        with self._lock:
            return len(self._side(side))
