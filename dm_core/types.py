from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional, Sequence


class Side(str, Enum):
    BID = "bid"
    ASK = "ask"


class Level(NamedTuple):
    price: Decimal
    qty: Decimal


@dataclass(frozen=True)
class Snapshot:
    last_update_id: int
    bids: Sequence
    asks: Sequence
    raw: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class UpdateBatch:
    """One diff-depth event covering update ids ``first_update_id..last_update_id``."""

    first_update_id: int
    last_update_id: int
    bids: Sequence = ()
    asks: Sequence = ()
    event_time_ms: int = 0
    raw: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class BookView:
    symbol: str
    last_update_id: Optional[int]
    bids: List[Level] = field(default_factory=list)
    asks: List[Level] = field(default_factory=list)
