"""Core order-book data structures and sync logic, free of any I/O."""

from .errors import BootstrapFailed, FeedUnavailable, InvalidArgument
from .local_orderbook import LocalOrderBook
from .sync_engine import OrderBookSyncEngine, SyncDecision, SyncResult, evaluate
from .throttle import ThrottleController
from .types import BookView, Level, Side, Snapshot, UpdateBatch

__all__ = [
    "BookView",
    "BootstrapFailed",
    "FeedUnavailable",
    "InvalidArgument",
    "Level",
    "LocalOrderBook",
    "OrderBookSyncEngine",
    "Side",
    "Snapshot",
    "SyncDecision",
    "SyncResult",
    "ThrottleController",
    "UpdateBatch",
    "evaluate",
]
