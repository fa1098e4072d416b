from __future__ import annotations

from decimal import Decimal

from dm_core.sync_engine import OrderBookSyncEngine
from dm_core.types import Side, Snapshot, UpdateBatch


def test_updates_before_snapshot_are_buffered_not_dropped():
    engine = OrderBookSyncEngine()

    r1 = engine.feed_depth_event(UpdateBatch(95, 99, bids=[["100", "7"]], asks=[]))
    r2 = engine.feed_depth_event(UpdateBatch(100, 102, bids=[["99", "2"]], asks=[]))

    assert r1.action == "buffered" and r1.details == "no_snapshot"
    assert r2.action == "buffered"
    assert len(engine.buffer) == 2
    assert engine.lob.last_update_id is None


def test_adopt_drops_stale_and_replays_rest_in_order():
    engine = OrderBookSyncEngine()
    # arrives out of order; replay sorts by first id
    engine.feed_depth_event(UpdateBatch(103, 104, bids=[["98", "4"]], asks=[]))
    engine.feed_depth_event(UpdateBatch(90, 95, bids=[["100", "999"]], asks=[]))  # stale
    engine.feed_depth_event(UpdateBatch(96, 102, bids=[["99", "2"]], asks=[]))   # bridges 100

    result = engine.adopt_snapshot(
        Snapshot(last_update_id=100, bids=[["100", "1"]], asks=[["101", "1"]])
    )

    assert result.action == "synced"
    assert "replayed=2" in result.details
    assert engine.lob.last_update_id == 104
    assert engine.lob.top_n(Side.BID, 3) == [
        (Decimal("100"), Decimal("1")),
        (Decimal("99"), Decimal("2")),
        (Decimal("98"), Decimal("4")),
    ]
    assert engine.buffer == []


def test_gap_inside_buffer_stops_replay():
    engine = OrderBookSyncEngine()
    engine.feed_depth_event(UpdateBatch(101, 101, bids=[["99", "2"]], asks=[]))
    engine.feed_depth_event(UpdateBatch(105, 105, bids=[["98", "4"]], asks=[]))

    result = engine.adopt_snapshot(Snapshot(last_update_id=100, bids=[["100", "1"]], asks=[]))

    assert result.action == "gap"
    assert engine.lob.last_update_id == 101
    assert engine.lob.depth_size(Side.BID) == 2
    assert engine.feed_depth_event(UpdateBatch(102, 102)).action == "gap"
