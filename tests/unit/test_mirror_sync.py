import logging
from decimal import Decimal

import pytest

from dm_core.errors import BootstrapFailed, FeedUnavailable, InvalidArgument
from dm_core.throttle import ThrottleController
from dm_core.types import Side, Snapshot, UpdateBatch
from dm_mirror.mirror import MirrorPhase, OrderBookMirror


class FakeSubscription:
    def __init__(self):
        self.closed = False

    def close(self):
        self.closed = True


class FakeFeed:
    """Serves scripted snapshots; ``during_fetch[i]`` diffs arrive while fetch i is in flight."""

    def __init__(self, snapshots, during_fetch=None):
        self.snapshots = list(snapshots)
        self.during_fetch = during_fetch or {}
        self.fetches = []
        self.on_update = None
        self.on_disconnect = None
        self.subscription = FakeSubscription()

    def subscribe_updates(self, symbol, on_update, on_disconnect=None):
        self.symbol = symbol
        self.on_update = on_update
        self.on_disconnect = on_disconnect
        return self.subscription

    def get_snapshot(self, symbol, depth):
        idx = len(self.fetches)
        self.fetches.append((symbol, depth))
        for ev in self.during_fetch.get(idx, []):
            self.on_update(ev)
        item = self.snapshots[min(idx, len(self.snapshots) - 1)]
        if isinstance(item, Exception):
            raise item
        return item


def _snap(last_update_id, bids=(("9", "1"),), asks=(("10", "1"), ("11", "2"))):
    return Snapshot(last_update_id=last_update_id, bids=[list(b) for b in bids], asks=[list(a) for a in asks])


def _mirror(feed, clock=None, **kwargs):
    t = clock if clock is not None else {"v": 0}
    emitted = []
    mirror = OrderBookMirror(
        feed,
        "ethusdt",
        5,
        reporter=emitted.append,
        throttle=ThrottleController(10_000, clock=lambda: t["v"]),
        snapshot_attempts=1,
        heartbeat_sec=0,
        **kwargs,
    )
    return mirror, emitted, t


def test_rejects_bad_arguments():
    with pytest.raises(InvalidArgument):
        OrderBookMirror(FakeFeed([_snap(1)]), "  ", 5)
    with pytest.raises(InvalidArgument):
        OrderBookMirror(FakeFeed([_snap(1)]), "ETHUSDT", 0)


def test_updates_during_snapshot_fetch_are_replayed():
    feed = FakeFeed(
        [_snap(5)],
        during_fetch={0: [UpdateBatch(4, 6, bids=[["9", "3"]], asks=[]), UpdateBatch(7, 7, bids=[], asks=[["10", "0"]])]},
    )
    mirror, emitted, _ = _mirror(feed)

    mirror.start()

    assert feed.symbol == "ETHUSDT"
    assert feed.fetches == [("ETHUSDT", 5)]
    assert mirror.phase is MirrorPhase.SYNCED
    assert mirror.stats.buffered == 2
    assert mirror.engine.lob.last_update_id == 7
    assert mirror.engine.lob.best_bid().qty == Decimal("3")
    assert mirror.engine.lob.top_n(Side.ASK, 5) == [(Decimal("11"), Decimal("2"))]


def test_throttle_gates_reporting_but_never_merging():
    feed = FakeFeed([_snap(5)])
    mirror, emitted, t = _mirror(feed)
    mirror.start()

    feed.on_update(UpdateBatch(6, 6, bids=[], asks=[["10", "0"]]))
    t["v"] = 5_000
    feed.on_update(UpdateBatch(7, 7, bids=[["9", "4"]], asks=[]))

    assert mirror.stats.applied == 2
    assert mirror.engine.lob.last_update_id == 7
    assert mirror.engine.lob.best_bid().qty == Decimal("4")
    assert len(emitted) == 1
    assert emitted[0].last_update_id == 6

    t["v"] = 15_000
    feed.on_update(UpdateBatch(8, 8, bids=[], asks=[]))
    assert len(emitted) == 2
    assert emitted[1].last_update_id == 8
    assert mirror.stats.emitted == 2


def test_stale_update_is_ignored_and_logged_at_debug(caplog):
    feed = FakeFeed([_snap(5)])
    mirror, emitted, _ = _mirror(feed)
    mirror.start()
    feed.on_update(UpdateBatch(6, 6, bids=[], asks=[["10", "0"]]))
    before = mirror.engine.lob.levels()

    with caplog.at_level(logging.DEBUG, logger="depth_mirror.mirror"):
        result = feed.on_update(UpdateBatch(4, 4, bids=[["9", "100"]], asks=[]))

    assert result.action == "stale"
    assert mirror.engine.lob.levels() == before
    assert mirror.stats.stale == 1
    assert mirror.stats.resyncs == 0
    stale_logs = [r for r in caplog.records if "Stale" in r.getMessage()]
    assert stale_logs and all(r.levelno == logging.DEBUG for r in stale_logs)


def test_gap_discards_book_and_rebootstraps(caplog):
    feed = FakeFeed([_snap(5), _snap(20, bids=(("8", "5"),), asks=(("12", "1"),))])
    mirror, emitted, t = _mirror(feed)
    mirror.start()
    feed.on_update(UpdateBatch(6, 6, bids=[], asks=[["10", "0"]]))
    assert len(emitted) == 1

    with caplog.at_level(logging.WARNING, logger="depth_mirror.mirror"):
        result = feed.on_update(UpdateBatch(8, 8, bids=[["9", "0"]], asks=[["13", "1"]]))

    assert result.action == "gap"
    assert len(feed.fetches) == 2
    assert mirror.stats.resyncs == 1
    assert mirror.phase is MirrorPhase.SYNCED
    lob = mirror.engine.lob
    assert lob.last_update_id == 20
    assert lob.levels() == ([(Decimal("8"), Decimal("5"))], [(Decimal("12"), Decimal("1"))])
    assert any("Resync triggered" in r.getMessage() and r.levelno == logging.WARNING for r in caplog.records)

    # reporting restarts right away on the fresh book
    feed.on_update(UpdateBatch(21, 21, bids=[], asks=[]))
    assert len(emitted) == 2
    assert emitted[1].last_update_id == 21


def test_gap_diff_is_replayed_onto_a_lagging_resync_snapshot(caplog):
    feed = FakeFeed([_snap(5), _snap(7)])
    mirror, _, _ = _mirror(feed)
    mirror.start()
    feed.on_update(UpdateBatch(6, 6, bids=[], asks=[]))

    with caplog.at_level(logging.WARNING, logger="depth_mirror.mirror"):
        feed.on_update(UpdateBatch(8, 9, bids=[["9", "6"]], asks=[]))
        result = feed.on_update(UpdateBatch(10, 10, bids=[], asks=[]))

    assert result.action == "applied"
    assert mirror.engine.lob.last_update_id == 10
    assert mirror.engine.lob.best_bid().qty == Decimal("6")
    assert mirror.stats.resyncs == 1
    assert len(feed.fetches) == 2
    assert sum("Resync triggered" in r.getMessage() for r in caplog.records) == 1


def test_diffs_buffered_across_failed_bridge_serve_the_next_snapshot():
    feed = FakeFeed(
        [_snap(5), _snap(12)],
        during_fetch={0: [UpdateBatch(10, 14, bids=[["9", "8"]], asks=[])]},
    )
    mirror, _, _ = _mirror(feed, max_bootstrap_attempts=2)

    mirror.start()

    assert len(feed.fetches) == 2
    assert mirror.phase is MirrorPhase.SYNCED
    assert mirror.engine.lob.last_update_id == 14
    assert mirror.engine.lob.best_bid().qty == Decimal("8")


def test_disconnect_forces_resync_on_next_update():
    feed = FakeFeed([_snap(5), _snap(30)])
    mirror, emitted, _ = _mirror(feed)
    mirror.start()

    feed.on_disconnect("ws_close", {"code": 1006})
    result = feed.on_update(UpdateBatch(6, 6, bids=[["9", "7"]], asks=[]))

    assert result.action == "gap"
    assert mirror.stats.disconnects == 1
    assert mirror.stats.resyncs == 1
    assert mirror.engine.lob.last_update_id == 30
    assert mirror.engine.lob.best_bid().qty == Decimal("1")


def test_initial_snapshot_failure_is_fatal():
    feed = FakeFeed([FeedUnavailable("REST snapshot request failed: down")])
    mirror, _, _ = _mirror(feed)

    with pytest.raises(FeedUnavailable):
        mirror.run(poll_s=0.01)

    assert mirror.phase is MirrorPhase.STOPPED
    assert feed.subscription.closed is True


def test_resync_failure_stops_mirror():
    feed = FakeFeed([_snap(5), FeedUnavailable("REST snapshot request failed: down")])
    mirror, _, _ = _mirror(feed)
    mirror.start()

    feed.on_update(UpdateBatch(9, 9))

    assert isinstance(mirror.fatal_error, FeedUnavailable)
    assert mirror.phase is MirrorPhase.STOPPED
    assert feed.subscription.closed is True
    # later diffs are ignored once stopped
    assert feed.on_update(UpdateBatch(10, 10)).details == "stopped"


def test_snapshot_that_never_bridges_fails_bootstrap():
    late = UpdateBatch(50, 50)
    feed = FakeFeed([_snap(5)], during_fetch={0: [late], 1: [late]})
    mirror, _, _ = _mirror(feed, max_bootstrap_attempts=2)

    with pytest.raises(BootstrapFailed):
        mirror.start()

    assert len(feed.fetches) == 2
    assert mirror.phase is MirrorPhase.STOPPED


def test_view_reads_current_depth():
    feed = FakeFeed([_snap(5, bids=(("9", "1"), ("8", "2"), ("7", "3")))])
    mirror, _, _ = _mirror(feed)
    mirror.start()

    view = mirror.view(2)
    assert view.symbol == "ETHUSDT"
    assert view.bids == [(Decimal("9"), Decimal("1")), (Decimal("8"), Decimal("2"))]
    assert len(mirror.view().asks) == 2
