from __future__ import annotations

import logging
import time

import requests

from dm_core.errors import FeedUnavailable, InvalidArgument
from dm_core.local_orderbook import parse_levels
from dm_core.types import Snapshot
from dm_mirror import settings

log = logging.getLogger("depth_mirror.snapshot")


class BinanceRestClient:
    def __init__(self, base_url: str | None = None, timeout_s: float | None = None) -> None:
        self.base_url = base_url or settings.BINANCE_REST_BASE_URL
        self.timeout_s = settings.SNAPSHOT_TIMEOUT_S if timeout_s is None else float(timeout_s)

    def get_order_book(self, symbol: str, limit: int) -> dict:
        url = f"{self.base_url}/api/v3/depth"
        resp = requests.get(url, params={"symbol": symbol, "limit": limit}, timeout=self.timeout_s)
        resp.raise_for_status()
        return resp.json()


def call_with_retry(fn, attempts: int = 1, backoff_s: float = 0.5, backoff_max_s: float = 5.0):
    """Caller-side backoff around a snapshot fetch. The loader itself never retries."""
    attempts = max(1, int(attempts))
    backoff_s = max(0.0, float(backoff_s))
    backoff_max_s = max(backoff_s, float(backoff_max_s))
    delay = backoff_s
    last_exc = None
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except FeedUnavailable as exc:
            last_exc = exc
            if attempt >= attempts:
                break
            log.warning("Snapshot attempt %d/%d failed: %s", attempt, attempts, exc)
            if delay > 0:
                time.sleep(delay)
                delay = min(backoff_max_s, delay * 2)
    raise last_exc


def _validate_snapshot_payload(snap: dict) -> Snapshot:
    if not isinstance(snap, dict):
        raise ValueError("snapshot payload must be a dict")
    if "bids" not in snap or "asks" not in snap or "lastUpdateId" not in snap:
        raise ValueError("snapshot payload missing required keys")
    bids = snap.get("bids")
    asks = snap.get("asks")
    if not isinstance(bids, list) or not isinstance(asks, list):
        raise ValueError("snapshot bids/asks must be lists")
    try:
        last_update_id = int(snap.get("lastUpdateId"))
    except (TypeError, ValueError) as exc:
        raise ValueError("snapshot lastUpdateId must be int-like") from exc
    return Snapshot(
        last_update_id=last_update_id,
        bids=parse_levels(bids, "bids"),
        asks=parse_levels(asks, "asks"),
        raw=snap,
    )


def load_snapshot(client, symbol: str, depth: int) -> Snapshot:
    """Fetch the full book for ``symbol`` once, with its lastUpdateId.

    Raises InvalidArgument for a bad symbol/depth and FeedUnavailable when the
    request fails or the payload is unusable.
    """
    if not symbol or not str(symbol).strip():
        raise InvalidArgument("symbol must be non-empty")
    if isinstance(depth, bool) or not isinstance(depth, int) or depth <= 0:
        raise InvalidArgument(f"depth must be a positive integer (got {depth!r})")
    if client is None:
        raise FeedUnavailable("REST snapshot requires a client")

    try:
        snap = client.get_order_book(symbol=symbol, limit=depth)
    except Exception as exc:
        raise FeedUnavailable(f"REST snapshot request failed: {exc}") from exc
    try:
        snapshot = _validate_snapshot_payload(snap)
    except ValueError as exc:
        raise FeedUnavailable(f"Invalid snapshot payload: {exc}") from exc

    log.info(
        "Snapshot %s lastUpdateId=%s bids=%d asks=%d",
        symbol,
        snapshot.last_update_id,
        len(snapshot.bids),
        len(snapshot.asks),
    )
    return snapshot
