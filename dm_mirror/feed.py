from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from dm_core.types import Snapshot, UpdateBatch
from dm_mirror import settings
from dm_mirror.exchange import BinanceAdapter
from dm_mirror.snapshot import BinanceRestClient, load_snapshot
from dm_mirror.ws_stream import BinanceWSStream, StreamEvent

log = logging.getLogger("depth_mirror.feed")


class Subscription:
    """Handle for one running depth stream."""

    def __init__(self, stream, thread: threading.Thread) -> None:
        self.stream = stream
        self.thread = thread

    @property
    def alive(self) -> bool:
        return self.thread.is_alive()

    def close(self, timeout_s: float = 2.0) -> None:
        self.stream.close()
        if self.thread is not threading.current_thread():
            self.thread.join(timeout=timeout_s)


class MarketDataFeed:
    """REST snapshots plus the diff-depth websocket for one exchange."""

    def __init__(self, rest_client=None, adapter: Optional[BinanceAdapter] = None, stream_factory=None) -> None:
        self.rest_client = rest_client or BinanceRestClient()
        self.adapter = adapter or BinanceAdapter()
        self.stream_factory = stream_factory or BinanceWSStream

    def get_snapshot(self, symbol: str, depth: int) -> Snapshot:
        return load_snapshot(self.rest_client, self.adapter.normalize_symbol(symbol), depth)

    def subscribe_updates(
        self,
        symbol: str,
        on_update: Callable[[UpdateBatch], None],
        on_disconnect: Optional[Callable[[str, dict], None]] = None,
    ) -> Subscription:
        ws_url = self.adapter.ws_url(symbol)

        def on_event(event: StreamEvent, details: dict) -> None:
            if not event.ends_session:
                log.debug("Stream %s %s", event.value, details)
                return
            log.warning("Stream %s %s", event.value, details)
            if on_disconnect is not None:
                on_disconnect(event.value, details)

        stream = self.stream_factory(
            ws_url=ws_url,
            on_update=on_update,
            parse=self.adapter.parse_depth,
            on_event=on_event,
            insecure_tls=settings.INSECURE_TLS,
            ping_interval_s=settings.WS_PING_INTERVAL_S,
            ping_timeout_s=settings.WS_PING_TIMEOUT_S,
            reconnect_backoff_s=settings.WS_RECONNECT_BACKOFF_S,
            reconnect_backoff_max_s=settings.WS_RECONNECT_BACKOFF_MAX_S,
            max_session_s=settings.WS_MAX_SESSION_S,
        )
        thread = threading.Thread(
            target=stream.run,
            name=f"ws-{self.adapter.stream_symbol(symbol)}",
            daemon=True,
        )
        thread.start()
        log.info("Subscribed %s", ws_url)
        return Subscription(stream, thread)
