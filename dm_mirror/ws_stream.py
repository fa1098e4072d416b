"""Binance diff-depth websocket client.

``BinanceWSStream.run()`` blocks its thread on a private asyncio loop. Frames
are decoded and parsed into ``UpdateBatch`` here, so subscribers only ever see
typed updates. Connection lifecycle is reported as ``StreamEvent`` values;
each session reports exactly one ending event.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import random
import ssl
import time
from enum import Enum
from typing import Callable, Optional, Tuple

from websockets.asyncio.client import connect as ws_connect  # type: ignore
from websockets.exceptions import ConnectionClosed  # type: ignore

from dm_core.types import UpdateBatch

log = logging.getLogger("depth_mirror.ws")


class StreamEvent(str, Enum):
    CONNECTED = "ws_connect"
    CLOSED = "ws_close"
    ERROR = "ws_error"
    PING_TIMEOUT = "ws_ping_timeout"
    SESSION_EXPIRED = "ws_session_expired"
    CRASHED = "ws_run_exception"
    BACKOFF = "ws_reconnect_wait"

    @property
    def ends_session(self) -> bool:
        """After these, diffs may have been missed between sessions."""
        return self not in (StreamEvent.CONNECTED, StreamEvent.BACKOFF)


class BinanceWSStream:
    def __init__(
        self,
        ws_url: str,
        on_update: Callable[[UpdateBatch], None],
        parse: Callable[[dict], UpdateBatch],
        on_event: Optional[Callable[[StreamEvent, dict], None]] = None,
        insecure_tls: bool = False,
        ping_interval_s: int = 20,
        ping_timeout_s: int = 60,
        reconnect_backoff_s: float = 1.0,
        reconnect_backoff_max_s: float = 30.0,
        max_session_s: float = 23 * 3600 + 50 * 60,
        recv_poll_timeout_s: float = 5.0,
        max_queue: int = 256,
    ):
        self.ws_url = ws_url
        self.on_update = on_update
        self.parse = parse
        self.on_event = on_event
        self.insecure_tls = insecure_tls

        self.ping_interval_s = max(0, int(ping_interval_s))
        self.ping_timeout_s = max(1, int(ping_timeout_s))
        self.reconnect_backoff_s = max(0.0, float(reconnect_backoff_s))
        self.reconnect_backoff_max_s = max(self.reconnect_backoff_s, float(reconnect_backoff_max_s))
        self.max_session_s = max(0.0, float(max_session_s))
        self.recv_poll_timeout_s = max(0.01, float(recv_poll_timeout_s))
        self.max_queue = max(1, int(max_queue))

        # malformed depth frames seen so far
        self.dropped = 0

        self._stop = False
        self._ws = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._session_end: Optional[Tuple[StreamEvent, dict]] = None

    # ---- events ------------------------------------------------------------

    def _emit(self, event: StreamEvent, details: dict) -> None:
        if self.on_event is None:
            return
        try:
            self.on_event(event, details)
        except Exception:
            log.exception("Stream event callback failed (%s)", event.value)

    def _end_session(self, event: StreamEvent, details: dict) -> None:
        # First cause wins: a ping timeout closes the socket, which then
        # surfaces in the reader as a close.
        if self._session_end is None:
            self._session_end = (event, details)

    # ---- frames ------------------------------------------------------------

    def _handle_frame(self, frame) -> None:
        try:
            msg = json.loads(frame)
        except (TypeError, ValueError):
            log.warning("Undecodable frame dropped: %.200r", frame)
            return
        if not isinstance(msg, dict):
            return
        # combined streams wrap the payload in {"stream": ..., "data": ...}
        data = msg.get("data", msg)
        if not isinstance(data, dict) or data.get("e") != "depthUpdate":
            return

        try:
            update = self.parse(data)
        except (KeyError, TypeError, ValueError):
            self.dropped += 1
            log.exception("Malformed depth frame dropped: %.200r", data)
            return

        try:
            self.on_update(update)
        except Exception:
            log.exception("Update callback failed (U=%s u=%s)", update.first_update_id, update.last_update_id)

    # ---- session -----------------------------------------------------------

    async def _watch_pongs(self, ws) -> None:
        while not self._stop:
            await asyncio.sleep(self.ping_interval_s)
            if self._stop:
                return
            try:
                pong = await ws.ping(os.urandom(4))
                await asyncio.wait_for(pong, timeout=self.ping_timeout_s)
            except Exception as exc:
                self._end_session(StreamEvent.PING_TIMEOUT, {"error": str(exc)})
                with contextlib.suppress(Exception):
                    await ws.close()
                return

    async def _read_frames(self, ws, deadline: float) -> None:
        while not self._stop:
            if time.monotonic() >= deadline:
                self._end_session(StreamEvent.SESSION_EXPIRED, {"max_session_s": self.max_session_s})
                return
            try:
                frame = await asyncio.wait_for(ws.recv(), timeout=self.recv_poll_timeout_s)
            except asyncio.TimeoutError:
                continue
            except ConnectionClosed as exc:
                rcvd = exc.rcvd
                self._end_session(
                    StreamEvent.CLOSED,
                    {"code": rcvd.code if rcvd else None, "reason": rcvd.reason if rcvd else ""},
                )
                return
            except Exception as exc:
                self._end_session(StreamEvent.ERROR, {"error": str(exc)})
                return
            self._handle_frame(frame)

    def _ssl_context(self) -> Optional[ssl.SSLContext]:
        if not self.insecure_tls:
            return None
        ctx = ssl.create_default_context()
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
        return ctx

    async def _session(self) -> None:
        # Library keepalive is off; _watch_pongs owns ping/pong.
        kwargs = {"ping_interval": None, "ping_timeout": None, "close_timeout": 5, "max_queue": self.max_queue}
        ctx = self._ssl_context()
        if ctx is not None:
            kwargs["ssl"] = ctx

        deadline = time.monotonic() + self.max_session_s
        async with ws_connect(self.ws_url, **kwargs) as ws:
            self._ws = ws
            self._emit(StreamEvent.CONNECTED, {"url": self.ws_url})
            watcher = asyncio.create_task(self._watch_pongs(ws)) if self.ping_interval_s > 0 else None
            try:
                await self._read_frames(ws, deadline)
            finally:
                if watcher is not None:
                    watcher.cancel()
                    with contextlib.suppress(asyncio.CancelledError, Exception):
                        await watcher

    def _backoff_s(self, failures: int) -> float:
        base, cap = self.reconnect_backoff_s, self.reconnect_backoff_max_s
        if base <= 0.0:
            return 0.0
        return min(cap, base * (2 ** failures)) * (0.7 + 0.6 * random.random())

    async def _run_async(self) -> None:
        self._loop = asyncio.get_running_loop()
        failures = 0
        while not self._stop:
            self._session_end = None
            connected = False
            try:
                await self._session()
                connected = True
            except Exception as exc:
                log.exception("Stream session crashed")
                self._end_session(StreamEvent.CRASHED, {"error": str(exc)})
            finally:
                self._ws = None

            if self._stop:
                break
            if self._session_end is not None:
                self._emit(*self._session_end)
                if self._stop:
                    break

            failures = 0 if connected else failures + 1
            delay = self._backoff_s(failures)
            self._emit(StreamEvent.BACKOFF, {"sleep_s": delay, "failures": failures})
            await asyncio.sleep(delay)

    # ---- public ------------------------------------------------------------

    def run(self) -> None:
        """Connect and reconnect until ``close()``. Blocks the calling thread."""
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(self._run_async())
            return
        raise RuntimeError("BinanceWSStream.run() cannot be called from an active event loop.")

    def close(self) -> None:
        """Stop after the current frame. Safe from any thread."""
        self._stop = True
        ws, loop = self._ws, self._loop
        if ws is None or loop is None or not loop.is_running():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            loop.create_task(ws.close())
        else:
            asyncio.run_coroutine_threadsafe(ws.close(), loop)
