"""
Solana `logsSubscribe` transport.

One websocket connection carries every subscription. The connection runs on a
daemon thread, reconnects with exponential delay, and re-subscribes every
registered address after each reconnect (server-side subscription ids do not
survive a new connection).
"""
from __future__ import annotations

import itertools
import json
import logging
import threading
import time
from typing import Any, Dict, Optional

import websocket

from flowtracer.config import settings
from flowtracer.core.dto import LogNotification
from flowtracer.ports.ledger_port import LogCallback


logger = logging.getLogger(__name__)


class SolanaLogsSubscriber:

    def __init__(
        self,
        ws_url: str = settings.RPC_WSS,
        commitment: str = "processed",
        reconnect_delay: float = 5.0,
        max_reconnect_delay: float = 60.0,
    ) -> None:
        self.ws_url = ws_url
        self.commitment = commitment
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay
        self._delay = reconnect_delay

        self.ws: Optional[websocket.WebSocketApp] = None
        self.ws_thread: Optional[threading.Thread] = None
        self.is_running = False
        self._connected = False

        self._lock = threading.Lock()
        self._handles = itertools.count(1)
        self._request_ids = itertools.count(1)
        # local handle -> (address, callback)
        self._subscriptions: Dict[int, tuple] = {}
        # request id -> local handle, server subscription id -> local handle
        self._pending: Dict[int, int] = {}
        self._server_ids: Dict[int, int] = {}

    # ---------- public ----------

    def subscribe(self, address: str, callback: LogCallback) -> int:
        with self._lock:
            handle = next(self._handles)
            self._subscriptions[handle] = (address, callback)
            connected = self._connected

        if connected:
            self._send_subscribe(handle, address)
        self.start()
        return handle

    def start(self) -> None:
        if self.is_running:
            return
        self.is_running = True
        self.ws_thread = threading.Thread(target=self._run, name="solana-logs-ws", daemon=True)
        self.ws_thread.start()
        logger.info("Log subscription transport started (%s)", self.ws_url)

    def stop(self) -> None:
        self.is_running = False
        if self.ws:
            self.ws.close()
        logger.info("Log subscription transport stopped")

    # ---------- connection loop ----------

    def _run(self) -> None:
        while self.is_running:
            try:
                self._connect()
            except Exception as e:
                logger.error("Websocket connection error: %s", e)

            if self.is_running:
                logger.info("Reconnecting in %.1f seconds...", self._delay)
                time.sleep(self._delay)
                self._delay = min(self._delay * 2, self.max_reconnect_delay)

    def _connect(self) -> None:
        logger.info("Connecting to %s", self.ws_url)
        self.ws = websocket.WebSocketApp(
            self.ws_url,
            on_open=self._on_open,
            on_message=self._on_message,
            on_error=self._on_error,
            on_close=self._on_close,
        )
        self.ws.run_forever(ping_interval=30, ping_timeout=10)

    def _on_open(self, ws) -> None:
        with self._lock:
            self._connected = True
            self._delay = self.reconnect_delay
            self._pending.clear()
            self._server_ids.clear()
            items = list(self._subscriptions.items())
        logger.info("Websocket connected, subscribing %d address(es)", len(items))
        for handle, (address, _cb) in items:
            self._send_subscribe(handle, address)

    def _on_close(self, ws, close_status_code=None, close_msg=None) -> None:
        with self._lock:
            self._connected = False
        logger.warning("Websocket closed (%s %s)", close_status_code, close_msg)

    def _on_error(self, ws, error) -> None:
        logger.error("Websocket error: %s", error)

    def _send_subscribe(self, handle: int, address: str) -> None:
        req_id = next(self._request_ids)
        with self._lock:
            self._pending[req_id] = handle
        msg = {
            "jsonrpc": "2.0",
            "id": req_id,
            "method": "logsSubscribe",
            "params": [{"mentions": [address]}, {"commitment": self.commitment}],
        }
        try:
            self.ws.send(json.dumps(msg))
        except Exception as e:
            # picked up again by _on_open after reconnect
            logger.warning("logsSubscribe for %s not sent: %s", address, e)

    # ---------- messages ----------

    def _on_message(self, ws, message: str) -> None:
        try:
            data = json.loads(message)
        except json.JSONDecodeError as e:
            logger.error("Failed to parse websocket message: %s", e)
            return
        self.handle_message(data)

    def handle_message(self, data: Dict[str, Any]) -> None:
        if "id" in data and "result" in data:
            with self._lock:
                handle = self._pending.pop(data["id"], None)
                if handle is not None:
                    self._server_ids[data["result"]] = handle
            return

        if "id" in data and "error" in data:
            with self._lock:
                handle = self._pending.pop(data["id"], None)
            logger.error("logsSubscribe rejected (handle %s): %s", handle, data["error"])
            return

        if data.get("method") != "logsNotification":
            return

        params = data.get("params") or {}
        with self._lock:
            handle = self._server_ids.get(params.get("subscription"))
            entry = self._subscriptions.get(handle) if handle is not None else None
        if entry is None:
            return

        value = ((params.get("result") or {}).get("value")) or {}
        signature = value.get("signature")
        if not signature:
            return

        address, callback = entry
        try:
            callback(LogNotification(address=address, signature=signature))
        except Exception as e:
            logger.error("Log callback failed for %s: %s", address, e)
