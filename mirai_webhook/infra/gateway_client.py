# mirai_webhook/infra/gateway_client.py
"""
Gateway WebSocket client.

The gateway (a mirai-api-http style server) speaks JSON frames over one
WebSocket:

    outbound  {"syncId": 7, "command": "sendGroupMessage", "content": {...}}
    inbound   {"syncId": 7, "data": {"code": 0, "msg": "success", ...}}

Frames with an empty ``syncId`` are unsolicited; the first one after
connect carries ``{"code", "session"}`` and completes the handshake.

Two layers:

- ``GatewaySession`` -- one socket lifetime. Multiplexes concurrent
  ``send()`` calls by ``syncId`` (a per-session counter) and resolves every
  outstanding call with a synthetic failure when the socket closes.
- ``GatewayClient`` -- the process-wide owner. Runs the connect loop in the
  background: first attempt immediately, then a fixed delay after every
  close, forever. Constructed once at startup and injected where needed.

Usage:
    client = GatewayClient(config.ws_config)
    await client.start()
    reply = await client.send_message("group", 123456, message)
    # ... on shutdown:
    await client.stop()
"""
from __future__ import annotations

import asyncio
import itertools
import json
from enum import Enum
from typing import Any, Awaitable, Callable
from urllib.parse import urlencode

import aiohttp

from mirai_webhook.config import GatewayConfig
from mirai_webhook.core.domain import Message, TargetType, is_decimal_number, message_chain
from mirai_webhook.infra.http_client import get_gateway_session
from mirai_webhook.infra.logging_config import get_logger
from mirai_webhook.infra.metrics import AppMetrics

logger = get_logger(__name__)

DEFAULT_RECONNECT_DELAY = 10.0
HEARTBEAT_SECONDS = 30.0

COMMANDS: dict[str, str] = {
    TargetType.FRIEND.value: "sendFriendMessage",
    TargetType.GROUP.value: "sendGroupMessage",
}

# Unsolicited frames carry no syncId (mirai uses "" and, for events, -1).
_EVENT_SYNC_IDS = (None, "", -1, "-1")


def _failure(code: int, msg: str) -> dict[str, Any]:
    return {"code": code, "msg": msg}


def connection_closed_reply() -> dict[str, Any]:
    return _failure(500, "connection closed")


def not_connected_reply() -> dict[str, Any]:
    return _failure(500, "gateway not connected")


class GatewayConfigError(Exception):
    """Gateway connection settings are incomplete (fatal at startup)."""


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    HANDSHAKING = "handshaking"
    READY = "ready"
    UNAUTHORIZED = "unauthorized"  # handshake answered with a nonzero code
    CLOSED = "closed"


def build_endpoint(config: GatewayConfig) -> str:
    """``<addr>/message?verifyKey=<key>&qq=<qq>``"""
    missing = [name for name in ("addr", "key", "qq") if not getattr(config, name)]
    if missing:
        raise GatewayConfigError(f"Incomplete gateway config, missing: {', '.join(missing)}")

    addr = config.addr.strip()
    if not addr.startswith(("ws://", "wss://", "http://", "https://")):
        raise GatewayConfigError(f"Gateway addr must be a ws(s):// or http(s):// URL: {addr!r}")

    query = urlencode({"verifyKey": config.key, "qq": config.qq})
    return f"{addr.rstrip('/')}/message?{query}"


def _is_numeric_target(target: Any) -> bool:
    if isinstance(target, bool) or not target:
        return False
    if isinstance(target, int):
        return True
    return isinstance(target, str) and is_decimal_number(target)


class GatewaySession:
    """
    One WebSocket lifetime: handshake, request/reply correlation, close.

    Not reused: after ``CLOSED`` the owner builds a fresh session, so sync
    ids from a previous socket can never be matched by a new one.
    """

    def __init__(self, endpoint: str, *, send_timeout: float | None = None):
        self.endpoint = endpoint
        self.send_timeout = send_timeout
        self.state = SessionState.DISCONNECTED
        self.session_key: str | None = None
        self._ws: Any = None
        self._sync_ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future] = {}
        self._handshake_done = asyncio.Event()

    @property
    def is_ready(self) -> bool:
        return self.state == SessionState.READY

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def wait_handshake(self, timeout: float | None = None) -> bool:
        """Wait until the handshake frame arrived (or the socket closed). True if READY."""
        await asyncio.wait_for(self._handshake_done.wait(), timeout)
        return self.is_ready

    # ------------------------------------------------------------------
    # Socket lifetime
    # ------------------------------------------------------------------

    async def run(self, ws: Any) -> None:
        """
        Read frames until the socket closes, then fail all outstanding sends.

        ``ws`` is an open ``aiohttp.ClientWebSocketResponse`` (or anything
        with the same ``send_json`` / ``close`` / async-iteration surface).
        """
        self._ws = ws
        self.state = SessionState.HANDSHAKING
        logger.info("Connected to gateway, waiting for session handshake")

        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._handle_frame(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.error(f"Gateway socket error: {ws.exception()!r}")
                    break
        finally:
            self._mark_closed()
            if not ws.closed:
                await ws.close()

    async def close(self) -> None:
        ws = self._ws
        self._mark_closed()
        if ws is not None and not ws.closed:
            await ws.close()

    def _mark_closed(self) -> None:
        if self.state != SessionState.CLOSED:
            logger.info(
                f"Gateway session closed (state={self.state.value}, pending={len(self._pending)})"
            )
        self.state = SessionState.CLOSED
        self.session_key = None
        self._handshake_done.set()

        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_result(connection_closed_reply())

    # ------------------------------------------------------------------
    # Inbound frames
    # ------------------------------------------------------------------

    def _handle_frame(self, raw: str) -> None:
        try:
            frame = json.loads(raw)
        except ValueError:
            logger.warning(f"Ignoring non-JSON gateway frame: {raw[:100]!r}")
            return
        if not isinstance(frame, dict):
            logger.warning(f"Ignoring unexpected gateway frame: {raw[:100]!r}")
            return

        sync_id = frame.get("syncId")
        data = frame.get("data")

        if sync_id in _EVENT_SYNC_IDS:
            self._handle_event(data)
            return

        try:
            key = int(sync_id)
        except (TypeError, ValueError):
            logger.debug(f"Ignoring gateway frame with unknown syncId {sync_id!r}")
            return

        future = self._pending.pop(key, None)
        if future is None or future.done():
            logger.debug(f"No pending request for syncId {key}")
            return

        if not isinstance(data, dict):
            data = _failure(500, "malformed gateway reply")
        future.set_result(data)

    def _handle_event(self, data: Any) -> None:
        if self.state != SessionState.HANDSHAKING:
            logger.debug("Ignoring unsolicited gateway event")
            return
        if not isinstance(data, dict) or "code" not in data:
            logger.debug("Ignoring gateway event received before the handshake")
            return

        code = data.get("code")
        if code == 0 and data.get("session"):
            self.session_key = data["session"]
            self.state = SessionState.READY
            logger.info("Gateway session established")
        else:
            self.state = SessionState.UNAUTHORIZED
            logger.warning(f"Gateway handshake failed, code: {code}, msg: {data.get('msg')}")
        self._handshake_done.set()

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def send(self, command: str, content: Any) -> dict[str, Any]:
        """
        Send a command and wait for the matching reply's ``data``.

        Resolves with ``{"code": 500, "msg": "connection closed"}`` if the
        socket is (or becomes) closed, and with a 504 failure if
        ``send_timeout`` is set and expires.
        """
        ws = self._ws
        if ws is None or ws.closed or self.state == SessionState.CLOSED:
            return connection_closed_reply()

        sync_id = next(self._sync_ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[sync_id] = future

        try:
            await ws.send_json({"syncId": sync_id, "command": command, "content": content})
        except (aiohttp.ClientError, ConnectionError) as exc:
            self._pending.pop(sync_id, None)
            logger.warning(f"Gateway write failed for {command}: {exc!r}")
            return connection_closed_reply()

        try:
            if self.send_timeout is None:
                reply = await future
            else:
                reply = await asyncio.wait_for(future, self.send_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Gateway reply for {command} (syncId {sync_id}) timed out")
            return _failure(504, "gateway reply timed out")
        finally:
            self._pending.pop(sync_id, None)

        AppMetrics.gateway_send(command, reply.get("code", 500))
        return reply

    async def send_message(self, type: str, target: Any, message: Message) -> dict[str, Any]:
        """
        Send a message chain to a friend or group.

        Invalid arguments are answered locally with a code 500 failure,
        the socket is not touched.
        """
        command = COMMANDS.get(type)
        if command is None:
            return _failure(500, f"unknown message type: {type}")
        if not _is_numeric_target(target):
            return _failure(500, f"invalid message target (numeric qq or group number required): {target}")
        if not isinstance(message, tuple) or not message:
            return _failure(500, f"message must be a non-empty segment sequence: {message!r}")

        return await self.send(command, {
            "sessionKey": self.session_key,
            "target": int(target),
            "messageChain": message_chain(message),
        })


Connector = Callable[[str], Awaitable[Any]]


async def _aiohttp_connect(endpoint: str) -> aiohttp.ClientWebSocketResponse:
    return await get_gateway_session().ws_connect(endpoint, heartbeat=HEARTBEAT_SECONDS)


class GatewayClient:
    """
    Owns the single live ``GatewaySession`` and the reconnect loop.

    Reconnection is unconditional: fixed ``reconnect_delay`` between
    attempts, no backoff, no retry limit. Sends are never queued across
    reconnects; with no usable session they fail immediately.
    """

    def __init__(
        self,
        config: GatewayConfig,
        *,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        send_timeout: float | None = None,
        connector: Connector | None = None,
    ):
        self.endpoint = build_endpoint(config)
        self.reconnect_delay = reconnect_delay
        self.send_timeout = send_timeout
        self._connector = connector or _aiohttp_connect
        self._session: GatewaySession | None = None
        self._task: asyncio.Task | None = None
        self._running = False
        self.attempts = 0

    @property
    def session(self) -> GatewaySession | None:
        return self._session

    @property
    def state(self) -> SessionState:
        return self._session.state if self._session else SessionState.DISCONNECTED

    @property
    def is_ready(self) -> bool:
        return self._session is not None and self._session.is_ready

    async def start(self) -> None:
        """Start the connect loop as a background task."""
        if self._running:
            logger.warning("Gateway client already running")
            return
        self._running = True
        self._task = asyncio.create_task(self._connect_loop(), name="gateway_connect_loop")

    async def stop(self) -> None:
        """Close the socket (failing pending sends), then stop the loop."""
        self._running = False
        if self._session is not None:
            await self._session.close()
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("Gateway client stopped")

    async def _connect_loop(self) -> None:
        first = True
        while self._running:
            if not first:
                logger.info(f"Reconnecting to gateway in {self.reconnect_delay:g}s")
                await asyncio.sleep(self.reconnect_delay)
                if not self._running:
                    break
            first = False

            try:
                await self._connect_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.error("Gateway session crashed", exc_info=True)

    async def _connect_once(self) -> None:
        # The previous session is closed by now; install its replacement.
        session = GatewaySession(self.endpoint, send_timeout=self.send_timeout)
        session.state = SessionState.CONNECTING
        self._session = session
        self.attempts += 1

        logger.info("Connecting to gateway")
        try:
            ws = await self._connector(self.endpoint)
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as exc:
            logger.error(f"Could not connect to gateway: {exc!r}")
            await session.close()
            return

        AppMetrics.gateway_connected()
        try:
            await session.run(ws)
        finally:
            AppMetrics.gateway_disconnected()

    async def send(self, command: str, content: Any) -> dict[str, Any]:
        session = self._session
        if session is None:
            return not_connected_reply()
        return await session.send(command, content)

    async def send_message(self, type: str, target: Any, message: Message) -> dict[str, Any]:
        session = self._session
        if session is None or not session.is_ready:
            return not_connected_reply()
        return await session.send_message(type, target, message)
