# tests/conftest.py
"""Pytest configuration and fixtures"""
import asyncio
import json
import sys
from pathlib import Path
from types import SimpleNamespace

import aiohttp
import pytest

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from mirai_webhook.config import AppConfig  # noqa: E402
from mirai_webhook.infra.gateway_client import SessionState  # noqa: E402


class FakeWebSocket:
    """Stands in for aiohttp.ClientWebSocketResponse: frames are fed by the test."""

    def __init__(self):
        self.sent: list[dict] = []
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send_json(self, data):
        if self.closed:
            raise ConnectionResetError("Cannot write to closing transport")
        self.sent.append(data)

    def feed(self, frame) -> None:
        raw = frame if isinstance(frame, str) else json.dumps(frame)
        self._inbox.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=raw))

    def feed_handshake(self, code: int = 0, session: str = "SESSION-KEY") -> None:
        self.feed({"syncId": "", "data": {"code": code, "session": session}})

    def reply(self, sync_id, data: dict) -> None:
        self.feed({"syncId": sync_id, "data": data})

    def server_close(self) -> None:
        """The gateway hung up."""
        self.closed = True
        self._inbox.put_nowait(None)

    def exception(self):
        return None

    async def close(self):
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        msg = await self._inbox.get()
        if msg is None:
            raise StopAsyncIteration
        return msg


class FakeGateway:
    """MessageGateway double: records calls, answers from a per-target table."""

    def __init__(self, replies: dict | None = None):
        self.replies = replies or {}
        self.calls: list[tuple[str, int, tuple]] = []
        self.started = False
        self.stopped = False
        self.state = SessionState.READY

    async def start(self):
        self.started = True

    async def stop(self):
        self.stopped = True

    async def send_message(self, type, target, message):
        self.calls.append((type, target, message))
        return self.replies.get(target, {"code": 0, "msg": "success", "messageId": len(self.calls)})


async def wait_until(predicate, timeout: float = 1.0) -> None:
    """Yield to the loop until ``predicate()`` holds."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.001)


@pytest.fixture
def gateway_config_dict():
    return {"addr": "ws://127.0.0.1:8081/", "key": "verify-key", "qq": 10001}


@pytest.fixture
def config_dict(gateway_config_dict):
    """Raw config document with one token topic and one signed topic."""
    return {
        "host": "127.0.0.1",
        "port": 8080,
        "wsConfig": gateway_config_dict,
        "topics": [
            {
                "id": "ci",
                "targets": [{"type": "group", "number": 111}],
                "secure": {"method": "token", "secret": "ci-token"},
            },
            {
                "id": "alerts",
                "targets": [
                    {"type": "group", "number": 222, "at": [9001]},
                    {"type": "friend", "number": 333},
                ],
                "secure": {"method": "sigKey", "secret": "sig-secret"},
            },
        ],
    }


@pytest.fixture
def app_config(config_dict) -> AppConfig:
    return AppConfig.model_validate(config_dict)


@pytest.fixture
def fake_gateway():
    return FakeGateway()
