# mirai_webhook/core/ports.py
from __future__ import annotations
from typing import Any, Protocol

from mirai_webhook.core.domain import Message


class MessageGateway(Protocol):
    async def send_message(self, type: str, target: Any, message: Message) -> dict[str, Any]:
        """
        Deliver one message chain. Returns the gateway reply:
        ``{"code": 0, ...}`` on success, ``{"code": <nonzero>, "msg": ...}`` otherwise.
        Never raises for delivery problems.
        """
        ...
