# mirai_webhook/core/domain.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union


# ============================================================================
# TOPICS
# ============================================================================

class AuthMethod(str, Enum):
    TOKEN = "token"
    SIG_KEY = "sigKey"


class TargetType(str, Enum):
    """Recipient kinds the gateway can deliver to."""
    FRIEND = "friend"
    GROUP = "group"


@dataclass(frozen=True)
class SecureConfig:
    method: AuthMethod
    secret: str


@dataclass(frozen=True)
class Target:
    """
    One recipient of a topic.

    ``type`` stays the configured string: an unsupported value is a
    per-dispatch failure, not a load error.
    """
    type: str
    number: int
    at: tuple[int, ...] = ()


@dataclass(frozen=True)
class Topic:
    id: str
    targets: tuple[Target, ...]
    secure: SecureConfig


# ============================================================================
# MESSAGE SEGMENTS
# ============================================================================

def is_decimal_number(value: str) -> bool:
    """ASCII digits only: `'²'.isdigit()` is True but `int('²')` raises."""
    value = value.strip()
    return value.isascii() and value.isdigit()


@dataclass(frozen=True)
class Text:
    text: str

    def to_chain(self) -> dict[str, Any]:
        return {"type": "Plain", "text": self.text}


@dataclass(frozen=True)
class Image:
    url: str

    def to_chain(self) -> dict[str, Any]:
        return {"type": "Image", "url": self.url}


@dataclass(frozen=True)
class At:
    target: Union[str, int]

    def to_chain(self) -> dict[str, Any]:
        target = self.target
        if isinstance(target, str) and is_decimal_number(target):
            target = int(target)
        return {"type": "At", "target": target}


@dataclass(frozen=True)
class AtAll:
    def to_chain(self) -> dict[str, Any]:
        return {"type": "AtAll"}


@dataclass(frozen=True)
class Face:
    """Emoticon. ``face_id`` wins over ``name`` on the gateway side."""
    face_id: Optional[int] = None
    name: Optional[str] = None

    def to_chain(self) -> dict[str, Any]:
        chain: dict[str, Any] = {"type": "Face"}
        if self.face_id is not None:
            chain["faceId"] = self.face_id
        if self.name is not None:
            chain["name"] = self.name
        return chain


Segment = Union[Text, Image, At, AtAll, Face]
Message = tuple[Segment, ...]


def message_chain(message: Message) -> list[dict[str, Any]]:
    """Render a message as the gateway's ``messageChain`` list."""
    return [segment.to_chain() for segment in message]


# ============================================================================
# DISPATCH OUTCOME
# ============================================================================

@dataclass(frozen=True)
class FailedTarget:
    target: int
    reason: str
    code: int


@dataclass(frozen=True)
class DispatchOutcome:
    """
    Result of fanning one notification out to a topic's targets.

    Partial failure is data: ``failures`` lists every target that did not
    get the message, the dispatch itself still succeeded.
    """
    total_targets: int
    succeeded: int
    failures: tuple[FailedTarget, ...] = field(default_factory=tuple)
    elapsed_ms: int = 0
