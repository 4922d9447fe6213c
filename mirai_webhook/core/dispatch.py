# mirai_webhook/core/dispatch.py
"""
Topic lookup and per-target fan-out.

Workflow: topic lookup -> authentication -> message build -> one send per
target -> aggregated outcome.

Lookup and authentication failures abort before anything is sent. Failed
sends do not: they are collected into ``DispatchOutcome.failures`` and the
dispatch still succeeds.
"""
from __future__ import annotations

import time
from datetime import datetime
from typing import Callable, Iterable, Iterator

from mirai_webhook.core.auth import authenticate
from mirai_webhook.core.domain import (
    At,
    DispatchOutcome,
    FailedTarget,
    Message,
    Target,
    TargetType,
    Topic,
)
from mirai_webhook.core.errors import ForbiddenOperation, NotFound
from mirai_webhook.core.ports import MessageGateway
from mirai_webhook.core.segments import build_message
from mirai_webhook.infra.logging_config import get_logger, LogContext
from mirai_webhook.infra.metrics import AppMetrics

logger = get_logger(__name__)

SUPPORTED_TARGET_TYPES = frozenset(t.value for t in TargetType)


class TopicRegistry:
    """Read-only topic mapping, built once at startup."""

    def __init__(self, topics: Iterable[Topic] = ()):
        self._topics: dict[str, Topic] = {}
        for topic in topics:
            if topic.id in self._topics:
                logger.warning(f"Duplicate topic id {topic.id!r}: the later definition wins")
            self._topics[topic.id] = topic

    def get(self, topic_id: str | None) -> Topic | None:
        if not topic_id:
            return None
        return self._topics.get(topic_id)

    def __contains__(self, topic_id: object) -> bool:
        return topic_id in self._topics

    def __iter__(self) -> Iterator[Topic]:
        return iter(self._topics.values())

    def __len__(self) -> int:
        return len(self._topics)


def message_for_target(base: Message, target: Target) -> Message:
    """The shared message plus this target's own mentions."""
    return base + tuple(At(number) for number in target.at)


class Dispatcher:
    """
    Application service: deliver one notification to every target of a topic.
    """

    def __init__(
        self,
        *,
        topics: TopicRegistry,
        gateway: MessageGateway,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.topics = topics
        self.gateway = gateway
        self.clock = clock

    def get_topic(self, topic_id: str | None) -> Topic:
        topic = self.topics.get(topic_id)
        if topic is None:
            raise NotFound("topic not found")
        return topic

    async def dispatch(
        self,
        topic_id: str,
        title: str,
        content: str,
        token: str | None = None,
        sig: str | None = None,
    ) -> DispatchOutcome:
        """
        Raises:
            NotFound: unknown topic
            ForbiddenOperation: bad token or signature
        """
        start = time.monotonic()
        topic = self.get_topic(topic_id)
        log_ctx = LogContext(logger, topic_id=topic.id)

        try:
            authenticate(topic, token, sig, title, content)
        except ForbiddenOperation:
            AppMetrics.auth_failed(topic.id)
            raise

        base = build_message(title, content, self.clock())
        failures: list[FailedTarget] = []

        for target in topic.targets:
            failure = await self._send_to_target(base, target, log_ctx)
            if failure is not None:
                failures.append(failure)

        total = len(topic.targets)
        elapsed_ms = int((time.monotonic() - start) * 1000)
        outcome = DispatchOutcome(
            total_targets=total,
            succeeded=total - len(failures),
            failures=tuple(failures),
            elapsed_ms=elapsed_ms,
        )

        AppMetrics.dispatch_completed(topic.id, outcome.succeeded, len(failures), elapsed_ms)
        log_ctx.info(
            f"Dispatch complete: targets={total}, done={outcome.succeeded}, "
            f"failed={len(failures)}, cost={elapsed_ms}ms"
        )
        return outcome

    async def _send_to_target(self, base: Message, target: Target, log_ctx: LogContext) -> FailedTarget | None:
        if target.type not in SUPPORTED_TARGET_TYPES:
            reason = f"unknown target type: {target.type}"
            log_ctx.error(reason, extra={"target": target.number})
            return FailedTarget(target=target.number, reason=reason, code=500)

        message = message_for_target(base, target)
        result = await self.gateway.send_message(target.type, target.number, message)

        code = result.get("code", 500)
        if code != 0:
            reason = result.get("msg") or "unknown error"
            log_ctx.warning(f"Send failed: code={code}, reason={reason}", extra={"target": target.number})
            return FailedTarget(target=target.number, reason=reason, code=code)
        return None
