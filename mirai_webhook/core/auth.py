# mirai_webhook/core/auth.py
"""
Webhook authentication.

Each topic is protected by exactly one method:

- ``token``  -- the caller sends the shared secret as ``token``.
- ``sigKey`` -- the caller sends ``sig`` = HMAC-SHA256(secret,
  ``"title=<title>&content=<content>"``), hex encoded. The secret never
  travels over the wire.

Both checks use constant-time comparison.
"""
from __future__ import annotations

import hashlib
import hmac
import secrets
from typing import Iterable

from mirai_webhook.core.domain import AuthMethod, Topic
from mirai_webhook.core.errors import ForbiddenOperation
from mirai_webhook.infra.logging_config import get_logger

logger = get_logger(__name__)

# Minimum secret length for security (32 chars)
MIN_TOKEN_LENGTH = 32
WEAK_TOKEN_PATTERNS = [
    "password", "secret", "token", "admin", "test", "demo",
    "123456", "000000", "111111", "aaaaaa",
]


def validate_token_strength(token: str, token_name: str = "token") -> list[str]:
    """
    Validate that a secret meets minimum security requirements.
    Returns list of warnings (empty if the secret is strong).

    Checks:
    - Minimum length (32 chars)
    - Not a common weak pattern
    - Has reasonable entropy (mix of characters)
    """
    warnings = []

    if len(token) < MIN_TOKEN_LENGTH:
        warnings.append(
            f"{token_name} is too short ({len(token)} chars). "
            f"Minimum recommended: {MIN_TOKEN_LENGTH} chars"
        )

    token_lower = token.lower()
    for pattern in WEAK_TOKEN_PATTERNS:
        if pattern in token_lower:
            warnings.append(
                f"{token_name} contains weak pattern '{pattern}'. "
                "Use a cryptographically random token"
            )
            break

    has_upper = any(c.isupper() for c in token)
    has_lower = any(c.islower() for c in token)
    has_digit = any(c.isdigit() for c in token)

    if not (has_upper and has_lower and has_digit):
        warnings.append(
            f"{token_name} has low character diversity. "
            "Recommended: mix of uppercase, lowercase, and numbers"
        )

    return warnings


def generate_secure_token(length: int = 32) -> str:
    """URL-safe random secret suitable for a topic's ``secure.secret``."""
    return secrets.token_urlsafe(length)


def check_topic_secrets(topics: Iterable[Topic]) -> int:
    """
    Log a warning for every topic with a weak secret. Call at startup.

    Returns the number of warnings logged.
    """
    count = 0
    for topic in topics:
        for warning in validate_token_strength(topic.secure.secret, f"topic {topic.id!r} secret"):
            logger.warning(f"SECURITY: {warning}")
            count += 1
    return count


# =============================================================================
# Content signing
# =============================================================================

def compute_content_signature(title: str, content: str, secret: str) -> str:
    """
    Lower-case hex HMAC-SHA256 of ``title=<title>&content=<content>``.

    Args:
        title: Notification title, exactly as sent
        content: Raw content string, exactly as sent (before parsing)
        secret: The topic's ``secure.secret``
    """
    signing_string = f"title={title}&content={content}"
    return hmac.new(
        secret.encode(),
        signing_string.encode(),
        hashlib.sha256
    ).hexdigest()


def authenticate(
    topic: Topic,
    token: str | None,
    sig: str | None,
    title: str,
    content: str,
) -> None:
    """
    Check the caller's credentials against the topic's secure config.

    Raises:
        ForbiddenOperation: token or signature missing or wrong
    """
    secure = topic.secure

    if secure.method == AuthMethod.TOKEN:
        if token is None or not hmac.compare_digest(token.encode(), secure.secret.encode()):
            logger.warning(f"Invalid token for topic {topic.id!r}")
            raise ForbiddenOperation("invalid token")
        return

    if secure.method == AuthMethod.SIG_KEY:
        expected = compute_content_signature(title, content, secure.secret)
        if sig is None or not hmac.compare_digest(sig.encode(), expected.encode()):
            logger.warning(f"Invalid signature for topic {topic.id!r}")
            raise ForbiddenOperation("invalid signature")
        return

    raise ForbiddenOperation(f"unsupported auth method: {secure.method}")
