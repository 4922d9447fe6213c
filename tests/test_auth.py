# tests/test_auth.py
"""Tests for mirai_webhook/core/auth.py: token and signature checks."""
from __future__ import annotations

import hashlib
import hmac as hmac_mod

import pytest

from mirai_webhook.core.auth import (
    authenticate,
    check_topic_secrets,
    compute_content_signature,
    generate_secure_token,
    validate_token_strength,
)
from mirai_webhook.core.domain import AuthMethod, SecureConfig, Target, Topic
from mirai_webhook.core.errors import ForbiddenOperation


def _topic(method: AuthMethod, secret: str = "secret", topic_id: str = "t") -> Topic:
    return Topic(
        id=topic_id,
        targets=(Target(type="group", number=1),),
        secure=SecureConfig(method=method, secret=secret),
    )


# ============================================================================
# Content signature
# ============================================================================

class TestContentSignature:
    def test_matches_reference_hmac(self):
        expected = hmac_mod.new(b"secret", b"title=T&content=C", hashlib.sha256).hexdigest()
        assert compute_content_signature("T", "C", "secret") == expected

    def test_lower_case_hex(self):
        sig = compute_content_signature("T", "C", "secret")
        assert len(sig) == 64
        assert sig == sig.lower()

    def test_deterministic(self):
        assert compute_content_signature("T", "C", "k") == compute_content_signature("T", "C", "k")

    @pytest.mark.parametrize("args", [("T2", "C", "k"), ("T", "C2", "k"), ("T", "C", "k2")])
    def test_any_input_change_changes_signature(self, args):
        assert compute_content_signature(*args) != compute_content_signature("T", "C", "k")

    def test_unicode_content(self):
        expected = hmac_mod.new(
            "密钥".encode(), "title=标题&content=内容".encode(), hashlib.sha256
        ).hexdigest()
        assert compute_content_signature("标题", "内容", "密钥") == expected


# ============================================================================
# authenticate
# ============================================================================

class TestTokenAuth:
    def test_exact_token_accepted(self):
        authenticate(_topic(AuthMethod.TOKEN, "abc123"), "abc123", None, "t", "c")

    @pytest.mark.parametrize("token", ["abc124", "abc12", "abc1234", "ABC123", "", None])
    def test_other_tokens_rejected(self, token):
        with pytest.raises(ForbiddenOperation) as exc_info:
            authenticate(_topic(AuthMethod.TOKEN, "abc123"), token, None, "t", "c")
        assert exc_info.value.message == "invalid token"
        assert exc_info.value.status_code == 403

    def test_signature_ignored_for_token_topics(self):
        sig = compute_content_signature("t", "c", "abc123")
        with pytest.raises(ForbiddenOperation):
            authenticate(_topic(AuthMethod.TOKEN, "abc123"), None, sig, "t", "c")


class TestSignatureAuth:
    def test_valid_signature_accepted(self):
        sig = compute_content_signature("title", "txt:x|at:1", "k")
        authenticate(_topic(AuthMethod.SIG_KEY, "k"), None, sig, "title", "txt:x|at:1")

    def test_signature_over_other_content_rejected(self):
        sig = compute_content_signature("title", "original", "k")
        with pytest.raises(ForbiddenOperation) as exc_info:
            authenticate(_topic(AuthMethod.SIG_KEY, "k"), None, sig, "title", "tampered")
        assert exc_info.value.message == "invalid signature"

    def test_missing_signature_rejected(self):
        with pytest.raises(ForbiddenOperation):
            authenticate(_topic(AuthMethod.SIG_KEY, "k"), None, None, "t", "c")

    def test_upper_case_signature_rejected(self):
        sig = compute_content_signature("t", "c", "k").upper()
        with pytest.raises(ForbiddenOperation):
            authenticate(_topic(AuthMethod.SIG_KEY, "k"), None, sig, "t", "c")

    def test_token_does_not_satisfy_sig_topics(self):
        with pytest.raises(ForbiddenOperation):
            authenticate(_topic(AuthMethod.SIG_KEY, "k"), "k", None, "t", "c")


# ============================================================================
# Secret strength
# ============================================================================

class TestSecretStrength:
    def test_strong_secret_no_warnings(self):
        assert validate_token_strength("aB3cD5eF7gH9iJ1kL3mN5oP7qR9sT1uX", "S") == []

    def test_short_secret_warning(self):
        warnings = validate_token_strength("shortAa1", "S")
        assert any("too short" in w for w in warnings)

    def test_weak_pattern_warning(self):
        warnings = validate_token_strength("A1" * 20 + "password", "S")
        assert any("weak pattern" in w for w in warnings)

    def test_check_topic_secrets_counts_warnings(self, caplog):
        topics = [
            _topic(AuthMethod.TOKEN, "aB3cD5eF7gH9iJ1kL3mN5oP7qR9sT1uX", "strong"),
            _topic(AuthMethod.TOKEN, "weak", "weak"),
        ]
        with caplog.at_level("WARNING"):
            count = check_topic_secrets(topics)
        assert count > 0
        assert "'weak'" in caplog.text
        assert "'strong'" not in caplog.text

    def test_generated_secret_length_and_uniqueness(self):
        token = generate_secure_token()
        assert len(token) >= 32
        assert generate_secure_token() != token
