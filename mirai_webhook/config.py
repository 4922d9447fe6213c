# mirai_webhook/config.py
"""
Process configuration.

Two layers:

- ``Settings`` -- process knobs from environment variables / ``.env``
  (log level, where the config document lives, reconnect delay...).
- ``AppConfig`` -- the JSON config document read once at startup
  (listen address, gateway connection, topics).

Example ``config.json``::

    {
      "host": "0.0.0.0",
      "port": 8080,
      "wsConfig": {"addr": "ws://127.0.0.1:8080/", "key": "verify-key", "qq": 10001},
      "topics": [
        {
          "id": "alerts",
          "targets": [{"type": "group", "number": 123456, "at": [10001]}],
          "secure": {"method": "sigKey", "secret": "..."}
        }
      ]
    }
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Iterable, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from mirai_webhook.core.domain import AuthMethod, SecureConfig, Target, Topic
from mirai_webhook.infra.logging_config import get_logger

logger = get_logger(__name__)


class ConfigError(Exception):
    """The config document is missing or malformed (fatal at startup)."""


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: Literal["dev", "staging", "prod"] = "dev"
    log_level: str = "INFO"
    config_file: str = "config.json"

    # Logging
    error_log_file: str | None = "errors.log"  # ERROR records with tracebacks; empty disables
    enable_request_logging: bool = True

    # Gateway
    reconnect_delay_seconds: float = 10.0
    send_timeout_seconds: float | None = None  # None = wait for the reply until the socket closes

    # Metrics
    metrics_token: str | None = None  # when set, GET /metrics requires "Authorization: Bearer <token>"

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"


# ---------------------------------------------------------------------------
# Config document
# ---------------------------------------------------------------------------

class GatewayConfig(BaseModel):
    """Gateway connection (``wsConfig``). Completeness is checked by the client."""
    addr: str | None = None
    key: str | None = None
    qq: int | None = None


class SecureConfigModel(BaseModel):
    method: Literal["token", "sigKey"]
    secret: str = Field(min_length=1)


class TargetConfig(BaseModel):
    # Kept as a plain string: unsupported types are reported per dispatch.
    type: str
    number: int
    at: list[int] = Field(default_factory=list)


class TopicConfig(BaseModel):
    id: str | None = None
    targets: list[TargetConfig] = Field(default_factory=list)
    secure: SecureConfigModel


class AppConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    host: str = "127.0.0.1"
    port: int = 8080
    ws_config: GatewayConfig = Field(default_factory=GatewayConfig, alias="wsConfig")
    topics: list[TopicConfig] = Field(default_factory=list)


def load_config(path: str | Path) -> AppConfig:
    """Read and validate the JSON config document."""
    config_path = Path(path)
    try:
        raw = json.loads(config_path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigError(f"Config file not found: {config_path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Config file is not valid JSON: {config_path}: {exc}") from exc

    try:
        return AppConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(f"Invalid config document {config_path}: {exc}") from exc


def build_topics(entries: Iterable[TopicConfig]) -> list[Topic]:
    """Convert config entries to domain topics, skipping entries without an id."""
    topics = []
    for entry in entries:
        if not entry.id:
            logger.warning("Skipping topic without an id")
            continue
        topics.append(Topic(
            id=entry.id,
            targets=tuple(
                Target(type=t.type, number=t.number, at=tuple(t.at))
                for t in entry.targets
            ),
            secure=SecureConfig(
                method=AuthMethod(entry.secure.method),
                secret=entry.secure.secret,
            ),
        ))
    return topics


def warn_on_risky_config(s: Settings, config: AppConfig) -> list[str]:
    warnings: list[str] = []

    if not config.topics:
        warnings.append("no topics configured: every webhook call will return NotFound.")

    for index, topic in enumerate(config.topics):
        if not topic.id:
            warnings.append(f"topics[{index}] has no id and will be ignored.")
        elif not topic.targets:
            warnings.append(f"topic {topic.id!r} has no targets.")

    if s.is_production and config.host in ("0.0.0.0", "::") and not s.enable_request_logging:
        warnings.append("prod: listening on all interfaces with request logging disabled.")

    if s.send_timeout_seconds is None:
        warnings.append(
            "send_timeout_seconds is not set: a silent gateway can hold a webhook request open indefinitely."
        )

    return warnings


def validate_or_warn(s: Settings, config: AppConfig) -> None:
    """
    Hard fail on an unusable gateway section, warn on everything else.
    """
    gateway = config.ws_config
    missing = [name for name in ("addr", "key", "qq") if not getattr(gateway, name)]
    if missing:
        raise ConfigError(f"Missing wsConfig fields: {', '.join(missing)}")

    for msg in warn_on_risky_config(s, config):
        print(f"[WARN][config] {msg}")


settings = Settings()
