# mirai_webhook/__main__.py
"""
Run the bridge: ``python -m mirai_webhook``

Reads ``config.json`` (or ``CONFIG_FILE``), refuses to start on an
incomplete gateway section, then serves with uvicorn. Ctrl+C / SIGTERM
close the gateway socket before the process exits.
"""
import sys

import uvicorn

from mirai_webhook.config import ConfigError, load_config, settings, validate_or_warn
from mirai_webhook.infra.gateway_client import GatewayConfigError
from mirai_webhook.infra.logging_config import get_logger, setup_logging
from mirai_webhook.transport.http_app import create_app

logger = get_logger(__name__)


def main() -> int:
    setup_logging(
        level=settings.log_level,
        use_json=settings.is_production,
        error_log_file=settings.error_log_file or None,
    )

    try:
        config = load_config(settings.config_file)
        validate_or_warn(settings, config)
        app = create_app(config, app_settings=settings)
    except (ConfigError, GatewayConfigError) as exc:
        logger.critical(f"Refusing to start: {exc}")
        return 1

    uvicorn.run(
        app,
        host=config.host,
        port=config.port,
        log_level=settings.log_level.lower(),
        access_log=False,  # RequestLoggingMiddleware logs every request
        server_header=False,
        date_header=False,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
