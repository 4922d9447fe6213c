# mirai_webhook/infra/logging_config.py
import logging
import sys
import json
from datetime import datetime, timezone

_CONTEXT_FIELDS = ("topic_id", "target", "request_id", "trace_id")


class JSONFormatter(logging.Formatter):
    """Format logs as JSON for production environments"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for name in _CONTEXT_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        return json.dumps(log_data)


class ConsoleFormatter(logging.Formatter):
    """Human-readable format for development"""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
        "RESET": "\033[0m",
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.COLORS["RESET"])
        reset = self.COLORS["RESET"]

        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")

        context_parts = []
        if hasattr(record, "topic_id"):
            context_parts.append(f"topic={record.topic_id}")
        if hasattr(record, "target"):
            context_parts.append(f"target={record.target}")
        if hasattr(record, "trace_id"):
            context_parts.append(f"trace={record.trace_id}")

        context = f" [{' '.join(context_parts)}]" if context_parts else ""

        return (
            f"{color}[{timestamp}] {record.levelname:8}{reset} "
            f"{record.name}{context} - {record.getMessage()}"
        )


class ErrorFileFormatter(logging.Formatter):
    """
    Multi-line entries for the error log file.

    Internal errors are answered with only a trace id; this file is where
    the id is matched back to the exception.
    """

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")
        lines = [f"[{timestamp}] [{record.levelname}] {record.name} - {record.getMessage()}"]

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            lines.append(f"  type:{type(exc).__name__}")
            lines.append(f"  message:{exc}")
            lines.append("  stack:" + self.formatException(record.exc_info).replace("\n", "\n    "))

        lines.append(f"  traceId:{getattr(record, 'trace_id', None)}")
        return "\n".join(lines)


def setup_logging(level: str = "INFO", use_json: bool = False, error_log_file: str | None = None) -> None:
    """
    Configure application logging

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        use_json: If True, use JSON format (for production)
        error_log_file: If set, ERROR records are also appended to this file
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)

    if use_json:
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(ConsoleFormatter())

    root_logger.addHandler(console_handler)

    if error_log_file:
        file_handler = logging.FileHandler(error_log_file, encoding="utf-8", delay=True)
        file_handler.setLevel(logging.ERROR)
        file_handler.setFormatter(ErrorFileFormatter())
        root_logger.addHandler(file_handler)

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)

    logging.info(f"Logging configured: level={level}, json={use_json}, error_log={error_log_file}")


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name"""
    return logging.getLogger(name)


class LogContext:
    """Add context to log records"""

    def __init__(
            self,
            logger: logging.Logger,
            topic_id: str | None = None,
            target: int | None = None,
            request_id: str | None = None,
            trace_id: str | None = None,
    ):
        self.logger = logger
        self.context = {
            k: v for k, v in {
                "topic_id": topic_id,
                "target": target,
                "request_id": request_id,
                "trace_id": trace_id,
            }.items() if v is not None
        }

    def _log(self, level: int, msg: str, *args, **kwargs):
        extra = kwargs.pop("extra", {})
        extra.update(self.context)
        self.logger.log(level, msg, *args, extra=extra, **kwargs)

    def debug(self, msg: str, *args, **kwargs):
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._log(logging.ERROR, msg, *args, **kwargs)
