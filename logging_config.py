"""Centralized logging configuration.

This module provides:
- JSONFormatter for structured logging (one JSON object per line)
- PlainFormatter for local debugging
- setup_logging() to install either on the root logger
"""

import json
import logging
import re
import sys


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(self, service_name: str = None):
        super().__init__()
        self.service_name = service_name or "room-oidc-bridge"

    def format(self, record: logging.LogRecord) -> str:
        # Extract tag from message if present: [TAG] message
        tag = None
        message = record.getMessage()
        tag_match = re.match(r'\[([A-Z_]+)\]\s*(.*)', message, re.DOTALL)
        if tag_match:
            tag = tag_match.group(1)
            message = tag_match.group(2)

        # Build structured log entry
        log_entry = {
            "service": self.service_name,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S%z"),
            "level": record.levelname,
            "tag": tag,
            "message": message,
            "module": record.module,
            "extra": {
                "function": record.funcName,
                "line": record.lineno,
            }
        }

        # Add exception info if present
        if record.exc_info:
            log_entry["extra"]["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry)


class PlainFormatter(logging.Formatter):
    """Plain text formatter for stderr output (local debugging)."""

    def __init__(self):
        super().__init__(
            fmt='%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )


def setup_logging(
    service_name: str = None,
    log_format: str = "plain",
    level: str = "INFO",
) -> logging.Logger:
    """Configure logging on the root logger.

    Args:
        service_name: Service name stamped on JSON log entries.
        log_format: "plain" for human readable lines, "json" for structured.
        level: Root log level name.

    Returns:
        Configured root logger.
    """
    # Get root logger and clear existing handlers
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(level)
    if log_format == "json":
        stderr_handler.setFormatter(JSONFormatter(service_name))
    else:
        stderr_handler.setFormatter(PlainFormatter())
    root_logger.addHandler(stderr_handler)

    # Suppress noisy HTTP client logs (httpx logs every request URL)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info(f"[STARTUP] Logging configured ({log_format}, {level})")

    return root_logger
