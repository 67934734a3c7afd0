"""Logging setup: one stdout handler, JSON lines in production.

Every record carries the correlation id of the request or connection that
produced it. Domain fields passed through ``extra=`` (address, peer,
outcome, ...) become top-level JSON keys so log pipelines can filter on a
mailbox without parsing messages.
"""

import json
import logging
import sys
from datetime import datetime, timezone

from .request_id import NO_REQUEST_ID, get_request_id

EXTRA_FIELDS = ("address", "peer", "recipients", "outcome", "status_code", "duration_ms")

# aiosmtpd logs every command at INFO on "mail.log"
QUIET_LOGGERS = ("uvicorn.access", "mail.log")

TEXT_FORMAT = "%(asctime)s - %(levelname)s - %(request_id)s - %(name)s - %(message)s"


class RequestIDFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id()
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record, timestamped from the record itself."""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        log_data = {
            "timestamp": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "request_id": getattr(record, "request_id", NO_REQUEST_ID),
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_data.update(
            {name: getattr(record, name) for name in EXTRA_FIELDS if hasattr(record, name)}
        )

        if record.exc_info:
            log_data["error"] = str(record.exc_info[1])
            log_data["traceback"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def configure_logging(level: str = "INFO", json_format: bool = True) -> None:
    """Replace root handlers with a single stdout handler.

    Args:
        level: Root log level name
        json_format: JSON lines when True, human-readable text otherwise
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level}")

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if json_format else logging.Formatter(TEXT_FORMAT))
    handler.addFilter(RequestIDFilter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(numeric_level)

    # Third-party chatter stays at WARNING unless debugging
    quiet_level = numeric_level if numeric_level <= logging.DEBUG else max(numeric_level, logging.WARNING)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
