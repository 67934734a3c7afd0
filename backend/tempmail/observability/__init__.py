"""Observability for TempMail: logging, correlation ids, metrics, health."""

from .logging_config import configure_logging, get_logger
from .middleware import RequestIDMiddleware
from .request_id import generate_request_id, get_request_id, reset_request_id, set_request_id

__all__ = [
    "configure_logging",
    "get_logger",
    "RequestIDMiddleware",
    "generate_request_id",
    "get_request_id",
    "set_request_id",
    "reset_request_id",
]
