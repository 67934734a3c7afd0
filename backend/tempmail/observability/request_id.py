"""Correlation IDs for log lines.

HTTP requests reuse the caller's ``X-Request-ID`` or get a fresh UUID. SMTP
connections and WebSocket channels are long-lived, so they get a short
prefixed id (``smtp-…``, ``ws-…``) that stays set for the whole connection.
"""

import uuid
from contextvars import ContextVar, Token
from typing import Optional

NO_REQUEST_ID = "no-request-id"

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def generate_request_id(kind: Optional[str] = None) -> str:
    """New correlation id.

    Args:
        kind: Connection kind used as prefix; None yields a bare UUID4

    Returns:
        str: ``<uuid4>`` or ``<kind>-<12 hex chars>``
    """
    if kind is None:
        return str(uuid.uuid4())
    return f"{kind}-{uuid.uuid4().hex[:12]}"


def get_request_id() -> str:
    return request_id_var.get() or NO_REQUEST_ID


def set_request_id(request_id: Optional[str]) -> Token:
    """Bind ``request_id`` to the current context.

    Returns:
        Token: Pass to ``reset_request_id`` to restore the previous value
    """
    return request_id_var.set(request_id)


def reset_request_id(token: Token) -> None:
    request_id_var.reset(token)
