"""FastAPI dependencies resolving the per-application Mailroom.

The Mailroom lives on ``app.state`` and is injected into handlers, so tests
and multiple app instances never share directory state.
"""

from fastapi import Depends, Request

from ..lifecycle import Mailroom


def get_mailroom(request: Request) -> Mailroom:
    return request.app.state.mailroom


def generate_rate_limit(request: Request, mailroom: Mailroom = Depends(get_mailroom)) -> None:
    """Stricter limit for mailbox creation.

    Raises:
        RateLimitExceededError: When the client IP is over the limit
    """
    mailroom.generate_limiter.check(request)


def default_rate_limit(request: Request, mailroom: Mailroom = Depends(get_mailroom)) -> None:
    mailroom.default_limiter.check(request)
