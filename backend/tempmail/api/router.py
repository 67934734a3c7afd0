"""Mailbox API endpoints.

- POST /api/email/generate: provision a mailbox (optionally with a prefix)
- GET  /api/email/{address}: session info for a live mailbox
- GET  /api/stats: aggregate counters
"""

from typing import Optional

from fastapi import APIRouter, Body, Depends

from ..errors import MailboxNotFoundError, PrefixValidationError
from ..lifecycle import Mailroom
from ..observability.logging_config import get_logger
from ..schemas import (
    ErrorResponse,
    GenerateEmailRequest,
    GenerateEmailResponse,
    MailboxResponse,
    StatsResponse,
    to_epoch_ms,
)
from ..validation import validate_prefix
from .dependencies import default_rate_limit, generate_rate_limit, get_mailroom

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["Mailbox"])


@router.post(
    "/email/generate",
    response_model=GenerateEmailResponse,
    responses={400: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
    dependencies=[Depends(generate_rate_limit)],
)
def generate_email(
    body: Optional[GenerateEmailRequest] = Body(None),
    mailroom: Mailroom = Depends(get_mailroom),
) -> GenerateEmailResponse:
    """Provision a mailbox.

    A prefix is validated before the directory is touched. Requesting an
    existing prefix restarts that mailbox's expiry clock.
    """
    prefix = body.prefix if body else None
    result = validate_prefix(prefix, mailroom.settings.prefix_blacklist)
    if not result.valid:
        raise PrefixValidationError(result.error or "Invalid email prefix")

    address = mailroom.directory.create(result.prefix)
    session = mailroom.directory.get(address)
    if session is None:
        # Only reachable with a clock jump larger than the expiry
        raise MailboxNotFoundError(address)

    return GenerateEmailResponse(email=address, expires_at=to_epoch_ms(session.expires_at))


@router.get(
    "/email/{address}",
    response_model=MailboxResponse,
    responses={404: {"model": ErrorResponse}},
    dependencies=[Depends(default_rate_limit)],
)
def get_mailbox(address: str, mailroom: Mailroom = Depends(get_mailroom)) -> MailboxResponse:
    session = mailroom.directory.get(address)
    if session is None:
        raise MailboxNotFoundError(address)
    return MailboxResponse.from_session(session)


@router.get(
    "/stats",
    response_model=StatsResponse,
    dependencies=[Depends(default_rate_limit)],
)
def get_stats(mailroom: Mailroom = Depends(get_mailroom)) -> StatsResponse:
    return mailroom.directory.stats().to_response()
