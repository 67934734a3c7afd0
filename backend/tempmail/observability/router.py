"""Observability API endpoints.

Provides Prometheus metrics and the health check used by container probes.
"""

from fastapi import APIRouter, Depends, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from ..api.dependencies import get_mailroom
from ..lifecycle import Mailroom
from ..schemas import HealthResponse

router = APIRouter(tags=["Observability"])


@router.get(
    "/metrics",
    summary="Prometheus metrics endpoint",
    include_in_schema=False,
)
def metrics(mailroom: Mailroom = Depends(get_mailroom)) -> Response:
    """Expose Prometheus metrics in text exposition format.

    Collecting statistics first refreshes the active mailbox and
    connection gauges.
    """
    mailroom.directory.stats()
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@router.get("/api/health", response_model=HealthResponse, summary="Health check endpoint")
def health_check(mailroom: Mailroom = Depends(get_mailroom)) -> HealthResponse:
    return HealthResponse(
        status="ok",
        domain=mailroom.settings.MAIL_DOMAIN,
        uptime=round(mailroom.uptime, 3),
    )
