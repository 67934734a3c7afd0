"""aiosmtpd adapter for the mail ingestion gateway.

Each inbound connection gets its own ``IngestionSession``. The handler hooks
below only translate aiosmtpd callbacks into state machine transitions and
copy accepted values onto the envelope, which aiosmtpd requires.

The server runs on the application's event loop (not in a Controller
thread), so delivery to WebSocket channels needs no cross-thread hand-off.
"""

import asyncio
from typing import List, Optional

from aiosmtpd.smtp import SMTP, Envelope, Session

from .config import Settings
from .directory import MailboxDirectory
from .gateway import TEMPORARY_FAILURE, IngestionSession, Stage
from .notifier import PushNotifier
from .observability import metrics
from .observability.logging_config import get_logger
from .observability.request_id import generate_request_id, set_request_id

logger = get_logger(__name__)


class MailIngestionHandler:
    """aiosmtpd handler delegating every decision to the connection's IngestionSession.

    Args:
        directory: Mailbox directory
        notifier: Push notifier
        mail_domain: Domain accepted at RCPT time
    """

    def __init__(self, directory: MailboxDirectory, notifier: PushNotifier, mail_domain: str):
        self.directory = directory
        self.notifier = notifier
        self.mail_domain = mail_domain

    def new_session(self) -> IngestionSession:
        return IngestionSession(self.directory, self.notifier, self.mail_domain)

    async def handle_MAIL(
        self,
        server: "GatewaySMTP",
        session: Session,
        envelope: Envelope,
        address: str,
        mail_options: List[str],
    ) -> str:
        reply = server.ingest.mail_from(address)
        if reply.accepted:
            envelope.mail_from = address
            envelope.mail_options.extend(mail_options)
        return str(reply)

    async def handle_RCPT(
        self,
        server: "GatewaySMTP",
        session: Session,
        envelope: Envelope,
        address: str,
        rcpt_options: List[str],
    ) -> str:
        reply = server.ingest.rcpt_to(address)
        if reply.accepted:
            envelope.rcpt_tos.append(address)
            envelope.rcpt_options.extend(rcpt_options)
        return str(reply)

    async def handle_RSET(self, server: "GatewaySMTP", session: Session, envelope: Envelope) -> str:
        return str(server.ingest.reset())

    async def handle_DATA(self, server: "GatewaySMTP", session: Session, envelope: Envelope) -> str:
        """Handle email DATA command.

        Returns:
            str: SMTP response line
                '250 ...' - accepted (possibly delivered to no one)
                '503 ...' - no accepted recipients
                '554 ...' - message could not be parsed
                '451 ...' - unexpected processing failure
        """
        content = envelope.content
        if isinstance(content, str):
            content = content.encode("utf-8", errors="surrogateescape")
        try:
            reply = await server.ingest.data(content or b"")
        except Exception as e:
            logger.error(f"Unexpected error processing email: {e}", exc_info=True)
            metrics.smtp_transfers_total.labels(status="error").inc()
            return str(TEMPORARY_FAILURE)
        return str(reply)


class GatewaySMTP(SMTP):
    """SMTP protocol that owns one IngestionSession per connection."""

    def __init__(self, handler: MailIngestionHandler, **kwargs):
        self.ingest_handler = handler
        self.ingest: Optional[IngestionSession] = None
        super().__init__(handler, **kwargs)

    def _set_post_data_state(self) -> None:
        # aiosmtpd drops the envelope after every DATA outcome (250, 451, 552,
        # 500) and, through _set_rset_state, on HELO/EHLO/RSET. The session
        # must forget the transaction at the same points.
        super()._set_post_data_state()
        if self.ingest is not None and self.ingest.stage not in (None, Stage.CLOSED):
            self.ingest.reset()

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        # Set before super(): the client task aiosmtpd creates inherits this context
        set_request_id(generate_request_id("smtp"))
        self.ingest = self.ingest_handler.new_session()
        super().connection_made(transport)
        peer = transport.get_extra_info("peername")
        self.ingest.connect(f"{peer[0]}:{peer[1]}" if peer else None)

    def connection_lost(self, error: Optional[Exception]) -> None:
        try:
            super().connection_lost(error)
        finally:
            if self.ingest is not None:
                self.ingest.close()


async def start_smtp_server(
    settings: Settings,
    directory: MailboxDirectory,
    notifier: PushNotifier,
) -> asyncio.AbstractServer:
    """Start the SMTP listener on the running event loop.

    No AUTH and no STARTTLS are offered: the gateway accepts plain SMTP
    from any host and relies on recipient validation alone.
    """
    handler = MailIngestionHandler(directory, notifier, settings.MAIL_DOMAIN)

    def protocol_factory() -> GatewaySMTP:
        return GatewaySMTP(
            handler,
            hostname=settings.MAIL_DOMAIN,
            ident="Temporary Mail Server",
            data_size_limit=settings.SMTP_MAX_SIZE,
            timeout=settings.SMTP_TIMEOUT,
            enable_SMTPUTF8=True,
        )

    loop = asyncio.get_running_loop()
    server = await loop.create_server(
        protocol_factory,
        host=settings.SMTP_HOST,
        port=settings.SMTP_PORT,
    )
    bound = ", ".join(
        f"{sock.getsockname()[0]}:{sock.getsockname()[1]}" for sock in server.sockets
    )
    logger.info(f"SMTP server listening on {bound}, accepting mail for @{settings.MAIL_DOMAIN}")
    return server
