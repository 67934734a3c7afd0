"""Mail ingestion gateway: one state machine per inbound SMTP connection.

Stages::

    CONNECTED -> SENDER_SET -> RECIPIENTS_ACCEPTED -> DATA_RECEIVED -> CLOSED
        ^                                                   |
        +------------------ next MAIL FROM -----------------+

Every transition is a method returning a ``Reply``; the transport adapter
(``smtp_handler``) only relays replies and never decides anything itself.
Recipients are authorized twice: against ``exists`` at RCPT time and again
through ``record_message`` once DATA has been parsed, because a mailbox can
expire while the body is still streaming.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional

from .directory import MailboxDirectory
from .mail_parser import MailParseError, ParsedMail, parse_mail
from .notifier import PushNotifier
from .observability import metrics
from .observability.logging_config import get_logger
from .schemas import Message

logger = get_logger(__name__)

DEFAULT_FROM = "unknown"
DEFAULT_SUBJECT = "(no subject)"


class Stage(str, Enum):
    CONNECTED = "connected"
    SENDER_SET = "sender_set"
    RECIPIENTS_ACCEPTED = "recipients_accepted"
    DATA_RECEIVED = "data_received"
    CLOSED = "closed"


@dataclass(frozen=True)
class Reply:
    """SMTP reply line; ``str(reply)`` is what goes on the wire."""
    code: int
    text: str

    @property
    def accepted(self) -> bool:
        return self.code < 400

    def __str__(self) -> str:
        return f"{self.code} {self.text}"


OK = Reply(250, "OK")
MESSAGE_ACCEPTED = Reply(250, "Message accepted for delivery")
BAD_SEQUENCE = Reply(503, "5.5.1 Bad sequence of commands")
NO_RECIPIENTS = Reply(503, "5.5.1 No valid recipients")
WRONG_DOMAIN = Reply(550, "5.1.1 We do not serve this domain")
UNKNOWN_MAILBOX = Reply(550, "5.1.1 Mailbox does not exist or has expired")
UNPARSEABLE = Reply(554, "5.6.0 Message could not be parsed")
TEMPORARY_FAILURE = Reply(451, "4.3.0 Temporary server error")


def split_address(address: str) -> Optional[tuple]:
    """Split ``local@domain``; None when either side is missing."""
    local, sep, domain = (address or "").strip().rpartition("@")
    if not sep or not local or not domain:
        return None
    return local, domain.lower()


def build_message(parsed: ParsedMail, message_id: str) -> Message:
    return Message(
        id=message_id,
        from_=parsed.from_ or DEFAULT_FROM,
        subject=parsed.subject or DEFAULT_SUBJECT,
        text=parsed.text or "",
        html=parsed.html or "",
        attachments=[att.to_attachment() for att in parsed.attachments],
        received_at=datetime.now(timezone.utc),
    )


class IngestionSession:
    """Per-connection SMTP state machine.

    Args:
        directory: Mailbox directory consulted for every recipient
        notifier: Push path for accepted messages
        mail_domain: The only domain recipients may belong to
        parser: Raw DATA bytes -> ParsedMail, raising MailParseError
        id_factory: Produces a fresh message id per delivered copy
    """

    def __init__(
        self,
        directory: MailboxDirectory,
        notifier: PushNotifier,
        mail_domain: str,
        parser: Callable[[bytes], ParsedMail] = parse_mail,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ):
        self.directory = directory
        self.notifier = notifier
        self.mail_domain = mail_domain.lower()
        self.parser = parser
        self.id_factory = id_factory

        self.stage: Optional[Stage] = None
        self.peer: Optional[str] = None
        self.sender: Optional[str] = None
        self.recipients: List[str] = []

    def connect(self, peer: Optional[str] = None) -> Reply:
        """Any remote host may connect; no authentication is offered."""
        if self.stage is not None:
            return BAD_SEQUENCE
        self.peer = peer
        self.stage = Stage.CONNECTED
        logger.info(f"Connection from {peer}", extra={"peer": peer})
        return OK

    def mail_from(self, sender: str) -> Reply:
        """Sender identity is neither authenticated nor restricted.

        Starts a new transaction from any open stage, dropping whatever the
        previous one had collected.
        """
        if self.stage in (None, Stage.CLOSED):
            return BAD_SEQUENCE
        self.sender = sender
        self.recipients = []
        self.stage = Stage.SENDER_SET
        logger.info(f"MAIL FROM: {sender or '<>'}")
        return OK

    def rcpt_to(self, recipient: str) -> Reply:
        if self.stage not in (Stage.SENDER_SET, Stage.RECIPIENTS_ACCEPTED):
            return BAD_SEQUENCE

        parts = split_address(recipient)
        if parts is None or parts[1] != self.mail_domain:
            logger.warning(f"Rejected RCPT {recipient}: domain not served", extra={"address": recipient})
            metrics.smtp_recipients_rejected_total.labels(reason="domain").inc()
            return WRONG_DOMAIN

        address = f"{parts[0]}@{parts[1]}"
        if not self.directory.exists(address):
            logger.warning(f"Rejected RCPT {address}: mailbox not found or expired", extra={"address": address})
            metrics.smtp_recipients_rejected_total.labels(reason="mailbox").inc()
            return UNKNOWN_MAILBOX

        if address not in self.recipients:
            self.recipients.append(address)
        self.stage = Stage.RECIPIENTS_ACCEPTED
        logger.info(f"RCPT TO: {address}", extra={"address": address})
        return OK

    def reset(self) -> Reply:
        """RSET: abort the current transaction, keep the connection."""
        if self.stage in (None, Stage.CLOSED):
            return BAD_SEQUENCE
        self.sender = None
        self.recipients = []
        self.stage = Stage.CONNECTED
        return OK

    async def data(self, content: bytes) -> Reply:
        """Parse the transferred content and push it to each live recipient.

        A recipient whose mailbox expired since RCPT is skipped without
        failing the transfer. A parse failure rejects the whole transfer
        before any recipient is touched.
        """
        if self.stage == Stage.SENDER_SET:
            metrics.smtp_transfers_total.labels(status="no_recipients").inc()
            return NO_RECIPIENTS
        if self.stage != Stage.RECIPIENTS_ACCEPTED:
            return BAD_SEQUENCE

        recipients = list(self.recipients)
        self.sender = None
        self.recipients = []

        try:
            parsed = self.parser(content)
        except MailParseError as e:
            logger.error(f"Failed to parse email: {e}")
            metrics.smtp_transfers_total.labels(status="parse_error").inc()
            self.stage = Stage.CONNECTED
            return UNPARSEABLE

        logger.info(
            f"Processing email from {parsed.from_ or DEFAULT_FROM}, "
            f"subject={parsed.subject or DEFAULT_SUBJECT!r}, recipients={len(recipients)}",
            extra={"recipients": len(recipients)},
        )

        for address in recipients:
            if not self.directory.record_message(address):
                logger.info(
                    f"Mailbox {address} expired before delivery, skipping",
                    extra={"address": address},
                )
                continue
            message = build_message(parsed, self.id_factory())
            await self.notifier.deliver(address, message)

        self.stage = Stage.DATA_RECEIVED
        metrics.smtp_transfers_total.labels(status="accepted").inc()
        return MESSAGE_ACCEPTED

    def close(self) -> None:
        if self.stage != Stage.CLOSED:
            logger.info(f"Connection closed from {self.peer}", extra={"peer": self.peer})
        self.stage = Stage.CLOSED
        self.sender = None
        self.recipients = []
