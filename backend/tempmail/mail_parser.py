"""MIME parser for inbound mail.

Turns raw DATA bytes into the fields a pushed message carries: sender,
subject, text and HTML bodies, and non-inline attachments. Supports RFC 2047
encoded headers and filenames and nested multipart messages.
"""

import base64
import email
import email.policy
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import List, Optional

from .observability.logging_config import get_logger
from .schemas import Attachment

logger = get_logger(__name__)

DEFAULT_FILENAME = "unnamed"
DEFAULT_CONTENT_TYPE = "application/octet-stream"


class MailParseError(ValueError):
    """Raised when DATA content cannot be parsed as a mail message."""


@dataclass
class AttachmentInfo:
    """Information about an email attachment."""
    filename: str
    content: bytes
    mime_type: str

    @property
    def size_bytes(self) -> int:
        return len(self.content)

    def to_attachment(self) -> Attachment:
        """Wire form, content base64 encoded."""
        return Attachment(
            filename=self.filename,
            content_type=self.mime_type,
            size=self.size_bytes,
            content=base64.b64encode(self.content).decode("ascii"),
        )


@dataclass
class ParsedMail:
    from_: Optional[str]
    subject: Optional[str]
    text: Optional[str]
    html: Optional[str]
    attachments: List[AttachmentInfo] = field(default_factory=list)


def parse_mime_message(raw_mime: bytes) -> EmailMessage:
    """Parse raw MIME bytes into an EmailMessage.

    Args:
        raw_mime: Raw MIME message bytes

    Returns:
        EmailMessage: Parsed MIME message

    Raises:
        MailParseError: If the content is empty or MIME parsing fails
    """
    if not raw_mime or not raw_mime.strip():
        raise MailParseError("Empty message")
    try:
        return email.message_from_bytes(raw_mime, policy=email.policy.default)
    except Exception as e:
        raise MailParseError(f"Invalid MIME message: {e}") from e


def _header(msg: EmailMessage, name: str) -> Optional[str]:
    value = msg.get(name)
    return str(value) if value is not None else None


def _body_text(msg: EmailMessage, subtype: str) -> Optional[str]:
    part = msg.get_body(preferencelist=(subtype,))
    if part is None:
        return None
    # get_body() also returns inline-disposition parts; an attached .txt is not a body
    if part.get_content_disposition() == "attachment":
        return None
    return part.get_content()


def extract_attachments(msg: EmailMessage) -> List[AttachmentInfo]:
    """Extract file attachments from a MIME message.

    Walks the entire MIME tree. Skips:
    - Multipart containers
    - Inline parts (Content-Disposition: inline), e.g. embedded images
    - Parts that are neither marked as attachments nor carry a filename

    Args:
        msg: Parsed email message

    Returns:
        List[AttachmentInfo]: Attachments in document order
    """
    attachments = []

    for part in msg.walk():
        if part.get_content_maintype() == "multipart":
            continue

        disposition = part.get_content_disposition()
        if disposition == "inline":
            continue

        filename = part.get_filename()
        if disposition != "attachment" and not filename:
            continue

        content = part.get_payload(decode=True) or b""
        attachments.append(AttachmentInfo(
            filename=filename or DEFAULT_FILENAME,
            content=content,
            mime_type=part.get_content_type() or DEFAULT_CONTENT_TYPE,
        ))

    return attachments


def parse_mail(raw_mime: bytes) -> ParsedMail:
    """Parse DATA content into structured mail.

    Raises:
        MailParseError: If parsing fails at any point; no partial result
    """
    msg = parse_mime_message(raw_mime)
    try:
        parsed = ParsedMail(
            from_=_header(msg, "From"),
            subject=_header(msg, "Subject"),
            text=_body_text(msg, "plain"),
            html=_body_text(msg, "html"),
            attachments=extract_attachments(msg),
        )
    except Exception as e:
        raise MailParseError(f"Failed to extract message content: {e}") from e

    for att in parsed.attachments:
        logger.debug(f"Extracted attachment: {att.filename} ({att.mime_type}, {att.size_bytes} bytes)")
    return parsed
