"""Pydantic schemas for mailboxes, messages and push events.

Wire names are camelCase (``expiresAt``, ``contentType``) to match what
browser clients consume; Python attribute names stay snake_case.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


def to_epoch_ms(timestamp: float) -> int:
    """Convert a POSIX timestamp in seconds to integer milliseconds."""
    return int(round(timestamp * 1000))


@dataclass(frozen=True)
class MailboxSession:
    """One provisioned mailbox. Immutable; re-creation replaces the object."""
    address: str
    created_at: float
    expires_at: float

    def is_live(self, now: float) -> bool:
        return now < self.expires_at


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# Message Schemas

class Attachment(_CamelModel):
    """Attachment carried inside a pushed message, content base64 encoded"""

    filename: str = Field(..., description="Original filename or 'unnamed'")
    content_type: str = Field(..., alias="contentType")
    size: int = Field(..., ge=0, description="Decoded size in bytes")
    content: Optional[str] = Field(None, description="Base64-encoded content")


class Message(_CamelModel):
    """An accepted, parsed mail item. Never stored; pushed and dropped."""

    id: str
    from_: str = Field(..., alias="from")
    subject: str
    text: str = ""
    html: str = ""
    attachments: List[Attachment] = Field(default_factory=list)
    received_at: datetime = Field(..., alias="receivedAt")


# Push Event Schemas

class ConnectedEvent(_CamelModel):
    type: Literal["connected"] = "connected"
    email: str
    expires_at: int = Field(..., alias="expiresAt")


class NewMessageEvent(_CamelModel):
    type: Literal["new_message"] = "new_message"
    message: Message


class PingEvent(_CamelModel):
    type: Literal["ping"] = "ping"


# API Schemas

class GenerateEmailRequest(_CamelModel):
    prefix: Optional[str] = Field(None, description="Custom local part; random when omitted")


class GenerateEmailResponse(_CamelModel):
    email: str
    expires_at: int = Field(..., alias="expiresAt")


class MailboxResponse(_CamelModel):
    email: str
    created_at: int = Field(..., alias="createdAt")
    expires_at: int = Field(..., alias="expiresAt")

    @classmethod
    def from_session(cls, session: MailboxSession) -> "MailboxResponse":
        return cls(
            email=session.address,
            created_at=to_epoch_ms(session.created_at),
            expires_at=to_epoch_ms(session.expires_at),
        )


class StatsResponse(_CamelModel):
    """Aggregate counters exposed for external monitoring"""

    total_emails_created: int = Field(..., alias="totalEmailsCreated")
    total_messages_received: int = Field(..., alias="totalMessagesReceived")
    active_emails: int = Field(..., alias="activeEmails")
    active_connections: int = Field(..., alias="activeConnections")


class HealthResponse(_CamelModel):
    status: str = "ok"
    domain: str
    uptime: float = Field(..., description="Seconds since startup")


class ErrorResponse(_CamelModel):
    error: str
    code: str
    retry_after: Optional[int] = Field(None, alias="retryAfter")
