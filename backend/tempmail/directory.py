"""Mailbox directory: the authoritative address -> session map.

Liveness (``now < expires_at``) is checked on every read, so an expired
session is invisible even before the periodic sweep reclaims it. The sweep
only frees memory; correctness never depends on when it last ran.
"""

import secrets
import threading
import time
from typing import Callable, Dict, List, Optional

from .observability import metrics
from .observability.logging_config import get_logger
from .registry import SubscriberRegistry
from .schemas import MailboxSession
from .statistics import DirectoryStatistics, collect_statistics

logger = get_logger(__name__)

RANDOM_LOCAL_PART_LENGTH = 12


def random_local_part(length: int = RANDOM_LOCAL_PART_LENGTH) -> str:
    """Random lowercase hex identifier of exactly ``length`` characters."""
    return secrets.token_hex((length + 1) // 2)[:length]


class MailboxDirectory:
    """Lock-guarded session store shared by the HTTP layer, the gateway and the sweep.

    Args:
        domain: Mail domain appended to every local part
        expiry_seconds: Fixed lifetime of a session from its creation
        registry: Subscriber registry whose bindings the sweep evicts
        clock: Returns the current POSIX time in seconds
    """

    def __init__(
        self,
        domain: str,
        expiry_seconds: float,
        registry: SubscriberRegistry,
        clock: Callable[[], float] = time.time,
    ):
        if not domain:
            raise ValueError("A mail domain is required")
        if expiry_seconds <= 0:
            raise ValueError("expiry_seconds must be positive")

        self.domain = domain
        self.expiry_seconds = expiry_seconds
        self.registry = registry
        self._clock = clock
        self._lock = threading.Lock()
        self._sessions: Dict[str, MailboxSession] = {}
        self._total_emails_created = 0
        self._total_messages_received = 0

    def create(self, prefix: Optional[str] = None) -> str:
        """Provision a mailbox and return its address.

        ``prefix`` must already have passed format validation. An existing
        session at the same address is overwritten and its clock restarts.
        """
        local_part = prefix if prefix else random_local_part()
        address = f"{local_part}@{self.domain}"

        with self._lock:
            now = self._clock()
            replaced = address in self._sessions
            self._sessions[address] = MailboxSession(
                address=address,
                created_at=now,
                expires_at=now + self.expiry_seconds,
            )
            self._total_emails_created += 1

        metrics.mailboxes_created_total.inc()
        if replaced:
            logger.info(f"Re-created mailbox {address}", extra={"address": address})
        else:
            logger.info(f"Created mailbox {address}", extra={"address": address})
        return address

    def get(self, address: str) -> Optional[MailboxSession]:
        """Return the session only while it is live."""
        with self._lock:
            session = self._sessions.get(address)
            if session is not None and session.is_live(self._clock()):
                return session
        return None

    def exists(self, address: str) -> bool:
        return self.get(address) is not None

    def record_message(self, address: str) -> bool:
        """Authorize one delivery to ``address``.

        Checks liveness and bumps the received counter in one atomic step.
        A False return never changes any counter.
        """
        with self._lock:
            session = self._sessions.get(address)
            if session is None or not session.is_live(self._clock()):
                return False
            self._total_messages_received += 1

        metrics.messages_received_total.inc()
        return True

    def sweep(self) -> List[str]:
        """Remove every session with ``expires_at <= now`` and evict its subscriber.

        Returns:
            List[str]: Addresses that were removed
        """
        with self._lock:
            now = self._clock()
            expired = [
                address
                for address, session in self._sessions.items()
                if session.expires_at <= now
            ]
            for address in expired:
                del self._sessions[address]

        # Registry has its own lock; never held together with ours.
        for address in expired:
            self.registry.evict(address, bound_before=now)

        if expired:
            metrics.sessions_swept_total.inc(len(expired))
            logger.info(f"Cleaned {len(expired)} expired mailbox(es)")
        return expired

    def stats(self) -> DirectoryStatistics:
        with self._lock:
            created = self._total_emails_created
            received = self._total_messages_received
            size = len(self._sessions)
        return collect_statistics(created, received, size, self.registry)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
