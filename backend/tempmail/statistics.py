"""Read-only aggregate view over the directory and the subscriber registry."""

from dataclasses import dataclass

from .observability import metrics
from .registry import SubscriberRegistry
from .schemas import StatsResponse


@dataclass(frozen=True)
class DirectoryStatistics:
    total_emails_created: int
    total_messages_received: int
    active_emails: int
    active_connections: int

    def to_response(self) -> StatsResponse:
        return StatsResponse(
            total_emails_created=self.total_emails_created,
            total_messages_received=self.total_messages_received,
            active_emails=self.active_emails,
            active_connections=self.active_connections,
        )


def collect_statistics(
    total_emails_created: int,
    total_messages_received: int,
    active_emails: int,
    registry: SubscriberRegistry,
) -> DirectoryStatistics:
    """Combine directory counters with the registry's live channel count.

    Also refreshes the Prometheus gauges so a scrape after a stats call
    sees the same numbers.
    """
    live = registry.count_live()
    metrics.active_mailboxes.set(active_emails)
    metrics.active_connections.set(live)
    return DirectoryStatistics(
        total_emails_created=total_emails_created,
        total_messages_received=total_messages_received,
        active_emails=active_emails,
        active_connections=live,
    )
