"""Push notifier: best-effort, at-most-once delivery to the bound channel.

There is no queue and no retry. A message for an address with no open
channel, or whose send fails, is logged, counted and dropped.
"""

from enum import Enum

from .observability import metrics
from .observability.logging_config import get_logger
from .registry import Channel, SubscriberRegistry
from .schemas import ConnectedEvent, MailboxSession, Message, NewMessageEvent, to_epoch_ms

logger = get_logger(__name__)


class DeliveryOutcome(str, Enum):
    DELIVERED = "delivered"
    NO_SUBSCRIBER = "no_subscriber"
    SEND_FAILED = "send_failed"


class PushNotifier:
    """Resolves a recipient to its channel and forwards events over it."""

    def __init__(self, registry: SubscriberRegistry):
        self.registry = registry

    async def deliver(self, address: str, message: Message) -> DeliveryOutcome:
        """Push ``message`` to whoever is subscribed to ``address``.

        Never raises for a missing or broken channel.
        """
        channel = self.registry.lookup(address)
        if channel is None or not channel.is_open:
            logger.info(
                f"No live subscriber for {address}, dropping message {message.id}",
                extra={"address": address, "outcome": DeliveryOutcome.NO_SUBSCRIBER.value},
            )
            metrics.deliveries_total.labels(outcome=DeliveryOutcome.NO_SUBSCRIBER.value).inc()
            return DeliveryOutcome.NO_SUBSCRIBER

        event = NewMessageEvent(message=message)
        try:
            await channel.send_json(event.model_dump(mode="json", by_alias=True))
        except Exception as e:
            logger.warning(
                f"Failed to push message {message.id} to {address}: {e}",
                extra={"address": address, "outcome": DeliveryOutcome.SEND_FAILED.value},
            )
            metrics.deliveries_total.labels(outcome=DeliveryOutcome.SEND_FAILED.value).inc()
            self.registry.unbind(address, channel)
            return DeliveryOutcome.SEND_FAILED

        logger.info(
            f"Pushed message {message.id} to {address}",
            extra={"address": address, "outcome": DeliveryOutcome.DELIVERED.value},
        )
        metrics.deliveries_total.labels(outcome=DeliveryOutcome.DELIVERED.value).inc()
        return DeliveryOutcome.DELIVERED

    async def send_connected(self, channel: Channel, session: MailboxSession) -> None:
        """Handshake sent right after a channel binds.

        Unlike ``deliver`` this propagates send errors: the caller is the
        connection handler and owns the channel's lifecycle.
        """
        event = ConnectedEvent(email=session.address, expires_at=to_epoch_ms(session.expires_at))
        await channel.send_json(event.model_dump(mode="json", by_alias=True))
