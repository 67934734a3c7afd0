"""Process-level wiring: builds the shared components and runs their lifecycle.

``Mailroom`` is created once per application and handed to the HTTP layer
through ``app.state``; nothing in the core is a module-level singleton.
"""

import asyncio
import time
from typing import Callable, List, Optional

from .channels import NORMAL_CLOSURE, Heartbeat
from .config import Settings
from .directory import MailboxDirectory
from .notifier import PushNotifier
from .observability.logging_config import get_logger
from .periodic import PeriodicTask
from .rate_limit import SlidingWindowRateLimiter, create_backend
from .registry import Channel, SubscriberRegistry
from .smtp_handler import start_smtp_server

logger = get_logger(__name__)

RATE_LIMIT_PURGE_INTERVAL = 300  # seconds


class Mailroom:
    """Owns the directory, registry, notifier and every background task."""

    def __init__(self, settings: Settings, clock: Callable[[], float] = time.time):
        self.settings = settings
        self.registry = SubscriberRegistry(clock=clock)
        self.directory = MailboxDirectory(
            domain=settings.MAIL_DOMAIN,
            expiry_seconds=settings.expiry_seconds,
            registry=self.registry,
            clock=clock,
        )
        self.notifier = PushNotifier(self.registry)
        self.heartbeat = Heartbeat(self.registry)

        backend = create_backend(settings.RATE_LIMIT_REDIS_URL)
        self.generate_limiter = SlidingWindowRateLimiter(
            "generate",
            settings.RATE_LIMIT_GENERATE_MAX,
            settings.RATE_LIMIT_GENERATE_WINDOW,
            backend=backend,
        )
        self.default_limiter = SlidingWindowRateLimiter(
            "default",
            settings.RATE_LIMIT_DEFAULT_MAX,
            settings.RATE_LIMIT_DEFAULT_WINDOW,
            backend=backend,
        )

        self.sweep_task = PeriodicTask("expiry-sweep", settings.cleanup_seconds, self.directory.sweep)
        self.heartbeat_task = PeriodicTask("heartbeat", settings.heartbeat_seconds, self.heartbeat.beat)
        self.purge_task = PeriodicTask(
            "rate-limit-purge", RATE_LIMIT_PURGE_INTERVAL, self.purge_rate_limits
        )

        self.smtp_server: Optional[asyncio.AbstractServer] = None
        self.started_at = time.time()

    @property
    def uptime(self) -> float:
        return time.time() - self.started_at

    @property
    def smtp_port(self) -> Optional[int]:
        if self.smtp_server is None or not self.smtp_server.sockets:
            return None
        return self.smtp_server.sockets[0].getsockname()[1]

    def purge_rate_limits(self) -> int:
        return self.generate_limiter.purge() + self.default_limiter.purge()

    async def start(self) -> None:
        self.started_at = time.time()
        self.smtp_server = await start_smtp_server(self.settings, self.directory, self.notifier)
        self.sweep_task.start()
        self.heartbeat_task.start()
        self.purge_task.start()

    async def shutdown(self) -> None:
        """Cooperative shutdown bounded by SHUTDOWN_TIMEOUT.

        Order: stop accepting mail, close every channel with a normal
        closure, cancel background tasks. If that stalls past the timeout
        the remaining steps are abandoned.
        """
        try:
            await asyncio.wait_for(self._shutdown(), timeout=self.settings.SHUTDOWN_TIMEOUT)
            logger.info("Graceful shutdown completed")
        except asyncio.TimeoutError:
            logger.error("Forced shutdown due to timeout")

    async def _shutdown(self) -> None:
        # In-flight transfers are not cancelled; closing the listener only refuses new ones
        if self.smtp_server is not None:
            self.smtp_server.close()
            logger.info("SMTP server closed")

        channels: List[Channel] = [binding.channel for binding in self.registry.drain()]
        # Replaced channels are no longer bound but may still be open
        channels.extend(ch for ch in self.heartbeat.channels() if ch not in channels)
        logger.info(f"Closing {len(channels)} notification channel(s)...")
        await asyncio.gather(
            *(channel.close(NORMAL_CLOSURE, "Server shutting down") for channel in channels),
            return_exceptions=True,
        )

        await self.sweep_task.stop()
        await self.heartbeat_task.stop()
        await self.purge_task.stop()
