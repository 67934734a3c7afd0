"""Pytest fixtures shared by unit and integration tests.

Provides:
- A controllable clock so expiry can be tested without sleeping
- In-memory fake channels recording what the push path sends
- Directory / registry / notifier wired together on the fake clock
- Settings for a local, ephemeral-port SMTP listener

Usage:
    def test_expiry(directory, clock):
        address = directory.create("abc")
        clock.advance(3600)
        assert not directory.exists(address)
"""

import os

# Set environment variables BEFORE any imports to ensure they take effect
os.environ.setdefault("MAIL_DOMAIN", "example.com")
os.environ.setdefault("SMTP_HOST", "127.0.0.1")
os.environ.setdefault("SMTP_PORT", "0")
os.environ.setdefault("LOG_JSON", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from typing import Any, Dict, List, Optional

import pytest

from tempmail.config import Settings
from tempmail.directory import MailboxDirectory
from tempmail.notifier import PushNotifier
from tempmail.registry import SubscriberRegistry

DOMAIN = "example.com"
START_TIME = 1_700_000_000.0


class FakeClock:
    """Callable returning a settable POSIX timestamp."""

    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeChannel:
    """Channel double recording every JSON event sent to it."""

    def __init__(self, address: str = "", fail_sends: bool = False):
        self.address = address
        self.fail_sends = fail_sends
        self.sent: List[Dict[str, Any]] = []
        self.open = True
        self.is_alive = True
        self.close_code: Optional[int] = None
        self.close_reason: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.open

    async def send_json(self, data: Dict[str, Any]) -> None:
        if self.fail_sends:
            raise ConnectionResetError("channel broken")
        self.sent.append(data)

    async def ping(self) -> None:
        await self.send_json({"type": "ping"})

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.open = False
        self.close_code = code
        self.close_reason = reason

    def events(self, event_type: str) -> List[Dict[str, Any]]:
        return [event for event in self.sent if event.get("type") == event_type]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def channel_factory():
    def make(address: str = "", fail_sends: bool = False) -> FakeChannel:
        return FakeChannel(address=address, fail_sends=fail_sends)
    return make


@pytest.fixture
def registry(clock) -> SubscriberRegistry:
    return SubscriberRegistry(clock=clock)


@pytest.fixture
def directory(registry, clock) -> MailboxDirectory:
    return MailboxDirectory(DOMAIN, expiry_seconds=3600, registry=registry, clock=clock)


@pytest.fixture
def notifier(registry) -> PushNotifier:
    return PushNotifier(registry)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        MAIL_DOMAIN=DOMAIN,
        SMTP_HOST="127.0.0.1",
        SMTP_PORT=0,
        LOG_JSON=False,
        LOG_LEVEL="WARNING",
        RATE_LIMIT_REDIS_URL=None,
        _env_file=None,
    )
