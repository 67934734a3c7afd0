"""Subscriber registry: address -> the single live notification channel.

Bindings are replaced, never queued: binding a second channel for an address
makes the first one unreachable through lookup immediately. The replaced
channel is not notified; its own close handling is its concern.
"""

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, runtime_checkable

from .observability.logging_config import get_logger

logger = get_logger(__name__)


@runtime_checkable
class Channel(Protocol):
    """Duplex connection to one client, as seen by the push path."""

    @property
    def is_open(self) -> bool: ...

    async def send_json(self, data: Dict[str, Any]) -> None: ...

    async def close(self, code: int = 1000, reason: str = "") -> None: ...


@dataclass(frozen=True)
class Binding:
    address: str
    channel: Channel
    bound_at: float


class SubscriberRegistry:
    """Lock-guarded mapping of address to its bound channel.

    Every public method is atomic with respect to the others. Callers are
    expected to check ``MailboxDirectory.exists`` before ``bind``.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._bindings: Dict[str, Binding] = {}

    def bind(self, address: str, channel: Channel) -> None:
        with self._lock:
            replaced = self._bindings.get(address)
            self._bindings[address] = Binding(address, channel, self._clock())
        if replaced is not None and replaced.channel is not channel:
            logger.info(f"Replaced subscriber for {address}", extra={"address": address})

    def unbind(self, address: str, channel: Optional[Channel] = None) -> bool:
        """Remove the binding for ``address``; a no-op if absent.

        When ``channel`` is given the binding is only removed if that exact
        channel is still the bound one, so a replaced channel closing late
        cannot tear down its successor.

        Returns:
            bool: True if a binding was removed
        """
        with self._lock:
            current = self._bindings.get(address)
            if current is None:
                return False
            if channel is not None and current.channel is not channel:
                return False
            del self._bindings[address]
            return True

    def evict(self, address: str, bound_before: float) -> bool:
        """Remove the binding only if it was created at or before ``bound_before``.

        Used by the expiry sweep: a binding made for a session re-created
        after the sweep started belongs to the new session and survives.
        """
        with self._lock:
            current = self._bindings.get(address)
            if current is None or current.bound_at > bound_before:
                return False
            del self._bindings[address]
            return True

    def lookup(self, address: str) -> Optional[Channel]:
        with self._lock:
            binding = self._bindings.get(address)
        return binding.channel if binding else None

    def count_live(self) -> int:
        """Number of bindings whose channel is currently open.

        A channel can close before its handler unbinds it; such bindings
        are not counted.
        """
        with self._lock:
            return sum(1 for binding in self._bindings.values() if binding.channel.is_open)

    def drain(self) -> List[Binding]:
        """Remove and return every binding (used at shutdown)."""
        with self._lock:
            bindings = list(self._bindings.values())
            self._bindings.clear()
        return bindings

    def __len__(self) -> int:
        with self._lock:
            return len(self._bindings)
