"""
In-process messaging endpoint for dry runs and demos.

It follows the same contract as a real transport: ``connect`` issues a link
token, ``pair`` simulates the user scanning it, and sends are recorded instead
of delivered.
"""

from __future__ import annotations

import logging
import re
import secrets
import threading
from typing import TYPE_CHECKING, Callable

from easysend.common.exceptions import EndpointError
from easysend.common.models import LinkEvent, LinkEventKind

if TYPE_CHECKING:
    from easysend.common.models import Attachment

logger = logging.getLogger(__name__)


def format_address(address: str) -> str:
    """Keep only the digits of a phone-style address."""
    return re.sub(r"[^0-9]", "", address)


class LoopbackEndpoint:
    """Messaging endpoint that never leaves the process."""

    def __init__(self, unreachable: set[str] | None = None, auto_pair: bool = False):
        self.unreachable = {format_address(a) for a in unreachable or set()}
        self.auto_pair = auto_pair
        self.sent: list[tuple[str, str, Attachment | None]] = []
        self.connected = False
        self._listeners: list[Callable[[LinkEvent], None]] = []
        self._lock = threading.Lock()

    def add_listener(self, callback: Callable[[LinkEvent], None]) -> None:
        self._listeners.append(callback)

    def _emit(self, event: LinkEvent) -> None:
        for listener in list(self._listeners):
            listener(event)

    def connect(self) -> None:
        token = secrets.token_urlsafe(16)
        logger.info("Loopback link token issued")
        self._emit(LinkEvent(kind=LinkEventKind.LINK_REQUEST_ISSUED, token=token))
        if self.auto_pair:
            self.pair()

    def pair(self) -> None:
        """Simulate a successful scan of the current link token."""
        self._emit(LinkEvent(kind=LinkEventKind.AUTHENTICATED))
        self.connected = True
        self._emit(LinkEvent(kind=LinkEventKind.READY))

    def disconnect(self) -> None:
        if self.connected:
            self.connected = False
            self._emit(LinkEvent(kind=LinkEventKind.DISCONNECTED, reason="closed"))

    def logout(self) -> None:
        self.connected = False
        logger.info("Loopback link invalidated")

    def is_reachable(self, address: str) -> bool:
        return format_address(address) not in self.unreachable

    def send(
        self, address: str, message: str, attachment: Attachment | None = None
    ) -> None:
        if not self.connected:
            msg = "Messaging endpoint not connected"
            raise EndpointError(msg)
        formatted = format_address(address)
        if not formatted:
            msg = f"Invalid address: {address!r}"
            raise EndpointError(msg)
        with self._lock:
            self.sent.append((formatted, message, attachment))
        logger.info("Loopback delivered message to %s", formatted)
