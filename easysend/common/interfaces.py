"""
Interfaces and protocols for dependency injection.
"""

from __future__ import annotations

from contextlib import AbstractContextManager
from typing import Any, Callable, Iterator, Protocol

from easysend.common.models import Attachment, LinkEvent, Topic


class IMessagingEndpoint(Protocol):
    """Protocol for the transport to the external chat network."""

    def connect(self) -> None: ...

    def disconnect(self) -> None: ...

    def logout(self) -> None: ...

    def send(
        self, address: str, message: str, attachment: Attachment | None = None
    ) -> None: ...

    def is_reachable(self, address: str) -> bool: ...

    def add_listener(self, callback: Callable[[LinkEvent], None]) -> None: ...


class IDataStore(Protocol):
    """Protocol for the durable record store."""

    def get(self, collection: str, key: str | int) -> dict[str, Any] | None: ...

    def put(self, collection: str, key: str | int, record: dict[str, Any]) -> None: ...

    def delete(self, collection: str, key: str | int) -> bool: ...

    def query(
        self,
        collection: str,
        predicate: Callable[[dict[str, Any]], bool] | None = None,
    ) -> list[dict[str, Any]]: ...

    def next_id(self, collection: str) -> int: ...

    def transaction(self) -> AbstractContextManager[None]: ...


class IBroadcaster(Protocol):
    """Protocol for progress event fan-out."""

    def publish(self, topic: Topic, payload: dict[str, Any]) -> None: ...

    def subscribe(self, *topics: Topic) -> Iterator[Any]: ...
