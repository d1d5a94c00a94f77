"""
Progress event fan-out to UI observers.
"""

from __future__ import annotations

import contextlib
import itertools
import logging
import queue
import threading
import time
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from easysend.common.models import Topic

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = logging.getLogger(__name__)

_CLOSED = object()
DEFAULT_QUEUE_SIZE = 1000


class Event(BaseModel):
    topic: Topic
    payload: dict[str, Any]
    sequence: int
    published_at: float


class Subscription:
    """One observer's private stream of events.

    Iterating blocks until the next event arrives and stops once the
    subscription is closed. Closing is immediate and silent: events published
    afterwards are never delivered to it.
    """

    def __init__(
        self,
        broadcaster: ProgressBroadcaster,
        topics: frozenset[Topic],
        maxsize: int = DEFAULT_QUEUE_SIZE,
    ):
        self.topics = topics
        self._broadcaster = broadcaster
        self._queue: queue.Queue[Any] = queue.Queue(maxsize=maxsize)
        self.closed = False
        self.dropped = 0

    def _deliver(self, event: Any) -> None:
        """Queue without blocking; a full queue loses its oldest event."""
        while True:
            try:
                self._queue.put_nowait(event)
            except queue.Full:
                with contextlib.suppress(queue.Empty):
                    self._queue.get_nowait()
                    self.dropped += 1
            else:
                return

    def get(self, timeout: float | None = None) -> Event | None:
        """Return the next event, or None on timeout or once closed."""
        if self.closed and self._queue.empty():
            return None
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is _CLOSED:
            return None
        return item

    def drain(self) -> list[Event]:
        """Return every event already queued without blocking."""
        events = []
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return events
            if item is not _CLOSED:
                events.append(item)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._broadcaster._unsubscribe(self)
        self._deliver(_CLOSED)

    def __iter__(self) -> Iterator[Event]:
        while True:
            event = self.get()
            if event is None:
                return
            yield event

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class ProgressBroadcaster:
    """Thread-safe topic pub/sub with one queue per subscriber.

    Publishing never blocks on a slow observer, so dispatch pacing is not
    affected by how many UIs are watching.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscriptions: list[Subscription] = []
        self._sequence = itertools.count(1)

    def publish(self, topic: Topic, payload: dict[str, Any]) -> Event:
        with self._lock:
            event = Event(
                topic=topic,
                payload=payload,
                sequence=next(self._sequence),
                published_at=time.time(),
            )
            targets = [s for s in self._subscriptions if topic in s.topics]
            for subscription in targets:
                subscription._deliver(event)
        logger.debug("Published %s to %d subscriber(s)", topic.value, len(targets))
        return event

    def subscribe(
        self, *topics: Topic, maxsize: int = DEFAULT_QUEUE_SIZE
    ) -> Subscription:
        """Subscribe to the given topics, or to every topic when none given.

        Each subscriber holds at most ``maxsize`` undelivered events; when it
        falls behind, the oldest are dropped.
        """
        subscription = Subscription(self, frozenset(topics or Topic), maxsize)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def _unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)
