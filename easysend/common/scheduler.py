"""
Timer and background-thread abstraction.

The coordinators never call ``time.sleep`` or start threads directly; they go
through a scheduler so tests can swap in :class:`InlineScheduler` and run
without waiting in real time.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Protocol

logger = logging.getLogger(__name__)


class Cancellable(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Protocol for sleeping, delayed callbacks and background work."""

    def sleep(self, seconds: float) -> None: ...

    def call_later(self, delay: float, callback: Callable[[], Any]) -> Cancellable: ...

    def spawn(self, target: Callable[..., Any], *args: Any) -> None: ...


class ThreadScheduler:
    """Real scheduler backed by ``time.sleep`` and daemon threads."""

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)

    def call_later(self, delay: float, callback: Callable[[], Any]) -> Cancellable:
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        timer.start()
        return timer

    def spawn(self, target: Callable[..., Any], *args: Any) -> None:
        thread = threading.Thread(target=target, args=args, daemon=True)
        thread.start()
        logger.debug("Spawned background thread %s", thread.name)


class _PendingCall:
    def __init__(self, delay: float, callback: Callable[[], Any]):
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class InlineScheduler:
    """Zero-delay scheduler.

    ``sleep`` records the requested delay and returns at once, ``spawn`` runs
    the target on the calling thread, and ``call_later`` queues the callback
    until :meth:`run_pending` is called.
    """

    def __init__(self) -> None:
        self.sleeps: list[float] = []
        self.pending: list[_PendingCall] = []

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)

    def call_later(self, delay: float, callback: Callable[[], Any]) -> Cancellable:
        call = _PendingCall(delay, callback)
        self.pending.append(call)
        return call

    def spawn(self, target: Callable[..., Any], *args: Any) -> None:
        target(*args)

    def active_calls(self) -> list[_PendingCall]:
        return [c for c in self.pending if not c.cancelled]

    def run_pending(self) -> int:
        """Run every queued, non-cancelled callback once. Returns the count."""
        calls, self.pending = self.pending, []
        ran = 0
        for call in calls:
            if not call.cancelled:
                call.callback()
                ran += 1
        return ran
