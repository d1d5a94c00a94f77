"""
Device-link session state machine.
"""

from __future__ import annotations

import logging
import shutil
import threading
import time
from typing import TYPE_CHECKING, Callable

from easysend.common.exceptions import AuthFailure
from easysend.common.models import (
    LinkEvent,
    LinkEventKind,
    Session,
    SessionState,
    Topic,
)

if TYPE_CHECKING:
    from pathlib import Path

    from easysend.common.interfaces import IBroadcaster, IMessagingEndpoint
    from easysend.common.scheduler import Cancellable, Scheduler

logger = logging.getLogger(__name__)

# Endpoint event -> states it may arrive in -> resulting state
TRANSITIONS: dict[LinkEventKind, tuple[frozenset[SessionState], SessionState]] = {
    LinkEventKind.LINK_REQUEST_ISSUED: (
        frozenset(
            {SessionState.IDLE, SessionState.AWAITING_SCAN, SessionState.DISCONNECTED}
        ),
        SessionState.AWAITING_SCAN,
    ),
    LinkEventKind.AUTHENTICATED: (
        frozenset({SessionState.IDLE, SessionState.AWAITING_SCAN}),
        SessionState.AUTHENTICATING,
    ),
    LinkEventKind.READY: (
        frozenset(
            {
                SessionState.IDLE,
                SessionState.AWAITING_SCAN,
                SessionState.AUTHENTICATING,
            }
        ),
        SessionState.READY,
    ),
    LinkEventKind.DISCONNECTED: (
        frozenset(
            {
                SessionState.AWAITING_SCAN,
                SessionState.AUTHENTICATING,
                SessionState.READY,
            }
        ),
        SessionState.DISCONNECTED,
    ),
}

LINKING_STATES = frozenset(
    {SessionState.AWAITING_SCAN, SessionState.AUTHENTICATING, SessionState.READY}
)


class SessionCoordinator:
    """Owns the single process-wide link to the messaging network.

    State changes only in response to endpoint events, except for the explicit
    ``reset`` and ``logout`` operations. Each transition is published once on
    the ``session-state`` topic.
    """

    def __init__(  # noqa: PLR0913
        self,
        endpoint: IMessagingEndpoint,
        broadcaster: IBroadcaster,
        scheduler: Scheduler,
        relink_delay: float = 5.0,
        logout_relink_delay: float = 2.0,
        max_auth_failures: int = 3,
        credentials_dir: Path | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.endpoint = endpoint
        self.broadcaster = broadcaster
        self.scheduler = scheduler
        self.relink_delay = relink_delay
        self.logout_relink_delay = logout_relink_delay
        self.max_auth_failures = max_auth_failures
        self.credentials_dir = credentials_dir
        self.clock = clock

        self._lock = threading.RLock()
        self._session = Session(updated_at=clock())
        self._auth_failures = 0
        self._relink_call: Cancellable | None = None
        self._stopped = False

        self.endpoint.add_listener(self.handle_event)

    # Lifecycle

    def start(self) -> None:
        """Connect at process start-up."""
        with self._lock:
            self._stopped = False
        self.request_link()

    def stop(self) -> None:
        """Tear down: no more automatic re-linking, drop the connection."""
        with self._lock:
            self._stopped = True
            self._cancel_relink()
        try:
            self.endpoint.disconnect()
        except Exception:
            logger.exception("Endpoint disconnect failed during shutdown")

    # Queries

    def get_state(self) -> Session:
        with self._lock:
            return self._session.model_copy()

    @property
    def is_ready(self) -> bool:
        with self._lock:
            return self._session.state == SessionState.READY

    # Operations

    def request_link(self) -> bool:
        """Ask the endpoint for a new link. Returns False when nothing was done."""
        with self._lock:
            state = self._session.state
            if state in LINKING_STATES:
                logger.debug("Link already in progress (%s), ignoring", state.value)
                return False
            if state == SessionState.AUTH_FAILED:
                msg = "Authentication failed; reset the session before linking"
                raise AuthFailure(msg)
            self._cancel_relink()
        logger.info("Requesting device link")
        self.endpoint.connect()
        return True

    def reset(self) -> None:
        """Wipe stored link credentials and return to idle."""
        with self._lock:
            self._cancel_relink()
            self._auth_failures = 0
        try:
            self.endpoint.disconnect()
        except Exception:
            logger.exception("Endpoint disconnect failed during reset")
        self._clear_credentials()
        with self._lock:
            self._cancel_relink()
            self._transition(SessionState.IDLE, reason="reset")

    def logout(self) -> None:
        """Invalidate the remote link, go idle and re-link shortly after."""
        self.endpoint.logout()
        with self._lock:
            self._cancel_relink()
            self._transition(SessionState.IDLE, reason="logout")
            self._schedule_relink(self.logout_relink_delay)
        logger.info("Logged out of messaging network")

    # Endpoint events

    def handle_event(self, event: LinkEvent) -> None:
        """Translate one endpoint event into a state transition."""
        with self._lock:
            if event.kind == LinkEventKind.AUTH_FAILURE:
                self._on_auth_failure(event.reason)
                return

            allowed, target = TRANSITIONS[event.kind]
            current = self._session.state
            if current not in allowed:
                logger.warning(
                    "Ignoring %s event in state %s", event.kind.value, current.value
                )
                return

            if target == SessionState.AWAITING_SCAN:
                self._transition(target, link_token=event.token)
            elif target == SessionState.READY:
                self._auth_failures = 0
                self._transition(target)
            elif target == SessionState.DISCONNECTED:
                self._transition(target, reason=event.reason)
                self._schedule_relink(self.relink_delay)
            else:
                self._transition(target)

    def _on_auth_failure(self, reason: str | None) -> None:
        if self._session.state == SessionState.AUTH_FAILED:
            return
        self._auth_failures += 1
        logger.warning(
            "Link authentication failed (%d/%d): %s",
            self._auth_failures,
            self.max_auth_failures,
            reason,
        )
        if self._auth_failures >= self.max_auth_failures:
            self._cancel_relink()
            self._clear_credentials()
            self._transition(SessionState.AUTH_FAILED, reason=reason)
            return
        self._transition(SessionState.DISCONNECTED, reason=reason)
        self._schedule_relink(self.relink_delay)

    # Internals

    def _transition(
        self,
        state: SessionState,
        link_token: str | None = None,
        reason: str | None = None,
    ) -> None:
        previous = self._session.state
        self._session = Session(
            state=state,
            link_token=link_token if state == SessionState.AWAITING_SCAN else None,
            reason=reason,
            updated_at=self.clock(),
        )
        logger.info("Session %s -> %s", previous.value, state.value)
        payload: dict[str, object] = {
            "state": state.value,
            "timestamp": self._session.updated_at,
        }
        if self._session.link_token is not None:
            payload["link_token"] = self._session.link_token
        if reason is not None:
            payload["reason"] = reason
        self.broadcaster.publish(Topic.SESSION_STATE, payload)

    def _schedule_relink(self, delay: float) -> None:
        if self._stopped or self._relink_call is not None:
            return
        logger.info("Re-link scheduled in %.1fs", delay)
        self._relink_call = self.scheduler.call_later(delay, self._relink)

    def _cancel_relink(self) -> None:
        if self._relink_call is not None:
            self._relink_call.cancel()
            self._relink_call = None

    def _relink(self) -> None:
        with self._lock:
            self._relink_call = None
            if self._stopped or self._session.state == SessionState.AUTH_FAILED:
                return
            if self._session.state == SessionState.DISCONNECTED:
                self._transition(SessionState.IDLE)
        try:
            self.request_link()
        except Exception:
            logger.exception("Re-link attempt failed")
            with self._lock:
                self._schedule_relink(self.relink_delay)

    def _clear_credentials(self) -> None:
        if self.credentials_dir is not None and self.credentials_dir.exists():
            shutil.rmtree(self.credentials_dir, ignore_errors=True)
            logger.info("Stored link credentials cleared")
