"""
Paced bulk send over the messaging endpoint.
"""

from __future__ import annotations

import logging
import re
import threading
import time
import uuid
from typing import TYPE_CHECKING, Callable

from easysend.common.exceptions import (
    JobAlreadyRunningError,
    SessionNotReadyError,
    StoreUnavailableError,
    ValidationError,
)
from easysend.common.models import (
    Accepted,
    DispatchCounters,
    DispatchOutcome,
    DispatchProgress,
    OutcomeStatus,
    Topic,
)
from easysend.server.persistence import OUTCOMES

if TYPE_CHECKING:
    from easysend.common.interfaces import (
        IBroadcaster,
        IDataStore,
        IMessagingEndpoint,
    )
    from easysend.common.models import Attachment, DispatchJob, Recipient
    from easysend.common.scheduler import Scheduler
    from easysend.server.session_coordinator import SessionCoordinator

logger = logging.getLogger(__name__)

NAME_PLACEHOLDER = re.compile(r"\{name\}", re.IGNORECASE)
NOT_REACHABLE = "NotReachable"


def personalize(template: str, recipient: Recipient, fallback: str = "Friend") -> str:
    """Substitute every ``{name}`` placeholder with the recipient's name."""
    name = (recipient.display_name or "").strip() or fallback
    return NAME_PLACEHOLDER.sub(lambda _: name, template)


class _RunningJob:
    def __init__(self, job_id: str, job: DispatchJob, delay: float):
        self.job_id = job_id
        self.job = job
        self.delay = delay
        self.counters = DispatchCounters(total=len(job.recipients))


class DispatchEngine:
    """Runs one bulk send at a time, strictly sequentially.

    Every recipient produces exactly one stored outcome and one progress
    event. The outcome is stored before the counters advance, so an abrupt
    stop leaves the counters matching what was logged.
    """

    def __init__(  # noqa: PLR0913
        self,
        session: SessionCoordinator,
        endpoint: IMessagingEndpoint,
        store: IDataStore,
        broadcaster: IBroadcaster,
        scheduler: Scheduler,
        default_delay: float = 30.0,
        name_fallback: str = "Friend",
        clock: Callable[[], float] = time.time,
    ):
        self.session = session
        self.endpoint = endpoint
        self.store = store
        self.broadcaster = broadcaster
        self.scheduler = scheduler
        self.default_delay = default_delay
        self.name_fallback = name_fallback
        self.clock = clock

        self._lock = threading.Lock()
        self._running: _RunningJob | None = None
        self._last: _RunningJob | None = None

    def submit(self, job: DispatchJob) -> Accepted:
        """Validate and start a job in the background."""
        if not job.recipients:
            msg = "No contacts provided"
            raise ValidationError(msg)
        if not job.message_template.strip():
            msg = "No message provided"
            raise ValidationError(msg)
        delay = self.default_delay if job.delay_seconds is None else job.delay_seconds

        with self._lock:
            if self._running is not None:
                msg = "A dispatch job is already running"
                raise JobAlreadyRunningError(msg)
            if not self.session.is_ready:
                msg = "Messaging session is not ready"
                raise SessionNotReadyError(msg)
            running = _RunningJob(uuid.uuid4().hex, job, delay)
            self._running = running

        logger.info(
            "Dispatch job %s accepted: %d recipient(s), %.1fs pacing",
            running.job_id,
            running.counters.total,
            delay,
        )
        self.broadcaster.publish(
            Topic.DISPATCH_START,
            {"job_id": running.job_id, "total": running.counters.total},
        )
        try:
            self.scheduler.spawn(self._run, running)
        except Exception:
            with self._lock:
                self._running = None
            self._release(job.attachment)
            raise
        return Accepted(job_id=running.job_id, total=running.counters.total)

    def current_progress(self) -> DispatchProgress | None:
        """Counters of the running job, else of the last finished one."""
        with self._lock:
            current = self._running or self._last
            if current is None:
                return None
            return DispatchProgress(
                job_id=current.job_id,
                counters=current.counters.model_copy(),
                running=current is self._running,
            )

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running is not None

    def _run(self, running: _RunningJob) -> None:
        job = running.job
        counters = running.counters
        aborted_error: str | None = None
        try:
            for index, recipient in enumerate(job.recipients):
                message = personalize(job.message_template, recipient, self.name_fallback)
                status, error = self._deliver(job, recipient, message)

                try:
                    self._record(running, recipient, message, status, error)
                except StoreUnavailableError as err:
                    aborted_error = str(err)
                    logger.exception(
                        "Job %s aborted: outcome for %s could not be stored",
                        running.job_id,
                        recipient.address,
                    )
                    break

                with self._lock:
                    counters.current_index = index + 1
                    if status == OutcomeStatus.SENT:
                        counters.sent += 1
                    else:
                        counters.failed += 1
                    snapshot = counters.model_copy()

                self.broadcaster.publish(
                    Topic.DISPATCH_PROGRESS,
                    {
                        "job_id": running.job_id,
                        "address": recipient.address,
                        "name": recipient.display_name,
                        "status": status.value,
                        "error": error,
                        "current": snapshot.current_index,
                        "total": snapshot.total,
                        "sent": snapshot.sent,
                        "failed": snapshot.failed,
                    },
                )

                if index < len(job.recipients) - 1:
                    self.scheduler.sleep(running.delay)
        finally:
            self._release(job.attachment)
            with self._lock:
                self._running = None
                self._last = running
                final = counters.model_copy()
            payload: dict[str, object] = {
                "job_id": running.job_id,
                "total": final.total,
                "sent": final.sent,
                "failed": final.failed,
            }
            if aborted_error is not None:
                payload["aborted"] = True
                payload["error"] = aborted_error
            self.broadcaster.publish(Topic.DISPATCH_COMPLETE, payload)
            logger.info(
                "Dispatch job %s complete: %d sent, %d failed of %d",
                running.job_id,
                final.sent,
                final.failed,
                final.total,
            )

    def _deliver(
        self, job: DispatchJob, recipient: Recipient, message: str
    ) -> tuple[OutcomeStatus, str | None]:
        """Attempt one recipient. Endpoint failures become a failed outcome."""
        try:
            if job.check_reachability and not self.endpoint.is_reachable(
                recipient.address
            ):
                logger.info("%s is not reachable, skipping", recipient.address)
                return OutcomeStatus.FAILED, NOT_REACHABLE
            self.endpoint.send(recipient.address, message, job.attachment)
        except Exception as err:  # noqa: BLE001
            logger.warning("Send to %s failed: %s", recipient.address, err)
            return OutcomeStatus.FAILED, str(err)
        logger.debug("Sent to %s", recipient.address)
        return OutcomeStatus.SENT, None

    def _record(
        self,
        running: _RunningJob,
        recipient: Recipient,
        message: str,
        status: OutcomeStatus,
        error: str | None,
    ) -> None:
        with self.store.transaction():
            outcome_id = self.store.next_id(OUTCOMES)
            outcome = DispatchOutcome(
                id=outcome_id,
                job_id=running.job_id,
                recipient=recipient.address,
                display_name=recipient.display_name,
                template_id=running.job.template_id,
                user_id=running.job.user_id,
                resolved_message=message,
                status=status,
                error=error,
                timestamp=int(self.clock()),
            )
            self.store.put(OUTCOMES, outcome_id, outcome.model_dump(mode="json"))

    @staticmethod
    def _release(attachment: Attachment | None) -> None:
        if attachment is None or not attachment.delete_after:
            return
        try:
            attachment.path.unlink(missing_ok=True)
        except OSError:
            logger.exception("Could not remove attachment %s", attachment.path)
        else:
            logger.debug("Attachment %s released", attachment.path)
