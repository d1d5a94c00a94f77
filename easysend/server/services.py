"""Business logic services for the bulk send server.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

from easysend.common.exceptions import NotFoundError, ValidationError
from easysend.common.models import (
    Attachment,
    DispatchJob,
    DispatchOutcome,
    OutcomeStatus,
    TemplateRecord,
)
from easysend.server.persistence import OUTCOMES, SETTINGS, TEMPLATES

if TYPE_CHECKING:
    from easysend.common.interfaces import IDataStore
    from easysend.common.models import Accepted, SendMessagesRequest, UserRecord
    from easysend.server.dispatch_engine import DispatchEngine
    from easysend.server.license_coordinator import LicenseCoordinator
    from easysend.server.session_coordinator import SessionCoordinator

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS = {
    "whatsapp_number": "",
    "license_price": "999",
    "license_duration": "2 Years",
    "payment_note": "",
}


class SendService:
    """Handles business logic around dispatch, templates, logs and settings."""

    def __init__(  # noqa: PLR0913
        self,
        store: IDataStore,
        session: SessionCoordinator,
        licenses: LicenseCoordinator,
        engine: DispatchEngine,
        uploads_dir: Path,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.session = session
        self.licenses = licenses
        self.engine = engine
        self.uploads_dir = uploads_dir
        self.clock = clock

    def health(self) -> dict[str, Any]:
        """Health check endpoint."""
        return {"status": "ok", "timestamp": int(self.clock())}

    def status(self) -> dict[str, Any]:
        session = self.session.get_state()
        progress = self.engine.current_progress()
        return {
            "session": session.model_dump(mode="json"),
            "connected": self.session.is_ready,
            "dispatch": progress.model_dump(mode="json") if progress else None,
        }

    # Dispatch

    def send_messages(self, user: UserRecord, req: SendMessagesRequest) -> Accepted:
        """Gate on the user's license, then hand the job to the engine."""
        self.licenses.ensure_entitled(user.id)
        message = req.message
        if req.template_id is not None and not message.strip():
            message = self.get_template(req.template_id, user).message
        job = DispatchJob(
            recipients=req.contacts,
            message_template=message,
            attachment=self._attachment(req.media_path),
            template_id=req.template_id,
            user_id=user.id,
            delay_seconds=req.delay_seconds,
        )
        return self.engine.submit(job)

    def _attachment(self, media_path: str | None) -> Attachment | None:
        """Resolve an uploaded file; only files inside the uploads dir qualify."""
        if not media_path:
            return None
        uploads = self.uploads_dir.resolve()
        path = (uploads / media_path).resolve()
        if uploads not in path.parents or not path.is_file():
            msg = f"Media file not found: {media_path}"
            raise ValidationError(msg)
        return Attachment(path=path)

    # Outcome logs

    def logs(self, user: UserRecord, limit: int = 100) -> list[DispatchOutcome]:
        records = self.store.query(OUTCOMES, self._owned_by(user))
        outcomes = sorted(
            (DispatchOutcome.model_validate(r) for r in records),
            key=lambda o: o.id,
            reverse=True,
        )
        return outcomes[:limit]

    def stats(self, user: UserRecord) -> dict[str, int]:
        records = self.store.query(OUTCOMES, self._owned_by(user))
        sent = sum(1 for r in records if r["status"] == OutcomeStatus.SENT.value)
        return {"total": len(records), "sent": sent, "failed": len(records) - sent}

    # Templates

    def create_template(self, user: UserRecord, name: str, message: str) -> TemplateRecord:
        with self.store.transaction():
            template = TemplateRecord(
                id=self.store.next_id(TEMPLATES),
                name=name,
                message=message,
                user_id=user.id,
                created_at=int(self.clock()),
            )
            self.store.put(TEMPLATES, template.id, template.model_dump(mode="json"))
        return template

    def list_templates(self, user: UserRecord) -> list[TemplateRecord]:
        records = self.store.query(TEMPLATES, self._owned_by(user))
        templates = [TemplateRecord.model_validate(r) for r in records]
        return sorted(templates, key=lambda t: t.created_at, reverse=True)

    def get_template(self, template_id: int, user: UserRecord) -> TemplateRecord:
        record = self.store.get(TEMPLATES, template_id)
        if record is None or not self._owned_by(user)(record):
            msg = "Template not found"
            raise NotFoundError(msg)
        return TemplateRecord.model_validate(record)

    def update_template(
        self, template_id: int, user: UserRecord, name: str, message: str
    ) -> TemplateRecord:
        with self.store.transaction():
            template = self.get_template(template_id, user)
            template.name = name
            template.message = message
            self.store.put(TEMPLATES, template.id, template.model_dump(mode="json"))
        return template

    def delete_template(self, template_id: int, user: UserRecord) -> None:
        with self.store.transaction():
            self.get_template(template_id, user)
            self.store.delete(TEMPLATES, template_id)

    # Settings

    def settings(self) -> dict[str, str]:
        stored = {r["key"]: r["value"] for r in self.store.query(SETTINGS)}
        return {**DEFAULT_SETTINGS, **stored}

    def update_settings(self, values: dict[str, str]) -> dict[str, str]:
        with self.store.transaction():
            for key, value in values.items():
                self.store.put(SETTINGS, key, {"key": key, "value": value})
        logger.info("Updated settings: %s", ", ".join(sorted(values)))
        return self.settings()

    @staticmethod
    def _owned_by(user: UserRecord) -> Callable[[dict[str, Any]], bool]:
        if user.is_admin:
            return lambda record: True
        return lambda record: record.get("user_id") == user.id
