"""
Offline grace cache shared by the license server and the desktop client.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import TYPE_CHECKING, Any

from easysend.common.models import VerificationResult, VerificationStatus

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

DAY = 24 * 60 * 60


def load_json(file_path: Path) -> dict[str, Any]:
    """Load a small JSON document, returning an empty dict when absent."""
    try:
        with file_path.open() as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError):
        return {}


def save_json(file_path: Path, data: dict[str, Any]) -> None:
    """Save a small JSON document."""
    file_path.parent.mkdir(parents=True, exist_ok=True)
    with file_path.open("w") as f:
        json.dump(data, f)


class OfflineGraceCache:
    """Last successful verification per key, for the offline grace path.

    The machine recorded for a key is the one the license is bound to; a
    grace result is only ever handed back to that machine.
    """

    def __init__(self, grace_days: int, file_path: Path | None = None):
        self.grace_seconds = grace_days * DAY
        self.file_path = file_path
        self._lock = threading.Lock()
        self._entries: dict[str, dict[str, Any]] = (
            load_json(file_path) if file_path is not None else {}
        )

    def remember(
        self, key: str, machine_id: str | None, result: VerificationResult, now: int
    ) -> None:
        with self._lock:
            previous = self._entries.get(key)
            if machine_id is None and previous is not None:
                machine_id = previous["machine_id"]
            self._entries[key] = {
                "machine_id": machine_id,
                "user": result.user,
                "expires_at": result.expires_at,
                "verified_at": now,
            }
            if self.file_path is None:
                return
            try:
                save_json(self.file_path, self._entries)
            except OSError:
                logger.exception("Could not write grace cache %s", self.file_path)

    def lookup(
        self, key: str, machine_id: str | None, now: int
    ) -> VerificationResult | None:
        """Return a grace result, or None when the key must fail closed."""
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            return None
        if entry["machine_id"] is not None and entry["machine_id"] != machine_id:
            return None
        if now - entry["verified_at"] >= self.grace_seconds:
            return None
        expires_at = entry["expires_at"]
        if expires_at is not None and now > expires_at:
            return None
        return VerificationResult(
            valid=True,
            status=VerificationStatus.OFFLINE_GRACE,
            user=entry["user"],
            expires_at=expires_at,
        )
