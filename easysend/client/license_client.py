"""
Desktop-side license client.
"""

from __future__ import annotations

import hashlib
import logging
import platform
import socket
import time
from typing import TYPE_CHECKING, Any, Callable

import requests

from easysend.common.config import Config
from easysend.common.exceptions import EasySendError, LicenseError
from easysend.common.grace import OfflineGraceCache
from easysend.common.models import VerificationResult

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10


def machine_id() -> str:
    """Stable identifier for this machine."""
    fingerprint = "|".join(
        [
            socket.gethostname(),
            platform.system(),
            platform.machine(),
            platform.processor(),
        ]
    )
    return hashlib.sha256(fingerprint.encode()).hexdigest()[:32]


class LicenseClient:
    """Verifies a license key against the server.

    A successful verification is cached locally; while the server cannot be
    reached, the cached result is honoured for the offline grace window.
    """

    def __init__(  # noqa: PLR0913
        self,
        license_key: str,
        server_url: str | None = None,
        machine: str | None = None,
        cache_path: Path | None = None,
        grace_days: int | None = None,
        clock: Callable[[], float] = time.time,
    ):
        config = Config()
        self.license_key = license_key
        self.server_url = (server_url or config.SERVER_URL).rstrip("/")
        self.machine_id = machine or machine_id()
        self.clock = clock
        self.cache = OfflineGraceCache(
            grace_days if grace_days is not None else config.OFFLINE_GRACE_DAYS,
            cache_path,
        )

    def is_license_active(self) -> bool:
        """Verify now; any license or server error counts as inactive."""
        try:
            return self.verify().valid
        except EasySendError as e:
            logger.warning("License check failed: %s", e)
            return False

    def verify(self) -> VerificationResult:
        return self._call("/api/licenses/verify")

    def heartbeat(self) -> VerificationResult:
        return self._call("/api/licenses/heartbeat")

    def _call(self, path: str) -> VerificationResult:
        now = int(self.clock())
        try:
            response = requests.post(
                f"{self.server_url}{path}",
                json={"license_key": self.license_key, "machine_id": self.machine_id},
                timeout=REQUEST_TIMEOUT,
            )
        except requests.RequestException as err:
            cached = self.cache.lookup(self.license_key, self.machine_id, now)
            if cached is None:
                msg = "License server unreachable and no offline grace available"
                raise LicenseError(msg) from err
            logger.warning("License server unreachable, using offline grace")
            return cached

        if 400 <= response.status_code < 500:
            raise LicenseError(_detail(response), status_code=response.status_code)
        if response.status_code >= 500:
            raise EasySendError(_detail(response), status_code=response.status_code)

        data = response.json()
        result = VerificationResult(
            valid=data.get("valid", True),
            status=data.get("status", "valid"),
            user=data.get("user"),
            expires_at=data.get("expires_at"),
        )
        self.cache.remember(self.license_key, self.machine_id, result, now)
        return result


def _detail(response: requests.Response) -> str:
    try:
        body: Any = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict) and "detail" in body:
        return str(body["detail"])
    return str(body)
