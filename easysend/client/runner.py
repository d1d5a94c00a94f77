"""
Background heartbeat loop for a running desktop app.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Callable

from easysend.common.exceptions import LicenseError

if TYPE_CHECKING:
    from easysend.client.license_client import LicenseClient


class HeartbeatRunner:
    """Verifies the license once, then sends a heartbeat every interval."""

    def __init__(
        self,
        client: LicenseClient,
        heartbeat_interval: float,
        on_error_callback: Callable[[Exception], None] | None = None,
    ):
        self.client = client
        self.heartbeat_interval = heartbeat_interval
        self.on_error_callback = on_error_callback
        self.logger = logging.getLogger(__name__)
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()

    def run(self) -> None:
        """Run the heartbeat loop until stopped or the license is rejected."""
        try:
            self.client.verify()
            while not self._stop.wait(self.heartbeat_interval):
                self.client.heartbeat()
        except LicenseError as e:
            self.logger.error("License rejected: %s", e)
            if self.on_error_callback:
                self.on_error_callback(e)
        except Exception as e:
            self.logger.exception("Heartbeat error")
            if self.on_error_callback:
                self.on_error_callback(e)
            raise

    def start_in_thread(self) -> None:
        """Start the heartbeat loop in a separate thread."""
        if self._thread and self._thread.is_alive():
            self.logger.warning("Heartbeat is already running in a thread")
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, daemon=True)
        self._thread.start()
        self.logger.info("Heartbeat started in background thread")

    def stop_thread(self) -> None:
        """Stop the background thread."""
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None
        self.logger.info("Heartbeat thread stopped")
