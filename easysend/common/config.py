"""
Configuration settings for the bulk send service.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path


class Config:
    """Central configuration class for all system settings."""

    def __init__(self) -> None:
        # Server settings
        self.SERVER_HOST: str = os.getenv("EASYSEND_SERVER_HOST", "127.0.0.1")
        self.SERVER_PORT: int = int(os.getenv("EASYSEND_SERVER_PORT", "3000"))
        self.SERVER_URL: str = f"http://{self.SERVER_HOST}:{self.SERVER_PORT}"

        # Seeded administrator account
        self.ADMIN_EMAIL: str = os.getenv("EASYSEND_ADMIN_EMAIL", "admin@easysend.local")
        self.ADMIN_PASSWORD: str | None = os.getenv("EASYSEND_ADMIN_PASSWORD")

        # Bearer tokens
        self.TOKEN_SECRET: str = os.getenv(
            "EASYSEND_TOKEN_SECRET", "easysend-development-secret-change-me"
        )
        self.TOKEN_TTL: int = 30 * 24 * 3600  # 30 days

        # File paths
        self.BASE_DIR: Path = Path(__file__).parent.parent
        self.DATA_DIR: Path = Path(
            os.getenv("EASYSEND_DATA_DIR", str(self.BASE_DIR / "data"))
        )
        self.STORE_FILE_PATH: Path = self.DATA_DIR / "store.json"
        self.GRACE_CACHE_PATH: Path = self.DATA_DIR / "grace_cache.json"
        self.LINK_CREDENTIALS_DIR: Path = self.DATA_DIR / "link_auth"
        self.UPLOADS_DIR: Path = self.DATA_DIR / "uploads"

        # License issuance
        self.LICENSE_KEY_PREFIX: str = os.getenv("EASYSEND_LICENSE_PREFIX", "WA")
        self.DEFAULT_PLAN_NAME: str = "2 Year Plan"
        self.DEFAULT_PLAN_PRICE: float = 999
        self.DEFAULT_PLAN_DURATION_DAYS: int = 730
        self.MAX_KEY_GENERATION_ATTEMPTS: int = 10

        # License upkeep
        self.SWEEP_INTERVAL: int = 3600  # Seconds between expiry sweeps
        self.OFFLINE_GRACE_DAYS: int = 7
        self.HEARTBEAT_INTERVAL: int = 15 * 60

        # Dispatch pacing
        self.DISPATCH_DELAY: float = float(os.getenv("EASYSEND_DISPATCH_DELAY", "30"))
        self.NAME_FALLBACK: str = "Friend"

        # Session link
        # The built-in loopback endpoint confirms its own link token
        self.AUTO_PAIR: bool = os.getenv("EASYSEND_AUTO_PAIR", "1").lower() not in (
            "0",
            "false",
            "no",
        )
        self.RELINK_DELAY: float = 5.0  # Backoff after a disconnect
        self.LOGOUT_RELINK_DELAY: float = 2.0
        self.MAX_AUTH_FAILURES: int = 3

        # Logging
        self.LOG_LEVEL: int = logging.getLevelName(
            os.getenv("EASYSEND_LOG_LEVEL", "INFO").upper()
        )
        self.LOG_FILE: str | None = os.getenv("EASYSEND_LOG_FILE")
        self.LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
