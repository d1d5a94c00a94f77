"""
License issuance, activation, verification and expiry.
"""

from __future__ import annotations

import logging
import math
import time
from typing import TYPE_CHECKING, Any, Callable

from easysend.common.exceptions import (
    AlreadyUsedError,
    EasySendError,
    ExpiredError,
    MachineMismatchError,
    NotActivatedError,
    NotFoundError,
    StoreUnavailableError,
    ValidationError,
)
from easysend.common.grace import DAY, OfflineGraceCache
from easysend.common.models import (
    ActivationResult,
    LicenseRecord,
    LicenseStatus,
    LicenseSummary,
    Topic,
    UserRecord,
    VerificationResult,
)
from easysend.server.persistence import LICENSES, USERS

if TYPE_CHECKING:
    from easysend.common.interfaces import IBroadcaster, IDataStore
    from easysend.common.scheduler import Cancellable, Scheduler
    from easysend.server.keygen import KeyGenerator

logger = logging.getLogger(__name__)


def public_user(user: UserRecord) -> dict[str, Any]:
    """User fields safe to hand to clients."""
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "is_admin": user.is_admin,
    }


class LicenseCoordinator:
    """Gates feature access through the license lifecycle.

    Status only ever moves ``unused -> active -> expired``. Expiry is applied
    lazily on verification and in bulk by :meth:`sweep_expirations`.
    """

    def __init__(  # noqa: PLR0913
        self,
        store: IDataStore,
        key_generator: KeyGenerator,
        broadcaster: IBroadcaster | None = None,
        scheduler: Scheduler | None = None,
        grace_cache: OfflineGraceCache | None = None,
        max_key_attempts: int = 10,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.key_generator = key_generator
        self.broadcaster = broadcaster
        self.scheduler = scheduler
        self.grace_cache = grace_cache or OfflineGraceCache(grace_days=7)
        self.max_key_attempts = max_key_attempts
        self.clock = clock
        self._sweep_call: Cancellable | None = None
        self._sweep_interval: float | None = None

    def _now(self) -> int:
        return int(self.clock())

    # Issuance

    def issue(self, plan_name: str, price: float, duration_days: int) -> LicenseRecord:
        """Create an unused license with a key not yet present in the ledger."""
        if not plan_name.strip():
            msg = "Plan name is required"
            raise ValidationError(msg)
        if price < 0:
            msg = "Price cannot be negative"
            raise ValidationError(msg)
        if duration_days <= 0:
            msg = "Duration must be at least one day"
            raise ValidationError(msg)

        for _ in range(self.max_key_attempts):
            key = self.key_generator.generate_key()
            with self.store.transaction():
                if self.store.get(LICENSES, key) is not None:
                    logger.warning("License key collision on %s, regenerating", key)
                    continue
                record = LicenseRecord(
                    key=key,
                    plan_name=plan_name.strip(),
                    price=price,
                    duration_days=duration_days,
                    created_at=self._now(),
                )
                self.store.put(LICENSES, key, record.model_dump(mode="json"))
            logger.info("Issued license %s (%s, %d days)", key, plan_name, duration_days)
            return record

        msg = f"Could not generate a unique license key in {self.max_key_attempts} attempts"
        raise EasySendError(msg)

    # Activation

    def activate(self, key: str, user_id: int) -> ActivationResult:
        """Bind an unused license to a user and start its term."""
        key = key.strip().upper()
        now = self._now()
        with self.store.transaction():
            lic = self._get_license(key)
            if lic.status != LicenseStatus.UNUSED:
                msg = "License already used"
                raise AlreadyUsedError(msg)
            user = self._get_user(user_id)

            lic.owner_user_id = user.id
            lic.activated_at = now
            lic.expires_at = now + lic.duration_days * DAY
            lic.status = LicenseStatus.ACTIVE
            user.current_license_key = lic.key
            user.current_license_expires_at = lic.expires_at

            self.store.put(LICENSES, lic.key, lic.model_dump(mode="json"))
            self.store.put(USERS, user.id, user.model_dump(mode="json"))

        logger.info("License %s activated for user %s until %s", key, user_id, lic.expires_at)
        self._publish(lic)
        return ActivationResult(key=lic.key, expires_at=lic.expires_at)

    # Verification

    def verify(self, key: str, machine_id: str | None = None) -> VerificationResult:
        """Check a license for a device, binding the device on first use.

        When the ledger is unreachable a recently verified license is granted
        an ``offline_grace`` result instead; otherwise the call fails closed.
        """
        key = key.strip().upper()
        now = self._now()
        try:
            result, bound_machine = self._verify_online(key, machine_id, now)
        except StoreUnavailableError:
            grace = self.grace_cache.lookup(key, machine_id, now)
            if grace is None:
                logger.warning("Ledger unreachable and no grace for %s", key)
                raise
            logger.warning("Ledger unreachable, %s valid under offline grace", key)
            return grace
        self.grace_cache.remember(key, bound_machine, result, now)
        return result

    def heartbeat(self, key: str, machine_id: str | None = None) -> VerificationResult:
        return self.verify(key, machine_id)

    def _verify_online(
        self, key: str, machine_id: str | None, now: int
    ) -> tuple[VerificationResult, str | None]:
        """Verify against the ledger; also return the machine the key is bound to."""
        expired_now = False
        owner: UserRecord | None = None
        with self.store.transaction():
            lic = self._get_license(key)
            if lic.status == LicenseStatus.UNUSED:
                msg = "License has not been activated"
                raise NotActivatedError(msg)
            if self._is_past_term(lic, now):
                lic.status = LicenseStatus.EXPIRED
                self.store.put(LICENSES, lic.key, lic.model_dump(mode="json"))
                expired_now = True
            elif lic.status == LicenseStatus.ACTIVE:
                if machine_id:
                    if lic.machine_id is None:
                        lic.machine_id = machine_id
                        logger.info("License %s bound to machine %s", key, machine_id)
                    elif lic.machine_id != machine_id:
                        msg = "License is bound to another machine"
                        raise MachineMismatchError(msg)
                lic.last_active_at = now
                self.store.put(LICENSES, lic.key, lic.model_dump(mode="json"))
                if lic.owner_user_id is not None:
                    owner = self._get_user(lic.owner_user_id)

        if expired_now:
            self._publish(lic)
        if lic.status == LicenseStatus.EXPIRED:
            msg = "License expired"
            raise ExpiredError(msg)
        result = VerificationResult(
            valid=True,
            user=public_user(owner) if owner else None,
            expires_at=lic.expires_at,
        )
        return result, lic.machine_id

    def ensure_entitled(self, user_id: int) -> LicenseRecord | None:
        """Raise unless the user may use licensed features. Admins always may."""
        user = self._get_user(user_id)
        if user.is_admin:
            return None
        if not user.current_license_key:
            msg = "No active license"
            raise NotActivatedError(msg)
        lic = self._get_license(user.current_license_key)
        if lic.status == LicenseStatus.ACTIVE and self._is_past_term(lic, self._now()):
            self._expire(lic)
        if lic.status != LicenseStatus.ACTIVE:
            msg = "License expired"
            raise ExpiredError(msg)
        return lic

    # Expiry

    def sweep_expirations(self) -> int:
        """Mark every active license past its term as expired. Idempotent."""
        now = self._now()
        with self.store.transaction():
            due = [
                LicenseRecord.model_validate(r)
                for r in self.store.query(
                    LICENSES,
                    lambda r: r["status"] == LicenseStatus.ACTIVE.value
                    and r["expires_at"] is not None
                    and r["expires_at"] < now,
                )
            ]
            for lic in due:
                lic.status = LicenseStatus.EXPIRED
                self.store.put(LICENSES, lic.key, lic.model_dump(mode="json"))
        for lic in due:
            self._publish(lic)
        if due:
            logger.info("Expired %d license(s)", len(due))
        return len(due)

    def start_sweeper(self, interval: float) -> None:
        """Run the expiry sweep every ``interval`` seconds until stopped."""
        if self.scheduler is None:
            msg = "A scheduler is required for the periodic sweep"
            raise ValueError(msg)
        self._sweep_interval = interval
        self._arm_sweeper()

    def stop_sweeper(self) -> None:
        self._sweep_interval = None
        if self._sweep_call is not None:
            self._sweep_call.cancel()
            self._sweep_call = None

    def _arm_sweeper(self) -> None:
        if self._sweep_interval is None or self.scheduler is None:
            return
        self._sweep_call = self.scheduler.call_later(
            self._sweep_interval, self._sweep_tick
        )

    def _sweep_tick(self) -> None:
        try:
            self.sweep_expirations()
        except StoreUnavailableError:
            logger.warning("Expiry sweep skipped, ledger unreachable")
        finally:
            self._arm_sweeper()

    # Queries

    def license_summary(self, user_id: int) -> LicenseSummary:
        user = self._get_user(user_id)
        if not user.current_license_key:
            return LicenseSummary()
        lic = self._get_license(user.current_license_key)
        days_remaining = None
        if lic.expires_at is not None:
            days_remaining = max(0, math.ceil((lic.expires_at - self._now()) / DAY))
        return LicenseSummary(
            key=lic.key,
            status=lic.status,
            expires_at=lic.expires_at,
            days_remaining=days_remaining,
        )

    def list_licenses(self) -> list[LicenseRecord]:
        records = [LicenseRecord.model_validate(r) for r in self.store.query(LICENSES)]
        return sorted(records, key=lambda lic: lic.created_at, reverse=True)

    def stats(self) -> dict[str, int]:
        licenses = self.store.query(LICENSES)
        users = self.store.query(USERS, lambda r: not r["is_admin"])

        def count(status: LicenseStatus) -> int:
            return sum(1 for r in licenses if r["status"] == status.value)

        return {
            "total_users": len(users),
            "active_licenses": count(LicenseStatus.ACTIVE),
            "unused_licenses": count(LicenseStatus.UNUSED),
            "expired_licenses": count(LicenseStatus.EXPIRED),
        }

    # Internals

    @staticmethod
    def _is_past_term(lic: LicenseRecord, now: int) -> bool:
        return (
            lic.status == LicenseStatus.ACTIVE
            and lic.expires_at is not None
            and now > lic.expires_at
        )

    def _expire(self, lic: LicenseRecord) -> None:
        with self.store.transaction():
            current = self._get_license(lic.key)
            if current.status == LicenseStatus.ACTIVE:
                current.status = LicenseStatus.EXPIRED
                self.store.put(LICENSES, current.key, current.model_dump(mode="json"))
        lic.status = LicenseStatus.EXPIRED
        self._publish(lic)

    def _get_license(self, key: str) -> LicenseRecord:
        record = self.store.get(LICENSES, key)
        if record is None:
            msg = "Invalid license key"
            raise NotFoundError(msg)
        return LicenseRecord.model_validate(record)

    def _get_user(self, user_id: int) -> UserRecord:
        record = self.store.get(USERS, user_id)
        if record is None:
            msg = f"User {user_id} not found"
            raise NotFoundError(msg)
        return UserRecord.model_validate(record)

    def _publish(self, lic: LicenseRecord) -> None:
        if self.broadcaster is None:
            return
        self.broadcaster.publish(
            Topic.LICENSE_STATE,
            {
                "key": lic.key,
                "status": lic.status.value,
                "user_id": lic.owner_user_id,
                "expires_at": lic.expires_at,
            },
        )
