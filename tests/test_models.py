"""Test pydantic models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from easysend.common.models import (
    DispatchJob,
    LicenseRecord,
    LicenseStatus,
    Recipient,
    SignupRequest,
    VerificationResult,
    VerificationStatus,
)


def test_license_record_defaults() -> None:
    lic = LicenseRecord(
        key="WA-AAAA-BBBB-CCCC-DDDD",
        plan_name="p",
        price=1,
        duration_days=30,
        created_at=0,
    )
    assert lic.status == LicenseStatus.UNUSED
    assert lic.owner_user_id is None
    assert lic.machine_id is None


def test_license_record_rejects_non_positive_duration() -> None:
    with pytest.raises(ValidationError):
        LicenseRecord(key="k", plan_name="p", price=1, duration_days=0, created_at=0)


def test_license_record_round_trips_status_as_string() -> None:
    lic = LicenseRecord(key="k", plan_name="p", price=1, duration_days=1, created_at=0)
    dumped = lic.model_dump(mode="json")
    assert dumped["status"] == "unused"
    assert LicenseRecord.model_validate(dumped) == lic


def test_recipient_requires_address() -> None:
    with pytest.raises(ValidationError):
        Recipient(address="")


def test_dispatch_job_rejects_negative_delay() -> None:
    with pytest.raises(ValidationError):
        DispatchJob(
            recipients=[Recipient(address="1")],
            message_template="hi",
            delay_seconds=-1,
        )


def test_signup_request_normalizes_email() -> None:
    req = SignupRequest(name="Ann", email="  Ann@Example.COM ", password="x")
    assert req.email == "ann@example.com"


def test_verification_result_offline_flag() -> None:
    assert not VerificationResult(valid=True).offline
    grace = VerificationResult(valid=True, status=VerificationStatus.OFFLINE_GRACE)
    assert grace.offline
