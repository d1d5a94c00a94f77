"""
Pydantic models for records, events and request/response validation.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator


class SessionState(str, Enum):
    IDLE = "idle"
    AWAITING_SCAN = "awaiting_scan"
    AUTHENTICATING = "authenticating"
    READY = "ready"
    DISCONNECTED = "disconnected"
    AUTH_FAILED = "auth_failed"


class LinkEventKind(str, Enum):
    LINK_REQUEST_ISSUED = "link-request-issued"
    AUTHENTICATED = "authenticated"
    READY = "ready"
    DISCONNECTED = "disconnected"
    AUTH_FAILURE = "auth-failure"


class LicenseStatus(str, Enum):
    UNUSED = "unused"
    ACTIVE = "active"
    EXPIRED = "expired"


class VerificationStatus(str, Enum):
    VALID = "valid"
    OFFLINE_GRACE = "offline_grace"


class OutcomeStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"


class Topic(str, Enum):
    SESSION_STATE = "session-state"
    LICENSE_STATE = "license-state"
    DISPATCH_START = "dispatch-start"
    DISPATCH_PROGRESS = "dispatch-progress"
    DISPATCH_COMPLETE = "dispatch-complete"


# Session


class LinkEvent(BaseModel):
    kind: LinkEventKind
    token: str | None = None
    reason: str | None = None


class Session(BaseModel):
    state: SessionState = SessionState.IDLE
    link_token: str | None = None
    reason: str | None = None
    updated_at: float = 0


# Ledger records


class LicenseRecord(BaseModel):
    key: str
    plan_name: str
    price: float
    duration_days: int = Field(gt=0)
    status: LicenseStatus = LicenseStatus.UNUSED
    owner_user_id: int | None = None
    activated_at: int | None = None
    expires_at: int | None = None
    machine_id: str | None = None
    last_active_at: int | None = None
    created_at: int


class UserRecord(BaseModel):
    id: int
    email: str
    credential_hash: str
    name: str = ""
    phone: str | None = None
    is_admin: bool = False
    current_license_key: str | None = None
    current_license_expires_at: int | None = None
    created_at: int


class TemplateRecord(BaseModel):
    id: int
    name: str
    message: str
    user_id: int | None = None
    created_at: int


class DispatchOutcome(BaseModel):
    id: int
    job_id: str
    recipient: str
    display_name: str | None = None
    template_id: int | None = None
    user_id: int | None = None
    resolved_message: str
    status: OutcomeStatus
    error: str | None = None
    timestamp: int


# Dispatch


class Recipient(BaseModel):
    address: str = Field(min_length=1)
    display_name: str | None = None


class Attachment(BaseModel):
    path: Path
    mime_type: str | None = None
    delete_after: bool = True


class DispatchJob(BaseModel):
    recipients: list[Recipient]
    message_template: str
    attachment: Attachment | None = None
    template_id: int | None = None
    user_id: int | None = None
    delay_seconds: float | None = Field(default=None, ge=0)
    check_reachability: bool = True


class DispatchCounters(BaseModel):
    sent: int = 0
    failed: int = 0
    total: int = 0
    current_index: int = 0


class DispatchProgress(BaseModel):
    job_id: str
    counters: DispatchCounters
    running: bool


class Accepted(BaseModel):
    job_id: str
    total: int


# License results


class ActivationResult(BaseModel):
    key: str
    expires_at: int


class VerificationResult(BaseModel):
    valid: bool
    status: VerificationStatus = VerificationStatus.VALID
    user: dict[str, Any] | None = None
    expires_at: int | None = None

    @property
    def offline(self) -> bool:
        return self.status == VerificationStatus.OFFLINE_GRACE


class LicenseSummary(BaseModel):
    key: str | None = None
    status: LicenseStatus | None = None
    expires_at: int | None = None
    days_remaining: int | None = None


# HTTP requests


class SignupRequest(BaseModel):
    name: str = Field(min_length=1)
    email: str = Field(min_length=3)
    password: str = Field(min_length=1)
    phone: str | None = None

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class LoginRequest(BaseModel):
    email: str
    password: str


class ActivateRequest(BaseModel):
    license_key: str = Field(min_length=1)


class VerifyRequest(BaseModel):
    license_key: str = Field(min_length=1)
    machine_id: str | None = None


class IssueLicenseRequest(BaseModel):
    plan_name: str | None = None
    price: float | None = Field(default=None, ge=0)
    duration_days: int | None = Field(default=None, gt=0)


class SendMessagesRequest(BaseModel):
    contacts: list[Recipient]
    message: str
    template_id: int | None = None
    media_path: str | None = None
    delay_seconds: float | None = Field(default=None, ge=0)


class TemplateRequest(BaseModel):
    name: str = Field(min_length=1)
    message: str = Field(min_length=1)


class SettingsRequest(BaseModel):
    settings: dict[str, str]
