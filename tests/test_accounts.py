"""Test user accounts and bearer tokens."""

from __future__ import annotations

from typing import TYPE_CHECKING

import jwt
import pytest

from easysend.common.exceptions import (
    AuthenticationError,
    PermissionDeniedError,
    ValidationError,
)
from easysend.server.accounts import (
    AccountService,
    TokenSigner,
    check_credential,
    hash_credential,
    seed_admin,
)
from easysend.server.license_coordinator import DAY, LicenseCoordinator
from easysend.server.persistence import LICENSES, USERS, InMemoryStore

if TYPE_CHECKING:
    from conftest import FakeClock

SECRET = "test-secret-at-least-thirty-two-bytes"


@pytest.fixture
def accounts(
    store: InMemoryStore, licenses: LicenseCoordinator, clock: FakeClock
) -> AccountService:
    return AccountService(store, licenses, TokenSigner(SECRET, 3600, clock), clock)


def test_credential_hashing() -> None:
    stored = hash_credential("hunter2")
    assert "hunter2" not in stored
    assert hash_credential("hunter2") != stored
    assert check_credential("hunter2", stored)
    assert not check_credential("hunter3", stored)
    assert not check_credential("hunter2", "not-a-hash")


def test_token_round_trip_and_expiry(clock: FakeClock) -> None:
    signer = TokenSigner(SECRET, 60, clock)
    token = signer.issue(42)
    assert signer.read(token) == 42

    with pytest.raises(AuthenticationError, match="Invalid token"):
        TokenSigner("another-secret-of-thirty-two-bytes", 60, clock).read(token)
    with pytest.raises(AuthenticationError, match="Malformed"):
        signer.read("garbage")

    clock.advance(61)
    with pytest.raises(AuthenticationError, match="expired"):
        signer.read(token)


def test_token_is_a_standard_jwt(clock: FakeClock) -> None:
    token = TokenSigner(SECRET, 60, clock).issue(7)
    claims = jwt.decode(
        token, SECRET, algorithms=["HS256"], options={"verify_exp": False}
    )
    assert claims["sub"] == "7"
    assert claims["exp"] == int(clock.now) + 60


def test_token_without_subject_is_rejected(clock: FakeClock) -> None:
    token = jwt.encode({"exp": int(clock.now) + 60}, SECRET, algorithm="HS256")
    with pytest.raises(AuthenticationError, match="Invalid token"):
        TokenSigner(SECRET, 60, clock).read(token)


def test_signup_and_login(accounts: AccountService) -> None:
    user, token = accounts.signup(" Ann@Example.com ", "pw", "Ann", "555")
    assert user.email == "ann@example.com"
    assert accounts.authenticate(token).id == user.id

    logged_in, _ = accounts.login("ANN@example.com", "pw")
    assert logged_in.id == user.id

    with pytest.raises(AuthenticationError, match="Invalid email or password"):
        accounts.login("ann@example.com", "wrong")
    with pytest.raises(AuthenticationError):
        accounts.login("nobody@example.com", "pw")


def test_signup_rejects_duplicates_and_blanks(accounts: AccountService) -> None:
    accounts.signup("ann@example.com", "pw", "Ann")
    with pytest.raises(ValidationError, match="already registered"):
        accounts.signup("ANN@example.com", "pw2", "Other")
    with pytest.raises(ValidationError):
        accounts.signup("bob@example.com", "", "Bob")


def test_login_sweeps_expired_licenses(
    accounts: AccountService,
    licenses: LicenseCoordinator,
    store: InMemoryStore,
    clock: FakeClock,
) -> None:
    user, _ = accounts.signup("ann@example.com", "pw", "Ann")
    key = licenses.issue("Plan", 1, 1).key
    licenses.activate(key, user.id)
    clock.advance(2 * DAY)
    accounts.login("ann@example.com", "pw")
    assert store.get(LICENSES, key)["status"] == "expired"


def test_require_admin(accounts: AccountService, store: InMemoryStore) -> None:
    _, user_token = accounts.signup("ann@example.com", "pw", "Ann")
    with pytest.raises(PermissionDeniedError):
        accounts.require_admin(user_token)

    admin = seed_admin(store, "Admin@Example.com", "root")
    assert admin is not None
    _, admin_token = accounts.login("admin@example.com", "root")
    assert accounts.require_admin(admin_token).is_admin


def test_seed_admin_is_idempotent(store: InMemoryStore) -> None:
    assert seed_admin(store, "admin@example.com", "root") is not None
    assert seed_admin(store, "admin@example.com", "other") is None
    assert len(store.query(USERS, lambda r: r["is_admin"])) == 1


def test_token_for_deleted_user(accounts: AccountService, store: InMemoryStore) -> None:
    user, token = accounts.signup("ann@example.com", "pw", "Ann")
    store.delete(USERS, user.id)
    with pytest.raises(AuthenticationError, match="Unknown user"):
        accounts.authenticate(token)
