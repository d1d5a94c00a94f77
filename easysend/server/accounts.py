"""
User accounts: signup, login, bearer tokens and admin seeding.
"""

from __future__ import annotations

import base64
import logging
import os
import time
from typing import TYPE_CHECKING, Callable

import jwt
from cryptography.exceptions import InvalidKey
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from easysend.common.exceptions import (
    AuthenticationError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from easysend.common.models import UserRecord
from easysend.server.persistence import USERS

if TYPE_CHECKING:
    from easysend.common.interfaces import IDataStore
    from easysend.server.license_coordinator import LicenseCoordinator

logger = logging.getLogger(__name__)

SCRYPT_N = 2**14
SCRYPT_R = 8
SCRYPT_P = 1
SALT_BYTES = 16
TOKEN_ALGORITHM = "HS256"


def _scrypt(salt: bytes) -> Scrypt:
    return Scrypt(salt=salt, length=32, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P)


def hash_credential(password: str) -> str:
    """Return ``salt$key`` (both base64) for storage."""
    salt = os.urandom(SALT_BYTES)
    key = _scrypt(salt).derive(password.encode())
    return (
        base64.b64encode(salt).decode("utf-8")
        + "$"
        + base64.b64encode(key).decode("utf-8")
    )


def check_credential(password: str, credential_hash: str) -> bool:
    try:
        salt_b64, key_b64 = credential_hash.split("$", 1)
        salt = base64.b64decode(salt_b64)
        expected = base64.b64decode(key_b64)
    except ValueError:
        return False
    try:
        _scrypt(salt).verify(password.encode(), expected)
    except InvalidKey:
        return False
    return True


class TokenSigner:
    """Signed JWT bearer tokens carrying the user id as ``sub``.

    Expiry is checked against the injected clock rather than the wall clock.
    """

    def __init__(self, secret: str, ttl: int, clock: Callable[[], float] = time.time):
        self._secret = secret
        self.ttl = ttl
        self.clock = clock

    def issue(self, user_id: int) -> str:
        now = int(self.clock())
        payload = {"sub": str(user_id), "iat": now, "exp": now + self.ttl}
        return jwt.encode(payload, self._secret, algorithm=TOKEN_ALGORITHM)

    def read(self, token: str) -> int:
        """Return the user id a valid token was issued for."""
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[TOKEN_ALGORITHM],
                options={
                    "require": ["sub", "exp"],
                    "verify_exp": False,
                    "verify_iat": False,
                },
            )
            user_id = int(payload["sub"])
        except jwt.InvalidSignatureError as err:
            msg = "Invalid token"
            raise AuthenticationError(msg) from err
        except jwt.DecodeError as err:
            msg = "Malformed token"
            raise AuthenticationError(msg) from err
        except (jwt.InvalidTokenError, ValueError) as err:
            msg = "Invalid token"
            raise AuthenticationError(msg) from err
        if payload["exp"] < self.clock():
            msg = "Token expired"
            raise AuthenticationError(msg)
        return user_id


class AccountService:
    """Creates and authenticates users."""

    def __init__(
        self,
        store: IDataStore,
        licenses: LicenseCoordinator,
        tokens: TokenSigner,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.licenses = licenses
        self.tokens = tokens
        self.clock = clock

    def signup(
        self, email: str, password: str, name: str, phone: str | None = None
    ) -> tuple[UserRecord, str]:
        email = email.strip().lower()
        if not email or not password or not name:
            msg = "Name, email and password required"
            raise ValidationError(msg)
        with self.store.transaction():
            if self._find_by_email(email) is not None:
                msg = "Email already registered"
                raise ValidationError(msg)
            user = UserRecord(
                id=self.store.next_id(USERS),
                email=email,
                credential_hash=hash_credential(password),
                name=name,
                phone=phone,
                created_at=int(self.clock()),
            )
            self.store.put(USERS, user.id, user.model_dump(mode="json"))
        logger.info("User %s signed up", email)
        return user, self.tokens.issue(user.id)

    def login(self, email: str, password: str) -> tuple[UserRecord, str]:
        """Check credentials, sweep expirations and issue a token."""
        user = self._find_by_email(email.strip().lower())
        if user is None or not check_credential(password, user.credential_hash):
            msg = "Invalid email or password"
            raise AuthenticationError(msg)
        self.licenses.sweep_expirations()
        refreshed = self.get(user.id)
        logger.info("User %s logged in", refreshed.email)
        return refreshed, self.tokens.issue(refreshed.id)

    def authenticate(self, token: str) -> UserRecord:
        user_id = self.tokens.read(token)
        try:
            return self.get(user_id)
        except NotFoundError as err:
            msg = "Unknown user"
            raise AuthenticationError(msg) from err

    def require_admin(self, token: str) -> UserRecord:
        user = self.authenticate(token)
        if not user.is_admin:
            msg = "Admin access required"
            raise PermissionDeniedError(msg)
        return user

    def get(self, user_id: int) -> UserRecord:
        record = self.store.get(USERS, user_id)
        if record is None:
            msg = "User not found"
            raise NotFoundError(msg)
        return UserRecord.model_validate(record)

    def list_users(self) -> list[UserRecord]:
        users = [UserRecord.model_validate(r) for r in self.store.query(USERS)]
        return sorted(users, key=lambda u: u.created_at, reverse=True)

    def _find_by_email(self, email: str) -> UserRecord | None:
        matches = self.store.query(USERS, lambda r: r["email"] == email)
        return UserRecord.model_validate(matches[0]) if matches else None


def seed_admin(
    store: IDataStore,
    email: str,
    password: str,
    clock: Callable[[], float] = time.time,
) -> UserRecord | None:
    """Create the administrative account unless an admin already exists."""
    with store.transaction():
        if store.query(USERS, lambda r: r["is_admin"]):
            return None
        admin = UserRecord(
            id=store.next_id(USERS),
            email=email.strip().lower(),
            credential_hash=hash_credential(password),
            name="Admin",
            is_admin=True,
            created_at=int(clock()),
        )
        store.put(USERS, admin.id, admin.model_dump(mode="json"))
    logger.info("Seeded admin account %s", admin.email)
    return admin
