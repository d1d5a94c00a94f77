from __future__ import annotations

from pathlib import Path

import pytest

from easysend.common.config import Config
from easysend.common.scheduler import InlineScheduler
from easysend.server.accounts import hash_credential
from easysend.server.broadcaster import ProgressBroadcaster
from easysend.server.endpoint import LoopbackEndpoint
from easysend.server.keygen import KeyGenerator
from easysend.server.license_coordinator import LicenseCoordinator
from easysend.server.persistence import USERS, InMemoryStore
from easysend.server.session_coordinator import SessionCoordinator

START = 1_700_000_000


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: float = START):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def broadcaster() -> ProgressBroadcaster:
    return ProgressBroadcaster()


@pytest.fixture
def scheduler() -> InlineScheduler:
    return InlineScheduler()


@pytest.fixture
def endpoint() -> LoopbackEndpoint:
    return LoopbackEndpoint()


@pytest.fixture
def session(
    endpoint: LoopbackEndpoint,
    broadcaster: ProgressBroadcaster,
    scheduler: InlineScheduler,
    clock: FakeClock,
) -> SessionCoordinator:
    return SessionCoordinator(endpoint, broadcaster, scheduler, clock=clock)


@pytest.fixture
def ready_session(
    session: SessionCoordinator, endpoint: LoopbackEndpoint
) -> SessionCoordinator:
    session.start()
    endpoint.pair()
    assert session.is_ready
    return session


@pytest.fixture
def licenses(
    store: InMemoryStore,
    broadcaster: ProgressBroadcaster,
    scheduler: InlineScheduler,
    clock: FakeClock,
) -> LicenseCoordinator:
    return LicenseCoordinator(
        store,
        KeyGenerator(),
        broadcaster=broadcaster,
        scheduler=scheduler,
        clock=clock,
    )


def _add_user(store: InMemoryStore, email: str, *, is_admin: bool) -> int:
    user_id = store.next_id(USERS)
    store.put(
        USERS,
        user_id,
        {
            "id": user_id,
            "email": email,
            "credential_hash": hash_credential("secret"),
            "name": email.split("@")[0],
            "is_admin": is_admin,
            "created_at": START,
        },
    )
    return user_id


@pytest.fixture
def config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Config:
    monkeypatch.setenv("EASYSEND_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("EASYSEND_ADMIN_PASSWORD", "admin-secret")
    monkeypatch.setenv("EASYSEND_DISPATCH_DELAY", "0")
    monkeypatch.delenv("EASYSEND_LOG_FILE", raising=False)
    monkeypatch.delenv("EASYSEND_AUTO_PAIR", raising=False)
    return Config()


@pytest.fixture
def make_user(store: InMemoryStore):
    """Insert a user straight into the store and return its id."""

    def make(email: str = "user@example.com", *, is_admin: bool = False) -> int:
        return _add_user(store, email, is_admin=is_admin)

    return make
