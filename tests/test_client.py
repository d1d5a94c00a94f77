from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any
from unittest.mock import MagicMock, patch

import pytest
import requests

from easysend.client import HeartbeatRunner, LicenseClient, requires_active_license
from easysend.client.license_client import machine_id
from easysend.common.exceptions import EasySendError, LicenseError

if TYPE_CHECKING:
    from conftest import FakeClock

DAY = 24 * 60 * 60


def response(status: int, body: Any) -> MagicMock:
    resp = MagicMock(spec=requests.Response)
    resp.status_code = status
    resp.json.return_value = body
    resp.text = str(body)
    return resp


VALID = {
    "valid": True,
    "status": "valid",
    "user": {"id": 1, "email": "ann@example.com"},
    "expires_at": 1_800_000_000,
    "offline": False,
}


@pytest.fixture
def client(tmp_path: Path, clock: FakeClock) -> LicenseClient:
    """Create LicenseClient instance."""
    return LicenseClient(
        "WA-AAAA-BBBB-CCCC-DDDD",
        server_url="http://localhost:3000/",
        machine="machine-1",
        cache_path=tmp_path / "grace.json",
        grace_days=7,
        clock=clock,
    )


def test_client_initialization(client: LicenseClient) -> None:
    assert client.server_url == "http://localhost:3000"
    assert client.machine_id == "machine-1"


def test_machine_id_is_stable() -> None:
    assert machine_id() == machine_id()
    assert len(machine_id()) == 32


def test_verify_posts_key_and_machine(client: LicenseClient) -> None:
    with patch("requests.post", return_value=response(200, VALID)) as post:
        result = client.verify()
    post.assert_called_once()
    args, kwargs = post.call_args
    assert args[0] == "http://localhost:3000/api/licenses/verify"
    assert kwargs["json"] == {
        "license_key": "WA-AAAA-BBBB-CCCC-DDDD",
        "machine_id": "machine-1",
    }
    assert result.valid
    assert not result.offline
    assert result.expires_at == VALID["expires_at"]


def test_rejection_raises_license_error(client: LicenseClient) -> None:
    body = {"detail": "License is bound to another machine"}
    with patch("requests.post", return_value=response(403, body)):
        with pytest.raises(LicenseError, match="another machine") as exc:
            client.verify()
    assert exc.value.status_code == 403


def test_server_error_is_not_a_license_error(client: LicenseClient) -> None:
    with patch("requests.post", return_value=response(503, {"detail": "down"})):
        with pytest.raises(EasySendError) as exc:
            client.heartbeat()
    assert not isinstance(exc.value, LicenseError)


def test_offline_grace_from_cache(
    client: LicenseClient, tmp_path: Path, clock: FakeClock
) -> None:
    with patch("requests.post", return_value=response(200, VALID)):
        client.verify()
    assert (tmp_path / "grace.json").exists()

    unreachable = requests.ConnectionError("refused")
    clock.advance(2 * DAY)
    with patch("requests.post", side_effect=unreachable):
        result = client.verify()
    assert result.offline
    assert result.valid

    clock.advance(6 * DAY)
    with patch("requests.post", side_effect=unreachable):
        with pytest.raises(LicenseError, match="unreachable"):
            client.verify()


def test_offline_without_cache_fails(client: LicenseClient) -> None:
    with patch("requests.post", side_effect=requests.Timeout("slow")):
        assert not client.is_license_active()


def test_requires_active_license_decorator(client: LicenseClient) -> None:
    @requires_active_license(client, "Activate your license first")
    def send() -> str:
        return "sent"

    with patch("requests.post", return_value=response(200, VALID)):
        assert send() == "sent"
    with patch("requests.post", return_value=response(403, {"detail": "expired"})):
        with pytest.raises(LicenseError, match="Activate your license first"):
            send()


def test_requires_active_license_by_attribute(client: LicenseClient) -> None:
    class App:
        def __init__(self) -> None:
            self.license = client

        @requires_active_license("license", raise_exception=False)
        def export(self) -> str:
            return "exported"

    with patch("requests.post", return_value=response(404, {"detail": "nope"})):
        assert App().export() is None


def test_heartbeat_runner_reports_rejection(client: LicenseClient) -> None:
    errors: list[Exception] = []
    runner = HeartbeatRunner(
        client, heartbeat_interval=0.01, on_error_callback=errors.append
    )
    replies = [
        response(200, VALID),
        response(200, VALID),
        response(403, {"detail": "expired"}),
    ]
    with patch("requests.post", side_effect=replies):
        runner.run()
    assert len(errors) == 1
    assert isinstance(errors[0], LicenseError)


def test_heartbeat_runner_thread_stops(client: LicenseClient) -> None:
    runner = HeartbeatRunner(client, heartbeat_interval=60)
    with patch("requests.post", return_value=response(200, VALID)):
        runner.start_in_thread()
        runner.stop_thread()
    assert runner._thread is None
