"""
Command-line interface for EasySend.
"""

from __future__ import annotations

import os
import shutil

import click

from easysend.common.config import Config
from easysend.common.exceptions import EasySendError
from easysend.common.grace import OfflineGraceCache
from easysend.common.logging_utils import setup_logging
from easysend.server import start_server
from easysend.server.keygen import KeyGenerator
from easysend.server.license_coordinator import LicenseCoordinator
from easysend.server.persistence import open_store


def _apply_data_dir(data_dir: str | None) -> None:
    if data_dir:
        os.environ["EASYSEND_DATA_DIR"] = data_dir


def _coordinator(config: Config) -> LicenseCoordinator:
    return LicenseCoordinator(
        open_store(config),
        KeyGenerator(config.LICENSE_KEY_PREFIX),
        grace_cache=OfflineGraceCache(config.OFFLINE_GRACE_DAYS, config.GRACE_CACHE_PATH),
        max_key_attempts=config.MAX_KEY_GENERATION_ATTEMPTS,
    )


data_dir_option = click.option(
    "--data-dir",
    default=None,
    help="Directory holding the store and link credentials (default: EASYSEND_DATA_DIR)",
)


@click.group()
def cli() -> None:
    """EasySend bulk messaging CLI"""


@cli.command()
@data_dir_option
@click.option(
    "--host",
    default=None,
    help="Host to bind server to (default: from EASYSEND_SERVER_HOST env or 127.0.0.1)",
)
@click.option(
    "--port",
    default=None,
    type=int,
    help="Port to bind server to (default: from EASYSEND_SERVER_PORT env or 3000)",
)
@click.option(
    "--reset-session",
    is_flag=True,
    help="Forget the stored device link on startup",
)
def serve(
    data_dir: str | None,
    host: str | None,
    port: int | None,
    reset_session: bool,  # noqa: FBT001
) -> None:
    """Start the bulk send server"""
    _apply_data_dir(data_dir)
    if host:
        os.environ["EASYSEND_SERVER_HOST"] = host
    if port:
        os.environ["EASYSEND_SERVER_PORT"] = str(port)

    config = Config()

    if reset_session and config.LINK_CREDENTIALS_DIR.exists():
        shutil.rmtree(config.LINK_CREDENTIALS_DIR)
        click.echo("Device link reset")

    start_server(config)


@cli.command("issue-license")
@data_dir_option
@click.option("--plan", "plan_name", default=None, help="Plan name")
@click.option("--price", default=None, type=float, help="Plan price")
@click.option("--days", default=None, type=int, help="Duration in days")
@click.option("--count", default=1, type=click.IntRange(min=1), help="Keys to issue")
def issue_license(
    data_dir: str | None,
    plan_name: str | None,
    price: float | None,
    days: int | None,
    count: int,
) -> None:
    """Issue new unused license keys"""
    _apply_data_dir(data_dir)
    config = Config()
    setup_logging(config)
    coordinator = _coordinator(config)
    try:
        for _ in range(count):
            lic = coordinator.issue(
                plan_name or config.DEFAULT_PLAN_NAME,
                price if price is not None else config.DEFAULT_PLAN_PRICE,
                days or config.DEFAULT_PLAN_DURATION_DAYS,
            )
            click.echo(lic.key)
    except EasySendError as e:
        raise click.ClickException(str(e)) from e


@cli.command()
@data_dir_option
def sweep(data_dir: str | None) -> None:
    """Mark every active license past its term as expired"""
    _apply_data_dir(data_dir)
    config = Config()
    setup_logging(config)
    try:
        expired = _coordinator(config).sweep_expirations()
    except EasySendError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"Expired {expired} license(s)")


@cli.command()
@data_dir_option
@click.argument("license_key")
@click.option("--machine-id", default=None, help="Machine to verify the key for")
def verify(data_dir: str | None, license_key: str, machine_id: str | None) -> None:
    """Verify a license key"""
    _apply_data_dir(data_dir)
    config = Config()
    setup_logging(config)
    try:
        result = _coordinator(config).verify(license_key, machine_id)
    except EasySendError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"{result.status.value}: expires at {result.expires_at}")


if __name__ == "__main__":
    cli()
