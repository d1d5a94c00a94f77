# Desktop-side license client
from easysend.client.decorators import requires_active_license
from easysend.client.license_client import LicenseClient, machine_id
from easysend.client.runner import HeartbeatRunner

__all__ = [
    "HeartbeatRunner",
    "LicenseClient",
    "machine_id",
    "requires_active_license",
]
