# EasySend bulk messaging

from easysend.client import HeartbeatRunner, LicenseClient, requires_active_license

__all__ = [
    "HeartbeatRunner",
    "LicenseClient",
    "requires_active_license",
]
