"""License decorators for gating desktop features.
"""

from __future__ import annotations

import logging
from functools import wraps
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

from easysend.common.exceptions import LicenseError

logger = logging.getLogger(__name__)


def requires_active_license(
    license_client: Any | str,
    error_message: str = "License is not active",
    *,
    raise_exception: bool = True,
) -> Callable:
    """Decorator that runs the function only while the license is active.

    Args:
        license_client: LicenseClient instance, or the name of an attribute
            on ``self`` holding one
        error_message: Message to use when the license is not active
        raise_exception: Whether to raise LicenseError or return None

    Returns:
        Decorated function that only executes when the license is active
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            if isinstance(license_client, str):
                if not args:
                    msg = f"Cannot get client attribute '{license_client}' without self"
                    raise ValueError(msg)
                client = getattr(args[0], license_client)
            else:
                client = license_client

            if not client.is_license_active():
                if raise_exception:
                    raise LicenseError(error_message)
                logger.warning("License check failed: %s", error_message)
                return None
            return func(*args, **kwargs)

        return wrapper

    return decorator
