"""
License key generator.
"""

from __future__ import annotations

import re
import secrets
import string
from typing import Callable

KEY_ALPHABET = string.ascii_uppercase + string.digits
SEGMENT_COUNT = 4
SEGMENT_LENGTH = 4


class KeyGenerator:
    """Generates keys of the form ``PREFIX-SSSS-SSSS-SSSS-SSSS``."""

    def __init__(self, prefix: str = "WA", choice: Callable[[str], str] | None = None):
        if not prefix or not re.fullmatch(r"[A-Z0-9]+", prefix):
            msg = f"Invalid license key prefix: {prefix!r}"
            raise ValueError(msg)
        self.prefix = prefix
        self._choice = choice or secrets.choice
        self._pattern = re.compile(
            rf"{re.escape(prefix)}(-[A-Z0-9]{{{SEGMENT_LENGTH}}}){{{SEGMENT_COUNT}}}"
        )

    def generate_key(self) -> str:
        """Return a fresh random key. Uniqueness is the caller's concern."""
        segments = [
            "".join(self._choice(KEY_ALPHABET) for _ in range(SEGMENT_LENGTH))
            for _ in range(SEGMENT_COUNT)
        ]
        return "-".join([self.prefix, *segments])

    def is_well_formed(self, key: str) -> bool:
        return self._pattern.fullmatch(key) is not None
