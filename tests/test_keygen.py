"""Test license key generation."""

from __future__ import annotations

import itertools

import pytest

from easysend.server.keygen import KEY_ALPHABET, KeyGenerator


def test_generate_key_format() -> None:
    keygen = KeyGenerator()
    key = keygen.generate_key()
    prefix, *segments = key.split("-")
    assert prefix == "WA"
    assert len(segments) == 4
    assert all(len(s) == 4 for s in segments)
    assert all(c in KEY_ALPHABET for s in segments for c in s)
    assert keygen.is_well_formed(key)


def test_generate_key_uses_given_choice() -> None:
    chars = itertools.cycle("AB12")
    keygen = KeyGenerator(prefix="XY", choice=lambda _alphabet: next(chars))
    assert keygen.generate_key() == "XY-AB12-AB12-AB12-AB12"


def test_generated_keys_differ() -> None:
    keygen = KeyGenerator()
    keys = {keygen.generate_key() for _ in range(50)}
    assert len(keys) == 50


@pytest.mark.parametrize(
    "key",
    ["WA-AAAA-BBBB-CCCC", "wa-aaaa-bbbb-cccc-dddd", "XX-AAAA-BBBB-CCCC-DDDD", ""],
)
def test_is_well_formed_rejects(key: str) -> None:
    assert not KeyGenerator().is_well_formed(key)


def test_invalid_prefix() -> None:
    with pytest.raises(ValueError, match="prefix"):
        KeyGenerator(prefix="w-a")
