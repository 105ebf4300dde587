from __future__ import annotations

import base58
import pytest

from vrf_oracle.errors import AddressDerivationError
from vrf_oracle.ledger.address import (
    MAX_SEED_LEN,
    create_program_address,
    derive,
    find_program_address,
    is_on_curve,
    request_pool_address,
    result_address,
)
from vrf_oracle.ledger.types import DEFAULT_VRF_PROGRAM_ID, REQUEST_POOL_TAG, VRF_RESULT_TAG
from vrf_oracle.testing.fakes import deterministic_identity, fixture_address

PROGRAM_ID = base58.b58decode(DEFAULT_VRF_PROGRAM_ID)


def test_real_public_keys_are_on_curve() -> None:
    # ed25519 base point
    assert is_on_curve(bytes.fromhex("58" + "66" * 31))
    for label in ("a", "b", "c"):
        assert is_on_curve(deterministic_identity(label).public_key)


def test_is_on_curve_rejects_wrong_length() -> None:
    assert not is_on_curve(b"\x00" * 31)


def test_find_program_address_is_off_curve_and_reproducible() -> None:
    sub = fixture_address("sub")
    addr, bump = find_program_address([REQUEST_POOL_TAG, sub, bytes([0])], PROGRAM_ID)

    assert len(addr) == 32
    assert 0 <= bump <= 255
    assert not is_on_curve(addr)
    assert create_program_address([REQUEST_POOL_TAG, sub, bytes([0]), bytes([bump])], PROGRAM_ID) == addr

    # every higher bump must have landed on the curve
    for higher in range(bump + 1, 256):
        assert create_program_address([REQUEST_POOL_TAG, sub, bytes([0]), bytes([higher])], PROGRAM_ID) is None


def test_derivation_is_deterministic() -> None:
    sub = fixture_address("sub")
    req = fixture_address("req")
    assert request_pool_address(sub, 4, PROGRAM_ID) == request_pool_address(sub, 4, PROGRAM_ID)
    assert result_address(req, PROGRAM_ID) == result_address(req, PROGRAM_ID)
    assert result_address(req, PROGRAM_ID) == derive(VRF_RESULT_TAG, [req], PROGRAM_ID)


def test_derivation_depends_on_every_input() -> None:
    sub = fixture_address("sub")
    other_program = fixture_address("other-program")
    base = request_pool_address(sub, 0, PROGRAM_ID)
    assert request_pool_address(sub, 1, PROGRAM_ID) != base
    assert request_pool_address(fixture_address("sub2"), 0, PROGRAM_ID) != base
    assert request_pool_address(sub, 0, other_program) != base
    assert result_address(sub, PROGRAM_ID) != base


def test_seed_too_long_is_programmer_error() -> None:
    with pytest.raises(AddressDerivationError):
        find_program_address([b"x" * (MAX_SEED_LEN + 1)], PROGRAM_ID)
    # AddressDerivationError is a ValueError
    with pytest.raises(ValueError):
        create_program_address([b"x" * (MAX_SEED_LEN + 1)], PROGRAM_ID)


def test_too_many_seeds_and_bad_program_id() -> None:
    with pytest.raises(AddressDerivationError):
        # 16 seeds plus the bump exceeds the limit
        find_program_address([b"s"] * 16, PROGRAM_ID)
    with pytest.raises(AddressDerivationError):
        find_program_address([b"s"], PROGRAM_ID[:31])


def test_pool_id_out_of_byte_range_is_rejected() -> None:
    with pytest.raises(ValueError):
        request_pool_address(fixture_address("sub"), 256, PROGRAM_ID)


# Addresses taken from the deployed program's integration fixtures.
FIXTURE_SUBSCRIPTION = base58.b58decode("2Pd6R21gGNJgrfxHQPegcXgwmSd5MY1uHBYrNAtYgPbE")
FIXTURE_REQUEST = base58.b58decode("4qqRVYJAeBynm2yTydBkTJ9wVay3CrUfZ7gf9chtWS5Y")


@pytest.mark.parametrize(
    "seeds, expected, bump",
    [
        (
            [REQUEST_POOL_TAG, FIXTURE_SUBSCRIPTION, bytes([0])],
            "EZvQ3udcRTbPjaQCgGSnYNPNqg77Hb7SgiL2hPTxVThe",
            254,
        ),
        (
            [REQUEST_POOL_TAG, FIXTURE_SUBSCRIPTION, bytes([3])],
            "9Wd5Xf8E1ou26rRqQ3WCyxsmydQfPV7vsyr8Jy4qS5Xd",
            255,
        ),
        (
            [VRF_RESULT_TAG, FIXTURE_REQUEST],
            "9tMKaP4J86Q7ju4dFaNvRa3VudaK6k7jc8qJZMWzFetS",
            255,
        ),
        (
            [REQUEST_POOL_TAG, bytes(32), bytes([0])],
            "CYUoEJqPM9Dsuc3coDtcmMMV5v6VgTRNA2hN6RHCEvVi",
            255,
        ),
    ],
)
def test_known_program_addresses(seeds: list, expected: str, bump: int) -> None:
    addr, found_bump = find_program_address(seeds, PROGRAM_ID)
    assert base58.b58encode(addr).decode() == expected
    assert found_bump == bump


def test_pool_and_result_helpers_match_known_addresses() -> None:
    pool = request_pool_address(FIXTURE_SUBSCRIPTION, 0, PROGRAM_ID)
    result = result_address(FIXTURE_REQUEST, PROGRAM_ID)
    assert base58.b58encode(pool).decode() == "EZvQ3udcRTbPjaQCgGSnYNPNqg77Hb7SgiL2hPTxVThe"
    assert base58.b58encode(result).decode() == "9tMKaP4J86Q7ju4dFaNvRa3VudaK6k7jc8qJZMWzFetS"
    # bump 255 for the pool-0 seeds lands on the curve
    assert create_program_address([REQUEST_POOL_TAG, FIXTURE_SUBSCRIPTION, bytes([0]), bytes([255])], PROGRAM_ID) is None
