# src/vrf_oracle/ledger/address.py
from __future__ import annotations

import hashlib
from typing import Sequence, Tuple

from vrf_oracle.errors import AddressDerivationError
from vrf_oracle.ledger.types import REQUEST_POOL_TAG, VRF_RESULT_TAG, Address

MAX_SEED_LEN = 32
MAX_SEEDS = 16
_PDA_MARKER = b"ProgramDerivedAddress"

# Curve25519 field parameters (edwards form) for the off-curve check.
_P = 2**255 - 19
_D = (-121665 * pow(121666, _P - 2, _P)) % _P


def is_on_curve(point: bytes) -> bool:
    """True if the 32 bytes decompress to an ed25519 point.

    Mirrors compressed-Edwards-Y decompression: y is read little-endian with
    the sign bit cleared, x^2 = (y^2 - 1) / (d*y^2 + 1) must have a root.
    """
    if len(point) != 32:
        return False
    y = int.from_bytes(point, "little") & ((1 << 255) - 1)
    y %= _P
    y2 = y * y % _P
    u = (y2 - 1) % _P
    v = (_D * y2 + 1) % _P

    v3 = v * v % _P * v % _P
    v7 = v3 * v3 % _P * v % _P
    x = u * v3 % _P * pow(u * v7 % _P, (_P - 5) // 8, _P) % _P

    vx2 = v * x % _P * x % _P
    if vx2 == u:
        return True
    if vx2 == (-u) % _P:
        return True
    return False


def _check_inputs(seeds: Sequence[bytes], program_id: bytes) -> None:
    if len(program_id) != 32:
        raise AddressDerivationError(f"program id must be 32 bytes, got {len(program_id)}")
    if len(seeds) > MAX_SEEDS:
        raise AddressDerivationError(f"at most {MAX_SEEDS} seeds allowed, got {len(seeds)}")
    for i, s in enumerate(seeds):
        if len(s) > MAX_SEED_LEN:
            raise AddressDerivationError(f"seed {i} is {len(s)} bytes, max {MAX_SEED_LEN}")


def create_program_address(seeds: Sequence[bytes], program_id: bytes) -> Address | None:
    """Hash seeds into a candidate address; None if it lands on the curve."""
    _check_inputs(seeds, program_id)
    h = hashlib.sha256()
    for s in seeds:
        h.update(bytes(s))
    h.update(bytes(program_id))
    h.update(_PDA_MARKER)
    candidate = h.digest()
    if is_on_curve(candidate):
        return None
    return candidate


def find_program_address(seeds: Sequence[bytes], program_id: bytes) -> Tuple[Address, int]:
    """Search bump seeds 255..0 for the first off-curve address."""
    # Leave room for the bump seed itself.
    _check_inputs(list(seeds) + [b"\x00"], program_id)
    for bump in range(255, -1, -1):
        addr = create_program_address(list(seeds) + [bytes([bump])], program_id)
        if addr is not None:
            return addr, bump
    raise AddressDerivationError("no viable bump seed found")


def derive(tag: bytes, parts: Sequence[bytes], program_id: bytes) -> Address:
    addr, _bump = find_program_address([bytes(tag)] + [bytes(p) for p in parts], bytes(program_id))
    return addr


def request_pool_address(subscription: Address, pool_id: int, program_id: bytes) -> Address:
    return derive(REQUEST_POOL_TAG, [subscription, bytes([int(pool_id)])], program_id)


def result_address(request_address: Address, program_id: bytes) -> Address:
    return derive(VRF_RESULT_TAG, [request_address], program_id)
