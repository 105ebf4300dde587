# src/vrf_oracle/crypto/keys.py
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, List

import base58
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from vrf_oracle.errors import ConfigError


def _raw_public(sk: Ed25519PrivateKey) -> bytes:
    return sk.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)


class OracleIdentity:
    """Ed25519 signing identity of the oracle (fee payer and signer).

    Keypair files use the ledger CLI layout: a JSON array of 64 integers,
    32-byte seed followed by the 32-byte public key.
    """

    def __init__(self, private_key: Ed25519PrivateKey) -> None:
        self._sk = private_key
        self._pk = _raw_public(private_key)

    @classmethod
    def from_seed(cls, seed: bytes) -> "OracleIdentity":
        if len(seed) != 32:
            raise ConfigError(f"ed25519 seed must be 32 bytes, got {len(seed)}")
        return cls(Ed25519PrivateKey.from_private_bytes(bytes(seed)))

    @classmethod
    def from_secret_bytes(cls, secret: bytes) -> "OracleIdentity":
        b = bytes(secret)
        if len(b) == 32:
            return cls.from_seed(b)
        if len(b) != 64:
            raise ConfigError(f"keypair must be 32 or 64 bytes, got {len(b)}")
        ident = cls.from_seed(b[:32])
        if ident.public_key != b[32:]:
            raise ConfigError("keypair public half does not match its seed")
        return ident

    @classmethod
    def from_keypair_file(cls, path: str) -> "OracleIdentity":
        p = Path(path).expanduser()
        try:
            raw: Any = json.loads(p.read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise ConfigError(f"oracle keypair not found: {p}") from e
        except (OSError, ValueError) as e:
            raise ConfigError(f"oracle keypair unreadable: {p}: {e}") from e

        if not isinstance(raw, list) or not all(isinstance(x, int) and 0 <= x <= 255 for x in raw):
            raise ConfigError(f"oracle keypair must be a JSON array of byte values: {p}")
        return cls.from_secret_bytes(bytes(raw))

    def to_keypair_json(self) -> List[int]:
        seed = self._sk.private_bytes_raw()
        return list(seed + self._pk)

    @property
    def public_key(self) -> bytes:
        return self._pk

    @property
    def address(self) -> str:
        return base58.b58encode(self._pk).decode()

    def sign(self, message: bytes) -> bytes:
        return self._sk.sign(bytes(message))


def verify_signature(public_key: bytes, message: bytes, signature: bytes) -> bool:
    try:
        Ed25519PublicKey.from_public_bytes(bytes(public_key)).verify(bytes(signature), bytes(message))
        return True
    except (InvalidSignature, ValueError):
        return False
