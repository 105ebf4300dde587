# src/vrf_oracle/ledger/types.py
from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Final

import base58


Address = bytes

DEFAULT_VRF_PROGRAM_ID: Final[str] = "6k1Lmt37b5QQAhPz5YXbTPoHCSCDbSEeNAC96nWZn85a"

# System program id is the all-zero key ("11111111111111111111111111111111").
SYSTEM_PROGRAM_ID: Final[bytes] = bytes(32)

REQUEST_DISCRIMINATOR: Final[bytes] = bytes.fromhex("f4e7e4a0941c11b8")
FULFILL_RANDOMNESS_DISCRIMINATOR: Final[bytes] = bytes([235, 105, 140, 46, 40, 88, 117, 2])

REQUEST_POOL_TAG: Final[bytes] = b"request_pool"
VRF_RESULT_TAG: Final[bytes] = b"vrf_result"


class RequestStatus(IntEnum):
    PENDING = 0
    FULFILLED = 1
    CANCELLED = 2
    EXPIRED = 3


@dataclass(frozen=True, slots=True)
class KeyedAccount:
    address: Address
    data: bytes

    @property
    def address_b58(self) -> str:
        return base58.b58encode(self.address).decode()


@dataclass(frozen=True, slots=True)
class RandomnessRequest:
    address: Address
    subscription: Address
    seed: bytes
    requester: Address
    callback_data: bytes
    request_slot: int
    status: RequestStatus
    num_words: int
    callback_gas_limit: int
    pool_id: int
    request_index: int
    request_id: bytes

    @property
    def is_pending(self) -> bool:
        return self.status == RequestStatus.PENDING

    @property
    def address_b58(self) -> str:
        return base58.b58encode(self.address).decode()

    def describe(self) -> dict:
        return {
            "address": base58.b58encode(self.address).decode(),
            "subscription": base58.b58encode(self.subscription).decode(),
            "requester": base58.b58encode(self.requester).decode(),
            "seed": self.seed.hex(),
            "request_id": self.request_id.hex(),
            "pool_id": int(self.pool_id),
            "request_index": int(self.request_index),
            "request_slot": int(self.request_slot),
            "status": self.status.name.lower(),
        }


@dataclass(frozen=True, slots=True)
class FulfillmentPayload:
    proof: bytes
    public_key: bytes
    request_id: bytes
    pool_id: int
    request_index: int
    discriminator: bytes = FULFILL_RANDOMNESS_DISCRIMINATOR
