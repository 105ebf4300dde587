# src/vrf_oracle/testing/fakes.py
from __future__ import annotations

import hashlib
import threading
from collections import deque
from dataclasses import replace
from typing import Any, Deque, Dict, List, Optional, Union

from vrf_oracle.crypto.keys import OracleIdentity
from vrf_oracle.ledger.client import Blockhash, SendOutcome
from vrf_oracle.ledger.codec import decode_request, encode_request
from vrf_oracle.ledger.transaction import Transaction
from vrf_oracle.ledger.types import (
    FULFILL_RANDOMNESS_DISCRIMINATOR,
    Address,
    KeyedAccount,
    RandomnessRequest,
    RequestStatus,
)
from vrf_oracle.proofs.service import ProofResult

Json = Dict[str, Any]


def _sha256(b: bytes) -> bytes:
    return hashlib.sha256(b).digest()


def deterministic_identity(label: str) -> OracleIdentity:
    """Deterministic oracle identity from a stable label.

    TEST ONLY.
    """
    return OracleIdentity.from_seed(_sha256(("vrf-oracle-test-ed25519:" + (label or "")).encode("utf-8")))


def fixture_address(label: str) -> Address:
    """32-byte address from a label. Not necessarily off-curve; fine for fixtures."""
    return _sha256(("vrf-oracle-test-address:" + label).encode("utf-8"))


def build_request_record(
    *,
    subscription: Optional[bytes] = None,
    seed: Optional[bytes] = None,
    requester: Optional[bytes] = None,
    callback_data: bytes = b"",
    request_slot: int = 1000,
    status: RequestStatus = RequestStatus.PENDING,
    num_words: int = 1,
    callback_gas_limit: int = 200_000,
    pool_id: int = 0,
    request_index: int = 0,
    request_id: Optional[bytes] = None,
    trailing: bytes = b"",
) -> bytes:
    """Serialized pending-request account data."""
    req = RandomnessRequest(
        address=bytes(32),
        subscription=subscription if subscription is not None else fixture_address("subscription"),
        seed=seed if seed is not None else _sha256(b"seed"),
        requester=requester if requester is not None else fixture_address("requester"),
        callback_data=callback_data,
        request_slot=request_slot,
        status=status,
        num_words=num_words,
        callback_gas_limit=callback_gas_limit,
        pool_id=pool_id,
        request_index=request_index,
        request_id=request_id if request_id is not None else _sha256(b"request_id"),
    )
    return encode_request(req) + bytes(trailing)


class FakeLedgerClient:
    """In-memory ledger for tests.

    - accounts are owned by program ids and listed in insertion order
    - the discriminator filter is applied like a memcmp at offset 0
    - send_and_confirm pops scripted outcomes (SendOutcome or Exception);
      with none scripted it succeeds and, when settle_fulfillments is set,
      flips the targeted request to Fulfilled like the program would
    """

    def __init__(self, *, settle_fulfillments: bool = True) -> None:
        self._lock = threading.Lock()
        self._accounts: Dict[bytes, Dict[bytes, bytes]] = {}
        self._outcomes: Deque[Union[SendOutcome, Exception]] = deque()
        self._blockhash_n = 0
        self.settle_fulfillments = bool(settle_fulfillments)
        self.sent: List[Transaction] = []
        self.list_calls: List[Json] = []
        self.list_error: Optional[Exception] = None
        self.slot = 1000

    # ----------------------------
    # Fixture helpers
    # ----------------------------

    def put_account(self, program_id: bytes, address: bytes, data: bytes) -> None:
        with self._lock:
            self._accounts.setdefault(bytes(program_id), {})[bytes(address)] = bytes(data)

    def script_outcomes(self, *outcomes: Union[SendOutcome, Exception]) -> None:
        with self._lock:
            self._outcomes.extend(outcomes)

    def account_status(self, program_id: bytes, address: bytes) -> RequestStatus:
        with self._lock:
            data = self._accounts[bytes(program_id)][bytes(address)]
        return decode_request(bytes(address), data).status

    # ----------------------------
    # LedgerClient
    # ----------------------------

    def list_program_accounts(self, program_id: Address, *, discriminator: Optional[bytes] = None) -> List[KeyedAccount]:
        self.list_calls.append({"program_id": bytes(program_id), "discriminator": discriminator})
        if self.list_error is not None:
            raise self.list_error
        with self._lock:
            owned = dict(self._accounts.get(bytes(program_id), {}))
        return [
            KeyedAccount(address=a, data=d)
            for a, d in owned.items()
            if not discriminator or d[: len(discriminator)] == discriminator
        ]

    def get_account(self, address: Address) -> Optional[bytes]:
        with self._lock:
            for owned in self._accounts.values():
                if bytes(address) in owned:
                    return owned[bytes(address)]
        return None

    def get_latest_blockhash(self) -> Blockhash:
        with self._lock:
            self._blockhash_n += 1
            n = self._blockhash_n
        return Blockhash(blockhash=_sha256(f"blockhash:{n}".encode("utf-8")), last_valid_block_height=n + 150)

    def get_version(self) -> Json:
        return {"solana-core": "fake"}

    def get_slot(self) -> int:
        return int(self.slot)

    def send_and_confirm(self, transaction: Transaction) -> SendOutcome:
        with self._lock:
            self.sent.append(transaction)
            scripted = self._outcomes.popleft() if self._outcomes else None
        if isinstance(scripted, Exception):
            raise scripted
        if scripted is not None:
            return scripted
        if self.settle_fulfillments:
            self._settle(transaction)
        return SendOutcome.success(transaction.signature)

    def _settle(self, transaction: Transaction) -> None:
        msg = transaction.message
        for program_index, account_indexes, data in msg.instructions:
            if data[:8] != FULFILL_RANDOMNESS_DISCRIMINATOR or len(account_indexes) < 2:
                continue
            program_id = msg.account_keys[program_index]
            request_addr = msg.account_keys[account_indexes[1]]
            with self._lock:
                owned = self._accounts.get(program_id, {})
                raw = owned.get(request_addr)
                if raw is None:
                    continue
                req = decode_request(request_addr, raw)
                fulfilled = encode_request(replace(req, status=RequestStatus.FULFILLED))
                owned[request_addr] = fulfilled + raw[len(fulfilled):]


class FakeProofService:
    """Deterministic stand-in for the ECVRF CLI.

    proof = sha512(key || seed) || sha256(seed)[:16] (80 bytes, ECVRF-sized)
    output = sha512(proof)
    verify_proof recomputes both; `forge` makes generated proofs fail it.
    """

    def __init__(self, label: str = "vrf") -> None:
        self._secret = _sha256(("vrf-oracle-test-vrf:" + label).encode("utf-8"))
        self._public = _sha256(self._secret)
        self.forge = False
        self.fail_with: Optional[Exception] = None
        self.generated: List[bytes] = []

    def public_key(self) -> bytes:
        return self._public

    def _prove(self, seed: bytes) -> bytes:
        return hashlib.sha512(self._public + bytes(seed)).digest() + _sha256(bytes(seed))[:16]

    def generate_proof(self, seed: bytes) -> ProofResult:
        if self.fail_with is not None:
            raise self.fail_with
        self.generated.append(bytes(seed))
        proof = self._prove(seed)
        if self.forge:
            proof = bytes([proof[0] ^ 0xFF]) + proof[1:]
        return ProofResult(proof=proof, output=hashlib.sha512(proof).digest())

    def verify_proof(self, proof: bytes, output: bytes, public_key: bytes, seed: bytes) -> bool:
        if bytes(public_key) != self._public:
            return False
        expected = self._prove(seed)
        return bytes(proof) == expected and bytes(output) == hashlib.sha512(expected).digest()
