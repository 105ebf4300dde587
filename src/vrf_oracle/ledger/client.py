# src/vrf_oracle/ledger/client.py
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Protocol

from vrf_oracle.ledger.transaction import Transaction
from vrf_oracle.ledger.types import Address, KeyedAccount


@dataclass(frozen=True, slots=True)
class SendOutcome:
    ok: bool
    signature: str = ""
    error: str = ""

    @classmethod
    def success(cls, signature: str) -> "SendOutcome":
        return cls(ok=True, signature=signature)

    @classmethod
    def failure(cls, reason: str, *, signature: str = "") -> "SendOutcome":
        return cls(ok=False, signature=signature, error=str(reason)[:2000])


@dataclass(frozen=True, slots=True)
class Blockhash:
    blockhash: bytes
    last_valid_block_height: int


class LedgerClient(Protocol):
    """Transport to the ledger. Every call is bounded by the client's timeout."""

    def list_program_accounts(self, program_id: Address, *, discriminator: Optional[bytes] = None) -> List[KeyedAccount]:
        ...

    def get_account(self, address: Address) -> Optional[bytes]:
        ...

    def get_latest_blockhash(self) -> Blockhash:
        ...

    def send_and_confirm(self, transaction: Transaction) -> SendOutcome:
        ...
