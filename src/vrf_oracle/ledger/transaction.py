# src/vrf_oracle/ledger/transaction.py
"""Legacy ledger transaction assembly.

Wire format:

    compact_u16(num_signatures) signature[64]*
    message:
      header: num_required_signatures:u8 num_readonly_signed:u8 num_readonly_unsigned:u8
      compact_u16(num_keys) key[32]*
      recent_blockhash[32]
      compact_u16(num_instructions) instruction*
    instruction:
      program_id_index:u8 compact_u16(num_accounts) account_index:u8* compact_u16(len) data

Account keys are ordered: writable signers, read-only signers, writable
non-signers, read-only non-signers. The fee payer is always the first key.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple

import base58

from vrf_oracle.crypto.keys import OracleIdentity
from vrf_oracle.ledger.types import Address


def encode_compact_u16(n: int) -> bytes:
    n = int(n)
    if n < 0 or n > 0xFFFF:
        raise ValueError(f"compact-u16 out of range: {n}")
    out = bytearray()
    while True:
        b = n & 0x7F
        n >>= 7
        if n:
            out.append(b | 0x80)
        else:
            out.append(b)
            return bytes(out)


@dataclass(frozen=True, slots=True)
class AccountMeta:
    pubkey: Address
    is_signer: bool
    is_writable: bool


@dataclass(frozen=True, slots=True)
class Instruction:
    program_id: Address
    accounts: Tuple[AccountMeta, ...]
    data: bytes


@dataclass(slots=True)
class Message:
    num_required_signatures: int
    num_readonly_signed: int
    num_readonly_unsigned: int
    account_keys: List[Address]
    recent_blockhash: bytes
    instructions: List[Tuple[int, List[int], bytes]] = field(default_factory=list)

    def serialize(self) -> bytes:
        out = bytearray()
        out += bytes([self.num_required_signatures, self.num_readonly_signed, self.num_readonly_unsigned])
        out += encode_compact_u16(len(self.account_keys))
        for k in self.account_keys:
            out += k
        out += self.recent_blockhash
        out += encode_compact_u16(len(self.instructions))
        for program_index, account_indexes, data in self.instructions:
            out.append(program_index)
            out += encode_compact_u16(len(account_indexes))
            out += bytes(account_indexes)
            out += encode_compact_u16(len(data))
            out += data
        return bytes(out)


def compile_message(
    *,
    fee_payer: Address,
    instructions: Sequence[Instruction],
    recent_blockhash: bytes,
) -> Message:
    if len(recent_blockhash) != 32:
        raise ValueError(f"recent blockhash must be 32 bytes, got {len(recent_blockhash)}")

    # Merge flags per key, preserving first-seen order.
    flags: Dict[bytes, List[bool]] = {bytes(fee_payer): [True, True]}
    for ix in instructions:
        for m in ix.accounts:
            f = flags.setdefault(bytes(m.pubkey), [False, False])
            f[0] = f[0] or m.is_signer
            f[1] = f[1] or m.is_writable
        flags.setdefault(bytes(ix.program_id), [False, False])

    keys = list(flags.keys())

    def _rank(k: bytes) -> int:
        signer, writable = flags[k]
        if k == bytes(fee_payer):
            return -1
        if signer:
            return 0 if writable else 1
        return 2 if writable else 3

    keys.sort(key=_rank)  # stable, keeps first-seen order within a class

    index = {k: i for i, k in enumerate(keys)}
    compiled = [
        (index[bytes(ix.program_id)], [index[bytes(m.pubkey)] for m in ix.accounts], bytes(ix.data))
        for ix in instructions
    ]

    return Message(
        num_required_signatures=sum(1 for k in keys if flags[k][0]),
        num_readonly_signed=sum(1 for k in keys if flags[k][0] and not flags[k][1]),
        num_readonly_unsigned=sum(1 for k in keys if not flags[k][0] and not flags[k][1]),
        account_keys=keys,
        recent_blockhash=bytes(recent_blockhash),
        instructions=compiled,
    )


@dataclass(slots=True)
class Transaction:
    message: Message
    signatures: List[bytes]

    @classmethod
    def build_signed(
        cls,
        *,
        signer: OracleIdentity,
        instructions: Sequence[Instruction],
        recent_blockhash: bytes,
    ) -> "Transaction":
        msg = compile_message(fee_payer=signer.public_key, instructions=instructions, recent_blockhash=recent_blockhash)
        if msg.num_required_signatures != 1:
            raise ValueError("only the oracle identity may sign fulfillment transactions")
        return cls(message=msg, signatures=[signer.sign(msg.serialize())])

    @property
    def signature(self) -> str:
        """Transaction id: base58 of the fee payer signature."""
        return base58.b58encode(self.signatures[0]).decode()

    def serialize(self) -> bytes:
        out = bytearray(encode_compact_u16(len(self.signatures)))
        for s in self.signatures:
            out += s
        out += self.message.serialize()
        return bytes(out)

    def to_base64(self) -> str:
        return base64.b64encode(self.serialize()).decode("ascii")
