# src/vrf_oracle/ledger/codec.py
"""Binary codec for VRF program accounts and instruction data.

Layouts are declared as ordered field schemas and executed by one cursor
reader/writer pair, so every offset is derived from the schema rather than
computed by hand. All integers are little-endian.

Pending-request account:

    tag[8] subscription[32] seed[32] requester[32]
    callback_data(u32 len + bytes) request_slot:u64 status:u8
    num_words:u32 callback_gas_limit:u64 pool_id:u8 request_index:u32
    request_id[32]

fulfill_randomness instruction data:

    discriminator[8] proof(u32 len + bytes) public_key(u32 len + bytes)
    request_id[32] pool_id:u8 request_index:u32
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from vrf_oracle.errors import MalformedRecord, PayloadTooLarge, TagMismatch
from vrf_oracle.ledger.types import (
    FULFILL_RANDOMNESS_DISCRIMINATOR,
    REQUEST_DISCRIMINATOR,
    Address,
    FulfillmentPayload,
    RandomnessRequest,
    RequestStatus,
)

_U32_MAX = 0xFFFFFFFF

_INT_FORMATS = {1: "<B", 4: "<I", 8: "<Q"}


@dataclass(frozen=True, slots=True)
class Field:
    """One schema entry.

    kind:
      - "bytes": fixed-width raw bytes (width required)
      - "uint":  unsigned little-endian integer of width 1, 4 or 8
      - "vec":   u32 length prefix followed by that many bytes
    """

    name: str
    kind: str
    width: int = 0

    @property
    def is_fixed(self) -> bool:
        return self.kind != "vec"


def Fixed(name: str, width: int) -> Field:
    return Field(name, "bytes", int(width))


def U8(name: str) -> Field:
    return Field(name, "uint", 1)


def U32(name: str) -> Field:
    return Field(name, "uint", 4)


def U64(name: str) -> Field:
    return Field(name, "uint", 8)


def LenPrefixed(name: str) -> Field:
    return Field(name, "vec", 0)


Schema = Tuple[Field, ...]


REQUEST_SCHEMA: Schema = (
    Fixed("tag", 8),
    Fixed("subscription", 32),
    Fixed("seed", 32),
    Fixed("requester", 32),
    LenPrefixed("callback_data"),
    U64("request_slot"),
    U8("status"),
    U32("num_words"),
    U64("callback_gas_limit"),
    U8("pool_id"),
    U32("request_index"),
    Fixed("request_id", 32),
)

FULFILLMENT_SCHEMA: Schema = (
    Fixed("discriminator", 8),
    LenPrefixed("proof"),
    LenPrefixed("public_key"),
    Fixed("request_id", 32),
    U8("pool_id"),
    U32("request_index"),
)


def validate_schema(schema: Sequence[Field]) -> None:
    names = [f.name for f in schema]
    if len(set(names)) != len(names):
        raise ValueError(f"duplicate field names in schema: {names}")
    for f in schema:
        if f.kind == "uint" and f.width not in _INT_FORMATS:
            raise ValueError(f"unsupported integer width for {f.name}: {f.width}")
        if f.kind == "bytes" and f.width <= 0:
            raise ValueError(f"fixed field {f.name} needs a positive width")
        if f.kind not in {"bytes", "uint", "vec"}:
            raise ValueError(f"unknown field kind for {f.name}: {f.kind}")


def fixed_prefix_size(schema: Sequence[Field]) -> int:
    """Bytes covered by the leading run of fixed-width fields."""
    n = 0
    for f in schema:
        if not f.is_fixed:
            break
        n += f.width
    return n


def static_offsets(schema: Sequence[Field]) -> Dict[str, Optional[int]]:
    """Offset of every field that does not follow a variable-length field.

    Fields after the first length-prefixed field map to None: their position
    depends on the data and is only known to the reader.
    """
    out: Dict[str, Optional[int]] = {}
    off: Optional[int] = 0
    for f in schema:
        out[f.name] = off
        if off is None:
            continue
        off = off + f.width if f.is_fixed else None
    return out


class ByteReader:
    """Bounds-checked cursor over a byte buffer."""

    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self._pos = 0

    @property
    def position(self) -> int:
        return self._pos

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    def read_raw(self, n: int, *, field: str) -> bytes:
        if n < 0 or self._pos + n > len(self._data):
            raise MalformedRecord(
                f"field '{field}' needs {n} bytes at offset {self._pos}, buffer has {len(self._data)}",
                details={"field": field, "offset": self._pos, "size": len(self._data)},
            )
        out = self._data[self._pos : self._pos + n]
        self._pos += n
        return out

    def read_uint(self, width: int, *, field: str) -> int:
        raw = self.read_raw(width, field=field)
        return int(struct.unpack(_INT_FORMATS[width], raw)[0])

    def read_vec(self, *, field: str) -> bytes:
        n = self.read_uint(4, field=f"{field}.len")
        return self.read_raw(n, field=field)

    def read_field(self, f: Field) -> Any:
        if f.kind == "bytes":
            return self.read_raw(f.width, field=f.name)
        if f.kind == "uint":
            return self.read_uint(f.width, field=f.name)
        return self.read_vec(field=f.name)


class ByteWriter:
    def __init__(self) -> None:
        self._parts: List[bytes] = []

    def write_raw(self, b: bytes) -> None:
        self._parts.append(bytes(b))

    def write_uint(self, v: int, width: int, *, field: str) -> None:
        v = int(v)
        if v < 0 or v >= (1 << (8 * width)):
            raise PayloadTooLarge(f"field '{field}' value {v} does not fit in {width} byte(s)")
        self._parts.append(struct.pack(_INT_FORMATS[width], v))

    def write_vec(self, b: bytes, *, field: str) -> None:
        if len(b) > _U32_MAX:
            raise PayloadTooLarge(f"field '{field}' length {len(b)} exceeds u32")
        self.write_uint(len(b), 4, field=f"{field}.len")
        self.write_raw(b)

    def write_field(self, f: Field, v: Any) -> None:
        if f.kind == "bytes":
            b = bytes(v)
            if len(b) != f.width:
                raise PayloadTooLarge(f"field '{f.name}' must be {f.width} bytes, got {len(b)}")
            self.write_raw(b)
        elif f.kind == "uint":
            self.write_uint(v, f.width, field=f.name)
        else:
            self.write_vec(bytes(v), field=f.name)

    def to_bytes(self) -> bytes:
        return b"".join(self._parts)


def read_schema(schema: Sequence[Field], data: bytes) -> Dict[str, Any]:
    r = ByteReader(data)
    return {f.name: r.read_field(f) for f in schema}


def write_schema(schema: Sequence[Field], values: Dict[str, Any]) -> bytes:
    w = ByteWriter()
    for f in schema:
        w.write_field(f, values[f.name])
    return w.to_bytes()


validate_schema(REQUEST_SCHEMA)
validate_schema(FULFILLMENT_SCHEMA)

REQUEST_MIN_SIZE = fixed_prefix_size(REQUEST_SCHEMA)


# ----------------------------
# Pending-request records
# ----------------------------


def is_request_record(data: bytes) -> bool:
    return len(data) >= len(REQUEST_DISCRIMINATOR) and bytes(data[:8]) == REQUEST_DISCRIMINATOR


def decode_request(address: Address, data: bytes) -> RandomnessRequest:
    """Decode a VRF program account into a RandomnessRequest.

    Raises MalformedRecord for short or truncated buffers and unknown status
    bytes, TagMismatch when the account is some other program type.
    """
    if len(data) < REQUEST_MIN_SIZE:
        raise MalformedRecord(f"record is {len(data)} bytes, minimum is {REQUEST_MIN_SIZE}")
    if not is_request_record(data):
        raise TagMismatch(f"discriminator {bytes(data[:8]).hex()} is not a request record")

    v = read_schema(REQUEST_SCHEMA, data)
    try:
        status = RequestStatus(v["status"])
    except ValueError:
        raise MalformedRecord(f"unknown request status {v['status']}") from None

    return RandomnessRequest(
        address=bytes(address),
        subscription=v["subscription"],
        seed=v["seed"],
        requester=v["requester"],
        callback_data=v["callback_data"],
        request_slot=v["request_slot"],
        status=status,
        num_words=v["num_words"],
        callback_gas_limit=v["callback_gas_limit"],
        pool_id=v["pool_id"],
        request_index=v["request_index"],
        request_id=v["request_id"],
    )


def encode_request(req: RandomnessRequest) -> bytes:
    """Inverse of decode_request (fixtures and local tooling)."""
    return write_schema(
        REQUEST_SCHEMA,
        {
            "tag": REQUEST_DISCRIMINATOR,
            "subscription": req.subscription,
            "seed": req.seed,
            "requester": req.requester,
            "callback_data": req.callback_data,
            "request_slot": req.request_slot,
            "status": int(req.status),
            "num_words": req.num_words,
            "callback_gas_limit": req.callback_gas_limit,
            "pool_id": req.pool_id,
            "request_index": req.request_index,
            "request_id": req.request_id,
        },
    )


# ----------------------------
# Fulfillment instruction data
# ----------------------------


def fulfillment_size(proof_len: int, public_key_len: int) -> int:
    return 8 + 4 + int(proof_len) + 4 + int(public_key_len) + 32 + 1 + 4


def encode_fulfillment(payload: FulfillmentPayload) -> bytes:
    return write_schema(
        FULFILLMENT_SCHEMA,
        {
            "discriminator": payload.discriminator,
            "proof": payload.proof,
            "public_key": payload.public_key,
            "request_id": payload.request_id,
            "pool_id": payload.pool_id,
            "request_index": payload.request_index,
        },
    )


def decode_fulfillment(data: bytes) -> FulfillmentPayload:
    v = read_schema(FULFILLMENT_SCHEMA, data)
    if v["discriminator"] != FULFILL_RANDOMNESS_DISCRIMINATOR:
        raise TagMismatch(f"discriminator {v['discriminator'].hex()} is not fulfill_randomness")
    return FulfillmentPayload(
        proof=v["proof"],
        public_key=v["public_key"],
        request_id=v["request_id"],
        pool_id=v["pool_id"],
        request_index=v["request_index"],
        discriminator=v["discriminator"],
    )
