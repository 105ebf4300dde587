from __future__ import annotations

import struct

import pytest

from vrf_oracle.errors import MalformedRecord, PayloadTooLarge, TagMismatch
from vrf_oracle.ledger.codec import (
    REQUEST_MIN_SIZE,
    REQUEST_SCHEMA,
    ByteReader,
    Fixed,
    LenPrefixed,
    U8,
    decode_request,
    fixed_prefix_size,
    is_request_record,
    static_offsets,
    validate_schema,
    write_schema,
)
from vrf_oracle.ledger.types import REQUEST_DISCRIMINATOR, RequestStatus
from vrf_oracle.testing.fakes import build_request_record, fixture_address


ADDR = fixture_address("request-1")


def test_layout_offsets_are_derived_from_schema() -> None:
    offs = static_offsets(REQUEST_SCHEMA)
    assert offs["tag"] == 0
    assert offs["subscription"] == 8
    assert offs["seed"] == 40
    assert offs["requester"] == 72
    assert offs["callback_data"] == 104
    # everything after the variable-length callback depends on the data
    assert offs["request_slot"] is None
    assert offs["status"] is None
    assert offs["request_id"] is None
    assert REQUEST_MIN_SIZE == fixed_prefix_size(REQUEST_SCHEMA) == 104


def test_validate_schema_rejects_duplicates_and_bad_widths() -> None:
    with pytest.raises(ValueError):
        validate_schema((U8("a"), U8("a")))
    with pytest.raises(ValueError):
        validate_schema((Fixed("a", 0),))


def test_decode_pending_request_reads_every_field() -> None:
    sub = fixture_address("sub")
    req_id = bytes(range(32))
    data = build_request_record(
        subscription=sub,
        seed=b"\x11" * 32,
        callback_data=b"cb-data",
        request_slot=123456,
        num_words=3,
        callback_gas_limit=99,
        pool_id=7,
        request_index=42,
        request_id=req_id,
    )

    req = decode_request(ADDR, data)

    assert req.address == ADDR
    assert req.subscription == sub
    assert req.seed == b"\x11" * 32
    assert req.callback_data == b"cb-data"
    assert req.request_slot == 123456
    assert req.status == RequestStatus.PENDING
    assert req.is_pending
    assert req.num_words == 3
    assert req.callback_gas_limit == 99
    assert req.pool_id == 7
    assert req.request_index == 42
    assert req.request_id == req_id


def test_status_offset_tracks_callback_length() -> None:
    short = decode_request(ADDR, build_request_record(callback_data=b"", status=RequestStatus.FULFILLED))
    long = decode_request(ADDR, build_request_record(callback_data=b"x" * 300, status=RequestStatus.FULFILLED))
    assert short.status == RequestStatus.FULFILLED
    assert long.status == RequestStatus.FULFILLED
    assert long.callback_data == b"x" * 300


def test_trailing_slack_is_accepted() -> None:
    req = decode_request(ADDR, build_request_record(trailing=b"\x00" * 64))
    assert req.is_pending


def test_short_record_is_malformed_not_crash() -> None:
    data = REQUEST_DISCRIMINATOR + b"\x00" * 50
    with pytest.raises(MalformedRecord):
        decode_request(ADDR, data)


def test_short_record_with_foreign_tag_is_reported_as_malformed_first() -> None:
    with pytest.raises(MalformedRecord) as ei:
        decode_request(ADDR, b"\xff" * 20)
    assert not isinstance(ei.value, TagMismatch)


def test_foreign_tag_raises_tag_mismatch() -> None:
    data = b"\x01" * 8 + build_request_record()[8:]
    assert not is_request_record(data)
    with pytest.raises(TagMismatch):
        decode_request(ADDR, data)


def test_callback_length_past_end_is_malformed() -> None:
    data = bytearray(build_request_record(callback_data=b"abc"))
    struct.pack_into("<I", data, 104, 10_000)
    with pytest.raises(MalformedRecord) as ei:
        decode_request(ADDR, bytes(data))
    assert ei.value.details["field"] == "callback_data"


def test_truncated_tail_is_malformed() -> None:
    data = build_request_record()
    with pytest.raises(MalformedRecord):
        decode_request(ADDR, data[:-5])


def test_unknown_status_is_malformed() -> None:
    data = bytearray(build_request_record(callback_data=b""))
    # status follows callback len (4) + request_slot (8)
    data[104 + 4 + 8] = 9
    with pytest.raises(MalformedRecord):
        decode_request(ADDR, bytes(data))


def test_reader_reports_field_and_offset() -> None:
    r = ByteReader(b"\x05\x00\x00\x00ab")
    with pytest.raises(MalformedRecord) as ei:
        r.read_vec(field="blob")
    assert ei.value.details == {"field": "blob", "offset": 4, "size": 6}


def test_writer_rejects_wrong_fixed_width_and_overflow() -> None:
    with pytest.raises(PayloadTooLarge):
        write_schema((Fixed("id", 32),), {"id": b"\x00" * 31})
    with pytest.raises(PayloadTooLarge):
        write_schema((U8("n"),), {"n": 256})
    assert write_schema((LenPrefixed("v"),), {"v": b"hi"}) == b"\x02\x00\x00\x00hi"
