from __future__ import annotations

from pathlib import Path

import pytest

from vrf_oracle.runtime.idempotency import IdempotencyLedger, ProcessingRecord
from vrf_oracle.runtime.record_store import SqliteRecordStore
from vrf_oracle.testing.fakes import fixture_address

A = fixture_address("a")
B = fixture_address("b")


def _rec(ts: float, **kw) -> ProcessingRecord:
    base = dict(timestamp=ts, seed=b"\x01" * 32, request_id=b"\x02" * 32, pool_id=1, request_index=9)
    base.update(kw)
    return ProcessingRecord(**base)


def test_unknown_address_is_eligible() -> None:
    led = IdempotencyLedger(window_s=600)
    assert led.is_eligible(A, 1000.0)
    assert len(led) == 0


def test_recent_record_blocks_until_window_passes() -> None:
    led = IdempotencyLedger(window_s=600)
    led.record(A, _rec(1000.0))

    assert not led.is_eligible(A, 1000.0)
    assert not led.is_eligible(A, 1599.9)
    assert led.is_eligible(B, 1001.0)

    # 600s later the record is stale: eligible again and evicted
    assert led.is_eligible(A, 1600.0)
    assert A not in led
    assert led.get(A) is None


def test_evict_stale_counts_and_keeps_fresh() -> None:
    led = IdempotencyLedger(window_s=10)
    led.record(A, _rec(0.0))
    led.record(B, _rec(8.0))

    assert led.evict_stale(12.0) == 1
    assert A not in led
    assert B in led
    assert led.evict_stale(12.0) == 0


def test_snapshot_lists_quarantined() -> None:
    led = IdempotencyLedger(window_s=10)
    led.record(A, _rec(0.0, quarantined=True))
    led.record(B, _rec(0.0))
    snap = led.snapshot()
    assert snap["size"] == 2
    assert len(snap["quarantined"]) == 1


def test_non_positive_window_rejected() -> None:
    with pytest.raises(ValueError):
        IdempotencyLedger(window_s=0)


def test_record_json_round_trip() -> None:
    r = _rec(5.5, proof=b"\x09" * 80, output=b"\x0a" * 64, signature="sig", quarantined=True)
    assert ProcessingRecord.from_json(r.to_json()) == r


def test_sqlite_store_survives_restart(tmp_path: Path) -> None:
    db = str(tmp_path / "dedup" / "records.db")
    led = IdempotencyLedger(window_s=600, store=SqliteRecordStore(db))
    led.record(A, _rec(1000.0, signature="5xyz"))
    led.record(B, _rec(1000.0))

    again = IdempotencyLedger(window_s=600, store=SqliteRecordStore(db))
    assert len(again) == 2
    assert not again.is_eligible(A, 1100.0)
    assert again.get(A).signature == "5xyz"


def test_sqlite_store_forgets_evicted_records(tmp_path: Path) -> None:
    db = str(tmp_path / "records.db")
    led = IdempotencyLedger(window_s=60, store=SqliteRecordStore(db))
    led.record(A, _rec(0.0))
    led.record(B, _rec(100.0))
    assert led.evict_stale(120.0) == 1

    again = IdempotencyLedger(window_s=60, store=SqliteRecordStore(db))
    assert A not in again
    assert B in again


def test_sqlite_store_upserts(tmp_path: Path) -> None:
    store = SqliteRecordStore(str(tmp_path / "records.db"))
    store.put(A, _rec(1.0))
    store.put(A, _rec(2.0))
    loaded = store.load_all()
    assert list(loaded) == [A]
    assert loaded[A].timestamp == 2.0
