# src/vrf_oracle/runtime/record_store.py
from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Protocol

from vrf_oracle.runtime.idempotency import ProcessingRecord

Json = Dict[str, Any]


def _canon_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class RecordStore(Protocol):
    def load_all(self) -> Dict[bytes, ProcessingRecord]:
        ...

    def put(self, address: bytes, record: ProcessingRecord) -> None:
        ...

    def delete(self, address: bytes) -> None:
        ...


class SqliteRecordStore:
    """SQLite persistence for processing records.

    Table: processing_records(address PRIMARY KEY, record_json, ts)

    Keeps the dedup window across restarts. One short-lived connection per
    operation; connections are never shared between threads.
    """

    def __init__(self, path: str) -> None:
        self.path = str(path)
        self.init_schema()

    def _connect(self) -> sqlite3.Connection:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        con = sqlite3.connect(self.path, timeout=30.0, isolation_level=None, check_same_thread=False)
        con.row_factory = sqlite3.Row
        con.execute("PRAGMA journal_mode=WAL;")
        con.execute("PRAGMA synchronous=FULL;")
        return con

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        con = self._connect()
        try:
            yield con
        finally:
            con.close()

    @contextmanager
    def write_tx(self) -> Iterator[sqlite3.Connection]:
        with self.connection() as con:
            con.execute("BEGIN IMMEDIATE;")
            try:
                yield con
            except Exception:
                con.execute("ROLLBACK;")
                raise
            con.execute("COMMIT;")

    def init_schema(self) -> None:
        with self.write_tx() as con:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS processing_records(
                  address TEXT PRIMARY KEY,
                  record_json TEXT NOT NULL,
                  ts REAL NOT NULL
                );
                """
            )

    def load_all(self) -> Dict[bytes, ProcessingRecord]:
        with self.connection() as con:
            rows = con.execute("SELECT address, record_json FROM processing_records;").fetchall()
        out: Dict[bytes, ProcessingRecord] = {}
        for r in rows:
            try:
                out[bytes.fromhex(str(r["address"]))] = ProcessingRecord.from_json(json.loads(str(r["record_json"])))
            except (ValueError, KeyError, TypeError):
                continue
        return out

    def put(self, address: bytes, record: ProcessingRecord) -> None:
        with self.write_tx() as con:
            con.execute(
                """
                INSERT INTO processing_records(address, record_json, ts) VALUES(?, ?, ?)
                ON CONFLICT(address) DO UPDATE SET record_json=excluded.record_json, ts=excluded.ts;
                """,
                (bytes(address).hex(), _canon_json(record.to_json()), float(record.timestamp)),
            )

    def delete(self, address: bytes) -> None:
        with self.write_tx() as con:
            con.execute("DELETE FROM processing_records WHERE address=?;", (bytes(address).hex(),))
