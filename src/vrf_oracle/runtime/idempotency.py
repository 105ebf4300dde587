# src/vrf_oracle/runtime/idempotency.py
from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional

import base58

if TYPE_CHECKING:
    from vrf_oracle.runtime.record_store import RecordStore

Json = Dict[str, Any]

DEFAULT_WINDOW_S = 600.0


@dataclass(frozen=True, slots=True)
class ProcessingRecord:
    timestamp: float
    seed: bytes
    request_id: bytes
    pool_id: int
    request_index: int
    proof: bytes = b""
    output: bytes = b""
    signature: str = ""
    quarantined: bool = False

    def to_json(self) -> Json:
        return {
            "timestamp": float(self.timestamp),
            "seed": self.seed.hex(),
            "request_id": self.request_id.hex(),
            "pool_id": int(self.pool_id),
            "request_index": int(self.request_index),
            "proof": self.proof.hex(),
            "output": self.output.hex(),
            "signature": self.signature,
            "quarantined": bool(self.quarantined),
        }

    @classmethod
    def from_json(cls, d: Json) -> "ProcessingRecord":
        return cls(
            timestamp=float(d["timestamp"]),
            seed=bytes.fromhex(str(d["seed"])),
            request_id=bytes.fromhex(str(d["request_id"])),
            pool_id=int(d["pool_id"]),
            request_index=int(d["request_index"]),
            proof=bytes.fromhex(str(d.get("proof") or "")),
            output=bytes.fromhex(str(d.get("output") or "")),
            signature=str(d.get("signature") or ""),
            quarantined=bool(d.get("quarantined", False)),
        )


class IdempotencyLedger:
    """Request address -> last processing record, with a re-check window.

    A record younger than window_s makes its address ineligible. Older
    records are stale: they are evicted and the address becomes eligible
    again, which bounds staleness without confirming terminal state on chain.

    Single-writer state: every method holds the instance lock.
    Dedup is per process; two oracle instances do not see each other's records.
    """

    def __init__(self, *, window_s: float = DEFAULT_WINDOW_S, store: Optional["RecordStore"] = None) -> None:
        if window_s <= 0:
            raise ValueError("window_s must be positive")
        self.window_s = float(window_s)
        self._store = store
        self._lock = threading.Lock()
        self._records: Dict[bytes, ProcessingRecord] = dict(store.load_all()) if store is not None else {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, address: object) -> bool:
        with self._lock:
            return address in self._records

    def _is_fresh(self, rec: ProcessingRecord, now: float) -> bool:
        return (float(now) - float(rec.timestamp)) < self.window_s

    def _drop(self, address: bytes) -> None:
        self._records.pop(address, None)
        if self._store is not None:
            self._store.delete(address)

    def is_eligible(self, address: bytes, now: float) -> bool:
        key = bytes(address)
        with self._lock:
            rec = self._records.get(key)
            if rec is None:
                return True
            if self._is_fresh(rec, now):
                return False
            self._drop(key)
            return True

    def record(self, address: bytes, record: ProcessingRecord) -> None:
        key = bytes(address)
        with self._lock:
            self._records[key] = record
            if self._store is not None:
                self._store.put(key, record)

    def get(self, address: bytes) -> Optional[ProcessingRecord]:
        with self._lock:
            return self._records.get(bytes(address))

    def evict_stale(self, now: float) -> int:
        with self._lock:
            stale = [k for k, rec in self._records.items() if not self._is_fresh(rec, now)]
            for k in stale:
                self._drop(k)
            return len(stale)

    def snapshot(self) -> Json:
        with self._lock:
            return {
                "window_s": self.window_s,
                "size": len(self._records),
                "quarantined": sorted(base58.b58encode(k).decode() for k, r in self._records.items() if r.quarantined),
            }
