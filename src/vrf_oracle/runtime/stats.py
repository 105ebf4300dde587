# src/vrf_oracle/runtime/stats.py
from __future__ import annotations

import threading
import time
from dataclasses import asdict, dataclass
from typing import Callable, Dict, Optional

COUNTERS = (
    "requests_processed",
    "requests_fulfilled",
    "errors",
    "proofs_invalid",
    "submissions_failed",
    "cycles",
)


@dataclass(frozen=True, slots=True)
class StatsSnapshot:
    start_time: float
    uptime_s: float
    requests_processed: int
    requests_fulfilled: int
    errors: int
    proofs_invalid: int
    submissions_failed: int
    cycles: int

    @property
    def success_rate(self) -> float:
        if self.requests_processed <= 0:
            return 0.0
        return self.requests_fulfilled / self.requests_processed

    def to_dict(self) -> Dict[str, float]:
        d = asdict(self)
        d["success_rate"] = round(self.success_rate, 4)
        return d


class StatsTracker:
    """Process-lifetime counters. Observability only, never used for correctness."""

    def __init__(self, *, clock: Optional[Callable[[], float]] = None) -> None:
        self._clock = clock or time.time
        self._lock = threading.Lock()
        self._start = float(self._clock())
        self._counters: Dict[str, int] = {name: 0 for name in COUNTERS}

    def inc(self, name: str, value: int = 1) -> None:
        if name not in self._counters:
            raise KeyError(f"unknown counter: {name}")
        if value < 0:
            raise ValueError("counters only increase")
        with self._lock:
            self._counters[name] += int(value)

    def restart_clock(self) -> None:
        with self._lock:
            self._start = float(self._clock())

    def get(self, name: str) -> int:
        with self._lock:
            return int(self._counters[name])

    def snapshot(self) -> StatsSnapshot:
        with self._lock:
            c = dict(self._counters)
            start = self._start
        return StatsSnapshot(start_time=start, uptime_s=max(0.0, float(self._clock()) - start), **c)

    def format_prometheus(self, prefix: str = "vrf_oracle_") -> str:
        """Prometheus text exposition (integer counters + uptime)."""
        pre = str(prefix or "").strip() or "vrf_oracle_"
        snap = self.snapshot()
        lines = [f"{pre}uptime_seconds {snap.uptime_s:.3f}"]
        for name in COUNTERS:
            lines.append(f"# TYPE {pre}{name}_total counter")
            lines.append(f"{pre}{name}_total {int(getattr(snap, name))}")
        return "\n".join(lines) + "\n"

    def summary_line(self) -> str:
        s = self.snapshot()
        return (
            f"{s.requests_processed} processed, {s.requests_fulfilled} fulfilled, "
            f"{s.errors} errors, uptime: {int(s.uptime_s // 60)}m"
        )
