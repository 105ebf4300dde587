# src/vrf_oracle/runtime/scheduler.py
from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from vrf_oracle.runtime.pipeline import FulfillmentPipeline
from vrf_oracle.runtime.scanner import RequestScanner
from vrf_oracle.runtime.stats import StatsTracker
from vrf_oracle.structured_logging import log_event

log = logging.getLogger("vrf_oracle.scheduler")

Json = Dict[str, Any]


class SchedulerState(str, enum.Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    PROCESSING = "processing"
    SLEEPING = "sleeping"
    STOPPED = "stopped"


@dataclass(frozen=True, slots=True)
class SchedulerConfig:
    interval_s: float = 3.0
    request_delay_s: float = 1.0
    error_backoff_s: float = 5.0


class PollingScheduler:
    """Drives scan -> process cycles at a fixed interval.

    Idle -> Scanning -> Processing -> Sleeping -> Scanning ...; stop() moves
    any state to Stopped. Cycles never overlap. Requests in one cycle are
    processed one at a time with request_delay_s between fulfillments.

    A cycle that raises is logged, counted in `errors`, and followed by a
    longer error_backoff_s sleep; the loop keeps going. stop() is observed
    between requests and during sleeps, never in the middle of a submission.
    """

    def __init__(
        self,
        *,
        scanner: RequestScanner,
        pipeline: FulfillmentPipeline,
        stats: StatsTracker,
        cfg: Optional[SchedulerConfig] = None,
    ) -> None:
        self.scanner = scanner
        self.pipeline = pipeline
        self.stats = stats
        self.cfg = cfg or SchedulerConfig()

        self._stop = threading.Event()
        self._state_lock = threading.Lock()
        self._state = SchedulerState.IDLE
        self._t: Optional[threading.Thread] = None

        self.consecutive_failures = 0
        self.last_error = ""
        self.last_cycle: Json = {}

    # ----------------------------
    # State
    # ----------------------------

    @property
    def state(self) -> SchedulerState:
        with self._state_lock:
            return self._state

    def _set_state(self, s: SchedulerState) -> None:
        with self._state_lock:
            if self._state == SchedulerState.STOPPED:
                return
            self._state = s

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def status(self) -> Json:
        return {
            "state": self.state.value,
            "consecutive_failures": int(self.consecutive_failures),
            "last_error": self.last_error,
            "last_cycle": dict(self.last_cycle),
        }

    # ----------------------------
    # Cycle
    # ----------------------------

    def run_once(self) -> Json:
        """Run one scan/process cycle. Exceptions from the scan propagate."""
        started = time.monotonic()
        self._set_state(SchedulerState.SCANNING)
        self.stats.inc("cycles")
        evicted = self.scanner.ledger.evict_stale(self.scanner.now())
        report = self.scanner.scan_with_report()

        processed = 0
        fulfilled = 0
        failed = 0
        self._set_state(SchedulerState.PROCESSING)
        for req in report.requests:
            if self._stop.is_set():
                break
            outcome = self.pipeline.process(req)
            processed += 1
            if outcome.ok:
                fulfilled += 1
                self._stop.wait(max(0.0, float(self.cfg.request_delay_s)))
            else:
                failed += 1

        cycle: Json = {
            **report.counts(),
            "processed": processed,
            "fulfilled": fulfilled,
            "failed": failed,
            "evicted": evicted,
            "duration_ms": int((time.monotonic() - started) * 1000),
        }
        self.last_cycle = cycle
        if fulfilled:
            log_event(log, "cycle_fulfilled", stats=self.stats.summary_line(), **cycle)
        else:
            log_event(log, "cycle_idle", level=logging.DEBUG, **cycle)
        return cycle

    def run_forever(self) -> None:
        log_event(log, "scheduler_started", interval_s=self.cfg.interval_s)
        while not self._stop.is_set():
            try:
                self.run_once()
                self.consecutive_failures = 0
                self.last_error = ""
                delay = float(self.cfg.interval_s)
            except Exception as err:
                self.consecutive_failures += 1
                self.last_error = f"{type(err).__name__}:{err}"
                self.stats.inc("errors")
                log.exception("scan cycle failed failures=%s", self.consecutive_failures)
                delay = float(self.cfg.error_backoff_s)

            self._set_state(SchedulerState.SLEEPING)
            self._stop.wait(max(0.0, delay))

        self._set_state(SchedulerState.STOPPED)
        log_event(log, "scheduler_stopped", stats=self.stats.snapshot().to_dict())

    # ----------------------------
    # Thread control
    # ----------------------------

    def start(self) -> None:
        if self._t is not None:
            return
        self._t = threading.Thread(target=self.run_forever, name="vrf-oracle-scheduler", daemon=True)
        self._t.start()

    def stop(self, join_timeout: Optional[float] = None) -> None:
        self._stop.set()
        t = self._t
        if t is not None and t is not threading.current_thread():
            t.join(timeout=join_timeout)
        if t is None:
            self._set_state(SchedulerState.STOPPED)

    def join(self, timeout: Optional[float] = None) -> None:
        t = self._t
        if t is not None:
            t.join(timeout=timeout)
