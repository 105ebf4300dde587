# src/vrf_oracle/api/app.py
from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Optional

from fastapi import APIRouter, FastAPI, Request, Response
from pydantic import BaseModel
from starlette.middleware.base import BaseHTTPMiddleware

from vrf_oracle import __version__
from vrf_oracle.runtime.idempotency import IdempotencyLedger
from vrf_oracle.runtime.scheduler import PollingScheduler, SchedulerState
from vrf_oracle.runtime.stats import StatsTracker
from vrf_oracle.structured_logging import log_event

router = APIRouter()


class StatsResponse(BaseModel):
    start_time: float
    uptime_s: float
    requests_processed: int
    requests_fulfilled: int
    errors: int
    proofs_invalid: int
    submissions_failed: int
    cycles: int
    success_rate: float
    dedup_size: int
    quarantined: list[str]


def _now_ms() -> int:
    return int(time.time() * 1000)


class RequestLogMiddleware(BaseHTTPMiddleware):
    """One structured line per status request (DEBUG; health checks are frequent)."""

    def __init__(self, app) -> None:
        super().__init__(app)
        self._logger = logging.getLogger("vrf_oracle.http")

    async def dispatch(self, request: Request, call_next):
        started = time.monotonic()
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        status = 500
        response: Optional[Response] = None
        try:
            response = await call_next(request)
            status = int(getattr(response, "status_code", 200) or 200)
            return response
        finally:
            log_event(
                self._logger,
                "http_request",
                level=logging.DEBUG,
                request_id=request_id,
                method=request.method,
                path=str(request.url.path or ""),
                status=status,
                duration_ms=int((time.monotonic() - started) * 1000),
            )
            if response is not None:
                response.headers.setdefault("x-request-id", request_id)


def _state(request: Request, name: str) -> Any:
    return getattr(request.app.state, name, None)


def _health_payload(request: Request) -> dict[str, object]:
    """Liveness plus a little context for operators.

    ok is false once the scheduler has stopped or after repeated failed cycles.
    """
    sched: Optional[PollingScheduler] = _state(request, "scheduler")
    status = sched.status() if sched is not None else {"state": SchedulerState.IDLE.value}
    failures = int(status.get("consecutive_failures", 0) or 0)
    ok = status.get("state") != SchedulerState.STOPPED.value and failures < 3
    return {
        "ok": bool(ok),
        "service": "vrf-oracle",
        "version": __version__,
        "ts_ms": _now_ms(),
        "oracle": _state(request, "oracle_address") or "",
        "vrf_public_key": _state(request, "vrf_public_key") or "",
        "scheduler": status,
    }


@router.get("/health")
def health(request: Request) -> dict[str, object]:
    return _health_payload(request)


@router.get("/healthz")
def healthz(request: Request) -> dict[str, object]:
    # Kubernetes-style alias
    return _health_payload(request)


@router.get("/v1/stats", response_model=StatsResponse)
def stats(request: Request) -> StatsResponse:
    tracker: StatsTracker = _state(request, "stats")
    ledger: Optional[IdempotencyLedger] = _state(request, "ledger")
    snap = tracker.snapshot()
    dedup = ledger.snapshot() if ledger is not None else {"size": 0, "quarantined": []}
    return StatsResponse(
        **snap.to_dict(),
        dedup_size=int(dedup["size"]),
        quarantined=list(dedup["quarantined"]),
    )


@router.get("/metrics")
def metrics(request: Request) -> Response:
    """Prometheus-style metrics."""
    tracker: StatsTracker = _state(request, "stats")
    return Response(content=tracker.format_prometheus(), media_type="text/plain")


def create_status_app(
    *,
    stats: StatsTracker,
    scheduler: Optional[PollingScheduler] = None,
    ledger: Optional[IdempotencyLedger] = None,
    oracle_address: str = "",
    vrf_public_key: str = "",
) -> FastAPI:
    """Read-only status app. The oracle never accepts commands over HTTP."""
    app = FastAPI(title="vrf-oracle", version=__version__)
    app.state.stats = stats
    app.state.scheduler = scheduler
    app.state.ledger = ledger
    app.state.oracle_address = oracle_address
    app.state.vrf_public_key = vrf_public_key
    app.add_middleware(RequestLogMiddleware)
    app.include_router(router)
    return app
