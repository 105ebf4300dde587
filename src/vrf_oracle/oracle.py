# src/vrf_oracle/oracle.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from vrf_oracle.config import OracleConfig
from vrf_oracle.crypto.keys import OracleIdentity
from vrf_oracle.ledger.client import LedgerClient
from vrf_oracle.proofs.service import ProofService
from vrf_oracle.runtime.idempotency import IdempotencyLedger
from vrf_oracle.runtime.pipeline import FulfillmentPipeline, PipelineConfig
from vrf_oracle.runtime.record_store import SqliteRecordStore
from vrf_oracle.runtime.scanner import RequestScanner
from vrf_oracle.runtime.scheduler import PollingScheduler, SchedulerConfig
from vrf_oracle.runtime.stats import StatsTracker


@dataclass(slots=True)
class OracleRuntime:
    """Everything one oracle process owns, wired together."""

    config: OracleConfig
    identity: OracleIdentity
    proofs: ProofService
    client: LedgerClient
    ledger: IdempotencyLedger
    stats: StatsTracker
    scanner: RequestScanner
    pipeline: FulfillmentPipeline
    scheduler: PollingScheduler

    def status_app_kwargs(self) -> dict:
        return {
            "stats": self.stats,
            "scheduler": self.scheduler,
            "ledger": self.ledger,
            "oracle_address": self.identity.address,
            "vrf_public_key": self.proofs.public_key().hex(),
        }


def build_runtime(
    cfg: OracleConfig,
    *,
    identity: OracleIdentity,
    proofs: ProofService,
    client: LedgerClient,
    stats: Optional[StatsTracker] = None,
) -> OracleRuntime:
    program_id = cfg.program_id_bytes
    stats = stats or StatsTracker()
    store = SqliteRecordStore(cfg.dedup_db_path) if cfg.dedup_db_path else None
    ledger = IdempotencyLedger(window_s=cfg.dedup_window_s, store=store)

    scanner = RequestScanner(client=client, program_id=program_id, ledger=ledger)
    pipeline = FulfillmentPipeline(
        program_id=program_id,
        identity=identity,
        proofs=proofs,
        client=client,
        ledger=ledger,
        stats=stats,
        cfg=PipelineConfig(
            max_invalid_proofs=cfg.max_invalid_proofs,
            submit_attempts=cfg.submit_attempts,
            submit_retry_delay_s=cfg.submit_retry_delay_ms / 1000.0,
        ),
    )
    scheduler = PollingScheduler(
        scanner=scanner,
        pipeline=pipeline,
        stats=stats,
        cfg=SchedulerConfig(
            interval_s=cfg.polling_interval_ms / 1000.0,
            request_delay_s=cfg.request_delay_ms / 1000.0,
            error_backoff_s=cfg.error_backoff_ms / 1000.0,
        ),
    )
    return OracleRuntime(
        config=cfg,
        identity=identity,
        proofs=proofs,
        client=client,
        ledger=ledger,
        stats=stats,
        scanner=scanner,
        pipeline=pipeline,
        scheduler=scheduler,
    )
