# src/vrf_oracle/runtime/scanner.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

import base58

from vrf_oracle.errors import MalformedRecord, TagMismatch
from vrf_oracle.ledger.client import LedgerClient
from vrf_oracle.ledger.codec import decode_request
from vrf_oracle.ledger.types import REQUEST_DISCRIMINATOR, RandomnessRequest
from vrf_oracle.runtime.idempotency import IdempotencyLedger
from vrf_oracle.structured_logging import log_event

log = logging.getLogger("vrf_oracle.scanner")


@dataclass(slots=True)
class ScanReport:
    total: int = 0
    foreign: int = 0
    malformed: int = 0
    not_pending: int = 0
    ineligible: int = 0
    pending: int = 0
    requests: List[RandomnessRequest] = field(default_factory=list)

    def counts(self) -> dict:
        return {
            "total": self.total,
            "foreign": self.foreign,
            "malformed": self.malformed,
            "not_pending": self.not_pending,
            "ineligible": self.ineligible,
            "pending": self.pending,
        }


class RequestScanner:
    """Finds pending, not-recently-processed randomness requests.

    Order of the result is the ledger's enumeration order and carries no
    meaning.
    """

    def __init__(
        self,
        *,
        client: LedgerClient,
        program_id: bytes,
        ledger: IdempotencyLedger,
        clock: Optional[Callable[[], float]] = None,
        server_side_filter: bool = True,
    ) -> None:
        self.client = client
        self.program_id = bytes(program_id)
        self.ledger = ledger
        self._clock = clock or time.time
        self.server_side_filter = bool(server_side_filter)

    def now(self) -> float:
        return float(self._clock())

    def scan(self, now: Optional[float] = None) -> List[RandomnessRequest]:
        return self.scan_with_report(now).requests

    def scan_with_report(self, now: Optional[float] = None) -> ScanReport:
        now = self.now() if now is None else float(now)
        disc = REQUEST_DISCRIMINATOR if self.server_side_filter else None
        accounts = self.client.list_program_accounts(self.program_id, discriminator=disc)

        report = ScanReport(total=len(accounts))
        for acct in accounts:
            req, outcome = self._classify(acct.address, acct.data, now)
            if req is not None:
                report.requests.append(req)
                report.pending += 1
                continue
            setattr(report, outcome, getattr(report, outcome) + 1)

        log_event(log, "scan_complete", level=logging.DEBUG, **report.counts())
        return report

    def _classify(self, address: bytes, data: bytes, now: float) -> Tuple[Optional[RandomnessRequest], str]:
        try:
            req = decode_request(address, data)
        except TagMismatch:
            return None, "foreign"
        except MalformedRecord as e:
            log_event(log, "record_malformed", level=logging.DEBUG, address=base58.b58encode(address).decode(), reason=e.reason)
            return None, "malformed"

        if not req.is_pending:
            return None, "not_pending"
        if not self.ledger.is_eligible(address, now):
            log_event(log, "request_recently_processed", level=logging.DEBUG, address=req.address_b58)
            return None, "ineligible"
        return req, "pending"
