# src/vrf_oracle/runtime/pipeline.py
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import base58

from vrf_oracle.crypto.keys import OracleIdentity
from vrf_oracle.errors import (
    LedgerRpcError,
    OracleError,
    ProofGenerationError,
    ProofInvalid,
    SubmissionFailure,
)
from vrf_oracle.ledger.address import request_pool_address, result_address
from vrf_oracle.ledger.client import LedgerClient
from vrf_oracle.ledger.codec import encode_fulfillment
from vrf_oracle.ledger.transaction import AccountMeta, Instruction, Transaction
from vrf_oracle.ledger.types import SYSTEM_PROGRAM_ID, FulfillmentPayload, RandomnessRequest
from vrf_oracle.proofs.service import ProofResult, ProofService
from vrf_oracle.runtime.idempotency import IdempotencyLedger, ProcessingRecord
from vrf_oracle.runtime.stats import StatsTracker
from vrf_oracle.structured_logging import log_event

log = logging.getLogger("vrf_oracle.pipeline")


@dataclass(frozen=True, slots=True)
class FulfillmentOutcome:
    address: bytes
    ok: bool
    signature: str = ""
    error_code: str = ""
    error: str = ""

    @property
    def address_b58(self) -> str:
        return base58.b58encode(self.address).decode()


@dataclass(frozen=True, slots=True)
class PipelineConfig:
    max_invalid_proofs: int = 3
    submit_attempts: int = 3
    submit_retry_delay_s: float = 2.0


def build_fulfill_instruction(
    *,
    program_id: bytes,
    oracle: bytes,
    request: bytes,
    result: bytes,
    request_pool: bytes,
    subscription: bytes,
    data: bytes,
) -> Instruction:
    """fulfill_randomness instruction.

    Account order is fixed by the receiving program:
      oracle (signer, writable), request, result, request pool,
      subscription (writable), system program (read-only).
    """
    return Instruction(
        program_id=bytes(program_id),
        accounts=(
            AccountMeta(bytes(oracle), is_signer=True, is_writable=True),
            AccountMeta(bytes(request), is_signer=False, is_writable=True),
            AccountMeta(bytes(result), is_signer=False, is_writable=True),
            AccountMeta(bytes(request_pool), is_signer=False, is_writable=True),
            AccountMeta(bytes(subscription), is_signer=False, is_writable=True),
            AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        ),
        data=bytes(data),
    )


class FulfillmentPipeline:
    """Prove, verify, encode and submit the fulfillment for one request.

    Per-request failures never raise out of process(); they become a
    FulfillmentOutcome with ok=False, bump `errors`, and leave no record so
    the request stays eligible. The exception is repeated invalid proofs for
    the same request: after max_invalid_proofs strikes the request is
    quarantined (a record is written) and an alert is logged, since that
    points at a key/service mismatch rather than a transient fault.
    """

    def __init__(
        self,
        *,
        program_id: bytes,
        identity: OracleIdentity,
        proofs: ProofService,
        client: LedgerClient,
        ledger: IdempotencyLedger,
        stats: StatsTracker,
        cfg: Optional[PipelineConfig] = None,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self.program_id = bytes(program_id)
        self.identity = identity
        self.proofs = proofs
        self.client = client
        self.ledger = ledger
        self.stats = stats
        self.cfg = cfg or PipelineConfig()
        self._clock = clock or time.time
        self._sleep = sleep or time.sleep
        self._strikes_lock = threading.Lock()
        self._invalid_strikes: Dict[bytes, int] = {}

    def process(self, req: RandomnessRequest) -> FulfillmentOutcome:
        log_event(log, "request_processing", **req.describe())
        try:
            sig, proof = self._fulfill(req)
        except ProofInvalid as e:
            self.stats.inc("errors")
            self.stats.inc("proofs_invalid")
            self._note_invalid_proof(req, e)
            return FulfillmentOutcome(req.address, False, error_code=e.code, error=e.reason)
        except OracleError as e:
            self.stats.inc("errors")
            if isinstance(e, SubmissionFailure):
                self.stats.inc("submissions_failed")
            log_event(
                log,
                "request_failed",
                level=logging.ERROR,
                address=req.address_b58,
                code=e.code,
                reason=e.reason,
            )
            return FulfillmentOutcome(req.address, False, error_code=e.code, error=e.reason)
        except Exception as e:
            self.stats.inc("errors")
            reason = f"{type(e).__name__}: {e}"
            log_event(
                log,
                "request_failed",
                level=logging.ERROR,
                address=req.address_b58,
                code="unexpected",
                reason=reason,
            )
            return FulfillmentOutcome(req.address, False, error_code="unexpected", error=reason)

        self._remember(
            req,
            ProcessingRecord(
                timestamp=float(self._clock()),
                seed=req.seed,
                request_id=req.request_id,
                pool_id=req.pool_id,
                request_index=req.request_index,
                proof=proof.proof,
                output=proof.output,
                signature=sig,
            ),
        )
        with self._strikes_lock:
            self._invalid_strikes.pop(req.address, None)
        self.stats.inc("requests_fulfilled")
        log_event(log, "request_fulfilled", address=req.address_b58, signature=sig, output=proof.output.hex()[:32])
        return FulfillmentOutcome(req.address, True, signature=sig)

    def _remember(self, req: RandomnessRequest, record: ProcessingRecord) -> None:
        # The in-memory entry is written before the store, so a store failure
        # still dedups within this process.
        try:
            self.ledger.record(req.address, record)
        except Exception as e:
            log_event(
                log,
                "record_persist_failed",
                level=logging.ERROR,
                address=req.address_b58,
                error=f"{type(e).__name__}: {e}",
            )

    # ----------------------------
    # Steps
    # ----------------------------

    def _fulfill(self, req: RandomnessRequest) -> tuple[str, ProofResult]:
        # 1. prove
        try:
            proof = self.proofs.generate_proof(req.seed)
        except ProofGenerationError:
            raise
        except Exception as e:
            raise ProofGenerationError(f"proof service failed: {type(e).__name__}: {e}") from e

        # 2. verify before anything touches the ledger
        public_key = self.proofs.public_key()
        try:
            valid = self.proofs.verify_proof(proof.proof, proof.output, public_key, req.seed)
        except Exception as e:
            raise ProofGenerationError(f"proof verification could not run: {type(e).__name__}: {e}") from e
        if not valid:
            raise ProofInvalid(
                f"proof for seed {req.seed.hex()} failed verification",
                details={"public_key": public_key.hex()},
            )

        # 3. derive dependent addresses
        pool_addr = request_pool_address(req.subscription, req.pool_id, self.program_id)
        result_addr = result_address(req.address, self.program_id)

        # 4. encode
        data = encode_fulfillment(
            FulfillmentPayload(
                proof=proof.proof,
                public_key=public_key,
                request_id=req.request_id,
                pool_id=req.pool_id,
                request_index=req.request_index,
            )
        )
        ix = build_fulfill_instruction(
            program_id=self.program_id,
            oracle=self.identity.public_key,
            request=req.address,
            result=result_addr,
            request_pool=pool_addr,
            subscription=req.subscription,
            data=data,
        )

        # 5. submit
        self.stats.inc("requests_processed")
        log_event(
            log,
            "fulfillment_submitting",
            address=req.address_b58,
            result=base58.b58encode(result_addr).decode(),
            request_pool=base58.b58encode(pool_addr).decode(),
            subscription=base58.b58encode(req.subscription).decode(),
        )
        return self._submit(ix, req), proof

    def _submit(self, ix: Instruction, req: RandomnessRequest) -> str:
        attempts = max(1, int(self.cfg.submit_attempts))
        last = ""
        for attempt in range(1, attempts + 1):
            try:
                bh = self.client.get_latest_blockhash()
                tx = Transaction.build_signed(signer=self.identity, instructions=[ix], recent_blockhash=bh.blockhash)
                outcome = self.client.send_and_confirm(tx)
            except LedgerRpcError as e:
                last = f"{e.code}: {e.reason}"
            except Exception as e:
                last = f"{type(e).__name__}: {e}"
            else:
                if outcome.ok:
                    return outcome.signature
                last = outcome.error

            log_event(
                log,
                "submission_attempt_failed",
                level=logging.WARNING,
                address=req.address_b58,
                attempt=attempt,
                attempts=attempts,
                error=last,
            )
            if attempt < attempts:
                self._sleep(float(self.cfg.submit_retry_delay_s))

        raise SubmissionFailure(f"transaction failed after {attempts} attempts: {last}")

    def _note_invalid_proof(self, req: RandomnessRequest, err: ProofInvalid) -> None:
        with self._strikes_lock:
            strikes = self._invalid_strikes.get(req.address, 0) + 1
            self._invalid_strikes[req.address] = strikes

        if strikes < int(self.cfg.max_invalid_proofs):
            log_event(
                log,
                "proof_invalid",
                level=logging.ERROR,
                address=req.address_b58,
                strikes=strikes,
                reason=err.reason,
            )
            return

        # Park the request for one dedup window and page an operator.
        self._remember(
            req,
            ProcessingRecord(
                timestamp=float(self._clock()),
                seed=req.seed,
                request_id=req.request_id,
                pool_id=req.pool_id,
                request_index=req.request_index,
                quarantined=True,
            ),
        )
        with self._strikes_lock:
            self._invalid_strikes.pop(req.address, None)
        log_event(
            log,
            "proof_invalid_alert",
            level=logging.CRITICAL,
            address=req.address_b58,
            strikes=strikes,
            public_key=(err.details or {}).get("public_key", ""),
            hint="check VRF keypair / proof service configuration",
        )

    def strikes(self, address: bytes) -> int:
        with self._strikes_lock:
            return int(self._invalid_strikes.get(bytes(address), 0))
