# src/vrf_oracle/errors.py
from __future__ import annotations

from typing import Any, Optional


class OracleError(Exception):
    """Base error for the oracle core.

    code is a short stable identifier used in logs and outcomes.
    """

    code = "oracle_error"

    def __init__(self, reason: str = "", *, code: Optional[str] = None, details: Any | None = None) -> None:
        super().__init__(reason)
        if code:
            self.code = code
        self.reason = reason
        self.details = details

    def __str__(self) -> str:  # pragma: no cover
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"


class MalformedRecord(OracleError):
    """Account bytes do not decode as a randomness request."""

    code = "malformed_record"


class TagMismatch(MalformedRecord):
    """Leading discriminator is not the pending-request tag."""

    code = "tag_mismatch"


class ProofGenerationError(OracleError):
    code = "proof_generation_failed"


class ProofInvalid(OracleError):
    code = "proof_invalid"


class SubmissionFailure(OracleError):
    code = "submission_failed"


class PayloadTooLarge(OracleError):
    code = "payload_too_large"


class LedgerRpcError(OracleError):
    code = "ledger_rpc_error"


class ConfigError(OracleError):
    """Bootstrap/configuration failure. Fatal to the process."""

    code = "config_error"


class AddressDerivationError(ValueError):
    """Malformed seeds or program id passed to address derivation."""
