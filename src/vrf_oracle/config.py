# src/vrf_oracle/config.py
from __future__ import annotations

import os
from dataclasses import dataclass

import base58

from vrf_oracle.errors import ConfigError
from vrf_oracle.ledger.types import DEFAULT_VRF_PROGRAM_ID


def _env_str(name: str, default: str) -> str:
    v = os.environ.get(name)
    if v is None or not v.strip():
        return default
    return v.strip()


def _env_bool(name: str, default: bool) -> bool:
    v = os.environ.get(name)
    if v is None:
        return bool(default)
    return (v or "").strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    try:
        raw = str(os.environ.get(name, "")).strip()
        return int(raw) if raw else int(default)
    except Exception:
        return int(default)


def _env_float(name: str, default: float) -> float:
    try:
        raw = str(os.environ.get(name, "")).strip()
        return float(raw) if raw else float(default)
    except Exception:
        return float(default)


@dataclass(frozen=True, slots=True)
class OracleConfig:
    rpc_url: str
    program_id: str
    oracle_keypair_path: str
    vrf_keypair_path: str
    vrf_cli_path: str

    # Scheduling
    polling_interval_ms: int
    request_delay_ms: int
    error_backoff_ms: int

    # Dedup
    dedup_window_s: float
    dedup_db_path: str
    max_invalid_proofs: int

    # Submission / transport
    submit_attempts: int
    submit_retry_delay_ms: int
    rpc_timeout_s: float
    rpc_retries: int
    confirm_timeout_s: float
    proof_timeout_s: float
    commitment: str

    lock_path: str
    log_level: str

    # Status surface (opt-in)
    status_enabled: bool
    status_host: str
    status_port: int

    @property
    def program_id_bytes(self) -> bytes:
        return base58.b58decode(self.program_id)

    def validate(self) -> None:
        if not self.rpc_url.startswith(("http://", "https://")):
            raise ConfigError(f"rpc url must be http(s): {self.rpc_url!r}")
        try:
            pid = base58.b58decode(self.program_id)
        except ValueError as e:
            raise ConfigError(f"program id is not base58: {self.program_id!r}") from e
        if len(pid) != 32:
            raise ConfigError(f"program id must decode to 32 bytes, got {len(pid)}")
        if self.commitment not in {"processed", "confirmed", "finalized"}:
            raise ConfigError(f"unsupported commitment: {self.commitment!r}")


def oracle_config_from_env() -> OracleConfig:
    polling_interval_ms = max(250, _env_int("POLLING_INTERVAL_MS", 3000))
    request_delay_ms = max(0, _env_int("ORACLE_REQUEST_DELAY_MS", 1000))
    error_backoff_ms = max(polling_interval_ms, _env_int("ORACLE_ERROR_BACKOFF_MS", 5000))

    dedup_window_s = max(1.0, _env_float("ORACLE_DEDUP_WINDOW_S", 600.0))
    max_invalid_proofs = max(1, _env_int("ORACLE_MAX_INVALID_PROOFS", 3))

    submit_attempts = max(1, _env_int("ORACLE_SUBMIT_ATTEMPTS", 3))
    submit_retry_delay_ms = max(0, _env_int("ORACLE_SUBMIT_RETRY_DELAY_MS", 2000))
    rpc_timeout_s = max(0.5, _env_float("ORACLE_RPC_TIMEOUT_S", 10.0))
    rpc_retries = max(1, _env_int("ORACLE_RPC_RETRIES", 3))
    confirm_timeout_s = max(1.0, _env_float("ORACLE_CONFIRM_TIMEOUT_S", 30.0))
    proof_timeout_s = max(1.0, _env_float("ORACLE_PROOF_TIMEOUT_S", 30.0))

    cfg = OracleConfig(
        rpc_url=_env_str("SOLANA_RPC_URL", "https://api.devnet.solana.com"),
        program_id=_env_str("VRF_PROGRAM_ID", DEFAULT_VRF_PROGRAM_ID),
        oracle_keypair_path=_env_str("ORACLE_KEYPAIR_PATH", "./oracle-keypair.json"),
        vrf_keypair_path=_env_str("VRF_KEYPAIR_PATH", "./vrf-keypair.json"),
        vrf_cli_path=_env_str("VRF_CLI_PATH", "ecvrf-cli"),
        polling_interval_ms=int(polling_interval_ms),
        request_delay_ms=int(request_delay_ms),
        error_backoff_ms=int(error_backoff_ms),
        dedup_window_s=float(dedup_window_s),
        dedup_db_path=_env_str("ORACLE_DEDUP_DB_PATH", ""),
        max_invalid_proofs=int(max_invalid_proofs),
        submit_attempts=int(submit_attempts),
        submit_retry_delay_ms=int(submit_retry_delay_ms),
        rpc_timeout_s=float(rpc_timeout_s),
        rpc_retries=int(rpc_retries),
        confirm_timeout_s=float(confirm_timeout_s),
        proof_timeout_s=float(proof_timeout_s),
        commitment=_env_str("ORACLE_COMMITMENT", "confirmed").lower(),
        lock_path=_env_str("ORACLE_LOCK_PATH", "./data/oracle.lock"),
        log_level=_env_str("LOG_LEVEL", "INFO").upper(),
        status_enabled=_env_bool("ORACLE_STATUS_ENABLED", False),
        status_host=_env_str("ORACLE_STATUS_HOST", "127.0.0.1"),
        status_port=_env_int("ORACLE_STATUS_PORT", 8787),
    )
    cfg.validate()
    return cfg
