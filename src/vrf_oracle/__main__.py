# src/vrf_oracle/__main__.py
from __future__ import annotations

import argparse
import logging
import signal
from typing import Any, Optional

from vrf_oracle import __version__
from vrf_oracle.config import OracleConfig, oracle_config_from_env
from vrf_oracle.crypto.keys import OracleIdentity
from vrf_oracle.env import load_dotenv_if_present
from vrf_oracle.errors import ConfigError, LedgerRpcError
from vrf_oracle.ledger.rpc_client import JsonRpcLedgerClient
from vrf_oracle.oracle import build_runtime
from vrf_oracle.proofs.cli_service import build_cli_proof_service
from vrf_oracle.runtime.lock import SingleInstanceLock
from vrf_oracle.structured_logging import configure_structured_logging, log_event

log = logging.getLogger("vrf_oracle.main")


def _parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="vrf-oracle",
        description="VRF oracle: scan pending randomness requests, prove, verify and submit fulfillments",
    )
    p.add_argument("--test-cli", action="store_true", help="run a VRF CLI prove/verify round trip and exit")
    p.add_argument("--test-connection", action="store_true", help="query ledger version and slot and exit")
    p.add_argument("--once", action="store_true", help="run a single scan/process cycle and exit")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return p


def _preflight(client: Any) -> None:
    try:
        version = client.get_version()
        slot = client.get_slot()
    except LedgerRpcError as e:
        raise ConfigError(f"ledger unreachable: {e.code}: {e.reason}") from e
    log_event(log, "ledger_connected", version=version.get("solana-core", version), slot=slot)


def main(argv: Optional[list[str]] = None) -> int:
    args = _parser().parse_args(argv)

    # Load .env before anything reads the environment.
    load_dotenv_if_present()

    try:
        cfg = oracle_config_from_env()
    except ConfigError as e:
        configure_structured_logging()
        log_event(log, "config_invalid", level=logging.CRITICAL, reason=e.reason)
        return 2
    configure_structured_logging(cfg.log_level)

    client = JsonRpcLedgerClient(
        cfg.rpc_url,
        commitment=cfg.commitment,
        timeout_s=cfg.rpc_timeout_s,
        retries=cfg.rpc_retries,
        confirm_timeout_s=cfg.confirm_timeout_s,
    )

    if args.test_connection:
        try:
            _preflight(client)
        except ConfigError as e:
            log_event(log, "connection_test_failed", level=logging.ERROR, reason=e.reason)
            return 1
        return 0

    if args.test_cli:
        try:
            svc = build_cli_proof_service(cfg.vrf_cli_path, cfg.vrf_keypair_path, timeout_s=cfg.proof_timeout_s)
        except ConfigError as e:
            log_event(log, "cli_test_failed", level=logging.ERROR, reason=e.reason)
            return 1
        log_event(log, "cli_test_ok", public_key=svc.public_key().hex())
        return 0

    lock = SingleInstanceLock(cfg.lock_path)
    if not lock.acquire():
        log_event(log, "lock_held", level=logging.CRITICAL, path=cfg.lock_path)
        return 2

    try:
        return _run(args, cfg, client)
    finally:
        lock.release()


def _run(args: argparse.Namespace, cfg: OracleConfig, client: JsonRpcLedgerClient) -> int:
    try:
        identity = OracleIdentity.from_keypair_file(cfg.oracle_keypair_path)
        proofs = build_cli_proof_service(cfg.vrf_cli_path, cfg.vrf_keypair_path, timeout_s=cfg.proof_timeout_s)
        _preflight(client)
    except ConfigError as e:
        log_event(log, "bootstrap_failed", level=logging.CRITICAL, reason=e.reason)
        return 2

    rt = build_runtime(cfg, identity=identity, proofs=proofs, client=client)
    log_event(
        log,
        "oracle_configured",
        version=__version__,
        oracle=identity.address,
        vrf_public_key=proofs.public_key().hex(),
        rpc_url=cfg.rpc_url,
        program_id=cfg.program_id,
        polling_interval_ms=cfg.polling_interval_ms,
        dedup_window_s=cfg.dedup_window_s,
        dedup_db_path=cfg.dedup_db_path or None,
        lock_path=cfg.lock_path,
    )

    if args.once:
        rt.scheduler.run_once()
        log_event(log, "final_stats", **rt.stats.snapshot().to_dict())
        return 0

    server = None
    if cfg.status_enabled:
        from vrf_oracle.api.app import create_status_app
        from vrf_oracle.api.server import StatusServer

        server = StatusServer(create_status_app(**rt.status_app_kwargs()), host=cfg.status_host, port=cfg.status_port)
        server.start()

    def _on_signal(signum: int, _frame: Any) -> None:
        log_event(log, "shutdown_requested", signal=signal.Signals(signum).name)
        rt.scheduler.stop()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    rt.stats.restart_clock()
    rt.scheduler.run_forever()

    if server is not None:
        server.stop()
    log_event(log, "final_stats", **rt.stats.snapshot().to_dict())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
