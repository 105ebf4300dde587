# src/vrf_oracle/proofs/cli_service.py
from __future__ import annotations

import json
import logging
import os
import shutil
import subprocess
import time
from pathlib import Path
from typing import Dict, List, Sequence

from vrf_oracle.errors import ConfigError, ProofGenerationError
from vrf_oracle.proofs.service import ProofResult
from vrf_oracle.structured_logging import log_event

log = logging.getLogger("vrf_oracle.proofs")


def _parse_labeled(stdout: str, labels: Sequence[str]) -> Dict[str, str]:
    """Pick `Label: value` lines out of CLI output."""
    out: Dict[str, str] = {}
    for line in stdout.splitlines():
        for label in labels:
            prefix = f"{label}:"
            if line.strip().startswith(prefix) and label not in out:
                out[label] = line.strip()[len(prefix) :].strip()
    return out


def _hex(v: str, *, what: str) -> bytes:
    try:
        return bytes.fromhex(v)
    except ValueError as e:
        raise ProofGenerationError(f"{what} is not hex: {v[:80]!r}") from e


class CliProofService:
    """ProofService backed by an external ECVRF command line tool.

    Commands (hex arguments):
      keygen                                   -> "Secret key: ..", "Public key: .."
      prove  --input I --secret-key S          -> "Proof: ..", "Output: .."
      verify --proof P --output O --public-key K --input I   (exit 0 == valid)

    The VRF keypair is read from keypair_path ({"secretKey", "publicKey"} hex)
    or generated with `keygen` and written there on first start.
    """

    def __init__(self, cli_path: str, keypair_path: str, *, timeout_s: float = 30.0) -> None:
        self.cli_path = cli_path
        self.keypair_path = keypair_path
        self.timeout_s = float(timeout_s)
        self._secret_hex = ""
        self._public = b""

    # ----------------------------
    # Bootstrap
    # ----------------------------

    def initialize(self, *, self_test: bool = True) -> None:
        resolved = shutil.which(self.cli_path) or (self.cli_path if os.access(self.cli_path, os.X_OK) else None)
        if not resolved:
            raise ConfigError(f"VRF CLI not found or not executable: {self.cli_path}")
        self.cli_path = resolved
        self._load_or_generate_keypair()
        if self_test:
            self.self_test()

    def _load_or_generate_keypair(self) -> None:
        p = Path(self.keypair_path).expanduser()
        if p.is_file():
            try:
                doc = json.loads(p.read_text(encoding="utf-8"))
                self._secret_hex = str(doc["secretKey"]).strip()
                self._public = bytes.fromhex(str(doc["publicKey"]).strip())
            except (OSError, ValueError, KeyError, TypeError) as e:
                raise ConfigError(f"VRF keypair unreadable: {p}: {e}") from e
            log_event(log, "vrf_keypair_loaded", path=str(p), public_key=self._public.hex())
            return

        log_event(log, "vrf_keypair_generating", path=str(p))
        try:
            stdout = self._run(["keygen"])
        except ProofGenerationError as e:
            raise ConfigError(f"VRF keygen failed: {e.reason}") from e
        fields = _parse_labeled(stdout, ["Secret key", "Public key"])
        if "Secret key" not in fields or "Public key" not in fields:
            raise ConfigError(f"failed to parse keygen output: {stdout[:200]!r}")

        self._secret_hex = fields["Secret key"]
        self._public = bytes.fromhex(fields["Public key"])
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(json.dumps({"secretKey": self._secret_hex, "publicKey": fields["Public key"]}, indent=2), encoding="utf-8")
        try:
            os.chmod(p, 0o600)
        except OSError:
            log_event(log, "vrf_keypair_chmod_failed", level=logging.WARNING, path=str(p))
        log_event(log, "vrf_keypair_generated", path=str(p), public_key=self._public.hex())

    def self_test(self) -> None:
        """Prove and verify a throwaway input; ConfigError if the round trip fails."""
        sample = f"test_input_{int(time.time() * 1000)}".encode("utf-8")
        try:
            res = self.generate_proof(sample)
        except ProofGenerationError as e:
            raise ConfigError(f"VRF CLI self-test failed: {e.reason}") from e
        if not self.verify_proof(res.proof, res.output, self.public_key(), sample):
            raise ConfigError("VRF CLI self-test failed: proof did not verify")
        log_event(log, "vrf_cli_self_test_ok", cli=self.cli_path)

    # ----------------------------
    # Process plumbing
    # ----------------------------

    def _run(self, args: List[str]) -> str:
        cmd = [self.cli_path] + args
        try:
            r = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout_s, check=False)
        except subprocess.TimeoutExpired as e:
            raise ProofGenerationError(f"{args[0]} timed out after {self.timeout_s}s", code="proof_timeout") from e
        except OSError as e:
            raise ProofGenerationError(f"{args[0]} could not start: {e}") from e

        if r.returncode != 0:
            raise ProofGenerationError(f"{args[0]} exited {r.returncode}: {r.stderr.strip()[:500]}")
        if r.stderr and "warning" not in r.stderr.lower():
            log_event(log, "vrf_cli_stderr", level=logging.WARNING, command=args[0], stderr=r.stderr.strip()[:500])
        return r.stdout

    # ----------------------------
    # ProofService
    # ----------------------------

    def public_key(self) -> bytes:
        return self._public

    def generate_proof(self, seed: bytes) -> ProofResult:
        if not self._secret_hex:
            raise ProofGenerationError("VRF keypair not loaded", code="not_initialized")
        stdout = self._run(["prove", "--input", bytes(seed).hex(), "--secret-key", self._secret_hex])
        fields = _parse_labeled(stdout, ["Proof", "Output"])
        if "Proof" not in fields or "Output" not in fields:
            raise ProofGenerationError(f"failed to parse prove output: {stdout[:200]!r}", code="bad_cli_output")
        return ProofResult(proof=_hex(fields["Proof"], what="proof"), output=_hex(fields["Output"], what="output"))

    def verify_proof(self, proof: bytes, output: bytes, public_key: bytes, seed: bytes) -> bool:
        args = [
            "verify",
            "--proof",
            bytes(proof).hex(),
            "--output",
            bytes(output).hex(),
            "--public-key",
            bytes(public_key).hex(),
            "--input",
            bytes(seed).hex(),
        ]
        try:
            self._run(args)
        except ProofGenerationError as e:
            log_event(log, "vrf_verify_rejected", level=logging.DEBUG, reason=e.reason)
            return False
        return True


def build_cli_proof_service(cli_path: str, keypair_path: str, *, timeout_s: float, self_test: bool = True) -> CliProofService:
    svc = CliProofService(cli_path, keypair_path, timeout_s=timeout_s)
    svc.initialize(self_test=self_test)
    return svc

