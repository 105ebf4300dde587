# src/vrf_oracle/proofs/service.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True, slots=True)
class ProofResult:
    proof: bytes
    output: bytes


class ProofService(Protocol):
    """Produces and checks VRF proofs for request seeds.

    generate_proof raises ProofGenerationError on tool/process failure
    (including timeouts). verify_proof never raises for a bad proof; it
    returns False.
    """

    def generate_proof(self, seed: bytes) -> ProofResult:
        ...

    def verify_proof(self, proof: bytes, output: bytes, public_key: bytes, seed: bytes) -> bool:
        ...

    def public_key(self) -> bytes:
        ...
