"""VRF fulfillment oracle.

Discovers pending randomness requests owned by the VRF program, proves each
seed through a ProofService and commits a fulfillment transaction back to the
ledger.
"""

__version__ = "0.3.0"
