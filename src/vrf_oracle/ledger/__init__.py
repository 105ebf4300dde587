# src/vrf_oracle/ledger/__init__.py
"""
Ledger-facing layer.

  - types: account/instruction data shapes and protocol constants
  - codec: schema-driven binary decode/encode
  - address: program-derived address derivation
  - transaction: legacy transaction assembly and signing
  - client: LedgerClient contract
  - rpc_client: JSON-RPC implementation of the contract
"""
