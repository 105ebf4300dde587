# src/vrf_oracle/ledger/rpc_client.py
from __future__ import annotations

import base64
import http.client
import json
import logging
import time
import urllib.error
import urllib.request
from typing import Any, Dict, List, Optional

import base58

from vrf_oracle.errors import LedgerRpcError
from vrf_oracle.ledger.client import Blockhash, SendOutcome
from vrf_oracle.ledger.transaction import Transaction
from vrf_oracle.ledger.types import Address, KeyedAccount
from vrf_oracle.structured_logging import log_event

Json = Dict[str, Any]

log = logging.getLogger("vrf_oracle.rpc")

_CONFIRMED_LEVELS = {
    "processed": {"processed", "confirmed", "finalized"},
    "confirmed": {"confirmed", "finalized"},
    "finalized": {"finalized"},
}


class JsonRpcLedgerClient:
    """Ledger JSON-RPC over HTTP.

    - Every request carries timeout_s.
    - Transport errors (connection, timeout, truncated reads, 5xx, 429) are
      retried up to `retries` times with a short linear pause. RPC-level
      errors are not.
    - send_and_confirm polls getSignatureStatuses until the commitment level
      is reached or confirm_timeout_s elapses.
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        commitment: str = "confirmed",
        timeout_s: float = 10.0,
        retries: int = 3,
        confirm_timeout_s: float = 30.0,
        confirm_poll_s: float = 0.5,
        retry_pause_s: float = 0.5,
    ) -> None:
        self.rpc_url = rpc_url
        self.commitment = commitment
        self.timeout_s = float(timeout_s)
        self.retries = max(1, int(retries))
        self.confirm_timeout_s = float(confirm_timeout_s)
        self.confirm_poll_s = float(confirm_poll_s)
        self.retry_pause_s = float(retry_pause_s)
        self._next_id = 1

    # ----------------------------
    # Transport
    # ----------------------------

    def _post_once(self, body: Json) -> Json:
        data = json.dumps(body).encode("utf-8")
        req = urllib.request.Request(
            self.rpc_url,
            data=data,
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        with urllib.request.urlopen(req, timeout=self.timeout_s) as resp:
            raw = resp.read().decode("utf-8", errors="replace")
        try:
            doc = json.loads(raw)
        except ValueError as e:
            raise LedgerRpcError(f"bad json from rpc: {raw[:200]}", code="bad_json") from e
        if not isinstance(doc, dict):
            raise LedgerRpcError("rpc response is not an object", code="bad_json")
        return doc

    def call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        rid = self._next_id
        self._next_id += 1
        body: Json = {"jsonrpc": "2.0", "id": rid, "method": method, "params": list(params or [])}

        last_err: Optional[Exception] = None
        for attempt in range(1, self.retries + 1):
            try:
                doc = self._post_once(body)
            except urllib.error.HTTPError as e:
                status = int(getattr(e, "code", 0) or 0)
                last_err = e
                if status == 429 or status >= 500:
                    log_event(log, "rpc_retry", level=logging.WARNING, method=method, attempt=attempt, status=status)
                    time.sleep(self.retry_pause_s * attempt)
                    continue
                raise LedgerRpcError(f"{method}: http {status}", code="http_error") from e
            except (urllib.error.URLError, http.client.HTTPException, TimeoutError, ConnectionError) as e:
                last_err = e
                log_event(log, "rpc_retry", level=logging.WARNING, method=method, attempt=attempt, error=str(e))
                time.sleep(self.retry_pause_s * attempt)
                continue

            err = doc.get("error")
            if err:
                msg = err.get("message") if isinstance(err, dict) else str(err)
                raise LedgerRpcError(f"{method}: {msg}", code="rpc_error", details=err)
            return doc.get("result")

        raise LedgerRpcError(f"{method}: transport failed after {self.retries} attempts: {last_err}", code="transport")

    # ----------------------------
    # LedgerClient
    # ----------------------------

    def list_program_accounts(self, program_id: Address, *, discriminator: Optional[bytes] = None) -> List[KeyedAccount]:
        cfg: Json = {"encoding": "base64", "commitment": self.commitment}
        if discriminator:
            cfg["filters"] = [{"memcmp": {"offset": 0, "bytes": base58.b58encode(discriminator).decode()}}]
        result = self.call("getProgramAccounts", [base58.b58encode(program_id).decode(), cfg])

        out: List[KeyedAccount] = []
        for item in result or []:
            try:
                pubkey = base58.b58decode(str(item["pubkey"]))
                data = _decode_account_data(item["account"]["data"])
            except (KeyError, TypeError, ValueError):
                log_event(log, "rpc_account_skipped", level=logging.DEBUG, item=str(item)[:200])
                continue
            out.append(KeyedAccount(address=pubkey, data=data))
        return out

    def get_account(self, address: Address) -> Optional[bytes]:
        result = self.call(
            "getAccountInfo",
            [base58.b58encode(address).decode(), {"encoding": "base64", "commitment": self.commitment}],
        )
        if not isinstance(result, dict):
            return None
        value = result.get("value")
        if not isinstance(value, dict):
            return None
        return _decode_account_data(value.get("data"))

    def get_latest_blockhash(self) -> Blockhash:
        result = self.call("getLatestBlockhash", [{"commitment": self.commitment}])
        try:
            value = result["value"]
            blockhash = base58.b58decode(str(value["blockhash"]))
            height = int(value.get("lastValidBlockHeight") or 0)
        except (KeyError, TypeError, ValueError) as e:
            raise LedgerRpcError(f"getLatestBlockhash: unexpected result {result!r}", code="bad_result") from e
        if len(blockhash) != 32:
            raise LedgerRpcError(f"getLatestBlockhash: blockhash is {len(blockhash)} bytes", code="bad_result")
        return Blockhash(blockhash=blockhash, last_valid_block_height=height)

    def get_version(self) -> Json:
        result = self.call("getVersion")
        return result if isinstance(result, dict) else {}

    def get_slot(self) -> int:
        return int(self.call("getSlot", [{"commitment": self.commitment}]) or 0)

    def send_and_confirm(self, transaction: Transaction) -> SendOutcome:
        sig = transaction.signature
        try:
            sent = self.call(
                "sendTransaction",
                [
                    transaction.to_base64(),
                    {"encoding": "base64", "skipPreflight": False, "preflightCommitment": self.commitment, "maxRetries": 3},
                ],
            )
        except LedgerRpcError as e:
            return SendOutcome.failure(str(e), signature=sig)
        if isinstance(sent, str) and sent:
            sig = sent

        wanted = _CONFIRMED_LEVELS.get(self.commitment, _CONFIRMED_LEVELS["confirmed"])
        deadline = time.monotonic() + self.confirm_timeout_s
        while time.monotonic() < deadline:
            try:
                result = self.call("getSignatureStatuses", [[sig], {"searchTransactionHistory": False}])
            except LedgerRpcError as e:
                log_event(log, "confirm_poll_failed", level=logging.WARNING, signature=sig, error=str(e))
                time.sleep(self.confirm_poll_s)
                continue

            status = None
            if isinstance(result, dict) and isinstance(result.get("value"), list) and result["value"]:
                status = result["value"][0]
            if isinstance(status, dict):
                if status.get("err") is not None:
                    return SendOutcome.failure(f"transaction failed: {status.get('err')}", signature=sig)
                if str(status.get("confirmationStatus") or "") in wanted:
                    return SendOutcome.success(sig)
            time.sleep(self.confirm_poll_s)

        return SendOutcome.failure(f"confirmation timed out after {self.confirm_timeout_s}s", signature=sig)


def _decode_account_data(data: Any) -> bytes:
    # RPC returns [payload, encoding] for binary encodings.
    if isinstance(data, list) and len(data) == 2 and data[1] == "base64":
        return base64.b64decode(str(data[0]))
    if isinstance(data, str):
        return base64.b64decode(data)
    raise ValueError(f"unsupported account data shape: {type(data).__name__}")
