"""JSON-RPC client and small shared helpers."""

from __future__ import annotations

import base64
import json
import logging
import re
import time
import urllib.error
import urllib.request
from typing import Any

from .constants import LAMPORTS_PER_SOL, NetworkProfile

logger = logging.getLogger(__name__)

# ── Regex ──────────────────────────────────────────────────────────

DEPLOY_SIG_RE = re.compile(r"Signature:\s*([1-9A-HJ-NP-Za-km-z]{32,})")

# ── RPC helpers ────────────────────────────────────────────────────

RETRYABLE_HTTP = {429, 500, 502, 503, 504}


def rpc_request_raw(url: str, method: str, params: list, *, retries: int = 6) -> dict:
    payload = json.dumps({"jsonrpc": "2.0", "id": 1, "method": method, "params": params}).encode()
    req = urllib.request.Request(url, data=payload, headers={"Content-Type": "application/json"})
    for attempt in range(retries + 1):
        try:
            with urllib.request.urlopen(req) as resp:
                return json.loads(resp.read().decode())
        except urllib.error.HTTPError as exc:
            if exc.code in RETRYABLE_HTTP and attempt < retries:
                logger.debug("%s: HTTP %s, retrying", method, exc.code)
                time.sleep(0.25 * (2**attempt))
                continue
            raise ValueError(f"RPC HTTP error {exc.code}: {exc.reason}") from exc
        except urllib.error.URLError as exc:
            if attempt < retries:
                logger.debug("%s: transport error %s, retrying", method, exc)
                time.sleep(0.25 * (2**attempt))
                continue
            raise ValueError(f"RPC transport error: {exc}") from exc
    raise ValueError("RPC request failed after retries")


def rpc_request(url: str, method: str, params: list, *, retries: int = 6) -> Any:
    data = rpc_request_raw(url, method, params, retries=retries)
    if "error" in data:
        raise ValueError(f"RPC error: {data['error']}")
    return data.get("result", {})


def _decode_account_data(value: dict) -> bytes:
    data = value.get("data")
    if isinstance(data, list) and data:
        return base64.b64decode(data[0])
    if isinstance(data, str):
        return base64.b64decode(data)
    raise ValueError("Unexpected account data format")


class RpcClient:
    """Account-fetch and transaction-send capability backed by JSON-RPC.

    Reads retry on transient HTTP failures; ``send_transaction`` never does.
    """

    def __init__(self, rpc_url: str, commitment: str = "confirmed") -> None:
        self.rpc_url = rpc_url
        self.commitment = commitment

    def get_account(self, address: str) -> bytes | None:
        result = rpc_request(
            self.rpc_url,
            "getAccountInfo",
            [address, {"encoding": "base64", "commitment": self.commitment}],
        )
        value = result.get("value") if isinstance(result, dict) else None
        if value is None:
            return None
        return _decode_account_data(value)

    def get_program_accounts(self, program_id: str, data_size: int) -> list[tuple[str, bytes]]:
        result = rpc_request(
            self.rpc_url,
            "getProgramAccounts",
            [
                program_id,
                {
                    "encoding": "base64",
                    "commitment": self.commitment,
                    "filters": [{"dataSize": data_size}],
                },
            ],
        )
        if not isinstance(result, list):
            raise ValueError("Unexpected getProgramAccounts result")
        out: list[tuple[str, bytes]] = []
        for entry in result:
            if not isinstance(entry, dict) or not isinstance(entry.get("account"), dict):
                continue
            out.append((str(entry.get("pubkey")), _decode_account_data(entry["account"])))
        return out

    def get_balance(self, address: str) -> int:
        result = rpc_request(self.rpc_url, "getBalance", [address, {"commitment": self.commitment}])
        value = result.get("value") if isinstance(result, dict) else None
        if not isinstance(value, int):
            raise ValueError("Unexpected getBalance result")
        return value

    def get_latest_blockhash(self) -> str:
        result = rpc_request(self.rpc_url, "getLatestBlockhash", [{"commitment": self.commitment}])
        value = result.get("value") if isinstance(result, dict) else None
        blockhash = value.get("blockhash") if isinstance(value, dict) else None
        if not isinstance(blockhash, str) or not blockhash:
            raise ValueError("Unexpected getLatestBlockhash result")
        return blockhash

    def send_transaction(self, raw_tx: bytes) -> str:
        encoded = base64.b64encode(raw_tx).decode()
        signature = rpc_request(
            self.rpc_url,
            "sendTransaction",
            [encoded, {"encoding": "base64", "preflightCommitment": self.commitment}],
            retries=0,
        )
        if not isinstance(signature, str) or not signature:
            raise ValueError("Unexpected sendTransaction result")
        return signature

    def signature_status(self, signature: str) -> dict | None:
        result = rpc_request(
            self.rpc_url,
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": True}],
        )
        entries = result.get("value") if isinstance(result, dict) else None
        entry = entries[0] if isinstance(entries, list) and entries else None
        return entry if isinstance(entry, dict) else None


def commitment_satisfied(status: str | None, commitment: str) -> bool:
    if commitment == "processed":
        return status in {"processed", "confirmed", "finalized"}
    if commitment == "confirmed":
        return status in {"confirmed", "finalized"}
    return status == "finalized"


# ── Explorer / output helpers ──────────────────────────────────────


def _cluster_param(network: NetworkProfile) -> str:
    return "" if network.key == "mainnet" else f"?cluster={network.cluster}"


def explorer_tx_url(network: NetworkProfile, signature: str) -> str:
    return f"{network.explorer}/tx/{signature}{_cluster_param(network)}"


def explorer_account_url(network: NetworkProfile, address: str) -> str:
    return f"{network.explorer}/account/{address}{_cluster_param(network)}"


def extract_last_signature(output: str) -> str | None:
    matches = DEPLOY_SIG_RE.findall(output)
    if not matches:
        return None
    return matches[-1]


def lamports_to_sol(lamports: int) -> float:
    return lamports / LAMPORTS_PER_SOL
