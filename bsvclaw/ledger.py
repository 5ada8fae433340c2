"""
Ledger Gateway: read/broadcast against the WhatsOnChain REST index.

Pure I/O adapter, no state beyond the HTTP session. Every call raises
LedgerError on network failure or a non-2xx status, except transaction
lookup where 404 means "not found" and returns None.
"""

from typing import Any, List, Optional

import requests

from bsvclaw.config import WOC_API_URL
from bsvclaw.errors import BroadcastError, LedgerError
from bsvclaw.schema import (
    Balance,
    HistoryEntry,
    LedgerOutput,
    LedgerTransaction,
    ScriptPubKey,
    Utxo,
)

SATS_PER_BSV = 100_000_000


def to_satoshis(value: Any) -> int:
    """Ledger detail reports values in BSV; convert to integer satoshis."""
    return int(round(float(value or 0) * SATS_PER_BSV))


class LedgerGateway:
    """WhatsOnChain-backed ledger reads and raw transaction broadcast."""

    def __init__(
        self,
        base_url: str = f"{WOC_API_URL}/main",
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.setdefault("Accept", "application/json")

    def _get(self, path: str, allow_404: bool = False) -> Any:
        url = f"{self.base_url}{path}"
        try:
            r = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise LedgerError(f"GET {path} failed: {e}", url=url) from e
        if allow_404 and r.status_code == 404:
            return None
        if not 200 <= r.status_code < 300:
            raise LedgerError(f"GET {path} returned {r.status_code}: {r.text[:200]}", r.status_code, url)
        try:
            return r.json()
        except ValueError as e:
            raise LedgerError(f"GET {path} returned invalid JSON", r.status_code, url) from e

    def get_balance(self, address: str) -> Balance:
        data = self._get(f"/address/{address}/balance") or {}
        return Balance(confirmed=int(data.get("confirmed") or 0), unconfirmed=int(data.get("unconfirmed") or 0))

    def get_unspent(self, address: str) -> List[Utxo]:
        """Unspent outputs in the ledger's own listing order."""
        data = self._get(f"/address/{address}/unspent") or []
        if not isinstance(data, list):
            raise LedgerError(f"Unexpected unspent payload for {address}")
        return [
            Utxo(txid=u["tx_hash"], vout=int(u["tx_pos"]), satoshis=int(u["value"]))
            for u in data
            if isinstance(u, dict) and "tx_hash" in u
        ]

    def get_history(self, address: str) -> List[HistoryEntry]:
        data = self._get(f"/address/{address}/history") or []
        if not isinstance(data, list):
            raise LedgerError(f"Unexpected history payload for {address}")
        return [
            HistoryEntry(tx_hash=e["tx_hash"], height=e.get("height"))
            for e in data
            if isinstance(e, dict) and e.get("tx_hash")
        ]

    def get_transaction(self, txid: str) -> Optional[LedgerTransaction]:
        data = self._get(f"/tx/hash/{txid}", allow_404=True)
        if not data or not isinstance(data, dict):
            return None
        outputs = []
        for i, vout in enumerate(data.get("vout") or []):
            spk = vout.get("scriptPubKey") or {}
            outputs.append(
                LedgerOutput(
                    n=int(vout.get("n", i)),
                    satoshis=to_satoshis(vout.get("value")),
                    script_pub_key=ScriptPubKey(
                        type=spk.get("type"),
                        hex=spk.get("hex") or "",
                        addresses=spk.get("addresses") or [],
                    ),
                )
            )
        return LedgerTransaction(txid=data.get("txid") or data.get("hash") or txid, vout=outputs)

    def broadcast(self, raw_hex: str) -> str:
        """Broadcast a signed transaction. Returns the txid the ledger reports."""
        url = f"{self.base_url}/tx/raw"
        try:
            r = self.session.post(url, json={"txhex": raw_hex}, timeout=self.timeout)
        except requests.RequestException as e:
            raise BroadcastError(f"Broadcast failed: {e}", url=url) from e
        if r.status_code >= 400:
            raise BroadcastError(f"Broadcast: {r.text[:300]}", r.status_code, url)
        return r.text.replace('"', "").strip()
