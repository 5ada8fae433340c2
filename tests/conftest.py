"""
Shared fixtures: in-memory ledger, deterministic signer, scripted inference.

FakeSigner produces raw "transactions" that FakeLedger.broadcast() can turn
back into ledger detail, so a RES broadcast by the agent shows up in history
exactly as it would on the real index.
"""

import hashlib
import json
from typing import Callable, Dict, List, Optional, Tuple

import pytest

from bsvclaw import codec
from bsvclaw.config import ClawConfig
from bsvclaw.errors import BroadcastError, LedgerError
from bsvclaw.schema import (
    Balance,
    HistoryEntry,
    LedgerOutput,
    LedgerTransaction,
    OutputSpec,
    ScriptPubKey,
    SignedTransaction,
    Utxo,
)
from bsvclaw.store import ConversationStore, JobStore
from bsvclaw.wallet import AgentWallet

AGENT_ADDRESS = "1AgentAddressxxxxxxxxxxxxxxxxxxxx"
SENDER_ADDRESS = "1SenderAddressxxxxxxxxxxxxxxxxxxx"


def make_txid(label: str) -> str:
    return hashlib.sha256(label.encode("utf-8")).hexdigest()


def p2pkh_output(n: int, satoshis: int, address: str) -> LedgerOutput:
    return LedgerOutput(
        n=n,
        satoshis=satoshis,
        script_pub_key=ScriptPubKey(type="pubkeyhash", hex="76a914" + "00" * 20 + "88ac", addresses=[address]),
    )


def data_output(n: int, script_hex: str) -> LedgerOutput:
    return LedgerOutput(n=n, satoshis=0, script_pub_key=ScriptPubKey(type="nulldata", hex=script_hex))


def job_transaction(txid: str, prompt: str, to: str = AGENT_ADDRESS, sats: int = 3000) -> LedgerTransaction:
    return LedgerTransaction(
        txid=txid,
        vout=[data_output(0, codec.encode_job(prompt)), p2pkh_output(1, sats, to)],
    )


class FakeSigner:
    """Deterministic txids; remembers everything it signed."""

    def __init__(self):
        self.calls: List[Tuple[List[Utxo], List[OutputSpec], str]] = []
        self.signed: Dict[str, Tuple[SignedTransaction, str]] = {}
        self.fail_with: Optional[Exception] = None

    def sign(self, inputs, outputs, wallet) -> SignedTransaction:
        if self.fail_with is not None:
            raise self.fail_with
        self.calls.append((list(inputs), list(outputs), wallet.address))
        body = json.dumps(
            {
                "in": [u.outpoint for u in inputs],
                "out": [o.model_dump() for o in outputs],
                "n": len(self.calls),
            },
            sort_keys=True,
        )
        raw_hex = body.encode("utf-8").hex()
        tx = SignedTransaction(
            txid=hashlib.sha256(body.encode("utf-8")).hexdigest(),
            raw_hex=raw_hex,
            inputs=list(inputs),
            outputs=list(outputs),
        )
        self.signed[raw_hex] = (tx, wallet.address)
        return tx


class FakeLedger:
    def __init__(self, signer: Optional[FakeSigner] = None):
        self.signer = signer
        self.transactions: Dict[str, LedgerTransaction] = {}
        self.history: Dict[str, List[HistoryEntry]] = {}
        self.unspent: Dict[str, List[Utxo]] = {}
        self.broadcasts: List[str] = []
        self.fetches: List[str] = []
        self.fail_history = False
        self.fail_broadcast = False
        self.unavailable: set = set()

    # --- setup helpers ---

    def fund(self, address: str, satoshis: int, label: str = "funding", vout: int = 0) -> Utxo:
        utxo = Utxo(txid=make_txid(f"{label}:{address}:{satoshis}"), vout=vout, satoshis=satoshis)
        self.unspent.setdefault(address, []).append(utxo)
        # Detail only; funding does not show up in the address history
        self.transactions[utxo.txid] = LedgerTransaction(
            txid=utxo.txid, vout=[p2pkh_output(vout, satoshis, address)]
        )
        return utxo

    def add_transaction(self, tx: LedgerTransaction, height: Optional[int] = 0) -> None:
        self.transactions[tx.txid] = tx
        for address in {a for out in tx.vout for a in out.script_pub_key.addresses}:
            self.history.setdefault(address, []).append(HistoryEntry(tx_hash=tx.txid, height=height))
            for utxo in tx.outputs_to(address):
                self.unspent.setdefault(address, []).append(utxo)

    # --- gateway interface ---

    def get_balance(self, address: str) -> Balance:
        return Balance(confirmed=sum(u.satoshis for u in self.unspent.get(address, [])), unconfirmed=0)

    def get_unspent(self, address: str) -> List[Utxo]:
        return list(self.unspent.get(address, []))

    def get_history(self, address: str) -> List[HistoryEntry]:
        if self.fail_history:
            raise LedgerError("history unavailable", 503)
        return list(self.history.get(address, []))

    def get_transaction(self, txid: str) -> Optional[LedgerTransaction]:
        self.fetches.append(txid)
        if txid in self.unavailable:
            raise LedgerError("detail unavailable", 503)
        return self.transactions.get(txid)

    def broadcast(self, raw_hex: str) -> str:
        if self.fail_broadcast:
            raise BroadcastError("Broadcast: txn-mempool-conflict", 400)
        signed, owner = self.signer.signed[raw_hex]
        self.broadcasts.append(signed.txid)

        spent = {u.outpoint for u in signed.inputs}
        for address, utxos in self.unspent.items():
            self.unspent[address] = [u for u in utxos if u.outpoint not in spent]

        vout = []
        for n, out in enumerate(signed.outputs):
            if out.script_hex is not None:
                vout.append(data_output(n, out.script_hex))
            else:
                vout.append(p2pkh_output(n, out.satoshis, out.address))
        tx = LedgerTransaction(txid=signed.txid, vout=vout)
        self.add_transaction(tx)
        # The spender sees its own spend in history even without change
        if not any(e.tx_hash == tx.txid for e in self.history.get(owner, [])):
            self.history.setdefault(owner, []).append(HistoryEntry(tx_hash=tx.txid, height=0))
        return signed.txid


class FakeInference:
    def __init__(self, answer: Callable[[str], str] = lambda prompt: "4"):
        self.answer = answer
        self.calls: List[Tuple[str, str]] = []

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        self.calls.append((system_prompt, user_prompt))
        return self.answer(user_prompt)


class FakeClock:
    """Monotonic clock advanced only by sleep()."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def signer():
    return FakeSigner()


@pytest.fixture
def ledger(signer):
    return FakeLedger(signer)


@pytest.fixture
def inference():
    return FakeInference()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def agent_wallet():
    return AgentWallet(wif="agent-wif", address=AGENT_ADDRESS)


@pytest.fixture
def sender_wallet():
    return AgentWallet(wif="sender-wif", address=SENDER_ADDRESS)


@pytest.fixture
def job_store(tmp_path):
    return JobStore(tmp_path / "jobs.json")


@pytest.fixture
def conversations(tmp_path):
    return ConversationStore(tmp_path / "conversations", salt="test-salt")


@pytest.fixture
def config(tmp_path):
    return ClawConfig(home=tmp_path, settle_delay=0, poll_retry=5, poll_timeout=120, sats_per_job=3000)
