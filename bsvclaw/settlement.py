"""
Settlement Builder: fee model, output layout and input selection.

Every transaction built here carries exactly one data output at index 0:

    settlement:  [RES data, change-to-self (if totalIn - fee > 0)]
    job request: [JOB data, payment-to-agent, change-to-self (if positive)]
    chat record: [CHAT data, change-to-self (if positive)]

Fees are flat per transaction (not size-based). Signing is delegated to a
TransactionSigner.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from bsvclaw import codec
from bsvclaw.errors import InputsBusyError, InsufficientFundsError, SigningError
from bsvclaw.schema import OutputSpec, SignedTransaction, Utxo

SETTLEMENT_FEE = 300
JOB_FEE = 500
FUNDING_BUFFER = 1000


class UtxoReservations:
    """
    Short-lived local claims on outpoints ("txid:vout").

    The ledger has no compare-and-swap, so two builds in the same process
    could otherwise pick the same output between reading the UTXO set and
    broadcasting. Claims expire after `ttl` seconds, by which time the ledger
    should no longer list a spent output.
    """

    def __init__(self, ttl: float = 600.0, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._claims: Dict[str, float] = {}
        self._lock = threading.Lock()

    def _expire(self, now: float) -> None:
        for outpoint in [o for o, until in self._claims.items() if until <= now]:
            del self._claims[outpoint]

    def is_reserved(self, utxo: Utxo) -> bool:
        with self._lock:
            self._expire(self._clock())
            return utxo.outpoint in self._claims

    def reserve(self, utxos: Iterable[Utxo]) -> bool:
        """Claim all of `utxos` or none of them. False if any is already claimed."""
        utxos = list(utxos)
        with self._lock:
            now = self._clock()
            self._expire(now)
            if any(u.outpoint in self._claims for u in utxos):
                return False
            for u in utxos:
                self._claims[u.outpoint] = now + self.ttl
            return True

    def release(self, utxos: Iterable[Utxo]) -> None:
        with self._lock:
            for u in utxos:
                self._claims.pop(u.outpoint, None)

    def __len__(self) -> int:
        with self._lock:
            self._expire(self._clock())
            return len(self._claims)


@dataclass
class SettlementPlan:
    """A signed settlement plus the accounting that went into it."""
    tx: SignedTransaction
    total_in: int
    fee: int
    keep: int
    is_hashed: bool
    onchain_payload: str

    @property
    def kept(self) -> int:
        return max(self.keep, 0)


@dataclass
class JobRequestPlan:
    tx: SignedTransaction
    total_in: int
    fee: int
    payment: int
    change: int
    selected: List[Utxo]


def change_output(total_in: int, spend: int, address: str) -> List[OutputSpec]:
    """Change-to-self for whatever is left, or nothing if the remainder is not positive."""
    keep = total_in - spend
    if keep > 0:
        return [OutputSpec(satoshis=keep, address=address)]
    return []


def build_settlement(
    inputs: Sequence[Utxo],
    request_txid: str,
    result: str,
    wallet,
    signer,
    fee: int = SETTLEMENT_FEE,
) -> SettlementPlan:
    """
    Spend the request's payment outputs back to ourselves with a RES data output.

    Never spends more than the inputs; the change output is omitted (and the
    whole input value goes to fee) when totalIn - fee is not positive.
    """
    if not inputs:
        raise SigningError("Settlement needs at least one input", {"request_txid": request_txid})
    total_in = sum(u.satoshis for u in inputs)
    script_hex, is_hashed, payload = codec.encode_response(request_txid, result)

    outputs = [OutputSpec(satoshis=0, script_hex=script_hex)]
    outputs += change_output(total_in, fee, wallet.address)

    tx = signer.sign(list(inputs), outputs, wallet)
    return SettlementPlan(
        tx=tx,
        total_in=total_in,
        fee=fee,
        keep=total_in - fee,
        is_hashed=is_hashed,
        onchain_payload=payload,
    )


def select_inputs(
    utxos: Sequence[Utxo],
    target: int,
    reservations: Optional[UtxoReservations] = None,
) -> List[Utxo]:
    """
    Greedy accumulation in the ledger's listing order: take outputs until
    `target` is reached. Reserved outputs are skipped. May return a set that
    falls short of `target`; callers check the total.
    """
    selected: List[Utxo] = []
    total = 0
    for utxo in utxos:
        if reservations is not None and reservations.is_reserved(utxo):
            continue
        selected.append(utxo)
        total += utxo.satoshis
        if total >= target:
            break
    return selected


def claim_inputs(
    utxos: Sequence[Utxo],
    target: int,
    reservations: Optional[UtxoReservations] = None,
    attempts: int = 3,
) -> List[Utxo]:
    """
    select_inputs + reserve the result atomically, reselecting if another
    build got there first. Raises InputsBusyError after `attempts` losses.
    """
    for _ in range(attempts):
        selected = select_inputs(utxos, target, reservations)
        if reservations is None or reservations.reserve(selected):
            return selected
    raise InputsBusyError(attempts)


def _fund_and_sign(utxos, target, minimum, outputs_for, wallet, signer, reservations):
    try:
        selected = claim_inputs(utxos, target, reservations)
    except InputsBusyError as e:
        raise InputsBusyError(e.attempts, address=wallet.address) from e
    total_in = sum(u.satoshis for u in selected)
    try:
        if total_in < minimum:
            raise InsufficientFundsError(required=minimum, available=total_in, address=wallet.address)
        tx = signer.sign(selected, outputs_for(total_in), wallet)
    except Exception:
        if reservations is not None:
            reservations.release(selected)
        raise
    return selected, total_in, tx


def build_job_request(
    utxos: Sequence[Utxo],
    prompt: str,
    agent_address: str,
    payment: int,
    wallet,
    signer,
    fee: int = JOB_FEE,
    buffer: int = FUNDING_BUFFER,
    reservations: Optional[UtxoReservations] = None,
) -> JobRequestPlan:
    """
    Fund a JOB request from `utxos`: [JOB data, payment to agent, change].

    Inputs are accumulated until payment + buffer is covered (the buffer
    includes the fee). Raises InsufficientFundsError if the selected inputs
    cannot pay for payment + fee. Selected inputs stay reserved on success;
    the caller releases them if the broadcast fails.
    """
    job_script = codec.encode_job(prompt)

    def outputs_for(total_in: int) -> List[OutputSpec]:
        outputs = [
            OutputSpec(satoshis=0, script_hex=job_script),
            OutputSpec(satoshis=payment, address=agent_address),
        ]
        return outputs + change_output(total_in, payment + fee, wallet.address)

    selected, total_in, tx = _fund_and_sign(
        utxos, payment + max(buffer, fee), payment + fee, outputs_for, wallet, signer, reservations
    )
    return JobRequestPlan(
        tx=tx,
        total_in=total_in,
        fee=fee,
        payment=payment,
        change=max(total_in - payment - fee, 0),
        selected=selected,
    )


def build_chat_record(
    utxos: Sequence[Utxo],
    prompt: str,
    result: str,
    wallet,
    signer,
    fee: int = SETTLEMENT_FEE,
    buffer: int = FUNDING_BUFFER,
    reservations: Optional[UtxoReservations] = None,
) -> Tuple[JobRequestPlan, bool]:
    """Single-transaction exchange: [CHAT prompt result, change]. Returns (plan, is_hashed)."""
    script_hex, is_hashed = codec.encode_chat(prompt, result)

    def outputs_for(total_in: int) -> List[OutputSpec]:
        return [OutputSpec(satoshis=0, script_hex=script_hex)] + change_output(total_in, fee, wallet.address)

    selected, total_in, tx = _fund_and_sign(
        utxos, max(buffer, fee), fee, outputs_for, wallet, signer, reservations
    )
    plan = JobRequestPlan(
        tx=tx,
        total_in=total_in,
        fee=fee,
        payment=0,
        change=max(total_in - fee, 0),
        selected=selected,
    )
    return plan, is_hashed
