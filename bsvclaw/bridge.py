"""
Bridge: submit a JOB on behalf of a user who has no ledger access, then wait
for the agent's matching RES.

    submit_job(prompt)        sender wallet pays the agent, returns the job txid
    wait_for_response(txid)   Job Store first, then the agent's recent history
    ask(prompt)               both, raising ResponseTimeoutError on timeout

ChatRecorder is the single-transaction alternative: answer locally and record
CHAT <prompt> <result> from the agent's own wallet.
"""

import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Set

from bsvclaw import codec
from bsvclaw.errors import LedgerError, ResponseTimeoutError
from bsvclaw.llm_task import run_inference
from bsvclaw.logging_config import get_logger
from bsvclaw.schema import FailedJob, Utxo
from bsvclaw.settlement import (
    FUNDING_BUFFER,
    JOB_FEE,
    SETTLEMENT_FEE,
    UtxoReservations,
    build_chat_record,
    build_job_request,
)
from bsvclaw.store import JobStore

logger = get_logger(__name__)


@dataclass
class CorrelatedResponse:
    """What the requester gets back for one job."""
    result: str
    job_txid: str
    response_txid: Optional[str] = None
    source: str = "store"  # store | ledger | chat
    failed: bool = False
    error: Optional[str] = None


def _broadcast_or_release(ledger, tx, selected, reservations: Optional[UtxoReservations]) -> str:
    try:
        return ledger.broadcast(tx.raw_hex) or tx.txid
    except LedgerError:
        if reservations is not None:
            reservations.release(selected)
        raise


class BridgeCorrelator:
    def __init__(
        self,
        sender_wallet,
        agent_address: str,
        ledger,
        signer,
        job_store: JobStore,
        sats_per_job: int = 3000,
        fee: int = JOB_FEE,
        buffer: int = FUNDING_BUFFER,
        poll_timeout: float = 120.0,
        poll_retry: float = 5.0,
        scan_depth: int = 20,
        reservations: Optional[UtxoReservations] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.sender_wallet = sender_wallet
        self.agent_address = agent_address
        self.ledger = ledger
        self.signer = signer
        self.job_store = job_store
        self.sats_per_job = sats_per_job
        self.fee = fee
        self.buffer = buffer
        self.poll_timeout = poll_timeout
        self.poll_retry = poll_retry
        self.scan_depth = scan_depth
        self.reservations = reservations
        self._sleep = sleep
        self._clock = clock

    def submit_job(self, prompt: str, sats: Optional[int] = None) -> str:
        """Fund, sign and broadcast a JOB request paying the agent. Returns the job txid."""
        payment = sats if sats is not None else self.sats_per_job
        utxos = self.ledger.get_unspent(self.sender_wallet.address)
        plan = build_job_request(
            utxos,
            prompt,
            self.agent_address,
            payment,
            self.sender_wallet,
            self.signer,
            fee=self.fee,
            buffer=self.buffer,
            reservations=self.reservations,
        )
        job_txid = _broadcast_or_release(self.ledger, plan.tx, plan.selected, self.reservations)
        logger.info(f"JOB sent: {job_txid} ({payment} sats to {self.agent_address}, change {plan.change})")
        return job_txid

    def _from_store(self, job_txid: str) -> Optional[CorrelatedResponse]:
        record = self.job_store.get(job_txid)
        if record is None:
            return None
        if isinstance(record, FailedJob):
            return CorrelatedResponse(
                result=record.result,
                job_txid=job_txid,
                source="store",
                failed=True,
                error=record.error,
            )
        return CorrelatedResponse(result=record.result, job_txid=job_txid, response_txid=record.response_txid)

    def _from_ledger(self, job_txid: str, checked: Set[str]) -> Optional[CorrelatedResponse]:
        """Look for a RES back-referencing job_txid among the agent's most recent transactions."""
        try:
            history = self.ledger.get_history(self.agent_address)
        except LedgerError as e:
            logger.warning(f"History lookup failed: {e}")
            return None

        for entry in reversed(history[-self.scan_depth:]):
            txid = entry.tx_hash
            if txid in checked:
                continue
            try:
                tx = self.ledger.get_transaction(txid)
            except LedgerError as e:
                logger.debug(f"Could not fetch {txid[:16]}...: {e}")
                continue
            if tx is None:
                continue
            ref = codec.extract_response(tx)
            if ref is not None and ref.request_txid == job_txid:
                return CorrelatedResponse(
                    result=ref.payload,
                    job_txid=job_txid,
                    response_txid=txid,
                    source="ledger",
                )
            checked.add(txid)
        return None

    def wait_for_response(self, job_txid: str) -> Optional[CorrelatedResponse]:
        """Poll every poll_retry seconds until a response appears or poll_timeout passes (→ None)."""
        deadline = self._clock() + self.poll_timeout
        checked: Set[str] = {job_txid}
        while True:
            found = self._from_store(job_txid) or self._from_ledger(job_txid, checked)
            if found is not None:
                logger.info(f"Response for {job_txid[:16]}... via {found.source}")
                return found
            remaining = deadline - self._clock()
            if remaining <= 0:
                logger.warning(f"No response for {job_txid[:16]}... after {self.poll_timeout:.0f}s")
                return None
            self._sleep(min(self.poll_retry, remaining))

    def ask(self, prompt: str, sats: Optional[int] = None) -> CorrelatedResponse:
        job_txid = self.submit_job(prompt, sats)
        response = self.wait_for_response(job_txid)
        if response is None:
            raise ResponseTimeoutError(job_txid, self.poll_timeout)
        return response


class ChatRecorder:
    """Answer directly and record the exchange as one CHAT transaction from the agent wallet."""

    def __init__(
        self,
        wallet,
        ledger,
        signer,
        inference,
        fee: int = SETTLEMENT_FEE,
        buffer: int = FUNDING_BUFFER,
        system_prompt: str = "",
        inference_timeout: float = 120.0,
        reservations: Optional[UtxoReservations] = None,
        job_store: Optional[JobStore] = None,
    ):
        self.wallet = wallet
        self.ledger = ledger
        self.signer = signer
        self.inference = inference
        self.fee = fee
        self.buffer = buffer
        self.system_prompt = system_prompt
        self.inference_timeout = inference_timeout
        self.reservations = reservations
        self.job_store = job_store
        self._not_jobs: Set[str] = set()

    def _is_unprocessed_job(self, txid: str) -> bool:
        if txid in self._not_jobs or self.job_store.contains(txid):
            return False
        try:
            tx = self.ledger.get_transaction(txid)
        except LedgerError as e:
            logger.debug(f"Could not fetch {txid[:16]}..., not spending it: {e}")
            return True
        if tx is None:
            return True
        if codec.extract_job_prompt(tx) is not None:
            return True
        self._not_jobs.add(txid)
        return False

    def spendable(self, utxos: List[Utxo]) -> List[Utxo]:
        """Drop outputs paying for JOB requests the processor has not recorded yet."""
        if self.job_store is None:
            return list(utxos)
        return [u for u in utxos if not self._is_unprocessed_job(u.txid)]

    def ask(self, prompt: str, context_prompt: Optional[str] = None) -> CorrelatedResponse:
        """Inference runs on context_prompt (defaults to prompt); only the bare prompt is recorded."""
        result = run_inference(self.inference, self.system_prompt, context_prompt or prompt, self.inference_timeout)
        utxos = self.spendable(self.ledger.get_unspent(self.wallet.address))
        plan, is_hashed = build_chat_record(
            utxos,
            prompt,
            result,
            self.wallet,
            self.signer,
            fee=self.fee,
            buffer=self.buffer,
            reservations=self.reservations,
        )
        txid = _broadcast_or_release(self.ledger, plan.tx, plan.selected, self.reservations)
        logger.info(f"CHAT recorded: {txid}{' (result hashed)' if is_hashed else ''}")
        return CorrelatedResponse(result=result, job_txid=txid, response_txid=txid, source="chat")
