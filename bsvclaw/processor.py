"""
Job Processor: drives one observed txid to a terminal state.

    OBSERVED → PARSED → COMPUTED → SETTLED
         │                    └──→ FAILED     (settlement could not be built or broadcast)
         └──→ FAILED                          (payment outputs already claimed)
    OBSERVED → DISCARDED        (already processed, no JOB tag, or no payment to us)
    OBSERVED → UNAVAILABLE      (tx detail could not be fetched; caller may retry)

SETTLED and FAILED are both written to the Job Store and never revisited.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Union

from bsvclaw import codec
from bsvclaw.errors import ClawError, LedgerError
from bsvclaw.llm_task import run_inference
from bsvclaw.logging_config import get_job_logger
from bsvclaw.schema import FailedJob, LedgerTransaction, SettledJob
from bsvclaw.settlement import SETTLEMENT_FEE, UtxoReservations, build_settlement
from bsvclaw.store import JobStore

CLAIMED_ERROR = "payment outputs already claimed"


class JobState(str, Enum):
    OBSERVED = "observed"
    PARSED = "parsed"
    COMPUTED = "computed"
    SETTLED = "settled"
    FAILED = "failed"
    DISCARDED = "discarded"
    UNAVAILABLE = "unavailable"


@dataclass
class ProcessOutcome:
    txid: str
    state: JobState
    record: Optional[Union[SettledJob, FailedJob]] = None
    reason: Optional[str] = None


def _preview(text: str, n: int = 80) -> str:
    return text[:n] + ("..." if len(text) > n else "")


class JobProcessor:
    """Turns JOB requests paying `wallet.address` into settled RES transactions."""

    def __init__(
        self,
        wallet,
        ledger,
        signer,
        inference,
        job_store: JobStore,
        fee: int = SETTLEMENT_FEE,
        system_prompt: str = "",
        inference_timeout: float = 120.0,
        reservations: Optional[UtxoReservations] = None,
        on_settled: Optional[Callable[[str], None]] = None,
    ):
        self.wallet = wallet
        self.ledger = ledger
        self.signer = signer
        self.inference = inference
        self.job_store = job_store
        self.fee = fee
        self.system_prompt = system_prompt
        self.inference_timeout = inference_timeout
        self.reservations = reservations
        self.on_settled = on_settled

    def process(self, txid: str) -> ProcessOutcome:
        log = get_job_logger(txid)

        if self.job_store.contains(txid):
            return ProcessOutcome(txid, JobState.DISCARDED, reason="already processed")

        log.info(f"New tx: {txid[:16]}...")
        log.debug(f"State: {JobState.OBSERVED.value}")
        try:
            tx = self.ledger.get_transaction(txid)
        except LedgerError as e:
            log.warning(f"Could not fetch tx: {e}")
            return ProcessOutcome(txid, JobState.UNAVAILABLE, reason=str(e))
        if tx is None:
            log.warning("Could not fetch tx (not found)")
            return ProcessOutcome(txid, JobState.UNAVAILABLE, reason="not found")

        return self.process_transaction(tx)

    def process_transaction(self, tx: LedgerTransaction) -> ProcessOutcome:
        txid = tx.txid
        log = get_job_logger(txid)

        if self.job_store.contains(txid):
            return ProcessOutcome(txid, JobState.DISCARDED, reason="already processed")

        prompt = codec.extract_job_prompt(tx)
        if prompt is None:
            log.info("No JOB found in OP_RETURN, skipping")
            return ProcessOutcome(txid, JobState.DISCARDED, reason="no JOB tag")

        utxos = tx.outputs_to(self.wallet.address)
        if not utxos:
            log.info("No outputs to our address, skipping")
            return ProcessOutcome(txid, JobState.DISCARDED, reason="no payment")
        sats_received = sum(u.satoshis for u in utxos)
        if self.reservations is not None and not self.reservations.reserve(utxos):
            log.error("Payment outputs already claimed by another build")
            return self._fail(txid, prompt, "", sats_received, CLAIMED_ERROR)

        log.debug(f"State: {JobState.PARSED.value}")
        log.info(f'JOB: "{_preview(prompt)}"')
        log.info(f"Received: {sats_received} sats")

        log.info("Thinking...")
        result = run_inference(self.inference, self.system_prompt, prompt, self.inference_timeout)
        log.info(f'Result: "{_preview(result)}"')
        log.debug(f"State: {JobState.COMPUTED.value}")

        try:
            plan = build_settlement(utxos, txid, result, self.wallet, self.signer, fee=self.fee)
            log.info(f"Broadcasting response ({plan.tx.size} bytes)...")
            res_txid = self.ledger.broadcast(plan.tx.raw_hex) or plan.tx.txid
        except ClawError as e:
            log.error(f"Broadcast failed: {e.message}")
            if self.reservations is not None:
                self.reservations.release(utxos)
            return self._fail(txid, prompt, result, sats_received, e.message)

        log.info(f"Response TX: {res_txid}")
        log.info(f"Kept: {plan.kept} sats")
        if plan.is_hashed:
            log.warning("Result was too large for OP_RETURN; only its hash went on-chain")

        record = SettledJob(
            request_txid=txid,
            response_txid=res_txid,
            prompt=prompt,
            result=result,
            sats_received=sats_received,
            sats_kept=plan.kept,
            is_hashed=plan.is_hashed,
            onchain_result=plan.onchain_payload if plan.is_hashed else None,
        )
        self.job_store.append(record)
        if self.on_settled is not None:
            self.on_settled(res_txid)
        return ProcessOutcome(txid, JobState.SETTLED, record=record)

    def _fail(self, txid: str, prompt: str, result: str, sats_received: int, error: str) -> ProcessOutcome:
        record = FailedJob(
            request_txid=txid,
            prompt=prompt,
            result=result,
            sats_received=sats_received,
            sats_kept=0,
            error=error,
        )
        self.job_store.append(record)
        return ProcessOutcome(txid, JobState.FAILED, record=record, reason=error)
