"""
Poller: a timer loop watching the agent address for new transactions.

Each tick runs to completion (including every network wait) before the next
one is scheduled, so the seen-set and Job Store need no locking against the
poller itself.
"""

import threading
import time
from typing import Callable, Dict, List, Optional, Set

from bsvclaw.errors import LedgerError
from bsvclaw.logging_config import get_logger
from bsvclaw.processor import JobProcessor, JobState, ProcessOutcome
from bsvclaw.schema import HistoryEntry
from bsvclaw.store import JobStore

logger = get_logger(__name__)


class Poller:
    """
    Seen-set + high-water mark over the address history.

    high_water is the highest confirmed block height observed. Entries
    confirmed more than reorg_margin blocks below it were necessarily seen on
    an earlier tick and are skipped without a lookup; seen ids that old are
    pruned from memory.
    """

    def __init__(
        self,
        address: str,
        ledger,
        processor: JobProcessor,
        job_store: JobStore,
        interval: float = 15.0,
        settle_delay: float = 2.0,
        reorg_margin: int = 6,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.address = address
        self.ledger = ledger
        self.processor = processor
        self.job_store = job_store
        self.interval = interval
        self.settle_delay = settle_delay
        self.reorg_margin = reorg_margin
        self._sleep = sleep
        self.seen: Set[str] = set()
        self._seen_height: Dict[str, int] = {}
        self.high_water = 0
        # Ids whose detail fetch failed; retried regardless of the high-water mark
        self.retry: Set[str] = set()

    def mark_seen(self, txid: str, height: Optional[int] = None) -> None:
        self.seen.add(txid)
        if height and height > 0:
            self._seen_height[txid] = height

    def _below_mark(self, entry: HistoryEntry) -> bool:
        return entry.confirmed and entry.height < self.high_water - self.reorg_margin

    def _advance(self, history: List[HistoryEntry]) -> None:
        heights = [e.height for e in history if e.confirmed]
        if heights:
            self.high_water = max(self.high_water, max(heights))
        floor = self.high_water - self.reorg_margin
        for txid in [t for t, h in self._seen_height.items() if h < floor]:
            self.seen.discard(txid)
            del self._seen_height[txid]

    def seed(self, include_history: bool = True) -> int:
        """Mark Job Store ids (and, by default, current history) as seen. Returns seen-set size."""
        for txid in self.job_store.txids():
            self.mark_seen(txid)
        if include_history:
            try:
                history = self.ledger.get_history(self.address)
            except LedgerError as e:
                logger.warning(f"Could not seed from history: {e}")
                history = []
            for entry in history:
                self.mark_seen(entry.tx_hash, entry.height)
            self._advance(history)
        logger.info(f"Seeded {len(self.seen)} seen txids (high-water mark {self.high_water})")
        return len(self.seen)

    def tick(self) -> List[ProcessOutcome]:
        try:
            history = self.ledger.get_history(self.address)
        except LedgerError as e:
            logger.warning(f"Poll error: {e}")
            return []

        outcomes: List[ProcessOutcome] = []
        for entry in history:
            txid = entry.tx_hash
            if txid in self.seen:
                continue
            if self._below_mark(entry) and txid not in self.retry:
                continue
            self.mark_seen(txid, entry.height)
            self.retry.discard(txid)
            if self.job_store.contains(txid):
                continue

            # Give the tx time to propagate before fetching full detail
            self._sleep(self.settle_delay)
            outcome = self.processor.process(txid)
            if outcome.state == JobState.UNAVAILABLE:
                # Retry on the next tick
                self.seen.discard(txid)
                self._seen_height.pop(txid, None)
                self.retry.add(txid)
            elif outcome.record is not None and outcome.record.response_txid:
                self.mark_seen(outcome.record.response_txid)
            outcomes.append(outcome)

        self._advance(history)
        return outcomes

    def run_forever(self, stop_event: Optional[threading.Event] = None) -> None:
        """Tick, wait `interval`, repeat until stop_event is set."""
        stop_event = stop_event or threading.Event()
        logger.info(f"Watching {self.address} for jobs every {self.interval:.0f}s")
        while not stop_event.is_set():
            try:
                self.tick()
            except OSError:
                logger.exception("Job Store write failed; stopping poller")
                raise
            stop_event.wait(self.interval)
