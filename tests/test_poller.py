"""Tests for the Poller: seeding, seen-set, retries, high-water mark."""

import threading

import pytest

from bsvclaw.processor import JobProcessor
from bsvclaw.poller import Poller
from bsvclaw.schema import HistoryEntry, SettledJob

from conftest import AGENT_ADDRESS, job_transaction, make_txid


@pytest.fixture
def processor(agent_wallet, ledger, signer, inference, job_store):
    return JobProcessor(agent_wallet, ledger, signer, inference, job_store, fee=300)


@pytest.fixture
def poller(ledger, processor, job_store, clock):
    p = Poller(AGENT_ADDRESS, ledger, processor, job_store, interval=15, settle_delay=2, sleep=clock.sleep)
    processor.on_settled = p.mark_seen
    return p


def test_new_job_is_processed_after_settle_delay(poller, ledger, job_store, clock):
    txid = make_txid("job")
    ledger.add_transaction(job_transaction(txid, "2+2?"))

    outcomes = poller.tick()

    assert [o.txid for o in outcomes] == [txid]
    assert clock.sleeps == [2]
    assert job_store.contains(txid)


def test_response_txids_are_not_reprocessed(poller, ledger, job_store):
    txid = make_txid("job")
    ledger.add_transaction(job_transaction(txid, "q"))
    poller.tick()
    res_txid = job_store.get(txid).response_txid

    # The RES (with change to us) now shows in our history
    assert any(e.tx_hash == res_txid for e in ledger.history[AGENT_ADDRESS])
    ledger.fetches.clear()
    assert poller.tick() == []
    assert ledger.fetches == []


def test_seed_from_history_skips_backlog(poller, ledger, job_store):
    old = make_txid("old")
    ledger.add_transaction(job_transaction(old, "q"))

    poller.seed(include_history=True)
    assert poller.tick() == []
    assert not job_store.contains(old)


def test_seed_without_history_replays_backlog(poller, ledger, job_store):
    old = make_txid("old")
    ledger.add_transaction(job_transaction(old, "q"))

    poller.seed(include_history=False)
    poller.tick()
    assert job_store.contains(old)


def test_seed_always_includes_job_store(poller, ledger, job_store):
    done = make_txid("done")
    job_store.append(
        SettledJob(request_txid=done, response_txid=make_txid("r"), prompt="q", result="a", sats_received=1)
    )
    poller.seed(include_history=False)
    assert done in poller.seen


def test_unavailable_transaction_is_retried_next_tick(poller, ledger, job_store):
    txid = make_txid("slow")
    ledger.add_transaction(job_transaction(txid, "q"))
    ledger.unavailable.add(txid)

    poller.tick()
    assert txid not in poller.seen
    assert not job_store.contains(txid)

    ledger.unavailable.discard(txid)
    poller.tick()
    assert job_store.contains(txid)


def test_history_failure_is_logged_and_skipped(poller, ledger):
    ledger.fail_history = True
    assert poller.tick() == []


def test_entries_far_below_high_water_mark_are_skipped(poller, ledger, job_store):
    deep = make_txid("deep")
    ledger.transactions[deep] = job_transaction(deep, "q")
    ledger.history[AGENT_ADDRESS] = [
        HistoryEntry(tx_hash=deep, height=100),
        HistoryEntry(tx_hash=make_txid("tip"), height=200),
    ]
    poller.seed(include_history=False)
    poller.high_water = 200

    poller.tick()
    assert deep not in ledger.fetches
    assert not job_store.contains(deep)


def test_unavailable_job_is_retried_after_falling_below_mark(poller, ledger, job_store):
    slow = make_txid("slow")
    ledger.transactions[slow] = job_transaction(slow, "q")
    ledger.history[AGENT_ADDRESS] = [HistoryEntry(tx_hash=slow, height=100)]
    ledger.unavailable.add(slow)

    poller.tick()
    assert slow in poller.retry

    ledger.history[AGENT_ADDRESS].append(HistoryEntry(tx_hash=make_txid("tip"), height=200))
    poller.tick()
    assert poller.high_water == 200

    ledger.unavailable.discard(slow)
    poller.tick()
    assert job_store.contains(slow)
    assert slow not in poller.retry


def test_old_seen_ids_are_pruned(poller, ledger):
    first = make_txid("first")
    ledger.history[AGENT_ADDRESS] = [HistoryEntry(tx_hash=first, height=100)]
    poller.seed(include_history=True)
    assert first in poller.seen

    ledger.history[AGENT_ADDRESS].append(HistoryEntry(tx_hash=make_txid("later"), height=110))
    poller.tick()
    assert poller.high_water == 110
    assert first not in poller.seen


def test_run_forever_stops_on_event(poller, ledger):
    stop = threading.Event()
    calls = []

    def tick():
        calls.append(1)
        stop.set()
        return []

    poller.tick = tick
    poller.run_forever(stop)
    assert calls == [1]
