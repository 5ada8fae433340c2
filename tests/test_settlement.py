"""Tests for fee accounting, input selection and reservations."""

import pytest

from bsvclaw import codec
from bsvclaw.errors import InputsBusyError, InsufficientFundsError, SigningError
from bsvclaw.schema import Utxo
from bsvclaw.settlement import (
    UtxoReservations,
    build_chat_record,
    build_job_request,
    build_settlement,
    select_inputs,
)

from conftest import AGENT_ADDRESS, make_txid


def utxo(label: str, sats: int, vout: int = 0) -> Utxo:
    return Utxo(txid=make_txid(label), vout=vout, satoshis=sats)


class TestBuildSettlement:
    def test_outputs_are_res_data_then_change(self, agent_wallet, signer):
        request = make_txid("job")
        plan = build_settlement([utxo("job", 3000, 1)], request, "4", agent_wallet, signer, fee=300)

        outputs = plan.tx.outputs
        assert len(outputs) == 2
        assert outputs[0].satoshis == 0
        ref = codec.decode_response(codec.decode_script(outputs[0].script_hex))
        assert ref.request_txid == request
        assert ref.payload == "4"
        assert outputs[1].address == AGENT_ADDRESS
        assert outputs[1].satoshis == 2700
        assert plan.kept == 2700

    def test_fee_is_conserved(self, agent_wallet, signer):
        inputs = [utxo("a", 1200), utxo("b", 800, 3)]
        plan = build_settlement(inputs, make_txid("job"), "ok", agent_wallet, signer, fee=300)
        total_out = sum(o.satoshis for o in plan.tx.outputs)
        assert plan.total_in - total_out == 300

    def test_no_change_output_when_payment_does_not_cover_fee(self, agent_wallet, signer):
        plan = build_settlement([utxo("tiny", 250)], make_txid("job"), "ok", agent_wallet, signer, fee=300)
        assert len(plan.tx.outputs) == 1
        assert plan.kept == 0
        assert plan.keep == -50

    def test_exactly_fee_leaves_no_change(self, agent_wallet, signer):
        plan = build_settlement([utxo("exact", 300)], make_txid("job"), "ok", agent_wallet, signer, fee=300)
        assert len(plan.tx.outputs) == 1
        assert plan.kept == 0

    def test_hashed_result_is_flagged(self, agent_wallet, signer):
        plan = build_settlement([utxo("j", 3000)], make_txid("job"), "z" * 60_000, agent_wallet, signer)
        assert plan.is_hashed
        assert plan.onchain_payload.startswith("HASH:")

    def test_requires_inputs(self, agent_wallet, signer):
        with pytest.raises(SigningError):
            build_settlement([], make_txid("job"), "ok", agent_wallet, signer)


class TestSelectInputs:
    def test_greedy_in_listing_order(self):
        utxos = [utxo("a", 1000), utxo("b", 2000), utxo("c", 5000), utxo("d", 9000)]
        selected = select_inputs(utxos, 2500)
        assert [u.satoshis for u in selected] == [1000, 2000]

    def test_returns_everything_when_short(self):
        utxos = [utxo("a", 1000), utxo("b", 2000)]
        assert len(select_inputs(utxos, 10_000)) == 2

    def test_skips_reserved_outputs(self):
        reservations = UtxoReservations()
        utxos = [utxo("a", 5000), utxo("b", 5000)]
        assert reservations.reserve([utxos[0]])
        selected = select_inputs(utxos, 4000, reservations)
        assert [u.outpoint for u in selected] == [utxos[1].outpoint]


class TestBuildJobRequest:
    def test_layout_and_change(self, sender_wallet, signer):
        utxos = [utxo("fund", 10_000)]
        plan = build_job_request(utxos, "2+2?", AGENT_ADDRESS, 3000, sender_wallet, signer, fee=500)

        outputs = plan.tx.outputs
        assert codec.decode_script(outputs[0].script_hex).text(0) == "2+2?"
        assert outputs[1].address == AGENT_ADDRESS
        assert outputs[1].satoshis == 3000
        assert outputs[2].address == sender_wallet.address
        assert outputs[2].satoshis == 10_000 - 3000 - 500
        assert plan.change == 6500

    def test_accumulates_until_payment_plus_buffer(self, sender_wallet, signer):
        utxos = [utxo("a", 2000), utxo("b", 1600), utxo("c", 900), utxo("d", 7000)]
        plan = build_job_request(utxos, "q", AGENT_ADDRESS, 3000, sender_wallet, signer, fee=500, buffer=1000)
        # 2000 + 1600 = 3600 < 4000; + 900 = 4500 >= 4000
        assert [u.satoshis for u in plan.selected] == [2000, 1600, 900]
        assert plan.total_in == 4500

    def test_insufficient_funds(self, sender_wallet, signer):
        with pytest.raises(InsufficientFundsError) as exc:
            build_job_request([utxo("a", 3200)], "q", AGENT_ADDRESS, 3000, sender_wallet, signer, fee=500)
        assert exc.value.required == 3500
        assert exc.value.available == 3200
        assert signer.calls == []

    def test_below_buffer_but_covering_fee_still_builds(self, sender_wallet, signer):
        plan = build_job_request([utxo("a", 3600)], "q", AGENT_ADDRESS, 3000, sender_wallet, signer, fee=500)
        assert plan.change == 100

    def test_reservations_prevent_double_selection(self, sender_wallet, signer):
        reservations = UtxoReservations()
        utxos = [utxo("a", 5000), utxo("b", 5000)]
        first = build_job_request(utxos, "one", AGENT_ADDRESS, 3000, sender_wallet, signer, reservations=reservations)
        second = build_job_request(utxos, "two", AGENT_ADDRESS, 3000, sender_wallet, signer, reservations=reservations)
        assert {u.outpoint for u in first.selected}.isdisjoint({u.outpoint for u in second.selected})

    def test_signing_failure_releases_reservation(self, sender_wallet, signer):
        reservations = UtxoReservations()
        signer.fail_with = SigningError("boom")
        utxos = [utxo("a", 5000)]
        with pytest.raises(SigningError):
            build_job_request(utxos, "q", AGENT_ADDRESS, 3000, sender_wallet, signer, reservations=reservations)
        assert len(reservations) == 0

    def test_contended_inputs_raise_busy_not_insufficient(self, sender_wallet, signer):
        class AlwaysClaimed(UtxoReservations):
            def reserve(self, utxos):
                return False

        with pytest.raises(InputsBusyError) as exc:
            build_job_request(
                [utxo("a", 5000)], "q", AGENT_ADDRESS, 3000, sender_wallet, signer, reservations=AlwaysClaimed()
            )
        assert exc.value.attempts == 3
        assert exc.value.details["address"] == sender_wallet.address
        assert signer.calls == []


class TestReservations:
    def test_all_or_nothing(self):
        reservations = UtxoReservations()
        a, b = utxo("a", 1), utxo("b", 1)
        assert reservations.reserve([a])
        assert not reservations.reserve([a, b])
        assert not reservations.is_reserved(b)

    def test_claims_expire(self, clock):
        reservations = UtxoReservations(ttl=10, clock=clock)
        a = utxo("a", 1)
        reservations.reserve([a])
        clock.sleep(11)
        assert not reservations.is_reserved(a)
        assert reservations.reserve([a])


def test_chat_record_layout(agent_wallet, signer):
    plan, is_hashed = build_chat_record([utxo("a", 2000)], "2+2?", "4", agent_wallet, signer, fee=300)
    assert not is_hashed
    outputs = plan.tx.outputs
    data = codec.decode_script(outputs[0].script_hex)
    assert data.tag == "CHAT"
    assert (data.text(0), data.text(1)) == ("2+2?", "4")
    assert outputs[1].satoshis == 1700
