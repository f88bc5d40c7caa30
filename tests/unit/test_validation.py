"""Tests for attestation intake, M-of-N consensus, reputation root and scoring."""

import hashlib
import hmac
import threading

import pytest
from datetime import datetime, timedelta, timezone
from jwcrypto import jwk

from trustbond.collaborators import ReceiptSigner
from trustbond.errors import (
    AlreadyChallenged,
    InvalidReceipt,
    InvalidStateTransition,
    ThresholdNotMet,
    ValidatorNotEligible,
)
from trustbond.fees.router import FeeKind
from trustbond.models import ConsensusConfig, LifecycleState
from trustbond.observability.event_bus import EventType
from trustbond.validation.aggregator import GENESIS_ROOT, ValidationAggregator
from trustbond.validation.receipt import AttestationSummary, outcome_value
from trustbond.validation.scoring import (
    NEUTRAL_SCORE,
    PassRateScorer,
    RecencyWeightedScorer,
)

AUTH = "auth"


def _summary(outcome, committed_at=None, task_value=0, task_id="t"):
    return AttestationSummary(
        task_id=task_id,
        validator_ids=("v1",),
        payload_digest="d",
        outcome=outcome,
        committed_at=committed_at or datetime(2026, 1, 1, tzinfo=timezone.utc),
        task_value=task_value,
    )


# ── Consensus ───────────────────────────────────────────────────


class TestConsensus:
    def test_single_vote_commits_with_m1(self, active_machine, make_receipt):
        result = active_machine.submit_attestation(make_receipt("v1"))
        assert result.committed
        assert active_machine.record.root_height == 1
        assert active_machine.record.reputation_root != GENESIS_ROOT

    def test_m2_needs_two_matching_votes(self, active_machine, make_receipt):
        active_machine.configure_consensus(AUTH, m=2)
        first = active_machine.submit_attestation(make_receipt("v1"))
        assert not first.committed
        assert active_machine.record.reputation_root == GENESIS_ROOT
        assert active_machine.record.root_height == 0

        second = active_machine.submit_attestation(make_receipt("v2"))
        assert second.committed
        assert second.votes == 2
        assert active_machine.record.root_height == 1
        assert active_machine.record.reputation_root == second.reputation_root

    def test_duplicate_vote_counted_once(self, active_machine, make_receipt):
        active_machine.configure_consensus(AUTH, m=2)
        receipt = make_receipt("v1")
        active_machine.submit_attestation(receipt)
        again = active_machine.submit_attestation(receipt)
        assert again.duplicate
        assert again.votes == 1
        assert active_machine.record.root_height == 0

    def test_mismatched_payloads_do_not_combine(self, active_machine, make_receipt):
        active_machine.configure_consensus(AUTH, m=2)
        active_machine.submit_attestation(make_receipt("v1", payload={"outcome": "pass"}))
        result = active_machine.submit_attestation(make_receipt("v2", payload={"outcome": "fail"}))
        assert not result.committed
        assert sorted(active_machine.aggregator.pending_votes("task-1").values()) == [1, 1]

    def test_equivalent_payloads_match_regardless_of_key_order(self, active_machine, make_receipt):
        active_machine.configure_consensus(AUTH, m=2)
        active_machine.submit_attestation(make_receipt("v1", payload={"a": 1, "b": 2}))
        result = active_machine.submit_attestation(make_receipt("v2", payload={"b": 2, "a": 1}))
        assert result.committed

    def test_votes_outside_window_expire(self, active_machine, make_receipt, clock):
        active_machine.configure_consensus(AUTH, m=2, window_seconds=60)
        active_machine.submit_attestation(make_receipt("v1"))
        clock.advance(61)
        result = active_machine.submit_attestation(make_receipt("v2"))
        assert not result.committed
        assert result.votes == 1

    def test_expired_groups_pruned_across_tasks(self, active_machine, make_receipt, clock):
        active_machine.configure_consensus(AUTH, m=2, window_seconds=60)
        for i in range(50):
            active_machine.submit_attestation(make_receipt("v1", task_id=f"t{i}"))
        assert active_machine.aggregator.pending_task_count == 50
        clock.advance(3600)
        with pytest.raises(ThresholdNotMet, match="has 0 of 2"):
            active_machine.require_consensus("t0")
        assert active_machine.aggregator.pending_task_count == 0
        assert active_machine.aggregator.pending_votes("t1") == {}

    def test_submit_prunes_other_tasks(self, active_machine, make_receipt, clock):
        active_machine.configure_consensus(AUTH, m=2, window_seconds=60)
        active_machine.submit_attestation(make_receipt("v1", task_id="t0"))
        clock.advance(61)
        active_machine.submit_attestation(make_receipt("v1", task_id="t1"))
        assert active_machine.aggregator.pending_task_count == 1
        assert active_machine.aggregator.pending_votes("t0") == {}
        assert active_machine.aggregator.pending_votes("t1") != {}

    def test_committed_task_is_idempotent(self, active_machine, make_receipt):
        active_machine.submit_attestation(make_receipt("v1"))
        result = active_machine.submit_attestation(make_receipt("v2"))
        assert result.already_committed
        assert active_machine.record.root_height == 1

    def test_require_consensus(self, active_machine, make_receipt):
        active_machine.configure_consensus(AUTH, m=2)
        active_machine.submit_attestation(make_receipt("v1"))
        with pytest.raises(ThresholdNotMet):
            active_machine.require_consensus("task-1")
        active_machine.submit_attestation(make_receipt("v2"))
        summary = active_machine.require_consensus("task-1")
        assert summary.validator_ids == ("v1", "v2")

    def test_root_height_strictly_increases(self, active_machine, make_receipt):
        roots = []
        for i in range(3):
            active_machine.submit_attestation(make_receipt("v1", task_id=f"task-{i}"))
            roots.append(active_machine.record.reputation_root)
        assert active_machine.record.root_height == 3
        assert len(set(roots)) == 3

    def test_root_is_deterministic(self, attestations, make_receipt, clock):
        receipts = [make_receipt("v1", task_id=f"task-{i}") for i in range(3)]
        roots = []
        for _ in range(2):
            agg = ValidationAggregator("asset-1", attestations)
            for receipt in receipts:
                agg.submit(receipt, whitelist=None, consensus=ConsensusConfig(), now=clock())
            roots.append(agg.reputation_root)
        assert roots[0] == roots[1]


# ── Eligibility ─────────────────────────────────────────────────


class TestEligibility:
    def test_non_whitelisted_validator_never_counts(self, active_machine, make_receipt, bus):
        active_machine.configure_consensus(AUTH, m=2)
        active_machine.set_validator_whitelist(AUTH, ["v1", "v2"])
        active_machine.submit_attestation(make_receipt("v1"))
        with pytest.raises(ValidatorNotEligible):
            active_machine.submit_attestation(make_receipt("v3"))
        assert active_machine.record.root_height == 0
        assert bus.query_by_type(EventType.ATTESTATION_REJECTED)

    def test_clearing_whitelist(self, active_machine, make_receipt):
        active_machine.set_validator_whitelist(AUTH, ["v1"])
        active_machine.set_validator_whitelist(AUTH, None)
        assert active_machine.submit_attestation(make_receipt("v3")).committed

    def test_stake_below_minimum(self, registry, attestations, signers, make_receipt):
        registry.config.min_validator_stake = 50
        machine = registry.create_record("asset-2", authority=AUTH, owner="bob")
        machine.activate(AUTH, bond_amount=1000, fee=50)
        signers["poor"] = attestations.enroll("poor", stake=10)
        with pytest.raises(ValidatorNotEligible):
            machine.submit_attestation(make_receipt("poor", asset_id="asset-2"))
        assert machine.submit_attestation(make_receipt("v1", asset_id="asset-2")).committed

    def test_bad_signature(self, active_machine, make_receipt):
        forged = make_receipt("v1").with_signature("00" * 32)
        with pytest.raises(InvalidReceipt):
            active_machine.submit_attestation(forged)

    def test_mac_keyed_by_validator_id_rejected(self, active_machine, make_receipt):
        receipt = make_receipt("v1", task_id="forged")
        guessed_key = hashlib.sha256(b"v1").digest()
        mac = hmac.new(guessed_key, receipt.signing_digest().encode(), hashlib.sha256).hexdigest()
        with pytest.raises(InvalidReceipt):
            active_machine.submit_attestation(receipt.with_signature(mac))
        assert active_machine.record.root_height == 0

    def test_signed_with_another_validators_key(self, active_machine, make_receipt, signers):
        impostor = ReceiptSigner(signers["v2"].private_key(), "v1")
        receipt = impostor.sign(make_receipt("v1"))
        with pytest.raises(InvalidReceipt):
            active_machine.submit_attestation(receipt)

    def test_unregistered_validator(self, active_machine, make_receipt, signers):
        signers["ghost"] = ReceiptSigner(
            jwk.JWK.generate(kty="OKP", crv="Ed25519").export_private(), "ghost"
        )
        with pytest.raises(InvalidReceipt):
            active_machine.submit_attestation(make_receipt("ghost"))

    def test_service_keeps_only_public_keys(self, attestations, signers):
        stored = jwk.JWK.from_json(attestations.public_key("v1"))
        assert not stored.has_private
        assert attestations.public_key("nope") is None

    def test_register_validator_with_public_key(self, attestations, active_machine, make_receipt, signers):
        key = jwk.JWK.generate(kty="OKP", crv="Ed25519")
        attestations.register_validator("self-keyed", key.export_public(), stake=100)
        signers["self-keyed"] = ReceiptSigner(key.export_private(), "self-keyed")
        assert active_machine.submit_attestation(make_receipt("self-keyed")).committed

    @pytest.mark.parametrize("public_key", ["", "not-json", '{"kty":"oct","k":"c2VjcmV0"}'])
    def test_register_validator_requires_ed25519_key(self, attestations, public_key):
        with pytest.raises(ValueError):
            attestations.register_validator("v9", public_key)

    def test_signer_refuses_other_validator(self, signers, make_receipt):
        with pytest.raises(ValueError):
            signers["v2"].sign(make_receipt("v1"))

    def test_tampered_payload(self, active_machine, make_receipt):
        receipt = make_receipt("v1", payload={"score": 10})
        tampered = type(receipt)(
            validator_id=receipt.validator_id,
            asset_id=receipt.asset_id,
            task_id=receipt.task_id,
            payload={"score": 100},
            issued_at=receipt.issued_at,
            signature=receipt.signature,
        )
        with pytest.raises(InvalidReceipt):
            active_machine.submit_attestation(tampered)

    def test_wrong_asset(self, active_machine, make_receipt):
        with pytest.raises(InvalidReceipt):
            active_machine.submit_attestation(make_receipt("v1", asset_id="asset-9"))

    def test_not_accepted_before_activation(self, machine, make_receipt):
        with pytest.raises(InvalidStateTransition):
            machine.submit_attestation(make_receipt("v1"))

    def test_accepted_while_challenged(self, active_machine, make_receipt):
        active_machine.open_dispute("bob", "e1")
        assert active_machine.submit_attestation(make_receipt("v1")).committed
        assert active_machine.state == LifecycleState.CHALLENGED


# ── Scoring ─────────────────────────────────────────────────────


class TestScoring:
    def test_score_follows_outcomes(self, active_machine, make_receipt):
        assert active_machine.record.score == NEUTRAL_SCORE
        active_machine.submit_attestation(make_receipt("v1", task_id="a", payload={"outcome": "pass"}))
        active_machine.submit_attestation(make_receipt("v1", task_id="b", payload={"outcome": "fail"}))
        assert active_machine.record.score == 50.0
        active_machine.submit_attestation(make_receipt("v1", task_id="c", payload={"score": 80}))
        assert active_machine.record.score == pytest.approx(60.0)

    def test_outcome_value(self):
        assert outcome_value({"score": 150}) == 100.0
        assert outcome_value({"score": -3}) == 0.0
        assert outcome_value({"success": True}) == 100.0
        assert outcome_value({"success": 1}) == 0.0
        assert outcome_value({"outcome": "PASS"}) == 100.0
        assert outcome_value({}) == 0.0

    def test_pass_rate_empty_is_neutral(self):
        assert PassRateScorer().compute_score([]) == NEUTRAL_SCORE

    def test_recency_weighting_favors_recent(self):
        now = datetime(2026, 3, 1, tzinfo=timezone.utc)
        scorer = RecencyWeightedScorer(half_life_seconds=86400, now=now)
        old_fail = _summary(0.0, committed_at=now - timedelta(days=10))
        new_pass = _summary(100.0, committed_at=now)
        assert scorer.compute_score([old_fail, new_pass]) > 99.0

    def test_value_weighting(self):
        now = datetime(2026, 3, 1, tzinfo=timezone.utc)
        scorer = RecencyWeightedScorer(weight_by_value=True, now=now)
        small_pass = _summary(100.0, committed_at=now, task_value=1)
        big_fail = _summary(0.0, committed_at=now, task_value=99)
        assert scorer.compute_score([small_pass, big_fail]) == pytest.approx(1.0)

    def test_invalid_half_life(self):
        with pytest.raises(ValueError):
            RecencyWeightedScorer(half_life_seconds=0)

    def test_custom_strategy_on_registry(self, config, assets, attestations, clock, make_receipt):
        from trustbond.registry import TrustRegistry

        class Constant(PassRateScorer):
            def compute_score(self, receipt_set):
                return 250.0

        registry = TrustRegistry(
            config=config, assets=assets, attestations=attestations, strategy=Constant(), clock=clock
        )
        machine = registry.create_record("asset-1", authority=AUTH)
        machine.activate(AUTH, bond_amount=1000, fee=50)
        machine.submit_attestation(make_receipt("v1"))
        assert registry.get_normalized_score("asset-1") == 100.0


# ── Concurrent submission ───────────────────────────────────────


def _run_concurrently(target, args_list):
    barrier = threading.Barrier(len(args_list))
    errors = []

    def run(*args):
        barrier.wait()
        try:
            target(*args)
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=run, args=args) for args in args_list]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)
    return errors


class TestConcurrentSubmission:
    def test_simultaneous_votes_commit_once(self, active_machine, make_receipt, bus):
        active_machine.configure_consensus(AUTH, m=2)
        receipts = [make_receipt(v, task_value=1000) for v in ("v1", "v1", "v2", "v2", "v3", "v3")] * 3
        results = []

        errors = _run_concurrently(
            lambda r: results.append(active_machine.submit_attestation(r)),
            [(r,) for r in receipts],
        )

        assert errors == []
        assert len(results) == len(receipts)
        assert sum(r.committed for r in results) == 1
        assert active_machine.record.root_height == 1
        taxes = [r for r in active_machine.fees.routings if r.kind == FeeKind.VALIDATION_TAX]
        assert len(taxes) == 1
        assert taxes[0].amount == 10
        assert len(bus.query_by_type(EventType.CONSENSUS_REACHED)) == 1
        assert active_machine.aggregator.pending_task_count == 0

    def test_simultaneous_disputes_open_one(self, active_machine):
        opened = []

        errors = _run_concurrently(
            lambda who: opened.append(active_machine.open_dispute(who, f"evidence-{who}")),
            [(f"challenger-{i}",) for i in range(8)],
        )

        assert len(opened) == 1
        assert len(errors) == 7
        assert all(isinstance(e, AlreadyChallenged) for e in errors)
        assert active_machine.state == LifecycleState.CHALLENGED
        assert len(active_machine.disputes.get_history()) == 1
