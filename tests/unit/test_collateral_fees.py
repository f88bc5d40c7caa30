"""Tests for collateral auto-freeze, top-up recovery and fee routing."""

import pytest
from decimal import Decimal

from trustbond.collateral.monitor import CollateralMonitor
from trustbond.config import ProtocolConfig, SlashRemainderPolicy
from trustbond.errors import CollateralBelowMinimum, InvalidStateTransition, Unauthorized
from trustbond.fees.router import FeeKind, FeeRouter
from trustbond.models import DisputeOutcome, FeeConfig, LifecycleState, SlashingSeverity
from trustbond.observability.event_bus import EventType
from trustbond.registry import TrustRegistry

AUTH = "auth"
GOV = "governance"


def _activated(registry, bond):
    machine = registry.create_record("asset-1", authority=AUTH, required_bond=bond)
    machine.activate(AUTH, bond_amount=bond, fee=50)
    return machine


# ── Collateral monitor ──────────────────────────────────────────


class TestCollateralMonitor:
    def test_threshold_is_exact_decimal(self):
        monitor = CollateralMonitor(Decimal("0.1"))
        assert monitor.threshold(10000) == Decimal("1000.0")

    def test_check_and_shortfall(self):
        monitor = CollateralMonitor(Decimal("0.1"))
        assert monitor.check(1000, 10000).is_sufficient
        check = monitor.check(900, 10000)
        assert not check.is_sufficient
        assert check.shortfall == 100

    def test_shortfall_rounds_up(self):
        check = CollateralMonitor(Decimal("0.1")).check(0, 15)
        assert check.shortfall == 2

    def test_only_live_states_freeze(self):
        monitor = CollateralMonitor(Decimal("0.1"))
        assert monitor.should_freeze(LifecycleState.ACTIVE, 0, 100)
        assert monitor.should_freeze(LifecycleState.UNBONDING, 0, 100)
        assert not monitor.should_freeze(LifecycleState.FROZEN, 0, 100)
        assert not monitor.should_freeze(LifecycleState.PENDING_BOND, 0, 100)


class TestAutoFreeze:
    def test_under_collateralized_freezes(self, registry, bus):
        machine = _activated(registry, 900)
        result = machine.report_tvm(GOV, 10000)
        assert result.state == LifecycleState.FROZEN
        assert bus.query_by_type(EventType.AUTO_FROZEN)

    def test_sufficient_bond_stays_active(self, registry):
        machine = _activated(registry, 1100)
        assert machine.report_tvm(GOV, 10000).state == LifecycleState.ACTIVE

    def test_freeze_overrides_unbonding(self, registry):
        machine = _activated(registry, 900)
        machine.request_unbond(AUTH)
        machine.report_tvm(GOV, 10000)
        assert machine.state == LifecycleState.FROZEN
        assert machine.record.unbond_deadline is None

    def test_only_governance_reports_tvm(self, registry):
        machine = _activated(registry, 900)
        with pytest.raises(Unauthorized):
            machine.report_tvm(AUTH, 10000)

    def test_top_up_clears_threshold(self, registry):
        machine = _activated(registry, 900)
        machine.report_tvm(GOV, 10000)
        result = machine.top_up(AUTH, 100)
        assert result.state == LifecycleState.ACTIVE
        assert machine.bond == 1000

    def test_partial_top_up_stays_frozen(self, registry):
        machine = _activated(registry, 900)
        machine.report_tvm(GOV, 10000)
        result = machine.top_up(AUTH, 50)
        assert result.state == LifecycleState.FROZEN
        assert result.details["shortfall"] == 50
        assert machine.bond == 950

    def test_top_up_only_from_frozen(self, registry):
        machine = _activated(registry, 900)
        with pytest.raises(InvalidStateTransition):
            machine.top_up(AUTH, 100)

    def test_reactivate_after_lower_tvm(self, registry):
        machine = _activated(registry, 900)
        machine.report_tvm(GOV, 10000)
        with pytest.raises(CollateralBelowMinimum):
            machine.reactivate(AUTH)
        machine.report_tvm(GOV, 5000)
        assert machine.state == LifecycleState.FROZEN
        assert machine.reactivate(AUTH).state == LifecycleState.ACTIVE

    def test_major_slash_recovers_via_top_up(self, registry):
        machine = _activated(registry, 1000)
        machine.open_dispute("bob", "e1")
        machine.resolve_dispute(GOV, DisputeOutcome.UPHELD, SlashingSeverity.MAJOR)
        assert machine.state == LifecycleState.FROZEN
        machine.report_tvm(GOV, 10000)
        assert machine.top_up(AUTH, 400).state == LifecycleState.FROZEN
        assert machine.top_up(AUTH, 100).state == LifecycleState.ACTIVE


# ── Fees ────────────────────────────────────────────────────────


class TestFeeRouter:
    def test_validation_tax_rounds_down(self):
        assert FeeRouter.validation_tax(10000, 100) == 100
        assert FeeRouter.validation_tax(99, 100) == 0
        assert FeeRouter.validation_tax(0, 100) == 0

    def test_slash_split_burn(self):
        router = FeeRouter()
        split = router.split_slash(100, FeeConfig(vigorish_bps=1000))
        assert (split.vigorish, split.remainder) == (10, 90)
        totals = router.totals()
        assert totals["vigorish"] == 10
        assert totals["burned"] == 90
        assert totals["insurance"] == 0

    def test_slash_split_insurance(self):
        router = FeeRouter(remainder_policy=SlashRemainderPolicy.INSURANCE)
        router.split_slash(100, FeeConfig())
        assert router.totals()["insurance"] == 90
        assert router.routings[-1].destination == "insurance"

    def test_counters_are_additive(self):
        router = FeeRouter()
        router.collect_registration(FeeConfig(registration_fee=50))
        router.collect_registration(FeeConfig(registration_fee=25))
        assert router.totals()[FeeKind.REGISTRATION.value] == 75
        assert router.treasury_balance == 75


class TestFeeRouting:
    def test_registration_fee_to_treasury(self, active_machine):
        assert active_machine.fees.treasury_balance == 50

    def test_validation_tax_uses_lowest_agreed_value(self, active_machine, make_receipt):
        active_machine.configure_consensus(AUTH, m=2)
        active_machine.submit_attestation(make_receipt("v1", task_value=10000))
        assert active_machine.fees.totals()["validation_tax"] == 0
        active_machine.submit_attestation(make_receipt("v2", task_value=5000))
        assert active_machine.fees.totals()["validation_tax"] == 50

    def test_validation_tax_charged_once_per_task(self, active_machine, make_receipt):
        active_machine.configure_consensus(AUTH, m=2)
        active_machine.submit_attestation(make_receipt("v1", task_value=10000, payload={"score": 90}))
        active_machine.submit_attestation(make_receipt("v2", task_value=10000, payload={"score": 90}))
        assert active_machine.fees.totals()["validation_tax"] == 100
        active_machine.submit_attestation(make_receipt("v3", task_value=10000, payload={"score": 90}))
        assert active_machine.fees.totals()["validation_tax"] == 100

    def test_vigorish_on_slash(self, active_machine):
        active_machine.open_dispute("bob", "e1")
        active_machine.resolve_dispute(GOV, DisputeOutcome.UPHELD, SlashingSeverity.MINOR)
        totals = active_machine.fees.totals()
        assert totals["vigorish"] == 10
        assert totals["burned"] == 90

    def test_insurance_policy_from_config(self, assets, attestations, clock):
        config = ProtocolConfig(slash_remainder=SlashRemainderPolicy.INSURANCE)
        registry = TrustRegistry(config=config, assets=assets, attestations=attestations, clock=clock)
        machine = registry.create_record("asset-1", authority=AUTH)
        machine.activate(AUTH, bond_amount=1000, fee=50)
        machine.open_dispute("bob", "e1")
        machine.resolve_dispute(GOV, DisputeOutcome.UPHELD, SlashingSeverity.MAJOR)
        assert machine.fees.totals()["insurance"] == 450

    def test_update_fee_config_governance_only(self, active_machine):
        with pytest.raises(Unauthorized):
            active_machine.update_fee_config(AUTH, vigorish_bps=2000)
        active_machine.update_fee_config(GOV, vigorish_bps=2000)
        assert active_machine.record.fee_config.vigorish_bps == 2000
        assert active_machine.record.fee_config.registration_fee == 50
        active_machine.open_dispute("bob", "e1")
        active_machine.resolve_dispute(GOV, DisputeOutcome.UPHELD, SlashingSeverity.MINOR)
        assert active_machine.fees.totals()["vigorish"] == 20

    def test_invalid_fee_config_rejected(self, active_machine):
        with pytest.raises(ValueError):
            active_machine.update_fee_config(GOV, validation_tax_bps=20000)
        assert active_machine.record.fee_config.validation_tax_bps == 100
