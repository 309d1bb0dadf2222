"""
Tests for count value objects, the variance policy and the count workflow.
"""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from stock_ledger.domain.counts import (
    CountItemStatus,
    CountStatus,
    CountType,
    InventoryCount,
    InventoryCountItem,
    ReconcileAction,
    VariancePolicy,
    VarianceSeverity,
)
from stock_ledger.domain.values import ZERO
from stock_ledger.domain.workflows import ALL_LINES_COUNTED, COUNT_WORKFLOW

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def _item(system="100", unit_cost="2", **kwargs):
    return InventoryCountItem(
        count_id=uuid4(),
        product_id="P1",
        location_id="W1",
        system_quantity=Decimal(system),
        unit_cost=Decimal(unit_cost),
        **kwargs,
    )


class TestInventoryCountItem:

    def test_pending_line_has_no_variance(self):
        item = _item()
        assert item.variance is None
        assert item.variance_value is None
        assert item.adjustment_delta == ZERO
        assert not item.is_recorded

    def test_recorded_line(self):
        item = _item().record(Decimal("95"), T0, notes="shelf 3")
        assert item.status == CountItemStatus.COUNTED
        assert item.variance == Decimal("-5")
        assert item.variance_value == Decimal("-10")
        assert item.target_quantity == Decimal("95")
        assert item.adjustment_delta == Decimal("-5")
        assert item.notes == "shelf 3"

    def test_record_again_clears_resolution(self):
        item = _item(
            physical_quantity=Decimal("90"),
            status=CountItemStatus.VERIFIED,
            resolution=ReconcileAction.KEEP_SYSTEM,
            resolved_quantity=Decimal("100"),
        )
        recounted = item.record(Decimal("98"), T0)
        assert recounted.status == CountItemStatus.COUNTED
        assert recounted.resolution is None
        assert recounted.target_quantity == Decimal("98")

    def test_verified_line_targets_resolved_quantity(self):
        item = _item(
            physical_quantity=Decimal("90"),
            status=CountItemStatus.VERIFIED,
            resolution=ReconcileAction.KEEP_SYSTEM,
            resolved_quantity=Decimal("100"),
        )
        assert item.variance == Decimal("-10")
        assert item.adjustment_delta == ZERO

    def test_discard(self):
        item = _item().record(Decimal("95"), T0).discard()
        assert item.status == CountItemStatus.PENDING
        assert item.physical_quantity is None
        assert item.counted_at is None

    def test_fractional_quantities(self):
        item = _item(system="2.500", unit_cost="12").record(Decimal("2.275"), T0)
        assert item.variance == Decimal("-0.225")
        assert item.variance_value == Decimal("-2.700")


class TestVariancePolicy:

    def test_exact_classification(self):
        policy = VariancePolicy()
        assert policy.classify(ZERO) == VarianceSeverity.MATCH
        assert policy.classify(Decimal("-1")) == VarianceSeverity.SHORTAGE
        assert policy.classify(Decimal("0.001")) == VarianceSeverity.OVERAGE

    def test_tolerance(self):
        policy = VariancePolicy(match_tolerance=Decimal("0.05"))
        assert policy.classify(Decimal("-0.05")) == VarianceSeverity.MATCH
        assert policy.classify(Decimal("0.051")) == VarianceSeverity.OVERAGE

    def test_critical_disabled_without_threshold(self):
        assert not VariancePolicy().is_critical(Decimal("1000000"))

    def test_critical_uses_default_threshold(self):
        policy = VariancePolicy(critical_value_threshold=Decimal("100"))
        assert policy.is_critical(Decimal("100.01"))
        assert not policy.is_critical(Decimal("100"))

    def test_explicit_threshold_overrides_default(self):
        policy = VariancePolicy(critical_value_threshold=Decimal("100"))
        assert policy.is_critical(Decimal("20"), threshold=Decimal("10"))


class TestInventoryCount:

    def test_reference_is_count_id(self):
        count = InventoryCount(id=uuid4(), name="Q1", count_type=CountType.FULL, location_id="W1")
        assert count.reference == str(count.id)

    @pytest.mark.parametrize(
        "status, terminal",
        [
            (CountStatus.DRAFT, False),
            (CountStatus.IN_PROGRESS, False),
            (CountStatus.COMPLETED, True),
            (CountStatus.CANCELLED, True),
        ],
    )
    def test_terminal_states(self, status, terminal):
        count = InventoryCount(id=uuid4(), name="Q1", count_type=CountType.FULL, location_id="W1", status=status)
        assert count.is_terminal is terminal


class TestCountWorkflow:

    def test_initial_state(self):
        assert COUNT_WORKFLOW.initial_state == CountStatus.DRAFT.value

    def test_states_match_enum(self):
        assert set(COUNT_WORKFLOW.states) == {s.value for s in CountStatus}

    def test_start(self):
        assert COUNT_WORKFLOW.find("draft", "start").to_state == "in_progress"

    def test_finalize_guarded_and_posting(self):
        transition = COUNT_WORKFLOW.find("in_progress", "finalize")
        assert transition.to_state == "completed"
        assert transition.guard == ALL_LINES_COUNTED
        assert transition.posts_entry

    def test_finalize_guard_checks_lines(self):
        transition = COUNT_WORKFLOW.find("in_progress", "finalize")
        counted = _item().record(Decimal("95"), T0)
        assert transition.allows([counted])
        assert not transition.allows([counted, _item()])

    def test_unguarded_transition_always_allowed(self):
        assert COUNT_WORKFLOW.find("draft", "start").allows([_item()])
        assert not COUNT_WORKFLOW.find("draft", "start").posts_entry

    def test_cancel_from_open_states(self):
        assert COUNT_WORKFLOW.find("draft", "cancel").to_state == "cancelled"
        assert COUNT_WORKFLOW.find("in_progress", "cancel").to_state == "cancelled"

    def test_finalize_from_draft_not_allowed(self):
        assert COUNT_WORKFLOW.find("draft", "finalize") is None

    @pytest.mark.parametrize("state", ["completed", "cancelled"])
    def test_nothing_leaves_terminal_states(self, state):
        assert COUNT_WORKFLOW.is_terminal(state)
        assert not [t for t in COUNT_WORKFLOW.transitions if t.from_state == state]
