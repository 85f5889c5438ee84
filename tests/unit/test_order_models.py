"""
Unit Tests for Order Models

Reliability Level: L6 Critical

Tests:
- Empty sentinel shape
- Schedule advancement (decrement + fixed-cadence time step)
- Settlement instruction ordering
- Native/display amount conversion
"""

from decimal import Decimal

import pytest

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from dca.order_models import (
    AccountScope,
    AddCollateral,
    ExecutionPlan,
    Order,
    WithdrawCollateral,
    to_display_amount,
    to_native_amount,
)


def _order(**overrides) -> Order:
    fields = dict(
        owner="alice",
        account_scope=AccountScope(protocol="margin-protocol", account="acct-alice"),
        token_in="TKA",
        token_out="TKB",
        amount_per_interval=200_000,
        interval=86_400,
        next_execution_time=1_000,
        total_executions=10,
        executions_left=10,
    )
    fields.update(overrides)
    return Order(**fields)


class TestEmptySentinel:
    """Order.empty() stands in for a missing record."""

    def test_empty_is_all_zero(self) -> None:
        empty = Order.empty()
        assert empty.owner == ""
        assert empty.account_scope == AccountScope()
        assert empty.amount_per_interval == 0
        assert empty.executions_left == 0
        assert empty.next_execution_time == 0

    def test_empty_is_empty(self) -> None:
        assert Order.empty().is_empty()

    def test_populated_order_is_not_empty(self) -> None:
        assert not _order().is_empty()

    def test_scope_without_account_is_empty(self) -> None:
        assert AccountScope(protocol="margin-protocol").is_empty()


class TestAdvanced:
    """advanced() moves the schedule exactly one step."""

    def test_decrements_executions_left(self) -> None:
        assert _order(executions_left=4).advanced().executions_left == 3

    def test_advances_by_interval_from_previous_time(self) -> None:
        order = _order(next_execution_time=5_000, interval=60)
        assert order.advanced().next_execution_time == 5_060

    def test_leaves_other_fields_untouched(self) -> None:
        order = _order()
        advanced = order.advanced()
        assert advanced.owner == order.owner
        assert advanced.account_scope == order.account_scope
        assert advanced.amount_per_interval == order.amount_per_interval
        assert advanced.total_executions == order.total_executions

    def test_original_is_immutable(self) -> None:
        order = _order(executions_left=2)
        order.advanced()
        assert order.executions_left == 2

    def test_last_execution_exhausts(self) -> None:
        assert _order(executions_left=1).advanced().is_exhausted()


class TestSerialization:

    def test_dict_round_trip_preserves_large_amounts(self) -> None:
        order = _order(amount_per_interval=2 ** 200)
        assert Order.from_dict(order.to_dict()) == order

    def test_amount_serialized_as_string(self) -> None:
        assert _order().to_dict()["amount_per_interval"] == "200000"


class TestSettlementInstructions:
    """Deposit must precede withdrawal."""

    def test_deposit_then_withdraw(self) -> None:
        plan = ExecutionPlan(
            order_id=3,
            order=_order(),
            balance=150_000,
            amount_in=149_999,
            rate_per_unit=2_000_000,
            one_unit=1_000_000,
            min_amount_out=299_998,
        )
        instructions = plan.settlement_instructions("keeper-1")

        assert instructions == [
            AddCollateral(token="TKB", amount=299_998),
            WithdrawCollateral(token="TKA", amount=149_999, recipient="keeper-1"),
        ]


class TestAmountConversion:

    def test_to_native_whole_units(self) -> None:
        assert to_native_amount("1.5", 6) == 1_500_000

    def test_to_native_truncates_below_one_unit(self) -> None:
        assert to_native_amount("0.0000019", 6) == 1

    def test_to_native_accepts_decimal_and_int(self) -> None:
        assert to_native_amount(Decimal("2"), 18) == 2 * 10 ** 18
        assert to_native_amount(3, 0) == 3

    @pytest.mark.parametrize("value", ["abc", "", "NaN", "Infinity"])
    def test_to_native_rejects_non_numbers(self, value: str) -> None:
        with pytest.raises(ValueError):
            to_native_amount(value, 6)

    def test_to_display(self) -> None:
        assert to_display_amount(1_500_000, 6) == Decimal("1.5")

    def test_to_display_keeps_full_precision(self) -> None:
        amount = 123456789012345678901234567890
        assert to_display_amount(amount, 18) == Decimal("123456789012.345678901234567890")
