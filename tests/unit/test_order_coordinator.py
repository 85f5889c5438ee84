"""
Unit Tests for the Order Coordinator

Reliability Level: L6 Critical

Tests:
- submit: authorization, parameter validation, id allocation, events
- cancel: current-holder authorization, destroy, events
- execute: reference scenarios, schedule cadence, rejection without state
  change, settlement rollback, deposit-before-withdraw ordering
- metrics recorded per outcome

Error Codes:
- DCA-001..007, SET-001..006
"""

import logging
from typing import Optional

import pytest
from prometheus_client import REGISTRY

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from conftest import (
    ACCOUNT,
    BORROWER,
    DAY,
    EXECUTOR,
    EXECUTOR_BALANCE,
    START_TIME,
    TOKEN_IN,
    TOKEN_OUT,
)
from dca.coordinator_config import CoordinatorConfig
from dca.order_coordinator import OrderCoordinator, create_order_coordinator
from dca.order_errors import (
    BotNotPermitted,
    CallerNotBorrower,
    InsufficientAllowance,
    InvalidOrder,
    InvalidOrderParameters,
    NothingToSell,
    NotTimeYet,
    OrderIsCancelled,
    PriceUnavailable,
    SolvencyCheckFailed,
)
from dca.order_events import OrderEventType
from dca.order_models import AccountScope, Order
from dca.order_record_store import InMemoryOrderRecordStore
from dca.sql_order_record_store import SqlOrderRecordStore
from infra.database import create_store_engine
from protocol.sandbox import open_funded_account


def _sample(name: str, labels: Optional[dict] = None) -> float:
    value = REGISTRY.get_sample_value(name, labels or {})
    return value if value is not None else 0.0


def _set_balance(sandbox, amount: int) -> None:
    current = sandbox.ledger.balance_of(ACCOUNT, TOKEN_IN)
    sandbox.ledger.burn(TOKEN_IN, ACCOUNT, current)
    sandbox.ledger.mint(TOKEN_IN, ACCOUNT, amount)


# =============================================================================
# Construction
# =============================================================================

class TestConstruction:

    def test_store_must_accept_coordinator(self, sandbox) -> None:
        with pytest.raises(ValueError):
            OrderCoordinator(
                address="someone-else",
                store=InMemoryOrderRecordStore("dca-coordinator"),
                margin_protocol=sandbox.margin_protocol,
                token_ledger=sandbox.ledger,
                price_oracle=sandbox.oracle,
                environment=sandbox.environment,
            )

    def test_counter_starts_at_zero(self, sandbox) -> None:
        assert sandbox.coordinator.next_order_id == 0
        assert sandbox.coordinator.order_ids() == []

    def test_factory_builds_sql_backend(self, sandbox) -> None:
        config = CoordinatorConfig(
            coordinator_address="dca-coordinator",
            store_backend="sql",
            database_url="sqlite://",
        )
        coordinator = create_order_coordinator(
            config,
            sandbox.margin_protocol,
            sandbox.ledger,
            sandbox.oracle,
            sandbox.environment,
            engine=create_store_engine("sqlite://"),
        )
        assert isinstance(coordinator.store, SqlOrderRecordStore)
        assert coordinator.next_order_id == 0

    def test_factory_builds_memory_backend(self, sandbox) -> None:
        config = CoordinatorConfig(coordinator_address="dca-coordinator")
        coordinator = create_order_coordinator(
            config,
            sandbox.margin_protocol,
            sandbox.ledger,
            sandbox.oracle,
            sandbox.environment,
        )
        assert isinstance(coordinator.store, InMemoryOrderRecordStore)


# =============================================================================
# Submission
# =============================================================================

class TestSubmit:

    def test_ids_start_at_zero_and_increase(self, sandbox, make_order) -> None:
        coordinator = sandbox.coordinator
        ids = [coordinator.submit(make_order(), BORROWER) for _ in range(3)]

        assert ids == [0, 1, 2]
        assert coordinator.next_order_id == 3

    def test_record_held_by_caller(self, sandbox, make_order) -> None:
        order = make_order()
        order_id = sandbox.coordinator.submit(order, BORROWER)

        assert sandbox.store.owner_of(order_id) == BORROWER
        assert sandbox.coordinator.get_order(order_id) == order

    def test_creation_event(self, sandbox, make_order) -> None:
        order_id = sandbox.coordinator.submit(make_order(), BORROWER, correlation_id="cid-1")

        events = sandbox.event_log.history(event_type=OrderEventType.CREATED)
        assert len(events) == 1
        assert events[0].actor == BORROWER
        assert events[0].order_id == order_id
        assert events[0].correlation_id == "cid-1"
        assert events[0].to_dict()["owner"] == BORROWER

    def test_caller_must_be_owner(self, sandbox, make_order) -> None:
        with pytest.raises(CallerNotBorrower) as exc_info:
            sandbox.coordinator.submit(make_order(), "mallory")

        assert exc_info.value.error_code == "DCA-001"
        assert sandbox.coordinator.next_order_id == 0

    def test_owner_must_control_account(self, sandbox, make_order) -> None:
        # mallory claims ownership of alice's account
        with pytest.raises(CallerNotBorrower):
            sandbox.coordinator.submit(make_order(owner="mallory"), "mallory")

    def test_unknown_account_rejected(self, sandbox, make_order) -> None:
        scope = AccountScope(protocol="margin-protocol", account="acct-ghost")
        with pytest.raises(CallerNotBorrower):
            sandbox.coordinator.submit(make_order(account_scope=scope), BORROWER)

    def test_empty_identity_never_controls_unknown_account(self, sandbox, make_order) -> None:
        """An unknown account's empty controller must not match an empty owner."""
        scope = AccountScope(protocol="margin-protocol", account="acct-ghost")
        assert sandbox.margin_protocol.current_controller(scope) == ""

        with pytest.raises(CallerNotBorrower) as exc_info:
            sandbox.coordinator.submit(make_order(owner="", account_scope=scope), "")

        assert exc_info.value.error_code == "DCA-001"
        assert sandbox.coordinator.next_order_id == 0
        assert sandbox.event_log.history() == []

    def test_wrong_protocol_rejected(self, sandbox, make_order) -> None:
        scope = AccountScope(protocol="other-protocol", account=ACCOUNT)
        with pytest.raises(CallerNotBorrower):
            sandbox.coordinator.submit(make_order(account_scope=scope), BORROWER)

    @pytest.mark.parametrize("overrides", [
        {"executions_left": 0, "total_executions": 0},
        {"executions_left": -1},
        {"interval": 0},
        {"amount_per_interval": 0},
        {"total_executions": 3, "executions_left": 4},
        {"token_out": TOKEN_IN},
        {"token_in": ""},
        {"next_execution_time": -1},
    ])
    def test_invalid_parameters_rejected(self, sandbox, make_order, overrides) -> None:
        with pytest.raises(InvalidOrderParameters) as exc_info:
            sandbox.coordinator.submit(make_order(**overrides), BORROWER)

        assert exc_info.value.error_code == "DCA-007"
        assert sandbox.coordinator.next_order_id == 0
        assert sandbox.event_log.history() == []

    def test_failed_submission_consumes_no_id(self, sandbox, make_order) -> None:
        coordinator = sandbox.coordinator
        assert coordinator.submit(make_order(), BORROWER) == 0
        with pytest.raises(CallerNotBorrower):
            coordinator.submit(make_order(), "mallory")

        assert coordinator.submit(make_order(), BORROWER) == 1

    def test_metrics(self, sandbox, make_order) -> None:
        before = _sample("dca_orders_submitted_total")
        sandbox.coordinator.submit(make_order(), BORROWER)
        assert _sample("dca_orders_submitted_total") == before + 1


# =============================================================================
# Cancellation
# =============================================================================

class TestCancel:

    def test_holder_cancels(self, sandbox, make_order) -> None:
        coordinator = sandbox.coordinator
        order_id = coordinator.submit(make_order(), BORROWER)

        coordinator.cancel(order_id, BORROWER)

        assert coordinator.get_order(order_id) == Order.empty()
        with pytest.raises(OrderIsCancelled):
            coordinator.execute(order_id, EXECUTOR)

    def test_cancellation_event(self, sandbox, make_order) -> None:
        order_id = sandbox.coordinator.submit(make_order(), BORROWER)
        sandbox.coordinator.cancel(order_id, BORROWER)

        events = sandbox.event_log.history(order_id=order_id, event_type=OrderEventType.CANCELLED)
        assert [(e.actor, e.order_id) for e in events] == [(BORROWER, order_id)]

    def test_stranger_cannot_cancel(self, sandbox, make_order) -> None:
        order = make_order()
        order_id = sandbox.coordinator.submit(order, BORROWER)

        with pytest.raises(CallerNotBorrower):
            sandbox.coordinator.cancel(order_id, "mallory")

        assert sandbox.coordinator.get_order(order_id) == order
        assert sandbox.store.owner_of(order_id) == BORROWER

    def test_executor_cannot_cancel(self, sandbox, make_order) -> None:
        order_id = sandbox.coordinator.submit(make_order(), BORROWER)
        with pytest.raises(CallerNotBorrower):
            sandbox.coordinator.cancel(order_id, EXECUTOR)

    def test_nonexistent_order(self, sandbox) -> None:
        with pytest.raises(CallerNotBorrower):
            sandbox.coordinator.cancel(99, BORROWER)

    def test_double_cancel_fails(self, sandbox, make_order) -> None:
        order_id = sandbox.coordinator.submit(make_order(), BORROWER)
        sandbox.coordinator.cancel(order_id, BORROWER)

        with pytest.raises(CallerNotBorrower):
            sandbox.coordinator.cancel(order_id, BORROWER)

    def test_cancel_rights_follow_record_transfer(self, sandbox, make_order) -> None:
        coordinator = sandbox.coordinator
        order_id = coordinator.submit(make_order(), BORROWER)
        sandbox.store.transfer_from(BORROWER, "bob", order_id, caller=BORROWER)

        with pytest.raises(CallerNotBorrower):
            coordinator.cancel(order_id, BORROWER)

        coordinator.cancel(order_id, "bob")
        assert not sandbox.store.exists(order_id)

    def test_cancelled_id_never_reused(self, sandbox, make_order) -> None:
        coordinator = sandbox.coordinator
        first = coordinator.submit(make_order(), BORROWER)
        coordinator.cancel(first, BORROWER)

        assert coordinator.submit(make_order(), BORROWER) == first + 1


# =============================================================================
# Execution
# =============================================================================

class TestExecuteScenarios:

    def test_reference_scenario(self, sandbox, make_order) -> None:
        """200,000 per interval against a 150,000 balance sells 149,999."""
        coordinator = sandbox.coordinator
        order = make_order(amount_per_interval=200_000, interval=86_400,
                           total_executions=10, executions_left=10)
        order_id = coordinator.submit(order, BORROWER)
        _set_balance(sandbox, 150_000)

        receipt = coordinator.execute(order_id, EXECUTOR)

        assert receipt.amount_in == 149_999
        assert receipt.min_amount_out == 299_998
        stored = coordinator.get_order(order_id)
        assert stored.executions_left == 9
        assert stored.next_execution_time == order.next_execution_time + 86_400

    def test_settlement_balances(self, sandbox, make_order) -> None:
        coordinator = sandbox.coordinator
        ledger = sandbox.ledger
        order_id = coordinator.submit(make_order(), BORROWER)
        _set_balance(sandbox, 150_000)

        coordinator.execute(order_id, EXECUTOR)

        assert ledger.balance_of(ACCOUNT, TOKEN_IN) == 1
        assert ledger.balance_of(EXECUTOR, TOKEN_IN) == 149_999
        assert ledger.balance_of(ACCOUNT, TOKEN_OUT) == 299_998
        assert ledger.balance_of(EXECUTOR, TOKEN_OUT) == EXECUTOR_BALANCE - 299_998
        assert ledger.balance_of(coordinator.address, TOKEN_OUT) == 0
        # The rounding margin is the only allowance left behind
        assert ledger.allowance(
            TOKEN_OUT, coordinator.address, sandbox.margin_protocol.address
        ) == 1

    def test_last_execution_destroys_order(self, sandbox, make_order) -> None:
        coordinator = sandbox.coordinator
        order_id = coordinator.submit(make_order(total_executions=1, executions_left=1), BORROWER)

        receipt = coordinator.execute(order_id, EXECUTOR)

        assert receipt.destroyed
        assert receipt.executions_left == 0
        assert coordinator.get_order(order_id) == Order.empty()
        assert sandbox.store.owner_of(order_id) is None
        with pytest.raises(OrderIsCancelled):
            coordinator.execute(order_id, EXECUTOR)

    def test_early_execution_leaves_order_unchanged(self, sandbox, make_order) -> None:
        coordinator = sandbox.coordinator
        order = make_order(next_execution_time=START_TIME + DAY)
        order_id = coordinator.submit(order, BORROWER)
        balances = sandbox.ledger.snapshot()

        with pytest.raises(NotTimeYet):
            coordinator.execute(order_id, EXECUTOR)

        assert coordinator.get_order(order_id) == order
        assert sandbox.ledger.snapshot() == balances

    def test_late_execution_keeps_cadence(self, sandbox, make_order) -> None:
        coordinator = sandbox.coordinator
        order = make_order()
        order_id = coordinator.submit(order, BORROWER)
        sandbox.environment.advance(3 * DAY + 17)

        receipt = coordinator.execute(order_id, EXECUTOR)

        assert receipt.next_execution_time == order.next_execution_time + DAY

    def test_late_order_catches_up_one_interval_per_call(self, sandbox, make_order) -> None:
        coordinator = sandbox.coordinator
        order_id = coordinator.submit(make_order(), BORROWER)
        sandbox.environment.advance(2 * DAY)

        coordinator.execute(order_id, EXECUTOR)
        coordinator.execute(order_id, EXECUTOR)
        coordinator.execute(order_id, EXECUTOR)

        with pytest.raises(NotTimeYet):
            coordinator.execute(order_id, EXECUTOR)
        assert coordinator.get_order(order_id).executions_left == 7

    def test_second_execution_in_same_interval_rejected(self, sandbox, make_order) -> None:
        coordinator = sandbox.coordinator
        order_id = coordinator.submit(make_order(), BORROWER)
        coordinator.execute(order_id, EXECUTOR)

        with pytest.raises(NotTimeYet):
            coordinator.execute(order_id, "keeper-2")

    def test_account_transfer_invalidates_order(self, sandbox, make_order) -> None:
        coordinator = sandbox.coordinator
        order = make_order()
        order_id = coordinator.submit(order, BORROWER)
        sandbox.margin_protocol.transfer_account(order.account_scope, "bob")

        with pytest.raises(InvalidOrder):
            coordinator.execute(order_id, EXECUTOR)
        assert coordinator.get_order(order_id) == order

    def test_nothing_to_sell(self, sandbox, make_order) -> None:
        coordinator = sandbox.coordinator
        order_id = coordinator.submit(make_order(), BORROWER)
        _set_balance(sandbox, 1)

        with pytest.raises(NothingToSell):
            coordinator.execute(order_id, EXECUTOR)

    def test_execution_event_keyed_by_executor(self, sandbox, make_order) -> None:
        order_id = sandbox.coordinator.submit(make_order(), BORROWER)
        sandbox.coordinator.execute(order_id, EXECUTOR)

        events = sandbox.event_log.history(event_type=OrderEventType.EXECUTED)
        assert [(e.actor, e.order_id) for e in events] == [(EXECUTOR, order_id)]
        assert events[0].to_dict()["executor"] == EXECUTOR

    def test_receipt_lists_instructions_in_order(self, sandbox, make_order) -> None:
        order_id = sandbox.coordinator.submit(make_order(), BORROWER)
        receipt = sandbox.coordinator.execute(order_id, EXECUTOR)

        deposit, withdraw = receipt.instructions
        assert deposit.token == TOKEN_OUT
        assert withdraw.token == TOKEN_IN
        assert withdraw.recipient == EXECUTOR


class TestExecuteRollback:
    """A settlement failure leaves every balance, allowance and record as it was."""

    def _assert_untouched(self, sandbox, order_id: int, order: Order, ledger_state) -> None:
        assert sandbox.coordinator.get_order(order_id) == order
        assert sandbox.ledger.snapshot() == ledger_state
        assert sandbox.event_log.history(event_type=OrderEventType.EXECUTED) == []

    def test_missing_executor_allowance(self, sandbox, make_order) -> None:
        order = make_order()
        order_id = sandbox.coordinator.submit(order, BORROWER)
        sandbox.ledger.approve(TOKEN_OUT, EXECUTOR, sandbox.coordinator.address, 0)
        state = sandbox.ledger.snapshot()

        with pytest.raises(InsufficientAllowance):
            sandbox.coordinator.execute(order_id, EXECUTOR)

        self._assert_untouched(sandbox, order_id, order, state)

    def test_revoked_bot_permission(self, sandbox, make_order) -> None:
        order = make_order()
        order_id = sandbox.coordinator.submit(order, BORROWER)
        sandbox.margin_protocol.revoke_bot_permission(
            order.account_scope, sandbox.coordinator.address, caller=BORROWER
        )
        state = sandbox.ledger.snapshot()

        with pytest.raises(BotNotPermitted):
            sandbox.coordinator.execute(order_id, EXECUTOR)

        self._assert_untouched(sandbox, order_id, order, state)

    def test_solvency_failure(self, sandbox, make_order) -> None:
        scope = open_funded_account(
            sandbox, "acct-underwater", BORROWER, TOKEN_IN, 1_000_000, debt=3_000_000
        )
        order = make_order(account_scope=scope)
        order_id = sandbox.coordinator.submit(order, BORROWER)
        state = sandbox.ledger.snapshot()

        with pytest.raises(SolvencyCheckFailed):
            sandbox.coordinator.execute(order_id, EXECUTOR)

        self._assert_untouched(sandbox, order_id, order, state)

    def test_rejection_metric(self, sandbox, make_order) -> None:
        order_id = sandbox.coordinator.submit(
            make_order(next_execution_time=START_TIME + DAY), BORROWER
        )
        labels = {"error_code": "DCA-004"}
        before = _sample("dca_execution_rejections_total", labels)

        with pytest.raises(NotTimeYet):
            sandbox.coordinator.execute(order_id, EXECUTOR)

        assert _sample("dca_execution_rejections_total", labels) == before + 1

    def test_unpriced_pair_logged_and_counted(self, sandbox, make_order, caplog) -> None:
        order = make_order(token_out="TKC")
        order_id = sandbox.coordinator.submit(order, BORROWER)
        labels = {"error_code": "SET-006"}
        before = _sample("dca_execution_rejections_total", labels)
        state = sandbox.ledger.snapshot()

        with caplog.at_level(logging.WARNING, logger="dca.order_coordinator"):
            with pytest.raises(PriceUnavailable):
                sandbox.coordinator.execute(order_id, EXECUTOR)

        assert _sample("dca_execution_rejections_total", labels) == before + 1
        assert any("[SET-006]" in record.getMessage() for record in caplog.records)
        self._assert_untouched(sandbox, order_id, order, state)


class TestSettlementOrdering:

    def test_deposit_keeps_tight_account_solvent(self, sandbox, make_order) -> None:
        """
        Collateral value equals debt exactly. Withdrawing first would fail the
        solvency check; depositing first keeps the account at the threshold.
        """
        scope = open_funded_account(
            sandbox, "acct-tight", BORROWER, TOKEN_IN, 1_000_000, debt=2_000_000
        )
        order_id = sandbox.coordinator.submit(make_order(account_scope=scope), BORROWER)

        receipt = sandbox.coordinator.execute(order_id, EXECUTOR)

        assert receipt.amount_in == 200_000
        assert receipt.min_amount_out == 400_000
        assert sandbox.ledger.balance_of("acct-tight", TOKEN_OUT) == 400_000


class TestPreview:

    def test_preview_matches_execution(self, sandbox, make_order) -> None:
        order_id = sandbox.coordinator.submit(make_order(), BORROWER)

        plan = sandbox.coordinator.preview_execution(order_id)
        receipt = sandbox.coordinator.execute(order_id, EXECUTOR)

        assert plan.amount_in == receipt.amount_in
        assert plan.min_amount_out == receipt.min_amount_out

    def test_preview_mutates_nothing(self, sandbox, make_order) -> None:
        order = make_order()
        order_id = sandbox.coordinator.submit(order, BORROWER)
        state = sandbox.ledger.snapshot()

        sandbox.coordinator.preview_execution(order_id)

        assert sandbox.coordinator.get_order(order_id) == order
        assert sandbox.ledger.snapshot() == state

    def test_preview_of_missing_order(self, sandbox) -> None:
        with pytest.raises(OrderIsCancelled):
            sandbox.coordinator.preview_execution(0)


class TestQueries:

    def test_order_ids_skip_destroyed(self, sandbox, make_order) -> None:
        coordinator = sandbox.coordinator
        for _ in range(3):
            coordinator.submit(make_order(), BORROWER)
        coordinator.cancel(1, BORROWER)

        assert coordinator.order_ids() == [0, 2]
        assert coordinator.next_order_id == 3
