"""
============================================================================
Project Margin DCA v1.0.0
Execution Validator - Eligibility Checks and Trade Size Computation
============================================================================

Reliability Level: L6 Critical
Input Constraints: Order record as read from the store, current unix time
Side Effects: None (reads external balance and price only)

CHECK SEQUENCE (first failure wins):
    1. Empty scope                          -> OrderIsCancelled (DCA-002)
    2. executions_left == 0                 -> NoExecutionsLeft (DCA-005)
    3. now < next_execution_time            -> NotTimeYet       (DCA-004)
    4. controller(scope) != order.owner     -> InvalidOrder     (DCA-003)
    5. balance(scope.account, token_in) <= 1 -> NothingToSell    (DCA-006)

AMOUNT COMPUTATION:
    amount_in      = min(amount_per_interval, balance - 1)
    one_unit       = 10 ** decimals(token_in)
    rate_per_unit  = convert(one_unit, token_in, token_out)
    min_amount_out = floor(amount_in * rate_per_unit / one_unit)

All arithmetic is integer arithmetic on native units. No floats.

============================================================================
"""

from typing import Optional
import logging
import uuid

from dca.order_errors import (
    InvalidOrder,
    NoExecutionsLeft,
    NotTimeYet,
    NothingToSell,
    OrderError,
    OrderIsCancelled,
)
from dca.order_models import BALANCE_FLOOR, ExecutionPlan, Order
from protocol.interfaces import MarginProtocol, PriceOracle, TokenLedger

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Pure Amount Functions
# =============================================================================

def compute_amount_in(balance: int, amount_per_interval: int) -> int:
    """
    Size of token_in sold by one execution.

    Never exceeds amount_per_interval and always leaves BALANCE_FLOOR units
    in the account.

    Raises:
        ValueError: If the balance leaves nothing to sell
    """
    if balance <= BALANCE_FLOOR:
        raise ValueError(f"balance {balance} leaves nothing to sell")
    return min(amount_per_interval, balance - BALANCE_FLOOR)


def compute_min_amount_out(amount_in: int, rate_per_unit: int, one_unit: int) -> int:
    """
    Minimum acceptable proceeds for amount_in, rounded down.

    Args:
        amount_in: Native units of token_in sold
        rate_per_unit: Native units of token_out worth one whole token_in
        one_unit: 10 ** decimals(token_in)
    """
    if one_unit <= 0:
        raise ValueError(f"one_unit must be positive, got: {one_unit}")
    return amount_in * rate_per_unit // one_unit


# =============================================================================
# Validator
# =============================================================================

class ExecutionValidator:
    """
    Decides whether an order may execute now and how much it trades.

    Reads fresh external state on every call, so two executors racing on the
    same order each see the record as it stands when their call runs.

    Reliability Level: L6 Critical
    """

    def __init__(
        self,
        margin_protocol: MarginProtocol,
        token_ledger: TokenLedger,
        price_oracle: PriceOracle,
    ) -> None:
        self._margin_protocol = margin_protocol
        self._token_ledger = token_ledger
        self._price_oracle = price_oracle

    def validate(
        self,
        order_id: int,
        order: Order,
        now: int,
        correlation_id: Optional[str] = None,
    ) -> ExecutionPlan:
        """
        Run every eligibility check and compute the trade.

        Args:
            order_id: Identifier the order was read under
            order: Record as read from the store (may be the empty sentinel)
            now: Current unix time
            correlation_id: Tracking ID for log lines

        Returns:
            ExecutionPlan for this execution

        Raises:
            OrderIsCancelled, NoExecutionsLeft, NotTimeYet, InvalidOrder,
            NothingToSell: In that order of precedence
        """
        if correlation_id is None:
            correlation_id = str(uuid.uuid4())

        try:
            self._check_schedule(order_id, order, now)
            self._check_control(order_id, order)
            balance = self._token_ledger.balance_of(
                order.account_scope.account, order.token_in
            )
            if balance <= BALANCE_FLOOR:
                raise NothingToSell(
                    f"Scoped account has nothing to sell | order_id={order_id} | "
                    f"token_in={order.token_in} | balance={balance}",
                    order_id=order_id,
                )
        except OrderError as e:
            logger.warning(
                f"[{e.error_code}] Execution rejected | order_id={order_id} | "
                f"reason={e.message} | correlation_id={correlation_id}"
            )
            raise

        amount_in = compute_amount_in(balance, order.amount_per_interval)
        one_unit = 10 ** self._token_ledger.decimals(order.token_in)
        rate_per_unit = self._price_oracle.convert(
            one_unit, order.token_in, order.token_out
        )
        min_amount_out = compute_min_amount_out(amount_in, rate_per_unit, one_unit)

        plan = ExecutionPlan(
            order_id=order_id,
            order=order,
            balance=balance,
            amount_in=amount_in,
            rate_per_unit=rate_per_unit,
            one_unit=one_unit,
            min_amount_out=min_amount_out,
        )

        logger.debug(
            f"[DCA-VALIDATOR] Execution eligible | order_id={order_id} | "
            f"balance={balance} | amount_in={amount_in} | "
            f"rate_per_unit={rate_per_unit} | min_amount_out={min_amount_out} | "
            f"correlation_id={correlation_id}"
        )
        return plan

    def _check_schedule(self, order_id: int, order: Order, now: int) -> None:
        if order.is_empty():
            raise OrderIsCancelled(
                f"Order is cancelled or does not exist | order_id={order_id}",
                order_id=order_id,
            )
        if order.executions_left == 0:
            raise NoExecutionsLeft(
                f"Order has no executions left | order_id={order_id}",
                order_id=order_id,
            )
        if now < order.next_execution_time:
            raise NotTimeYet(
                f"Order not yet eligible | order_id={order_id} | now={now} | "
                f"next_execution_time={order.next_execution_time}",
                order_id=order_id,
            )

    def _check_control(self, order_id: int, order: Order) -> None:
        controller = self._margin_protocol.current_controller(order.account_scope)
        if controller != order.owner:
            raise InvalidOrder(
                f"Account control diverged from order owner | order_id={order_id} | "
                f"owner={order.owner} | controller={controller}",
                order_id=order_id,
            )


__all__ = [
    "compute_amount_in",
    "compute_min_amount_out",
    "ExecutionValidator",
]
