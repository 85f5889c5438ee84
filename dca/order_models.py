"""
============================================================================
Project Margin DCA v1.0.0
Order Models - Recurring Sell Order Data Model
============================================================================

Reliability Level: L6 Critical
Amount Integrity: Token amounts are int values in the token's native unit.
    Decimal is used only when converting to or from human-readable units.

ORDER RECORD:
    owner                 identity allowed to cancel at submission time
    account_scope         (margin protocol instance, margin account)
    token_in / token_out  traded pair
    amount_per_interval   size of token_in targeted per execution
    interval              seconds between executions
    next_execution_time   earliest unix time of the next execution
    total_executions      original schedule length (informational)
    executions_left       remaining executions, strictly decreasing

INVARIANTS:
    - An order with executions_left == 0 never exists in the store
    - next_execution_time only ever grows, by exactly interval
    - The empty sentinel (all-zero record) stands in for "no record"

============================================================================
"""

from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation, ROUND_DOWN, localcontext
from typing import Any, Dict, List, Union

from protocol.accounts import AccountScope, AddCollateral, Instruction, WithdrawCollateral


# =============================================================================
# Constants
# =============================================================================

# Enough significant digits for 256-bit token amounts
AMOUNT_PRECISION = 80

# Units left behind in the scoped account on every execution
BALANCE_FLOOR = 1

# Extra allowance granted to the margin protocol to absorb rounding
APPROVAL_MARGIN = 1


# =============================================================================
# Order
# =============================================================================

@dataclass(frozen=True)
class Order:
    """
    Recurring sell order record.

    Instances are immutable; schedule advancement produces a new record via
    advanced().

    Reliability Level: L6 Critical
    """
    owner: str
    account_scope: AccountScope
    token_in: str
    token_out: str
    amount_per_interval: int
    interval: int
    next_execution_time: int
    total_executions: int
    executions_left: int

    @classmethod
    def empty(cls) -> "Order":
        """Return the all-zero sentinel read back for missing records."""
        return cls(
            owner="",
            account_scope=AccountScope(),
            token_in="",
            token_out="",
            amount_per_interval=0,
            interval=0,
            next_execution_time=0,
            total_executions=0,
            executions_left=0,
        )

    def is_empty(self) -> bool:
        return self.account_scope.is_empty()

    def advanced(self) -> "Order":
        """
        Return the record after one successful execution.

        executions_left drops by one and next_execution_time moves forward by
        exactly one interval from its previous value, never from "now".
        """
        return replace(
            self,
            executions_left=self.executions_left - 1,
            next_execution_time=self.next_execution_time + self.interval,
        )

    def is_exhausted(self) -> bool:
        return self.executions_left == 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/persistence."""
        return {
            "owner": self.owner,
            "account_scope": self.account_scope.to_dict(),
            "token_in": self.token_in,
            "token_out": self.token_out,
            "amount_per_interval": str(self.amount_per_interval),
            "interval": self.interval,
            "next_execution_time": self.next_execution_time,
            "total_executions": self.total_executions,
            "executions_left": self.executions_left,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Order":
        scope = data.get("account_scope") or {}
        return cls(
            owner=data["owner"],
            account_scope=AccountScope(
                protocol=scope.get("protocol", ""),
                account=scope.get("account", ""),
            ),
            token_in=data["token_in"],
            token_out=data["token_out"],
            amount_per_interval=int(data["amount_per_interval"]),
            interval=int(data["interval"]),
            next_execution_time=int(data["next_execution_time"]),
            total_executions=int(data["total_executions"]),
            executions_left=int(data["executions_left"]),
        )


# =============================================================================
# Execution Results
# =============================================================================

@dataclass(frozen=True)
class ExecutionPlan:
    """
    Outcome of a successful eligibility check: what this execution will trade.

    Reliability Level: L6 Critical
    Side Effects: None (data container)
    """
    order_id: int
    order: Order
    balance: int
    amount_in: int
    rate_per_unit: int
    one_unit: int
    min_amount_out: int

    def settlement_instructions(self, executor: str) -> List[Instruction]:
        """
        Build the ordered settlement batch for this plan.

        Deposit comes first: the new collateral is what keeps the account
        solvent through the withdrawal.
        """
        return [
            AddCollateral(token=self.order.token_out, amount=self.min_amount_out),
            WithdrawCollateral(
                token=self.order.token_in,
                amount=self.amount_in,
                recipient=executor,
            ),
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "balance": str(self.balance),
            "amount_in": str(self.amount_in),
            "rate_per_unit": str(self.rate_per_unit),
            "one_unit": str(self.one_unit),
            "min_amount_out": str(self.min_amount_out),
        }


@dataclass(frozen=True)
class ExecutionReceipt:
    """Record of a completed execution returned to the executor."""
    order_id: int
    executor: str
    amount_in: int
    min_amount_out: int
    executions_left: int
    next_execution_time: int
    destroyed: bool
    correlation_id: str
    instructions: List[Instruction] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "executor": self.executor,
            "amount_in": str(self.amount_in),
            "min_amount_out": str(self.min_amount_out),
            "executions_left": self.executions_left,
            "next_execution_time": self.next_execution_time,
            "destroyed": self.destroyed,
            "correlation_id": self.correlation_id,
        }


# =============================================================================
# Amount Conversion
# =============================================================================

def to_display_amount(amount: int, decimals: int) -> Decimal:
    """
    Convert a native-unit amount to whole token units.

    Args:
        amount: Amount in the token's smallest unit
        decimals: Token decimal precision

    Returns:
        Decimal with exactly `decimals` fractional digits
    """
    with localcontext() as ctx:
        ctx.prec = AMOUNT_PRECISION
        return Decimal(amount).scaleb(-decimals)


def to_native_amount(value: Union[str, int, Decimal], decimals: int) -> int:
    """
    Convert a whole-unit amount to the token's smallest unit.

    Fractions below one native unit are truncated (ROUND_DOWN) so a converted
    amount never exceeds what the user wrote.

    Raises:
        ValueError: If value is not a finite number
    """
    try:
        decimal_value = Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError) as e:
        raise ValueError(f"Cannot convert '{value}' to a token amount") from e

    if not decimal_value.is_finite():
        raise ValueError(f"Cannot convert '{value}' to a token amount")

    with localcontext() as ctx:
        ctx.prec = AMOUNT_PRECISION
        scaled = decimal_value.scaleb(decimals).quantize(Decimal(1), rounding=ROUND_DOWN)
    return int(scaled)


__all__ = [
    "BALANCE_FLOOR",
    "APPROVAL_MARGIN",
    "AccountScope",
    "Order",
    "AddCollateral",
    "WithdrawCollateral",
    "Instruction",
    "ExecutionPlan",
    "ExecutionReceipt",
    "to_display_amount",
    "to_native_amount",
]
