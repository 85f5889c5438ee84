"""
============================================================================
Project Margin DCA v1.0.0
Account Types - Margin Account Scope and Batch Instructions
============================================================================

Reliability Level: L6 Critical
Side Effects: None (value types)

The values exchanged with a margin protocol: which account an order acts
upon, and the instructions a batch applies to it in order. This module
imports nothing from the order core so the collaborator contracts can be
loaded on their own.

============================================================================
"""

from dataclasses import dataclass
from typing import Dict, Union


# =============================================================================
# Account Scope
# =============================================================================

@dataclass(frozen=True)
class AccountScope:
    """
    The (margin protocol instance, margin account) pair an order acts upon.

    An empty scope marks a nonexistent or destroyed order.
    """
    protocol: str = ""
    account: str = ""

    def is_empty(self) -> bool:
        return not self.account

    def to_dict(self) -> Dict[str, str]:
        return {"protocol": self.protocol, "account": self.account}


# =============================================================================
# Batch Instructions
# =============================================================================

@dataclass(frozen=True)
class AddCollateral:
    """Deposit token from the batch caller into the scoped account."""
    token: str
    amount: int


@dataclass(frozen=True)
class WithdrawCollateral:
    """Withdraw token from the scoped account to recipient."""
    token: str
    amount: int
    recipient: str


Instruction = Union[AddCollateral, WithdrawCollateral]


__all__ = ["AccountScope", "AddCollateral", "WithdrawCollateral", "Instruction"]
