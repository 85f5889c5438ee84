"""
============================================================================
Project Margin DCA v1.0.0
Collaborator Interfaces - Margin Protocol, Price Oracle, Token Ledger, Host
============================================================================

Reliability Level: L6 Critical
Side Effects: None (abstract contracts)

The order coordinator never talks to a concrete protocol. Everything it needs
from the outside world goes through these contracts:

    MarginProtocol        current_controller(), run_batch()
    PriceOracle           convert()
    TokenLedger           balance_of(), transfer_from(), approve(),
                          allowance(), decimals()
    ExecutionEnvironment  now(), atomic(), register()

Implementations used by tests and the keeper's dry-run mode live in
protocol/simulated.py.

============================================================================
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from typing import List, Sequence

from protocol.accounts import AccountScope, Instruction


class MarginProtocol(ABC):
    """Lending protocol that owns the margin accounts orders act upon."""

    @property
    @abstractmethod
    def address(self) -> str:
        """Identity that pulls deposited collateral from the batch caller."""

    @abstractmethod
    def current_controller(self, scope: AccountScope) -> str:
        """Return the identity currently controlling the scoped account."""

    @abstractmethod
    def run_batch(
        self,
        scope: AccountScope,
        instructions: Sequence[Instruction],
        caller: str,
    ) -> None:
        """
        Execute an ordered instruction list against the scoped account.

        The caller must hold a standing permission for the account. The batch
        applies completely or not at all.

        Raises:
            SettlementError: If permission, balance or solvency checks fail
        """


class PriceOracle(ABC):
    """Synchronous, side-effect-free conversion service."""

    @abstractmethod
    def convert(self, amount: int, token_in: str, token_out: str) -> int:
        """Return how much token_out `amount` of token_in is worth."""


class TokenLedger(ABC):
    """Fungible balance, transfer and approval primitives for every token."""

    @abstractmethod
    def balance_of(self, holder: str, token: str) -> int:
        pass

    @abstractmethod
    def transfer_from(
        self,
        token: str,
        spender: str,
        sender: str,
        recipient: str,
        amount: int,
    ) -> None:
        """Move amount from sender to recipient using spender's allowance."""

    @abstractmethod
    def approve(self, token: str, owner: str, spender: str, amount: int) -> None:
        pass

    @abstractmethod
    def allowance(self, token: str, owner: str, spender: str) -> int:
        pass

    @abstractmethod
    def decimals(self, token: str) -> int:
        pass


class ExecutionEnvironment(ABC):
    """
    Host environment: clock plus the all-or-nothing unit of work.

    Every state change made by participants inside atomic() is committed
    together when the block exits normally and discarded when it raises.
    """

    @abstractmethod
    def now(self) -> int:
        """Current unix time in seconds."""

    @abstractmethod
    def atomic(self) -> AbstractContextManager:
        pass

    @abstractmethod
    def register(self, participant: "AtomicParticipant") -> None:
        """Enlist a state holder in every later atomic() unit."""


class AtomicParticipant(ABC):
    """State holder that can be captured and restored by an environment."""

    @abstractmethod
    def snapshot(self) -> object:
        pass

    @abstractmethod
    def restore(self, state: object) -> None:
        pass


__all__: List[str] = [
    "MarginProtocol",
    "PriceOracle",
    "TokenLedger",
    "ExecutionEnvironment",
    "AtomicParticipant",
]
