"""
============================================================================
Project Margin DCA v1.0.0
Simulated Collaborators - In-Process Margin Protocol, Ledger, Oracle, Host
============================================================================

Reliability Level: L6 Critical
Side Effects: In-memory state only

SIMULATION SCOPE:
    These implementations honor the collaborator contracts closely enough to
    exercise every coordinator path without a live protocol:

    - SimulatedTokenLedger: balances, allowances and decimals per token
    - FixedRateOracle: operator-set conversion rates per token pair
    - SimulatedMarginProtocol: accounts with controller, debt and liquidation
      threshold; bot permissions; ordered, all-or-nothing run_batch with a
      solvency check after every withdrawal
    - SimulatedEnvironment: settable clock plus snapshot/restore atomic unit

    They back the unit tests and the keeper's dry-run mode.

============================================================================
"""

from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Dict, Iterator, List, Optional, Sequence, Set, Tuple
import logging

from dca.order_errors import (
    BotNotPermitted,
    InsufficientAllowance,
    InsufficientBalance,
    PriceUnavailable,
    SolvencyCheckFailed,
    UnknownAccount,
)
from protocol.accounts import AccountScope, AddCollateral, Instruction, WithdrawCollateral
from protocol.interfaces import (
    AtomicParticipant,
    ExecutionEnvironment,
    MarginProtocol,
    PriceOracle,
    TokenLedger,
)

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_DECIMALS = 18

# Liquidation thresholds are expressed in basis points
BPS_DENOMINATOR = 10_000


# =============================================================================
# Token Ledger
# =============================================================================

class SimulatedTokenLedger(TokenLedger, AtomicParticipant):
    """
    In-memory fungible token ledger.

    Unregistered tokens report DEFAULT_DECIMALS.
    """

    def __init__(self) -> None:
        self._balances: Dict[Tuple[str, str], int] = {}
        self._allowances: Dict[Tuple[str, str, str], int] = {}
        self._decimals: Dict[str, int] = {}

    def register_token(self, token: str, decimals: int) -> None:
        if decimals < 0:
            raise ValueError(f"decimals must be non-negative, got: {decimals}")
        self._decimals[token] = decimals

    def decimals(self, token: str) -> int:
        return self._decimals.get(token, DEFAULT_DECIMALS)

    def balance_of(self, holder: str, token: str) -> int:
        return self._balances.get((token, holder), 0)

    def holdings(self, holder: str) -> Dict[str, int]:
        """Every non-zero balance held by holder, keyed by token."""
        return {
            token: amount
            for (token, owner), amount in self._balances.items()
            if owner == holder and amount > 0
        }

    def mint(self, token: str, holder: str, amount: int) -> None:
        if amount < 0:
            raise ValueError(f"mint amount must be non-negative, got: {amount}")
        self._balances[(token, holder)] = self.balance_of(holder, token) + amount

    def burn(self, token: str, holder: str, amount: int) -> None:
        self._debit(token, holder, amount)

    def transfer(self, token: str, sender: str, recipient: str, amount: int) -> None:
        """Move tokens on the sender's own authority."""
        self.move(token, sender, recipient, amount)

    def approve(self, token: str, owner: str, spender: str, amount: int) -> None:
        if amount < 0:
            raise ValueError(f"allowance must be non-negative, got: {amount}")
        self._allowances[(token, owner, spender)] = amount

    def allowance(self, token: str, owner: str, spender: str) -> int:
        return self._allowances.get((token, owner, spender), 0)

    def transfer_from(
        self,
        token: str,
        spender: str,
        sender: str,
        recipient: str,
        amount: int,
    ) -> None:
        current = self.allowance(token, sender, spender)
        if current < amount:
            raise InsufficientAllowance(
                f"Allowance too low | token={token} | owner={sender} | "
                f"spender={spender} | allowance={current} | requested={amount}"
            )
        self.move(token, sender, recipient, amount)
        self._allowances[(token, sender, spender)] = current - amount

    def move(self, token: str, sender: str, recipient: str, amount: int) -> None:
        """Ledger-internal transfer without allowance checks."""
        if amount < 0:
            raise ValueError(f"transfer amount must be non-negative, got: {amount}")
        self._debit(token, sender, amount)
        self._balances[(token, recipient)] = self.balance_of(recipient, token) + amount

    def _debit(self, token: str, holder: str, amount: int) -> None:
        balance = self.balance_of(holder, token)
        if balance < amount:
            raise InsufficientBalance(
                f"Balance too low | token={token} | holder={holder} | "
                f"balance={balance} | requested={amount}"
            )
        self._balances[(token, holder)] = balance - amount

    def snapshot(self) -> object:
        return (dict(self._balances), dict(self._allowances), dict(self._decimals))

    def restore(self, state: object) -> None:
        balances, allowances, decimals = state  # type: ignore[misc]
        self._balances = dict(balances)
        self._allowances = dict(allowances)
        self._decimals = dict(decimals)


# =============================================================================
# Price Oracle
# =============================================================================

class FixedRateOracle(PriceOracle, AtomicParticipant):
    """
    Conversion service with operator-set rates.

    A rate is the amount of token_out (native units) worth one whole unit of
    token_in, i.e. 10 ** decimals(token_in) native units.
    """

    def __init__(self, ledger: TokenLedger) -> None:
        self._ledger = ledger
        self._rates: Dict[Tuple[str, str], int] = {}

    def set_rate(self, token_in: str, token_out: str, amount_out_per_unit: int) -> None:
        if amount_out_per_unit < 0:
            raise ValueError(f"rate must be non-negative, got: {amount_out_per_unit}")
        self._rates[(token_in, token_out)] = amount_out_per_unit

    def convert(self, amount: int, token_in: str, token_out: str) -> int:
        if token_in == token_out:
            return amount
        rate = self._rates.get((token_in, token_out))
        if rate is None:
            raise PriceUnavailable(f"No rate for {token_in} -> {token_out}")
        return amount * rate // (10 ** self._ledger.decimals(token_in))

    def snapshot(self) -> object:
        return dict(self._rates)

    def restore(self, state: object) -> None:
        self._rates = dict(state)  # type: ignore[call-overload]


# =============================================================================
# Margin Protocol
# =============================================================================

@dataclass(frozen=True)
class MarginAccount:
    """
    Simulated margin account.

    debt is denominated in the protocol's underlying token; the account stays
    solvent while collateral value * liquidation_threshold_bps / 10000 >= debt.
    """
    account: str
    controller: str
    debt: int = 0
    liquidation_threshold_bps: int = BPS_DENOMINATOR


class SimulatedMarginProtocol(MarginProtocol, AtomicParticipant):
    """
    In-process margin protocol with permissioned, atomic batch settlement.
    """

    def __init__(
        self,
        protocol_id: str,
        ledger: SimulatedTokenLedger,
        oracle: PriceOracle,
        underlying: str,
    ) -> None:
        self._protocol_id = protocol_id
        self._ledger = ledger
        self._oracle = oracle
        self._underlying = underlying
        self._accounts: Dict[str, MarginAccount] = {}
        self._permissions: Set[Tuple[str, str]] = set()

        logger.info(
            f"[DCA-SIM] Margin protocol initialized | "
            f"protocol={protocol_id} | underlying={underlying}"
        )

    @property
    def address(self) -> str:
        return self._protocol_id

    # -------------------------------------------------------------------------
    # Account management
    # -------------------------------------------------------------------------

    def open_account(
        self,
        account: str,
        controller: str,
        debt: int = 0,
        liquidation_threshold_bps: int = BPS_DENOMINATOR,
    ) -> AccountScope:
        if account in self._accounts:
            raise ValueError(f"account already open: {account}")
        self._accounts[account] = MarginAccount(
            account=account,
            controller=controller,
            debt=debt,
            liquidation_threshold_bps=liquidation_threshold_bps,
        )
        return AccountScope(protocol=self._protocol_id, account=account)

    def get_account(self, scope: AccountScope) -> MarginAccount:
        if scope.protocol != self._protocol_id or scope.account not in self._accounts:
            raise UnknownAccount(
                f"Unknown margin account | protocol={scope.protocol} | "
                f"account={scope.account}"
            )
        return self._accounts[scope.account]

    def transfer_account(self, scope: AccountScope, new_controller: str) -> None:
        """Hand control of an account to someone else; permissions are dropped."""
        account = self.get_account(scope)
        self._accounts[scope.account] = replace(account, controller=new_controller)
        self._permissions = {
            (acct, bot) for acct, bot in self._permissions if acct != scope.account
        }

    def set_debt(self, scope: AccountScope, debt: int) -> None:
        account = self.get_account(scope)
        self._accounts[scope.account] = replace(account, debt=debt)

    def grant_bot_permission(self, scope: AccountScope, bot: str, caller: str) -> None:
        account = self.get_account(scope)
        if caller != account.controller:
            raise BotNotPermitted(
                f"Only the controller may grant permissions | "
                f"account={scope.account} | caller={caller}"
            )
        self._permissions.add((scope.account, bot))

    def revoke_bot_permission(self, scope: AccountScope, bot: str, caller: str) -> None:
        account = self.get_account(scope)
        if caller != account.controller:
            raise BotNotPermitted(
                f"Only the controller may revoke permissions | "
                f"account={scope.account} | caller={caller}"
            )
        self._permissions.discard((scope.account, bot))

    def has_bot_permission(self, scope: AccountScope, bot: str) -> bool:
        return (scope.account, bot) in self._permissions

    # -------------------------------------------------------------------------
    # MarginProtocol contract
    # -------------------------------------------------------------------------

    def current_controller(self, scope: AccountScope) -> str:
        """Unknown accounts have no controller and report the empty identity."""
        if scope.protocol != self._protocol_id:
            return ""
        account = self._accounts.get(scope.account)
        return account.controller if account is not None else ""

    def run_batch(
        self,
        scope: AccountScope,
        instructions: Sequence[Instruction],
        caller: str,
    ) -> None:
        account = self.get_account(scope)
        if not self.has_bot_permission(scope, caller):
            raise BotNotPermitted(
                f"Caller holds no bot permission | account={scope.account} | "
                f"caller={caller}"
            )

        ledger_state = self._ledger.snapshot()
        try:
            for instruction in instructions:
                self._apply(account, instruction, caller)
        except Exception:
            self._ledger.restore(ledger_state)
            raise

        logger.debug(
            f"[DCA-SIM] Batch applied | account={scope.account} | "
            f"caller={caller} | instructions={len(instructions)}"
        )

    def _apply(self, account: MarginAccount, instruction: Instruction, caller: str) -> None:
        if isinstance(instruction, AddCollateral):
            self._ledger.transfer_from(
                instruction.token,
                self._protocol_id,
                caller,
                account.account,
                instruction.amount,
            )
        elif isinstance(instruction, WithdrawCollateral):
            self._ledger.move(
                instruction.token,
                account.account,
                instruction.recipient,
                instruction.amount,
            )
            self._check_solvency(account)
        else:
            raise TypeError(f"Unsupported instruction: {instruction!r}")

    def collateral_value(self, account: MarginAccount) -> int:
        total = 0
        for token, amount in self._ledger.holdings(account.account).items():
            total += self._oracle.convert(amount, token, self._underlying)
        return total

    def _check_solvency(self, account: MarginAccount) -> None:
        if account.debt == 0:
            return
        weighted = (
            self.collateral_value(account)
            * account.liquidation_threshold_bps
            // BPS_DENOMINATOR
        )
        if weighted < account.debt:
            raise SolvencyCheckFailed(
                f"Account would become undercollateralized | "
                f"account={account.account} | weighted_collateral={weighted} | "
                f"debt={account.debt}"
            )

    def snapshot(self) -> object:
        return (dict(self._accounts), set(self._permissions))

    def restore(self, state: object) -> None:
        accounts, permissions = state  # type: ignore[misc]
        self._accounts = dict(accounts)
        self._permissions = set(permissions)


# =============================================================================
# Host Environment
# =============================================================================

class SimulatedEnvironment(ExecutionEnvironment):
    """
    Settable clock plus an all-or-nothing unit of work.

    atomic() snapshots every registered participant on entry and restores all
    of them if the block raises.
    """

    def __init__(
        self,
        start_time: int = 0,
        participants: Optional[List[AtomicParticipant]] = None,
    ) -> None:
        self._now = start_time
        self._participants: List[AtomicParticipant] = list(participants or [])

    def register(self, participant: AtomicParticipant) -> None:
        if participant not in self._participants:
            self._participants.append(participant)

    def now(self) -> int:
        return self._now

    def set_time(self, timestamp: int) -> None:
        self._now = timestamp

    def advance(self, seconds: int) -> int:
        self._now += seconds
        return self._now

    @contextmanager
    def atomic(self) -> Iterator[None]:
        states = [(p, p.snapshot()) for p in self._participants]
        try:
            yield
        except BaseException:
            for participant, state in reversed(states):
                participant.restore(state)
            logger.warning(
                f"[DCA-SIM] Atomic unit rolled back | participants={len(states)}"
            )
            raise


__all__ = [
    "DEFAULT_DECIMALS",
    "BPS_DENOMINATOR",
    "SimulatedTokenLedger",
    "FixedRateOracle",
    "MarginAccount",
    "SimulatedMarginProtocol",
    "SimulatedEnvironment",
]
