"""
Shared fixtures for the Margin DCA test suite.

The default world:
- tokens TKA (sold) and TKB (bought), both 6 decimals
- 1 TKA converts to 2 TKB
- account "acct-alice" controlled by "alice", holding 1,000,000 TKA native
  units, with the coordinator's bot permission granted
- executor "keeper-1" holding 10,000,000 TKB and an open allowance for the
  coordinator
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from typing import Callable

import pytest

from dca.order_models import AccountScope, Order
from protocol.sandbox import Sandbox, build_sandbox, open_funded_account


# =============================================================================
# World Constants
# =============================================================================

START_TIME = 1_700_000_000
DAY = 86_400

TOKEN_IN = "TKA"
TOKEN_OUT = "TKB"
DECIMALS = 6
ONE_UNIT = 10 ** DECIMALS
RATE_PER_UNIT = 2 * ONE_UNIT

BORROWER = "alice"
ACCOUNT = "acct-alice"
ACCOUNT_BALANCE = 1_000_000
EXECUTOR = "keeper-1"
EXECUTOR_BALANCE = 10_000_000


@pytest.fixture(autouse=True)
def clean_env():
    """Strip DCA_* variables so tests never see the developer's shell."""
    saved = {k: v for k, v in os.environ.items() if k.startswith("DCA_")}
    for key in saved:
        del os.environ[key]
    yield
    for key in [k for k in os.environ if k.startswith("DCA_")]:
        del os.environ[key]
    os.environ.update(saved)


@pytest.fixture
def sandbox() -> Sandbox:
    box = build_sandbox(underlying=TOKEN_OUT, start_time=START_TIME)
    box.ledger.register_token(TOKEN_IN, DECIMALS)
    box.ledger.register_token(TOKEN_OUT, DECIMALS)
    box.oracle.set_rate(TOKEN_IN, TOKEN_OUT, RATE_PER_UNIT)
    box.ledger.mint(TOKEN_OUT, EXECUTOR, EXECUTOR_BALANCE)
    box.ledger.approve(TOKEN_OUT, EXECUTOR, box.coordinator.address, EXECUTOR_BALANCE)
    return box


@pytest.fixture
def scope(sandbox: Sandbox) -> AccountScope:
    return open_funded_account(sandbox, ACCOUNT, BORROWER, TOKEN_IN, ACCOUNT_BALANCE)


@pytest.fixture
def make_order(scope: AccountScope) -> Callable[..., Order]:
    """Factory for orders on the default account; keyword args override fields."""
    def _make(**overrides) -> Order:
        fields = dict(
            owner=BORROWER,
            account_scope=scope,
            token_in=TOKEN_IN,
            token_out=TOKEN_OUT,
            amount_per_interval=200_000,
            interval=DAY,
            next_execution_time=START_TIME,
            total_executions=10,
            executions_left=10,
        )
        fields.update(overrides)
        return Order(**fields)
    return _make
