"""
============================================================================
Project Margin DCA v1.0.0
Sandbox - Fully Wired Coordinator over Simulated Collaborators
============================================================================

Reliability Level: L6 Critical
Side Effects: In-memory state only

Builds the ledger, oracle, margin protocol, environment and coordinator in
one call, with every atomic participant registered so a failed execution
rolls back balances, allowances, permissions, the id counter and records
together. Used by the keeper's demo mode and by the test suite.

============================================================================
"""

from dataclasses import dataclass
from typing import Optional

from dca.order_coordinator import OrderCoordinator
from dca.order_events import OrderEventLog
from dca.order_id_counter import InMemoryOrderIdCounter, OrderIdCounter
from protocol.accounts import AccountScope
from dca.order_record_store import InMemoryOrderRecordStore, OrderRecordStore
from protocol.interfaces import AtomicParticipant
from protocol.simulated import (
    BPS_DENOMINATOR,
    FixedRateOracle,
    SimulatedEnvironment,
    SimulatedMarginProtocol,
    SimulatedTokenLedger,
)


DEFAULT_COORDINATOR_ADDRESS = "dca-coordinator"
DEFAULT_PROTOCOL_ID = "margin-protocol"
DEFAULT_UNDERLYING = "USDC"


@dataclass
class Sandbox:
    ledger: SimulatedTokenLedger
    oracle: FixedRateOracle
    margin_protocol: SimulatedMarginProtocol
    environment: SimulatedEnvironment
    store: OrderRecordStore
    id_counter: OrderIdCounter
    event_log: OrderEventLog
    coordinator: OrderCoordinator


def build_sandbox(
    coordinator_address: str = DEFAULT_COORDINATOR_ADDRESS,
    protocol_id: str = DEFAULT_PROTOCOL_ID,
    underlying: str = DEFAULT_UNDERLYING,
    start_time: int = 0,
    store: Optional[OrderRecordStore] = None,
    id_counter: Optional[OrderIdCounter] = None,
) -> Sandbox:
    """
    Wire a coordinator over fresh simulated collaborators.

    Args:
        coordinator_address: Identity of the coordinator
        protocol_id: Identity of the simulated margin protocol
        underlying: Token margin account debt is denominated in
        start_time: Initial clock value
        store: Record store to use (default: in-memory)
        id_counter: Id counter to use (default: in-memory from 0)
    """
    ledger = SimulatedTokenLedger()
    oracle = FixedRateOracle(ledger)
    margin_protocol = SimulatedMarginProtocol(protocol_id, ledger, oracle, underlying)
    environment = SimulatedEnvironment(
        start_time=start_time,
        participants=[ledger, oracle, margin_protocol],
    )

    if store is None:
        store = InMemoryOrderRecordStore(coordinator_address)
    if id_counter is None:
        id_counter = InMemoryOrderIdCounter()
    for participant in (store, id_counter):
        if isinstance(participant, AtomicParticipant):
            environment.register(participant)

    event_log = OrderEventLog()
    coordinator = OrderCoordinator(
        address=coordinator_address,
        store=store,
        margin_protocol=margin_protocol,
        token_ledger=ledger,
        price_oracle=oracle,
        environment=environment,
        id_counter=id_counter,
        event_log=event_log,
    )

    return Sandbox(
        ledger=ledger,
        oracle=oracle,
        margin_protocol=margin_protocol,
        environment=environment,
        store=store,
        id_counter=id_counter,
        event_log=event_log,
        coordinator=coordinator,
    )


def open_funded_account(
    sandbox: Sandbox,
    account: str,
    borrower: str,
    token: str,
    amount: int,
    debt: int = 0,
    liquidation_threshold_bps: int = BPS_DENOMINATOR,
) -> AccountScope:
    """
    Open a margin account controlled by borrower, credit it with amount of
    token and grant the coordinator bot permission on it.
    """
    scope = sandbox.margin_protocol.open_account(
        account, borrower, debt=debt,
        liquidation_threshold_bps=liquidation_threshold_bps,
    )
    sandbox.ledger.mint(token, account, amount)
    sandbox.margin_protocol.grant_bot_permission(
        scope, sandbox.coordinator.address, caller=borrower
    )
    return scope


__all__ = [
    "DEFAULT_COORDINATOR_ADDRESS",
    "DEFAULT_PROTOCOL_ID",
    "DEFAULT_UNDERLYING",
    "Sandbox",
    "build_sandbox",
    "open_funded_account",
]
