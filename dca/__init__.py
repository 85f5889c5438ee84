"""
============================================================================
Project Margin DCA v1.0.0 - Recurring Order Core
============================================================================

Recurring "sell token A for token B" orders against leveraged margin
accounts: record store, coordinator, execution validator and keeper.

Reliability Level: L6 Critical
============================================================================
"""

from dca.order_errors import (
    MarginDcaError,
    OrderError,
    CallerNotBorrower,
    OrderIsCancelled,
    InvalidOrder,
    NotTimeYet,
    NoExecutionsLeft,
    NothingToSell,
    InvalidOrderParameters,
)

from dca.order_models import (
    AccountScope,
    Order,
    AddCollateral,
    WithdrawCollateral,
    ExecutionPlan,
    ExecutionReceipt,
)

from dca.order_record_store import (
    OrderRecordStore,
    InMemoryOrderRecordStore,
)

from dca.execution_validator import (
    ExecutionValidator,
    compute_amount_in,
    compute_min_amount_out,
)

from dca.order_coordinator import (
    OrderCoordinator,
    create_order_coordinator,
)

from dca.order_keeper import (
    OrderKeeper,
    KeeperCandidate,
    KeeperReport,
)

__version__ = "1.0.0"
