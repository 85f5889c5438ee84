"""
============================================================================
Project Margin DCA v1.0.0
Order Coordinator - Recurring Sell Order Lifecycle Orchestration
============================================================================

Reliability Level: L6 Critical
Input Constraints: Explicit caller identity on every entry point
Side Effects: Record store writes, token transfers, margin protocol batches,
              lifecycle events, Prometheus metrics

LIFECYCLE:
    submit   user      -> validate control + schedule -> allocate id -> create
    cancel   holder    -> destroy
    execute  anyone    -> validate -> pull proceeds from executor
                       -> run_batch[deposit token_out, withdraw token_in]
                       -> advance schedule -> update or destroy

ATOMICITY:
    Every mutating step of submit, cancel and execute runs inside the host
    environment's atomic unit. A failure anywhere leaves balances,
    allowances, the id counter and the record exactly as they were.

AUTHORIZATION:
    submit  caller == order.owner == controller(scope)
    cancel  caller == current holder of the record (not order.owner)
    execute no check; eligibility is re-derived from fresh state

ERROR CODES:
    - DCA-001: CallerNotBorrower
    - DCA-002..006: Execution preconditions (see execution_validator)
    - DCA-007: InvalidOrderParameters
    - SET-xxx: Settlement collaborator failures, propagated unchanged

============================================================================
"""

from typing import List, Optional
import logging
import uuid

from sqlalchemy.engine import Engine

from dca.coordinator_config import CoordinatorConfig
from dca.execution_validator import ExecutionValidator
from dca.order_errors import (
    CallerNotBorrower,
    InvalidOrderParameters,
    OrderError,
    SettlementError,
)
from dca.order_events import OrderEvent, OrderEventLog, OrderEventType
from dca.order_id_counter import InMemoryOrderIdCounter, OrderIdCounter
from dca.order_models import (
    APPROVAL_MARGIN,
    ExecutionPlan,
    ExecutionReceipt,
    Order,
)
from dca.order_record_store import InMemoryOrderRecordStore, OrderRecordStore
from dca.sql_order_record_store import SqlOrderIdCounter, SqlOrderRecordStore
from infra.database import create_store_engine
from infra.metrics import (
    record_execution,
    record_execution_rejected,
    record_order_cancelled,
    record_order_submitted,
)
from protocol.interfaces import (
    AtomicParticipant,
    ExecutionEnvironment,
    MarginProtocol,
    PriceOracle,
    TokenLedger,
)

# Configure module logger
logger = logging.getLogger(__name__)


class OrderCoordinator:
    """
    Sole mutator of the order record store and owner of the id counter.

    Reliability Level: L6 Critical
    """

    def __init__(
        self,
        address: str,
        store: OrderRecordStore,
        margin_protocol: MarginProtocol,
        token_ledger: TokenLedger,
        price_oracle: PriceOracle,
        environment: ExecutionEnvironment,
        id_counter: Optional[OrderIdCounter] = None,
        event_log: Optional[OrderEventLog] = None,
    ) -> None:
        """
        Initialize the coordinator.

        Args:
            address: Identity the coordinator acts as
            store: Record store whose authorized mutator is `address`
            margin_protocol: Margin protocol hosting the scoped accounts
            token_ledger: Token balance/transfer/approval primitives
            price_oracle: Conversion service
            environment: Clock and atomic unit
            id_counter: Identifier source (default: fresh counter at 0)
            event_log: Lifecycle event sink (default: private log)

        Raises:
            ValueError: If the store does not accept this coordinator
        """
        if store.authorized_mutator != address:
            raise ValueError(
                f"Store mutator {store.authorized_mutator} does not match "
                f"coordinator address {address}"
            )

        self._address = address
        self._store = store
        self._margin_protocol = margin_protocol
        self._token_ledger = token_ledger
        self._environment = environment
        self._id_counter = id_counter if id_counter is not None else InMemoryOrderIdCounter()
        self._event_log = event_log if event_log is not None else OrderEventLog()
        self._validator = ExecutionValidator(margin_protocol, token_ledger, price_oracle)

        logger.info(
            f"[DCA-COORD] Coordinator initialized | address={address} | "
            f"margin_protocol={margin_protocol.address} | "
            f"next_order_id={self._id_counter.peek()}"
        )

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def address(self) -> str:
        return self._address

    @property
    def store(self) -> OrderRecordStore:
        return self._store

    @property
    def event_log(self) -> OrderEventLog:
        return self._event_log

    @property
    def next_order_id(self) -> int:
        return self._id_counter.peek()

    # -------------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------------

    def submit(self, order: Order, caller: str, correlation_id: Optional[str] = None) -> int:
        """
        Register a recurring order and return its identifier.

        Raises:
            CallerNotBorrower: caller is not order.owner, or order.owner does
                not control order.account_scope
            InvalidOrderParameters: schedule cannot produce a valid record
        """
        if correlation_id is None:
            correlation_id = str(uuid.uuid4())

        # Unknown accounts report the empty controller, which controls nothing
        controller = self._margin_protocol.current_controller(order.account_scope)
        if not controller or caller != order.owner or controller != order.owner:
            logger.warning(
                f"[{CallerNotBorrower.error_code}] Submission rejected | "
                f"caller={caller} | owner={order.owner} | controller={controller} | "
                f"correlation_id={correlation_id}"
            )
            raise CallerNotBorrower(
                f"Caller does not control the account | caller={caller} | "
                f"owner={order.owner} | controller={controller}"
            )

        self._check_parameters(order, correlation_id)

        with self._environment.atomic():
            order_id = self._id_counter.advance()
            self._store.create(caller, order_id, order, caller=self._address)

        self._emit(OrderEventType.CREATED, caller, order_id, correlation_id)
        record_order_submitted(correlation_id)

        logger.info(
            f"[DCA-COORD] Order submitted | order_id={order_id} | owner={caller} | "
            f"account={order.account_scope.account} | "
            f"pair={order.token_in}->{order.token_out} | "
            f"amount_per_interval={order.amount_per_interval} | "
            f"interval={order.interval} | executions_left={order.executions_left} | "
            f"correlation_id={correlation_id}"
        )
        return order_id

    def _check_parameters(self, order: Order, correlation_id: str) -> None:
        problems: List[str] = []
        if order.account_scope.is_empty():
            problems.append("account_scope is empty")
        if not order.token_in or not order.token_out:
            problems.append("token pair is incomplete")
        elif order.token_in == order.token_out:
            problems.append("token_in and token_out must differ")
        if order.amount_per_interval <= 0:
            problems.append(f"amount_per_interval must be positive, got {order.amount_per_interval}")
        if order.interval <= 0:
            problems.append(f"interval must be positive, got {order.interval}")
        if order.next_execution_time < 0:
            problems.append(f"next_execution_time must be non-negative, got {order.next_execution_time}")
        if order.executions_left <= 0:
            problems.append(f"executions_left must be positive, got {order.executions_left}")
        if order.total_executions < order.executions_left:
            problems.append(
                f"total_executions {order.total_executions} is below "
                f"executions_left {order.executions_left}"
            )

        if problems:
            logger.warning(
                f"[{InvalidOrderParameters.error_code}] Submission rejected | "
                f"owner={order.owner} | problems={'; '.join(problems)} | "
                f"correlation_id={correlation_id}"
            )
            raise InvalidOrderParameters(f"Invalid order: {'; '.join(problems)}")

    # -------------------------------------------------------------------------
    # Cancellation
    # -------------------------------------------------------------------------

    def cancel(self, order_id: int, caller: str, correlation_id: Optional[str] = None) -> None:
        """
        Destroy an order on behalf of its current holder.

        Raises:
            CallerNotBorrower: caller does not hold the record (including
                when no record exists)
        """
        if correlation_id is None:
            correlation_id = str(uuid.uuid4())

        holder = self._store.owner_of(order_id)
        if holder is None or holder != caller:
            logger.warning(
                f"[{CallerNotBorrower.error_code}] Cancellation rejected | "
                f"order_id={order_id} | caller={caller} | holder={holder} | "
                f"correlation_id={correlation_id}"
            )
            raise CallerNotBorrower(
                f"Caller does not hold the order | order_id={order_id} | caller={caller}",
                order_id=order_id,
            )

        with self._environment.atomic():
            self._store.destroy(order_id, caller=self._address)

        self._emit(OrderEventType.CANCELLED, caller, order_id, correlation_id)
        record_order_cancelled(correlation_id)

        logger.info(
            f"[DCA-COORD] Order cancelled | order_id={order_id} | holder={caller} | "
            f"correlation_id={correlation_id}"
        )

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def preview_execution(self, order_id: int, correlation_id: Optional[str] = None) -> ExecutionPlan:
        """
        Run every execution check without settling anything.

        Raises:
            The same OrderError subclasses execute() would raise right now
        """
        order = self._store.read(order_id)
        return self._validator.validate(
            order_id, order, self._environment.now(), correlation_id
        )

    def execute(self, order_id: int, executor: str, correlation_id: Optional[str] = None) -> ExecutionReceipt:
        """
        Perform one scheduled execution of an order.

        The executor must have approved the coordinator to pull
        min_amount_out of token_out beforehand. In return the executor
        receives amount_in of token_in from the scoped account.

        Args:
            order_id: Order to execute
            executor: Identity triggering the execution and receiving proceeds
            correlation_id: Optional tracking ID

        Returns:
            ExecutionReceipt describing the settled trade

        Raises:
            OrderError: An eligibility check failed (nothing changed)
            SettlementError: Pricing failed (nothing changed), or transfer or
                batch settlement failed (rolled back)
        """
        if correlation_id is None:
            correlation_id = str(uuid.uuid4())

        order = self._store.read(order_id)
        try:
            plan = self._validator.validate(
                order_id, order, self._environment.now(), correlation_id
            )
        except OrderError as e:
            record_execution_rejected(e.error_code, correlation_id)
            raise
        except SettlementError as e:
            logger.warning(
                f"[{e.error_code}] Execution could not be priced | "
                f"order_id={order_id} | executor={executor} | "
                f"pair={order.token_in}->{order.token_out} | "
                f"error={e.message} | correlation_id={correlation_id}"
            )
            record_execution_rejected(e.error_code, correlation_id)
            raise

        instructions = plan.settlement_instructions(executor)
        advanced = order.advanced()

        try:
            with self._environment.atomic():
                self._collect_proceeds(plan, executor)
                self._margin_protocol.run_batch(
                    order.account_scope, instructions, caller=self._address
                )
                if advanced.is_exhausted():
                    self._store.destroy(order_id, caller=self._address)
                else:
                    self._store.update(order_id, advanced, caller=self._address)
        except SettlementError as e:
            logger.error(
                f"[{e.error_code}] Settlement failed, execution rolled back | "
                f"order_id={order_id} | executor={executor} | "
                f"amount_in={plan.amount_in} | min_amount_out={plan.min_amount_out} | "
                f"error={e.message} | correlation_id={correlation_id}"
            )
            record_execution_rejected(e.error_code, correlation_id)
            raise

        self._emit(OrderEventType.EXECUTED, executor, order_id, correlation_id)
        record_execution(
            order.token_in, plan.amount_in, advanced.is_exhausted(), correlation_id
        )

        logger.info(
            f"[DCA-COORD] Order executed | order_id={order_id} | executor={executor} | "
            f"amount_in={plan.amount_in} | min_amount_out={plan.min_amount_out} | "
            f"executions_left={advanced.executions_left} | "
            f"next_execution_time={advanced.next_execution_time} | "
            f"destroyed={advanced.is_exhausted()} | correlation_id={correlation_id}"
        )

        return ExecutionReceipt(
            order_id=order_id,
            executor=executor,
            amount_in=plan.amount_in,
            min_amount_out=plan.min_amount_out,
            executions_left=advanced.executions_left,
            next_execution_time=advanced.next_execution_time,
            destroyed=advanced.is_exhausted(),
            correlation_id=correlation_id,
            instructions=instructions,
        )

    def _collect_proceeds(self, plan: ExecutionPlan, executor: str) -> None:
        """Pull min_amount_out from the executor and let the protocol take it."""
        token_out = plan.order.token_out
        self._token_ledger.transfer_from(
            token_out, self._address, executor, self._address, plan.min_amount_out
        )
        self._token_ledger.approve(
            token_out,
            self._address,
            self._margin_protocol.address,
            plan.min_amount_out + APPROVAL_MARGIN,
        )

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_order(self, order_id: int) -> Order:
        return self._store.read(order_id)

    def order_ids(self) -> List[int]:
        """Issued identifiers whose records still exist, ascending."""
        return [
            order_id for order_id in range(self._id_counter.peek())
            if self._store.exists(order_id)
        ]

    def _emit(self, event_type: OrderEventType, actor: str, order_id: int, correlation_id: str) -> None:
        self._event_log.emit(OrderEvent(
            type=event_type,
            actor=actor,
            order_id=order_id,
            correlation_id=correlation_id,
            timestamp=self._environment.now(),
        ))


# =============================================================================
# Factory Functions
# =============================================================================

def create_order_coordinator(
    config: CoordinatorConfig,
    margin_protocol: MarginProtocol,
    token_ledger: TokenLedger,
    price_oracle: PriceOracle,
    environment: ExecutionEnvironment,
    event_log: Optional[OrderEventLog] = None,
    engine: Optional[Engine] = None,
) -> OrderCoordinator:
    """
    Create a coordinator with the store backend named by config.

    Store-side atomic participants are registered with environment so a
    failed submit hands its id back.

    Args:
        config: Validated coordinator configuration
        engine: Existing engine for the sql backend (default: built from
            config.database_url)
    """
    if config.store_backend == "sql":
        if engine is None:
            engine = create_store_engine(config.database_url)
        store: OrderRecordStore = SqlOrderRecordStore(config.coordinator_address, engine)
        id_counter: OrderIdCounter = SqlOrderIdCounter(engine)
    else:
        store = InMemoryOrderRecordStore(config.coordinator_address)
        id_counter = InMemoryOrderIdCounter()

    for participant in (store, id_counter):
        if isinstance(participant, AtomicParticipant):
            environment.register(participant)

    return OrderCoordinator(
        address=config.coordinator_address,
        store=store,
        margin_protocol=margin_protocol,
        token_ledger=token_ledger,
        price_oracle=price_oracle,
        environment=environment,
        id_counter=id_counter,
        event_log=event_log,
    )


__all__ = ["OrderCoordinator", "create_order_coordinator"]
