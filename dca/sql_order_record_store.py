"""
============================================================================
Project Margin DCA v1.0.0
SQL Order Record Store - SQLAlchemy Backend
============================================================================

Reliability Level: L6 Critical
Input Constraints: Engine created by infra.database.create_store_engine
Side Effects: Database reads/writes on order_records, operator_approvals
              and order_id_counter

Authorization rules live in OrderRecordStore; this module only maps the
storage primitives onto SQL. Each primitive runs in its own transaction
(engine.begin()), committed on success and rolled back on error.

Token amounts are stored as decimal strings so arbitrarily large ints
survive the round trip.

============================================================================
"""

from typing import Any, Dict, Optional
import logging

from sqlalchemy import text
from sqlalchemy.engine import Engine

from dca.order_id_counter import OrderIdCounter
from dca.order_models import AccountScope, Order
from dca.order_record_store import OrderRecordStore
from protocol.interfaces import AtomicParticipant
from infra.database import ensure_schema

# Configure module logger
logger = logging.getLogger(__name__)


_SELECT_RECORD = text("""
    SELECT owner, protocol, account, token_in, token_out,
           amount_per_interval, interval_seconds, next_execution_time,
           total_executions, executions_left
    FROM order_records
    WHERE order_id = :order_id
""")

_INSERT_RECORD = text("""
    INSERT INTO order_records (
        order_id, holder, approved, owner, protocol, account,
        token_in, token_out, amount_per_interval, interval_seconds,
        next_execution_time, total_executions, executions_left
    ) VALUES (
        :order_id, :holder, NULL, :owner, :protocol, :account,
        :token_in, :token_out, :amount_per_interval, :interval_seconds,
        :next_execution_time, :total_executions, :executions_left
    )
""")

_UPDATE_RECORD = text("""
    UPDATE order_records
    SET owner = :owner,
        protocol = :protocol,
        account = :account,
        token_in = :token_in,
        token_out = :token_out,
        amount_per_interval = :amount_per_interval,
        interval_seconds = :interval_seconds,
        next_execution_time = :next_execution_time,
        total_executions = :total_executions,
        executions_left = :executions_left
    WHERE order_id = :order_id
""")


def _order_params(order: Order) -> Dict[str, Any]:
    return {
        "owner": order.owner,
        "protocol": order.account_scope.protocol,
        "account": order.account_scope.account,
        "token_in": order.token_in,
        "token_out": order.token_out,
        "amount_per_interval": str(order.amount_per_interval),
        "interval_seconds": order.interval,
        "next_execution_time": order.next_execution_time,
        "total_executions": order.total_executions,
        "executions_left": order.executions_left,
    }


class SqlOrderRecordStore(OrderRecordStore):
    """
    Order record store persisted through SQLAlchemy.

    Reliability Level: L6 Critical
    """

    def __init__(self, authorized_mutator: str, engine: Engine) -> None:
        super().__init__(authorized_mutator)
        self._engine = engine
        ensure_schema(engine)

        logger.info(
            f"[DCA-STORE] SQL store initialized | "
            f"dialect={engine.dialect.name} | "
            f"authorized_mutator={authorized_mutator}"
        )

    def _load(self, order_id: int) -> Optional[Order]:
        with self._engine.connect() as conn:
            row = conn.execute(_SELECT_RECORD, {"order_id": order_id}).fetchone()

        if row is None:
            return None

        return Order(
            owner=row[0],
            account_scope=AccountScope(protocol=row[1], account=row[2]),
            token_in=row[3],
            token_out=row[4],
            amount_per_interval=int(row[5]),
            interval=int(row[6]),
            next_execution_time=int(row[7]),
            total_executions=int(row[8]),
            executions_left=int(row[9]),
        )

    def _load_owner(self, order_id: int) -> Optional[str]:
        with self._engine.connect() as conn:
            row = conn.execute(
                text("SELECT holder FROM order_records WHERE order_id = :order_id"),
                {"order_id": order_id},
            ).fetchone()
        return row[0] if row is not None else None

    def _insert(self, order_id: int, owner: str, order: Order) -> None:
        params = _order_params(order)
        params.update({"order_id": order_id, "holder": owner})
        with self._engine.begin() as conn:
            conn.execute(_INSERT_RECORD, params)

    def _replace(self, order_id: int, order: Order) -> None:
        params = _order_params(order)
        params["order_id"] = order_id
        with self._engine.begin() as conn:
            conn.execute(_UPDATE_RECORD, params)

    def _remove(self, order_id: int) -> None:
        with self._engine.begin() as conn:
            conn.execute(
                text("DELETE FROM order_records WHERE order_id = :order_id"),
                {"order_id": order_id},
            )

    def _store_owner(self, order_id: int, owner: str) -> None:
        with self._engine.begin() as conn:
            conn.execute(
                text("""
                    UPDATE order_records
                    SET holder = :holder, approved = NULL
                    WHERE order_id = :order_id
                """),
                {"order_id": order_id, "holder": owner},
            )

    def _load_approved(self, order_id: int) -> Optional[str]:
        with self._engine.connect() as conn:
            row = conn.execute(
                text("SELECT approved FROM order_records WHERE order_id = :order_id"),
                {"order_id": order_id},
            ).fetchone()
        return row[0] if row is not None else None

    def _store_approved(self, order_id: int, spender: Optional[str]) -> None:
        with self._engine.begin() as conn:
            conn.execute(
                text("UPDATE order_records SET approved = :approved WHERE order_id = :order_id"),
                {"order_id": order_id, "approved": spender},
            )

    def _load_operator(self, owner: str, operator: str) -> bool:
        with self._engine.connect() as conn:
            row = conn.execute(
                text("""
                    SELECT 1 FROM operator_approvals
                    WHERE holder = :holder AND operator = :operator
                """),
                {"holder": owner, "operator": operator},
            ).fetchone()
        return row is not None

    def _store_operator(self, owner: str, operator: str, approved: bool) -> None:
        params = {"holder": owner, "operator": operator}
        with self._engine.begin() as conn:
            conn.execute(
                text("""
                    DELETE FROM operator_approvals
                    WHERE holder = :holder AND operator = :operator
                """),
                params,
            )
            if approved:
                conn.execute(
                    text("""
                        INSERT INTO operator_approvals (holder, operator)
                        VALUES (:holder, :operator)
                    """),
                    params,
                )

    def _count_owned(self, owner: str) -> int:
        with self._engine.connect() as conn:
            row = conn.execute(
                text("SELECT COUNT(*) FROM order_records WHERE holder = :holder"),
                {"holder": owner},
            ).fetchone()
        return int(row[0]) if row is not None else 0



# =============================================================================
# Persisted Id Counter
# =============================================================================

class SqlOrderIdCounter(OrderIdCounter, AtomicParticipant):
    """
    Order id counter persisted in the order_id_counter table.

    Survives restarts so identifiers of destroyed orders are never handed out
    again. As an atomic participant it hands back an id issued inside a
    rolled-back unit, provided no other allocator has advanced past it.
    """

    def __init__(self, engine: Engine, name: str = "orders") -> None:
        self._engine = engine
        self._name = name
        self._last_issued: Optional[int] = None
        ensure_schema(engine)
        with self._engine.begin() as conn:
            row = conn.execute(
                text("SELECT next_value FROM order_id_counter WHERE name = :name"),
                {"name": name},
            ).fetchone()
            if row is None:
                conn.execute(
                    text("INSERT INTO order_id_counter (name, next_value) VALUES (:name, 0)"),
                    {"name": name},
                )

    def peek(self) -> int:
        with self._engine.connect() as conn:
            row = conn.execute(
                text("SELECT next_value FROM order_id_counter WHERE name = :name"),
                {"name": self._name},
            ).fetchone()
        return int(row[0])

    def advance(self) -> int:
        with self._engine.begin() as conn:
            row = conn.execute(
                text("SELECT next_value FROM order_id_counter WHERE name = :name"),
                {"name": self._name},
            ).fetchone()
            current = int(row[0])
            conn.execute(
                text("UPDATE order_id_counter SET next_value = :value WHERE name = :name"),
                {"name": self._name, "value": current + 1},
            )
        self._last_issued = current
        return current

    def snapshot(self) -> object:
        return self._last_issued

    def restore(self, state: object) -> None:
        issued = self._last_issued
        self._last_issued = state  # type: ignore[assignment]
        if issued is None or issued == state:
            return

        with self._engine.begin() as conn:
            result = conn.execute(
                text(
                    "UPDATE order_id_counter SET next_value = :issued "
                    "WHERE name = :name AND next_value = :next"
                ),
                {"name": self._name, "issued": issued, "next": issued + 1},
            )
            returned = result.rowcount == 1
        if returned:
            logger.info(
                f"[DCA-STORE] Order id returned | name={self._name} | order_id={issued}"
            )
        else:
            logger.warning(
                f"[DCA-STORE] Order id not returned, counter moved on | "
                f"name={self._name} | order_id={issued}"
            )


__all__ = ["SqlOrderRecordStore", "SqlOrderIdCounter"]
