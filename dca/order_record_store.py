"""
============================================================================
Project Margin DCA v1.0.0
Order Record Store - Ownership-Gated Order Persistence
============================================================================

Reliability Level: L6 Critical
Input Constraints: Mutations only from the authorized coordinator identity
Side Effects: Writes order records and ownership associations

EXCLUSIVE MUTATOR:
    create / destroy / update accept exactly one caller: the coordinator
    identity fixed at construction. Every mutating entry point checks it.

OWNERSHIP RECORD DISCIPLINE:
    Each stored order is a transferable certificate. The current holder (not
    the owner field baked into the payload) is who may cancel. Holders can
    approve a spender per record or an operator for all their records, and
    any of the three may transfer the record. Transfers never touch the
    order payload.

READS:
    read() never fails; a missing record comes back as Order.empty().

ERROR CODES:
    - STORE-001: Mutation attempted by someone other than the coordinator
    - STORE-002: create() on an id that already has an owner
    - STORE-003: destroy()/update() on an id without an owner
    - STORE-004: transfer/approve without ownership or approval
    - STORE-005: empty recipient or owner identity

============================================================================
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional, Set, Tuple
import logging

from dca.order_errors import (
    InvalidRecipient,
    NotOwnerNorApproved,
    RecordAlreadyExists,
    RecordNotFound,
    UnauthorizedMutator,
)
from dca.order_models import Order
from protocol.interfaces import AtomicParticipant

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Store Base Class
# =============================================================================

class OrderRecordStore(ABC):
    """
    Ownership-gated order record store.

    Subclasses supply the storage primitives; this class owns every
    authorization rule so backends cannot drift apart.

    Reliability Level: L6 Critical
    """

    def __init__(self, authorized_mutator: str) -> None:
        if not authorized_mutator:
            raise ValueError("authorized_mutator must be a non-empty identity")
        self._authorized_mutator = authorized_mutator

    @property
    def authorized_mutator(self) -> str:
        return self._authorized_mutator

    # -------------------------------------------------------------------------
    # Storage primitives
    # -------------------------------------------------------------------------

    @abstractmethod
    def _load(self, order_id: int) -> Optional[Order]:
        pass

    @abstractmethod
    def _load_owner(self, order_id: int) -> Optional[str]:
        pass

    @abstractmethod
    def _insert(self, order_id: int, owner: str, order: Order) -> None:
        pass

    @abstractmethod
    def _replace(self, order_id: int, order: Order) -> None:
        pass

    @abstractmethod
    def _remove(self, order_id: int) -> None:
        """Drop record, owner and single-record approval together."""

    @abstractmethod
    def _store_owner(self, order_id: int, owner: str) -> None:
        """Reassign the holder and clear the single-record approval."""

    @abstractmethod
    def _load_approved(self, order_id: int) -> Optional[str]:
        pass

    @abstractmethod
    def _store_approved(self, order_id: int, spender: Optional[str]) -> None:
        pass

    @abstractmethod
    def _load_operator(self, owner: str, operator: str) -> bool:
        pass

    @abstractmethod
    def _store_operator(self, owner: str, operator: str, approved: bool) -> None:
        pass

    @abstractmethod
    def _count_owned(self, owner: str) -> int:
        pass

    # -------------------------------------------------------------------------
    # Coordinator-only mutations
    # -------------------------------------------------------------------------

    def _require_mutator(self, caller: str, action: str, order_id: int) -> None:
        if caller != self._authorized_mutator:
            logger.error(
                f"[{UnauthorizedMutator.error_code}] Unauthorized store mutation | "
                f"action={action} | order_id={order_id} | caller={caller}"
            )
            raise UnauthorizedMutator(
                f"Only the coordinator may {action} order records | caller={caller}",
                order_id=order_id,
            )

    def create(self, owner: str, order_id: int, order: Order, caller: str) -> None:
        """
        Register a new record under order_id held by owner.

        Raises:
            UnauthorizedMutator: caller is not the coordinator
            InvalidRecipient: owner is empty
            RecordAlreadyExists: order_id already has an owner
        """
        self._require_mutator(caller, "create", order_id)
        if not owner:
            raise InvalidRecipient("Record owner must be non-empty", order_id=order_id)
        if self._load_owner(order_id) is not None:
            raise RecordAlreadyExists(
                f"Order record already exists | order_id={order_id}",
                order_id=order_id,
            )

        self._insert(order_id, owner, order)
        logger.info(f"[DCA-STORE] Record created | order_id={order_id} | owner={owner}")

    def destroy(self, order_id: int, caller: str) -> None:
        """
        Remove a record and its ownership association.

        Raises:
            UnauthorizedMutator: caller is not the coordinator
            RecordNotFound: order_id has no owner
        """
        self._require_mutator(caller, "destroy", order_id)
        if self._load_owner(order_id) is None:
            raise RecordNotFound(
                f"Order record not found | order_id={order_id}", order_id=order_id
            )

        self._remove(order_id)
        logger.info(f"[DCA-STORE] Record destroyed | order_id={order_id}")

    def update(self, order_id: int, order: Order, caller: str) -> None:
        """
        Replace the stored fields of an existing record.

        Raises:
            UnauthorizedMutator: caller is not the coordinator
            RecordNotFound: order_id has no owner
        """
        self._require_mutator(caller, "update", order_id)
        if self._load_owner(order_id) is None:
            raise RecordNotFound(
                f"Order record not found | order_id={order_id}", order_id=order_id
            )

        self._replace(order_id, order)
        logger.debug(
            f"[DCA-STORE] Record updated | order_id={order_id} | "
            f"executions_left={order.executions_left} | "
            f"next_execution_time={order.next_execution_time}"
        )

    # -------------------------------------------------------------------------
    # Public reads
    # -------------------------------------------------------------------------

    def read(self, order_id: int) -> Order:
        order = self._load(order_id)
        return order if order is not None else Order.empty()

    def owner_of(self, order_id: int) -> Optional[str]:
        return self._load_owner(order_id)

    def exists(self, order_id: int) -> bool:
        return self._load_owner(order_id) is not None

    def balance_of(self, owner: str) -> int:
        return self._count_owned(owner)

    def get_approved(self, order_id: int) -> Optional[str]:
        return self._load_approved(order_id)

    def is_approved_for_all(self, owner: str, operator: str) -> bool:
        return self._load_operator(owner, operator)

    # -------------------------------------------------------------------------
    # Ownership transfer
    # -------------------------------------------------------------------------

    def approve(self, order_id: int, spender: Optional[str], caller: str) -> None:
        """Let spender transfer this record; None clears the approval."""
        owner = self._load_owner(order_id)
        if owner is None:
            raise RecordNotFound(
                f"Order record not found | order_id={order_id}", order_id=order_id
            )
        if caller != owner and not self._load_operator(owner, caller):
            raise NotOwnerNorApproved(
                f"Caller may not approve this record | order_id={order_id} | "
                f"caller={caller}",
                order_id=order_id,
            )

        self._store_approved(order_id, spender or None)
        logger.info(
            f"[DCA-STORE] Approval set | order_id={order_id} | spender={spender}"
        )

    def set_approval_for_all(self, operator: str, approved: bool, caller: str) -> None:
        if not operator or operator == caller:
            raise InvalidRecipient(f"Invalid operator | operator={operator}")
        self._store_operator(caller, operator, approved)
        logger.info(
            f"[DCA-STORE] Operator approval | owner={caller} | "
            f"operator={operator} | approved={approved}"
        )

    def transfer_from(self, sender: str, recipient: str, order_id: int, caller: str) -> None:
        """
        Move record ownership from sender to recipient.

        Raises:
            RecordNotFound: order_id has no owner
            NotOwnerNorApproved: sender is not the holder, or caller is neither
                holder, approved spender, nor operator
            InvalidRecipient: recipient is empty
        """
        owner = self._load_owner(order_id)
        if owner is None:
            raise RecordNotFound(
                f"Order record not found | order_id={order_id}", order_id=order_id
            )
        if sender != owner:
            raise NotOwnerNorApproved(
                f"Sender does not hold the record | order_id={order_id} | "
                f"sender={sender}",
                order_id=order_id,
            )
        if not recipient:
            raise InvalidRecipient(
                f"Transfer recipient must be non-empty | order_id={order_id}",
                order_id=order_id,
            )

        authorized = (
            caller == owner
            or caller == self._load_approved(order_id)
            or self._load_operator(owner, caller)
        )
        if not authorized:
            raise NotOwnerNorApproved(
                f"Caller may not transfer this record | order_id={order_id} | "
                f"caller={caller}",
                order_id=order_id,
            )

        self._store_owner(order_id, recipient)
        logger.info(
            f"[DCA-STORE] Record transferred | order_id={order_id} | "
            f"from={sender} | to={recipient} | caller={caller}"
        )


# =============================================================================
# In-Memory Backend
# =============================================================================

class InMemoryOrderRecordStore(OrderRecordStore, AtomicParticipant):
    """
    Dict-backed store.

    Registers as an atomic participant so a simulated environment can roll
    record changes back together with ledger changes.
    """

    def __init__(self, authorized_mutator: str) -> None:
        super().__init__(authorized_mutator)
        self._records: Dict[int, Order] = {}
        self._owners: Dict[int, str] = {}
        self._approved: Dict[int, str] = {}
        self._operators: Set[Tuple[str, str]] = set()

        logger.info(
            f"[DCA-STORE] In-memory store initialized | "
            f"authorized_mutator={authorized_mutator}"
        )

    def _load(self, order_id: int) -> Optional[Order]:
        return self._records.get(order_id)

    def _load_owner(self, order_id: int) -> Optional[str]:
        return self._owners.get(order_id)

    def _insert(self, order_id: int, owner: str, order: Order) -> None:
        self._records[order_id] = order
        self._owners[order_id] = owner

    def _replace(self, order_id: int, order: Order) -> None:
        self._records[order_id] = order

    def _remove(self, order_id: int) -> None:
        self._records.pop(order_id, None)
        self._owners.pop(order_id, None)
        self._approved.pop(order_id, None)

    def _store_owner(self, order_id: int, owner: str) -> None:
        self._owners[order_id] = owner
        self._approved.pop(order_id, None)

    def _load_approved(self, order_id: int) -> Optional[str]:
        return self._approved.get(order_id)

    def _store_approved(self, order_id: int, spender: Optional[str]) -> None:
        if spender is None:
            self._approved.pop(order_id, None)
        else:
            self._approved[order_id] = spender

    def _load_operator(self, owner: str, operator: str) -> bool:
        return (owner, operator) in self._operators

    def _store_operator(self, owner: str, operator: str, approved: bool) -> None:
        if approved:
            self._operators.add((owner, operator))
        else:
            self._operators.discard((owner, operator))

    def _count_owned(self, owner: str) -> int:
        return sum(1 for holder in self._owners.values() if holder == owner)

    def snapshot(self) -> object:
        return (
            dict(self._records),
            dict(self._owners),
            dict(self._approved),
            set(self._operators),
        )

    def restore(self, state: object) -> None:
        records, owners, approved, operators = state  # type: ignore[misc]
        self._records = dict(records)
        self._owners = dict(owners)
        self._approved = dict(approved)
        self._operators = set(operators)


__all__ = [
    "OrderRecordStore",
    "InMemoryOrderRecordStore",
]
