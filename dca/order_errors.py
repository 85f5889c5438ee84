"""
============================================================================
Project Margin DCA v1.0.0
Order Errors - Error Taxonomy for the Recurring Order Lifecycle
============================================================================

Reliability Level: L6 Critical
Traceability: Every error carries a stable error code for audit logging

Every failure in this system is fatal to the enclosing call. Nothing is
retried internally and nothing is persisted on failure; the caller sees the
specific error kind and decides whether to retry.

ERROR CATEGORIES:
    - AUTHORIZATION: caller lacks rights (CallerNotBorrower)
    - RETRY_LATER: condition may resolve on its own (NotTimeYet, NothingToSell)
    - PERMANENT: order can never execute again (OrderIsCancelled, InvalidOrder,
      NoExecutionsLeft, InvalidOrderParameters)

ERROR CODES:
    - DCA-001: Caller is not the borrower / record owner
    - DCA-002: Order is cancelled or never existed
    - DCA-003: Margin account control diverged from order owner
    - DCA-004: Execution attempted before schedule eligibility
    - DCA-005: Order has no executions left
    - DCA-006: Scoped account holds nothing to sell
    - DCA-007: Order schedule parameters are invalid
    - STORE-001..005: Order record store failures
    - SET-001..006: Settlement collaborator failures
    - CFG-001: Configuration missing or invalid

============================================================================
"""

from typing import Optional


# =============================================================================
# Error Codes
# =============================================================================

class OrderErrorCode:
    """Coordinator-level error codes."""
    CALLER_NOT_BORROWER = "DCA-001"
    ORDER_IS_CANCELLED = "DCA-002"
    INVALID_ORDER = "DCA-003"
    NOT_TIME_YET = "DCA-004"
    NO_EXECUTIONS_LEFT = "DCA-005"
    NOTHING_TO_SELL = "DCA-006"
    INVALID_ORDER_PARAMETERS = "DCA-007"


class StoreErrorCode:
    """Order record store error codes."""
    UNAUTHORIZED_MUTATOR = "STORE-001"
    RECORD_ALREADY_EXISTS = "STORE-002"
    RECORD_NOT_FOUND = "STORE-003"
    NOT_OWNER_NOR_APPROVED = "STORE-004"
    INVALID_RECIPIENT = "STORE-005"


class SettlementErrorCode:
    """External settlement collaborator error codes."""
    BOT_NOT_PERMITTED = "SET-001"
    SOLVENCY_CHECK_FAILED = "SET-002"
    INSUFFICIENT_BALANCE = "SET-003"
    INSUFFICIENT_ALLOWANCE = "SET-004"
    UNKNOWN_ACCOUNT = "SET-005"
    PRICE_UNAVAILABLE = "SET-006"


class ErrorCategory:
    """Retry classification exposed to clients and keepers."""
    AUTHORIZATION = "AUTHORIZATION"
    RETRY_LATER = "RETRY_LATER"
    PERMANENT = "PERMANENT"
    INTEGRITY = "INTEGRITY"


# =============================================================================
# Base Exception
# =============================================================================

class MarginDcaError(Exception):
    """
    Base exception for every failure raised by this project.

    Reliability Level: L6 Critical
    """

    error_code = "DCA-000"
    category = ErrorCategory.INTEGRITY

    def __init__(self, message: str, error_code: Optional[str] = None):
        """
        Initialize error.

        Args:
            message: Human-readable error message
            error_code: Override for the class-level error code
        """
        if error_code is not None:
            self.error_code = error_code
        self.message = message
        super().__init__(f"[{self.error_code}] {message}")

    @property
    def is_retryable(self) -> bool:
        """True when the blocking condition may resolve without user action."""
        return self.category == ErrorCategory.RETRY_LATER


# =============================================================================
# Coordinator Errors
# =============================================================================

class OrderError(MarginDcaError):
    """Base class for order lifecycle rejections."""

    def __init__(self, message: str, order_id: Optional[int] = None):
        self.order_id = order_id
        super().__init__(message)


class CallerNotBorrower(OrderError):
    """Caller lacks authorization for submit or cancel."""
    error_code = OrderErrorCode.CALLER_NOT_BORROWER
    category = ErrorCategory.AUTHORIZATION


class OrderIsCancelled(OrderError):
    """Execution attempted on a nonexistent or destroyed order."""
    error_code = OrderErrorCode.ORDER_IS_CANCELLED
    category = ErrorCategory.PERMANENT


class InvalidOrder(OrderError):
    """Margin account control has diverged from the order's recorded owner."""
    error_code = OrderErrorCode.INVALID_ORDER
    category = ErrorCategory.PERMANENT


class NotTimeYet(OrderError):
    """Execution attempted before the order's next execution time."""
    error_code = OrderErrorCode.NOT_TIME_YET
    category = ErrorCategory.RETRY_LATER


class NoExecutionsLeft(OrderError):
    """Guard against an already-exhausted order."""
    error_code = OrderErrorCode.NO_EXECUTIONS_LEFT
    category = ErrorCategory.PERMANENT


class NothingToSell(OrderError):
    """Scoped account holds at most one unit of the input token."""
    error_code = OrderErrorCode.NOTHING_TO_SELL
    category = ErrorCategory.RETRY_LATER


class InvalidOrderParameters(OrderError):
    """Submitted schedule cannot produce a valid order record."""
    error_code = OrderErrorCode.INVALID_ORDER_PARAMETERS
    category = ErrorCategory.PERMANENT


# =============================================================================
# Order Record Store Errors
# =============================================================================

class OrderRecordStoreError(MarginDcaError):
    """Base class for record store failures."""

    def __init__(self, message: str, order_id: Optional[int] = None):
        self.order_id = order_id
        super().__init__(message)


class UnauthorizedMutator(OrderRecordStoreError):
    """A mutating entry point was called by someone other than the coordinator."""
    error_code = StoreErrorCode.UNAUTHORIZED_MUTATOR
    category = ErrorCategory.AUTHORIZATION


class RecordAlreadyExists(OrderRecordStoreError):
    error_code = StoreErrorCode.RECORD_ALREADY_EXISTS


class RecordNotFound(OrderRecordStoreError):
    error_code = StoreErrorCode.RECORD_NOT_FOUND


class NotOwnerNorApproved(OrderRecordStoreError):
    """Ownership transfer or approval attempted without rights over the record."""
    error_code = StoreErrorCode.NOT_OWNER_NOR_APPROVED
    category = ErrorCategory.AUTHORIZATION


class InvalidRecipient(OrderRecordStoreError):
    error_code = StoreErrorCode.INVALID_RECIPIENT


# =============================================================================
# Settlement Errors
# =============================================================================

class SettlementError(MarginDcaError):
    """Base class for failures reported by external collaborators."""
    error_code = "SET-000"


class BotNotPermitted(SettlementError):
    error_code = SettlementErrorCode.BOT_NOT_PERMITTED
    category = ErrorCategory.AUTHORIZATION


class SolvencyCheckFailed(SettlementError):
    error_code = SettlementErrorCode.SOLVENCY_CHECK_FAILED
    category = ErrorCategory.RETRY_LATER


class InsufficientBalance(SettlementError):
    error_code = SettlementErrorCode.INSUFFICIENT_BALANCE
    category = ErrorCategory.RETRY_LATER


class InsufficientAllowance(SettlementError):
    error_code = SettlementErrorCode.INSUFFICIENT_ALLOWANCE
    category = ErrorCategory.RETRY_LATER


class UnknownAccount(SettlementError):
    error_code = SettlementErrorCode.UNKNOWN_ACCOUNT
    category = ErrorCategory.PERMANENT


class PriceUnavailable(SettlementError):
    """Conversion service has no rate for the requested pair."""
    error_code = SettlementErrorCode.PRICE_UNAVAILABLE
    category = ErrorCategory.RETRY_LATER


# =============================================================================
# Configuration Errors
# =============================================================================

class CoordinatorConfigurationError(MarginDcaError):
    """
    Raised during startup if required configuration is missing or invalid.

    Enforces fail-closed behavior per CFG-001.
    """
    error_code = "CFG-001"


__all__ = [
    "OrderErrorCode",
    "StoreErrorCode",
    "SettlementErrorCode",
    "ErrorCategory",
    "MarginDcaError",
    "OrderError",
    "CallerNotBorrower",
    "OrderIsCancelled",
    "InvalidOrder",
    "NotTimeYet",
    "NoExecutionsLeft",
    "NothingToSell",
    "InvalidOrderParameters",
    "OrderRecordStoreError",
    "UnauthorizedMutator",
    "RecordAlreadyExists",
    "RecordNotFound",
    "NotOwnerNorApproved",
    "InvalidRecipient",
    "SettlementError",
    "BotNotPermitted",
    "SolvencyCheckFailed",
    "InsufficientBalance",
    "InsufficientAllowance",
    "UnknownAccount",
    "PriceUnavailable",
    "CoordinatorConfigurationError",
]
