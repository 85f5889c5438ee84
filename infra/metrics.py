"""
============================================================================
Project Margin DCA v1.0.0
Prometheus Metrics - Order Lifecycle Observability
============================================================================

Reliability Level: L6 Critical
Side Effects: Updates Prometheus metrics registry

METRICS EXPOSED
---------------
- dca_orders_submitted_total: Orders accepted by the coordinator
- dca_orders_cancelled_total: Orders cancelled by their holder
- dca_executions_total: Successful executions by outcome (advanced/completed)
- dca_execution_rejections_total: Rejected execution attempts by error code
- dca_amount_in_total: Native units of token_in sold, by token
- dca_active_orders: Orders currently held in the store

Recording helpers never raise; a metrics failure is logged and the
operation being measured continues.

============================================================================
"""

import logging
from typing import Optional

from prometheus_client import Counter, Gauge

# Configure module logger
logger = logging.getLogger(__name__)


# ============================================================================
# PROMETHEUS METRICS DEFINITIONS
# ============================================================================

ORDERS_SUBMITTED = Counter(
    "dca_orders_submitted_total",
    "Total number of recurring orders accepted"
)

ORDERS_CANCELLED = Counter(
    "dca_orders_cancelled_total",
    "Total number of recurring orders cancelled by their holder"
)

EXECUTIONS = Counter(
    "dca_executions_total",
    "Total number of successful order executions",
    ["outcome"]
)

EXECUTION_REJECTIONS = Counter(
    "dca_execution_rejections_total",
    "Total number of rejected execution attempts",
    ["error_code"]
)

# Counters only accept floats; amounts are exported at the boundary only.
AMOUNT_IN = Counter(
    "dca_amount_in_total",
    "Native units of token_in sold through executions",
    ["token_in"]
)

ACTIVE_ORDERS = Gauge(
    "dca_active_orders",
    "Recurring orders currently present in the store"
)


# ============================================================================
# METRIC UPDATE FUNCTIONS
# ============================================================================

def record_order_submitted(correlation_id: Optional[str] = None) -> None:
    try:
        ORDERS_SUBMITTED.inc()
        ACTIVE_ORDERS.inc()
    except Exception as e:
        logger.error(
            "[OBS-001] Failed to record order_submitted metric | error=%s | "
            "correlation_id=%s",
            str(e), correlation_id
        )


def record_order_cancelled(correlation_id: Optional[str] = None) -> None:
    try:
        ORDERS_CANCELLED.inc()
        ACTIVE_ORDERS.dec()
    except Exception as e:
        logger.error(
            "[OBS-002] Failed to record order_cancelled metric | error=%s | "
            "correlation_id=%s",
            str(e), correlation_id
        )


def record_execution(
    token_in: str,
    amount_in: int,
    completed: bool,
    correlation_id: Optional[str] = None
) -> None:
    """
    Record a successful execution.

    Args:
        token_in: Token sold
        amount_in: Native units sold
        completed: True when the execution exhausted the order
        correlation_id: Optional tracking ID
    """
    try:
        EXECUTIONS.labels(outcome="completed" if completed else "advanced").inc()
        AMOUNT_IN.labels(token_in=token_in).inc(float(amount_in))
        if completed:
            ACTIVE_ORDERS.dec()
        logger.debug(
            "Metric: execution | token_in=%s | amount_in=%s | completed=%s | "
            "correlation_id=%s",
            token_in, amount_in, completed, correlation_id
        )
    except Exception as e:
        logger.error(
            "[OBS-003] Failed to record execution metric | error=%s | "
            "correlation_id=%s",
            str(e), correlation_id
        )


def record_execution_rejected(
    error_code: str,
    correlation_id: Optional[str] = None
) -> None:
    try:
        EXECUTION_REJECTIONS.labels(error_code=error_code).inc()
    except Exception as e:
        logger.error(
            "[OBS-004] Failed to record execution_rejected metric | error=%s | "
            "correlation_id=%s",
            str(e), correlation_id
        )


__all__ = [
    "ORDERS_SUBMITTED",
    "ORDERS_CANCELLED",
    "EXECUTIONS",
    "EXECUTION_REJECTIONS",
    "AMOUNT_IN",
    "ACTIVE_ORDERS",
    "record_order_submitted",
    "record_order_cancelled",
    "record_execution",
    "record_execution_rejected",
]
