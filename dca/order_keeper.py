"""
============================================================================
Project Margin DCA v1.0.0
Order Keeper - Executor Role: Scan, Classify, Execute
============================================================================

Reliability Level: L6 Critical
Input Constraints: Coordinator instance, executor identity
Side Effects: Executions through the coordinator (unless dry_run),
              token approvals on behalf of the executor

KEEPER CYCLE:
    1. scan(): preview every live order and classify it
         ELIGIBLE     preview succeeded
         RETRY_LATER  NotTimeYet, NothingToSell, price unavailable
         PERMANENT    InvalidOrder, OrderIsCancelled, NoExecutionsLeft
    2. run_once(): execute ELIGIBLE orders (or only report them in dry run)

Losing a race to another executor is expected: the coordinator rejects the
second execution and the keeper counts it as rejected instead of raising.

============================================================================
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
import logging
import uuid

from dca.order_coordinator import OrderCoordinator
from dca.order_errors import (
    ErrorCategory,
    MarginDcaError,
    OrderError,
    SettlementError,
)
from dca.order_models import ExecutionPlan, ExecutionReceipt, to_display_amount
from protocol.interfaces import TokenLedger

# Configure module logger
logger = logging.getLogger(__name__)


class CandidateStatus(Enum):
    ELIGIBLE = "ELIGIBLE"
    RETRY_LATER = "RETRY_LATER"
    PERMANENT = "PERMANENT"


@dataclass(frozen=True)
class KeeperCandidate:
    """Scan result for a single order."""
    order_id: int
    status: CandidateStatus
    plan: Optional[ExecutionPlan] = None
    error_code: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "status": self.status.value,
            "plan": self.plan.to_dict() if self.plan is not None else None,
            "error_code": self.error_code,
            "reason": self.reason,
        }


@dataclass
class KeeperReport:
    """Summary of one keeper cycle."""
    correlation_id: str
    dry_run: bool
    scanned: int = 0
    eligible: int = 0
    retry_later: int = 0
    permanent: int = 0
    executed: int = 0
    rejected: int = 0
    failed: int = 0
    receipts: List[ExecutionReceipt] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "correlation_id": self.correlation_id,
            "dry_run": self.dry_run,
            "scanned": self.scanned,
            "eligible": self.eligible,
            "retry_later": self.retry_later,
            "permanent": self.permanent,
            "executed": self.executed,
            "rejected": self.rejected,
            "failed": self.failed,
            "receipts": [receipt.to_dict() for receipt in self.receipts],
        }


def classify_error(error: MarginDcaError) -> CandidateStatus:
    if error.category == ErrorCategory.RETRY_LATER:
        return CandidateStatus.RETRY_LATER
    return CandidateStatus.PERMANENT


class OrderKeeper:
    """
    Drives executions for every live order on behalf of one executor.

    When a token ledger is supplied, the keeper approves the coordinator for
    each plan's min_amount_out before executing, the way an executor would
    fund its own executions.
    """

    def __init__(
        self,
        coordinator: OrderCoordinator,
        executor_address: str,
        dry_run: bool = True,
        token_ledger: Optional[TokenLedger] = None,
    ) -> None:
        if not executor_address:
            raise ValueError("executor_address must be non-empty")
        if executor_address == coordinator.address:
            raise ValueError("executor_address must differ from the coordinator address")

        self._coordinator = coordinator
        self._executor_address = executor_address
        self._dry_run = dry_run
        self._token_ledger = token_ledger
        self._cycles = 0

        logger.info(
            f"[DCA-KEEPER] Keeper initialized | executor={executor_address} | "
            f"dry_run={dry_run}"
        )

    @property
    def executor_address(self) -> str:
        return self._executor_address

    @property
    def dry_run(self) -> bool:
        return self._dry_run

    @property
    def cycles(self) -> int:
        return self._cycles

    def scan(self, correlation_id: Optional[str] = None) -> List[KeeperCandidate]:
        """Preview every live order; never mutates anything."""
        if correlation_id is None:
            correlation_id = str(uuid.uuid4())

        candidates: List[KeeperCandidate] = []
        for order_id in self._coordinator.order_ids():
            try:
                plan = self._coordinator.preview_execution(order_id, correlation_id)
            except MarginDcaError as e:
                candidates.append(KeeperCandidate(
                    order_id=order_id,
                    status=classify_error(e),
                    error_code=e.error_code,
                    reason=e.message,
                ))
                continue
            candidates.append(KeeperCandidate(
                order_id=order_id,
                status=CandidateStatus.ELIGIBLE,
                plan=plan,
            ))

        return candidates

    def run_once(self, correlation_id: Optional[str] = None) -> KeeperReport:
        """
        Run one keeper cycle.

        Returns:
            KeeperReport with per-status counts and receipts
        """
        if correlation_id is None:
            correlation_id = str(uuid.uuid4())

        self._cycles += 1
        candidates = self.scan(correlation_id)
        report = KeeperReport(correlation_id=correlation_id, dry_run=self._dry_run)
        report.scanned = len(candidates)

        for candidate in candidates:
            if candidate.status is CandidateStatus.RETRY_LATER:
                report.retry_later += 1
                continue
            if candidate.status is CandidateStatus.PERMANENT:
                report.permanent += 1
                continue

            report.eligible += 1
            if self._dry_run:
                logger.info(
                    f"[DCA-KEEPER] Eligible (dry run) | order_id={candidate.order_id} | "
                    f"amount_in={candidate.plan.amount_in} | "
                    f"min_amount_out={candidate.plan.min_amount_out} | "
                    f"correlation_id={correlation_id}"
                )
                continue

            self._execute(candidate, report, correlation_id)

        logger.info(
            f"[DCA-KEEPER] Cycle complete | cycle={self._cycles} | "
            f"scanned={report.scanned} | eligible={report.eligible} | "
            f"executed={report.executed} | rejected={report.rejected} | "
            f"failed={report.failed} | dry_run={self._dry_run} | "
            f"correlation_id={correlation_id}"
        )
        return report

    def _execute(self, candidate: KeeperCandidate, report: KeeperReport, correlation_id: str) -> None:
        plan = candidate.plan
        if self._token_ledger is not None:
            self._token_ledger.approve(
                plan.order.token_out,
                self._executor_address,
                self._coordinator.address,
                plan.min_amount_out,
            )

        try:
            receipt = self._coordinator.execute(
                candidate.order_id, self._executor_address, correlation_id
            )
        except OrderError as e:
            report.rejected += 1
            logger.info(
                f"[DCA-KEEPER] Execution rejected | order_id={candidate.order_id} | "
                f"error_code={e.error_code} | correlation_id={correlation_id}"
            )
            return
        except SettlementError as e:
            report.failed += 1
            logger.warning(
                f"[DCA-KEEPER] Settlement failed | order_id={candidate.order_id} | "
                f"error_code={e.error_code} | correlation_id={correlation_id}"
            )
            return

        report.executed += 1
        report.receipts.append(receipt)
        logger.info(
            f"[DCA-KEEPER] Executed | order_id={candidate.order_id} | "
            f"sold={self._format_amount(plan.order.token_in, receipt.amount_in)} | "
            f"min_bought={self._format_amount(plan.order.token_out, receipt.min_amount_out)} | "
            f"executions_left={receipt.executions_left} | correlation_id={correlation_id}"
        )

    def _format_amount(self, token: str, amount: int) -> str:
        """Render amount in display units when the ledger knows the token."""
        if self._token_ledger is None:
            return f"{amount} {token}"
        display = to_display_amount(amount, self._token_ledger.decimals(token))
        return f"{display} {token}"


__all__ = [
    "CandidateStatus",
    "KeeperCandidate",
    "KeeperReport",
    "OrderKeeper",
    "classify_error",
]
