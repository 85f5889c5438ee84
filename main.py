#!/usr/bin/env python3
"""
============================================================================
Project Margin DCA v1.0.0
Keeper Daemon - Scheduled Executions of Recurring Margin Sell Orders
============================================================================

Reliability Level: L6 Critical
Traceability: All operations include correlation_id for audit

THE KEEPER DAEMON:
    Plays the executor role against a coordinator wired over the simulated
    margin protocol, token ledger and oracle:
    1. Load configuration (CFG-001 on missing values)
    2. Build the coordinator with the configured store backend
    3. Seed a demo margin account and recurring order
    4. Heartbeat loop: sync clock -> keeper.run_once() -> sleep

MAIN LOOP:
    while running:
        environment.set_time(now)
        keeper.run_once()      # dry run reports only
        time.sleep(DCA_KEEPER_POLL_SECONDS)

USAGE:
    python main.py

============================================================================
"""

import logging
import os
import signal
import sys
import time
import uuid
from datetime import datetime, timezone
from typing import Optional

from dotenv import load_dotenv
from prometheus_client import start_http_server

from dca.coordinator_config import CoordinatorConfig, get_coordinator_config
from dca.order_errors import CoordinatorConfigurationError
from dca.order_keeper import OrderKeeper
from dca.order_models import Order, to_native_amount
from dca.sql_order_record_store import SqlOrderIdCounter, SqlOrderRecordStore
from infra.database import check_database_connection, create_store_engine
from protocol.sandbox import Sandbox, build_sandbox, open_funded_account

# Load environment variables first
load_dotenv()

# Configure logging
logging.basicConfig(
    level=os.environ.get("DCA_LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s | %(levelname)s | %(name)s | %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger("DCA-KEEPER")


# =============================================================================
# Constants
# =============================================================================

VERSION = "1.0.0"

# Demo market
DEMO_TOKEN_IN = "WETH"
DEMO_TOKEN_OUT = "USDC"
DEMO_TOKEN_IN_DECIMALS = 18
DEMO_TOKEN_OUT_DECIMALS = 6
DEMO_PRICE = "2000"
DEMO_BORROWER = "demo-borrower"
DEMO_ACCOUNT = "demo-margin-account"

# Stop after this many consecutive failed heartbeats
MAX_CONSECUTIVE_ERRORS = 3


# =============================================================================
# System State
# =============================================================================

class SystemState:
    """Global daemon state tracking."""
    running = True
    last_heartbeat = None  # type: Optional[datetime]
    heartbeat_count = 0
    errors_count = 0
    executions = 0


def signal_handler(signum, frame):
    """Handle shutdown signals gracefully."""
    logger.warning(f"Received signal {signum} - initiating graceful shutdown")
    SystemState.running = False


# =============================================================================
# Wiring
# =============================================================================

def build_deployment(config: CoordinatorConfig, correlation_id: str) -> Sandbox:
    """
    Wire the coordinator over simulated collaborators with the configured
    store backend.
    """
    if config.store_backend == "sql":
        engine = create_store_engine(config.database_url)
        check_database_connection(engine)
        sandbox = build_sandbox(
            coordinator_address=config.coordinator_address,
            start_time=int(time.time()),
            store=SqlOrderRecordStore(config.coordinator_address, engine),
            id_counter=SqlOrderIdCounter(engine),
        )
    else:
        sandbox = build_sandbox(
            coordinator_address=config.coordinator_address,
            start_time=int(time.time()),
        )

    logger.info(
        f"[INIT] Coordinator wired | backend={config.store_backend} | "
        f"next_order_id={sandbox.coordinator.next_order_id} | "
        f"correlation_id={correlation_id}"
    )
    return sandbox


def seed_demo(sandbox: Sandbox, executor: str, correlation_id: str) -> int:
    """
    Open a demo margin account holding WETH and submit a daily WETH->USDC
    order against it. Returns the order id.
    """
    ledger = sandbox.ledger
    ledger.register_token(DEMO_TOKEN_IN, DEMO_TOKEN_IN_DECIMALS)
    ledger.register_token(DEMO_TOKEN_OUT, DEMO_TOKEN_OUT_DECIMALS)
    sandbox.oracle.set_rate(
        DEMO_TOKEN_IN, DEMO_TOKEN_OUT,
        to_native_amount(DEMO_PRICE, DEMO_TOKEN_OUT_DECIMALS),
    )

    scope = open_funded_account(
        sandbox, DEMO_ACCOUNT, DEMO_BORROWER,
        DEMO_TOKEN_IN, to_native_amount("10", DEMO_TOKEN_IN_DECIMALS),
    )
    ledger.mint(DEMO_TOKEN_OUT, executor, to_native_amount("100000", DEMO_TOKEN_OUT_DECIMALS))

    order = Order(
        owner=DEMO_BORROWER,
        account_scope=scope,
        token_in=DEMO_TOKEN_IN,
        token_out=DEMO_TOKEN_OUT,
        amount_per_interval=to_native_amount("0.5", DEMO_TOKEN_IN_DECIMALS),
        interval=86400,
        next_execution_time=sandbox.environment.now(),
        total_executions=10,
        executions_left=10,
    )
    order_id = sandbox.coordinator.submit(order, DEMO_BORROWER, correlation_id)

    logger.info(
        f"[INIT] Demo order seeded | order_id={order_id} | account={DEMO_ACCOUNT} | "
        f"correlation_id={correlation_id}"
    )
    return order_id


# =============================================================================
# Heartbeat
# =============================================================================

def run_heartbeat(sandbox: Sandbox, keeper: OrderKeeper, correlation_id: str) -> None:
    SystemState.heartbeat_count += 1
    SystemState.last_heartbeat = datetime.now(timezone.utc)
    sandbox.environment.set_time(int(time.time()))

    report = keeper.run_once(correlation_id)
    SystemState.executions += report.executed

    logger.info(
        f"[HEARTBEAT] #{SystemState.heartbeat_count} | "
        f"scanned={report.scanned} | eligible={report.eligible} | "
        f"executed={report.executed} | retry_later={report.retry_later} | "
        f"permanent={report.permanent} | correlation_id={correlation_id}"
    )


# =============================================================================
# Main Entry Point
# =============================================================================

def main() -> int:
    session_id = str(uuid.uuid4())[:8]
    correlation_id = f"SESSION-{session_id}"

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        config = get_coordinator_config(require_executor=True)
    except CoordinatorConfigurationError as e:
        logger.critical(f"Cannot start keeper: {e}")
        return 1

    logger.info(
        f"Margin DCA keeper v{VERSION} starting | poll={config.keeper_poll_seconds}s | "
        f"dry_run={config.keeper_dry_run} | correlation_id={correlation_id}"
    )

    if config.metrics_port:
        start_http_server(config.metrics_port)
        logger.info(f"[INIT] Metrics exporter listening | port={config.metrics_port}")

    sandbox = build_deployment(config, correlation_id)
    seed_demo(sandbox, config.executor_address, correlation_id)
    keeper = OrderKeeper(
        sandbox.coordinator,
        config.executor_address,
        dry_run=config.keeper_dry_run,
        token_ledger=sandbox.ledger,
    )

    consecutive_errors = 0
    try:
        while SystemState.running:
            heartbeat_id = f"{correlation_id}-HB{SystemState.heartbeat_count + 1}"
            try:
                run_heartbeat(sandbox, keeper, heartbeat_id)
                consecutive_errors = 0
            except Exception as e:
                SystemState.errors_count += 1
                consecutive_errors += 1
                logger.error(
                    f"Heartbeat error: {str(e)} | errors_count={SystemState.errors_count} | "
                    f"correlation_id={heartbeat_id}"
                )
                if consecutive_errors >= MAX_CONSECUTIVE_ERRORS:
                    logger.critical("Stopping keeper after repeated heartbeat errors")
                    break
            time.sleep(config.keeper_poll_seconds)
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")

    logger.info(
        f"Keeper shutdown complete | heartbeats={SystemState.heartbeat_count} | "
        f"executions={SystemState.executions} | errors={SystemState.errors_count} | "
        f"correlation_id={correlation_id}"
    )
    return 0 if consecutive_errors < MAX_CONSECUTIVE_ERRORS else 1


if __name__ == "__main__":
    sys.exit(main())
