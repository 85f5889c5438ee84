"""
============================================================================
Project Margin DCA v1.0.0
Database Engine - SQLAlchemy Engine Factory for the Order Record Store
============================================================================

Reliability Level: L6 Critical
Input Constraints: SQLAlchemy database URL
Side Effects: Database connections, schema creation

ENGINE POLICY:
    - In-memory SQLite shares one connection (StaticPool) so every session
      sees the same database
    - File SQLite allows cross-thread use for the keeper loop
    - Server databases use a pre-pinged connection pool
    - All timestamps stored by this project are unix seconds (no timezone)

============================================================================
"""

import os
from typing import Any, Dict, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

# =============================================================================
# Configuration
# =============================================================================

DEFAULT_DATABASE_URL = "sqlite:///margin_dca.db"


def get_database_url() -> str:
    """
    Resolve the order store database URL.

    Environment Variables:
        DCA_DATABASE_URL: SQLAlchemy URL (default: sqlite:///margin_dca.db)
    """
    return os.getenv("DCA_DATABASE_URL", DEFAULT_DATABASE_URL)


# =============================================================================
# Schema
# =============================================================================

# Amount columns are TEXT: token amounts can exceed 64-bit integers.
SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS order_records (
        order_id INTEGER PRIMARY KEY,
        holder VARCHAR(128) NOT NULL,
        approved VARCHAR(128),
        owner VARCHAR(128) NOT NULL,
        protocol VARCHAR(128) NOT NULL,
        account VARCHAR(128) NOT NULL,
        token_in VARCHAR(128) NOT NULL,
        token_out VARCHAR(128) NOT NULL,
        amount_per_interval TEXT NOT NULL,
        interval_seconds INTEGER NOT NULL,
        next_execution_time INTEGER NOT NULL,
        total_executions INTEGER NOT NULL,
        executions_left INTEGER NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS operator_approvals (
        holder VARCHAR(128) NOT NULL,
        operator VARCHAR(128) NOT NULL,
        PRIMARY KEY (holder, operator)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS order_id_counter (
        name VARCHAR(64) PRIMARY KEY,
        next_value INTEGER NOT NULL
    )
    """,
)


# =============================================================================
# Engine Factory
# =============================================================================

def create_store_engine(url: Optional[str] = None, echo: Optional[bool] = None) -> Engine:
    """
    Create an engine suited to the given URL.

    Args:
        url: SQLAlchemy URL (default: get_database_url())
        echo: Echo SQL (default: DB_ECHO env var)

    Returns:
        Engine
    """
    url = url or get_database_url()
    if echo is None:
        echo = os.getenv("DB_ECHO", "false").lower() == "true"

    kwargs: Dict[str, Any] = {"echo": echo}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_pre_ping"] = True
        kwargs["pool_recycle"] = 1800

    engine = create_engine(url, **kwargs)

    if url.startswith("sqlite"):
        @event.listens_for(engine, "connect")
        def set_busy_timeout(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.close()

    return engine


def ensure_schema(engine: Engine) -> None:
    """Create the order store tables if they do not exist."""
    with engine.begin() as conn:
        for statement in SCHEMA_STATEMENTS:
            conn.execute(text(statement))


def check_database_connection(engine: Engine) -> bool:
    """
    Verify database connectivity.

    Raises:
        Exception: If database connection fails
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        raise Exception(f"Database connection failed: {e}")
