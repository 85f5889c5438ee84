"""
============================================================================
Project Margin DCA v1.0.0
Coordinator Configuration - Environment-Driven Settings
============================================================================

Reliability Level: L6 Critical
Traceability: Configuration is logged once on load

This module provides configuration management for the coordinator and the
keeper daemon:
- Environment variable parsing with type safety
- Default values for optional configuration
- Fail-closed behavior on missing required config (CFG-001)

ENVIRONMENT VARIABLES:
    - DCA_COORDINATOR_ADDRESS: Identity the coordinator acts as (REQUIRED)
    - DCA_EXECUTOR_ADDRESS: Identity the keeper executes as (required by keeper)
    - DCA_STORE_BACKEND: memory | sql (default: memory)
    - DCA_DATABASE_URL: SQLAlchemy URL for the sql backend
    - DCA_KEEPER_POLL_SECONDS: Seconds between keeper scans (default: 60)
    - DCA_KEEPER_DRY_RUN: Report eligible orders without executing (default: true)
    - DCA_LOG_LEVEL: Root log level (default: INFO)
    - DCA_METRICS_PORT: Prometheus exporter port, 0 disables (default: 0)

ERROR CODES:
    - CFG-001: Required configuration missing or invalid

============================================================================
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import logging
import os

from dca.order_errors import CoordinatorConfigurationError
from infra.database import DEFAULT_DATABASE_URL

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Default Values
# =============================================================================

DEFAULT_STORE_BACKEND = "memory"
STORE_BACKENDS = ("memory", "sql")
DEFAULT_KEEPER_POLL_SECONDS = 60
DEFAULT_KEEPER_DRY_RUN = True
DEFAULT_LOG_LEVEL = "INFO"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
DEFAULT_METRICS_PORT = 0

_TRUE_VALUES = ("true", "1", "yes", "on")


# =============================================================================
# CoordinatorConfig Class
# =============================================================================

@dataclass
class CoordinatorConfig:
    """
    Coordinator and keeper configuration.

    Reliability Level: L6 Critical
    Input Constraints: coordinator_address must be non-empty
    Side Effects: Logs configuration on load
    """

    coordinator_address: str = ""
    executor_address: str = ""
    store_backend: str = DEFAULT_STORE_BACKEND
    database_url: str = DEFAULT_DATABASE_URL
    keeper_poll_seconds: int = DEFAULT_KEEPER_POLL_SECONDS
    keeper_dry_run: bool = DEFAULT_KEEPER_DRY_RUN
    log_level: str = DEFAULT_LOG_LEVEL
    metrics_port: int = DEFAULT_METRICS_PORT

    def validate(self, require_executor: bool = False) -> None:
        """
        Validate configuration completeness.

        Args:
            require_executor: Also require executor_address (keeper mode)

        Raises:
            CoordinatorConfigurationError: If configuration is missing or invalid
        """
        errors: List[str] = []

        if not self.coordinator_address:
            errors.append("DCA_COORDINATOR_ADDRESS must be set")

        if require_executor and not self.executor_address:
            errors.append("DCA_EXECUTOR_ADDRESS must be set to run the keeper")

        if self.executor_address and self.executor_address == self.coordinator_address:
            errors.append("DCA_EXECUTOR_ADDRESS must differ from DCA_COORDINATOR_ADDRESS")

        if self.store_backend not in STORE_BACKENDS:
            errors.append(
                f"DCA_STORE_BACKEND must be one of {', '.join(STORE_BACKENDS)}, "
                f"got: {self.store_backend}"
            )

        if self.store_backend == "sql" and not self.database_url:
            errors.append("DCA_DATABASE_URL must be set for the sql backend")

        if self.keeper_poll_seconds <= 0:
            errors.append(
                f"DCA_KEEPER_POLL_SECONDS must be positive, got: {self.keeper_poll_seconds}"
            )

        if self.log_level not in LOG_LEVELS:
            errors.append(f"DCA_LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}, got: {self.log_level}")

        if not 0 <= self.metrics_port <= 65535:
            errors.append(f"DCA_METRICS_PORT must be between 0 and 65535, got: {self.metrics_port}")

        if errors:
            error_msg = "Coordinator configuration validation failed: " + "; ".join(errors)
            logger.error(f"[{CoordinatorConfigurationError.error_code}] {error_msg}")
            raise CoordinatorConfigurationError(error_msg)

        logger.info(
            f"[DCA-CONFIG] Configuration validated | "
            f"coordinator_address={self.coordinator_address} | "
            f"store_backend={self.store_backend} | "
            f"keeper_dry_run={self.keeper_dry_run}"
        )

    @classmethod
    def from_environment(cls, validate: bool = True, require_executor: bool = False) -> "CoordinatorConfig":
        """
        Load configuration from environment variables.

        Malformed optional values fall back to their defaults with a warning.

        Raises:
            CoordinatorConfigurationError: If validation is requested and fails
        """
        poll_str = os.environ.get("DCA_KEEPER_POLL_SECONDS", str(DEFAULT_KEEPER_POLL_SECONDS))
        try:
            keeper_poll_seconds = int(poll_str.strip())
        except ValueError:
            logger.warning(
                f"[DCA-CONFIG] Invalid DCA_KEEPER_POLL_SECONDS value: {poll_str}, "
                f"using default: {DEFAULT_KEEPER_POLL_SECONDS}"
            )
            keeper_poll_seconds = DEFAULT_KEEPER_POLL_SECONDS

        dry_run_str = os.environ.get("DCA_KEEPER_DRY_RUN", "true").lower().strip()

        port_str = os.environ.get("DCA_METRICS_PORT", str(DEFAULT_METRICS_PORT))
        try:
            metrics_port = int(port_str.strip())
        except ValueError:
            logger.warning(
                f"[DCA-CONFIG] Invalid DCA_METRICS_PORT value: {port_str}, "
                f"using default: {DEFAULT_METRICS_PORT}"
            )
            metrics_port = DEFAULT_METRICS_PORT

        config = cls(
            coordinator_address=os.environ.get("DCA_COORDINATOR_ADDRESS", "").strip(),
            executor_address=os.environ.get("DCA_EXECUTOR_ADDRESS", "").strip(),
            store_backend=os.environ.get("DCA_STORE_BACKEND", DEFAULT_STORE_BACKEND).lower().strip(),
            database_url=os.environ.get("DCA_DATABASE_URL", DEFAULT_DATABASE_URL).strip(),
            keeper_poll_seconds=keeper_poll_seconds,
            keeper_dry_run=dry_run_str in _TRUE_VALUES,
            log_level=os.environ.get("DCA_LOG_LEVEL", DEFAULT_LOG_LEVEL).upper().strip(),
            metrics_port=metrics_port,
        )

        logger.info(
            f"[DCA-CONFIG] Loading configuration from environment | "
            f"DCA_STORE_BACKEND={config.store_backend} | "
            f"DCA_KEEPER_POLL_SECONDS={config.keeper_poll_seconds} | "
            f"DCA_KEEPER_DRY_RUN={config.keeper_dry_run}"
        )

        if validate:
            config.validate(require_executor=require_executor)

        return config

    def to_dict(self) -> Dict[str, Any]:
        return {
            "coordinator_address": self.coordinator_address,
            "executor_address": self.executor_address,
            "store_backend": self.store_backend,
            "database_url": self.database_url,
            "keeper_poll_seconds": self.keeper_poll_seconds,
            "keeper_dry_run": self.keeper_dry_run,
            "log_level": self.log_level,
            "metrics_port": self.metrics_port,
        }


# =============================================================================
# Module-Level Configuration Instance
# =============================================================================

_config_instance: Optional[CoordinatorConfig] = None


def get_coordinator_config(
    validate: bool = True, require_executor: bool = False
) -> CoordinatorConfig:
    """
    Get the global configuration instance, loading it on first access.

    An instance loaded earlier is re-checked when require_executor is set.

    Raises:
        CoordinatorConfigurationError: If required configuration is missing
    """
    global _config_instance

    if _config_instance is None:
        _config_instance = CoordinatorConfig.from_environment(
            validate=validate, require_executor=require_executor
        )
    elif require_executor:
        _config_instance.validate(require_executor=True)

    return _config_instance


def reset_coordinator_config() -> None:
    """Clear the global configuration instance (used by tests)."""
    global _config_instance
    _config_instance = None
    logger.debug("[DCA-CONFIG] Configuration instance reset")


__all__ = [
    "DEFAULT_STORE_BACKEND",
    "DEFAULT_KEEPER_POLL_SECONDS",
    "CoordinatorConfig",
    "get_coordinator_config",
    "reset_coordinator_config",
]
