"""
Swap ledger configuration.

Settings can be given explicitly or read from the environment with
``SwapConfig.from_env()``.
"""

import os
import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass
class SwapConfig:
    """
    Swap ledger configuration settings.

    Attributes:
        db_path: SQLite database file, or ":memory:" for a throwaway ledger
        admin: Account allowed to pause/unpause swaps and asset creation
        coordinator_account: Account the coordinator acts and holds escrow under
        allow_cancel_when_paused: Let proposers withdraw offers during a pause
        service_name: Service name reported to OpenTelemetry
        otlp_endpoint: OTLP collector endpoint (None disables export)
        console_traces: Also print spans to the console
    """

    db_path: str = ":memory:"
    admin: str = "admin"
    coordinator_account: str = "swap-coordinator"
    allow_cancel_when_paused: bool = False
    service_name: str = "swap-ledger"
    otlp_endpoint: Optional[str] = None
    console_traces: bool = False

    def __post_init__(self):
        if self.admin == self.coordinator_account:
            raise ValueError("Administrator and coordinator accounts must differ")

    @property
    def tracing_enabled(self) -> bool:
        return bool(self.otlp_endpoint) or self.console_traces

    @classmethod
    def from_env(cls) -> "SwapConfig":
        """Create config from environment variables"""
        config = cls(
            db_path=os.getenv("SWAP_DB_PATH", ":memory:"),
            admin=os.getenv("SWAP_ADMIN", "admin"),
            coordinator_account=os.getenv("SWAP_COORDINATOR_ACCOUNT", "swap-coordinator"),
            allow_cancel_when_paused=_env_flag("SWAP_ALLOW_CANCEL_WHEN_PAUSED"),
            service_name=os.getenv("SWAP_SERVICE_NAME", "swap-ledger"),
            otlp_endpoint=os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT") or None,
            console_traces=_env_flag("SWAP_CONSOLE_TRACES"),
        )
        logger.debug(f"Loaded swap config from environment: db_path={config.db_path}")
        return config
