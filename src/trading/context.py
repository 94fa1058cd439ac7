"""
Swap context: one constructible object owning the whole ledger.

Callers build a context (or several, e.g. one per test) instead of reaching
for module-level singletons, and pass it to whatever needs the ledger.
"""

import logging
from pathlib import Path
from typing import Optional

from observability.tracing import setup_tracing, shutdown_tracing
from trading.config import SwapConfig
from trading.coordinator import SwapCoordinator
from trading.registry import AssetRegistry
from trading.store import LedgerStore

logger = logging.getLogger(__name__)


class SwapContext:
    """Store, asset registry and swap coordinator wired to one database"""

    def __init__(self, config: Optional[SwapConfig] = None):
        self.config = config or SwapConfig()

        if self.config.db_path != ":memory:":
            Path(self.config.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._tracing = False
        if self.config.tracing_enabled:
            setup_tracing(
                self.config.service_name,
                otlp_endpoint=self.config.otlp_endpoint,
                console_export=self.config.console_traces,
            )
            self._tracing = True

        self.store = LedgerStore(self.config.db_path)
        self.registry = AssetRegistry(self.store, admin=self.config.admin)
        self.coordinator = SwapCoordinator(
            self.registry,
            account=self.config.coordinator_account,
            admin=self.config.admin,
            allow_cancel_when_paused=self.config.allow_cancel_when_paused,
        )
        logger.info(
            f"Opened swap ledger at {self.config.db_path} "
            f"(coordinator={self.config.coordinator_account})"
        )

    @classmethod
    def from_env(cls) -> "SwapContext":
        return cls(SwapConfig.from_env())

    def close(self) -> None:
        self.store.close()
        if self._tracing:
            shutdown_tracing()
            self._tracing = False

    def __enter__(self) -> "SwapContext":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
