"""Prometheus metrics for the asset registry and swap coordinator.

Counters track every state transition and every rejected call by failure
kind; a gauge tracks swaps currently holding an asset in escrow.
"""

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    Info,
    generate_latest,
    REGISTRY,
)
import time
from functools import wraps


# ============================================================================
# CORE METRICS
# ============================================================================

assets_created_total = Counter(
    "swap_ledger_assets_created_total", "Total number of assets created"
)

asset_transfers_total = Counter(
    "swap_ledger_asset_transfers_total",
    "Total number of asset holder changes",
    ["via"],  # 'holder' or 'operator'
)

assets_burned_total = Counter(
    "swap_ledger_assets_burned_total", "Total number of assets destroyed"
)

swap_transitions_total = Counter(
    "swap_ledger_swap_transitions_total",
    "Total number of swap state transitions",
    ["state"],  # PENDING / EXECUTED / CANCELLED
)

rejected_calls_total = Counter(
    "swap_ledger_rejected_calls_total",
    "Total number of calls rejected by a precondition",
    ["operation", "kind"],
)

pending_swaps = Gauge(
    "swap_ledger_pending_swaps", "Number of swaps currently holding an escrowed asset"
)

paused = Gauge(
    "swap_ledger_paused",
    "1 while an administrative pause is in effect",
    ["scope"],  # 'swaps' or 'asset_creation'
)

operation_latency = Histogram(
    "swap_ledger_operation_latency_seconds",
    "Time to complete a mutating ledger call",
    ["operation"],
    buckets=[0.0005, 0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25],
)

system_uptime_seconds = Gauge("swap_ledger_uptime_seconds", "System uptime in seconds")

system_info = Info("swap_ledger_system", "System information")


# ============================================================================
# HELPER FUNCTIONS & DECORATORS
# ============================================================================


def track_time(histogram):
    """
    Decorator to automatically track execution time.

    Args:
        histogram: Prometheus Histogram (or labelled child) to record time

    Example:
        @track_time(operation_latency.labels(operation="accept_swap"))
        def accept_swap(self, swap_id, caller):
            ...
    """

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.time()
            try:
                return func(*args, **kwargs)
            finally:
                duration = time.time() - start_time
                histogram.observe(duration)

        return wrapper

    return decorator


# ============================================================================
# METRICS COLLECTOR
# ============================================================================


class MetricsCollector:
    """
    Centralized metrics recording and export.
    """

    def __init__(self):
        self.start_time = time.time()
        self._update_system_info()

    def _update_system_info(self):
        """Update system information metric."""
        import platform

        system_info.info(
            {
                "version": "1.0.0",
                "platform": platform.system(),
                "python_version": platform.python_version(),
            }
        )

    def record_asset_created(self):
        assets_created_total.inc()

    def record_transfer(self, via: str):
        asset_transfers_total.labels(via=via).inc()

    def record_burn(self):
        assets_burned_total.inc()

    def record_swap_created(self):
        swap_transitions_total.labels(state="PENDING").inc()

    def record_swap_settled(self, state: str):
        """Record a swap leaving PENDING for a terminal state."""
        swap_transitions_total.labels(state=state).inc()

    def set_pending_swaps(self, count: int):
        """Set the escrow gauge from the ledger's own count of PENDING swaps."""
        pending_swaps.set(count)

    def record_rejection(self, operation: str, kind: str):
        rejected_calls_total.labels(operation=operation, kind=kind).inc()

    def set_paused(self, scope: str, value: bool):
        paused.labels(scope=scope).set(1 if value else 0)

    def update_uptime(self):
        """Update system uptime."""
        uptime = time.time() - self.start_time
        system_uptime_seconds.set(uptime)

    def get_metrics(self) -> bytes:
        """
        Get metrics in Prometheus format.

        Returns:
            Metrics as bytes in Prometheus exposition format
        """
        self.update_uptime()
        return generate_latest(REGISTRY)


# Global metrics collector instance
metrics_collector = MetricsCollector()
