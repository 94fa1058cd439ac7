"""
Observability module for tracing and metrics.

Provides OpenTelemetry spans and Prometheus metrics for the swap ledger.
"""

from .tracing import (
    setup_tracing,
    shutdown_tracing,
    create_span,
    get_current_span,
    get_tracer,
)
from .metrics import metrics_collector, track_time

__all__ = [
    'setup_tracing',
    'shutdown_tracing',
    'create_span',
    'get_current_span',
    'get_tracer',
    'metrics_collector',
    'track_time',
]
