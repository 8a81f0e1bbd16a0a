"""Gatekeeper observability: Prometheus metrics."""

from src.gatekeeper.events.metrics import (
    GatekeeperMetrics,
    generate_metrics_output,
    get_metrics,
)

__all__ = [
    "GatekeeperMetrics",
    "generate_metrics_output",
    "get_metrics",
]
