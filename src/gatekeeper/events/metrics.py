"""Prometheus metrics for gatekeeper observability.

Metrics are exposed at the `/metrics` endpoint in Prometheus format.

Metrics Defined:
- gatekeeper_verifications_total: Counter of signature checks by result
- gatekeeper_admission_decisions_total: Counter of filter decisions by rule
- gatekeeper_credential_requests_total: Counter of token cache hits, misses
  and failed exchanges
- gatekeeper_ingest_duration_seconds: Histogram of end-to-end ingest time
"""

from typing import Optional

import structlog
from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)


logger = structlog.get_logger(__name__)


# Ingest is CPU-bound except for optional token exchange and file listing,
# so buckets run from 1ms up to the exchange timeout range
DEFAULT_DURATION_BUCKETS = (
    0.001,
    0.005,
    0.01,
    0.025,
    0.05,
    0.1,
    0.25,
    0.5,
    1.0,
    2.5,
    5.0,
    10.0,
)

CREDENTIAL_RESULTS = ("hit", "miss", "error")


class GatekeeperMetrics:
    """Container for all gatekeeper Prometheus metrics.

    Supports custom registries for testing.

    Metrics:
        verifications_total: Labels: integration, scheme, result
            (valid or the failure reason).

        admission_decisions_total: Labels: integration, decision
            (process/skip/ignored/rejected), rule.

        credential_requests_total: Labels: result (hit/miss/error).

        ingest_duration_seconds: Labels: integration.

    Example:
        >>> metrics = GatekeeperMetrics(registry=CollectorRegistry())
        >>> metrics.record_verification("github", "hmac_sha256", None)
        >>> metrics.record_decision("github", "skip", "draft")
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """Initialize gatekeeper metrics.

        Args:
            registry: Optional Prometheus registry. If None, uses the
                      default REGISTRY. Pass a custom registry for testing.
        """
        self.registry = registry or REGISTRY

        self.verifications_total = Counter(
            "gatekeeper_verifications_total",
            "Total number of webhook signature verifications",
            labelnames=["integration", "scheme", "result"],
            registry=self.registry,
        )

        self.admission_decisions_total = Counter(
            "gatekeeper_admission_decisions_total",
            "Total number of admission decisions made for webhooks",
            labelnames=["integration", "decision", "rule"],
            registry=self.registry,
        )

        self.credential_requests_total = Counter(
            "gatekeeper_credential_requests_total",
            "Total number of scoped credential requests by cache result",
            labelnames=["result"],
            registry=self.registry,
        )

        self.ingest_duration_seconds = Histogram(
            "gatekeeper_ingest_duration_seconds",
            "Time spent handling a webhook in seconds",
            labelnames=["integration"],
            buckets=DEFAULT_DURATION_BUCKETS,
            registry=self.registry,
        )

        for result in CREDENTIAL_RESULTS:
            self.credential_requests_total.labels(result=result)

    def record_verification(
        self,
        integration: str,
        scheme: str,
        error_reason: Optional[str],
    ) -> None:
        """Record a verification outcome.

        Args:
            integration: Integration name.
            scheme: Verification scheme value.
            error_reason: Failure reason, or None when the signature was valid.
        """
        self.verifications_total.labels(
            integration=integration,
            scheme=scheme,
            result=error_reason or "valid",
        ).inc()

    def record_decision(
        self,
        integration: str,
        decision: str,
        rule: str = "none",
    ) -> None:
        """Record an admission decision.

        Args:
            integration: Integration name.
            decision: One of process, skip, ignored, rejected.
            rule: The filter rule that fired, "none" otherwise.
        """
        self.admission_decisions_total.labels(
            integration=integration,
            decision=decision,
            rule=rule,
        ).inc()

    def record_credential_request(self, result: str) -> None:
        """Record a credential cache hit, miss or exchange error."""
        if result not in CREDENTIAL_RESULTS:
            logger.warning("Unknown credential result", result=result)
            return
        self.credential_requests_total.labels(result=result).inc()

    def record_ingest_duration(
        self,
        integration: str,
        duration_seconds: float,
    ) -> None:
        self.ingest_duration_seconds.labels(
            integration=integration,
        ).observe(duration_seconds)


# Global metrics instance for the default registry
_default_metrics: Optional[GatekeeperMetrics] = None


def get_metrics(registry: Optional[CollectorRegistry] = None) -> GatekeeperMetrics:
    """Get or create the gatekeeper metrics instance.

    Args:
        registry: Optional Prometheus registry. If None, returns the
                  global metrics instance for the default registry.

    Returns:
        GatekeeperMetrics: The metrics instance.
    """
    global _default_metrics

    if registry is not None:
        return GatekeeperMetrics(registry=registry)

    if _default_metrics is None:
        _default_metrics = GatekeeperMetrics()

    return _default_metrics


def generate_metrics_output(registry: Optional[CollectorRegistry] = None) -> bytes:
    """Generate Prometheus metrics output for the /metrics endpoint.

    Args:
        registry: Optional Prometheus registry. If None, uses the
                  default REGISTRY.

    Returns:
        bytes: Prometheus metrics in text format.
    """
    target_registry = registry or REGISTRY
    return generate_latest(target_registry)
