"""Webhook ingest: verify, parse, filter, hand downstream."""

from src.gatekeeper.webhook.models import (
    HTTP_STATUS,
    IngestOutcome,
    IngestStatus,
    WebhookResponse,
)
from src.gatekeeper.webhook.orchestrator import (
    DEFAULT_PARSERS,
    Downstream,
    EventParser,
    WebhookIngestOrchestrator,
)

__all__ = [
    "DEFAULT_PARSERS",
    "Downstream",
    "EventParser",
    "HTTP_STATUS",
    "IngestOutcome",
    "IngestStatus",
    "WebhookIngestOrchestrator",
    "WebhookResponse",
]
