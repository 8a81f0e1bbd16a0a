"""Webhook ingest orchestrator.

Composes verification, parsing, optional changed-path enrichment and
admission filtering for one inbound webhook:

    verify -> decode JSON -> parse -> (fetch changed paths) -> filter -> downstream

Verification runs against the raw body before anything is decoded. Expected
failures become IngestOutcome values; only ConfigurationError,
CredentialExchangeError and provider API errors are raised.
"""

import json
import time
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import structlog

from src.gatekeeper.config import IntegrationConfig
from src.gatekeeper.credentials.manager import CredentialManager
from src.gatekeeper.errors import ConfigurationError
from src.gatekeeper.events.metrics import GatekeeperMetrics
from src.gatekeeper.filters.engine import AdmissionFilterEngine
from src.gatekeeper.filters.models import NormalizedEvent, Skip, create_filter_info
from src.gatekeeper.github.client import GitHubAPIError, GitHubAppClient
from src.gatekeeper.github.events import parse_github_webhook
from src.gatekeeper.verification.models import RawWebhookRequest
from src.gatekeeper.verification.strategies import SignatureVerifier
from src.gatekeeper.webhook.models import HTTP_STATUS, IngestOutcome, IngestStatus


logger = structlog.get_logger(__name__)

EventParser = Callable[[Any, RawWebhookRequest], Optional[NormalizedEvent]]

# Receives (integration name, normalized event or None, decoded payload)
Downstream = Callable[[str, Optional[NormalizedEvent], Any], Awaitable[None]]

DECISION_LABELS = {
    IngestStatus.REJECTED: "rejected",
    IngestStatus.IGNORED: "ignored",
    IngestStatus.SKIPPED: "skip",
    IngestStatus.ACCEPTED: "process",
}

DEFAULT_PARSERS: Dict[str, EventParser] = {
    "github": parse_github_webhook,
}


class WebhookIngestOrchestrator:
    """Decides, per webhook, whether it is authentic and worth processing.

    Integrations whose provider has no registered parser are verified and
    then handed downstream without admission filtering, since every rule
    reads pull request fields.

    Attributes:
        integrations: Integration settings keyed by name.
        credential_manager: Mints provider tokens for changed-path lookups.
        provider_client: GitHub client for changed-path lookups.
        exchange_timeout: Bound in seconds on each token exchange.
    """

    def __init__(
        self,
        integrations: Mapping[str, IntegrationConfig],
        credential_manager: Optional[CredentialManager] = None,
        provider_client: Optional[GitHubAppClient] = None,
        downstream: Optional[Downstream] = None,
        metrics: Optional[GatekeeperMetrics] = None,
        verifier: Optional[SignatureVerifier] = None,
        parsers: Optional[Mapping[str, EventParser]] = None,
        exchange_timeout: Optional[float] = None,
    ) -> None:
        self.integrations = dict(integrations)
        self.credential_manager = credential_manager
        self.provider_client = provider_client
        self.exchange_timeout = exchange_timeout
        self._downstream = downstream
        self._metrics = metrics
        self._verifier = verifier or SignatureVerifier()
        self._parsers = dict(parsers) if parsers is not None else dict(DEFAULT_PARSERS)
        self._engines: Dict[str, AdmissionFilterEngine] = {
            name: AdmissionFilterEngine(integration.filters)
            for name, integration in self.integrations.items()
        }

    def filter_engine(self, integration_name: str) -> AdmissionFilterEngine:
        """Return the live filter engine for an integration.

        Raises:
            ConfigurationError: If the integration is unknown.
        """
        engine = self._engines.get(integration_name)
        if engine is None:
            raise ConfigurationError("Unknown integration", integration=integration_name)
        return engine

    async def handle(
        self,
        integration_name: str,
        request: RawWebhookRequest,
    ) -> IngestOutcome:
        """Handle one inbound webhook.

        Args:
            integration_name: Integration the request was addressed to.
            request: The raw request.

        Returns:
            The outcome; see IngestStatus.

        Raises:
            ConfigurationError: Unknown integration or missing secret material.
            CredentialExchangeError: A token for the changed-path lookup
                could not be obtained.
            GitHubAPIError: The changed-path lookup failed.
        """
        integration = self.integrations.get(integration_name)
        if integration is None:
            logger.error("Webhook for unknown integration", integration=integration_name)
            raise ConfigurationError("Unknown integration", integration=integration_name)

        start = time.perf_counter()
        try:
            return await self._handle(integration, request)
        finally:
            if self._metrics is not None:
                self._metrics.record_ingest_duration(
                    integration_name, time.perf_counter() - start
                )

    async def _handle(
        self,
        integration: IntegrationConfig,
        request: RawWebhookRequest,
    ) -> IngestOutcome:
        name = integration.name

        try:
            result = self._verifier.verify(integration.scheme, integration.material(), request)
        except ConfigurationError as e:
            logger.error(
                "Integration is misconfigured",
                integration=name,
                scheme=integration.scheme.value,
                error=e.message,
            )
            if e.integration is None:
                raise ConfigurationError(e.message, integration=name) from e
            raise

        if self._metrics is not None:
            self._metrics.record_verification(
                name, integration.scheme.value, result.error_reason
            )

        if not result.valid:
            logger.info(
                "Webhook failed verification",
                integration=name,
                scheme=integration.scheme.value,
                reason=result.error_reason,
            )
            return self._outcome(
                IngestStatus.REJECTED,
                name,
                "Verification failed",
                reason=result.error_reason,
            )

        try:
            payload = json.loads(request.body)
        except (ValueError, RecursionError):
            logger.info("Webhook body is not valid JSON", integration=name)
            return self._outcome(
                IngestStatus.REJECTED,
                name,
                "Invalid JSON body",
                reason="invalid_json",
                http_status=400,
            )

        parser = self._parsers.get(integration.provider)
        if parser is None:
            await self._hand_downstream(name, None, payload)
            return self._outcome(IngestStatus.ACCEPTED, name, "Event accepted")

        event = parser(payload, request)
        if event is None:
            return self._outcome(IngestStatus.IGNORED, name, "Event type not handled")

        engine = self._engines[name]
        event = await self._with_changed_paths(engine, event)

        decision = engine.evaluate(event)
        if isinstance(decision, Skip):
            logger.info(
                "Webhook skipped by admission filter",
                integration=name,
                rule=decision.rule,
                reason=decision.reason,
                repository=event.repository,
                number=event.number,
            )
            return self._outcome(
                IngestStatus.SKIPPED,
                name,
                decision.reason,
                rule=decision.rule,
                filter_info=create_filter_info(decision),
                event=event,
            )

        await self._hand_downstream(name, event, payload)
        logger.info(
            "Webhook accepted",
            integration=name,
            repository=event.repository,
            number=event.number,
            action=event.action,
        )
        return self._outcome(IngestStatus.ACCEPTED, name, "Event accepted", event=event)

    async def _with_changed_paths(
        self,
        engine: AdmissionFilterEngine,
        event: NormalizedEvent,
    ) -> NormalizedEvent:
        """Fill in changed_paths when a path rule needs them."""
        if not engine.get_config().has_path_rules or event.changed_paths:
            return event
        if self.credential_manager is None or self.provider_client is None:
            return event
        if event.scope_id is None or event.repository is None or event.number is None:
            return event
        if "/" not in event.repository:
            return event

        owner, repo = event.repository.split("/", 1)
        credential = await self.credential_manager.get_scoped_token(
            event.scope_id,
            self.provider_client.token_exchanger,
            timeout=self.exchange_timeout,
        )
        try:
            paths = await self.provider_client.list_pull_request_files(
                credential.token, owner, repo, event.number
            )
        except GitHubAPIError as e:
            if e.is_auth_failure:
                self.credential_manager.invalidate(event.scope_id)
            raise
        return event.model_copy(update={"changed_paths": paths})

    async def _hand_downstream(
        self,
        name: str,
        event: Optional[NormalizedEvent],
        payload: Any,
    ) -> None:
        if self._downstream is not None:
            await self._downstream(name, event, payload)

    def _outcome(
        self,
        status: IngestStatus,
        integration: str,
        message: str,
        rule: str = "none",
        http_status: Optional[int] = None,
        **fields: Any,
    ) -> IngestOutcome:
        if self._metrics is not None:
            self._metrics.record_decision(integration, DECISION_LABELS[status], rule)
        return IngestOutcome(
            status=status,
            integration=integration,
            message=message,
            http_status=http_status or HTTP_STATUS[status],
            **fields,
        )
