"""FastAPI application entry point for the webhook gatekeeper.

Endpoints:
- POST /webhooks/{integration}: verify, filter and admit one webhook
- GET /health: liveness probe
- GET /metrics: Prometheus metrics

Status codes: accepted 202, skipped and ignored 200, failed verification
401, undecodable body 400, misconfigured integration 500, provider token
exchange failures 503 when retryable and 502 otherwise.
"""

from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST

from src.gatekeeper.config import GatekeeperSettings, get_settings, load_integrations
from src.gatekeeper.credentials.manager import CredentialManager
from src.gatekeeper.credentials.models import Principal
from src.gatekeeper.errors import ConfigurationError, CredentialExchangeError
from src.gatekeeper.events.metrics import (
    GatekeeperMetrics,
    generate_metrics_output,
    get_metrics,
)
from src.gatekeeper.github.client import GitHubAPIError, GitHubAppClient, RateLimitError
from src.gatekeeper.logging_config import configure_logging
from src.gatekeeper.verification.models import RawWebhookRequest
from src.gatekeeper.webhook.orchestrator import WebhookIngestOrchestrator


logger = structlog.get_logger(__name__)

# Retry-After sent with retryable upstream failures
DEFAULT_RETRY_AFTER_SECONDS = 30


def _redact_secret(value: Optional[str], visible_chars: int = 4) -> Optional[str]:
    """Redact a secret value, showing only the first few characters."""
    if value is None:
        return None
    if len(value) <= visible_chars:
        return "*" * len(value)
    return value[:visible_chars] + "*" * (len(value) - visible_chars)


def _log_configuration(settings: GatekeeperSettings) -> None:
    """Log configuration values with secrets redacted."""
    logger.info(
        "Gatekeeper configuration",
        integrations_file=settings.integrations_file,
        github_api_url=settings.github_api_url,
        github_app_id=settings.github_app_id,
        github_private_key=_redact_secret(settings.github_private_key),
        credential_refresh_buffer_seconds=settings.credential_refresh_buffer_seconds,
        credential_single_flight=settings.credential_single_flight,
        credential_max_cached_scopes=settings.credential_max_cached_scopes,
        exchange_timeout_seconds=settings.exchange_timeout_seconds,
        host=settings.host,
        port=settings.port,
    )


def build_orchestrator(
    settings: GatekeeperSettings,
    metrics: GatekeeperMetrics,
) -> WebhookIngestOrchestrator:
    """Wire integrations, credentials and the GitHub client from settings.

    Raises:
        ConfigurationError: If the integrations file or App key is invalid.
    """
    integrations = load_integrations(settings.integrations_file)

    credential_manager = None
    provider_client = None
    if settings.has_github_app:
        try:
            principal = Principal(
                id=settings.github_app_id,
                private_key=settings.github_private_key,
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid GitHub App credentials: {e}") from e
        credential_manager = CredentialManager(
            principal,
            refresh_buffer=timedelta(seconds=settings.credential_refresh_buffer_seconds),
            single_flight=settings.credential_single_flight,
            max_cached_scopes=settings.credential_max_cached_scopes,
            metrics=metrics,
        )
        provider_client = GitHubAppClient(base_url=settings.github_api_url)
    else:
        logger.info("GitHub App not configured; changed-path lookups disabled")

    return WebhookIngestOrchestrator(
        integrations,
        credential_manager=credential_manager,
        provider_client=provider_client,
        metrics=metrics,
        exchange_timeout=settings.exchange_timeout_seconds,
    )


def _error_body(message: str) -> dict:
    return {"accepted": False, "message": message}


def create_app(
    orchestrator: Optional[WebhookIngestOrchestrator] = None,
    metrics: Optional[GatekeeperMetrics] = None,
) -> FastAPI:
    """Create the gatekeeper application.

    Args:
        orchestrator: Pre-built orchestrator. When None, one is built from
            GatekeeperSettings during startup.
        metrics: Metrics container. Defaults to the global instance.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.metrics = metrics or get_metrics()
        if orchestrator is not None:
            app.state.orchestrator = orchestrator
            yield
            return

        settings = get_settings()
        configure_logging(settings.log_level, settings.log_json)
        logger.info("Webhook gatekeeper starting up...")
        _log_configuration(settings)

        app.state.orchestrator = build_orchestrator(settings, app.state.metrics)
        logger.info(
            "Webhook gatekeeper started",
            integrations=sorted(app.state.orchestrator.integrations),
        )

        yield

        logger.info("Webhook gatekeeper shutting down...")
        client = app.state.orchestrator.provider_client
        if client is not None:
            await client.close()
        logger.info("Webhook gatekeeper shutdown complete")

    app = FastAPI(
        title="Webhook Gatekeeper",
        description="Authenticity and admission control for inbound webhooks",
        version="1.0.0",
        lifespan=lifespan,
    )

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(request: Request, exc: ConfigurationError):
        logger.error(
            "Configuration error while handling webhook",
            integration=exc.integration,
            error=exc.message,
        )
        return JSONResponse(status_code=500, content=_error_body("Integration misconfigured"))

    @app.exception_handler(CredentialExchangeError)
    async def credential_error_handler(request: Request, exc: CredentialExchangeError):
        if exc.retryable:
            return JSONResponse(
                status_code=503,
                content=_error_body("Provider credential temporarily unavailable"),
                headers={"Retry-After": str(DEFAULT_RETRY_AFTER_SECONDS)},
            )
        return JSONResponse(status_code=502, content=_error_body("Provider credential exchange failed"))

    @app.exception_handler(GitHubAPIError)
    async def provider_error_handler(request: Request, exc: GitHubAPIError):
        if isinstance(exc, RateLimitError):
            retry_after = exc.retry_after if exc.retry_after is not None else DEFAULT_RETRY_AFTER_SECONDS
            return JSONResponse(
                status_code=503,
                content=_error_body("Provider rate limit exceeded"),
                headers={"Retry-After": str(retry_after)},
            )
        return JSONResponse(status_code=502, content=_error_body("Provider API request failed"))

    @app.get("/health")
    async def health():
        """Liveness probe endpoint."""
        return {"status": "healthy"}

    @app.get("/metrics")
    async def metrics_endpoint(request: Request):
        """Prometheus metrics endpoint."""
        registry = request.app.state.metrics.registry
        return Response(
            content=generate_metrics_output(registry),
            media_type=CONTENT_TYPE_LATEST,
        )

    @app.post("/webhooks/{integration}")
    async def receive_webhook(integration: str, request: Request):
        """Verify and admit one webhook for the named integration."""
        raw = RawWebhookRequest(
            headers=dict(request.headers),
            body=await request.body(),
        )
        outcome = await request.app.state.orchestrator.handle(integration, raw)
        return JSONResponse(
            status_code=outcome.http_status,
            content=outcome.to_response().model_dump(mode="json", exclude_none=True),
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    dev_settings = get_settings()
    uvicorn.run(
        "src.gatekeeper.main:app",
        host=dev_settings.host,
        port=dev_settings.port,
    )
