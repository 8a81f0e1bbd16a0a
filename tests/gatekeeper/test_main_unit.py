"""Unit tests for the HTTP surface, driven through FastAPI's TestClient."""

import json

import httpx
import pytest
from fastapi.testclient import TestClient
from prometheus_client import CollectorRegistry

from src.gatekeeper.config import IntegrationConfig
from src.gatekeeper.credentials import CredentialManager, Principal
from src.gatekeeper.events.metrics import GatekeeperMetrics
from src.gatekeeper.filters import FilterConfig
from src.gatekeeper.github import GitHubAppClient
from src.gatekeeper.main import _redact_secret, create_app
from src.gatekeeper.verification import sign_hmac_sha256
from src.gatekeeper.webhook import WebhookIngestOrchestrator


SECRET = "webhook-secret"


def _body(draft=False):
    return json.dumps(
        {
            "action": "opened",
            "number": 3,
            "pull_request": {
                "draft": draft,
                "head": {"ref": "feature"},
                "base": {"ref": "main"},
                "labels": [],
                "changed_files": 1,
            },
            "repository": {"full_name": "acme/widgets"},
            "installation": {"id": 5},
        }
    ).encode()


def _headers(body, secret=SECRET):
    return {
        "X-Hub-Signature-256": sign_hmac_sha256(body, secret),
        "X-GitHub-Event": "pull_request",
        "Content-Type": "application/json",
    }


def _integrations(**overrides):
    fields = {"name": "github", "scheme": "hmac_sha256", "secret": SECRET}
    fields.update(overrides)
    return {"github": IntegrationConfig(**fields)}


@pytest.fixture
def metrics():
    return GatekeeperMetrics(registry=CollectorRegistry())


@pytest.fixture
def client(metrics):
    orchestrator = WebhookIngestOrchestrator(_integrations(), metrics=metrics)
    with TestClient(create_app(orchestrator=orchestrator, metrics=metrics)) as test_client:
        yield test_client


class TestWebhookEndpoint:
    def test_accepted(self, client):
        body = _body()
        response = client.post("/webhooks/github", content=body, headers=_headers(body))
        assert response.status_code == 202
        assert response.json() == {"accepted": True, "message": "Event accepted"}

    def test_skipped(self, client):
        body = _body(draft=True)
        response = client.post("/webhooks/github", content=body, headers=_headers(body))
        assert response.status_code == 200
        data = response.json()
        assert data["accepted"] is False
        assert data["filter_info"] == {
            "skipped": True,
            "filter_name": "draft",
            "reason": "PR is a draft",
        }

    def test_bad_signature(self, client):
        body = _body()
        response = client.post(
            "/webhooks/github", content=body, headers=_headers(body, secret="nope")
        )
        assert response.status_code == 401
        assert response.json()["accepted"] is False

    def test_body_must_match_signature_exactly(self, client):
        body = _body()
        headers = _headers(body)
        response = client.post("/webhooks/github", content=body + b"\n", headers=headers)
        assert response.status_code == 401

    def test_invalid_json(self, client):
        body = b"{oops"
        response = client.post("/webhooks/github", content=body, headers=_headers(body))
        assert response.status_code == 400

    def test_ignored_event(self, client):
        body = b'{"zen": "Keep it logically awesome."}'
        headers = _headers(body)
        headers["X-GitHub-Event"] = "ping"
        response = client.post("/webhooks/github", content=body, headers=headers)
        assert response.status_code == 200
        assert response.json()["accepted"] is False

    def test_unknown_integration_is_500(self, client):
        body = _body()
        response = client.post("/webhooks/other", content=body, headers=_headers(body))
        assert response.status_code == 500


class TestUpstreamFailures:
    def _client(self, rsa_private_pem, status=None, handler=None):
        if handler is None:
            def handler(request):
                return httpx.Response(status)

        orchestrator = WebhookIngestOrchestrator(
            _integrations(filters=FilterConfig(skip_paths=["*.md"])),
            credential_manager=CredentialManager(
                Principal(id=1, private_key=rsa_private_pem)
            ),
            provider_client=GitHubAppClient(
                transport=httpx.MockTransport(handler), max_retries=0
            ),
        )
        metrics = GatekeeperMetrics(registry=CollectorRegistry())
        return TestClient(create_app(orchestrator=orchestrator, metrics=metrics))

    def test_retryable_exchange_failure_is_503(self, rsa_private_pem):
        with self._client(rsa_private_pem, 503) as client:
            body = _body()
            response = client.post("/webhooks/github", content=body, headers=_headers(body))
        assert response.status_code == 503
        assert "Retry-After" in response.headers

    def test_permanent_exchange_failure_is_502(self, rsa_private_pem):
        with self._client(rsa_private_pem, 404) as client:
            body = _body()
            response = client.post("/webhooks/github", content=body, headers=_headers(body))
        assert response.status_code == 502

    def test_non_json_files_response_is_502(self, rsa_private_pem):
        def handler(request):
            if request.url.path.endswith("/access_tokens"):
                return httpx.Response(
                    201, json={"token": "ghs_x", "expires_at": "2099-01-01T00:00:00Z"}
                )
            return httpx.Response(200, text="<html>gateway</html>")

        with self._client(rsa_private_pem, handler=handler) as client:
            body = _body()
            response = client.post("/webhooks/github", content=body, headers=_headers(body))
        assert response.status_code == 502
        assert response.json()["message"] == "Provider API request failed"


class TestOperationalEndpoints:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_metrics(self, client):
        body = _body()
        client.post("/webhooks/github", content=body, headers=_headers(body))

        response = client.get("/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "gatekeeper_verifications_total" in response.text
        assert 'decision="process"' in response.text


class TestRedaction:
    def test_redact_secret(self):
        assert _redact_secret("abcdefgh") == "abcd****"
        assert _redact_secret("abc") == "***"
        assert _redact_secret(None) is None
