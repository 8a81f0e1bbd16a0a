"""Signature verification strategies, one per VerificationScheme.

Adding a provider means adding one strategy to the table (or reusing an
existing scheme) and one integration entry in configuration. Strategies are
pure: they read headers and the raw body, hash, and compare. They return a
VerificationResult for anything an attacker can influence and raise
ConfigurationError only when the integration itself is missing material.

Header layouts handled here:
    hmac_sha256              X-Hub-Signature-256: sha256=<hex>
    shared_token             X-Gitlab-Token: <secret>
    ed25519                  X-Signature-Ed25519: <hex>, X-Signature-Timestamp: <ts>
    jwt_bearer               Authorization: Bearer <jwt>
    hmac_sha256_timestamped  X-Slack-Signature: v0=<hex>, X-Slack-Request-Timestamp: <ts>
"""

import math
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional

import structlog

from src.gatekeeper.crypto.primitives import (
    constant_time_equals,
    decode_hex,
    decode_jwt_claims_unverified,
    hmac_sha256,
    hmac_sha256_hex,
    load_ed25519_public_key,
    verify_ed25519,
)
from src.gatekeeper.errors import ConfigurationError
from src.gatekeeper.verification.models import (
    FailureReason,
    RawWebhookRequest,
    VerificationMaterial,
    VerificationResult,
    VerificationScheme,
)


logger = structlog.get_logger(__name__)

HMAC_PREFIX = "sha256="
TIMESTAMPED_HMAC_VERSION = "v0"
BEARER_PREFIX = "Bearer "

# Upper bound for a request timestamp header, in Unix seconds
MAX_TIMESTAMP = 2 ** 63


class VerificationStrategy(ABC):
    """Verifies requests for a single scheme.

    Attributes:
        scheme: The scheme this strategy implements.
    """

    scheme: VerificationScheme

    @abstractmethod
    def verify(
        self,
        material: VerificationMaterial,
        request: RawWebhookRequest,
        now: float,
    ) -> VerificationResult:
        """Check one request.

        Args:
            material: The integration's secrets and header names.
            request: The raw request, body untouched.
            now: Current time in epoch seconds.

        Returns:
            VerificationResult; invalid requests never raise.

        Raises:
            ConfigurationError: If required material is missing or malformed.
        """


class HmacSha256Strategy(VerificationStrategy):
    """`sha256=<hex>` HMAC over the raw body.

    material.signature_prefix replaces `sha256=`; an empty prefix accepts the
    bare hex digest some providers send.
    """

    scheme = VerificationScheme.HMAC_SHA256

    def verify(self, material, request, now):
        if not material.secret:
            raise ConfigurationError("HMAC secret is not configured")

        header = request.header(material.signature_header_for(self.scheme))
        if not header:
            return VerificationResult.fail(FailureReason.MISSING_SIGNATURE)
        prefix = HMAC_PREFIX if material.signature_prefix is None else material.signature_prefix
        if not header.startswith(prefix):
            return VerificationResult.fail(FailureReason.MALFORMED_SIGNATURE)

        received = decode_hex(header[len(prefix):])
        if received is None:
            return VerificationResult.fail(FailureReason.MALFORMED_SIGNATURE)

        expected = hmac_sha256(material.secret, request.body)
        if not constant_time_equals(received, expected):
            return VerificationResult.fail(FailureReason.SIGNATURE_MISMATCH)
        return VerificationResult.ok()


class SharedTokenStrategy(VerificationStrategy):
    """Header value compared directly to the configured secret."""

    scheme = VerificationScheme.SHARED_TOKEN

    def verify(self, material, request, now):
        if not material.secret:
            raise ConfigurationError("Shared token is not configured")

        token = request.header(material.signature_header_for(self.scheme))
        if not token:
            return VerificationResult.fail(FailureReason.MISSING_TOKEN)
        if not constant_time_equals(token, material.secret):
            return VerificationResult.fail(FailureReason.TOKEN_MISMATCH)
        return VerificationResult.ok()


class Ed25519Strategy(VerificationStrategy):
    """Ed25519 signature over `timestamp || body`."""

    scheme = VerificationScheme.ED25519

    def verify(self, material, request, now):
        if not material.public_key:
            return VerificationResult.fail(FailureReason.MISSING_PUBLIC_KEY)

        signature_hex = request.header(material.signature_header_for(self.scheme))
        if not signature_hex:
            return VerificationResult.fail(FailureReason.MISSING_SIGNATURE)

        timestamp = request.header(material.timestamp_header_for(self.scheme))
        if not timestamp:
            return VerificationResult.fail(FailureReason.MISSING_TIMESTAMP)

        try:
            public_key = load_ed25519_public_key(material.public_key)
        except ValueError as exc:
            raise ConfigurationError(f"Ed25519 public key is malformed: {exc}") from exc

        signature = decode_hex(signature_hex)
        if signature is None:
            return VerificationResult.fail(FailureReason.MALFORMED_SIGNATURE)

        message = timestamp.encode("utf-8") + request.body
        if not verify_ed25519(public_key, signature, message):
            return VerificationResult.fail(FailureReason.SIGNATURE_MISMATCH)
        return VerificationResult.ok()


class JwtBearerStrategy(VerificationStrategy):
    """Claims-only check of a bearer JWT.

    Checks `aud`, `iss` and `exp`. The token signature is NOT verified
    against the identity provider's published keys; see DESIGN.md.
    """

    scheme = VerificationScheme.JWT_BEARER

    def verify(self, material, request, now):
        if not material.app_id:
            raise ConfigurationError("Bearer token app id is not configured")

        auth_header = request.header(material.signature_header_for(self.scheme))
        if not auth_header:
            return VerificationResult.fail(FailureReason.MISSING_AUTHORIZATION)
        if not auth_header.startswith(BEARER_PREFIX):
            return VerificationResult.fail(FailureReason.INVALID_AUTHORIZATION_FORMAT)

        token = auth_header[len(BEARER_PREFIX):].strip()
        if not token:
            return VerificationResult.fail(FailureReason.EMPTY_TOKEN)

        try:
            claims = decode_jwt_claims_unverified(token)
        except ValueError as exc:
            logger.debug("Bearer token could not be decoded", error=str(exc))
            return VerificationResult.fail(FailureReason.MALFORMED_JWT)

        if not self._audience_matches(claims.get("aud"), material.app_id):
            return VerificationResult.fail(FailureReason.INVALID_AUDIENCE)

        if not self._issuer_allowed(claims.get("iss"), material.allowed_issuers):
            return VerificationResult.fail(FailureReason.INVALID_ISSUER)

        exp = claims.get("exp")
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            return VerificationResult.fail(FailureReason.TOKEN_EXPIRED)
        # NaN compares False against everything and Infinity never expires
        if isinstance(exp, float) and not math.isfinite(exp):
            return VerificationResult.fail(FailureReason.TOKEN_EXPIRED)
        if exp <= now:
            return VerificationResult.fail(FailureReason.TOKEN_EXPIRED)

        return VerificationResult.ok()

    @staticmethod
    def _audience_matches(aud, app_id: str) -> bool:
        if isinstance(aud, str):
            return aud == app_id
        if isinstance(aud, list):
            return app_id in aud
        return False

    @staticmethod
    def _issuer_allowed(iss, allowed_issuers) -> bool:
        if not isinstance(iss, str):
            return False
        return any(iss == issuer or iss.startswith(issuer) for issuer in allowed_issuers)


class TimestampedHmacStrategy(VerificationStrategy):
    """Replay-guarded `v0=<hex>` HMAC over `v0:{timestamp}:{body}`.

    The timestamp window is checked before any hashing so stale requests
    are rejected regardless of signature validity.
    """

    scheme = VerificationScheme.HMAC_SHA256_TIMESTAMPED

    def verify(self, material, request, now):
        if not material.secret:
            raise ConfigurationError("Signing secret is not configured")

        timestamp = request.header(material.timestamp_header_for(self.scheme))
        if not timestamp:
            return VerificationResult.fail(FailureReason.MISSING_TIMESTAMP)
        try:
            ts = int(timestamp.strip())
        except ValueError:
            return VerificationResult.fail(FailureReason.INVALID_TIMESTAMP)
        if not 0 <= ts <= MAX_TIMESTAMP:
            return VerificationResult.fail(FailureReason.INVALID_TIMESTAMP)
        if abs(now - ts) > material.tolerance_seconds:
            return VerificationResult.fail(FailureReason.STALE_TIMESTAMP)

        signature = request.header(material.signature_header_for(self.scheme))
        if not signature:
            return VerificationResult.fail(FailureReason.MISSING_SIGNATURE)
        if not signature.startswith(f"{TIMESTAMPED_HMAC_VERSION}="):
            return VerificationResult.fail(FailureReason.MALFORMED_SIGNATURE)

        expected = sign_hmac_sha256_timestamped(request.body, material.secret, timestamp)
        if not constant_time_equals(signature, expected):
            return VerificationResult.fail(FailureReason.SIGNATURE_MISMATCH)
        return VerificationResult.ok()


def sign_hmac_sha256(body: bytes, secret: str) -> str:
    """Build the `sha256=<hex>` header value for body."""
    return HMAC_PREFIX + hmac_sha256_hex(secret, body)


def sign_hmac_sha256_timestamped(body: bytes, secret: str, timestamp: str) -> str:
    """Build the `v0=<hex>` header value for body sent at timestamp."""
    base = f"{TIMESTAMPED_HMAC_VERSION}:{timestamp}:".encode("utf-8") + body
    return f"{TIMESTAMPED_HMAC_VERSION}=" + hmac_sha256_hex(secret, base)


def default_strategies() -> Dict[VerificationScheme, VerificationStrategy]:
    """Return a fresh strategy table covering every scheme."""
    strategies = (
        HmacSha256Strategy(),
        SharedTokenStrategy(),
        Ed25519Strategy(),
        JwtBearerStrategy(),
        TimestampedHmacStrategy(),
    )
    return {strategy.scheme: strategy for strategy in strategies}


class SignatureVerifier:
    """Dispatches verification to the strategy registered for a scheme.

    Attributes:
        strategies: Mapping from scheme to strategy.
    """

    def __init__(
        self,
        strategies: Optional[Dict[VerificationScheme, VerificationStrategy]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.strategies = strategies if strategies is not None else default_strategies()
        self._clock = clock

    def register(self, strategy: VerificationStrategy) -> None:
        """Add or replace the strategy for strategy.scheme."""
        self.strategies[strategy.scheme] = strategy

    def verify(
        self,
        scheme: VerificationScheme,
        material: VerificationMaterial,
        request: RawWebhookRequest,
    ) -> VerificationResult:
        """Verify request under scheme.

        Raises:
            ConfigurationError: If no strategy is registered for the scheme
                or the material is incomplete.
        """
        try:
            strategy = self.strategies.get(VerificationScheme(scheme))
        except ValueError:
            strategy = None
        if strategy is None:
            raise ConfigurationError(f"No verification strategy for scheme '{scheme}'")
        return strategy.verify(material, request, self._clock())


_default_verifier = SignatureVerifier()


def verify(
    scheme: VerificationScheme,
    material: VerificationMaterial,
    request: RawWebhookRequest,
) -> VerificationResult:
    """Verify request with the process-wide default strategy table."""
    return _default_verifier.verify(scheme, material, request)
