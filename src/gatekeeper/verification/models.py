"""Data models for inbound webhook verification.

A RawWebhookRequest carries the body bytes exactly as received: signatures
are computed over raw bytes, so nothing here parses or re-encodes the body.
VerificationMaterial holds the per-integration secrets and header names a
strategy needs, and VerificationResult is the value every strategy returns.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class VerificationScheme(str, Enum):
    """Supported webhook authentication schemes.

    Each integration is bound to exactly one scheme.

    Attributes:
        HMAC_SHA256: `sha256=<hex>` HMAC of the raw body (source hosts).
        SHARED_TOKEN: Raw shared secret echoed in a header.
        ED25519: Hex Ed25519 signature over timestamp + body.
        JWT_BEARER: Bearer token whose claims are checked.
        HMAC_SHA256_TIMESTAMPED: Replay-guarded `v0=<hex>` HMAC over
            `v0:{timestamp}:{body}` (chat-platform slash commands).
    """

    HMAC_SHA256 = "hmac_sha256"
    SHARED_TOKEN = "shared_token"
    ED25519 = "ed25519"
    JWT_BEARER = "jwt_bearer"
    HMAC_SHA256_TIMESTAMPED = "hmac_sha256_timestamped"


# Header names used when an integration does not override them
DEFAULT_SIGNATURE_HEADERS: Dict[VerificationScheme, str] = {
    VerificationScheme.HMAC_SHA256: "x-hub-signature-256",
    VerificationScheme.SHARED_TOKEN: "x-gitlab-token",
    VerificationScheme.ED25519: "x-signature-ed25519",
    VerificationScheme.JWT_BEARER: "authorization",
    VerificationScheme.HMAC_SHA256_TIMESTAMPED: "x-slack-signature",
}

DEFAULT_TIMESTAMP_HEADERS: Dict[VerificationScheme, str] = {
    VerificationScheme.ED25519: "x-signature-timestamp",
    VerificationScheme.HMAC_SHA256_TIMESTAMPED: "x-slack-request-timestamp",
}

# Issuer prefixes accepted for bot-framework bearer tokens
DEFAULT_ALLOWED_ISSUERS = (
    "https://api.botframework.com",
    "https://sts.windows.net/",
    "https://login.microsoftonline.com/",
)


class FailureReason(str, Enum):
    """Machine-readable reasons carried by a failed VerificationResult."""

    MISSING_SIGNATURE = "missing_signature"
    MALFORMED_SIGNATURE = "malformed_signature"
    SIGNATURE_MISMATCH = "signature_mismatch"
    MISSING_TOKEN = "missing_token"
    TOKEN_MISMATCH = "token_mismatch"
    MISSING_PUBLIC_KEY = "missing_public_key"
    MISSING_TIMESTAMP = "missing_timestamp"
    INVALID_TIMESTAMP = "invalid_timestamp"
    STALE_TIMESTAMP = "stale_timestamp"
    MISSING_AUTHORIZATION = "missing_authorization"
    INVALID_AUTHORIZATION_FORMAT = "invalid_authorization_format"
    EMPTY_TOKEN = "empty_token"
    MALFORMED_JWT = "malformed_jwt"
    INVALID_AUDIENCE = "invalid_audience"
    INVALID_ISSUER = "invalid_issuer"
    TOKEN_EXPIRED = "token_expired"


class RawWebhookRequest(BaseModel):
    """An inbound webhook exactly as the HTTP layer received it.

    Header names are lower-cased on construction so lookups are
    case-insensitive. The body is kept as bytes and never modified.

    Attributes:
        headers: Request headers, keyed by lower-case name.
        body: Raw, unparsed request body.
        received_at: When the host received the request (UTC).
    """

    model_config = ConfigDict(frozen=True)

    headers: Dict[str, str] = Field(default_factory=dict)
    body: bytes = b""
    received_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @field_validator("headers", mode="before")
    @classmethod
    def lower_case_headers(cls, v: Optional[Mapping[str, str]]) -> Dict[str, str]:
        """Normalize header names to lower case."""
        if v is None:
            return {}
        return {str(name).lower(): value for name, value in dict(v).items()}

    def header(self, name: str) -> Optional[str]:
        """Return a header value by case-insensitive name."""
        return self.headers.get(name.lower())


class VerificationMaterial(BaseModel):
    """Secret material and header layout for one integration.

    Which fields are required depends on the scheme; strategies raise
    ConfigurationError when a required field is missing.

    Attributes:
        secret: Shared HMAC secret or shared token.
        public_key: Hex-encoded raw Ed25519 public key.
        app_id: Expected `aud` claim for bearer tokens.
        signature_header: Overrides the scheme's default signature header.
        signature_prefix: Overrides the `sha256=` prefix of hmac_sha256
            signatures; an empty string accepts bare hex.
        timestamp_header: Overrides the scheme's default timestamp header.
        tolerance_seconds: Maximum clock skew for replay-guarded requests.
        allowed_issuers: Issuer prefixes accepted for bearer tokens.
    """

    model_config = ConfigDict(frozen=True)

    secret: Optional[str] = None
    public_key: Optional[str] = None
    app_id: Optional[str] = None
    signature_header: Optional[str] = None
    signature_prefix: Optional[str] = None
    timestamp_header: Optional[str] = None
    tolerance_seconds: int = Field(default=300, gt=0)
    allowed_issuers: List[str] = Field(
        default_factory=lambda: list(DEFAULT_ALLOWED_ISSUERS)
    )

    def signature_header_for(self, scheme: VerificationScheme) -> str:
        return (self.signature_header or DEFAULT_SIGNATURE_HEADERS[scheme]).lower()

    def timestamp_header_for(self, scheme: VerificationScheme) -> str:
        return (
            self.timestamp_header
            or DEFAULT_TIMESTAMP_HEADERS.get(scheme, "x-timestamp")
        ).lower()


class VerificationResult(BaseModel):
    """Outcome of verifying one request.

    Expected failures are reported here rather than raised.

    Attributes:
        valid: True if the request is authentic.
        error_reason: Why verification failed; None when valid.
    """

    model_config = ConfigDict(frozen=True)

    valid: bool
    error_reason: Optional[str] = None

    @classmethod
    def ok(cls) -> "VerificationResult":
        return cls(valid=True)

    @classmethod
    def fail(cls, reason: Union[FailureReason, str]) -> "VerificationResult":
        if isinstance(reason, FailureReason):
            reason = reason.value
        return cls(valid=False, error_reason=reason)
