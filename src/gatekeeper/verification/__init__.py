"""Inbound webhook signature verification.

verify(scheme, material, request) dispatches to one strategy per scheme:
- hmac_sha256: `sha256=<hex>` HMAC of the raw body
- shared_token: constant-time comparison of a header to a shared secret
- ed25519: signature over timestamp + raw body
- jwt_bearer: claims-only bearer token check
- hmac_sha256_timestamped: replay-guarded HMAC with a 5-minute window
"""

from src.gatekeeper.verification.models import (
    FailureReason,
    RawWebhookRequest,
    VerificationMaterial,
    VerificationResult,
    VerificationScheme,
)
from src.gatekeeper.verification.strategies import (
    Ed25519Strategy,
    HmacSha256Strategy,
    JwtBearerStrategy,
    SharedTokenStrategy,
    SignatureVerifier,
    TimestampedHmacStrategy,
    VerificationStrategy,
    default_strategies,
    sign_hmac_sha256,
    sign_hmac_sha256_timestamped,
    verify,
)

__all__ = [
    # Models
    "FailureReason",
    "RawWebhookRequest",
    "VerificationMaterial",
    "VerificationResult",
    "VerificationScheme",
    # Strategies
    "Ed25519Strategy",
    "HmacSha256Strategy",
    "JwtBearerStrategy",
    "SharedTokenStrategy",
    "TimestampedHmacStrategy",
    "VerificationStrategy",
    "default_strategies",
    # Engine
    "SignatureVerifier",
    "verify",
    "sign_hmac_sha256",
    "sign_hmac_sha256_timestamped",
]
