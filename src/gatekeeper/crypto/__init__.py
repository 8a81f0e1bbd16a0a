"""Cryptographic primitives: constant-time compare, HMAC, Ed25519, RS256."""

from src.gatekeeper.crypto.primitives import (
    b64url_decode,
    constant_time_equals,
    decode_hex,
    decode_jwt_claims_unverified,
    hmac_sha256,
    hmac_sha256_hex,
    load_ed25519_public_key,
    sign_rs256_jwt,
    verify_ed25519,
)

__all__ = [
    "b64url_decode",
    "constant_time_equals",
    "decode_hex",
    "decode_jwt_claims_unverified",
    "hmac_sha256",
    "hmac_sha256_hex",
    "load_ed25519_public_key",
    "sign_rs256_jwt",
    "verify_ed25519",
]
