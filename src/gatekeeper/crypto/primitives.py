"""Cryptographic building blocks shared by the verification strategies.

All functions here are synchronous and CPU-bound. Comparison helpers never
raise on attacker-controlled input; signing helpers raise on bad key material
because that is an operator problem, not a request problem.
"""

import base64
import binascii
import hashlib
import hmac
import json
from typing import Any, Dict, Optional, Union

import jwt
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey


BytesLike = Union[bytes, str]

# Raw Ed25519 public keys and signatures, in bytes
ED25519_PUBLIC_KEY_SIZE = 32
ED25519_SIGNATURE_SIZE = 64


def _to_bytes(value: BytesLike) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    return value


def constant_time_equals(left: BytesLike, right: BytesLike) -> bool:
    """Compare two values without leaking the position of the first mismatch.

    Length mismatches return False up front. The length of a digest is not
    secret, so the early return does not help an attacker guess its content.
    """
    left_bytes = _to_bytes(left)
    right_bytes = _to_bytes(right)
    if len(left_bytes) != len(right_bytes):
        return False
    return hmac.compare_digest(left_bytes, right_bytes)


def hmac_sha256(secret: BytesLike, message: bytes) -> bytes:
    """Return the raw HMAC-SHA256 digest of message under secret."""
    return hmac.new(_to_bytes(secret), message, hashlib.sha256).digest()


def hmac_sha256_hex(secret: BytesLike, message: bytes) -> str:
    """Return the lowercase hex HMAC-SHA256 digest of message under secret."""
    return hmac_sha256(secret, message).hex()


def decode_hex(value: str) -> Optional[bytes]:
    """Decode a hex string, returning None instead of raising."""
    try:
        return bytes.fromhex(value.strip())
    except ValueError:
        return None


def load_ed25519_public_key(public_key_hex: str) -> Ed25519PublicKey:
    """Load a raw 32-byte Ed25519 public key from its hex form.

    Raises:
        ValueError: If the value is not hex or not 32 bytes long.
    """
    raw = decode_hex(public_key_hex)
    if raw is None:
        raise ValueError("public key is not valid hex")
    if len(raw) != ED25519_PUBLIC_KEY_SIZE:
        raise ValueError(
            f"public key must be {ED25519_PUBLIC_KEY_SIZE} bytes, got {len(raw)}"
        )
    return Ed25519PublicKey.from_public_bytes(raw)


def verify_ed25519(public_key: Ed25519PublicKey, signature: bytes, message: bytes) -> bool:
    """Verify an Ed25519 signature over message. Ed25519 hashes internally."""
    if len(signature) != ED25519_SIGNATURE_SIZE:
        return False
    try:
        public_key.verify(signature, message)
    except InvalidSignature:
        return False
    return True


def sign_rs256_jwt(claims: Dict[str, Any], private_key_pem: str) -> str:
    """Sign claims as a compact RS256 JWT.

    Raises:
        ValueError, TypeError or jwt.PyJWTError: on malformed key material.
            Callers translate these into AssertionSigningError.
    """
    return jwt.encode(claims, private_key_pem, algorithm="RS256")


def b64url_decode(segment: str) -> bytes:
    """Decode an unpadded base64url segment.

    Raises:
        ValueError: If the segment is not valid base64url.
    """
    padded = segment + "=" * (-len(segment) % 4)
    try:
        return base64.urlsafe_b64decode(padded.encode("ascii"))
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise ValueError(f"invalid base64url segment: {exc}") from exc


def decode_jwt_claims_unverified(token: str) -> Dict[str, Any]:
    """Decode the payload segment of a compact JWT without checking its signature.

    Raises:
        ValueError: If the token does not have three segments or the payload
            is not a base64url-encoded JSON object.
    """
    parts = token.split(".")
    if len(parts) != 3:
        raise ValueError("token must have exactly three segments")
    try:
        claims = json.loads(b64url_decode(parts[1]).decode("utf-8"))
    except UnicodeDecodeError as exc:
        raise ValueError(f"payload is not UTF-8: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ValueError(f"payload is not JSON: {exc}") from exc
    except RecursionError as exc:
        raise ValueError("payload is nested too deeply") from exc
    if not isinstance(claims, dict):
        raise ValueError("payload is not a JSON object")
    return claims
