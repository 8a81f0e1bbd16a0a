"""Credential models for outbound provider authentication.

A Principal is the app-level identity (for GitHub, the App id and its PEM
private key). An IssuedCredential is a short-lived, scope-bound access token
minted by the provider in exchange for a signed assertion. Credentials are
replaced on refresh, never mutated, and never persisted.
"""

from datetime import datetime, timedelta
from typing import Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


PEM_MARKERS = ("BEGIN RSA PRIVATE KEY", "BEGIN PRIVATE KEY")


class Principal(BaseModel):
    """App-level identity used to mint assertions.

    Attributes:
        id: The app identifier, used as the assertion issuer.
        private_key: PEM-encoded RSA private key.
    """

    model_config = ConfigDict(frozen=True)

    id: Union[int, str]
    private_key: str = Field(..., repr=False)

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: Union[int, str]) -> Union[int, str]:
        """Validate that the app id is positive or non-empty."""
        if isinstance(v, int) and v <= 0:
            raise ValueError("principal id must be positive")
        if isinstance(v, str) and not v.strip():
            raise ValueError("principal id cannot be empty")
        return v

    @field_validator("private_key")
    @classmethod
    def validate_private_key(cls, v: str) -> str:
        """Validate that the private key looks like a PEM RSA key."""
        if not v or not v.strip():
            raise ValueError("private key cannot be empty")
        if not any(marker in v for marker in PEM_MARKERS):
            raise ValueError("private key must be in PEM format")
        return v


class IssuedCredential(BaseModel):
    """A provider-scoped access token.

    Attributes:
        token: The bearer token to attach to provider calls.
        expires_at: When the provider stops accepting the token (UTC).
        scope_id: The scope (e.g. installation id) the token is valid for.
        issued_at: When the token was obtained (UTC).
    """

    model_config = ConfigDict(frozen=True)

    token: str = Field(..., min_length=1, repr=False)
    expires_at: datetime
    scope_id: str
    issued_at: datetime

    def remaining(self, now: datetime) -> timedelta:
        """Return how long the token stays valid after now."""
        return self.expires_at - now

    def is_fresh(self, now: datetime, buffer: timedelta) -> bool:
        """Return True if the token outlives now by more than buffer."""
        return self.remaining(now) > buffer
