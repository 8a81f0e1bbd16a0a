"""Outbound credential lifecycle.

- Principal / IssuedCredential: app identity and scoped tokens
- CredentialManager: RS256 assertion minting and a per-scope token cache
  that never serves a token within 5 minutes of expiry
"""

from src.gatekeeper.credentials.manager import (
    ASSERTION_CLOCK_DRIFT,
    ASSERTION_LIFETIME,
    DEFAULT_REFRESH_BUFFER,
    CredentialManager,
    ExchangeFn,
)
from src.gatekeeper.credentials.models import IssuedCredential, Principal

__all__ = [
    "ASSERTION_CLOCK_DRIFT",
    "ASSERTION_LIFETIME",
    "DEFAULT_REFRESH_BUFFER",
    "CredentialManager",
    "ExchangeFn",
    "IssuedCredential",
    "Principal",
]
