"""Error taxonomy for the webhook gatekeeper.

Only operator-actionable and network-bound failures are raised. Expected,
attacker-triggerable outcomes (a bad signature, a skipped event) travel as
values: see VerificationResult and FilterDecision.

- ConfigurationError: missing or malformed secret, key or integration entry.
  Fatal for that integration; surfaced to the host as a 500.
- AssertionSigningError: the app private key could not sign an assertion.
- CredentialExchangeError: the provider did not mint a scoped token. The
  caller may retry with backoff; the credential cache is never touched.
"""

from typing import Optional


class GatekeeperError(Exception):
    """Base class for all raised gatekeeper errors."""


class ConfigurationError(GatekeeperError):
    """Raised when an integration is missing required secret material.

    Attributes:
        integration: Name of the affected integration, if known.
        message: Human-readable error description.
    """

    def __init__(self, message: str, integration: Optional[str] = None):
        self.integration = integration
        self.message = message
        if integration:
            message = f"[{integration}] {message}"
        super().__init__(message)


class AssertionSigningError(ConfigurationError):
    """Raised when the app-level assertion cannot be signed."""


class CredentialExchangeError(GatekeeperError):
    """Raised when exchanging an assertion for a scoped token fails.

    Attributes:
        scope_id: The scope the token was requested for.
        status_code: Provider HTTP status, if a response was received.
        retryable: Whether retrying later may succeed.
    """

    # Provider statuses worth retrying
    RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}

    def __init__(
        self,
        message: str,
        scope_id: Optional[str] = None,
        status_code: Optional[int] = None,
        retryable: Optional[bool] = None,
    ):
        self.scope_id = scope_id
        self.status_code = status_code
        if retryable is None:
            retryable = status_code is None or status_code in self.RETRYABLE_STATUS_CODES
        self.retryable = retryable
        self.message = message
        super().__init__(message)
