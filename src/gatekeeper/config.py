"""Gatekeeper configuration.

Process-wide settings come from environment variables with the GATEKEEPER_
prefix (pydantic-settings). Per-integration secrets, verification schemes
and admission filters come from a YAML file:

    github-main:
      scheme: hmac_sha256
      provider: github
      secret: "..."
      filters: code_review        # preset name, or a FilterConfig mapping
    discord-bot:
      scheme: ed25519
      provider: discord
      public_key: "<64 hex chars>"

The file may also nest the mapping under a top-level `integrations:` key.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import structlog
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.gatekeeper.errors import ConfigurationError
from src.gatekeeper.filters.models import DEFAULT_FILTERS, FilterConfig
from src.gatekeeper.verification.models import (
    DEFAULT_ALLOWED_ISSUERS,
    VerificationMaterial,
    VerificationScheme,
)


logger = structlog.get_logger(__name__)

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Fields never written to logs in clear
SECRET_FIELDS = ("secret",)


class GatekeeperSettings(BaseSettings):
    """Gatekeeper configuration from environment variables.

    All environment variables are prefixed with GATEKEEPER_
    (e.g., GATEKEEPER_GITHUB_APP_ID).

    GitHub App credentials are optional; without them the gatekeeper still
    verifies and filters, but cannot fetch changed paths for path rules.
    """

    model_config = SettingsConfigDict(
        env_prefix="GATEKEEPER_",
        case_sensitive=False,
    )

    # -------------------------------------------------------------------------
    # Integrations
    # -------------------------------------------------------------------------
    # YAML file describing every integration
    integrations_file: str = "integrations.yaml"

    # -------------------------------------------------------------------------
    # GitHub App
    # -------------------------------------------------------------------------
    github_app_id: Optional[str] = None

    # PEM-encoded RSA private key of the App
    github_private_key: Optional[str] = None

    # Base URL for GitHub API (supports GitHub Enterprise)
    github_api_url: str = "https://api.github.com"

    # -------------------------------------------------------------------------
    # Credential cache
    # -------------------------------------------------------------------------
    credential_refresh_buffer_seconds: int = 300
    credential_single_flight: bool = False
    credential_max_cached_scopes: Optional[int] = None
    exchange_timeout_seconds: float = 10.0

    # -------------------------------------------------------------------------
    # Logging
    # -------------------------------------------------------------------------
    log_level: str = "INFO"
    log_json: bool = True

    # -------------------------------------------------------------------------
    # Server Configuration
    # -------------------------------------------------------------------------
    host: str = "0.0.0.0"
    port: int = 8080

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------
    @field_validator("github_app_id", "github_private_key")
    @classmethod
    def validate_not_blank(cls, v: Optional[str]) -> Optional[str]:
        """Reject values that are set but empty."""
        if v is not None and not v.strip():
            raise ValueError("value cannot be empty when set")
        return v

    @field_validator("github_private_key")
    @classmethod
    def unescape_private_key(cls, v: Optional[str]) -> Optional[str]:
        """Accept PEM keys passed with escaped newlines in one env var."""
        if v is not None and "\\n" in v:
            return v.replace("\\n", "\n")
        return v

    @field_validator("github_api_url")
    @classmethod
    def validate_api_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("github_api_url must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("credential_refresh_buffer_seconds")
    @classmethod
    def validate_refresh_buffer(cls, v: int) -> int:
        if v < 0:
            raise ValueError("credential_refresh_buffer_seconds cannot be negative")
        return v

    @field_validator("credential_max_cached_scopes")
    @classmethod
    def validate_max_cached_scopes(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 1:
            raise ValueError("credential_max_cached_scopes must be at least 1")
        return v

    @field_validator("exchange_timeout_seconds")
    @classmethod
    def validate_exchange_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("exchange_timeout_seconds must be positive")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in VALID_LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(VALID_LOG_LEVELS)}")
        return level

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate that port is in valid range."""
        if not 1 <= v <= 65535:
            raise ValueError("port must be between 1 and 65535")
        return v

    @property
    def has_github_app(self) -> bool:
        return bool(self.github_app_id and self.github_private_key)


def get_settings() -> GatekeeperSettings:
    """Create and return GatekeeperSettings instance.

    Raises:
        pydantic.ValidationError: If a field is invalid.
    """
    return GatekeeperSettings()


class IntegrationConfig(BaseModel):
    """One webhook integration.

    Attributes:
        name: Integration name; the path segment of POST /webhooks/{name}.
        scheme: How inbound requests are authenticated.
        provider: Which event parser maps payloads (e.g. "github").
        secret: HMAC secret or shared token.
        public_key: Hex Ed25519 public key.
        app_id: Expected bearer token audience.
        signature_header: Overrides the scheme's default signature header.
        signature_prefix: Overrides the `sha256=` prefix of hmac_sha256
            signatures; an empty string accepts bare hex.
        timestamp_header: Overrides the scheme's default timestamp header.
        tolerance_seconds: Replay window for timestamped schemes.
        allowed_issuers: Accepted bearer token issuer prefixes.
        filters: Admission filter parameters.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., min_length=1)
    scheme: VerificationScheme
    provider: str = "github"
    secret: Optional[str] = Field(default=None, repr=False)
    public_key: Optional[str] = None
    app_id: Optional[str] = None
    signature_header: Optional[str] = None
    signature_prefix: Optional[str] = None
    timestamp_header: Optional[str] = None
    tolerance_seconds: int = Field(default=300, gt=0)
    allowed_issuers: List[str] = Field(
        default_factory=lambda: list(DEFAULT_ALLOWED_ISSUERS)
    )
    filters: FilterConfig = Field(default_factory=FilterConfig)

    @field_validator("provider")
    @classmethod
    def normalize_provider(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("filters", mode="before")
    @classmethod
    def resolve_filter_preset(cls, v: Any) -> Any:
        """Accept a DEFAULT_FILTERS preset name in place of a mapping."""
        if isinstance(v, str):
            preset = DEFAULT_FILTERS.get(v)
            if preset is None:
                raise ValueError(
                    f"unknown filter preset '{v}' "
                    f"(known: {', '.join(sorted(DEFAULT_FILTERS))})"
                )
            return preset
        if v is None:
            return FilterConfig()
        return v

    def material(self) -> VerificationMaterial:
        """Secret material for the verification engine."""
        return VerificationMaterial(
            secret=self.secret,
            public_key=self.public_key,
            app_id=self.app_id,
            signature_header=self.signature_header,
            signature_prefix=self.signature_prefix,
            timestamp_header=self.timestamp_header,
            tolerance_seconds=self.tolerance_seconds,
            allowed_issuers=self.allowed_issuers,
        )

    def redacted(self) -> Dict[str, Any]:
        """Loggable view with secrets masked."""
        data = self.model_dump(mode="json", exclude={"filters"})
        for field in SECRET_FIELDS:
            if data.get(field):
                data[field] = "***"
        return data


def _read_yaml(path: Union[str, Path]) -> Any:
    try:
        with open(path, "r") as f:
            return yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(f"Integrations file not found: {path}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse integrations YAML: {e}") from e


def parse_integrations(data: Any) -> Dict[str, IntegrationConfig]:
    """Validate a decoded integrations mapping.

    Raises:
        ConfigurationError: If the mapping or any entry is invalid. The
            error names the offending integration.
    """
    if isinstance(data, dict) and set(data) == {"integrations"}:
        data = data["integrations"]
    if not data:
        raise ConfigurationError("No integrations configured")
    if not isinstance(data, dict):
        raise ConfigurationError("Integrations must be a mapping of name to settings")

    integrations: Dict[str, IntegrationConfig] = {}
    for name, entry in data.items():
        name = str(name)
        if not isinstance(entry, dict):
            raise ConfigurationError("Integration settings must be a mapping", integration=name)
        try:
            integrations[name] = IntegrationConfig.model_validate({**entry, "name": name})
        except ValidationError as e:
            raise ConfigurationError(f"Invalid integration: {e}", integration=name) from e
    return integrations


def load_integrations(path: Union[str, Path]) -> Dict[str, IntegrationConfig]:
    """Load and validate integrations from a YAML file.

    Args:
        path: Path to the YAML file.

    Returns:
        Integrations keyed by name.

    Raises:
        ConfigurationError: If the file is missing, unparsable or invalid.
    """
    integrations = parse_integrations(_read_yaml(path))
    for integration in integrations.values():
        logger.info("Loaded integration", **integration.redacted())
    return integrations
