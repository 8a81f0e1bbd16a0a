"""GitHub App API client for credential exchange and pull request files.

This module provides an async wrapper around the two GitHub endpoints the
gatekeeper needs:
- POST /app/installations/{id}/access_tokens, authenticated with the App
  assertion, to mint an installation token
- GET /repos/{owner}/{repo}/pulls/{number}/files, authenticated with an
  installation token, to list changed paths for path rules

Includes rate limiting and retry logic for API resilience.
"""

import asyncio
import random
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
import structlog

from src.gatekeeper.credentials.models import IssuedCredential
from src.gatekeeper.errors import CredentialExchangeError


logger = structlog.get_logger(__name__)

# GitHub caps per_page at 100; bound the loop so one event cannot fan out
FILES_PER_PAGE = 100
MAX_FILE_PAGES = 30


class GitHubAPIError(Exception):
    """Raised when a GitHub API request fails.

    Attributes:
        message: Human-readable error description.
        status_code: HTTP status code from the response.
        response_body: Response body from GitHub API.
        request_url: The URL that was requested.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        request_url: Optional[str] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.response_body = response_body
        self.request_url = request_url
        super().__init__(message)

    @property
    def is_auth_failure(self) -> bool:
        """True when GitHub rejected the credential (401/403)."""
        return self.status_code in (401, 403)


class RateLimitError(GitHubAPIError):
    """Raised when GitHub API rate limit is exceeded.

    Attributes:
        reset_at: Unix timestamp when the rate limit resets.
        retry_after: Seconds to wait before retrying.
    """

    def __init__(
        self,
        message: str,
        reset_at: Optional[int] = None,
        retry_after: Optional[int] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.reset_at = reset_at
        self.retry_after = retry_after

    @property
    def is_auth_failure(self) -> bool:
        return False


def create_jwt_headers(assertion: str) -> Dict[str, str]:
    """Headers authenticating as the App itself."""
    return {"Authorization": f"Bearer {assertion}"}


def create_installation_headers(token: str) -> Dict[str, str]:
    """Headers authenticating as an installation."""
    return {"Authorization": f"token {token}"}


def _parse_github_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class GitHubAppClient:
    """Async GitHub App client with rate limiting and retry logic.

    Implements:
    - Automatic retry with exponential backoff for transient failures
    - Rate limit handling by respecting X-RateLimit-* headers
    - Support for both github.com and GitHub Enterprise Server

    Credentials are supplied per call, so one client serves every
    installation.

    Attributes:
        base_url: Base URL for GitHub API (default: https://api.github.com).
        max_retries: Maximum number of retry attempts for transient failures.
        base_delay: Base delay in seconds for exponential backoff.
        max_delay: Maximum delay in seconds between retries.
        timeout: Request timeout in seconds.

    Example:
        >>> async with GitHubAppClient() as client:
        ...     credential = await manager.get_scoped_token(
        ...         "4242", client.create_installation_token
        ...     )
    """

    # HTTP status codes that should trigger a retry
    RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}

    def __init__(
        self,
        base_url: str = "https://api.github.com",
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the GitHub client.

        Args:
            base_url: Base URL for GitHub API. Use this to support
                      GitHub Enterprise Server endpoints.
            max_retries: Maximum number of retry attempts.
            base_delay: Base delay in seconds for exponential backoff.
            max_delay: Maximum delay in seconds between retries.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport, e.g. httpx.MockTransport.
        """
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client, creating it if necessary."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._default_headers(),
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    def _default_headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "Webhook-Gatekeeper/1.0",
        }

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "GitHubAppClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _calculate_backoff(self, attempt: int) -> float:
        """Exponential backoff with full jitter.

        Args:
            attempt: The current retry attempt (0-indexed).

        Returns:
            Delay in seconds before the next retry.
        """
        exponential_delay = self.base_delay * (2 ** attempt)
        capped_delay = min(exponential_delay, self.max_delay)
        return random.uniform(0, capped_delay)

    def _parse_int_header(self, headers: httpx.Headers, name: str) -> Optional[int]:
        value = headers.get(name)
        if value is not None:
            try:
                return int(value)
            except ValueError:
                pass
        return None

    def _raise_rate_limit(self, response: httpx.Response) -> None:
        """Raise RateLimitError with information about when to retry."""
        reset_at = self._parse_int_header(response.headers, "x-ratelimit-reset")

        retry_after = None
        if reset_at is not None:
            retry_after = max(0, reset_at - int(time.time()))

        retry_after_header = self._parse_int_header(response.headers, "retry-after")
        if retry_after_header is not None:
            retry_after = retry_after_header

        logger.warning(
            "GitHub API rate limit exceeded",
            reset_at=reset_at,
            retry_after=retry_after,
            limit=self._parse_int_header(response.headers, "x-ratelimit-limit"),
        )

        raise RateLimitError(
            message="GitHub API rate limit exceeded",
            status_code=response.status_code,
            reset_at=reset_at,
            retry_after=retry_after,
            request_url=str(response.url),
        )

    async def _request(
        self,
        method: str,
        path: str,
        headers: Dict[str, str],
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """Make an HTTP request with retry logic.

        Args:
            method: HTTP method.
            path: API path (e.g., /app/installations/1/access_tokens).
            headers: Per-request headers, including Authorization.
            params: Optional query parameters.

        Returns:
            The HTTP response from GitHub.

        Raises:
            GitHubAPIError: If the request fails after all retries.
            RateLimitError: If rate limit is exceeded.
        """
        last_exception: Optional[Exception] = None

        for attempt in range(self.max_retries + 1):
            try:
                response = await self.client.request(
                    method=method,
                    url=path,
                    headers=headers,
                    params=params,
                )

                if response.status_code == 403:
                    remaining = self._parse_int_header(
                        response.headers, "x-ratelimit-remaining"
                    )
                    if remaining == 0:
                        self._raise_rate_limit(response)

                if response.status_code == 429:
                    self._raise_rate_limit(response)

                if response.status_code in self.RETRYABLE_STATUS_CODES:
                    if attempt < self.max_retries:
                        delay = self._calculate_backoff(attempt)
                        logger.warning(
                            "Retryable error from GitHub API",
                            status_code=response.status_code,
                            attempt=attempt + 1,
                            max_retries=self.max_retries,
                            delay=delay,
                            path=path,
                        )
                        await asyncio.sleep(delay)
                        continue

                if response.status_code >= 400:
                    error_body = response.text
                    logger.error(
                        "GitHub API error",
                        status_code=response.status_code,
                        path=path,
                        method=method,
                        response_body=error_body[:500],
                    )
                    raise GitHubAPIError(
                        message=f"GitHub API error: {response.status_code}",
                        status_code=response.status_code,
                        response_body=error_body,
                        request_url=str(response.url),
                    )

                return response

            except GitHubAPIError:
                raise
            except httpx.RequestError as e:
                last_exception = e
                if attempt < self.max_retries:
                    delay = self._calculate_backoff(attempt)
                    logger.warning(
                        "Request error, retrying",
                        error=str(e),
                        attempt=attempt + 1,
                        max_retries=self.max_retries,
                        delay=delay,
                        path=path,
                    )
                    await asyncio.sleep(delay)
                    continue

        logger.error(
            "GitHub API request failed after all retries",
            path=path,
            method=method,
            max_retries=self.max_retries,
            last_error=str(last_exception),
        )
        raise GitHubAPIError(
            message=f"Request failed after {self.max_retries} retries: {last_exception}",
            request_url=f"{self.base_url}{path}",
        )

    @property
    def token_exchanger(self) -> Callable[[str, str], Awaitable[IssuedCredential]]:
        """Exchange function for CredentialManager.get_scoped_token."""
        return self.create_installation_token

    async def create_installation_token(
        self,
        assertion: str,
        installation_id: str,
    ) -> IssuedCredential:
        """Exchange an App assertion for an installation token.

        Matches the CredentialManager exchange signature, so the bound
        method can be passed directly as exchange_fn.

        Args:
            assertion: RS256 App JWT.
            installation_id: The installation to mint a token for.

        Returns:
            The issued installation credential.

        Raises:
            CredentialExchangeError: If GitHub does not return a token.
        """
        path = f"/app/installations/{installation_id}/access_tokens"
        issued_at = datetime.now(timezone.utc)

        try:
            response = await self._request(
                method="POST",
                path=path,
                headers=create_jwt_headers(assertion),
            )
        except RateLimitError as e:
            raise CredentialExchangeError(
                e.message,
                scope_id=str(installation_id),
                status_code=e.status_code,
                retryable=True,
            ) from e
        except GitHubAPIError as e:
            raise CredentialExchangeError(
                e.message,
                scope_id=str(installation_id),
                status_code=e.status_code,
            ) from e

        try:
            data = response.json()
            return IssuedCredential(
                token=data["token"],
                expires_at=_parse_github_timestamp(data["expires_at"]),
                scope_id=str(installation_id),
                issued_at=issued_at,
            )
        except (ValueError, KeyError, TypeError) as e:
            raise CredentialExchangeError(
                f"Malformed installation token response: {e}",
                scope_id=str(installation_id),
                status_code=response.status_code,
                retryable=False,
            ) from e

    async def list_pull_request_files(
        self,
        token: str,
        owner: str,
        repo: str,
        number: int,
    ) -> List[str]:
        """List the paths changed by a pull request.

        Args:
            token: Installation token.
            owner: Repository owner.
            repo: Repository name.
            number: Pull request number.

        Returns:
            Changed file paths, in GitHub's order.

        Raises:
            GitHubAPIError: If a page request fails. Check is_auth_failure
                to decide whether to invalidate the token.
        """
        path = f"/repos/{owner}/{repo}/pulls/{number}/files"
        headers = create_installation_headers(token)
        paths: List[str] = []

        for page in range(1, MAX_FILE_PAGES + 1):
            response = await self._request(
                method="GET",
                path=path,
                headers=headers,
                params={"per_page": FILES_PER_PAGE, "page": page},
            )
            try:
                batch = response.json()
            except ValueError as e:
                raise GitHubAPIError(
                    f"Malformed pull request files response: {e}",
                    status_code=response.status_code,
                    response_body=response.text[:500],
                    request_url=str(response.url),
                ) from e
            if not isinstance(batch, list):
                break
            paths.extend(
                item["filename"]
                for item in batch
                if isinstance(item, dict) and isinstance(item.get("filename"), str)
            )
            if len(batch) < FILES_PER_PAGE:
                break

        logger.debug(
            "Listed pull request files",
            repository=f"{owner}/{repo}",
            number=number,
            file_count=len(paths),
        )
        return paths
