"""Credential lifecycle: assertion minting and scoped token caching.

The CredentialManager owns the only shared mutable state in the gatekeeper:
a per-scope cache of IssuedCredential objects. Per scope the lifecycle is

    Uncached -> Cached(fresh) -> Cached(stale) -> Cached(fresh, new token)

and staleness is evaluated on every request. A credential whose expiry is
within the refresh buffer is never served; it is replaced by a new exchange.

All cache reads and writes happen between awaits on one event loop, so no
lock is needed. Concurrent misses for the same scope may each exchange; the
losing tokens simply go unused. Pass single_flight=True to share one
in-flight exchange per scope instead.

One manager is built per process and passed by reference, so tests can
construct fresh instances with a fake clock.
"""

import asyncio
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog

from src.gatekeeper.credentials.models import IssuedCredential, Principal
from src.gatekeeper.crypto.primitives import sign_rs256_jwt
from src.gatekeeper.errors import AssertionSigningError, CredentialExchangeError
from src.gatekeeper.events.metrics import GatekeeperMetrics


logger = structlog.get_logger(__name__)

# Assertion lifetime accepted by the provider (10 minutes maximum)
ASSERTION_LIFETIME = timedelta(minutes=10)

# Backdate issued-at to tolerate clock drift between us and the provider
ASSERTION_CLOCK_DRIFT = timedelta(seconds=60)

# Never serve a token that expires within this window
DEFAULT_REFRESH_BUFFER = timedelta(minutes=5)

ExchangeFn = Callable[[str, str], Awaitable[IssuedCredential]]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CredentialManager:
    """Mints assertions and caches provider-scoped tokens.

    Attributes:
        principal: The app identity assertions are signed for.
        refresh_buffer: Minimum remaining lifetime for a cached token.
        single_flight: Share one in-flight exchange per scope.
        max_cached_scopes: Optional LRU bound on cached scopes.

    Cache hits, misses and failed exchanges are counted on the optional
    GatekeeperMetrics.

    Example:
        >>> manager = CredentialManager(principal)
        >>> credential = await manager.get_scoped_token(
        ...     "12345", client.create_installation_token
        ... )
        >>> headers = {"Authorization": f"token {credential.token}"}
    """

    def __init__(
        self,
        principal: Principal,
        refresh_buffer: timedelta = DEFAULT_REFRESH_BUFFER,
        clock: Callable[[], datetime] = utc_now,
        single_flight: bool = False,
        max_cached_scopes: Optional[int] = None,
        metrics: Optional[GatekeeperMetrics] = None,
    ) -> None:
        if max_cached_scopes is not None and max_cached_scopes < 1:
            raise ValueError("max_cached_scopes must be at least 1")
        self.principal = principal
        self.refresh_buffer = refresh_buffer
        self.single_flight = single_flight
        self.max_cached_scopes = max_cached_scopes
        self._metrics = metrics
        self._clock = clock
        self._cache: "OrderedDict[str, IssuedCredential]" = OrderedDict()
        self._in_flight: Dict[str, "asyncio.Future[IssuedCredential]"] = {}

    def generate_assertion(self) -> str:
        """Sign a short-lived app-level assertion.

        The assertion is an RS256 JWT with `iss` set to the principal id,
        `iat` backdated 60 seconds and `exp` 10 minutes out.

        Returns:
            The compact JWT string.

        Raises:
            AssertionSigningError: If the private key cannot sign. This is
                fatal for the integration and is not retried.
        """
        now = self._clock()
        claims = {
            "iat": int((now - ASSERTION_CLOCK_DRIFT).timestamp()),
            "exp": int((now + ASSERTION_LIFETIME).timestamp()),
            "iss": str(self.principal.id),
        }
        try:
            return sign_rs256_jwt(claims, self.principal.private_key)
        except Exception as e:
            logger.error(
                "Failed to sign app assertion",
                principal_id=str(self.principal.id),
                error_type=type(e).__name__,
            )
            raise AssertionSigningError(f"Failed to sign assertion: {e}") from e

    async def get_scoped_token(
        self,
        scope_id: str,
        exchange_fn: ExchangeFn,
        timeout: Optional[float] = None,
    ) -> IssuedCredential:
        """Return a fresh token for scope_id, exchanging if needed.

        Args:
            scope_id: The scope (e.g. installation id) to authenticate for.
            exchange_fn: Coroutine function `(assertion, scope_id)` that asks
                the provider for a new credential.
            timeout: Optional bound in seconds on the exchange.

        Returns:
            A credential whose expiry is beyond the refresh buffer at the
            time of the cache check, or the newly exchanged credential.

        Raises:
            AssertionSigningError: If the assertion cannot be signed.
            CredentialExchangeError: If the exchange fails or times out.
                The cache is left unchanged.
        """
        scope_id = str(scope_id)
        cached = self._lookup(scope_id)
        if cached is not None:
            self._record("hit")
            return cached
        self._record("miss")

        if not self.single_flight:
            return await self._exchange(scope_id, exchange_fn, timeout)

        pending = self._in_flight.get(scope_id)
        if pending is not None:
            logger.debug("Joining in-flight token exchange", scope_id=scope_id)
            return await asyncio.shield(pending)

        future: "asyncio.Future[IssuedCredential]" = asyncio.ensure_future(
            self._exchange(scope_id, exchange_fn, timeout)
        )
        self._in_flight[scope_id] = future
        future.add_done_callback(lambda done: self._release_in_flight(scope_id, done))
        return await asyncio.shield(future)

    def invalidate(self, scope_id: str) -> None:
        """Evict the cached token for scope_id.

        Call after the provider rejects a token (401/403) so the next
        request re-authenticates instead of reusing a known-bad token.
        """
        removed = self._cache.pop(str(scope_id), None)
        if removed is not None:
            logger.info("Invalidated cached credential", scope_id=str(scope_id))

    def clear_cache(self) -> None:
        """Evict every cached token."""
        self._cache.clear()

    def cache_stats(self) -> Dict[str, Any]:
        """Return cache size and per-scope expiry for monitoring.

        Tokens are not included.
        """
        entries: List[Dict[str, Any]] = [
            {"scope_id": scope_id, "expires_at": credential.expires_at}
            for scope_id, credential in self._cache.items()
        ]
        return {"size": len(self._cache), "entries": entries}

    def _record(self, result: str) -> None:
        if self._metrics is not None:
            self._metrics.record_credential_request(result)

    def _release_in_flight(
        self,
        scope_id: str,
        future: "asyncio.Future[IssuedCredential]",
    ) -> None:
        if self._in_flight.get(scope_id) is future:
            del self._in_flight[scope_id]
        # Mark the exception retrieved; waiters that were cancelled never read it
        if not future.cancelled():
            future.exception()

    def _lookup(self, scope_id: str) -> Optional[IssuedCredential]:
        cached = self._cache.get(scope_id)
        if cached is None:
            logger.debug("Credential cache miss", scope_id=scope_id)
            return None
        if not cached.is_fresh(self._clock(), self.refresh_buffer):
            logger.debug(
                "Cached credential is within refresh buffer",
                scope_id=scope_id,
                expires_at=cached.expires_at.isoformat(),
            )
            return None
        self._cache.move_to_end(scope_id)
        return cached

    async def _exchange(
        self,
        scope_id: str,
        exchange_fn: ExchangeFn,
        timeout: Optional[float],
    ) -> IssuedCredential:
        assertion = self.generate_assertion()
        try:
            if timeout is not None:
                credential = await asyncio.wait_for(
                    exchange_fn(assertion, scope_id), timeout=timeout
                )
            else:
                credential = await exchange_fn(assertion, scope_id)
        except CredentialExchangeError as e:
            self._record("error")
            logger.warning(
                "Credential exchange failed",
                scope_id=scope_id,
                status_code=e.status_code,
                retryable=e.retryable,
            )
            raise
        except asyncio.TimeoutError as e:
            self._record("error")
            logger.warning(
                "Credential exchange timed out",
                scope_id=scope_id,
                timeout=timeout,
            )
            raise CredentialExchangeError(
                f"Credential exchange timed out after {timeout}s",
                scope_id=scope_id,
                retryable=True,
            ) from e
        except Exception as e:
            self._record("error")
            logger.warning(
                "Credential exchange failed",
                scope_id=scope_id,
                error=str(e),
            )
            raise CredentialExchangeError(
                f"Credential exchange failed: {e}",
                scope_id=scope_id,
            ) from e

        self._store(scope_id, credential)
        logger.info(
            "Obtained scoped credential",
            scope_id=scope_id,
            expires_at=credential.expires_at.isoformat(),
        )
        return credential

    def _store(self, scope_id: str, credential: IssuedCredential) -> None:
        self._cache[scope_id] = credential
        self._cache.move_to_end(scope_id)
        if self.max_cached_scopes is not None:
            while len(self._cache) > self.max_cached_scopes:
                evicted, _ = self._cache.popitem(last=False)
                logger.debug("Evicted least recently used credential", scope_id=evicted)
