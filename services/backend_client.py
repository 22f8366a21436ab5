"""HTTP client for the project backend (customers, projects, tasks, invoices, team).

The context engine only reads, so the client exposes GET alone.  Every call
passes a circuit breaker and a bounded retry loop: 4xx answers are final,
5xx answers and transport errors are retried with exponential backoff.  The
ID of the request being served travels to the backend as ``X-Request-ID`` so
both sides' logs line up.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

import httpx

from config.settings import Settings, get_settings
from errors.exceptions import BackendClientError, CircuitOpenError
from services.middleware import current_request_id

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
RETRY_BASE_DELAY = 0.5  # seconds, doubled per attempt
CIRCUIT_OPEN_THRESHOLD = 5  # consecutive failures
CIRCUIT_RESET_TIMEOUT = 60  # seconds until a probe is let through

POOL_LIMITS = httpx.Limits(
    max_connections=30,
    max_keepalive_connections=15,
    keepalive_expiry=30,
)


def _ms_since(started: float) -> float:
    return (time.monotonic() - started) * 1000


def _correlation_headers() -> dict[str, str]:
    request_id = current_request_id.get()
    return {} if request_id == "-" else {"X-Request-ID": request_id}


class CircuitBreaker:
    """Opens after ``threshold`` consecutive failures; half-opens after ``reset_timeout``."""

    def __init__(
        self,
        threshold: int = CIRCUIT_OPEN_THRESHOLD,
        reset_timeout: float = CIRCUIT_RESET_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.threshold = threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self.failures = 0
        self.opened_at: float | None = None

    @property
    def is_open(self) -> bool:
        if self.failures < self.threshold:
            return False
        if self.opened_at is not None and self._clock() - self.opened_at >= self.reset_timeout:
            logger.info("Backend circuit half-open — letting a probe through")
            return False
        return True

    def success(self) -> None:
        if self.failures:
            logger.info("Backend healthy again after %d failed call(s)", self.failures)
        self.failures = 0
        self.opened_at = None

    def failure(self) -> None:
        self.failures += 1
        if self.failures < self.threshold:
            return
        # A failed half-open probe re-arms the timeout as well
        self.opened_at = self._clock()
        logger.warning(
            "Backend circuit OPEN after %d failures; next probe in %ds",
            self.failures, self.reset_timeout,
        )


class _RetryableFailure(Exception):
    """One failed attempt that may be retried; ``error`` is what callers finally see."""

    def __init__(self, error: Exception) -> None:
        super().__init__(str(error))
        self.error = error


class BackendClient:
    """Pooled async GET client for the backend collections."""

    def __init__(
        self,
        settings: Settings | None = None,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.base_url = f"{settings.backend_base_url.rstrip('/')}{settings.backend_api_prefix}"
        self._timeout = settings.backend_timeout
        self._token = settings.backend_access_token
        self.breaker = breaker or CircuitBreaker()
        self._http: httpx.AsyncClient | None = None

    # -- lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        if self._http is not None:
            return
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self._timeout),
            headers=self._auth_headers(),
            limits=POOL_LIMITS,
        )
        logger.info("Backend client ready — %s", self.base_url)

    async def close(self) -> None:
        if self._http is None:
            return
        await self._http.aclose()
        self._http = None
        logger.info("Backend client closed")

    def update_token(self, access_token: str) -> None:
        """Swap the bearer token on the live connection pool."""
        self._token = access_token
        if self._http is not None:
            self._http.headers.update(self._auth_headers())
        logger.info("Backend access token replaced")

    @property
    def circuit_open(self) -> bool:
        return self.breaker.is_open

    # -- requests ------------------------------------------------------------

    async def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET *path* and return the decoded JSON body (``{}`` when empty).

        Raises :class:`CircuitOpenError` without calling out while the
        breaker is open, :class:`BackendClientError` for 4xx answers or a
        5xx that outlived the retries, and ``httpx.TransportError`` when
        the backend stayed unreachable.
        """
        if self.breaker.is_open:
            raise CircuitOpenError()
        http = self._ensure_started()

        attempt = 1
        while True:
            try:
                return await self._attempt(http, path, params)
            except _RetryableFailure as failed:
                if attempt >= MAX_RETRIES:
                    raise failed.error from None
                delay = RETRY_BASE_DELAY * 2 ** (attempt - 1)
                logger.warning(
                    "GET %s failed (%s), retry %d/%d in %.1fs",
                    path, failed.error, attempt, MAX_RETRIES, delay,
                )
                await asyncio.sleep(delay)
                attempt += 1

    async def _attempt(
        self,
        http: httpx.AsyncClient,
        path: str,
        params: dict[str, Any] | None,
    ) -> Any:
        started = time.monotonic()
        try:
            response = await http.request(
                "GET", path, params=params, headers=_correlation_headers()
            )
        except httpx.TransportError as exc:
            self.breaker.failure()
            logger.warning("GET %s → unreachable after %.0fms: %s", path, _ms_since(started), exc)
            raise _RetryableFailure(exc) from exc

        status = response.status_code
        logger.info("GET %s → %d (%.0fms)", path, status, _ms_since(started))
        body = response.text or ""

        if status >= 500:
            self.breaker.failure()
            raise _RetryableFailure(BackendClientError(status, body[:200], str(response.url)))

        # Any non-5xx answer proves the backend is up
        self.breaker.success()
        if status >= 400:
            raise BackendClientError(status, body[:500] or f"HTTP {status}", str(response.url))
        return response.json() if body else {}

    # -- internals -----------------------------------------------------------

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._token}"} if self._token else {}

    def _ensure_started(self) -> httpx.AsyncClient:
        if self._http is None:
            raise RuntimeError("Backend client not started — await start() first")
        return self._http


_client: BackendClient | None = None


def get_backend_client() -> BackendClient:
    """Process-wide client shared by every collection search."""
    global _client
    if _client is None:
        _client = BackendClient()
    return _client
