"""Per-worker cap on resolutions in flight.

One resolution fans out into a dozen or more backend calls, so each worker
admits only ``max_concurrent_resolutions`` of them at a time.  Anything past
the cap is answered 503 straight away rather than queued behind a slow
backend; health checks and cache management never count against it.
"""

from __future__ import annotations

import asyncio
import logging

from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from config.settings import get_settings

logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = 5

_FAN_OUT_PATHS = frozenset({"/api/context/resolve"})
_FAN_OUT_PREFIXES = ("/api/invoices/options/",)


def is_heavy_path(path: str) -> bool:
    """True for endpoints that fan out to the backend."""
    return path in _FAN_OUT_PATHS or path.startswith(_FAN_OUT_PREFIXES)


class ConcurrencyLimitMiddleware:
    """Pure ASGI middleware; rejects heavy requests once the worker is full."""

    def __init__(self, app: ASGIApp, limit: int | None = None) -> None:
        self.app = app
        self.limit = limit if limit is not None else get_settings().max_concurrent_resolutions
        self._slots: asyncio.Semaphore | None = None

    @property
    def slots(self) -> asyncio.Semaphore:
        # Created on first use so it binds to the serving event loop
        if self._slots is None:
            self._slots = asyncio.Semaphore(self.limit)
            logger.info("Resolution slots per worker: %d", self.limit)
        return self._slots

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not is_heavy_path(scope.get("path", "")):
            await self.app(scope, receive, send)
            return

        if self.slots.locked():
            logger.warning("All %d resolution slots busy, rejecting %s", self.limit, scope["path"])
            busy = JSONResponse(
                {"detail": "Server busy, too many resolutions in flight. Please retry."},
                status_code=503,
                headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
            )
            await busy(scope, receive, send)
            return

        async with self.slots:
            await self.app(scope, receive, send)
