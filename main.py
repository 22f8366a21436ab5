"""FastAPI entry point for the Context Resolution service.

Run locally with ``python main.py``; in production use
``gunicorn main:app -c deploy/gunicorn.conf.py``.
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.context import router as context_router
from api.health import router as health_router
from api.invoices import router as invoices_router
from config.settings import Settings, get_settings
from services.backend_client import get_backend_client
from services.concurrency import ConcurrencyLimitMiddleware
from services.middleware import RequestIdLogFilter, RequestIdMiddleware

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(request_id)s] %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Root handler whose lines carry the current request ID."""
    handler = logging.StreamHandler()
    handler.addFilter(RequestIdLogFilter())
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT, handlers=[handler])


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the service: backend client lifecycle, middleware and routers.

    Middleware runs outermost first: CORS, request ID, then the per-worker
    resolution cap, so a 503 from the cap still carries ``X-Request-ID``.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level)
        backend = get_backend_client()
        await backend.start()
        logger.info("Context resolution service ready on port %d", settings.service_port)
        try:
            yield
        finally:
            await backend.close()

    app = FastAPI(
        title="Context Resolution Engine",
        description="Resolves free-form requests into intents, entities and defaults",
        version="0.1.0",
        lifespan=lifespan,
    )

    # add_middleware prepends, so register innermost first
    app.add_middleware(ConcurrencyLimitMiddleware, limit=settings.max_concurrent_resolutions)
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    for router in (health_router, context_router, invoices_router):
        app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    _settings = get_settings()
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=_settings.service_port,
        reload=_settings.debug,
        log_level=_settings.log_level.lower(),
    )
