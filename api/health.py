"""Health check endpoint."""

from fastapi import APIRouter

from services.backend_client import get_backend_client

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health")
async def health():
    return {
        "status": "healthy",
        "backendCircuitOpen": get_backend_client().circuit_open,
    }
