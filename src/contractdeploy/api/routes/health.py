"""Health check endpoints."""

from fastapi import APIRouter

from contractdeploy import __version__
from contractdeploy.clients.factory import get_clients_info
from contractdeploy.config import get_settings
from contractdeploy.records.database import ping_db

router = APIRouter()


@router.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "service": "contractdeploy"}


@router.get("/health/detailed")
async def detailed_health():
    """Detailed health check with database, configuration and collaborator info."""
    settings = get_settings()
    database_ok = await ping_db()
    clients = await get_clients_info()
    healthy = database_ok and all(info["healthy"] for info in clients.values())
    return {
        "status": "healthy" if healthy else "degraded",
        "service": "contractdeploy",
        "version": __version__,
        "database": "ok" if database_ok else "unavailable",
        "config": settings.get_safe_dict(),
        "clients": clients,
    }
