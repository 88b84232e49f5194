"""Health check endpoints."""

from typing import Any, Dict

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from passkey_auth.api.dependencies import get_storage_provider
from passkey_auth.config import get_settings
from passkey_auth.utils.exceptions import StorageError
from passkey_auth.utils.logging import get_logger
from passkey_auth.utils.timeutils import utcnow

router = APIRouter(tags=["health"])
logger = get_logger(__name__)


async def check_storage(request: Request) -> None:
    """Round-trip a lookup through the configured storage backend."""
    async with get_storage_provider(request).session() as storage:
        await storage.get_user(0)


@router.get("/health", response_model=None)
async def health_check(request: Request) -> Any:
    """Check service and storage health."""
    settings = getattr(request.app.state, "settings", None) or get_settings()
    timestamp = utcnow().isoformat() + "Z"
    try:
        await check_storage(request)
    except StorageError as e:
        logger.error("health_check_failed", error=str(e))
        body: Dict[str, Any] = {
            "status": "unhealthy",
            "error": e.message,
            "timestamp": timestamp,
        }
        return JSONResponse(status_code=500, content=body)

    return {
        "status": "healthy",
        "timestamp": timestamp,
        "version": settings.app_version,
        "storage": get_storage_provider(request).storage_type.value,
    }
