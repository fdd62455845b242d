"""
Health check endpoints.
"""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from services.connectors import connector_capabilities
from services.handshake import STATE_KEY_PREFIX

router = APIRouter()


async def _database_status() -> dict:
    from database import async_session_maker, engine
    from services.ingestion_queue import ingestion_queue_stats

    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    async with async_session_maker() as db:
        return await ingestion_queue_stats(db)


@router.get("/health")
async def health_check(request: Request):
    """
    Health check endpoint.
    Returns database, state store and ingestion queue status.
    """
    health_status = {
        "status": "healthy",
        "api": "up",
        "database": "unknown",
        "state_store": "unknown",
        "pending_authorizations": None,
        "ingestion_queue": None,
    }

    # Check database connection and queue depth
    try:
        health_status["ingestion_queue"] = await _database_status()
        health_status["database"] = "up"
    except Exception as e:
        health_status["database"] = f"down: {str(e)}"
        health_status["status"] = "degraded"

    # Check state store
    store = getattr(request.app.state, "state_store", None)
    if store is None:
        health_status["state_store"] = "not initialized"
        health_status["status"] = "degraded"
    else:
        try:
            await store.ping()
            health_status["pending_authorizations"] = await store.count(STATE_KEY_PREFIX)
            health_status["state_store"] = "up"
        except Exception as e:
            health_status["state_store"] = f"down: {str(e)}"
            health_status["status"] = "degraded"

    return health_status


@router.get("/health/ready")
async def readiness_check():
    """Kubernetes-style readiness probe: at least one provider must be configured."""
    capabilities = connector_capabilities()
    configured = [name for name, caps in capabilities.items() if caps["configured"]]
    if not configured:
        return JSONResponse(
            status_code=503,
            content={"ready": False, "configured_providers": [], "providers": capabilities},
        )
    return {"ready": True, "configured_providers": configured, "providers": capabilities}


@router.get("/health/live")
async def liveness_check():
    """Kubernetes-style liveness probe."""
    return {"alive": True}
