from datetime import datetime, timezone
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
import logging

from reporting_api.api.envelope import ok
from reporting_api.dependencies import get_kv_store
from reporting_api.domain.interfaces import KeyValueStore
from reporting_api.settings import Settings, get_settings

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/api/health")
async def liveness(settings: Settings = Depends(get_settings)):
    """Liveness probe: Service is running."""
    return ok({
        "status": "ok",
        "env": settings.reporting_env,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    })


@router.get("/api/health/ready")
async def readiness(kv: KeyValueStore = Depends(get_kv_store)):
    """Readiness probe: Dependencies connected."""
    health = {"status": "ok", "checks": {}}

    if await kv.ping():
        health["checks"]["store"] = "ok"
    else:
        logger.error("Health check failed (store)")
        health["checks"]["store"] = "failed"
        health["status"] = "failed"

    if health["status"] == "failed":
        return JSONResponse(
            status_code=503,
            content={"ok": False, "error": {"code": "STORE_UNAVAILABLE", "message": "Store not reachable", "details": health}},
        )

    return ok(health)
