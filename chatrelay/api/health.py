"""
Health check endpoints for liveness and readiness probes.
"""
from datetime import datetime, timezone

from fastapi import APIRouter, Request, Response

from chatrelay.core.database import check_db_connection
from chatrelay.core.logging import get_logger
from chatrelay.schemas.common import HealthResponse

logger = get_logger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])


@router.get(
    "",
    summary="Service status",
    description="Status with the number of online users and live realtime connections."
)
async def status(request: Request) -> dict:
    presence = request.app.state.presence
    return {
        "status": "ok",
        "users": presence.online_count(),
        "connections": presence.connection_count(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get(
    "/live",
    response_model=HealthResponse,
    summary="Liveness probe",
    description="Always returns 200 to indicate the service is alive."
)
async def liveness() -> HealthResponse:
    return HealthResponse(status="ok")


@router.get(
    "/ready",
    response_model=HealthResponse,
    summary="Readiness probe",
    description="Returns 200 if the service is ready to handle traffic."
)
def readiness(request: Request, response: Response) -> HealthResponse:
    """
    Checks:
    - the database is reachable
    - JWT_SECRET is configured, so tokens can be issued and verified
    """
    checks = {}
    is_ready = True

    db_ok = check_db_connection()
    checks["database"] = "ok" if db_ok else "failed"
    if not db_ok:
        is_ready = False
        logger.warning("Readiness check failed: database not reachable")

    secret_ok = request.app.state.verifier.configured
    checks["jwt_secret"] = "ok" if secret_ok else "not configured"
    if not secret_ok:
        is_ready = False
        logger.warning("Readiness check failed: JWT_SECRET not configured")

    if is_ready:
        return HealthResponse(status="ok", checks=checks)
    response.status_code = 503
    return HealthResponse(status="not ready", checks=checks)
