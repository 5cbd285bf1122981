"""Liveness and readiness probes."""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text
from warden.database import get_session
from warden.services.security_policy import load_security_policy

from api.services.errors import StoreUnavailable
from api.services.store import store_call

router = APIRouter()


@router.get("/health")
async def health_check():
    return {"status": "ok", "service": "warden-api"}


@router.get("/health/ready")
async def readiness_check():
    # Ready means the security store answers within the gate's own deadline.
    timeout = load_security_policy().store.timeout_seconds
    try:
        async with store_call("readiness probe", timeout):
            async with get_session() as session:
                await session.execute(text("SELECT 1"))
    except (StoreUnavailable, OSError) as exc:
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "error": exc.__class__.__name__},
        )
    return {"status": "ready"}
