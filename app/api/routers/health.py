from fastapi import APIRouter, Depends, Query, Response, status

from ...db import db_health
from ...domain.errors import TransportUnavailable
from ...redis_client import redis_health
from ...services.mailer import EmailTransport
from ..deps import get_mail_transport

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
async def health(transport: EmailTransport = Depends(get_mail_transport)):
    db_ok, redis_ok = await db_health(), await redis_health()
    return {
        "status": "ok" if (db_ok and redis_ok) else "degraded",
        "dependencies": {"database": db_ok, "redis": redis_ok},
        "mail_transport": transport.name,
    }


@router.get("/readiness")
async def readiness(
    response: Response,
    check_mail: bool = Query(default=False, description="Also acquire a mail transport token"),
    transport: EmailTransport = Depends(get_mail_transport),
):
    # codes can only be issued with a working database; redis backs the rate limiter
    db_ok, redis_ok = await db_health(), await redis_health()
    checks = {"database": db_ok, "redis": redis_ok}
    if check_mail:
        try:
            await transport.ensure_available()
            checks["mail"] = True
        except TransportUnavailable:
            checks["mail"] = False
    ready = all(checks.values())
    if not ready:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return {"ready": ready, **checks}


@router.get("/liveness")
async def liveness():
    return {"alive": True}
