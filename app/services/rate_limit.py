from __future__ import annotations
import time
from fastapi import HTTPException, Request, status
from ..config import get_settings
from ..redis_client import redis

S = get_settings()

WINDOW_SEC = 10


# ---- fixed-window counter: one key per (bucket, window index) ----
async def _hit(bucket: str, window_sec: int, limit: int) -> None:
    now = time.time()
    window = int(now // window_sec)
    key = f"rl:{bucket}:{window}"
    async with redis.pipeline(transaction=True) as pipe:
        pipe.incr(key)
        pipe.expire(key, window_sec + 1)
        count, _ = await pipe.execute()
    if count > limit:
        retry_after = max(int((window + 1) * window_sec - now), 1)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={"code": "rate_limited", "detail": "too many requests; try again shortly"},
            headers={"Retry-After": str(retry_after)},
        )


def _client_ip(req: Request) -> str:
    # prefer X-Forwarded-For (first hop), fallback to uvicorn client
    h = req.headers.get("x-forwarded-for")
    if h:
        return h.split(",")[0].strip()
    return req.client.host if req.client else "unknown"


# ---- FastAPI dependencies for the public verification endpoints ----
async def limit_code_request(req: Request) -> None:
    # issuing and resending both send an email, so they share one bucket
    await _hit(f"code:issue:{_client_ip(req)}", WINDOW_SEC, S.RL_CODE_REQ_PER_IP_10S)


async def limit_code_validate(req: Request) -> None:
    await _hit(f"code:validate:{_client_ip(req)}", WINDOW_SEC, S.RL_CODE_VERIFY_PER_IP_10S)
