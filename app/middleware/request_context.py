from __future__ import annotations
import logging
import time
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from ..observability.logging import get_request_id, request_id_var
from ..config import get_settings

S = get_settings()
log = logging.getLogger("app.request")


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        rid = get_request_id(request)
        request.state.request_id = rid
        token = request_id_var.set(rid)
        start = time.perf_counter()
        client = request.client.host if request.client else "unknown"

        try:
            response = await call_next(request)
        except Exception:
            log.exception(
                "unhandled_error",
                extra={"path": request.url.path, "method": request.method,
                       "ms": int((time.perf_counter() - start) * 1000), "client": client},
            )
            raise
        finally:
            request_id_var.reset(token)

        dur_ms = int((time.perf_counter() - start) * 1000)
        response.headers[S.REQUEST_ID_HEADER] = rid
        # 4xx from the verification endpoints are normal traffic; only 5xx are warnings
        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        log.log(
            level,
            "request",
            extra={"request_id": rid, "path": request.url.path, "method": request.method,
                   "status": response.status_code, "ms": dur_ms, "client": client},
        )
        return response
