from __future__ import annotations
import time
from fastapi import Response, Request
from prometheus_client import (
    Counter, Histogram, CollectorRegistry,
    CONTENT_TYPE_LATEST, generate_latest
)
from ..config import get_settings

S = get_settings()

REGISTRY = CollectorRegistry(auto_describe=True)

# ---------- Metric definitions ----------
HTTP_REQS = Counter("http_requests_total", "HTTP requests", ["method", "path", "status"], registry=REGISTRY)
HTTP_LATENCY = Histogram("http_request_duration_seconds", "HTTP request latency", ["method", "path"], registry=REGISTRY)

CODES_ISSUED     = Counter("verification_codes_issued_total", "Verification codes issued", ["action_type"], registry=REGISTRY)
CODE_EMAILS      = Counter("verification_code_emails_total", "Verification code email attempts", ["status"], registry=REGISTRY)
CODE_VALIDATIONS = Counter("verification_code_validations_total", "Verification outcomes", ["outcome"], registry=REGISTRY)
DISPATCH_SENDS   = Counter("dispatch_sends_total", "Per-recipient dispatch outcomes", ["outcome"], registry=REGISTRY)
DISPATCH_BATCHES = Counter("dispatch_batches_total", "Dispatch batches started", registry=REGISTRY)
REMINDERS_SENT   = Counter("reminders_sent_total", "Items reminded by the sweep", registry=REGISTRY)

# ---------- /metrics endpoint factory ----------
def metrics_app():
    async def _metrics(_: Request):
        if not S.METRICS_ENABLED:
            return Response(status_code=404)
        data = generate_latest(REGISTRY)
        return Response(content=data, media_type=CONTENT_TYPE_LATEST)
    return _metrics

# ---------- HTTP middleware for latency/counters ----------
# health checks and scrapes would drown out real traffic
_UNTRACKED_PREFIXES = ("/metrics", "/health")


class MetricsHTTPMiddleware:
    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http" or scope["path"].startswith(_UNTRACKED_PREFIXES):
            return await self.app(scope, receive, send)
        t0 = time.perf_counter()
        status_code = 500

        async def send_wrapper(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            # route template is set by the router; keeps code ids out of labels
            path = getattr(scope.get("route"), "path", None) or "unmatched"
            HTTP_REQS.labels(method=scope["method"], path=path, status=status_code).inc()
            HTTP_LATENCY.labels(method=scope["method"], path=path).observe(time.perf_counter() - t0)
