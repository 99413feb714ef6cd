from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from .config import get_settings
from .db import lifespan_db
from .api.routers import health as health_router
from .api.routers import verification as verification_router
from .api.routers import dispatch as dispatch_router
from .observability.logging import setup_logging
from .middleware.request_context import RequestContextMiddleware
from .observability.metrics import MetricsHTTPMiddleware, metrics_app
import uvicorn

settings = get_settings()
setup_logging()
ALLOWED_ORIGINS = [
    settings.FRONTEND_ORIGIN,
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]


async def _invalid_input(_: Request, exc: RequestValidationError):
    # malformed bodies share the invalid_input code with domain validation
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": {"code": "invalid_input", "detail": "invalid request", "errors": jsonable_encoder(exc.errors())}},
    )


@asynccontextmanager
async def lifespan(_: FastAPI):
    async with lifespan_db():
        yield


def create_app() -> FastAPI:
    app = FastAPI(title=settings.APP_NAME, debug=settings.DEBUG, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(dict.fromkeys(ALLOWED_ORIGINS)),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[settings.REQUEST_ID_HEADER],
    )

    # then your custom middlewares
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(MetricsHTTPMiddleware)

    app.add_exception_handler(RequestValidationError, _invalid_input)

    app.include_router(health_router.router)
    app.include_router(verification_router.router)
    app.include_router(dispatch_router.router)
    app.add_api_route("/metrics", metrics_app(), methods=["GET"], include_in_schema=False)

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("app.main:app", host=settings.APP_HOST, port=settings.APP_PORT, reload=settings.ENV == "dev")
