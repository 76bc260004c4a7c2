#main.py
import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from settings import settings
from db import close_pool, init_pool
from routes.health import router as health_router
from routes.metrics import router as metrics_router
from routes.webhook import router as webhook_router
from services.metrics import increment_http_requests
from services.observability import configure_logging, set_request_id

logger = logging.getLogger("opsrelay.http")


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        req_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        start = time.time()
        request.state.request_id = req_id
        set_request_id(req_id)

        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            response.headers["X-Request-ID"] = req_id
            return response
        finally:
            duration_ms = int((time.time() - start) * 1000)
            increment_http_requests(request.url.path, status)
            logger.info(
                "http_request_end method=%s path=%s status=%s duration_ms=%s request_id=%s",
                request.method,
                request.url.path,
                status,
                duration_ms,
                req_id,
            )
            set_request_id(None)


def create_app(*, manage_pool: bool = True) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if manage_pool:
            init_pool()
        try:
            yield
        finally:
            if manage_pool:
                close_pool()

    app = FastAPI(title="opsrelay", version="1.0.0", lifespan=lifespan)
    app.add_middleware(RequestContextMiddleware)

    # -----------------------------
    # ROUTERS
    # -----------------------------
    app.include_router(health_router)
    app.include_router(metrics_router)
    app.include_router(webhook_router)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("unhandled error path=%s", request.url.path)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    return app


configure_logging(settings.LOG_LEVEL)
app = create_app()
