# orderflow/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from orderflow.api.errors import BizError, biz_error_handler
from orderflow.api.routers.courier import router as courier_router
from orderflow.api.routers.dispatch import router as dispatch_router
from orderflow.api.routers.health import router as health_router
from orderflow.api.routers.orders import router as orders_router
from orderflow.api.routers.returns import router as returns_router
from orderflow.api.routers.scan_history import router as scan_history_router
from orderflow.api.routers.scanner import router as scanner_router
from orderflow.api.routers.webhooks import router as webhooks_router
from orderflow.core.config import get_settings
from orderflow.core.logging import setup_logging
from orderflow.core.scheduler import init_scheduler, shutdown_scheduler
from orderflow.db.base import init_models
from orderflow.db.session import AsyncSessionLocal
from orderflow.metrics import router as metrics_router
from orderflow.services.scanner_session import ScannerRegistry

logger = logging.getLogger("orderflow")


@asynccontextmanager
async def lifespan(app: FastAPI):
    s = get_settings()
    setup_logging(s.LOG_LEVEL)
    init_models()

    app.state.session_maker = AsyncSessionLocal
    app.state.http_client = httpx.AsyncClient(timeout=s.COURIER_HTTP_TIMEOUT_SECONDS)
    app.state.scanner_registry = ScannerRegistry()
    init_scheduler(AsyncSessionLocal, app.state.http_client)
    logger.info("orderflow started env=%s booking_mode=%s", s.ENV, s.COURIER_BOOKING_MODE)
    try:
        yield
    finally:
        shutdown_scheduler()
        await app.state.scanner_registry.close_all()
        await app.state.http_client.aclose()


app = FastAPI(
    title="OrderFlow ERP",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


@app.exception_handler(Exception)
async def _unhandled_exc(_req: Request, exc: Exception):
    logger.exception("UNHANDLED_EXC: %s", exc)
    return JSONResponse(
        status_code=500,
        content={"error": {"code": "INTERNAL_ERROR", "message": "internal error"}},
    )


@app.exception_handler(RequestValidationError)
async def _validation_exc(_req: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={
            "error": {
                "code": "VALIDATION_ERROR",
                "message": "request validation failed",
                "details": jsonable_encoder(exc.errors()),
            }
        },
    )


# 覆盖 starlette 自己抛的 404/405
@app.exception_handler(StarletteHTTPException)
async def _http_exc(_req: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": f"HTTP_{exc.status_code}", "message": str(exc.detail)}},
        headers=getattr(exc, "headers", None),
    )


app.add_exception_handler(BizError, biz_error_handler)

# ===========================
#          挂载路由
# ===========================
app.include_router(webhooks_router)
app.include_router(dispatch_router)
app.include_router(returns_router)
app.include_router(courier_router)
app.include_router(orders_router)
app.include_router(scanner_router)
app.include_router(scan_history_router)
app.include_router(health_router)
app.include_router(metrics_router)
