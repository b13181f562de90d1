# src/services/dispatch_api/app.py
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from src.common.errors import (
    Conflict,
    DispatchError,
    DownstreamUnavailable,
    InvalidTransition,
    NotFound,
    Unauthorized,
)
from src.common.logger import log_warning
from src.services.dispatch_api.routes import router
from src.infra.database import init_db, close_db, get_db
from src.infra.redis_client import init_redis, close_redis, get_redis
from src.infra.event_bus import init_event_bus, close_event_bus

ERROR_STATUS = {
    NotFound: 404,
    Unauthorized: 403,
    InvalidTransition: 400,
    Conflict: 409,
    DownstreamUnavailable: 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    await init_redis()
    await init_event_bus()
    yield
    await close_event_bus()
    await close_redis()
    await close_db()


app = FastAPI(
    title="Booking Dispatch",
    version="1.0.0",
    lifespan=lifespan
)

app.include_router(router, prefix="/api/v1")


@app.exception_handler(DispatchError)
async def dispatch_error_handler(request: Request, exc: DispatchError):
    status_code = next(
        (code for error_type, code in ERROR_STATUS.items() if isinstance(exc, error_type)),
        500,
    )
    if status_code >= 500:
        await log_warning(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content={
            "error": type(exc).__name__,
            "detail": exc.message,
            "context": {k: str(v) for k, v in exc.details.items()},
        },
    )


@app.get("/health")
async def health_check():
    db_ok = await get_db().health_check()
    redis_ok = await get_redis().health_check()
    return {
        "status": "ok" if db_ok and redis_ok else "degraded",
        "service": "dispatch_api",
        "database": db_ok,
        "redis": redis_ok,
    }
