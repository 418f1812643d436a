import asyncio
import logging
import sqlite3
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from tile_recommender.api.router import router
from tile_recommender.config import settings
from tile_recommender.errors import AppError
from tile_recommender.logging_setup import setup_logging
from tile_recommender.middleware import RequestLoggingMiddleware
from tile_recommender.models.database import init_db, purge_expired_sessions
from tile_recommender.rate_limit import RATE_LIMIT_MESSAGE, limiter
from tile_recommender.services.chat import utcnow
from tile_recommender.services.llm.factory import create_llm_provider

log = logging.getLogger(__name__)

SHUTDOWN_TIMEOUT_SECONDS = 5.0


async def reap_expired_sessions(db_path: str, interval: float):
    """Delete expired chat sessions every ``interval`` seconds until cancelled."""
    while True:
        try:
            removed = await purge_expired_sessions(db_path, utcnow())
            if removed:
                log.info("SESSION_REAPER | removed=%d", removed)
        except sqlite3.Error:
            log.exception("SESSION_REAPER_FAILED")
        await asyncio.sleep(interval)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # startup: logging, DB, LLM provider, session reaper
    setup_logging(settings.LOG_LEVEL)
    await init_db(settings.SQLITE_DB_PATH)
    app.state.llm_provider = create_llm_provider(settings)
    reaper = asyncio.create_task(
        reap_expired_sessions(settings.SQLITE_DB_PATH, settings.SESSION_REAPER_INTERVAL_SECONDS)
    )
    log.info("STARTUP | provider=%s | db=%s", settings.LLM_PROVIDER, settings.SQLITE_DB_PATH)
    yield
    # shutdown: stop the reaper, drain the provider's HTTP client
    reaper.cancel()
    try:
        await reaper
    except asyncio.CancelledError:
        pass
    try:
        await asyncio.wait_for(app.state.llm_provider.aclose(), timeout=SHUTDOWN_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        log.warning("SHUTDOWN | llm client did not close within %ss", SHUTDOWN_TIMEOUT_SECONDS)


app = FastAPI(
    title="Tile Recommendation Assistant",
    description="Conversational ceramic tile recommendations backed by a pluggable LLM provider.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)
app.state.limiter = limiter


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        log.error("APP_ERROR | %s %s | status=%d | %s", request.method, request.url.path, exc.status_code, exc.message)
    body: dict = {"message": exc.message}
    if exc.errors:
        body["errors"] = exc.errors
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    log.warning("RATE_LIMITED | %s %s | limit=%s", request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=429, content={"message": RATE_LIMIT_MESSAGE})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        {
            "field": ".".join(str(part) for part in err["loc"] if part != "body"),
            "message": err["msg"].removeprefix("Value error, "),
        }
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"message": "Validation Error", "errors": errors})


@app.exception_handler(sqlite3.Error)
async def storage_error_handler(request: Request, exc: sqlite3.Error):
    log.error("STORAGE_ERROR | %s %s | %r", request.method, request.url.path, exc, exc_info=exc)
    return JSONResponse(status_code=503, content={"message": "Storage is temporarily unavailable."})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    log.error("UNHANDLED_ERROR | %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"message": "Internal server error"})


app.include_router(router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "provider": settings.LLM_PROVIDER}
