"""
api/main.py -- FastAPI application entry point for the VPlan server.

Exposes the timetable, news and login endpoints over HTTP for the bundled
browser frontend and for API clients holding a bearer token.

Run with:      python main.py serve
               uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- limiter-wide limits; per-endpoint buckets are
                              route dependencies from api.limiter.rate_bucket

Lifespan handles startup (engine, stores, token manager, auth provider, purge
task) and shutdown (cancel purge task, close provider, dispose engine)
symmetrically.

Error envelope: every 4xx/5xx body is {"error": {"code": <status>, "message": "..."}}.
401 and 429 carry a blank message.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.engine import Engine
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.auth import router as auth_router
from api.routes.vplan import router as vplan_router
from auth.providers import AuthProvider, create_auth_provider
from auth.store import TokenStore
from auth.tokens import TokenManager
from core.config import Settings, get_settings
from core.database import create_db_engine
from core.errors import BadRequest, StorageError, Unauthorized
from vplan.store import VPlanStore

VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("vplan.api")

# ---------------------------------------------------------------------------
# Application state
# ---------------------------------------------------------------------------


def build_state(
    app: FastAPI,
    settings: Settings,
    engine: Engine,
    auth_provider: Optional[AuthProvider] = None,
) -> None:
    """Attach the shared services to app.state.

    Route handlers and dependencies read everything from request.app.state,
    so tests can build the same state against their own engine.
    """
    app.state.settings = settings
    app.state.engine = engine
    app.state.token_store = TokenStore(engine)
    app.state.token_manager = TokenManager(app.state.token_store, settings.token_ttl_seconds)
    app.state.auth_provider = auth_provider or create_auth_provider(settings, engine)
    app.state.vplan_store = VPlanStore(engine)


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Delete expired API tokens every token_purge_interval_seconds.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine.
    """
    interval = app.state.settings.token_purge_interval_seconds
    while True:
        await asyncio.sleep(interval)
        try:
            removed = app.state.token_store.purge_expired()
        except StorageError:
            logger.exception("Token purge failed")
            continue
        if removed:
            logger.info("Purged %d expired API tokens", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the engine and services on startup; tear them down in reverse on shutdown.

    The purge task starts last because it reads app.state.token_store.
    """
    settings = get_settings()
    logger.info("VPlan API starting up (auth provider: %s)", settings.auth_provider)
    engine = create_db_engine(settings.database_url)
    build_state(app, settings, engine)
    logger.info("Storage initialized (%s)", engine.url.render_as_string(hide_password=True))
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.auth_provider.close()
    engine.dispose()
    logger.info("VPlan API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

_settings = get_settings()

app = FastAPI(
    title="VPlan API",
    description="School substitution timetable and news.",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs" if _settings.debug else None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization", "If-None-Match"],
    expose_headers=["ETag"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api", tags=["Auth"])
app.include_router(vplan_router, prefix="/api", tags=["VPlan"])
# Web UI router is mounted by asgi.py, not here.
# api/ and web/ are independent layers -- only the top-level asgi.py imports both.


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every handler answers with the {"error": {"code", "message"}} envelope.
# ---------------------------------------------------------------------------


def _error(status_code: int, message: str = "") -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=status_code, message=message)).model_dump(),
    )


# Plain def: SlowAPIMiddleware calls this handler synchronously.
@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a blank message. Retry-After comes from the limit window."""
    logger.warning("Rate limit hit on %s from %s", request.url.path, request.client.host if request.client else "unknown")
    response = _error(429)
    retry_after = getattr(exc, "retry_after", None)
    if retry_after is not None:
        response.headers["Retry-After"] = str(int(retry_after))
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies and query params are plain 400s."""
    errors = exc.errors()
    message = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg', '')}" for err in errors
    )
    return _error(400, message)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return the envelope for every HTTPException, including router 404/405.

    Route handlers raise HTTPException with a {"code", "message"} dict as
    detail; use it directly rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        response = JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    else:
        message = "" if exc.status_code in (401, 429) else str(exc.detail or "")
        response = _error(exc.status_code, message)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(BadRequest)
async def bad_request_handler(request: Request, exc: BadRequest) -> JSONResponse:
    return _error(400, str(exc))


@app.exception_handler(Unauthorized)
async def unauthorized_handler(request: Request, exc: Unauthorized) -> JSONResponse:
    return _error(401)


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    """Storage faults are 500s that carry the underlying error text."""
    logger.error("Storage error on %s %s: %s", request.method, request.url.path, exc)
    return _error(500, str(exc))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything unhandled is a 500. The traceback goes to the log, not the client."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router). No rate limit applied --
# health checks from load balancers must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/health", tags=["Health"])
def health(request: Request) -> JSONResponse:
    """Return liveness, version, and 503 if the database does not answer."""
    store: VPlanStore = request.app.state.vplan_store
    if not store.ping():
        return _error(503, "database unavailable")
    return JSONResponse(content=HealthResponse(version=VERSION).model_dump())
