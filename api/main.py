"""
api/main.py -- FastAPI application entry point for PatronAuth.

Exposes the patron authentication endpoint over HTTP for discovery layers,
proxies and legacy APA clients.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost; each registration wraps the earlier ones):
  1. log_requests          -- one access log line per request, rejected hosts included
  2. api_cors_header       -- Access-Control-Allow-Origin: * on API responses
  3. TrustedHostMiddleware -- rejects requests with unexpected Host headers

Starlette's CORSMiddleware is not used: it answers preflight requests itself
with 200, while API clients expect 204 from the endpoint (see routes/v1/user.py).

Lifespan handles startup (object cache, patron store, ILS client, evaluator,
purge task) and shutdown (cancel purge task, close connections) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import HealthResponse
from api.routes.v1.user import router as user_router
from auth.identity import AuthManager
from auth.store import PatronStore
from cache.store import ObjectCache
from core.config import get_settings
from core.errors import PatronAuthError
from core.evaluator import PatronAuthEvaluator
from core.models import STATUS_ERROR
from core.renderer import output
from ils.alma import AlmaClient

VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("patronauth.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Purge expired object cache entries every 6 hours.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(6 * 60 * 60)
        removed = app.state.cache.purge_expired()
        logger.info("Purged %d expired cache entries", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the collaborators of the auth endpoint and tear them down on shutdown.

    Startup order matters:
      1. Object cache -- the ILS client writes profile data into it on login.
      2. Patron store.
      3. ILS client -- needs the cache.
      4. AuthManager and evaluator -- need all of the above.
      5. Purge task last -- references app.state.cache.
    """
    settings = get_settings()
    logger.info("PatronAuth API starting up")
    app.state.cache = ObjectCache(settings.cache_db_path, ttl=settings.cache_ttl)
    app.state.patron_store = PatronStore(settings.patron_db_url)
    app.state.ils = AlmaClient(
        settings.ils_base_url,
        settings.ils_api_key,
        cache=app.state.cache,
        timeout=settings.ils_timeout,
        display_date_format=settings.display_date_format,
    )
    app.state.auth_manager = AuthManager(
        app.state.ils,
        patron_store=app.state.patron_store,
        cache=app.state.cache,
        enabled=settings.login_enabled,
    )
    app.state.evaluator = PatronAuthEvaluator(
        app.state.auth_manager,
        app.state.ils,
        app.state.cache,
        display_date_format=settings.display_date_format,
        language=settings.language,
    )
    logger.info("ILS client ready (%s, login_enabled=%s)", settings.ils_base_url, settings.login_enabled)
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.ils.close()
    app.state.cache.close()
    app.state.patron_store.close()
    logger.info("PatronAuth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="PatronAuth API",
    description="Patron authentication against the library's ILS.",
    version=VERSION,
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None,
)

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=get_settings().allowed_hosts,
)

# slowapi looks for app.state.limiter by convention.
app.state.limiter = limiter


@app.middleware("http")
async def api_cors_header(request: Request, call_next):
    """Allow any origin on API responses; the API is public."""
    response = await call_next(request)
    if request.url.path.startswith(("/api/", "/Api/")):
        response.headers["Access-Control-Allow-Origin"] = "*"
    return response


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

# Paths are absolute in the router: the legacy alias lives outside /api/v1.
app.include_router(user_router, tags=["User"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same {"status": "ERROR", "statusMessage": ...}
# envelope the auth endpoint uses, so API clients parse errors uniformly.
# ---------------------------------------------------------------------------


@app.exception_handler(PatronAuthError)
async def patron_auth_error_handler(request: Request, exc: PatronAuthError):
    """405 / 423 / 403 / 400 raised by the route or the evaluator."""
    return output({}, STATUS_ERROR, exc.http_status, exc.message)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    """Return 429 with Retry-After when the per-client auth limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = output({}, STATUS_ERROR, 429, "Too many requests")
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return output({}, STATUS_ERROR, 422, "Request validation failed")


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Routing errors (404, 405 for methods outside the route table)."""
    return output({}, STATUS_ERROR, exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Catch-all handler for unexpected server errors, including UnsupportedOutputFormat.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return output({}, STATUS_ERROR, 500, "An unexpected error occurred")


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version. Not rate limited."""
    return HealthResponse(version=VERSION)
