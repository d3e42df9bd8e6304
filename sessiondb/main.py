import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, Request, Response, status
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from sessiondb.api import sessions
from sessiondb.core.config import settings
from sessiondb.core.limiter import limiter
from sessiondb.core.logging_config import (
    correlation_id_ctx,
    get_correlation_id,
    init_application_logging,
)
from sessiondb.core.utils.database_helpers import check_database_health
from sessiondb.core.utils.session_store import SessionStore
from sessiondb.db.init_db import init_database

logger = logging.getLogger("sessiondb.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_application_logging()
    if settings.AUTO_CREATE_SCHEMA:
        init_database()
    logger.info(
        "Rate limiting initialized with configuration: admin=%s, maintenance=%s",
        settings.rate_limit_admin_endpoints,
        settings.rate_limit_maintenance_endpoints,
    )
    yield


app = FastAPI(
    title="sessiondb",
    description="Database-backed web session store administration",
    version=settings.VERSION,
    lifespan=lifespan,
)

# Attach limiter to app.state for access in route decorators
app.state.limiter = limiter

# JSON HTTP 429 responses when a limit is exceeded
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.include_router(sessions.router, prefix="/api/sessions", tags=["Sessions"])


@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    """Tag every log line of a request with its X-Correlation-ID (generated when absent)"""
    token = correlation_id_ctx.set(request.headers.get("X-Correlation-ID"))
    try:
        correlation_id = get_correlation_id()
        response = await call_next(request)
    finally:
        correlation_id_ctx.reset(token)
    response.headers["X-Correlation-ID"] = correlation_id
    return response


@app.get("/health")
def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy"}


@app.get("/api/health")
def api_health_check(
    response: Response,
    store: SessionStore = Depends(sessions.get_session_store),
):
    """
    Detailed health check including database connectivity.

    Responds 503 when the session database cannot be reached.
    """
    health_status = {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": settings.VERSION,
        "environment": {
            "dev_mode": settings.DEV_MODE,
            "python_version": f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
        },
        "services": {},
    }

    db_health = check_database_health(store.engine)
    health_status["services"]["database"] = {
        "status": db_health["status"],
        "type": db_health["database_type"],
        "connected": db_health["connected"],
        "sessions_table": db_health["sessions_table"],
        "last_error": db_health.get("last_error"),
    }
    health_status["services"]["session_locks"] = {
        "backend": store.locks.name,
        "wait_seconds": settings.SESSION_LOCK_WAIT_SECONDS,
        "timeout_policy": settings.SESSION_LOCK_TIMEOUT_POLICY,
    }

    if db_health["status"] == "unhealthy":
        health_status["status"] = "unhealthy"
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    elif db_health["status"] != "healthy":
        health_status["status"] = "degraded"

    return health_status
