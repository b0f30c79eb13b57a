"""
Stage Service — FastAPI Server
Boundary layer for the stage mutation-and-audit pipeline: resolves the caller,
routes requests to the StageLifecycleManager, and maps its errors to HTTP.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import async_sessionmaker
from starlette.middleware.base import BaseHTTPMiddleware

from stage_service import __version__
from stage_service.api.routes_stages import router as stages_router
from stage_service.audit.config_history import ConfigHistoryHandler
from stage_service.auth.authorizer import Authorizer, Caller, OpenAuthorizer, RoleBasedAuthorizer
from stage_service.config.settings import settings
from stage_service.db.engine import create_schema, dispose_engine, get_session_factory
from stage_service.db.stage_store import StageStore
from stage_service.errors import (
    ForbiddenError, InvalidArgumentError, NotFoundError, StageServiceError, StoreConflictError,
)
from stage_service.stages.lifecycle_manager import StageLifecycleManager
from stage_service.tags.tag_handler import EnvTagHandler

logger = logging.getLogger(__name__)


def build_authorizer() -> Authorizer:
    if settings.authorizer == "open":
        logger.warning("Open authorizer in use - every caller may mutate every stage")
        return OpenAuthorizer()
    return RoleBasedAuthorizer(admin_operators=settings.admin_operator_list)


def build_lifecycle_manager(app: FastAPI, session_factory: async_sessionmaker) -> StageLifecycleManager:
    """Wire the single long-lived manager and keep its collaborators on app state."""
    app.state.stage_store = StageStore(session_factory)
    app.state.authorizer = build_authorizer()
    app.state.config_history = ConfigHistoryHandler(
        session_factory,
        change_feed_url=settings.change_feed_url,
        change_feed_secret=settings.change_feed_secret,
        change_feed_timeout=settings.change_feed_timeout,
    )
    app.state.tag_handler = EnvTagHandler(session_factory)
    return StageLifecycleManager(
        store=app.state.stage_store,
        authorizer=app.state.authorizer,
        config_history=app.state.config_history,
        tag_handler=app.state.tag_handler,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    logger.info(f"Starting stage service v{__version__} ({settings.environment})")
    if settings.auto_create_schema:
        await create_schema()
    app.state.lifecycle_manager = build_lifecycle_manager(app, get_session_factory())
    yield
    await dispose_engine()
    logger.info("Stage service shut down")


app = FastAPI(
    title="Stage Service",
    description="Read, update, delete, and enable/disable deployment stages with a full audit trail.",
    version=__version__,
    lifespan=lifespan,
    openapi_tags=[
        {"name": "System", "description": "Health and service info"},
        {"name": "Environments", "description": "Stage lifecycle — config, external id, SOX flag, actions"},
    ],
)


# ── Caller Middleware ────────────────────────────────────────────────────────
_PUBLIC_PATHS = {"/info", "/health", "/docs", "/openapi.json", "/redoc"}


class CallerMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        path = request.url.path.rstrip("/")
        if (request.method == "OPTIONS"
                or path in _PUBLIC_PATHS
                or path.startswith("/docs")):
            return await call_next(request)

        operator = request.headers.get("x-operator", "").strip()
        upstream_user = getattr(request.state, "user", None)
        if not operator and upstream_user is not None:
            operator = getattr(upstream_user, "username", "") or ""
        if not operator and settings.is_dev:
            operator = settings.dev_operator

        if not operator:
            return JSONResponse(status_code=401, content={"detail": "Authentication required."})
        request.state.caller = Caller(name=operator)
        return await call_next(request)


app.add_middleware(CallerMiddleware)


# ── Error Mapping ────────────────────────────────────────────────────────────

def _status_for(error: StageServiceError) -> int:
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, ForbiddenError):
        return 403
    if isinstance(error, InvalidArgumentError):
        return 400
    if isinstance(error, StoreConflictError) and error.conflict:
        return 409
    return 500


@app.exception_handler(StageServiceError)
async def stage_service_error_handler(request: Request, exc: StageServiceError):
    status = _status_for(exc)
    if status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=status, content={"detail": exc.message})


# ── System Routes ────────────────────────────────────────────────────────────

@app.get("/health", tags=["System"])
async def health():
    try:
        async with get_session_factory()() as session:
            await session.execute(text("SELECT 1"))
        database = "ok"
    except Exception as e:
        logger.warning(f"Health check database probe failed: {e}")
        database = "unavailable"
    return {"status": "ok" if database == "ok" else "degraded", "database": database}


@app.get("/info", tags=["System"])
async def info():
    return {
        "service": "Stage Service",
        "version": __version__,
        "environment": settings.environment,
        "authorizer": settings.authorizer,
        "change_feed_configured": bool(settings.change_feed_url),
    }


app.include_router(stages_router)
