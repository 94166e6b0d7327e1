"""
FastAPI application factory.

Assembles the app, registers all routers, wires up lifecycle events
and renders auth failures.  Database schema is managed by Alembic,
NOT create_all.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine

from campus_auth.controllers.auth_controller import router as auth_router
from campus_auth.controllers.session_controller import router as session_router
from campus_auth.core.config import Settings, get_settings
from campus_auth.core.errors import MESSAGES, STATUS_CODES, AuthError, AuthFailure
from campus_auth.schemas import ErrorResponse
from campus_auth.services.runtime import Runtime

logger = logging.getLogger(__name__)


def configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )


def create_app(settings: Settings | None = None, engine: AsyncEngine | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.DEBUG)
    runtime = Runtime(settings, engine=engine)

    app = FastAPI(
        title=settings.APP_NAME,
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.runtime = runtime

    # ── Register routers ─────────────────────────────────────────────
    app.include_router(auth_router)
    app.include_router(session_router)

    # ── Error rendering ──────────────────────────────────────────────
    def _render(reason: AuthFailure, message: str | None = None, headers: dict | None = None) -> JSONResponse:
        body = ErrorResponse(reason=reason.value, message=message or MESSAGES[reason])
        return JSONResponse(status_code=STATUS_CODES[reason], content=body.model_dump(), headers=headers)

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
        if exc.__cause__ is not None:
            logger.debug("%s %s failed: %r", request.method, request.url.path, exc.__cause__)
        headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
        return _render(exc.reason, exc.message, headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.info("%s %s rejected: %d validation error(s)", request.method, request.url.path, len(exc.errors()))
        return _render(AuthFailure.INVALID_REQUEST)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        # Details stay in the log; the client only sees the reason.
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _render(AuthFailure.INTERNAL_ERROR)

    # ── Startup / Shutdown ───────────────────────────────────────────
    @app.on_event("startup")
    async def on_startup() -> None:
        """Start the idle-session sweeper.

        NOTE: Database schema is managed by Alembic migrations.
        Run `alembic upgrade head` before starting the app.
        """
        runtime.start()

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        await runtime.stop()

    # ── Health check ─────────────────────────────────────────────────
    @app.get("/health", tags=["Health"])
    async def health():
        return {"status": "ok"}

    return app
