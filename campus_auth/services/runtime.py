"""
Runtime container.

Builds the auth configuration, database engine and every auth service
exactly once at process start, and owns the background work:
- the periodic idle-session sweeper
- detached last-activity touches (drained on shutdown)
"""

import asyncio
import contextlib
import logging
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncEngine

from campus_auth.core.config import Settings
from campus_auth.core.database import build_engine, build_session_factory
from campus_auth.core.security import TokenCodec
from campus_auth.services.auth_service import AuthService
from campus_auth.services.request_gate import RequestGate
from campus_auth.services.session_service import SessionStore

logger = logging.getLogger(__name__)


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self, settings: Settings, engine: AsyncEngine | None = None):
        self.settings = settings
        # Raises ConfigurationError on missing secrets: fatal at startup.
        self.config = settings.auth_config()
        self.engine = engine or build_engine(settings.DATABASE_URL)
        self.session_factory = build_session_factory(self.engine)

        self.codec = TokenCodec(self.config)
        self.sessions = SessionStore(self.config, self.session_factory)
        self.auth = AuthService(self.config, self.codec, self.sessions, self.session_factory)
        self.gate = RequestGate(self.codec, self.sessions)

        self._sweeper: asyncio.Task | None = None

    def start(self) -> None:
        interval = timedelta(minutes=self.settings.SESSION_SWEEP_INTERVAL_MINUTES)
        if interval.total_seconds() > 0 and self._sweeper is None:
            self._sweeper = asyncio.create_task(self.sessions.run_sweeper(interval))
            logger.info("Session sweeper started (every %s)", interval)

    async def stop(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None
        await self.sessions.drain()
        await self.engine.dispose()
        logger.info("Database engine disposed.")
