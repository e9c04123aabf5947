from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI
from sqlalchemy.orm import Session
import logging

from subsync.core.config import Settings, get_settings
from subsync.core.logging import configure_logging
from subsync.core.middleware import RequestIdMiddleware
from subsync.api.v1.router import v1_router
from subsync.services.event_poller import EventPoller
from subsync.services.renewal_lock_service import RenewalLockService
from subsync.services.scheduler import LockSweepScheduler

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[Callable[[], Session]] = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)

    if session_factory is None:
        from subsync.db.session import SessionLocal

        session_factory = SessionLocal

    lock_service = RenewalLockService.from_settings(settings)

    # fail fast on missing contract/RPC config, before the server accepts traffic
    poller = EventPoller.from_settings(settings, session_factory) if settings.sync_enabled else None
    sweeper = (
        LockSweepScheduler(session_factory, interval_s=settings.lock_sweep_interval_s, lock_service=lock_service)
        if settings.sync_enabled
        else None
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if poller is not None:
            await poller.start()
            sweeper.start()
        else:
            logger.info("Event sync disabled (SYNC_ENABLED=false)")

        yield

        logger.info("Shutting down sync service")
        if poller is not None:
            await sweeper.stop()
            await poller.stop()

    app = FastAPI(
        title=settings.app_name,
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.event_poller = poller
    app.state.lock_sweeper = sweeper
    app.state.renewal_locks = lock_service

    # Middleware: Request ID
    app.add_middleware(RequestIdMiddleware, header_name=settings.request_id_header)

    # API v1
    app.include_router(v1_router, prefix=settings.api_prefix)

    return app


app = create_app()
