from __future__ import annotations

from typing import Any, Dict

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from subsync.core.config import get_settings

settings = get_settings()

DATABASE_URL = settings.database_url  # fail fast if missing


def _engine_options(url: str) -> Dict[str, Any]:
    # poller and lock sweep sessions are opened from asyncio.to_thread workers
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


engine = create_engine(DATABASE_URL, future=True, **_engine_options(DATABASE_URL))

SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    future=True,
)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
