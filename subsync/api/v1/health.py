import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from subsync.db.session import get_db

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
def health(request: Request, db: Session = Depends(get_db)):
    """
    Liveness of the pieces this service depends on.
    503 when the store is unreachable or sync is enabled but the poller is down.
    """
    try:
        db.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError:
        logger.warning("Health check: database unreachable", exc_info=True)
        database = "unavailable"

    poller = getattr(request.app.state, "event_poller", None)
    if poller is None:
        poller_state = "disabled"
    else:
        poller_state = "running" if poller.is_running else "stopped"

    healthy = database == "ok" and poller_state != "stopped"
    body = {
        "status": "ok" if healthy else "degraded",
        "database": database,
        "poller": poller_state,
        "request_id": getattr(request.state, "request_id", None),
    }
    return JSONResponse(body, status_code=200 if healthy else 503)
