from fastapi import APIRouter

from subsync.api.v1.health import router as health_router
from subsync.api.v1.sync import router as sync_router
from subsync.api.v1.locks import router as locks_router


v1_router = APIRouter()

# ------------------------------------------------------------------
# SYSTEM / CORE
# ------------------------------------------------------------------
v1_router.include_router(health_router, tags=["health"])
v1_router.include_router(sync_router)

# ------------------------------------------------------------------
# RENEWAL LOCKS (read-only)
# ------------------------------------------------------------------
v1_router.include_router(locks_router)
