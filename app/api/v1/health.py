import logging
from typing import Any, Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from app.core.dependencies import get_browser_pool, get_session_manager
from app.infrastructure.registry.browser_pool import BrowserPagePool
from app.services.verification_sessions import VerificationSessionManager

logger = logging.getLogger(__name__)

router = APIRouter()


class HealthResponse(BaseModel):
    status: Literal["ok", "degraded"] = Field(..., description="The status of the health check")
    browser_pool: dict[str, Any] | None = Field(
        default=None, description="Registry browser pool statistics"
    )
    sessions: dict[str, Any] = Field(
        default_factory=dict, description="Verification session manager statistics"
    )


@router.get("/health", tags=["health"], response_model=HealthResponse)
async def health(
    manager: VerificationSessionManager = Depends(get_session_manager),
    pool: BrowserPagePool | None = Depends(get_browser_pool),
):
    pool_stats = pool.stats() if pool is not None else None
    # The browser is launched lazily: only a pool that was closed counts as degraded
    status = "degraded" if pool_stats and pool_stats.get("closed") else "ok"
    if status != "ok":
        logger.warning(f"Health degraded: browser pool {pool_stats}")
    return HealthResponse(status=status, browser_pool=pool_stats, sessions=manager.stats())
