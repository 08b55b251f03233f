"""Health endpoint: database reachability plus the last known sync outcome."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from booru.api.deps import get_session
from booru.config import app_version
from booru.models.sync import SyncStatus
from booru.services.datetime_service import as_utc
from booru.services.sync_state_service import get_sync_state

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class SyncHealth(BaseModel):
    status: SyncStatus = SyncStatus.IDLE
    last_synced_at: datetime | None = None


class HealthResponse(BaseModel):
    status: str
    version: str
    database: str
    sync: SyncHealth | None = None


async def _sync_health(session: AsyncSession) -> SyncHealth:
    await session.execute(text("SELECT 1"))
    state = await get_sync_state(session)
    if state is None:
        return SyncHealth()
    return SyncHealth(status=state.status, last_synced_at=as_utc(state.last_synced_at))


@router.get("/api/health", response_model=HealthResponse)
async def health_check(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> HealthResponse:
    """Report whether the database answers and how the last sync ended.

    ``sync`` is null when the database cannot be read.
    """
    try:
        sync = await _sync_health(session)
    except SQLAlchemyError:
        logger.warning("Health check database query failed", exc_info=True)
        return HealthResponse(status="degraded", version=app_version(), database="error")

    return HealthResponse(status="ok", version=app_version(), database="ok", sync=sync)
