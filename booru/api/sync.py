"""Admin endpoints to start, poll and cancel the Hydrus sync."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from booru.api.deps import get_session, get_session_factory, get_settings
from booru.config import Settings
from booru.exceptions import SyncAlreadyRunningError
from booru.hydrus.client import HydrusClient
from booru.schemas.sync import (
    SyncMessageResponse,
    SyncStartRequest,
    SyncStartResponse,
    SyncStatusResponse,
)
from booru.services.datetime_service import as_utc
from booru.services.sync_service import SyncOrchestrator
from booru.services.sync_state_service import get_sync_state, request_cancel

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/sync", tags=["sync"])


def _create_client(request: Request, settings: Settings) -> HydrusClient:
    factory = getattr(request.app.state, "hydrus_client_factory", HydrusClient.from_settings)
    client: HydrusClient = factory(settings)
    return client


async def _run_in_background(orchestrator: SyncOrchestrator, client: HydrusClient) -> None:
    try:
        await orchestrator.run()
    except Exception:
        # The orchestrator has already logged the failure and recorded it
        logger.debug("Background sync ended with an error", exc_info=True)
    finally:
        await client.aclose()


async def cancel_background_sync(app: FastAPI) -> None:
    """Cancel the in-process sync task, if any, and wait for it to finish."""
    task: asyncio.Task[None] | None = getattr(app.state, "sync_task", None)
    if task is None or task.done():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        logger.info("Background sync cancelled on shutdown")


@router.get("", response_model=SyncStatusResponse)
async def get_sync_status(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> SyncStatusResponse:
    """Return the persisted sync state; idle if no sync ever ran."""
    state = await get_sync_state(session)
    if state is None:
        return SyncStatusResponse()
    return SyncStatusResponse(
        status=state.status,
        phase=state.phase,
        last_synced_at=as_utc(state.last_synced_at),
        last_sync_count=state.last_sync_count,
        error_message=state.error_message,
        total_files=state.total_files,
        processed_files=state.processed_files,
        current_batch=state.current_batch,
        total_batches=state.total_batches,
        errors=json.loads(state.errors or "[]"),
        started_at=as_utc(state.started_at),
        updated_at=as_utc(state.updated_at),
    )


@router.post("", response_model=SyncStartResponse, status_code=status.HTTP_202_ACCEPTED)
async def start_sync(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
    body: SyncStartRequest | None = None,
) -> SyncStartResponse:
    """Claim the sync state and run the sync in the background.

    Returns 409 if a sync is already running, including one that was
    cancelled but has not reached its next batch boundary yet.
    """
    task: asyncio.Task[None] | None = getattr(request.app.state, "sync_task", None)
    if task is not None and not task.done():
        raise SyncAlreadyRunningError

    if body is not None and body.tags:
        tags, full_listing = body.tags, None
    else:
        tags, full_listing = list(settings.sync_default_tags), settings.sync_full_listing
    client = _create_client(request, settings)
    orchestrator = SyncOrchestrator(
        session_factory,
        client,
        settings.hydrus_files_path,
        tags,
        full_listing=full_listing,
    )
    try:
        await orchestrator.start()
    except BaseException:
        await client.aclose()
        raise

    task = asyncio.create_task(_run_in_background(orchestrator, client), name="hydrus-sync")
    request.app.state.sync_task = task
    return SyncStartResponse(message="Sync started", tags=orchestrator.tags)


@router.delete("", response_model=SyncMessageResponse)
async def cancel_sync(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> SyncMessageResponse:
    """Request cancellation; the sync stops at its next batch boundary."""
    if await request_cancel(session):
        return SyncMessageResponse(message="Sync cancellation requested")
    return SyncMessageResponse(message="No sync is running")
