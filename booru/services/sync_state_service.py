"""Persisted sync state: the singleton row shared by the sync and its pollers.

All writes are single conditional statements so a poller's cancel request
can never be lost between the orchestrator's read and its next write:

- ``begin_sync`` moves an idle or finished state to ``running`` in one
  conditional ``UPDATE``; a zero row count means another sync holds the
  state. A ``cancelled`` row still belongs to its run until that run writes
  a terminal status, unless the run has not written for CANCEL_STALE_AFTER.
- ``update_sync_state`` writes ``running`` through a ``CASE`` that keeps an
  existing ``cancelled`` unless the caller forces it.
- ``request_cancel`` only flips a ``running`` row.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, case, or_, select, update

from booru.database import dialect_insert
from booru.exceptions import SyncAlreadyRunningError
from booru.models.sync import SYNC_STATE_ID, SyncState, SyncStatus
from booru.services.datetime_service import now_utc

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

# Only the most recent errors are persisted; the in-memory list is unbounded
MAX_STORED_ERRORS = 100

# A cancelled run that has not written progress for this long is presumed dead
CANCEL_STALE_AFTER = timedelta(minutes=10)


class SyncPhase(StrEnum):
    """Step of a running sync, reported to pollers."""

    SEARCHING = "searching"
    FETCHING = "fetching"
    PROCESSING = "processing"
    CLEANUP = "cleanup"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass
class SyncProgress:
    """Progress of the current run, as reported to callbacks and pollers."""

    phase: SyncPhase = SyncPhase.SEARCHING
    total_files: int = 0
    processed_files: int = 0
    current_batch: int = 0
    total_batches: int = 0
    errors: list[str] = field(default_factory=list)


async def _ensure_state_row(session: AsyncSession) -> None:
    insert = dialect_insert(session)
    stmt = insert(SyncState.__table__).values(
        id=SYNC_STATE_ID,
        status=SyncStatus.IDLE.value,
        last_sync_count=0,
        total_files=0,
        processed_files=0,
        current_batch=0,
        total_batches=0,
        errors="[]",
    )
    await session.execute(stmt.on_conflict_do_nothing(index_elements=["id"]))


async def get_sync_state(session: AsyncSession) -> SyncState | None:
    """Return the sync state row, or None if no sync has ever started."""
    result = await session.execute(
        select(SyncState)
        .where(SyncState.id == SYNC_STATE_ID)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def begin_sync(
    session: AsyncSession, *, stale_after: timedelta = CANCEL_STALE_AFTER
) -> None:
    """Atomically move the sync state to ``running`` with zeroed progress.

    Raises SyncAlreadyRunningError, leaving the state untouched, if a sync
    is running, or is cancelled but last wrote progress less than
    ``stale_after`` ago. An older ``cancelled`` row is left over from a
    crashed run and is taken over.
    """
    await _ensure_state_row(session)
    table = SyncState.__table__
    now = now_utc()
    busy = (SyncStatus.RUNNING.value, SyncStatus.CANCELLED.value)
    stale_cancel = and_(
        table.c.status == SyncStatus.CANCELLED.value,
        or_(table.c.updated_at.is_(None), table.c.updated_at < now - stale_after),
    )
    result = await session.execute(
        update(table)
        .where(
            table.c.id == SYNC_STATE_ID,
            or_(table.c.status.not_in(busy), stale_cancel),
        )
        .values(
            status=SyncStatus.RUNNING.value,
            phase=SyncPhase.SEARCHING.value,
            error_message=None,
            total_files=0,
            processed_files=0,
            current_batch=0,
            total_batches=0,
            errors="[]",
            started_at=now,
            updated_at=now,
        )
    )
    if result.rowcount == 0:
        await session.rollback()
        raise SyncAlreadyRunningError
    await session.commit()
    logger.info("Sync state moved to running")


async def update_sync_state(
    session: AsyncSession,
    status: SyncStatus,
    progress: SyncProgress | None = None,
    *,
    error_message: str | None = None,
    force: bool = False,
) -> None:
    """Persist status and progress.

    A ``running`` write keeps an existing ``cancelled`` status unless
    ``force`` is set. A ``completed`` write also records the last sync time
    and count.
    """
    await _ensure_state_row(session)
    table = SyncState.__table__
    now = now_utc()

    values: dict[str, Any] = {"updated_at": now}
    if status is SyncStatus.RUNNING and not force:
        values["status"] = case(
            (table.c.status == SyncStatus.CANCELLED.value, SyncStatus.CANCELLED.value),
            else_=SyncStatus.RUNNING.value,
        )
    else:
        values["status"] = status.value

    if progress is not None:
        values.update(
            phase=progress.phase.value,
            total_files=progress.total_files,
            processed_files=progress.processed_files,
            current_batch=progress.current_batch,
            total_batches=progress.total_batches,
            errors=json.dumps(progress.errors[-MAX_STORED_ERRORS:]),
        )
    if status is SyncStatus.COMPLETED:
        values["last_synced_at"] = now
        values["last_sync_count"] = progress.processed_files if progress is not None else 0
        values["error_message"] = None
    if error_message is not None:
        values["error_message"] = error_message

    await session.execute(update(table).where(table.c.id == SYNC_STATE_ID).values(**values))
    await session.commit()


async def request_cancel(session: AsyncSession) -> bool:
    """Flag a running sync as cancelled. Returns False if nothing was running.

    ``updated_at`` is left alone: it records the run's own last write, which
    is what ``begin_sync`` measures staleness against.
    """
    table = SyncState.__table__
    result = await session.execute(
        update(table)
        .where(
            table.c.id == SYNC_STATE_ID,
            table.c.status == SyncStatus.RUNNING.value,
        )
        .values(status=SyncStatus.CANCELLED.value)
    )
    await session.commit()
    cancelled = result.rowcount > 0
    if cancelled:
        logger.info("Sync cancellation requested")
    return cancelled


async def is_sync_cancelled(session: AsyncSession) -> bool:
    result = await session.execute(
        select(SyncState.status).where(SyncState.id == SYNC_STATE_ID)
    )
    return result.scalar_one_or_none() == SyncStatus.CANCELLED.value
