"""Tests for the persisted sync state and its write discipline."""

from __future__ import annotations

import json
from datetime import timedelta
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import func, select, text, update
from sqlalchemy.exc import IntegrityError

from booru.exceptions import SyncAlreadyRunningError
from booru.models.sync import SYNC_STATE_ID, SyncState, SyncStatus
from booru.services.datetime_service import now_utc
from booru.services.sync_state_service import (
    CANCEL_STALE_AFTER,
    MAX_STORED_ERRORS,
    SyncPhase,
    SyncProgress,
    begin_sync,
    get_sync_state,
    is_sync_cancelled,
    request_cancel,
    update_sync_state,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


class TestBeginSync:
    async def test_first_start_creates_running_row(self, db_session: AsyncSession) -> None:
        assert await get_sync_state(db_session) is None
        await begin_sync(db_session)

        state = await get_sync_state(db_session)
        assert state is not None
        assert state.status == SyncStatus.RUNNING
        assert state.phase == SyncPhase.SEARCHING
        assert state.started_at is not None

    async def test_rejected_while_running_and_state_untouched(
        self, db_session: AsyncSession
    ) -> None:
        await begin_sync(db_session)
        progress = SyncProgress(
            phase=SyncPhase.PROCESSING,
            total_files=10,
            processed_files=4,
            current_batch=1,
            total_batches=1,
            errors=["abc: boom"],
        )
        await update_sync_state(db_session, SyncStatus.RUNNING, progress)
        before = await get_sync_state(db_session)
        assert before is not None
        snapshot = (before.status, before.processed_files, before.errors, before.started_at)

        with pytest.raises(SyncAlreadyRunningError):
            await begin_sync(db_session)

        after = await get_sync_state(db_session)
        assert after is not None
        assert (after.status, after.processed_files, after.errors, after.started_at) == snapshot

    @pytest.mark.parametrize("previous", [SyncStatus.COMPLETED, SyncStatus.ERROR])
    async def test_restart_from_terminal_state_resets_progress(
        self, db_session: AsyncSession, previous: SyncStatus
    ) -> None:
        await begin_sync(db_session)
        await update_sync_state(
            db_session,
            previous,
            SyncProgress(total_files=5, processed_files=5, errors=["x"]),
            error_message="old failure" if previous is SyncStatus.ERROR else None,
            force=True,
        )

        await begin_sync(db_session)
        state = await get_sync_state(db_session)
        assert state is not None
        assert state.status == SyncStatus.RUNNING
        assert state.processed_files == 0
        assert state.total_files == 0
        assert json.loads(state.errors) == []
        assert state.error_message is None

    async def test_rejected_while_cancel_is_pending(self, db_session: AsyncSession) -> None:
        await begin_sync(db_session)
        assert await request_cancel(db_session)

        with pytest.raises(SyncAlreadyRunningError):
            await begin_sync(db_session)

        state = await get_sync_state(db_session)
        assert state is not None
        assert state.status == SyncStatus.CANCELLED

    async def test_stale_cancel_is_taken_over(self, db_session: AsyncSession) -> None:
        await begin_sync(db_session)
        await update_sync_state(
            db_session, SyncStatus.RUNNING, SyncProgress(total_files=5, processed_files=2)
        )
        assert await request_cancel(db_session)
        await db_session.execute(
            update(SyncState)
            .where(SyncState.id == SYNC_STATE_ID)
            .values(updated_at=now_utc() - CANCEL_STALE_AFTER - timedelta(hours=1))
        )
        await db_session.commit()

        await begin_sync(db_session)
        state = await get_sync_state(db_session)
        assert state is not None
        assert state.status == SyncStatus.RUNNING
        assert state.processed_files == 0

    async def test_stale_window_is_configurable(self, db_session: AsyncSession) -> None:
        await begin_sync(db_session)
        assert await request_cancel(db_session)

        await begin_sync(db_session, stale_after=timedelta(seconds=-1))
        assert not await is_sync_cancelled(db_session)

    async def test_singleton_enforced_by_schema(self, db_session: AsyncSession) -> None:
        await begin_sync(db_session)
        with pytest.raises(IntegrityError):
            await db_session.execute(
                text(
                    "INSERT INTO sync_state (id, status, last_sync_count, total_files,"
                    " processed_files, current_batch, total_batches, errors)"
                    " VALUES (2, 'idle', 0, 0, 0, 0, 0, '[]')"
                )
            )
        await db_session.rollback()
        count = await db_session.scalar(select(func.count()).select_from(SyncState))
        assert count == 1


class TestUpdateSyncState:
    async def test_running_write_preserves_cancelled(self, db_session: AsyncSession) -> None:
        await begin_sync(db_session)
        assert await request_cancel(db_session)

        await update_sync_state(
            db_session, SyncStatus.RUNNING, SyncProgress(phase=SyncPhase.PROCESSING)
        )
        assert await is_sync_cancelled(db_session)
        state = await get_sync_state(db_session)
        assert state is not None
        assert state.status == SyncStatus.CANCELLED
        assert state.phase == SyncPhase.PROCESSING

    async def test_forced_running_write_clears_cancelled(self, db_session: AsyncSession) -> None:
        await begin_sync(db_session)
        await request_cancel(db_session)
        await update_sync_state(db_session, SyncStatus.RUNNING, force=True)
        assert not await is_sync_cancelled(db_session)

    async def test_completed_records_last_sync(self, db_session: AsyncSession) -> None:
        await begin_sync(db_session)
        await update_sync_state(
            db_session,
            SyncStatus.COMPLETED,
            SyncProgress(phase=SyncPhase.COMPLETE, total_files=3, processed_files=3),
        )
        state = await get_sync_state(db_session)
        assert state is not None
        assert state.status == SyncStatus.COMPLETED
        assert state.last_sync_count == 3
        assert state.last_synced_at is not None

    async def test_error_message_persisted(self, db_session: AsyncSession) -> None:
        await begin_sync(db_session)
        await update_sync_state(db_session, SyncStatus.ERROR, error_message="listing failed")
        state = await get_sync_state(db_session)
        assert state is not None
        assert state.status == SyncStatus.ERROR
        assert state.error_message == "listing failed"

    async def test_only_recent_errors_are_stored(self, db_session: AsyncSession) -> None:
        await begin_sync(db_session)
        errors = [f"error {i}" for i in range(MAX_STORED_ERRORS + 20)]
        await update_sync_state(db_session, SyncStatus.RUNNING, SyncProgress(errors=errors))
        state = await get_sync_state(db_session)
        assert state is not None
        stored = json.loads(state.errors)
        assert len(stored) == MAX_STORED_ERRORS
        assert stored[-1] == errors[-1]


class TestRequestCancel:
    async def test_no_op_when_nothing_running(self, db_session: AsyncSession) -> None:
        assert not await request_cancel(db_session)
        assert await get_sync_state(db_session) is None

    async def test_no_op_after_completion(self, db_session: AsyncSession) -> None:
        await begin_sync(db_session)
        await update_sync_state(db_session, SyncStatus.COMPLETED)
        assert not await request_cancel(db_session)
        state = await get_sync_state(db_session)
        assert state is not None
        assert state.status == SyncStatus.COMPLETED
