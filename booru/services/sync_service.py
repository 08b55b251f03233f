"""Sync orchestrator: pull the Hydrus catalog into the booru database.

A run lists every file id matching the tag filter, then walks the list in
batches of BATCH_SIZE. Each batch fetches metadata, resolves all its tags and
groups up front, then merges files CONCURRENT_FILES at a time. Progress is
written to the sync state row after every chunk so pollers can follow along,
and a cancel request is honoured at the next batch boundary.

Errors are tiered: a failed listing aborts the run with status ``error``;
a failed batch or file is recorded in the progress error list and the run
carries on, finishing ``completed``.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import math
from typing import TYPE_CHECKING

import httpx
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from booru.exceptions import InvalidLookupValueError
from booru.hydrus.client import HydrusApiError
from booru.models.sync import SyncStatus
from booru.services.lookup_service import prepare_batch_lookups
from booru.services.merge_service import merge_file
from booru.services.reconcile_service import ReconcileResult, reconcile, refresh_statistics
from booru.services.sync_state_service import (
    SyncPhase,
    SyncProgress,
    begin_sync,
    is_sync_cancelled,
    update_sync_state,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence
    from os import PathLike

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from booru.hydrus.client import CatalogClient
    from booru.hydrus.types import HydrusFileMetadata
    from booru.services.lookup_service import BatchLookups

    ProgressCallback = Callable[[SyncProgress], Awaitable[None] | None]

logger = logging.getLogger(__name__)

BATCH_SIZE = 256
CONCURRENT_FILES = 20

# The only filter whose listing is complete enough to delete against
FULL_LISTING_TAGS = ["system:everything"]

__all__ = [
    "BATCH_SIZE",
    "CONCURRENT_FILES",
    "FULL_LISTING_TAGS",
    "SyncOrchestrator",
    "SyncPhase",
    "SyncProgress",
    "sync_from_hydrus",
]


class SyncOrchestrator:
    """Drives one sync run from start to a terminal state."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        client: CatalogClient,
        files_path: str | PathLike[str],
        tags: Sequence[str] | None = None,
        on_progress: ProgressCallback | None = None,
        *,
        full_listing: bool | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._client = client
        self._files_path = files_path
        self.tags = list(tags) if tags else list(FULL_LISTING_TAGS)
        # None: only the system:everything filter lists every file
        self._full_listing = full_listing
        self._on_progress = on_progress
        self.progress = SyncProgress()
        self.reconcile_result: ReconcileResult | None = None

    @property
    def is_full_listing(self) -> bool:
        """Whether the listing covers the whole catalog, so absent posts may be deleted."""
        if self._full_listing is not None:
            return self._full_listing
        return self.tags == FULL_LISTING_TAGS

    async def start(self) -> None:
        """Claim the sync state. Raises SyncAlreadyRunningError if it is taken."""
        async with self._session_factory() as session:
            await begin_sync(session)
        logger.info("Sync started (tags: %s)", self.tags)

    async def run(self) -> SyncProgress:
        """Run the sync to a terminal state. Call start() first.

        Listing failures and other unrecoverable errors set status ``error``
        and propagate; task cancellation does the same and re-raises.
        """
        try:
            return await self._run()
        except asyncio.CancelledError:
            await self._fail("Sync interrupted")
            raise
        except Exception as exc:
            logger.error("Sync failed: %s", exc, exc_info=exc)
            await self._fail(str(exc) or type(exc).__name__)
            raise

    # ── Run phases ───────────────────────────────────

    async def _run(self) -> SyncProgress:
        progress = self.progress
        await self._report(SyncPhase.SEARCHING)

        listing = await self._client.search_files(self.tags)
        file_ids = listing.file_ids
        progress.total_files = len(file_ids)
        progress.total_batches = math.ceil(len(file_ids) / BATCH_SIZE)
        logger.info(
            "Found %d files in %d batches", progress.total_files, progress.total_batches
        )

        if not file_ids:
            await self._complete()
            return progress

        cancelled = False
        for batch_number, offset in enumerate(range(0, len(file_ids), BATCH_SIZE), start=1):
            if await self._cancel_requested():
                logger.info(
                    "Sync cancelled before batch %d/%d", batch_number, progress.total_batches
                )
                cancelled = True
                break
            progress.current_batch = batch_number
            await self._process_batch(file_ids[offset : offset + BATCH_SIZE])

        if cancelled:
            await refresh_statistics(self._session_factory)
        elif self.is_full_listing and listing.hashes is not None:
            await self._report(SyncPhase.CLEANUP)
            self.reconcile_result = await reconcile(self._session_factory, listing.hashes)
        else:
            if self.is_full_listing:
                logger.warning("Listing returned no hashes, skipping reconciliation")
            else:
                logger.info(
                    "Tag filter %s is not a full listing, skipping deletion reconciliation",
                    self.tags,
                )
            await refresh_statistics(self._session_factory)

        await self._complete()
        return progress

    async def _process_batch(self, file_ids: Sequence[int]) -> None:
        progress = self.progress
        label = f"Batch {progress.current_batch}/{progress.total_batches}"
        await self._report(SyncPhase.FETCHING)

        try:
            batch = await self._client.get_file_metadata(file_ids)
        except (HydrusApiError, httpx.HTTPError, ValidationError) as exc:
            logger.warning("%s: failed to fetch metadata: %s", label, exc)
            progress.errors.append(f"{label}: failed to fetch metadata: {exc}")
            await self._report(SyncPhase.FETCHING)
            return

        files = batch.files
        for invalid in batch.invalid:
            progress.errors.append(invalid.describe())
        progress.processed_files += len(batch.invalid)

        try:
            lookups = await prepare_batch_lookups(self._session_factory, files)
        except (InvalidLookupValueError, SQLAlchemyError) as exc:
            logger.warning("%s: failed to prepare tags and groups: %s", label, exc)
            progress.errors.append(f"{label}: failed to prepare tags and groups: {exc}")
            await self._report(SyncPhase.FETCHING)
            return

        await self._report(SyncPhase.PROCESSING)
        failed = 0
        for start in range(0, len(files), CONCURRENT_FILES):
            chunk = files[start : start + CONCURRENT_FILES]
            outcomes = await asyncio.gather(
                *(self._merge(metadata, lookups) for metadata in chunk),
                return_exceptions=True,
            )
            for metadata, outcome in zip(chunk, outcomes, strict=True):
                if isinstance(outcome, Exception):
                    failed += 1
                    logger.warning("Failed to merge %s: %s", metadata.hash, outcome)
                    progress.errors.append(f"{metadata.hash}: {outcome}")
                elif isinstance(outcome, BaseException):
                    raise outcome
            progress.processed_files += len(chunk)
            await self._report(SyncPhase.PROCESSING)

        logger.info(
            "%s: merged %d files (%d failed, %d/%d processed)",
            label,
            len(files) - failed,
            failed,
            progress.processed_files,
            progress.total_files,
        )

    async def _merge(self, metadata: HydrusFileMetadata, lookups: BatchLookups) -> int:
        return await merge_file(self._session_factory, metadata, lookups, self._files_path)

    # ── State ────────────────────────────────────────

    async def _cancel_requested(self) -> bool:
        async with self._session_factory() as session:
            return await is_sync_cancelled(session)

    async def _notify(self) -> None:
        if self._on_progress is None:
            return
        result = self._on_progress(self.progress)
        if inspect.isawaitable(result):
            await result

    async def _report(self, phase: SyncPhase) -> None:
        self.progress.phase = phase
        await self._notify()
        async with self._session_factory() as session:
            await update_sync_state(session, SyncStatus.RUNNING, self.progress)

    async def _complete(self) -> None:
        self.progress.phase = SyncPhase.COMPLETE
        await self._notify()
        async with self._session_factory() as session:
            await update_sync_state(session, SyncStatus.COMPLETED, self.progress)
        logger.info(
            "Sync completed: %d/%d files processed, %d errors",
            self.progress.processed_files,
            self.progress.total_files,
            len(self.progress.errors),
        )

    async def _fail(self, message: str) -> None:
        self.progress.phase = SyncPhase.ERROR
        try:
            await self._notify()
            async with self._session_factory() as session:
                await update_sync_state(
                    session, SyncStatus.ERROR, self.progress, error_message=message
                )
        except SQLAlchemyError:
            logger.exception("Failed to record sync error state")


async def sync_from_hydrus(
    session_factory: async_sessionmaker[AsyncSession],
    client: CatalogClient,
    files_path: str | PathLike[str],
    tags: Sequence[str] | None = None,
    on_progress: ProgressCallback | None = None,
    *,
    full_listing: bool | None = None,
) -> SyncProgress:
    """Start and run a full sync in the current task."""
    orchestrator = SyncOrchestrator(
        session_factory, client, files_path, tags, on_progress, full_listing=full_listing
    )
    await orchestrator.start()
    return await orchestrator.run()
