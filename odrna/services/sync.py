"""
Local/Cloud Sync

Keeps the hosted copy of each collection in step with the Entity Store.

DESIGN DECISION: The Entity Store is the source of truth during a session.
- Every mutation pushes the whole mutated collection (last-write-wins)
- Pushes run on a background queue and never block the assistant
- At session start `reconcile` decides, per collection, which side wins

CRITICAL: Sync never raises into the caller. Failures (including
timeouts and unreadable local documents) are logged as audit events
and reported as False / None / a `failed` outcome.

CRITICAL: Hosted writes land in the order they were issued. A timed-out
write keeps running in its thread, and the next write waits for it.

KNOWN LIMITATION: Two devices editing the same collection concurrently
will overwrite each other's changes. Accepted for single-user use.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import structlog
from pydantic import BaseModel, Field

from odrna.audit import AuditLogger
from odrna.config import SyncSettings, get_settings
from odrna.models.audit import AuditEventBuilder
from odrna.models.entities import EntityType
from odrna.services.storage.interface import HostedStoreInterface, StorageError, UserDataRow
from odrna.store import EntityStore


logger = structlog.get_logger(__name__)


class SyncOutcome(str, Enum):
    """What reconcile did with one collection."""
    PULLED = "pulled"                # remote had data; local replaced
    KEPT_LOCAL = "kept_local"        # nothing to do
    SEEDED = "seeded"                # remote never synced; local pushed up
    PUSHED_LOCAL = "pushed_local"    # remote synced empty, local was not
    FAILED = "failed"                # hosted or local store failed; local kept
    SKIPPED = "skipped"              # no user or sync disabled


class SyncReport(BaseModel):
    """Result of reconciling all collections for one user."""

    user_id: Optional[str] = None
    outcomes: dict[str, SyncOutcome] = Field(default_factory=dict)
    record_counts: dict[str, int] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not any(
            outcome in (SyncOutcome.FAILED, SyncOutcome.SKIPPED)
            for outcome in self.outcomes.values()
        )


def _log_late_write(task: asyncio.Future) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.warning("sync_late_write_failed", error=str(error))
    else:
        logger.info("sync_late_write_landed")


class SyncService:
    """
    Push/pull of whole collections against a hosted store.

    Without a hosted store (or with SYNC_ENABLED=false) every operation
    is a logged no-op.
    """

    def __init__(
        self,
        hosted_store: Optional[HostedStoreInterface],
        settings: Optional[SyncSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._hosted = hosted_store
        self._settings = settings or get_settings().sync
        self._audit = audit_logger or AuditLogger()
        self._write_lock = asyncio.Lock()
        self._late_write: Optional[asyncio.Future] = None

    @property
    def enabled(self) -> bool:
        return self._hosted is not None and self._settings.enabled

    async def _skip(self, collection: str, reason: str) -> None:
        await self._audit.log(AuditEventBuilder.sync_skipped(collection, reason))

    async def _fetch_row(self, user_id: str) -> Optional[UserDataRow]:
        return await asyncio.wait_for(
            self._hosted.fetch_user_row(user_id),
            timeout=self._settings.timeout_seconds,
        )

    async def _write_collections(
        self,
        user_id: str,
        collections: dict[EntityType, list[dict[str, Any]]],
        existing: Optional[UserDataRow] = None,
        fetch_existing: bool = True,
    ) -> None:
        """
        Write collections into the user's row, one write at a time.

        A write that outlives the timeout is not cancelled (the thread
        under it cannot be stopped). The next write waits for it to land
        first, so an older collection never overwrites a newer one.
        """
        async def write() -> None:
            row = existing
            if row is None and fetch_existing:
                row = await self._hosted.fetch_user_row(user_id)
            if row is None:
                # Collections not written here stay "never synced".
                row = UserDataRow(user_id=user_id)
            for entity_type, records in collections.items():
                row = row.with_collection(entity_type, records)
            await self._hosted.upsert_user_row(row)

        async with self._write_lock:
            await self._settle_late_write()
            task = asyncio.ensure_future(write())
            try:
                await asyncio.wait_for(asyncio.shield(task), timeout=self._settings.timeout_seconds)
            except asyncio.TimeoutError:
                self._late_write = task
                task.add_done_callback(_log_late_write)
                raise

    @staticmethod
    def _count_local(store: EntityStore, entity_type: EntityType) -> int:
        try:
            return len(store.get_collection(entity_type))
        except StorageError:
            return 0

    async def _settle_late_write(self) -> None:
        late = self._late_write
        self._late_write = None
        if late is not None and not late.done():
            logger.info("sync_waiting_for_late_write")
            await asyncio.wait({late})

    # -------------------------------------------------------------------------
    # Push / pull
    # -------------------------------------------------------------------------

    async def push(
        self,
        user_id: Optional[str],
        entity_type: EntityType,
        records: list[dict[str, Any]],
    ) -> bool:
        """
        Replace one collection in the user's hosted row.

        Returns True on success. Never raises.
        """
        collection = entity_type.collection_name
        if not user_id:
            await self._skip(collection, "no user id")
            return False
        if not self.enabled:
            await self._skip(collection, "sync disabled")
            return False

        try:
            await self._write_collections(user_id, {entity_type: records})
        except asyncio.TimeoutError:
            await self._audit.log(AuditEventBuilder.sync_push_failed(
                user_id, collection, "timed out",
            ))
            return False
        except Exception as e:
            await self._audit.log(AuditEventBuilder.sync_push_failed(
                user_id, collection, str(e),
            ))
            return False

        await self._audit.log(AuditEventBuilder.sync_pushed(user_id, collection, len(records)))
        return True

    async def push_all(self, user_id: Optional[str], store: EntityStore) -> bool:
        """Push all three collections in one upsert."""
        if not user_id:
            await self._skip("all", "no user id")
            return False
        if not self.enabled:
            await self._skip("all", "sync disabled")
            return False

        try:
            collections = {
                entity_type: store.get_raw_collection(entity_type)
                for entity_type in EntityType
            }
        except StorageError as e:
            await self._audit.log(AuditEventBuilder.sync_push_failed(
                user_id, "all", f"local read failed: {e}",
            ))
            return False
        try:
            await self._write_collections(user_id, collections)
        except Exception as e:
            message = "timed out" if isinstance(e, asyncio.TimeoutError) else str(e)
            await self._audit.log(AuditEventBuilder.sync_push_failed(user_id, "all", message))
            return False

        for entity_type, records in collections.items():
            await self._audit.log(AuditEventBuilder.sync_pushed(
                user_id, entity_type.collection_name, len(records),
            ))
        return True

    async def pull(
        self,
        user_id: Optional[str],
        entity_type: EntityType,
    ) -> Optional[list[dict[str, Any]]]:
        """
        Fetch one collection from the hosted store.

        Returns:
            None if there is no cloud data yet (or it could not be fetched),
            [] if the collection was synced empty, otherwise the records
        """
        collection = entity_type.collection_name
        if not user_id:
            await self._skip(collection, "no user id")
            return None
        if not self.enabled:
            await self._skip(collection, "sync disabled")
            return None

        try:
            row = await self._fetch_row(user_id)
        except Exception as e:
            message = "timed out" if isinstance(e, asyncio.TimeoutError) else str(e)
            await self._audit.log(AuditEventBuilder.sync_pull_failed(user_id, collection, message))
            return None

        return row.collection(entity_type) if row is not None else None

    # -------------------------------------------------------------------------
    # Session start
    # -------------------------------------------------------------------------

    async def reconcile(self, user_id: Optional[str], store: EntityStore) -> SyncReport:
        """
        Bring local and hosted copies together at session start.

        Per collection:
        - remote never synced: keep local, seed the cloud if local has data
        - remote synced empty, local has data: keep local and push it
        - remote has data: replace local with remote
        - hosted store unreachable: keep local
        """
        report = SyncReport(user_id=user_id)
        if not user_id or not self.enabled:
            reason = "no user id" if not user_id else "sync disabled"
            for entity_type in EntityType:
                report.outcomes[entity_type.collection_name] = SyncOutcome.SKIPPED
            await self._skip("all", reason)
            return report

        try:
            row = await self._fetch_row(user_id)
        except Exception as e:
            message = "timed out" if isinstance(e, asyncio.TimeoutError) else str(e)
            for entity_type in EntityType:
                collection = entity_type.collection_name
                report.outcomes[collection] = SyncOutcome.FAILED
                report.record_counts[collection] = self._count_local(store, entity_type)
            await self._audit.log(AuditEventBuilder.sync_pull_failed(user_id, "all", message))
            return report

        to_push: dict[EntityType, list[dict[str, Any]]] = {}
        for entity_type in EntityType:
            collection = entity_type.collection_name
            remote = row.collection(entity_type) if row is not None else None
            try:
                local = store.get_raw_collection(entity_type)
                if remote:
                    kept = store.replace_from_records(entity_type, remote)
            except StorageError as e:
                # An unreadable local document is left alone for inspection.
                report.outcomes[collection] = SyncOutcome.FAILED
                report.record_counts[collection] = 0
                await self._audit.log(AuditEventBuilder.sync_pull_failed(
                    user_id, collection, f"local store: {e}",
                ))
                continue

            if remote:
                report.outcomes[collection] = SyncOutcome.PULLED
                report.record_counts[collection] = kept
            elif local:
                to_push[entity_type] = local
                report.outcomes[collection] = (
                    SyncOutcome.SEEDED if remote is None else SyncOutcome.PUSHED_LOCAL
                )
                report.record_counts[collection] = len(local)
            else:
                report.outcomes[collection] = SyncOutcome.KEPT_LOCAL
                report.record_counts[collection] = 0

        if to_push:
            try:
                await self._write_collections(
                    user_id, to_push, existing=row, fetch_existing=False,
                )
            except Exception as e:
                message = "timed out" if isinstance(e, asyncio.TimeoutError) else str(e)
                for entity_type in to_push:
                    report.outcomes[entity_type.collection_name] = SyncOutcome.FAILED
                await self._audit.log(AuditEventBuilder.sync_push_failed(user_id, "all", message))

        for collection, outcome in report.outcomes.items():
            await self._audit.log(AuditEventBuilder.sync_pulled(
                user_id, collection, outcome.value, report.record_counts.get(collection, 0),
            ))
        return report


# =============================================================================
# BACKGROUND QUEUE
# =============================================================================

@dataclass
class _PushJob:
    user_id: str
    entity_type: EntityType
    records: list[dict[str, Any]]


class BackgroundSyncQueue:
    """
    Non-blocking push queue with a single worker.

    Usage:
        queue = BackgroundSyncQueue(sync_service, user_id="u-1")
        queue.enqueue(EntityType.TASK, records)   # returns immediately
        await queue.join()                        # e.g. before shutdown
    """

    def __init__(self, sync_service: SyncService, user_id: Optional[str] = None):
        self._sync = sync_service
        self._user_id = user_id
        self._queue: asyncio.Queue[_PushJob] = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._pushed = 0
        self._failed = 0

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    def set_user(self, user_id: Optional[str]) -> None:
        self._user_id = user_id

    @property
    def pushed(self) -> int:
        return self._pushed

    @property
    def failed(self) -> int:
        return self._failed

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def enqueue(self, entity_type: EntityType, records: list[dict[str, Any]]) -> bool:
        """
        Queue a push of a whole collection.

        Returns False (and queues nothing) without a user, with sync
        disabled, or outside a running event loop.
        """
        if not self._user_id:
            logger.info("sync_enqueue_skipped", reason="no user id",
                        collection=entity_type.collection_name)
            return False
        if not self._sync.enabled:
            logger.debug("sync_enqueue_skipped", reason="sync disabled",
                         collection=entity_type.collection_name)
            return False
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("sync_enqueue_skipped", reason="no running event loop",
                           collection=entity_type.collection_name)
            return False

        self._queue.put_nowait(_PushJob(self._user_id, entity_type, list(records)))
        if self._worker is None or self._worker.done():
            self._worker = loop.create_task(self._run())
        return True

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                ok = await self._sync.push(job.user_id, job.entity_type, job.records)
                if ok:
                    self._pushed += 1
                else:
                    self._failed += 1
            finally:
                self._queue.task_done()

    async def join(self) -> None:
        """Wait until every queued push has been attempted."""
        await self._queue.join()

    async def stop(self) -> None:
        """Drain the queue, then stop the worker."""
        if self._worker is None:
            return
        await self.join()
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
