"""
Main Orchestrator for Odrna

This module ties the components together and defines the end-to-end
flows for:
1. Assistant turn (message → resolve → execute → background sync → reply)
2. Session lifecycle (reconcile with the cloud, refresh premium, drain sync)

DESIGN DECISION: Every component is an explicit object built once by
`create_app_components()`. There is no module-level mutable state, so
tests build isolated component sets with in-memory backends.

The orchestrator enforces the boundaries:
- The assistant never writes data; only the executor does
- Sync never blocks or fails a turn
- Every step is audited under one correlation id per turn
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union
from uuid import UUID

import structlog
from pydantic import BaseModel

from odrna.agents import FALLBACK_REPLIES, IntentResolver
from odrna.audit import AuditLogger, configure_logging, create_correlation_id
from odrna.config import Settings, get_settings
from odrna.execution import ActionExecutor
from odrna.models.actions import ExecutionReport, FallbackReason, IntentResolution
from odrna.models.audit import AuditEventBuilder
from odrna.models.entities import SubscriptionStatus
from odrna.services.backup import BackupData, export_backup, restore_backup
from odrna.services.storage import (
    GoogleSheetsClient,
    GoogleSheetsHostedStore,
    HostedStoreInterface,
    InMemoryBackend,
    JsonFileBackend,
    StorageBackend,
    StorageError,
)
from odrna.services.subscription import SubscriptionService
from odrna.services.sync import BackgroundSyncQueue, SyncReport, SyncService
from odrna.store import EntityStore


logger = structlog.get_logger(__name__)


class AssistantTurn(BaseModel):
    """Everything one chat message produced."""

    correlation_id: UUID
    resolution: IntentResolution
    report: ExecutionReport
    reply: str

    def to_wire(self) -> dict[str, Any]:
        return {
            "actions": self.resolution.actions,
            "response": self.reply,
            "results": [result.model_dump(mode="json") for result in self.report.results],
        }


def compose_reply(resolution: IntentResolution, report: ExecutionReport) -> str:
    """
    The assistant's reply, plus a note for every action that failed.

    The model's text describes what it intended; failures must still be
    visible to the user.
    """
    if report.all_succeeded:
        return resolution.response

    notes = [
        f"⚠️ Ação {result.index + 1} não executada: {result.error_message}"
        for result in report.results
        if not result.success
    ]
    return resolution.response + "\n\n" + "\n".join(notes)


class AssistantFlow:
    """
    Orchestrates one assistant turn.

    Flow:
    1. Snapshot the user's collections (read-only context)
    2. Resolve → ordered actions + reply (never raises)
    3. Execute → per-action results; mutations queue background pushes
    4. Reply → model text plus notes for failed actions
    """

    def __init__(
        self,
        store: EntityStore,
        resolver: IntentResolver,
        executor: ActionExecutor,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._resolver = resolver
        self._executor = executor
        self._audit = audit_logger or AuditLogger()

    async def handle_message(
        self,
        text: str,
        correlation_id: Optional[UUID] = None,
    ) -> AssistantTurn:
        correlation_id = correlation_id or create_correlation_id()

        try:
            snapshot = self._store.snapshot()
        except StorageError as e:
            return await self._storage_failure(correlation_id, e)

        resolution = await self._resolver.resolve(
            text,
            snapshot,
            correlation_id=correlation_id,
        )
        report = await self._executor.execute(resolution.actions, correlation_id=correlation_id)

        logger.info(
            "assistant_turn_completed",
            correlation_id=str(correlation_id),
            actions=len(resolution.actions),
            succeeded=report.succeeded,
            failed=report.failed,
            fallback=resolution.fallback_reason.value if resolution.fallback_reason else None,
        )
        return AssistantTurn(
            correlation_id=correlation_id,
            resolution=resolution,
            report=report,
            reply=compose_reply(resolution, report),
        )

    async def _storage_failure(self, correlation_id: UUID, error: StorageError) -> AssistantTurn:
        """A turn that changes nothing because local data could not be read."""
        await self._audit.log(AuditEventBuilder.system_error(
            "storage_error", str(error), correlation_id=correlation_id,
        ))
        resolution = IntentResolution(
            actions=[],
            response=FALLBACK_REPLIES[FallbackReason.STORAGE_ERROR],
            fallback_reason=FallbackReason.STORAGE_ERROR,
        )
        return AssistantTurn(
            correlation_id=correlation_id,
            resolution=resolution,
            report=ExecutionReport(correlation_id=correlation_id),
            reply=resolution.response,
        )


class SessionFlow:
    """
    Orchestrates the session lifecycle around the assistant.

    start: reconcile local data with the cloud, refresh premium status,
           point the background queue at the signed-in user
    end:   wait for pending pushes, then stop the queue worker
    """

    def __init__(
        self,
        store: EntityStore,
        sync_service: SyncService,
        sync_queue: BackgroundSyncQueue,
        subscription_service: SubscriptionService,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._sync = sync_service
        self._queue = sync_queue
        self._subscription = subscription_service
        self._audit = audit_logger or AuditLogger()

    async def start(
        self,
        user_id: Optional[str],
        email: Optional[str] = None,
    ) -> tuple[SyncReport, SubscriptionStatus]:
        self._queue.set_user(user_id)
        report = await self._sync.reconcile(user_id, self._store)
        status = await self._subscription.refresh(email, self._store)
        return report, status

    async def end(self) -> None:
        await self._queue.stop()
        self._queue.set_user(None)

    async def export_backup(
        self,
        email: Optional[str] = None,
        name: Optional[str] = None,
    ) -> BackupData:
        return await export_backup(self._store, email, name, audit_logger=self._audit)

    async def restore_backup(self, payload: Any) -> dict[str, int]:
        """Restore, then push the restored collections to the cloud."""
        counts = await restore_backup(self._store, payload, audit_logger=self._audit)
        await self._sync.push_all(self._queue.user_id, self._store)
        return counts


@dataclass
class AppComponents:
    store: EntityStore
    resolver: IntentResolver
    executor: ActionExecutor
    sync_service: SyncService
    sync_queue: BackgroundSyncQueue
    subscription_service: SubscriptionService
    assistant: AssistantFlow
    session: SessionFlow
    hosted_store: Optional[HostedStoreInterface]
    audit_logger: AuditLogger


def create_app_components(
    use_hosted_store: bool = True,
    data_dir: Optional[Union[str, Path]] = None,
    backend: Optional[StorageBackend] = None,
    hosted_store: Optional[HostedStoreInterface] = None,
    resolver: Optional[IntentResolver] = None,
    settings: Optional[Settings] = None,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        use_hosted_store: Whether to initialize Google Sheets storage.
                          Set to False for running without the cloud.
        data_dir: Directory for local JSON storage (defaults to settings)
        backend: Local backend to use instead of JSON files
        hosted_store: Hosted store to use instead of Google Sheets
        resolver: Intent resolver to use instead of the Gemini one
    """
    settings = settings or get_settings()
    app_settings = settings.app
    configure_logging(app_settings.log_level)
    audit_logger = AuditLogger()

    if backend is None:
        if data_dir is not None:
            backend = JsonFileBackend(data_dir)
        elif app_settings.app_environment == "test":
            backend = InMemoryBackend()
        else:
            backend = JsonFileBackend(app_settings.data_path)
    store = EntityStore(backend)

    if hosted_store is None and use_hosted_store:
        try:
            hosted_store = GoogleSheetsHostedStore(
                GoogleSheetsClient(settings.google_sheets),
                retry_budget_seconds=settings.sync.timeout_seconds,
            )
        except Exception as e:
            # Hosted store not configured - continue local-only
            logger.warning("hosted_store_not_configured", error=str(e))
            hosted_store = None

    sync_settings = settings.sync
    sync_service = SyncService(hosted_store, sync_settings, audit_logger)
    sync_queue = BackgroundSyncQueue(sync_service)
    subscription_service = SubscriptionService(
        hosted_store, app_settings, sync_settings, audit_logger,
    )

    resolver = resolver or IntentResolver(settings.gemini, audit_logger=audit_logger)
    executor = ActionExecutor(
        store,
        sync_queue=sync_queue,
        app_settings=app_settings,
        audit_logger=audit_logger,
    )

    return AppComponents(
        store=store,
        resolver=resolver,
        executor=executor,
        sync_service=sync_service,
        sync_queue=sync_queue,
        subscription_service=subscription_service,
        assistant=AssistantFlow(store, resolver, executor, audit_logger),
        session=SessionFlow(store, sync_service, sync_queue, subscription_service, audit_logger),
        hosted_store=hosted_store,
        audit_logger=audit_logger,
    )
