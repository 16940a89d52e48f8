"""
Action Executor

DESIGN DECISION: Execution is DETERMINISTIC.
The assistant proposes actions; this engine validates and applies them
to the Entity Store. The completion model never touches data directly.

GUARANTEES:
- Actions run in the order given
- Each action is isolated: a failure is reported for that action only
  and never aborts its siblings
- Every successful mutation persists the whole collection, then queues
  a background push of it (the push never blocks execution)
- `list` reads the live collection and persists nothing
- Subscription status is read, never written
"""

from typing import Any, Callable, Optional
from uuid import UUID

import structlog

from odrna.audit import AuditLogger
from odrna.config import AppSettings, get_settings
from odrna.models.actions import (
    ActionErrorCode,
    ActionResult,
    ActionVerb,
    CreateAction,
    DeleteAction,
    ExecutionReport,
    ListAction,
    UpdateAction,
)
from odrna.models.audit import AuditEventBuilder
from odrna.models.entities import EntityType, SubscriptionStatus
from odrna.services.storage.interface import StorageError
from odrna.services.sync import BackgroundSyncQueue
from odrna.store import EntityStore
from odrna.validation import ActionValidationError, ActionValidator


logger = structlog.get_logger(__name__)


SubscriptionProvider = Callable[[], SubscriptionStatus]


_LIMIT_NOUNS = {
    EntityType.TASK: "tarefas",
    EntityType.EVENT: "eventos",
    EntityType.TRANSACTION: "transações",
}


class PlanLimitError(Exception):
    """The free plan does not allow another record of this type."""

    def __init__(self, entity_type: EntityType, limit: int):
        self.entity_type = entity_type
        self.limit = limit
        super().__init__(
            f"Limite do plano gratuito atingido: {limit} "
            f"{_LIMIT_NOUNS[entity_type]}. Assine o Premium para continuar."
        )


class ActionExecutor:
    """
    Applies resolved actions to the Entity Store.

    Usage:
        executor = ActionExecutor(store, sync_queue=queue)
        report = await executor.execute(resolution.actions)
    """

    def __init__(
        self,
        store: EntityStore,
        sync_queue: Optional[BackgroundSyncQueue] = None,
        subscription_provider: Optional[SubscriptionProvider] = None,
        app_settings: Optional[AppSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[ActionValidator] = None,
    ):
        self._store = store
        self._sync_queue = sync_queue
        self._subscription = subscription_provider or store.get_subscription
        self._settings = app_settings or get_settings().app
        self._audit = audit_logger or AuditLogger()
        self._validator = validator or ActionValidator()

    # -------------------------------------------------------------------------
    # Plan limits
    # -------------------------------------------------------------------------

    def limit_for(self, entity_type: EntityType) -> int:
        return {
            EntityType.TASK: self._settings.free_plan_task_limit,
            EntityType.EVENT: self._settings.free_plan_event_limit,
            EntityType.TRANSACTION: self._settings.free_plan_transaction_limit,
        }[entity_type]

    def _check_plan_limit(self, entity_type: EntityType, current_count: int) -> None:
        if self._subscription().is_premium:
            return
        limit = self.limit_for(entity_type)
        if current_count >= limit:
            raise PlanLimitError(entity_type, limit)

    # -------------------------------------------------------------------------
    # Verb handlers
    # -------------------------------------------------------------------------

    def _create(self, index: int, action: CreateAction) -> ActionResult:
        record = self._validator.build_record(action.type, action.data)
        records = self._store.get_collection(action.type)
        self._check_plan_limit(action.type, len(records))
        records.append(record)
        self._store.save_collection(action.type, records)
        return ActionResult(
            index=index,
            type=action.type,
            action=ActionVerb.CREATE,
            success=True,
            record=record.to_record(),
        )

    def _update(self, index: int, action: UpdateAction) -> ActionResult:
        record_id = action.data.id
        records = self._store.get_collection(action.type)
        for position, existing in enumerate(records):
            if existing.id == record_id:
                merged = self._validator.apply_updates(existing, action.data.updates)
                records[position] = merged
                self._store.save_collection(action.type, records)
                return ActionResult(
                    index=index,
                    type=action.type,
                    action=ActionVerb.UPDATE,
                    success=True,
                    record=merged.to_record(),
                )

        return ActionResult(
            index=index,
            type=action.type,
            action=ActionVerb.UPDATE,
            success=False,
            error_code=ActionErrorCode.NOT_FOUND,
            error_message=f"{action.type.value} not found: {record_id}",
        )

    def _delete(self, index: int, action: DeleteAction) -> ActionResult:
        deleted = self._store.delete(action.type, action.data.id)
        return ActionResult(
            index=index,
            type=action.type,
            action=ActionVerb.DELETE,
            success=True,
            deleted=deleted,
        )

    def _list(self, index: int, action: ListAction) -> ActionResult:
        return ActionResult(
            index=index,
            type=action.type,
            action=ActionVerb.LIST,
            success=True,
            records=[record.to_record() for record in self._store.get_collection(action.type)],
        )

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def _failure(
        self,
        index: int,
        raw: Any,
        code: ActionErrorCode,
        message: str,
    ) -> ActionResult:
        entity_type = None
        verb = None
        if isinstance(raw, dict):
            type_value = str(raw.get("type", "")).strip().lower()
            verb_value = str(raw.get("action", "")).strip().lower()
            if type_value in {member.value for member in EntityType}:
                entity_type = EntityType(type_value)
            if verb_value in {member.value for member in ActionVerb}:
                verb = ActionVerb(verb_value)
        return ActionResult(
            index=index,
            type=entity_type,
            action=verb,
            success=False,
            error_code=code,
            error_message=message,
        )

    def _run(self, index: int, raw: Any) -> ActionResult:
        try:
            action = self._validator.parse_action(raw)
        except ActionValidationError as e:
            code = (
                ActionErrorCode.INVALID_ACTION
                if e.field in ("action", "type")
                else ActionErrorCode.VALIDATION_ERROR
            )
            return self._failure(index, raw, code, str(e))

        try:
            if isinstance(action, CreateAction):
                return self._create(index, action)
            elif isinstance(action, UpdateAction):
                return self._update(index, action)
            elif isinstance(action, DeleteAction):
                return self._delete(index, action)
            elif isinstance(action, ListAction):
                return self._list(index, action)
            else:
                raise TypeError(f"Unhandled action: {type(action).__name__}")
        except ActionValidationError as e:
            return self._failure(index, raw, ActionErrorCode.VALIDATION_ERROR, str(e))
        except PlanLimitError as e:
            return self._failure(index, raw, ActionErrorCode.PLAN_LIMIT_REACHED, str(e))
        except StorageError as e:
            logger.error("action_storage_error", index=index, error=str(e))
            return self._failure(index, raw, ActionErrorCode.STORAGE_ERROR, str(e))

    async def execute(
        self,
        actions: list[Any],
        correlation_id: Optional[UUID] = None,
    ) -> ExecutionReport:
        """
        Execute actions in order and report each outcome.

        Never raises for a bad action; the failure is in its result.
        """
        results = []
        for index, raw in enumerate(actions):
            result = self._run(index, raw)
            results.append(result)

            entity_type = result.type.value if result.type else None
            verb = result.action.value if result.action else None
            if result.success:
                record_id = result.record.get("id") if result.record else None
                await self._audit.log(AuditEventBuilder.action_executed(
                    entity_type, verb, record_id, correlation_id,
                ))
                if result.is_mutation:
                    self._enqueue_sync(result.type)
            else:
                await self._audit.log(AuditEventBuilder.action_rejected(
                    index,
                    entity_type,
                    verb,
                    result.error_code.value,
                    result.error_message or "",
                    correlation_id,
                ))

        report = ExecutionReport(correlation_id=correlation_id, results=results)
        report.message = summarize_results(report)
        return report

    def _enqueue_sync(self, entity_type: EntityType) -> None:
        if self._sync_queue is None:
            return
        try:
            records = self._store.get_raw_collection(entity_type)
        except StorageError as e:
            logger.error("sync_snapshot_failed", collection=entity_type.collection_name, error=str(e))
            return
        self._sync_queue.enqueue(entity_type, records)


def summarize_results(report: ExecutionReport) -> str:
    """One-line Portuguese summary of a batch."""
    total = len(report.results)
    if total == 0:
        return "Nenhuma ação para executar."
    if report.all_succeeded:
        if total == 1:
            return "1 ação executada com sucesso."
        return f"{total} ações executadas com sucesso."
    if report.succeeded == 0:
        return "Nenhuma ação pôde ser executada." if total > 1 else "A ação não pôde ser executada."
    return f"{report.succeeded} de {total} ações executadas; {report.failed} falharam."
