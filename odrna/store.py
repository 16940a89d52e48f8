"""
Entity Store

Client-local persistence of the three user collections and the cached
subscription status.

DESIGN DECISION: Whole-collection reads and writes.
Every mutation rewrites the entire collection document. Collections are
small (personal use) and this keeps the hosted copy, which is also whole
collections, trivially in step with the local one.

CRITICAL:
- A missing document is an empty collection.
- A document that is not valid JSON raises StorageError. It is never
  silently treated as empty, which would lose data on the next save.
- A single malformed record is left out of reads with a warning; its
  siblings load. It stays in the stored document and in pushes, so a
  later save never deletes it.
"""

import json
from typing import Any, Callable, Optional

import structlog
from pydantic import ValidationError

from odrna.models.entities import (
    CalendarEvent,
    CollectionsSnapshot,
    EntityModel,
    EntityType,
    SubscriptionStatus,
    Task,
    Transaction,
    model_for,
)
from odrna.services.storage.interface import StorageBackend, StorageError
from odrna.services.storage.local import InMemoryBackend


logger = structlog.get_logger(__name__)


STORAGE_KEYS = {
    EntityType.TASK: "odrna_tasks",
    EntityType.EVENT: "odrna_events",
    EntityType.TRANSACTION: "odrna_transactions",
}
SUBSCRIPTION_KEY = "odrna_subscription"


class EntityStore:
    """
    Typed access to the local collections.

    Usage:
        store = EntityStore(JsonFileBackend(".odrna"))
        tasks = store.get_tasks()
        store.save_tasks(tasks + [Task(title="Estudar")])
    """

    def __init__(self, backend: Optional[StorageBackend] = None):
        self._backend = backend or InMemoryBackend()

    @property
    def backend(self) -> StorageBackend:
        return self._backend

    # -------------------------------------------------------------------------
    # Generic collection access
    # -------------------------------------------------------------------------

    def _read_document(self, key: str) -> Optional[Any]:
        raw = self._backend.read(key)
        if raw is None or not raw.strip():
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise StorageError(f"Stored document '{key}' is not valid JSON: {e}")

    def _parse_records(
        self,
        entity_type: EntityType,
        items: list[Any],
    ) -> tuple[list[EntityModel], list[Any]]:
        """Split raw items into valid records and items that do not parse."""
        model = model_for(entity_type)
        records, unreadable = [], []
        for position, item in enumerate(items):
            try:
                records.append(model.model_validate(item))
            except ValidationError as e:
                unreadable.append(item)
                logger.warning(
                    "malformed_record_kept_aside",
                    collection=entity_type.collection_name,
                    position=position,
                    error=str(e),
                )
        return records, unreadable

    def _read_collection(self, entity_type: EntityType) -> tuple[list[EntityModel], list[Any]]:
        key = STORAGE_KEYS[entity_type]
        document = self._read_document(key)
        if document is None:
            return [], []
        if not isinstance(document, list):
            raise StorageError(f"Stored document '{key}' is not a list")
        return self._parse_records(entity_type, document)

    def get_collection(self, entity_type: EntityType) -> list[EntityModel]:
        return self._read_collection(entity_type)[0]

    def get_unreadable(self, entity_type: EntityType) -> list[Any]:
        """Stored items of a collection that do not parse as records."""
        return self._read_collection(entity_type)[1]

    def _current_unreadable(self, entity_type: EntityType) -> list[Any]:
        try:
            return self.get_unreadable(entity_type)
        except StorageError as e:
            logger.warning(
                "unreadable_document_overwritten",
                collection=entity_type.collection_name,
                error=str(e),
            )
            return []

    def save_collection(
        self,
        entity_type: EntityType,
        records: list[EntityModel],
        unreadable: Optional[list[Any]] = None,
    ) -> None:
        """
        Replace the whole collection.

        Items already stored that do not parse are written back unchanged
        after the records, unless `unreadable` replaces them.
        """
        model = model_for(entity_type)
        if unreadable is None:
            unreadable = self._current_unreadable(entity_type)
        payload = []
        for record in records:
            if not isinstance(record, model):
                record = model.model_validate(record)
            payload.append(record.to_record())
        self._backend.write(
            STORAGE_KEYS[entity_type],
            json.dumps(payload + list(unreadable), ensure_ascii=False),
        )

    def get_raw_collection(self, entity_type: EntityType) -> list[dict[str, Any]]:
        """
        Collection in wire shape (what gets pushed to the hosted store).

        Unreadable items travel along unchanged so a push never deletes
        them from the hosted copy.
        """
        records, unreadable = self._read_collection(entity_type)
        return [record.to_record() for record in records] + unreadable

    def replace_from_records(
        self,
        entity_type: EntityType,
        records: list[dict[str, Any]],
    ) -> int:
        """
        Replace a collection from wire-shape records (cloud pull, restore).

        Records that do not parse are stored aside unchanged. Returns how
        many valid records were loaded.
        """
        parsed, unreadable = self._parse_records(entity_type, records)
        self.save_collection(entity_type, parsed, unreadable=unreadable)
        return len(parsed)

    # -------------------------------------------------------------------------
    # Typed accessors
    # -------------------------------------------------------------------------

    def get_tasks(self) -> list[Task]:
        return self.get_collection(EntityType.TASK)

    def save_tasks(self, tasks: list[Task]) -> None:
        self.save_collection(EntityType.TASK, tasks)

    def get_events(self) -> list[CalendarEvent]:
        return self.get_collection(EntityType.EVENT)

    def save_events(self, events: list[CalendarEvent]) -> None:
        self.save_collection(EntityType.EVENT, events)

    def get_transactions(self) -> list[Transaction]:
        return self.get_collection(EntityType.TRANSACTION)

    def save_transactions(self, transactions: list[Transaction]) -> None:
        self.save_collection(EntityType.TRANSACTION, transactions)

    def snapshot(self) -> CollectionsSnapshot:
        return CollectionsSnapshot(
            tasks=self.get_tasks(),
            events=self.get_events(),
            transactions=self.get_transactions(),
        )

    # -------------------------------------------------------------------------
    # Convenience mutations (get + transform + save)
    # -------------------------------------------------------------------------

    def find(self, entity_type: EntityType, record_id: str) -> Optional[EntityModel]:
        for record in self.get_collection(entity_type):
            if record.id == record_id:
                return record
        return None

    def add(self, entity_type: EntityType, record: EntityModel) -> EntityModel:
        records = self.get_collection(entity_type)
        records.append(record)
        self.save_collection(entity_type, records)
        return record

    def update(
        self,
        entity_type: EntityType,
        record_id: str,
        transform: Callable[[EntityModel], EntityModel],
    ) -> Optional[EntityModel]:
        """
        Replace the record with `record_id` by `transform(record)`.

        Returns the new record, or None (and writes nothing) if absent.
        """
        records = self.get_collection(entity_type)
        for position, record in enumerate(records):
            if record.id == record_id:
                updated = transform(record)
                records[position] = updated
                self.save_collection(entity_type, records)
                return updated
        return None

    def delete(self, entity_type: EntityType, record_id: str) -> bool:
        """Remove a record. Returns whether it existed."""
        records = self.get_collection(entity_type)
        remaining = [record for record in records if record.id != record_id]
        if len(remaining) == len(records):
            return False
        self.save_collection(entity_type, remaining)
        return True

    # -------------------------------------------------------------------------
    # Subscription cache
    # -------------------------------------------------------------------------

    def get_subscription(self) -> SubscriptionStatus:
        """Cached subscription status; free when nothing is cached."""
        try:
            document = self._read_document(SUBSCRIPTION_KEY)
        except StorageError as e:
            logger.warning("malformed_subscription_cache", error=str(e))
            return SubscriptionStatus.free()
        if not isinstance(document, dict):
            return SubscriptionStatus.free()
        try:
            return SubscriptionStatus.model_validate(document)
        except ValidationError as e:
            logger.warning("malformed_subscription_cache", error=str(e))
            return SubscriptionStatus.free()

    def save_subscription(self, status: SubscriptionStatus) -> None:
        self._backend.write(SUBSCRIPTION_KEY, json.dumps(status.to_record()))
