"""
Backup Export / Restore

A backup is a single JSON document holding every local collection:

    {
      "version": "1.0.0",
      "timestamp": "...",
      "user": {"email": ..., "name": ...},
      "data": {"tasks": [...], "events": [...], "transactions": [...]}
    }

CRITICAL: Restore is all-or-nothing. Every record is validated before
the first collection is replaced; an invalid backup leaves the store
exactly as it was.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError

from odrna.audit import AuditLogger
from odrna.models.audit import AuditEventBuilder
from odrna.models.entities import EntityModel, EntityType, model_for, utc_now
from odrna.store import EntityStore


BACKUP_VERSION = "1.0.0"


class BackupError(Exception):
    """A backup document could not be restored."""
    pass


class BackupUser(BaseModel):
    email: Optional[str] = None
    name: Optional[str] = None


class BackupCollections(BaseModel):
    tasks: list[dict[str, Any]] = Field(default_factory=list)
    events: list[dict[str, Any]] = Field(default_factory=list)
    transactions: list[dict[str, Any]] = Field(default_factory=list)


class BackupData(BaseModel):
    """The backup document."""

    version: str = Field(..., min_length=1)
    timestamp: datetime = Field(default_factory=utc_now)
    user: BackupUser = Field(default_factory=BackupUser)
    data: BackupCollections

    def counts(self) -> dict[str, int]:
        return {
            entity_type.collection_name: len(getattr(self.data, entity_type.collection_name))
            for entity_type in EntityType
        }

    def to_json(self) -> str:
        return self.model_dump_json(indent=2)


async def export_backup(
    store: EntityStore,
    email: Optional[str] = None,
    name: Optional[str] = None,
    audit_logger: Optional[AuditLogger] = None,
) -> BackupData:
    """Snapshot every local collection into a backup document."""
    backup = BackupData(
        version=BACKUP_VERSION,
        user=BackupUser(email=email, name=name),
        data=BackupCollections(**{
            entity_type.collection_name: [record.to_record() for record in store.get_collection(entity_type)]
            for entity_type in EntityType
        }),
    )
    if audit_logger is not None:
        await audit_logger.log(AuditEventBuilder.backup_exported(backup.counts()))
    return backup


async def restore_backup(
    store: EntityStore,
    payload: Any,
    audit_logger: Optional[AuditLogger] = None,
) -> dict[str, int]:
    """
    Replace all local collections with the contents of a backup.

    Args:
        payload: a BackupData, a parsed JSON dict, or a JSON string

    Returns:
        Number of restored records per collection

    Raises:
        BackupError: The document is not a valid backup
    """
    try:
        if isinstance(payload, BackupData):
            backup = payload
        elif isinstance(payload, (str, bytes)):
            backup = BackupData.model_validate_json(payload)
        elif isinstance(payload, dict):
            backup = BackupData.model_validate(payload)
        else:
            raise BackupError("Backup must be a JSON object")
    except ValidationError as e:
        raise BackupError(f"Invalid backup file: {e.errors()[0].get('msg', 'invalid structure')}")

    parsed: dict[EntityType, list[EntityModel]] = {}
    for entity_type in EntityType:
        model = model_for(entity_type)
        records = []
        for position, item in enumerate(getattr(backup.data, entity_type.collection_name)):
            try:
                records.append(model.model_validate(item))
            except ValidationError as e:
                raise BackupError(
                    f"Invalid {entity_type.value} at position {position}: "
                    f"{e.errors()[0].get('msg', 'invalid record')}"
                )
        parsed[entity_type] = records

    for entity_type, records in parsed.items():
        store.save_collection(entity_type, records)

    counts = {entity_type.collection_name: len(records) for entity_type, records in parsed.items()}
    if audit_logger is not None:
        await audit_logger.log(AuditEventBuilder.backup_restored(counts))
    return counts
