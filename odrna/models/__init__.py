"""
Data Models Package

This package contains all Pydantic models used in the Odrna core.
All data flowing through the system must conform to these schemas.
"""

from odrna.models.entities import (
    CalendarEvent,
    CollectionsSnapshot,
    EntityModel,
    EntityRecord,
    EntityType,
    PlanName,
    SubscriptionStatus,
    Task,
    TaskCategory,
    TaskPriority,
    Transaction,
    TransactionCategory,
    TransactionType,
    model_for,
)
from odrna.models.actions import (
    Action,
    ActionErrorCode,
    ActionResult,
    ActionVerb,
    CreateAction,
    DeleteAction,
    ExecutionReport,
    FallbackReason,
    IntentResolution,
    ListAction,
    UpdateAction,
)
from odrna.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Entity models
    "CalendarEvent",
    "CollectionsSnapshot",
    "EntityModel",
    "EntityRecord",
    "EntityType",
    "PlanName",
    "SubscriptionStatus",
    "Task",
    "TaskCategory",
    "TaskPriority",
    "Transaction",
    "TransactionCategory",
    "TransactionType",
    "model_for",
    # Action models
    "Action",
    "ActionErrorCode",
    "ActionResult",
    "ActionVerb",
    "CreateAction",
    "DeleteAction",
    "ExecutionReport",
    "FallbackReason",
    "IntentResolution",
    "ListAction",
    "UpdateAction",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
