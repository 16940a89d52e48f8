"""
Audit Models for Odrna

Every significant step of the assistant pipeline and of cloud sync is
logged as an audit event. This provides:
1. Traceability from a chat message to the data it changed
2. Visibility into background sync failures that never reach the user
3. Debugging information when the completion service misbehaves

DESIGN DECISION: Audit events are append-only structured log records.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from odrna.models.entities import utc_now


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Each stage of the pipeline has its own event type.
    """
    # Intent resolution
    INTENT_RECEIVED = "intent_received"
    INTENT_RESOLVED = "intent_resolved"
    INTENT_FALLBACK = "intent_fallback"

    # Action execution
    ACTION_EXECUTED = "action_executed"
    ACTION_REJECTED = "action_rejected"

    # Sync
    SYNC_PUSHED = "sync_pushed"
    SYNC_PUSH_FAILED = "sync_push_failed"
    SYNC_PULLED = "sync_pulled"
    SYNC_PULL_FAILED = "sync_pull_failed"
    SYNC_SKIPPED = "sync_skipped"

    # Subscription
    SUBSCRIPTION_UPDATED = "subscription_updated"
    WEBHOOK_IGNORED = "webhook_ignored"

    # Backup
    BACKUP_EXPORTED = "backup_exported"
    BACKUP_RESTORED = "backup_restored"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'task', 'tasks', 'subscription')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one assistant turn)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.intent_resolved(action_count, correlation_id)
        event = AuditEventBuilder.sync_pushed(user_id, "tasks", 3)
    """

    @staticmethod
    def intent_received(
        text_length: int,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INTENT_RECEIVED,
            entity_type="utterance",
            correlation_id=correlation_id,
            description="Assistant message received",
            details={"text_length": text_length},
            is_user_action=True,
        )

    @staticmethod
    def intent_resolved(
        action_count: int,
        action_kinds: list[str],
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INTENT_RESOLVED,
            entity_type="utterance",
            correlation_id=correlation_id,
            description=f"Intent resolved into {action_count} action(s)",
            details={"action_count": action_count, "actions": action_kinds},
        )

    @staticmethod
    def intent_fallback(
        reason: str,
        error_message: Optional[str],
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INTENT_FALLBACK,
            severity=(
                AuditSeverity.INFO if reason == "not_configured"
                else AuditSeverity.WARNING
            ),
            entity_type="utterance",
            correlation_id=correlation_id,
            description=f"Assistant answered with a fallback reply ({reason})",
            error_code=reason,
            error_message=error_message,
        )

    @staticmethod
    def action_executed(
        entity_type: str,
        verb: str,
        entity_id: Optional[str],
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACTION_EXECUTED,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{verb} {entity_type} executed",
            details={"action": verb},
            is_user_action=True,
        )

    @staticmethod
    def action_rejected(
        index: int,
        entity_type: Optional[str],
        verb: Optional[str],
        error_code: str,
        error_message: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACTION_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type=entity_type,
            correlation_id=correlation_id,
            description=f"Action #{index} rejected: {error_code}",
            details={"index": index, "action": verb},
            error_code=error_code,
            error_message=error_message,
            is_user_action=True,
        )

    @staticmethod
    def sync_pushed(
        user_id: str,
        collection: str,
        record_count: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_PUSHED,
            entity_type=collection,
            entity_id=user_id,
            description=f"Pushed {record_count} {collection} to the hosted store",
            details={"record_count": record_count},
        )

    @staticmethod
    def sync_push_failed(
        user_id: str,
        collection: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_PUSH_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type=collection,
            entity_id=user_id,
            description=f"Failed to push {collection} to the hosted store",
            error_message=error_message,
        )

    @staticmethod
    def sync_pulled(
        user_id: str,
        collection: str,
        outcome: str,
        record_count: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_PULLED,
            entity_type=collection,
            entity_id=user_id,
            description=f"Reconciled {collection}: {outcome}",
            details={"outcome": outcome, "record_count": record_count},
        )

    @staticmethod
    def sync_pull_failed(
        user_id: str,
        collection: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_PULL_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type=collection,
            entity_id=user_id,
            description=f"Failed to pull {collection} from the hosted store",
            error_message=error_message,
        )

    @staticmethod
    def sync_skipped(collection: str, reason: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_SKIPPED,
            severity=AuditSeverity.WARNING,
            entity_type=collection,
            description=f"Sync skipped for {collection}: {reason}",
            details={"reason": reason},
        )

    @staticmethod
    def subscription_updated(
        email: str,
        is_premium: bool,
        source: str,
        applied: bool,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SUBSCRIPTION_UPDATED,
            severity=AuditSeverity.INFO if applied else AuditSeverity.WARNING,
            entity_type="subscription",
            entity_id=email,
            description=(
                f"Premium {'enabled' if is_premium else 'disabled'} via {source}"
                + ("" if applied else " (no matching user)")
            ),
            details={"is_premium": is_premium, "source": source, "applied": applied},
        )

    @staticmethod
    def webhook_ignored(event_type: str, reason: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.WEBHOOK_IGNORED,
            severity=AuditSeverity.DEBUG,
            entity_type="subscription",
            description=f"Webhook event ignored: {event_type}",
            details={"webhook_event": event_type, "reason": reason},
        )

    @staticmethod
    def backup_exported(counts: dict[str, int]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BACKUP_EXPORTED,
            entity_type="backup",
            description="Backup exported",
            details=counts,
            is_user_action=True,
        )

    @staticmethod
    def backup_restored(counts: dict[str, int]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BACKUP_RESTORED,
            severity=AuditSeverity.WARNING,
            entity_type="backup",
            description="Backup restored over local data",
            details=counts,
            is_user_action=True,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
