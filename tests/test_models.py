"""
Tests for Odrna

Test strategy:
1. Unit tests for individual components (models, validators)
2. Integration tests for flows (with fake external services)
3. No real API calls in tests (use fakes)
"""

import pytest
from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

from odrna.models.entities import (
    CalendarEvent,
    CollectionsSnapshot,
    EntityType,
    PlanName,
    SubscriptionStatus,
    Task,
    TaskCategory,
    TaskPriority,
    Transaction,
    TransactionCategory,
    TransactionType,
)
from odrna.models.actions import (
    ActionErrorCode,
    ActionResult,
    ActionVerb,
    ExecutionReport,
    FallbackReason,
    IntentResolution,
)
from odrna.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)


class TestTaskModel:
    """Tests for the Task model."""

    def test_task_defaults(self):
        """Test a task gets an id, timestamp and default enums."""
        task = Task(title="Comprar pão")
        assert task.id
        assert task.created_at.tzinfo is not None
        assert task.completed is False
        assert task.category == TaskCategory.PERSONAL
        assert task.priority == TaskPriority.MEDIUM

    def test_task_ids_are_unique(self):
        """Test two tasks never share an id."""
        assert Task(title="a").id != Task(title="b").id

    def test_task_strips_whitespace(self):
        """Test that whitespace is stripped from the title."""
        assert Task(title="  Estudar  ").title == "Estudar"

    def test_task_rejects_empty_title(self):
        """Test that an empty title is rejected."""
        with pytest.raises(ValueError):
            Task(title="")

    def test_category_coercion(self):
        """Test categories match case/accent-insensitively and by synonym."""
        assert Task(title="x", category="Saúde").category == TaskCategory.HEALTH
        assert Task(title="x", category="work").category == TaskCategory.WORK
        assert Task(title="x", category="ESTUDOS").category == TaskCategory.STUDY

    def test_unknown_category_falls_back_to_default(self):
        """Test an unrecognized category becomes pessoal."""
        assert Task(title="x", category="hobbies").category == TaskCategory.PERSONAL

    def test_priority_synonyms(self):
        """Test Portuguese priority words are understood."""
        assert Task(title="x", priority="alta").priority == TaskPriority.HIGH
        assert Task(title="x", priority="Baixa").priority == TaskPriority.LOW

    def test_camel_case_input_and_output(self):
        """Test both spellings are accepted and the wire shape is camelCase."""
        task = Task.model_validate({"title": "x", "dueDate": "2024-02-01"})
        assert task.due_date == date(2024, 2, 1)

        record = task.to_record()
        assert record["dueDate"] == "2024-02-01"
        assert "createdAt" in record
        assert "due_date" not in record

    def test_due_date_from_iso_datetime(self):
        """Test an ISO datetime is reduced to its date."""
        task = Task(title="x", due_date="2024-03-10T09:00:00.000Z")
        assert task.due_date == date(2024, 3, 10)

    def test_is_overdue(self):
        """Test overdue only applies to pending tasks with a past due date."""
        today = date(2024, 1, 15)
        assert Task(title="x", due_date=date(2024, 1, 10)).is_overdue(today)
        assert not Task(title="x", due_date=date(2024, 1, 10), completed=True).is_overdue(today)
        assert not Task(title="x", due_date=date(2024, 1, 20)).is_overdue(today)
        assert not Task(title="x").is_overdue(today)


class TestCalendarEventModel:
    """Tests for the CalendarEvent model."""

    def test_iso_datetime_split_into_date_and_time(self):
        """Test '2024-01-15T18:00:00.000' becomes date + HH:MM."""
        event = CalendarEvent(title="Jantar", date="2024-01-15T18:00:00.000")
        assert event.date == date(2024, 1, 15)
        assert event.time == "18:00"

    def test_utc_datetime_converted_to_local_time(self):
        """Test a 'Z' clock is stored in local time."""
        local = datetime(2024, 1, 15, 18, 0, tzinfo=timezone.utc).astimezone()

        event = CalendarEvent(title="Jantar", date="2024-01-15T18:00:00.000Z")

        assert event.date == local.date()
        assert event.time == local.strftime("%H:%M")

    def test_midnight_utc_is_date_only(self):
        """Test a midnight UTC datetime keeps its date and sets no time."""
        event = CalendarEvent(title="x", date="2024-01-15T00:00:00.000Z")
        assert event.date == date(2024, 1, 15)
        assert event.time is None

    def test_spoken_time_after_date(self):
        """Test '2024-01-16 18h' is understood instead of rejected."""
        event = CalendarEvent(title="x", date="2024-01-16 18h")
        assert event.date == date(2024, 1, 16)
        assert event.time == "18:00"

    def test_explicit_time_wins_over_datetime(self):
        """Test an explicit time is not replaced by the datetime's clock."""
        event = CalendarEvent(title="x", date="2024-01-15T18:00:00", time="19:30")
        assert event.time == "19:30"

    def test_time_is_normalized(self):
        """Test seconds are dropped from the time."""
        assert CalendarEvent(title="x", date="2024-01-15", time="08:05:00").time == "08:05"

    def test_invalid_time_rejected(self):
        """Test an impossible time is rejected."""
        with pytest.raises(ValueError):
            CalendarEvent(title="x", date="2024-01-15", time="25:00")

    def test_date_is_required(self):
        """Test an event without a date is rejected."""
        with pytest.raises(ValueError):
            CalendarEvent(title="x")

    def test_is_upcoming(self):
        """Test upcoming includes today."""
        event = CalendarEvent(title="x", date=date(2024, 1, 15))
        assert event.is_upcoming(date(2024, 1, 15))
        assert not event.is_upcoming(date(2024, 1, 16))


class TestTransactionModel:
    """Tests for the Transaction model."""

    def test_brazilian_amount_string(self):
        """Test 'R$ 1.400,50' parses as 1400.50."""
        transaction = Transaction(description="Salário", amount="R$ 1.400,50", type="income")
        assert transaction.amount == Decimal("1400.50")

    @pytest.mark.parametrize("raw,expected", [
        ("R$ 1.400", Decimal("1400")),
        ("1.400.000", Decimal("1400000")),
        ("1.5", Decimal("1.5")),
        ("12.50", Decimal("12.50")),
        ("R$ 1.400,00", Decimal("1400.00")),
    ])
    def test_dot_as_thousands_separator(self, raw, expected):
        """Test dots grouping three digits are thousands separators."""
        transaction = Transaction(description="Salário", amount=raw, type="income")
        assert transaction.amount == expected

    def test_float_amount_is_exact(self):
        """Test floats are converted through their string form."""
        assert Transaction(description="x", amount=0.1, type="expense").amount == Decimal("0.1")

    def test_rejects_negative_amount(self):
        """Test that negative amounts are rejected."""
        with pytest.raises(ValueError):
            Transaction(description="x", amount=Decimal("-10"), type="expense")

    def test_type_synonyms(self):
        """Test Portuguese type words are understood."""
        assert Transaction(description="x", amount=1, type="Receita").type == TransactionType.INCOME
        assert Transaction(description="x", amount=1, type="despesa").type == TransactionType.EXPENSE

    def test_unknown_type_rejected(self):
        """Test an unknown transaction type is an error, never guessed."""
        with pytest.raises(ValueError):
            Transaction(description="x", amount=1, type="transfer")

    def test_category_default(self):
        """Test unknown categories become outros."""
        transaction = Transaction(description="x", amount=1, type="expense", category="???")
        assert transaction.category == TransactionCategory.OTHER

    def test_date_defaults_to_today(self):
        """Test a missing date is today."""
        assert Transaction(description="x", amount=1, type="expense").date == date.today()

    def test_signed_amount(self):
        """Test the sign comes from the type."""
        assert Transaction(description="x", amount=10, type="income").signed_amount == Decimal("10")
        assert Transaction(description="x", amount=10, type="expense").signed_amount == Decimal("-10")


class TestSubscriptionAndSnapshot:
    """Tests for subscription status and snapshots."""

    def test_free_status(self):
        """Test the free status has no plan metadata."""
        status = SubscriptionStatus.free()
        assert status.is_premium is False
        assert status.plan_name == PlanName.FREE
        assert status.price is None

    def test_subscription_wire_shape(self):
        """Test the subscription record uses camelCase keys."""
        status = SubscriptionStatus(
            is_premium=True,
            plan_name=PlanName.PREMIUM,
            price=Decimal("19.90"),
            renewal_date="2024-02-15",
        )
        record = status.to_record()
        assert record["isPremium"] is True
        assert record["planName"] == "premium"
        assert record["renewalDate"] == "2024-02-15"

    def test_snapshot_context(self):
        """Test the snapshot exposes all collections in wire shape."""
        snapshot = CollectionsSnapshot(tasks=[Task(title="a")])
        context = snapshot.to_context()
        assert set(context) == {"tasks", "events", "transactions"}
        assert context["tasks"][0]["title"] == "a"
        assert snapshot.collection(EntityType.EVENT) == []


class TestActionModels:
    """Tests for resolver and executor output models."""

    def test_resolution_wire_shape(self):
        """Test the resolution serializes to the actions/response contract."""
        resolution = IntentResolution(actions=[{"type": "task"}], response="ok")
        assert resolution.to_wire() == {"actions": [{"type": "task"}], "response": "ok"}
        assert not resolution.is_fallback

    def test_fallback_resolution(self):
        """Test a fallback is flagged."""
        resolution = IntentResolution(response="x", fallback_reason=FallbackReason.TIMEOUT)
        assert resolution.is_fallback

    def test_report_counts(self):
        """Test succeeded/failed counts."""
        report = ExecutionReport(results=[
            ActionResult(index=0, type=EntityType.TASK, action=ActionVerb.CREATE, success=True),
            ActionResult(index=1, success=False, error_code=ActionErrorCode.INVALID_ACTION),
        ])
        assert report.succeeded == 1
        assert report.failed == 1
        assert not report.all_succeeded

    def test_list_is_not_a_mutation(self):
        """Test only successful create/update/delete count as mutations."""
        listed = ActionResult(index=0, action=ActionVerb.LIST, success=True)
        created = ActionResult(index=0, action=ActionVerb.CREATE, success=True)
        failed = ActionResult(index=0, action=ActionVerb.CREATE, success=False)
        assert not listed.is_mutation
        assert created.is_mutation
        assert not failed.is_mutation


class TestAuditModels:
    """Tests for audit event models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.ACTION_EXECUTED,
            description="Test event",
        )
        assert event.event_type == AuditEventType.ACTION_EXECUTED
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        correlation_id = uuid4()
        event = AuditEventBuilder.action_executed("task", "create", "t-1", correlation_id)
        log_dict = event.to_log_dict()
        assert log_dict["event_type"] == "action_executed"
        assert log_dict["entity_id"] == "t-1"
        assert log_dict["correlation_id"] == str(correlation_id)
        assert log_dict["is_user_action"] is True

    def test_rejected_action_is_warning(self):
        """Test rejected actions are logged as warnings with the error code."""
        event = AuditEventBuilder.action_rejected(
            0, "task", "update", "not_found", "task not found: x", None,
        )
        assert event.severity == AuditSeverity.WARNING
        assert event.error_code == "not_found"

    def test_sync_failure_is_error(self):
        """Test sync failures are errors."""
        event = AuditEventBuilder.sync_push_failed("u-1", "tasks", "down")
        assert event.severity == AuditSeverity.ERROR

    def test_unconfigured_fallback_is_info(self):
        """Test a missing API key is not treated as a warning."""
        assert AuditEventBuilder.intent_fallback("not_configured", None, None).severity == AuditSeverity.INFO
        assert AuditEventBuilder.intent_fallback("timeout", "t", None).severity == AuditSeverity.WARNING
