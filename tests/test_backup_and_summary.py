"""Tests for backup export/restore and read-only summaries."""

import json

import pytest
from datetime import date
from decimal import Decimal

from odrna.models.entities import CalendarEvent, Task, TaskPriority, Transaction
from odrna.queries import (
    InsightLevel,
    compute_balance,
    dashboard_stats,
    productivity_insights,
    summarize_finances,
)
from odrna.services.backup import BACKUP_VERSION, BackupData, BackupError, export_backup, restore_backup
from odrna.services.storage import InMemoryBackend
from odrna.store import EntityStore


TODAY = date(2024, 1, 15)


def fill(store):
    store.save_tasks([Task(title="Estudar"), Task(title="Treinar", completed=True)])
    store.save_events([CalendarEvent(title="Reunião", date=date(2024, 1, 16))])
    store.save_transactions([Transaction(description="Salário", amount=1400, type="income")])


class TestBackup:
    """Tests for backup export and restore."""

    async def test_export(self, store, audit_logger):
        """Test the document carries version, user and every collection."""
        fill(store)

        backup = await export_backup(store, "maria@example.com", "Maria", audit_logger=audit_logger)

        assert backup.version == BACKUP_VERSION == "1.0.0"
        assert backup.user.email == "maria@example.com"
        assert backup.counts() == {"tasks": 2, "events": 1, "transactions": 1}
        document = json.loads(backup.to_json())
        assert set(document["data"]) == {"tasks", "events", "transactions"}

    async def test_restore_into_another_store(self, store):
        """Test a JSON backup restores the same records elsewhere."""
        fill(store)
        backup_json = (await export_backup(store)).to_json()

        other = EntityStore(InMemoryBackend())
        counts = await restore_backup(other, backup_json)

        assert counts == {"tasks": 2, "events": 1, "transactions": 1}
        assert other.get_tasks() == store.get_tasks()
        assert other.get_transactions() == store.get_transactions()

    async def test_restore_from_dict_and_model(self, store):
        """Test dicts and BackupData instances are accepted."""
        fill(store)
        backup = await export_backup(store)

        other = EntityStore(InMemoryBackend())
        await restore_backup(other, backup.model_dump(mode="json"))
        assert len(other.get_tasks()) == 2

        await restore_backup(other, BackupData(version="1.0.0", data={"tasks": []}))
        assert other.get_tasks() == []
        assert other.get_events() == []

    @pytest.mark.parametrize("payload", [
        {"data": {"tasks": []}},
        {"version": "1.0.0"},
        "not json",
        42,
    ])
    async def test_invalid_structure(self, store, payload):
        """Test documents without version/data are refused."""
        fill(store)
        with pytest.raises(BackupError):
            await restore_backup(store, payload)
        assert len(store.get_tasks()) == 2

    async def test_invalid_record_leaves_store_untouched(self, store):
        """Test one bad record aborts the restore before any write."""
        fill(store)
        before = store.snapshot()

        with pytest.raises(BackupError, match="transaction"):
            await restore_backup(store, {
                "version": "1.0.0",
                "data": {
                    "tasks": [{"title": "Nova"}],
                    "transactions": [{"description": "x", "amount": -5, "type": "expense"}],
                },
            })

        assert store.snapshot() == before


class TestFinance:
    """Tests for balances and finance summaries."""

    def transactions(self):
        return [
            Transaction(description="Salário", amount="0.1", type="income"),
            Transaction(description="Freela", amount="0.2", type="income"),
            Transaction(description="Mercado", amount="0.3", type="expense", category="alimentacao"),
            Transaction(description="Uber", amount="12.5", type="expense", category="transporte"),
        ]

    def test_balance(self):
        """Test balance = income - expense, exactly."""
        assert compute_balance(self.transactions()) == Decimal("-12.5")

    def test_balance_independent_of_order(self):
        """Test reordering never changes the balance."""
        transactions = self.transactions()
        assert compute_balance(transactions) == compute_balance(list(reversed(transactions)))
        assert compute_balance(transactions[2:] + transactions[:2]) == compute_balance(transactions)

    def test_empty_balance(self):
        """Test no transactions is a zero balance."""
        assert compute_balance([]) == Decimal("0")

    def test_summary(self):
        """Test totals and per-category expenses."""
        summary = summarize_finances(self.transactions())
        assert summary.income == Decimal("0.3")
        assert summary.expense == Decimal("12.8")
        assert summary.balance == Decimal("-12.5")
        assert summary.expense_by_category == {
            "alimentacao": Decimal("0.3"),
            "transporte": Decimal("12.5"),
        }
        assert summary.transaction_count == 4


class TestDashboard:
    """Tests for dashboard figures."""

    def test_stats(self):
        """Test counts and upcoming events against a fixed day."""
        stats = dashboard_stats(
            tasks=[Task(title="a", completed=True), Task(title="b")],
            events=[
                CalendarEvent(title="past", date=date(2024, 1, 10)),
                CalendarEvent(title="today", date=TODAY),
                CalendarEvent(title="soon", date=date(2024, 1, 20)),
            ],
            transactions=[Transaction(description="x", amount=100, type="income")],
            today=TODAY,
        )
        assert stats.total_tasks == 2
        assert stats.completed_tasks == 1
        assert stats.upcoming_events == 2
        assert stats.balance == Decimal("100")


class TestInsights:
    """Tests for productivity insights."""

    def test_no_tasks(self):
        """Test an empty list gives no insights."""
        assert productivity_insights([], TODAY) == []

    def test_high_completion(self):
        """Test >= 80% completion is a success message."""
        tasks = [Task(title=str(i), completed=i < 4) for i in range(5)]
        insights = productivity_insights(tasks, TODAY)
        assert insights[0].kind == "completion_rate"
        assert insights[0].level == InsightLevel.SUCCESS
        assert "80%" in insights[0].message

    def test_medium_completion(self):
        """Test 50% completion is informational."""
        tasks = [Task(title="a", completed=True), Task(title="b")]
        assert productivity_insights(tasks, TODAY)[0].level == InsightLevel.INFO

    def test_low_completion_and_high_priority(self):
        """Test more than 3 pending high-priority tasks is flagged."""
        tasks = [Task(title=str(i), priority=TaskPriority.HIGH) for i in range(4)]
        insights = {insight.kind: insight for insight in productivity_insights(tasks, TODAY)}
        assert insights["completion_rate"].level == InsightLevel.WARNING
        assert "4" in insights["high_priority"].message

    def test_three_high_priority_is_fine(self):
        """Test exactly 3 pending high-priority tasks is not flagged."""
        tasks = [Task(title=str(i), priority=TaskPriority.HIGH) for i in range(3)]
        kinds = [insight.kind for insight in productivity_insights(tasks, TODAY)]
        assert "high_priority" not in kinds

    def test_overdue(self):
        """Test overdue tasks are counted."""
        tasks = [
            Task(title="late", due_date=date(2024, 1, 1)),
            Task(title="done", due_date=date(2024, 1, 1), completed=True),
            Task(title="later", due_date=date(2024, 2, 1)),
        ]
        overdue = [insight for insight in productivity_insights(tasks, TODAY) if insight.kind == "overdue"]
        assert overdue[0].message == "Atenção: 1 tarefa atrasada."
