"""
Summaries and Insights

DESIGN DECISION: Everything here is DETERMINISTIC and read-only.
Figures are computed from the stored records; nothing is estimated and
the assistant never computes a balance itself.

Money is summed as Decimal, so totals do not depend on record order.
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from odrna.models.entities import (
    CalendarEvent,
    Task,
    TaskPriority,
    Transaction,
    TransactionType,
)


HIGH_PRIORITY_WARNING_THRESHOLD = 3


class FinanceSummary(BaseModel):
    income: Decimal = Decimal("0")
    expense: Decimal = Decimal("0")
    balance: Decimal = Decimal("0")
    expense_by_category: dict[str, Decimal] = Field(default_factory=dict)
    transaction_count: int = 0


class DashboardStats(BaseModel):
    total_tasks: int = 0
    completed_tasks: int = 0
    upcoming_events: int = 0
    balance: Decimal = Decimal("0")


class InsightLevel(str, Enum):
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"


class Insight(BaseModel):
    kind: str
    level: InsightLevel
    message: str


def compute_balance(transactions: Iterable[Transaction]) -> Decimal:
    """Σ income − Σ expense."""
    return sum((t.signed_amount for t in transactions), Decimal("0"))


def summarize_finances(transactions: Iterable[Transaction]) -> FinanceSummary:
    income = Decimal("0")
    expense = Decimal("0")
    by_category: dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
    count = 0

    for transaction in transactions:
        count += 1
        if transaction.type == TransactionType.INCOME:
            income += transaction.amount
        else:
            expense += transaction.amount
            by_category[transaction.category.value] += transaction.amount

    return FinanceSummary(
        income=income,
        expense=expense,
        balance=income - expense,
        expense_by_category=dict(sorted(by_category.items())),
        transaction_count=count,
    )


def dashboard_stats(
    tasks: list[Task],
    events: list[CalendarEvent],
    transactions: list[Transaction],
    today: Optional[date] = None,
) -> DashboardStats:
    today = today or date.today()
    return DashboardStats(
        total_tasks=len(tasks),
        completed_tasks=sum(1 for task in tasks if task.completed),
        upcoming_events=sum(1 for event in events if event.is_upcoming(today)),
        balance=compute_balance(transactions),
    )


def productivity_insights(tasks: list[Task], today: Optional[date] = None) -> list[Insight]:
    """
    Short coaching messages about the task list.

    No tasks means no insights.
    """
    if not tasks:
        return []

    today = today or date.today()
    insights = []

    completed = sum(1 for task in tasks if task.completed)
    rate = completed / len(tasks)
    percent = round(rate * 100)
    if rate >= 0.8:
        insights.append(Insight(
            kind="completion_rate",
            level=InsightLevel.SUCCESS,
            message=f"Excelente! Você concluiu {percent}% das suas tarefas. Continue assim!",
        ))
    elif rate >= 0.5:
        insights.append(Insight(
            kind="completion_rate",
            level=InsightLevel.INFO,
            message=f"Bom progresso: {percent}% das tarefas concluídas. Falta pouco!",
        ))
    else:
        insights.append(Insight(
            kind="completion_rate",
            level=InsightLevel.WARNING,
            message=(
                f"Apenas {percent}% das tarefas concluídas. "
                "Que tal começar pelas mais importantes?"
            ),
        ))

    pending_high = sum(
        1 for task in tasks
        if not task.completed and task.priority == TaskPriority.HIGH
    )
    if pending_high > HIGH_PRIORITY_WARNING_THRESHOLD:
        insights.append(Insight(
            kind="high_priority",
            level=InsightLevel.WARNING,
            message=(
                f"Você tem {pending_high} tarefas de alta prioridade pendentes. "
                "Tente focar nelas primeiro."
            ),
        ))

    overdue = sum(1 for task in tasks if task.is_overdue(today))
    if overdue:
        noun = "tarefa atrasada" if overdue == 1 else "tarefas atrasadas"
        insights.append(Insight(
            kind="overdue",
            level=InsightLevel.WARNING,
            message=f"Atenção: {overdue} {noun}.",
        ))

    return insights
