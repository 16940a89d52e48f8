"""Read-only summaries over stored records."""

from odrna.queries.summary import (
    DashboardStats,
    FinanceSummary,
    Insight,
    InsightLevel,
    compute_balance,
    dashboard_stats,
    productivity_insights,
    summarize_finances,
)

__all__ = [
    "DashboardStats",
    "FinanceSummary",
    "Insight",
    "InsightLevel",
    "compute_balance",
    "dashboard_stats",
    "productivity_insights",
    "summarize_finances",
]
