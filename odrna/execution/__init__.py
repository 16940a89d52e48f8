"""Action execution package."""

from odrna.execution.executor import ActionExecutor, PlanLimitError, summarize_results

__all__ = ["ActionExecutor", "PlanLimitError", "summarize_results"]
