"""Assistant agents package."""

from odrna.agents.assistant_agent import (
    FALLBACK_REPLIES,
    IntentResolver,
    MalformedOutputError,
    build_system_prompt,
    complete_action,
    parse_model_output,
)

__all__ = [
    "FALLBACK_REPLIES",
    "IntentResolver",
    "MalformedOutputError",
    "build_system_prompt",
    "complete_action",
    "parse_model_output",
]
