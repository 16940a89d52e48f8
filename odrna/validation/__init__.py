"""Action validation package."""

from odrna.validation.validator import ActionValidationError, ActionValidator

__all__ = ["ActionValidationError", "ActionValidator"]
