"""
Two-Stage Action Validation

DESIGN DECISION: An action from the assistant is validated in two stages:

STAGE 1 - ACTION SHAPE:
- `type` and `action` must name a known combination
- the payload must carry what the verb needs (an `id` for update/delete)
- this catches malformed or hallucinated model output

STAGE 2 - RECORD VALIDATION:
- the payload (or the merged update) must build a valid entity
- enum values are coerced here (category, priority) or rejected
  (transaction type)
- this catches semantically impossible data (negative amounts,
  unparseable dates)

Both stages raise ActionValidationError carrying the offending field,
so the executor can report it per action without aborting the batch.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import TypeAdapter, ValidationError

from odrna.models.actions import Action
from odrna.models.entities import EntityModel, EntityType, model_for, split_date_and_clock


# Identity and creation time are owned by the executor.
IMMUTABLE_ALIASES = ("id", "createdAt")

_TYPE_SYNONYMS = {
    "tasks": "task",
    "tarefa": "task",
    "events": "event",
    "evento": "event",
    "transactions": "transaction",
    "transacao": "transaction",
}

_action_adapter = TypeAdapter(Action)


class ActionValidationError(Exception):
    """An action or its payload failed validation."""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


def _carries_clock(value: Any) -> bool:
    if isinstance(value, datetime):
        value = value.isoformat()
    if not isinstance(value, str):
        return False
    text = value.strip()
    if len(text) <= 10 or text[10] not in ("T", " "):
        return False
    return split_date_and_clock(text)[1] is not None


def _first_error(error: ValidationError, prefix: Optional[str] = None) -> ActionValidationError:
    """Collapse a pydantic ValidationError into one field/message pair."""
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "__root__")
    # Tagged-union locations include the tag itself ("create.data.title").
    parts = location.split(".")
    if parts and parts[0] in ("create", "update", "delete", "list"):
        location = ".".join(parts[1:])
    if prefix:
        location = f"{prefix}.{location}" if location else prefix
    message = first.get("msg", "invalid value")
    if message.startswith("Value error, "):
        message = message[len("Value error, "):]
    return ActionValidationError(location or "action", message)


def _normalize_tag(value: Any, synonyms: Optional[dict[str, str]] = None) -> Any:
    if not isinstance(value, str):
        return value
    token = value.strip().lower()
    if synonyms:
        token = synonyms.get(token, token)
    return token


class ActionValidator:
    """
    Validates raw actions and the records they produce.

    Stateless; one instance can be shared.
    """

    def parse_action(self, raw: Any) -> Action:
        """
        Stage 1: parse a raw action dict into the tagged union.

        Raises:
            ActionValidationError: unknown type/verb or missing payload fields
        """
        if not isinstance(raw, dict):
            raise ActionValidationError("action", "action must be a JSON object")
        if "action" not in raw:
            raise ActionValidationError("action", "field required")
        if "type" not in raw:
            raise ActionValidationError("type", "field required")

        candidate = dict(raw)
        candidate["type"] = _normalize_tag(raw.get("type"), _TYPE_SYNONYMS)
        candidate["action"] = _normalize_tag(raw.get("action"))
        if candidate.get("data") is None:
            candidate.pop("data", None)

        try:
            return _action_adapter.validate_python(candidate)
        except ValidationError as e:
            raise _first_error(e)

    def build_record(
        self,
        entity_type: EntityType,
        data: dict[str, Any],
    ) -> EntityModel:
        """
        Stage 2 for `create`: build a fresh record from a payload.

        Identity and creation time in the payload are ignored;
        the model generates new ones.
        """
        model = model_for(entity_type)
        payload = {
            key: value
            for key, value in data.items()
            if model.field_alias(key) not in IMMUTABLE_ALIASES
        }
        try:
            return model.model_validate(payload)
        except ValidationError as e:
            raise _first_error(e, prefix="data")

    def apply_updates(
        self,
        record: EntityModel,
        updates: dict[str, Any],
    ) -> EntityModel:
        """
        Stage 2 for `update`: shallow-merge partial fields and re-validate.

        Unknown fields are ignored. `id` and `createdAt` never change.
        A new date that carries a clock ("2024-01-16T18:00") also replaces
        the old time unless the update sets `time` itself.
        """
        model = type(record)
        merged = record.to_record()
        updated_aliases = set()
        for key, value in updates.items():
            alias = model.field_alias(key)
            if alias is None or alias in IMMUTABLE_ALIASES:
                continue
            merged[alias] = value
            updated_aliases.add(alias)
        if "time" in merged and "time" not in updated_aliases and _carries_clock(merged.get("date")):
            merged.pop("time")
        try:
            return model.model_validate(merged)
        except ValidationError as e:
            raise _first_error(e, prefix="data.updates")
