"""
Action Models for the Assistant Pipeline

The assistant speaks one bit-exact JSON contract:

    {"actions": [{"type": ..., "action": ..., "data": {...}}], "response": "..."}

`type` is one of task|event|transaction and `action` one of
create|update|delete|list. The resolver hands actions over in that raw
shape; the executor parses each one into the tagged union below before
touching any data.

DESIGN DECISION: Actions are a discriminated union on `action`.
Every verb has its own payload model, so a malformed payload fails
validation at the boundary instead of misbehaving in the executor.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from odrna.models.entities import EntityType, utc_now


class ActionVerb(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    LIST = "list"


# =============================================================================
# TAGGED UNION
# =============================================================================

class _ActionBase(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: EntityType


class CreateAction(_ActionBase):
    """Create a record; `data` carries its fields minus id/timestamps."""
    action: Literal["create"]
    data: dict[str, Any]


class UpdatePayload(BaseModel):
    id: str = Field(..., min_length=1)
    updates: dict[str, Any] = Field(default_factory=dict)


class UpdateAction(_ActionBase):
    """Shallow-merge `updates` over the record with `id`."""
    action: Literal["update"]
    data: UpdatePayload


class DeletePayload(BaseModel):
    id: str = Field(..., min_length=1)


class DeleteAction(_ActionBase):
    action: Literal["delete"]
    data: DeletePayload


class ListAction(_ActionBase):
    """Read-only; the executor substitutes a live read of the collection."""
    action: Literal["list"]
    data: dict[str, Any] = Field(default_factory=dict)


Action = Annotated[
    Union[CreateAction, UpdateAction, DeleteAction, ListAction],
    Field(discriminator="action"),
]


# =============================================================================
# RESOLVER OUTPUT
# =============================================================================

class FallbackReason(str, Enum):
    """Why the resolver answered without consulting (or trusting) the model."""
    NOT_CONFIGURED = "not_configured"
    UNAUTHORIZED = "unauthorized"
    TIMEOUT = "timeout"
    UPSTREAM_ERROR = "upstream_error"
    MALFORMED_OUTPUT = "malformed_output"
    EMPTY_INPUT = "empty_input"
    STORAGE_ERROR = "storage_error"


class IntentResolution(BaseModel):
    """
    What the intent resolver returns for one utterance.

    `actions` stay in raw wire shape and in execution order.
    When `fallback_reason` is set, `actions` is always empty.
    """

    actions: list[dict[str, Any]] = Field(default_factory=list)
    response: str = Field(..., min_length=1)
    fallback_reason: Optional[FallbackReason] = None

    @property
    def is_fallback(self) -> bool:
        return self.fallback_reason is not None

    def to_wire(self) -> dict[str, Any]:
        return {"actions": self.actions, "response": self.response}


# =============================================================================
# EXECUTOR OUTPUT
# =============================================================================

class ActionErrorCode(str, Enum):
    INVALID_ACTION = "invalid_action"
    VALIDATION_ERROR = "validation_error"
    NOT_FOUND = "not_found"
    PLAN_LIMIT_REACHED = "plan_limit_reached"
    STORAGE_ERROR = "storage_error"


class ActionResult(BaseModel):
    """Outcome of one action in a batch."""

    index: int = Field(ge=0, description="Position of the action in the batch")
    type: Optional[EntityType] = None
    action: Optional[ActionVerb] = None
    success: bool

    # Success values (which one is set depends on the verb)
    record: Optional[dict[str, Any]] = None
    records: Optional[list[dict[str, Any]]] = None
    deleted: Optional[bool] = None

    # Failure marker
    error_code: Optional[ActionErrorCode] = None
    error_message: Optional[str] = None

    @property
    def is_mutation(self) -> bool:
        return self.success and self.action in (
            ActionVerb.CREATE, ActionVerb.UPDATE, ActionVerb.DELETE,
        )


class ExecutionReport(BaseModel):
    """Result of executing a batch of actions."""

    correlation_id: Optional[UUID] = None
    executed_at: datetime = Field(default_factory=utc_now)
    results: list[ActionResult] = Field(default_factory=list)
    message: str = ""

    @property
    def succeeded(self) -> int:
        return sum(1 for result in self.results if result.success)

    @property
    def failed(self) -> int:
        return sum(1 for result in self.results if not result.success)

    @property
    def all_succeeded(self) -> bool:
        return self.failed == 0
