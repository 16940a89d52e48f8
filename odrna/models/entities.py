"""
Core Entity Models for Odrna

These models define the schemas for the three user-owned collections
(tasks, calendar events, transactions) and the externally owned
subscription status. They are designed to:
1. Enforce enums at the boundary where external input enters
2. Keep the stored/wire shape stable (camelCase field names)
3. Round-trip losslessly through JSON storage

DESIGN DECISION: Category and priority values coming from the assistant
are coerced to a default when unrecognized (a wrong category is harmless).
A transaction type is never guessed here: income vs expense decides the
sign of the amount, so an unknown type is a validation error.
"""

import datetime as dt
import re
import unicodedata
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional, Union
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


# =============================================================================
# ENUMS - Finite set of valid values (stored values are bit-exact)
# =============================================================================

class EntityType(str, Enum):
    """The three user-owned collections."""
    TASK = "task"
    EVENT = "event"
    TRANSACTION = "transaction"

    @property
    def collection_name(self) -> str:
        return f"{self.value}s"


class TaskCategory(str, Enum):
    """Category shared by tasks and calendar events."""
    WORK = "trabalho"
    STUDY = "estudos"
    HEALTH = "saude"
    PERSONAL = "pessoal"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TransactionType(str, Enum):
    """Direction of money. The amount itself is always a magnitude."""
    INCOME = "income"
    EXPENSE = "expense"


class TransactionCategory(str, Enum):
    FOOD = "alimentacao"
    TRANSPORT = "transporte"
    HEALTH = "saude"
    LEISURE = "lazer"
    SALARY = "salario"
    OTHER = "outros"


class PlanName(str, Enum):
    FREE = "free"
    PREMIUM = "premium"


# =============================================================================
# BOUNDARY PARSING HELPERS
# =============================================================================

def normalize_token(value: str) -> str:
    """Lowercase, strip accents and surrounding whitespace."""
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(c for c in decomposed if not unicodedata.combining(c)).strip().lower()


_TASK_CATEGORY_SYNONYMS = {
    "work": TaskCategory.WORK,
    "job": TaskCategory.WORK,
    "study": TaskCategory.STUDY,
    "studies": TaskCategory.STUDY,
    "estudo": TaskCategory.STUDY,
    "health": TaskCategory.HEALTH,
    "personal": TaskCategory.PERSONAL,
}

_PRIORITY_SYNONYMS = {
    "baixa": TaskPriority.LOW,
    "media": TaskPriority.MEDIUM,
    "normal": TaskPriority.MEDIUM,
    "alta": TaskPriority.HIGH,
    "urgente": TaskPriority.HIGH,
    "urgent": TaskPriority.HIGH,
}

_TRANSACTION_TYPE_SYNONYMS = {
    "receita": TransactionType.INCOME,
    "entrada": TransactionType.INCOME,
    "ganho": TransactionType.INCOME,
    "despesa": TransactionType.EXPENSE,
    "gasto": TransactionType.EXPENSE,
    "saida": TransactionType.EXPENSE,
    "expenses": TransactionType.EXPENSE,
}

_TRANSACTION_CATEGORY_SYNONYMS = {
    "food": TransactionCategory.FOOD,
    "transport": TransactionCategory.TRANSPORT,
    "health": TransactionCategory.HEALTH,
    "leisure": TransactionCategory.LEISURE,
    "salary": TransactionCategory.SALARY,
    "other": TransactionCategory.OTHER,
    "outro": TransactionCategory.OTHER,
}


def parse_enum(
    value: Any,
    enum_cls: type[Enum],
    synonyms: Optional[dict[str, Enum]] = None,
    default: Optional[Enum] = None,
) -> Enum:
    """
    Parse an external value into an enum member.

    Matching is case- and accent-insensitive and falls back to synonyms.
    Unknown or missing values return `default` when one is given,
    otherwise raise ValueError.
    """
    if isinstance(value, enum_cls):
        return value

    if value is None or not str(value).strip():
        if default is not None:
            return default
        raise ValueError(f"{enum_cls.__name__} value is required")

    token = normalize_token(str(value))
    for member in enum_cls:
        if token == member.value:
            return member
    if synonyms and token in synonyms:
        return synonyms[token]

    if default is not None:
        return default

    allowed = ", ".join(member.value for member in enum_cls)
    raise ValueError(
        f"'{value}' is not a valid {enum_cls.__name__} (expected one of: {allowed})"
    )


def parse_task_category(value: Any) -> TaskCategory:
    return parse_enum(value, TaskCategory, _TASK_CATEGORY_SYNONYMS, TaskCategory.PERSONAL)


def parse_task_priority(value: Any) -> TaskPriority:
    return parse_enum(value, TaskPriority, _PRIORITY_SYNONYMS, TaskPriority.MEDIUM)


def parse_transaction_type(value: Any) -> TransactionType:
    return parse_enum(value, TransactionType, _TRANSACTION_TYPE_SYNONYMS)


def parse_transaction_category(value: Any) -> TransactionCategory:
    return parse_enum(
        value, TransactionCategory, _TRANSACTION_CATEGORY_SYNONYMS, TransactionCategory.OTHER
    )


def coerce_date(value: Any) -> Any:
    """Reduce datetimes and ISO datetime strings to their calendar date."""
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if len(text) > 10 and text[10] in ("T", " "):
            return text[:10]
        return text
    return value


def split_date_and_clock(text: str) -> tuple[str, Optional[str]]:
    """
    Split "2024-01-16T18:00" style text into ("2024-01-16", "18:00").

    Offsets ("Z", "-03:00") are converted to local time. Exact midnight
    means no time, since date-only values are often sent as midnight
    UTC. Text that is not ISO ("2024-01-16 18h") goes through the
    spoken-time parser.
    """
    try:
        moment = dt.datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        from odrna.agents.heuristics import extract_time

        return text[:10], extract_time(text[11:])

    if moment.time() == dt.time(0):
        return moment.date().isoformat(), None
    if moment.tzinfo is not None:
        moment = moment.astimezone()
    return moment.date().isoformat(), moment.strftime("%H:%M")


_THOUSANDS_GROUPED = re.compile(r"^-?\d{1,3}(\.\d{3})+$")


def parse_amount(value: Any) -> Any:
    """
    Parse an amount into a Decimal.

    Accepts numbers and Brazilian formatted strings ("R$ 1.400,50",
    "R$ 1.400"). Without a comma, dots are thousands separators only when
    they split the digits into groups of three ("1.400.000" but not "1.5").
    Sign validation is left to the field constraint.
    """
    if isinstance(value, bool):
        raise ValueError("amount must be a number")
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, str):
        text = value.replace("R$", "").replace(" ", "").strip()
        if "," in text:
            text = text.replace(".", "").replace(",", ".")
        elif _THOUSANDS_GROUPED.match(text):
            text = text.replace(".", "")
        try:
            return Decimal(text)
        except InvalidOperation:
            raise ValueError(f"'{value}' is not a valid amount")
    return value


def new_entity_id() -> str:
    return str(uuid4())


def utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


_TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)(:[0-5]\d(\.\d+)?)?$")


# =============================================================================
# ENTITY MODELS
# =============================================================================

class EntityModel(BaseModel):
    """
    Base for every stored record.

    Attribute names are snake_case; the stored and wire shape uses
    camelCase aliases. Both spellings are accepted on input.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    id: str = Field(
        default_factory=new_entity_id,
        min_length=1,
        description="Unique record ID"
    )
    created_at: dt.datetime = Field(
        default_factory=utc_now,
        description="When the record was created (UTC)"
    )

    def to_record(self) -> dict[str, Any]:
        """Convert to the JSON-safe stored/wire shape."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def field_alias(cls, key: str) -> Optional[str]:
        """Map a snake_case or camelCase key to its stored alias."""
        for name, field in cls.model_fields.items():
            if key == name or key == field.alias:
                return field.alias or name
        return None


class Task(EntityModel):
    """A to-do item."""

    title: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="What needs to be done"
    )
    completed: bool = False
    category: TaskCategory = TaskCategory.PERSONAL
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: Optional[dt.date] = None
    description: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("category", mode="before")
    @classmethod
    def coerce_category(cls, v: Any) -> TaskCategory:
        return parse_task_category(v)

    @field_validator("priority", mode="before")
    @classmethod
    def coerce_priority(cls, v: Any) -> TaskPriority:
        return parse_task_priority(v)

    @field_validator("due_date", mode="before")
    @classmethod
    def coerce_due_date(cls, v: Any) -> Any:
        return coerce_date(v)

    def is_overdue(self, today: Optional[dt.date] = None) -> bool:
        """Pending task whose due date has passed."""
        if self.completed or self.due_date is None:
            return False
        return self.due_date < (today or dt.date.today())


class CalendarEvent(EntityModel):
    """
    A calendar entry.

    Whether an event is upcoming is derived from its date, never stored.
    """

    title: str = Field(
        ...,
        min_length=1,
        max_length=200,
    )
    date: dt.date = Field(
        ...,
        description="Calendar date of the event"
    )
    time: Optional[str] = Field(
        default=None,
        description="Time of day as HH:MM"
    )
    category: TaskCategory = TaskCategory.PERSONAL
    description: Optional[str] = Field(default=None, max_length=1000)
    color: Optional[str] = Field(default=None, max_length=30)

    @model_validator(mode="before")
    @classmethod
    def split_iso_datetime(cls, data: Any) -> Any:
        """Split "2024-01-15T18:00:00.000Z" into date and time."""
        if not isinstance(data, dict):
            return data
        raw = data.get("date")
        if isinstance(raw, dt.datetime):
            raw = raw.isoformat()
        if isinstance(raw, str) and len(raw.strip()) > 10 and raw.strip()[10] in ("T", " "):
            day, clock = split_date_and_clock(raw.strip())
            data = dict(data)
            data["date"] = day
            if clock and not data.get("time"):
                data["time"] = clock
        return data

    @field_validator("time", mode="before")
    @classmethod
    def validate_time(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        text = str(v).strip()
        if not text:
            return None
        match = _TIME_PATTERN.match(text)
        if not match:
            raise ValueError(f"'{v}' is not a valid time (expected HH:MM)")
        return f"{match.group(1)}:{match.group(2)}"

    @field_validator("category", mode="before")
    @classmethod
    def coerce_category(cls, v: Any) -> TaskCategory:
        return parse_task_category(v)

    def is_upcoming(self, today: Optional[dt.date] = None) -> bool:
        return self.date >= (today or dt.date.today())


class Transaction(EntityModel):
    """
    A finance entry.

    CRITICAL: `amount` is always a non-negative magnitude.
    The direction of money comes from `type`, never from the sign.
    """

    description: str = Field(
        ...,
        min_length=1,
        max_length=200,
    )
    amount: Decimal = Field(
        ...,
        ge=0,
        description="Magnitude in BRL"
    )
    type: TransactionType
    category: TransactionCategory = TransactionCategory.OTHER
    date: dt.date = Field(default_factory=dt.date.today)

    @field_validator("amount", mode="before")
    @classmethod
    def coerce_amount(cls, v: Any) -> Any:
        return parse_amount(v)

    @field_validator("type", mode="before")
    @classmethod
    def coerce_type(cls, v: Any) -> TransactionType:
        return parse_transaction_type(v)

    @field_validator("category", mode="before")
    @classmethod
    def coerce_category(cls, v: Any) -> TransactionCategory:
        return parse_transaction_category(v)

    @field_validator("date", mode="before")
    @classmethod
    def coerce_transaction_date(cls, v: Any) -> Any:
        coerced = coerce_date(v)
        return dt.date.today() if coerced is None else coerced

    @property
    def signed_amount(self) -> Decimal:
        """Amount with the sign implied by the transaction type."""
        if self.type == TransactionType.INCOME:
            return self.amount
        return -self.amount


EntityRecord = Union[Task, CalendarEvent, Transaction]

ENTITY_MODELS: dict[EntityType, type[EntityModel]] = {
    EntityType.TASK: Task,
    EntityType.EVENT: CalendarEvent,
    EntityType.TRANSACTION: Transaction,
}


def model_for(entity_type: EntityType) -> type[EntityModel]:
    return ENTITY_MODELS[entity_type]


# =============================================================================
# SUBSCRIPTION (externally owned)
# =============================================================================

class SubscriptionStatus(BaseModel):
    """
    Premium status of a user.

    CRITICAL: Written only by the payment webhook or a trusted account
    fetch. User actions never change it.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    is_premium: bool = False
    plan_name: PlanName = PlanName.FREE
    price: Optional[Decimal] = Field(default=None, ge=0)
    start_date: Optional[dt.date] = None
    renewal_date: Optional[dt.date] = None

    @field_validator("start_date", "renewal_date", mode="before")
    @classmethod
    def coerce_dates(cls, v: Any) -> Any:
        return coerce_date(v)

    @classmethod
    def free(cls) -> "SubscriptionStatus":
        return cls(is_premium=False, plan_name=PlanName.FREE)

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# =============================================================================
# SNAPSHOT
# =============================================================================

class CollectionsSnapshot(BaseModel):
    """Read-only view of all three collections at one moment."""

    tasks: list[Task] = Field(default_factory=list)
    events: list[CalendarEvent] = Field(default_factory=list)
    transactions: list[Transaction] = Field(default_factory=list)

    def collection(self, entity_type: EntityType) -> list[EntityModel]:
        return getattr(self, entity_type.collection_name)

    def to_context(self) -> dict[str, list[dict[str, Any]]]:
        """Collections in wire shape, for prompting."""
        return {
            entity_type.collection_name: [
                record.to_record() for record in self.collection(entity_type)
            ]
            for entity_type in EntityType
        }
