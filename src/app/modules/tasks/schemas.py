"""
Task Schemas

Pydantic schemas for request validation, response serialization and the
stored repeat rule.

The repeat rule and its end condition are discriminated unions on ``type``.
Unknown discriminators or frequencies are rejected rather than defaulted.
JSON keys are camelCase to match the existing frontend contract.
"""

from datetime import date, datetime, time
from typing import Annotated, Any, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    PositiveInt,
    TypeAdapter,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from app.modules.tasks.models import (
    DEFAULT_DUE_TIME,
    DEFAULT_TITLE,
    RepeatFrequency,
    TaskPriority,
    TaskStatus,
)

# ============================================
# Repeat rule
# ============================================


class NoEndCondition(BaseModel):
    """The series repeats indefinitely."""

    type: Literal["None"] = "None"


class EndAfterOccurrences(BaseModel):
    """The series ends once ``count`` successors have been generated."""

    type: Literal["After"] = "After"
    count: PositiveInt = Field(validation_alias=AliasChoices("count", "value"))


class EndOnDate(BaseModel):
    """The series ends with the last occurrence due on or before ``on_date``."""

    type: Literal["OnDate"] = "OnDate"
    on_date: date = Field(
        validation_alias=AliasChoices("date", "onDate", "on_date", "value"),
        serialization_alias="date",
    )


EndCondition = Annotated[
    NoEndCondition | EndAfterOccurrences | EndOnDate,
    Field(discriminator="type"),
]


class NoRepeat(BaseModel):
    """A one-off task, or a retired occurrence of a series."""

    type: Literal["None"] = "None"


class CustomRepeat(BaseModel):
    """Repeat every ``interval`` units of ``frequency`` from the current due instant."""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["Custom"] = "Custom"
    interval: PositiveInt = 1
    frequency: RepeatFrequency = RepeatFrequency.DAYS
    end_condition: EndCondition = Field(default_factory=NoEndCondition, alias="endCondition")

    @field_validator("frequency", mode="before")
    @classmethod
    def normalize_frequency(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value


RepeatConfig = Annotated[NoRepeat | CustomRepeat, Field(discriminator="type")]

_repeat_config_adapter: TypeAdapter[NoRepeat | CustomRepeat] = TypeAdapter(RepeatConfig)


def coerce_repeat_config(value: Any) -> Any:
    """Treat a missing or empty stored rule as ``{"type": "None"}``."""
    if value is None or value == {}:
        return {"type": "None"}
    return value


def parse_repeat_config(value: Any) -> NoRepeat | CustomRepeat:
    """
    Validate a stored or submitted repeat rule.

    Raises:
        pydantic.ValidationError: If the rule is not a recognized variant
    """
    return _repeat_config_adapter.validate_python(coerce_repeat_config(value))


def dump_repeat_config(config: NoRepeat | CustomRepeat) -> dict[str, Any]:
    """Serialize a repeat rule to its stored JSON shape."""
    return config.model_dump(mode="json", by_alias=True)


RETIRED_REPEAT_CONFIG: dict[str, Any] = {"type": "None"}


# ============================================
# Task payloads
# ============================================


class CamelModel(BaseModel):
    """Base for task API payloads: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TaskAttachment(CamelModel):
    name: str = Field(..., min_length=1, max_length=255)
    path: str = Field(..., min_length=1, max_length=500)


class TaskCreate(CamelModel):
    """Request body for POST /tasks."""

    id: str | None = Field(None, min_length=1, max_length=36)
    title: str = Field(DEFAULT_TITLE, min_length=1, max_length=255)
    description: str = ""
    due_date: date | None = None
    due_time: time = DEFAULT_DUE_TIME
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.NOT_STARTED
    attachment_required: bool = False
    text_submission_required: bool = False
    submission_text: str = ""
    assigned_to: list[Any] = Field(default_factory=list)
    tagged_members: list[Any] = Field(default_factory=list)
    repeat_config: RepeatConfig = Field(default_factory=NoRepeat)
    occurrence_count: int = Field(0, ge=0)
    attachments: list[TaskAttachment] = Field(default_factory=list)

    @field_validator("repeat_config", mode="before")
    @classmethod
    def default_repeat_config(cls, value: Any) -> Any:
        return coerce_repeat_config(value)

    @model_validator(mode="after")
    def validate_repeat_has_due_date(self) -> "TaskCreate":
        if isinstance(self.repeat_config, CustomRepeat) and self.due_date is None:
            raise ValueError("dueDate is required for a repeating task")
        return self


class TaskUpdate(CamelModel):
    """
    Request body for PUT /tasks/{id}.

    Only fields present in the request are written.
    """

    title: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    due_date: date | None = None
    due_time: time | None = None
    priority: TaskPriority | None = None
    status: TaskStatus | None = None
    attachment_required: bool | None = None
    text_submission_required: bool | None = None
    submission_text: str | None = None
    assigned_to: list[Any] | None = None
    tagged_members: list[Any] | None = None
    repeat_config: RepeatConfig | None = None
    occurrence_count: int | None = Field(None, ge=0)
    attachments: list[TaskAttachment] | None = None

    @field_validator("repeat_config", mode="before")
    @classmethod
    def default_repeat_config(cls, value: Any) -> Any:
        if value is None:
            return None
        return coerce_repeat_config(value)

    def to_column_values(self) -> dict[str, Any]:
        """Supplied fields as ORM column values."""
        values = self.model_dump(exclude_unset=True)
        if "repeat_config" in values:
            values["repeat_config"] = (
                dump_repeat_config(self.repeat_config)
                if self.repeat_config is not None
                else dict(RETIRED_REPEAT_CONFIG)
            )
        if "attachments" in values and self.attachments is not None:
            values["attachments"] = [a.model_dump() for a in self.attachments]
        # Non-nullable columns: an explicit null means "leave unchanged"
        return {
            key: value
            for key, value in values.items()
            if value is not None or key == "due_date"
        }


class TaskRead(CamelModel):
    """
    Validated snapshot of a stored task.

    Used as the API response body and as the detached state the recurring
    scheduler works from.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: str
    title: str
    description: str = ""
    due_date: date | None = None
    due_time: time = DEFAULT_DUE_TIME
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.NOT_STARTED
    attachment_required: bool = False
    text_submission_required: bool = False
    submission_text: str = ""
    assigned_to: list[Any] = Field(default_factory=list)
    tagged_members: list[Any] = Field(default_factory=list)
    repeat_config: RepeatConfig = Field(default_factory=NoRepeat)
    occurrence_count: int = 0
    attachments: list[Any] = Field(default_factory=list)
    generator_task_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("repeat_config", mode="before")
    @classmethod
    def default_repeat_config(cls, value: Any) -> Any:
        return coerce_repeat_config(value)

    @field_validator("submission_text", "description", mode="before")
    @classmethod
    def default_text(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("assigned_to", "tagged_members", "attachments", mode="before")
    @classmethod
    def default_list(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def is_repeating(self) -> bool:
        return isinstance(self.repeat_config, CustomRepeat)

    @property
    def series_id(self) -> str:
        """Id of the first task in this task's series."""
        return self.generator_task_id or self.id


# ============================================
# Responses
# ============================================


class TaskCreateResponse(BaseModel):
    """Response after creating a task."""

    message: str
    task: TaskRead


class TaskUpdateResponse(BaseModel):
    """Response after updating a task."""

    message: str
    task: TaskRead
    scheduled: bool = False


class TaskDeleteResponse(BaseModel):
    """Response after deleting a task or a whole series."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    message: str
    deleted_ids: list[str]
