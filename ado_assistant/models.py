"""
Pydantic models for work items, validation results and LLM replies.

* ``WorkItem`` is the read-only record handed to the validator.  Its
  ``fields`` map is keyed by Azure DevOps reference names and may hold
  numbers, strings, ISO-8601 date-times or nothing at all.
* ``ValidationRule``, ``ValidationResult``, ``FieldUpdate``,
  ``WorkTrackingTriple``, ``DateWindow`` and ``SynthesisContext`` are the
  derived, per-call types of the validator and the default synthesizer.
* ``GeneratedItem`` and ``TaskEvaluation`` describe the JSON the completion
  API is asked to return.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# Work items
# ---------------------------------------------------------------------------

class WorkItemType(str, Enum):
    """Work-item types the assistant knows how to validate."""

    FEATURE = "Feature"
    USER_STORY = "User Story"
    TASK = "Task"


class WorkItem(BaseModel):
    """A work item as fetched from Azure DevOps."""

    id: int
    type: WorkItemType
    title: str = ""
    state: str = ""
    fields: dict[str, Any] = {}
    url: Optional[str] = None

    @field_validator("fields", mode="before")
    @classmethod
    def _absent_fields_are_empty(cls, value):
        return value if value is not None else {}

    @classmethod
    def from_api(cls, raw: dict) -> "WorkItem":
        """Build a ``WorkItem`` from a raw REST API work-item dict."""
        fields = raw.get("fields") or {}
        return cls(
            id=raw["id"],
            type=fields.get("System.WorkItemType", ""),
            title=fields.get("System.Title") or "",
            state=fields.get("System.State") or "",
            fields=fields,
            url=raw.get("url"),
        )

    def get(self, field_key: str, default: Any = None) -> Any:
        """Return the value stored under *field_key*."""
        return self.fields.get(field_key, default)


def build_work_item_data(work_item_type: str, data: dict) -> dict:
    """Return a copy of *data* containing only the fields valid for *work_item_type*.

    Unknown / type-inappropriate keys are silently dropped.  This is the
    single gatekeeper used before the client creates work items.
    """
    allowed = _ALLOWED_DATA_FIELDS.get(work_item_type)
    if allowed is None:
        raise ValueError(f"Unknown work item type: {work_item_type}")
    return {k: v for k, v in data.items() if k in allowed}


_COMMON_DATA_FIELDS = {
    "title", "description", "priority",
    "iteration_path", "area_path", "assigned_to",
}

#: Fields that may appear in a create-data dict for each work-item type.
_ALLOWED_DATA_FIELDS: dict[str, set[str]] = {
    "Feature": _COMMON_DATA_FIELDS,
    "User Story": _COMMON_DATA_FIELDS | {"acceptance_criteria", "story_points"},
    "Task": _COMMON_DATA_FIELDS | {"estimate", "activity"},
}


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

#: Tolerance used when comparing an original estimate with remaining + completed.
WORK_TOLERANCE = 0.01


class ValidationRule(BaseModel):
    """One required field of a work-item type."""

    model_config = ConfigDict(frozen=True)

    field_key: str
    label: str
    is_date_field: bool = False
    is_custom_field: bool = False


class ValidationResult(BaseModel):
    """Outcome of validating one work item.

    ``fields_to_fix`` is ``missing_fields`` followed by the invalid labels
    not already listed, so every label appears once.
    """

    missing_fields: list[str] = []
    invalid_fields: list[str] = []
    invalid_field_labels: list[str] = []
    fields_to_fix: list[str] = []
    is_complete: bool = True
    has_issues: bool = False
    timeline_warning: Optional[str] = None
    planned_start_date: Optional[datetime] = None
    planned_end_date: Optional[datetime] = None


class FieldUpdate(BaseModel):
    """A single synthesized field value."""

    field_key: str
    value: Any

    def to_patch_operation(self) -> dict:
        """Render as a JSON-Patch ``add`` operation."""
        return {"op": "add", "path": f"/fields/{self.field_key}", "value": self.value}


class WorkTrackingTriple(BaseModel):
    """Original estimate, remaining and completed hours of a Task."""

    original: float = 0.0
    remaining: float = 0.0
    completed: float = 0.0

    @property
    def is_balanced(self) -> bool:
        return abs(self.original - (self.remaining + self.completed)) <= WORK_TOLERANCE

    @property
    def remaining_exceeds_original(self) -> bool:
        return self.original > 0 and self.remaining > self.original + WORK_TOLERANCE

    @property
    def is_consistent(self) -> bool:
        return (
            min(self.original, self.remaining, self.completed) >= 0
            and self.is_balanced
            and self.remaining <= self.original + WORK_TOLERANCE
        )


class DateWindow(BaseModel):
    """Planned start and end of a User Story."""

    planned_start: Optional[datetime] = None
    planned_end: Optional[datetime] = None

    @property
    def is_complete(self) -> bool:
        return self.planned_start is not None and self.planned_end is not None

    @property
    def is_same_day(self) -> bool:
        return self.is_complete and self.planned_start.date() == self.planned_end.date()

    @property
    def days(self) -> Optional[int]:
        """Number of calendar days in the window, both ends included."""
        if not self.is_complete:
            return None
        return (self.planned_end.date() - self.planned_start.date()).days + 1


class SynthesisContext(BaseModel):
    """Contextual data the default synthesizer works from."""

    planned_start: Optional[datetime] = None
    planned_end: Optional[datetime] = None
    estimate: Optional[float] = None
    triple: WorkTrackingTriple = WorkTrackingTriple()
    title: str = ""
    child_task_hours: Optional[float] = None
    now: Optional[datetime] = None
    latest_start: Optional[datetime] = None


# ---------------------------------------------------------------------------
# LLM replies
# ---------------------------------------------------------------------------

VALID_ACTIVITIES = ["Deployment", "Design", "Development", "Documentation", "Requirements", "Testing"]


class GeneratedItem(BaseModel):
    """A child work item proposed by the completion API."""

    title: str
    description: str = ""
    hours: float = 4.0
    priority: int = 2
    activity: str = "Development"
    id: Optional[int] = None
    original_hours: Optional[float] = None
    selected: bool = True

    @field_validator("description", mode="before")
    @classmethod
    def _none_description(cls, value):
        return value or ""

    @field_validator("priority", mode="before")
    @classmethod
    def _clamp_priority(cls, value):
        try:
            value = int(value)
        except (TypeError, ValueError):
            return 2
        return value if 1 <= value <= 4 else 2

    @field_validator("activity", mode="before")
    @classmethod
    def _known_activity(cls, value):
        return value if value in VALID_ACTIVITIES else "Development"


class CorrectTask(BaseModel):
    id: Optional[int] = None
    title: str = ""
    reason: str = ""


class TaskToUpdate(BaseModel):
    id: Optional[int] = None
    title: str = ""
    issue: str = ""
    suggestion: str = ""


class TaskToDelete(BaseModel):
    id: Optional[int] = None
    title: str = ""
    reason: str = ""


class SuggestedTask(BaseModel):
    title: str
    description: str = ""
    hours: float = 4.0
    reason: str = ""

    @field_validator("hours", mode="before")
    @classmethod
    def _default_hours(cls, value):
        return value or 4.0


class TaskEvaluation(BaseModel):
    """The completion API's review of a story's existing child tasks."""

    model_config = ConfigDict(populate_by_name=True)

    correct: list[CorrectTask] = []
    to_update: list[TaskToUpdate] = Field(default=[], alias="toUpdate")
    to_delete: list[TaskToDelete] = Field(default=[], alias="toDelete")
    new_tasks: list[SuggestedTask] = Field(default=[], alias="newTasks")
    summary: str = ""
