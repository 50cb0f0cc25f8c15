"""
Work-item field validation.

Two checks run over a single ``WorkItem``:

* **Completeness** reports every required field whose value is absent,
  empty, the literal ``"null"`` or zero (except where zero is a meaningful
  amount of work).
* **Consistency** reports present values that are implausible on their own
  (unparsable dates, dates before the floor) or contradict each other
  (planned window ordering, QA date outside the window, actual start far
  ahead of plan, a Task's hours negative or not adding up).

``validate_work_item`` combines both into a ``ValidationResult``.  Every
function here is pure: no I/O, no state, no exceptions for bad field data.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from .models import (
    DateWindow,
    ValidationResult,
    ValidationRule,
    WorkItem,
    WorkItemType,
    WorkTrackingTriple,
    WORK_TOLERANCE,
)
from .rules import (
    FIELD_KEYS,
    WINDOW_LABELS,
    WORK_TRACKING_LABELS,
    ZERO_IS_VALID_FIELDS,
    rules_for,
)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: Dates before this are placeholders (epoch sentinels, 1899-12-30, ...).
FLOOR_DATE = datetime(2020, 1, 1, tzinfo=timezone.utc)

#: How far an actual start may run ahead of the planned start.
ACTUAL_START_SLACK = timedelta(days=7)

ADJUST_PLANNED_END = "Planned End Date needs adjustment based on task estimates (same day as Planned Start Date)"
ADJUST_QA_READY = "QA Ready Date needs adjustment based on task estimates (planned window is a single day)"


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------

def parse_date(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 date or date-time into an aware UTC datetime.

    Returns ``None`` when *value* cannot be read as a date.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_number(value: Any) -> float:
    """Read a work-hours style value as a float; anything unreadable is 0."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def is_missing(value: Any, label: str) -> bool:
    """Return True if *value* counts as not filled in for field *label*."""
    if value is None:
        return True
    if isinstance(value, str):
        stripped = value.strip()
        return stripped == "" or stripped == "null"
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value == 0:
        return label not in ZERO_IS_VALID_FIELDS
    return False


def _day(value: datetime) -> str:
    return value.strftime("%Y-%m-%d")


def _hours(value: float) -> str:
    return f"{value:g}h"


# ---------------------------------------------------------------------------
# Completeness
# ---------------------------------------------------------------------------

def check_completeness(
    item: WorkItem,
    rules: dict[WorkItemType, list[ValidationRule]] | None = None,
) -> list[str]:
    """Return the labels of required fields missing from *item*, in rule order."""
    fields = item.fields or {}
    return [
        rule.label
        for rule in rules_for(item.type, rules)
        if is_missing(fields.get(rule.field_key), rule.label)
    ]


# ---------------------------------------------------------------------------
# Consistency
# ---------------------------------------------------------------------------

class _Findings:
    """Accumulates invalid labels (deduplicated) and messages (in check order)."""

    def __init__(self):
        self.labels: list[str] = []
        self.messages: list[str] = []
        self.warning: Optional[str] = None
        self.dates: dict[str, datetime] = {}

    def flag(self, label: str, message: Optional[str] = None) -> None:
        if label not in self.labels:
            self.labels.append(label)
        if message:
            self.messages.append(message)

    def is_flagged(self, label: str) -> bool:
        return label in self.labels


def _check_dates(item: WorkItem, rules: list[ValidationRule], found: _Findings) -> None:
    for rule in rules:
        if not rule.is_date_field:
            continue
        value = item.fields.get(rule.field_key)
        if is_missing(value, rule.label):
            continue
        parsed = parse_date(value)
        if parsed is None:
            found.flag(rule.label, f"{rule.label} has invalid date format")
        elif parsed < FLOOR_DATE:
            found.flag(
                rule.label,
                f"{rule.label} ({value} is invalid, before floor date {_day(FLOOR_DATE)})",
            )
        else:
            found.dates[rule.label] = parsed


def _usable_date(found: _Findings, label: str) -> Optional[datetime]:
    if found.is_flagged(label):
        return None
    return found.dates.get(label)


def _check_story_timeline(found: _Findings) -> None:
    start = _usable_date(found, "Planned Start Date")
    end = _usable_date(found, "Planned End Date")
    window = DateWindow(planned_start=start, planned_end=end)

    if window.is_complete:
        if window.is_same_day:
            found.flag("Planned End Date", ADJUST_PLANNED_END)
        elif end < start:
            found.flag(
                "Planned End Date",
                f"Planned End Date ({_day(end)}) must be after Planned Start Date ({_day(start)})",
            )

    qa_ready = _usable_date(found, "QA Ready Date")
    if qa_ready and window.is_complete:
        if window.is_same_day:
            found.flag("QA Ready Date", ADJUST_QA_READY)
            found.flag("Planned End Date")
        elif not start.date() <= qa_ready.date() <= end.date():
            found.flag(
                "QA Ready Date",
                f"QA Ready Date ({_day(qa_ready)}) must be between Planned Start Date "
                f"({_day(start)}) and Planned End Date ({_day(end)})",
            )

    actual_start = _usable_date(found, "Actual Start Date")
    if actual_start and start and actual_start.date() < (start - ACTUAL_START_SLACK).date():
        found.flag(
            "Actual Start Date",
            f"Actual Start Date ({_day(actual_start)}) is more than "
            f"{ACTUAL_START_SLACK.days} days before Planned Start Date ({_day(start)})",
        )

    actual_end = _usable_date(found, "Actual End Date")
    if actual_end and end and actual_end.date() > end.date():
        found.warning = (
            f"Actual End Date ({_day(actual_end)}) is after Planned End Date ({_day(end)})"
        )


def _check_task_timeline(found: _Findings) -> None:
    start = _usable_date(found, "Start Date")
    finish = _usable_date(found, "Finish Date")
    if start and finish and finish.date() < start.date():
        found.flag(
            "Finish Date",
            f"Finish Date ({_day(finish)}) is before Start Date ({_day(start)})",
        )


def _check_work_tracking(item: WorkItem, found: _Findings) -> None:
    triple = WorkTrackingTriple(
        original=to_number(item.fields.get(FIELD_KEYS["OriginalEstimate"])),
        remaining=to_number(item.fields.get(FIELD_KEYS["RemainingWork"])),
        completed=to_number(item.fields.get(FIELD_KEYS["CompletedWork"])),
    )
    orig, rem, comp = triple.original, triple.remaining, triple.completed

    for label, value in zip(WORK_TRACKING_LABELS, (orig, rem, comp)):
        if value < 0:
            found.flag(label, f"{label} ({_hours(value)}) cannot be negative")
    if triple.is_consistent:
        return

    exceeds = triple.remaining_exceeds_original
    if (orig > 0 or rem > 0 or comp > 0) and not triple.is_balanced:
        message = (
            f"Work tracking mismatch: Original Estimate ({_hours(orig)}) should equal "
            f"Remaining Work ({_hours(rem)}) + Completed Work ({_hours(comp)})"
        )
        if exceeds:
            message += "; Remaining Work exceeds Original Estimate"

        if orig > 0 and rem > 0:
            targets = ["Completed Work"]
        elif orig > 0 and comp > 0:
            targets = ["Remaining Work"]
        elif rem > 0 and comp > 0:
            targets = ["Original Estimate"]
        else:
            targets = ["Completed Work", "Remaining Work", "Original Estimate"]

        found.flag(targets[0], message)
        for label in targets[1:]:
            found.flag(label)
        if exceeds:
            found.flag("Remaining Work")
    elif exceeds:
        found.flag(
            "Remaining Work",
            f"Remaining Work ({_hours(rem)}) exceeds Original Estimate ({_hours(orig)})",
        )


def _check_remaining_exceeds(item: WorkItem, found: _Findings) -> None:
    orig_value = item.fields.get(FIELD_KEYS["OriginalEstimate"])
    rem_value = item.fields.get(FIELD_KEYS["RemainingWork"])
    if is_missing(orig_value, "Original Estimate") or is_missing(rem_value, "Remaining Work"):
        return
    orig, rem = to_number(orig_value), to_number(rem_value)
    if rem > orig + WORK_TOLERANCE:
        found.flag(
            "Remaining Work",
            f"Remaining Work ({_hours(rem)}) exceeds Original Estimate ({_hours(orig)})",
        )


def _run_consistency(
    item: WorkItem,
    rules: dict[WorkItemType, list[ValidationRule]] | None,
) -> _Findings:
    type_rules = rules_for(item.type, rules)
    found = _Findings()

    _check_dates(item, type_rules, found)
    if item.type == WorkItemType.USER_STORY:
        _check_story_timeline(found)
    elif item.type == WorkItemType.TASK:
        _check_task_timeline(found)

    if item.type == WorkItemType.TASK:
        _check_work_tracking(item, found)
    else:
        _check_remaining_exceeds(item, found)
    return found


def check_consistency(
    item: WorkItem,
    rules: dict[WorkItemType, list[ValidationRule]] | None = None,
) -> tuple[list[str], list[str]]:
    """Return ``(invalid_field_labels, invalid_field_messages)`` for *item*.

    Labels are deduplicated in first-seen order.  Messages follow the order
    the checks ran in; one message per distinct cause.
    """
    found = _run_consistency(item, rules)
    return found.labels, found.messages


# ---------------------------------------------------------------------------
# Combined result
# ---------------------------------------------------------------------------

def validate_work_item(
    item: WorkItem,
    rules: dict[WorkItemType, list[ValidationRule]] | None = None,
) -> ValidationResult:
    """Validate *item* and return missing, invalid and to-fix field labels.

    ``planned_start_date`` / ``planned_end_date`` carry the item's own
    plausible window dates (start/end for its type), so callers can build
    synthesis context without re-parsing.
    """
    missing = check_completeness(item, rules)
    found = _run_consistency(item, rules)

    fields_to_fix = list(missing)
    for label in found.labels:
        if label not in fields_to_fix:
            fields_to_fix.append(label)

    is_complete = not missing and not found.labels
    start_label, end_label = WINDOW_LABELS[item.type]
    return ValidationResult(
        missing_fields=missing,
        invalid_fields=found.messages,
        invalid_field_labels=found.labels,
        fields_to_fix=fields_to_fix,
        is_complete=is_complete,
        has_issues=not is_complete or found.warning is not None,
        timeline_warning=found.warning,
        planned_start_date=found.dates.get(start_label),
        planned_end_date=found.dates.get(end_label),
    )
