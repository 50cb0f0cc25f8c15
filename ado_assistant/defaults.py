"""
Default value synthesis for incomplete or inconsistent work items.

Given the labels a validation flagged (``fields_to_fix``) and a
``SynthesisContext``, ``synthesize_defaults`` computes a replacement value
for every label it knows for the item's type and returns them as
``FieldUpdate`` objects in the order of ``rules.FIELD_MAPPINGS``.

Dates are derived from one another so the result passes validation again:
the planned end follows from story points (8 hours each, 6 productive hours
a day), the QA ready date sits two days before the end but never before the
start, and a Task's finish date follows from its original estimate.  The
Task work-tracking triple is resolved as a unit so that
``original == remaining + completed`` holds afterwards.
"""

from __future__ import annotations

import math
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Optional

from .models import (
    FieldUpdate,
    SynthesisContext,
    ValidationResult,
    WorkItem,
    WorkItemType,
    WorkTrackingTriple,
    WORK_TOLERANCE,
)
from .rules import FIELD_KEYS, FIELD_MAPPINGS, WINDOW_LABELS, WORK_TRACKING_LABELS
from .validator import ACTUAL_START_SLACK, parse_date, to_number


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

HOURS_PER_DAY = 6
HOURS_PER_STORY_POINT = 8
DEFAULT_STORY_WINDOW_DAYS = 7
TARGET_DATE_OFFSET_DAYS = 14
QA_READY_BUFFER_DAYS = 2
DEFAULT_TASK_HOURS = 4.0

CONSTANT_DEFAULTS: dict[str, Any] = {
    "Priority": 2,
    "Risk": "2 - Medium",
    "Effort": 8,
    "Business Value": 50,
    "Time Criticality": 50,
    "Story Points": 3,
    "Activity": "Development",
}

_COMPLEX_TITLE = re.compile(r"\b(complex|integrat\w*|migrat\w*|refactor\w*|architect\w*|redesign)\b", re.I)
_SIMPLE_TITLE = re.compile(r"\b(simple|minor|typo|small|quick|rename)\b", re.I)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def format_date(value: datetime) -> str:
    """Format *value* as the ISO-8601 UTC string Azure DevOps expects."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def days_for_hours(hours: float) -> int:
    """Whole days needed for *hours* of effort, counting the first day as day 0."""
    return max(math.ceil(hours / HOURS_PER_DAY) - 1, 0)


def _shift(value: datetime, days: float = 0, hours: Optional[float] = None) -> Optional[datetime]:
    """*value* moved by *days*, or by the working days *hours* take.

    Returns None when the result falls outside the representable date range.
    """
    try:
        if hours is not None:
            days = days_for_hours(hours)
        return value + timedelta(days=days)
    except (OverflowError, ValueError):
        return None


def estimate_hours_from_title(title: str) -> float:
    """Coarse effort guess for a Task nobody estimated.

    Titles hinting at complexity get 8 hours, trivial-sounding ones 2,
    everything else 4.
    """
    if title and _COMPLEX_TITLE.search(title):
        return 8.0
    if title and _SIMPLE_TITLE.search(title):
        return 2.0
    return DEFAULT_TASK_HOURS


def complete_work_tracking(
    triple: WorkTrackingTriple,
    title: str = "",
    estimator: Callable[[str], float] = estimate_hours_from_title,
) -> WorkTrackingTriple:
    """Return a triple satisfying ``original == remaining + completed``.

    The two known (non-zero) values are kept and the third computed,
    preferring Completed from (Original, Remaining), then Remaining from
    (Original, Completed), then Original from (Remaining, Completed).  With
    nothing known the estimator supplies the original estimate and all of
    it is remaining.  Negative values count as unknown.
    """
    orig, rem, comp = (max(v, 0.0) for v in (triple.original, triple.remaining, triple.completed))

    if orig > 0 and rem > 0 and rem <= orig:
        comp = orig - rem
    elif orig > 0 and comp > 0 and comp <= orig:
        rem = orig - comp
    elif rem > 0 and comp > 0:
        orig = rem + comp
    elif orig > 0 and comp <= 0:
        rem, comp = orig, 0.0
    elif rem > 0 or comp > 0:
        orig = rem + comp
    else:
        orig = float(estimator(title) or DEFAULT_TASK_HOURS)
        rem, comp = orig, 0.0

    return WorkTrackingTriple(
        original=round(orig, 2),
        remaining=round(rem, 2),
        completed=round(comp, 2),
    )


def _story_end(
    start: datetime,
    story_points: Optional[float],
    child_task_hours: Optional[float],
) -> Optional[datetime]:
    if story_points and story_points > 0:
        end = _shift(start, hours=story_points * HOURS_PER_STORY_POINT)
    elif child_task_hours and child_task_hours > 0:
        end = _shift(start, hours=child_task_hours)
    else:
        end = _shift(start, DEFAULT_STORY_WINDOW_DAYS)
    if end is not None and end.date() <= start.date():
        end = _shift(start, 1)
    return end


# ---------------------------------------------------------------------------
# Per-type synthesis
# ---------------------------------------------------------------------------

def _feature_values(start: datetime, now: datetime) -> dict[str, Any]:
    values = {"Start Date": format_date(start)}
    target = _shift(now, TARGET_DATE_OFFSET_DAYS)
    if target is not None:
        values["Target Date"] = format_date(target)
    return values


def _story_values(
    context: SynthesisContext,
    start: datetime,
    wanted: set[str],
) -> dict[str, Any]:
    if "Story Points" in wanted:
        points = CONSTANT_DEFAULTS["Story Points"]
    else:
        points = context.estimate

    end = parse_date(context.planned_end) if context.planned_end else None
    if end is None or "Planned End Date" in wanted:
        end = _story_end(start, points, context.child_task_hours)

    values = {
        "Planned Start Date": format_date(start),
        "Actual Start Date": format_date(start),
    }
    if end is None:
        return values

    qa_ready = _shift(end, -QA_READY_BUFFER_DAYS)
    if qa_ready is None or qa_ready.date() < start.date():
        qa_ready = start
    values.update({
        "Planned End Date": format_date(end),
        "QA Ready Date": format_date(qa_ready),
        "Actual End Date": format_date(end),
    })
    return values


def _task_values(
    context: SynthesisContext,
    start: datetime,
    wanted: set[str],
    estimator: Callable[[str], float],
) -> tuple[dict[str, Any], set[str]]:
    stored = context.triple
    resolved = complete_work_tracking(stored, context.title, estimator)
    values: dict[str, Any] = {
        "Start Date": format_date(start),
        "Original Estimate": resolved.original,
        "Remaining Work": resolved.remaining,
        "Completed Work": resolved.completed,
    }

    # Triple fields whose resolved value differs from the stored one are
    # written even when not flagged.
    extra: set[str] = set()
    if wanted & set(WORK_TRACKING_LABELS):
        pairs = {
            "Original Estimate": (stored.original, resolved.original),
            "Remaining Work": (stored.remaining, resolved.remaining),
            "Completed Work": (stored.completed, resolved.completed),
        }
        extra = {
            label for label, (before, after) in pairs.items()
            if abs(before - after) > WORK_TOLERANCE
        }

    hours = resolved.original if resolved.original > 0 else DEFAULT_TASK_HOURS
    finish = _shift(start, hours=hours)
    if finish is not None:
        values["Finish Date"] = format_date(finish)
    return values, extra


def _fallback_start(
    work_item_type: WorkItemType,
    context: SynthesisContext,
    wanted: set[str],
    now: datetime,
) -> datetime:
    """Start date to use when the context has none.

    ``now``, moved earlier when a known end or ``context.latest_start``
    requires it.
    """
    if work_item_type == WorkItemType.FEATURE:
        return now
    candidates = [now]
    end = parse_date(context.planned_end) if context.planned_end else None
    if end is not None and WINDOW_LABELS[work_item_type][1] not in wanted:
        if work_item_type == WorkItemType.USER_STORY:
            end = _shift(end, -1) or end
        candidates.append(end)
    latest = parse_date(context.latest_start) if context.latest_start else None
    if latest is not None:
        candidates.append(latest)
    return min(candidates)


def synthesize_defaults(
    fields_to_fix: Iterable[str],
    work_item_type: WorkItemType | str,
    context: Optional[SynthesisContext] = None,
    estimator: Callable[[str], float] = estimate_hours_from_title,
) -> list[FieldUpdate]:
    """Compute replacement values for the labels in *fields_to_fix*.

    Labels with no mapping for *work_item_type*, and labels for which no
    value can be computed, produce no entry.

    Args:
        fields_to_fix: Field labels from ``ValidationResult.fields_to_fix``.
        work_item_type: The item's type; decides the label mapping.
        context: Planned window, estimate, stored work triple, title, ``now``.
        estimator: Hours guess for a Task with no work tracking at all.

    Returns:
        ``FieldUpdate`` list ordered as ``FIELD_MAPPINGS[work_item_type]``.
    """
    try:
        work_item_type = WorkItemType(work_item_type)
    except ValueError:
        return []
    context = context or SynthesisContext()
    wanted = set(fields_to_fix)
    mapping = FIELD_MAPPINGS[work_item_type]
    if not wanted & set(mapping):
        return []

    now = parse_date(context.now) if context.now else datetime.now(timezone.utc)
    start = parse_date(context.planned_start) if context.planned_start else None
    if start is None:
        start = _fallback_start(work_item_type, context, wanted, now)

    values: dict[str, Any] = dict(CONSTANT_DEFAULTS)
    extra: set[str] = set()
    if work_item_type == WorkItemType.FEATURE:
        values.update(_feature_values(start, now))
    elif work_item_type == WorkItemType.USER_STORY:
        values.update(_story_values(context, start, wanted))
    else:
        task_values, extra = _task_values(context, start, wanted, estimator)
        values.update(task_values)

    return [
        FieldUpdate(field_key=field_key, value=values[label])
        for label, field_key in mapping.items()
        if (label in wanted or label in extra) and label in values
    ]


# ---------------------------------------------------------------------------
# Context from a validated item
# ---------------------------------------------------------------------------

_ESTIMATE_FIELD: dict[WorkItemType, str] = {
    WorkItemType.FEATURE: FIELD_KEYS["Effort"],
    WorkItemType.USER_STORY: FIELD_KEYS["StoryPoints"],
    WorkItemType.TASK: FIELD_KEYS["OriginalEstimate"],
}


def _latest_start(item: WorkItem, to_fix: set[str]) -> Optional[datetime]:
    """Latest start a User Story's stored QA and actual dates allow."""
    if item.type != WorkItemType.USER_STORY:
        return None
    bounds = []
    if "QA Ready Date" not in to_fix:
        qa_ready = parse_date(item.get(FIELD_KEYS["QAReadyDate"]))
        if qa_ready is not None:
            bounds.append(qa_ready)
    if "Actual Start Date" not in to_fix:
        actual_start = parse_date(item.get(FIELD_KEYS["ActualStartDate"]))
        if actual_start is not None:
            bounds.append(_shift(actual_start, ACTUAL_START_SLACK.days) or actual_start)
    return min(bounds) if bounds else None


def build_synthesis_context(
    item: WorkItem,
    validation: ValidationResult,
    child_task_hours: Optional[float] = None,
    now: Optional[datetime] = None,
) -> SynthesisContext:
    """Build the synthesis context for *item* from its validation result.

    Window dates that are themselves being fixed are left out, so the
    synthesizer recomputes them instead of reusing a bad value.
    """
    to_fix = set(validation.fields_to_fix)
    start_label, end_label = WINDOW_LABELS[item.type]
    estimate = to_number(item.get(_ESTIMATE_FIELD[item.type])) or None
    return SynthesisContext(
        planned_start=None if start_label in to_fix else validation.planned_start_date,
        planned_end=None if end_label in to_fix else validation.planned_end_date,
        estimate=estimate,
        triple=WorkTrackingTriple(
            original=to_number(item.get(FIELD_KEYS["OriginalEstimate"])),
            remaining=to_number(item.get(FIELD_KEYS["RemainingWork"])),
            completed=to_number(item.get(FIELD_KEYS["CompletedWork"])),
        ),
        title=item.title,
        child_task_hours=child_task_hours,
        now=now,
        latest_start=_latest_start(item, to_fix),
    )
