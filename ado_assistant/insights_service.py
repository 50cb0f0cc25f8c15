"""
Insights: completeness and consistency of a user's assigned work items.

Scans the open Features, User Stories and Tasks assigned to a user,
validates each one, and can fill in defaults for whatever is missing or
inconsistent.  Auto-fix works item by item: a failure on one item is
counted and the batch moves on.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Optional

from pydantic import ValidationError

from .defaults import build_synthesis_context, synthesize_defaults
from .devops_client import DevOpsClient
from .exceptions import WorkItemNotFoundError
from .models import FieldUpdate, ValidationResult, WorkItem, WorkItemType
from .rules import FIELD_KEYS
from .validator import to_number, validate_work_item

logger = logging.getLogger(__name__)


FIELD_SUGGESTIONS: dict[str, str] = {
    "Priority": "Set priority based on business impact (1=Critical, 2=High, 3=Medium, 4=Low)",
    "Risk": "Assess risk level considering technical complexity and dependencies",
    "Effort": "Estimate effort based on scope and complexity",
    "Business Value": "Rate business value from 1-100 based on customer impact",
    "Time Criticality": "Rate urgency from 1-100 based on deadline requirements",
    "Start Date": "Set start date based on sprint planning",
    "Target Date": "Set target date allowing buffer for testing and review",
    "Story Points": "Estimate complexity using Fibonacci sequence (1,2,3,5,8,13)",
    "QA Ready Date": "Set QA date at least 2 days before the planned end",
    "Planned Start Date": "Set the planned start from sprint planning",
    "Planned End Date": "Derive the planned end from the story's task estimates",
    "Actual Start Date": "Record when work actually started",
    "Actual End Date": "Record when work actually finished",
    "Original Estimate": "Set realistic hours based on task complexity",
    "Remaining Work": "Update remaining hours as work progresses",
    "Completed Work": "Log completed hours daily",
    "Activity": "Categorize as Development, Testing, Design, etc.",
    "Finish Date": "Set finish date accounting for dependencies",
}

_CATEGORIES = {
    WorkItemType.FEATURE: "features",
    WorkItemType.USER_STORY: "stories",
    WorkItemType.TASK: "tasks",
}


def generate_suggestion(fields_to_fix: list[str]) -> str:
    """Two short hints for the first fields that need attention."""
    if not fields_to_fix:
        return "All required fields are filled!"
    hints = [FIELD_SUGGESTIONS.get(label, f"Fill in {label}") for label in fields_to_fix[:2]]
    return ". ".join(hints)


def _to_work_item(raw: dict) -> Optional[WorkItem]:
    try:
        return WorkItem.from_api(raw)
    except ValidationError:
        return None


def item_insight(item: WorkItem) -> dict:
    """Validation result and suggestion for one work item."""
    validation = validate_work_item(item)
    return {
        "id": item.id,
        "title": item.title,
        "type": item.type.value,
        "state": item.state,
        "validation": validation,
        "suggestion": generate_suggestion(validation.fields_to_fix),
    }


def scan_assigned_work_items(
    client: DevOpsClient,
    user_name: str,
    all_projects: bool = False,
) -> dict:
    """
    Validate every open Feature, User Story and Task assigned to *user_name*.

    Returns:
        Dict with ``features``, ``stories``, ``tasks`` insight lists and a
        ``summary`` of ``complete`` / ``total`` per category.
    """
    if not user_name.strip():
        raise ValueError("Please enter a user name.")

    ids = client.find_assigned_ids(user_name, all_projects=all_projects)
    insights: dict = {"features": [], "stories": [], "tasks": []}
    if not ids:
        insights["summary"] = _summary(insights)
        return insights

    for raw in client.get_work_items_batch(ids):
        item = _to_work_item(raw)
        if item is None:
            continue
        insights[_CATEGORIES[item.type]].append(item_insight(item))

    insights["summary"] = _summary(insights)
    logger.info(
        f"Validated {sum(s['total'] for s in insights['summary'].values())} "
        f"work item(s) assigned to '{user_name}'"
    )
    return insights


def _summary(insights: dict) -> dict:
    return {
        category: {
            "complete": sum(1 for i in insights[category] if i["validation"].is_complete),
            "total": len(insights[category]),
        }
        for category in ("features", "stories", "tasks")
    }


# ---------------------------------------------------------------------------
# Auto-fix
# ---------------------------------------------------------------------------

def child_task_hours(client: DevOpsClient, story_id: int) -> Optional[float]:
    """Total original estimate of a story's child Tasks, or None without any."""
    tasks = client.get_child_work_items(story_id, "Task")
    total = sum(to_number((t.get("fields") or {}).get(FIELD_KEYS["OriginalEstimate"])) for t in tasks)
    return total or None


def plan_fixes(
    item: WorkItem,
    validation: Optional[ValidationResult] = None,
    child_hours: Optional[float] = None,
    now: Optional[datetime] = None,
) -> list[FieldUpdate]:
    """Field updates that make *item* complete and consistent."""
    validation = validation or validate_work_item(item)
    if not validation.fields_to_fix:
        return []
    context = build_synthesis_context(item, validation, child_task_hours=child_hours, now=now)
    return synthesize_defaults(validation.fields_to_fix, item.type, context)


def auto_fix_work_item(
    client: DevOpsClient,
    work_item_id: int,
    now: Optional[datetime] = None,
) -> dict:
    """
    Fill defaults into one work item and re-validate it.

    Returns:
        Dict with ``id``, ``status`` ("updated", "complete" or "skipped"),
        the applied ``updates`` and the ``validation`` after the update.

    Raises:
        WorkItemNotFoundError: If the item does not exist or is not a
            Feature, User Story or Task.
        DevOpsApiError: If the update is rejected.
    """
    raw = client.get_work_item(work_item_id)
    item = _to_work_item(raw) if raw else None
    if item is None:
        raise WorkItemNotFoundError(f"Work item {work_item_id} not found or not validatable.")

    validation = validate_work_item(item)
    if validation.is_complete:
        return {"id": work_item_id, "status": "complete", "updates": [], "validation": validation}

    child_hours = None
    if item.type == WorkItemType.USER_STORY:
        child_hours = child_task_hours(client, work_item_id)

    updates = plan_fixes(item, validation, child_hours, now)
    if not updates:
        return {"id": work_item_id, "status": "skipped", "updates": [], "validation": validation}

    client.update_fields(work_item_id, updates)
    refreshed = _to_work_item(client.get_work_item(work_item_id) or raw) or item
    return {
        "id": work_item_id,
        "status": "updated",
        "updates": updates,
        "validation": validate_work_item(refreshed),
    }


def auto_fix_work_items(
    client: DevOpsClient,
    work_item_ids: Iterable[int],
    now: Optional[datetime] = None,
) -> dict:
    """
    Auto-fix several work items one at a time.

    Returns:
        Dict with ``updated``, ``failed``, ``skipped`` counts and ``details``.
    """
    counts = {"updated": 0, "failed": 0, "skipped": 0}
    details = []
    for work_item_id in work_item_ids:
        try:
            result = auto_fix_work_item(client, work_item_id, now)
        except Exception as e:
            logger.warning(f"Auto-fix failed for work item {work_item_id}: {e}")
            counts["failed"] += 1
            details.append({"id": work_item_id, "status": "failed", "message": str(e)})
            continue

        if result["status"] == "updated":
            counts["updated"] += 1
        else:
            counts["skipped"] += 1
        details.append({
            "id": work_item_id,
            "status": result["status"],
            "fields": [u.field_key for u in result["updates"]],
            "is_complete": result["validation"].is_complete,
        })

    logger.info(
        f"Auto-fix finished: {counts['updated']} updated, "
        f"{counts['failed']} failed, {counts['skipped']} skipped"
    )
    return {**counts, "details": details}
