"""
Breakdown and evaluation of a work item's children.

Covers the "create" and "evaluate" halves of the assistant:

* fetch a parent work item and turn its rich-text fields into a prompt,
* ask the completion API for child items sized to the developer's
  experience level and the days available,
* create the selected items under the parent (inheriting iteration, area
  and assignee),
* review existing child tasks and create the tasks the review suggests.

Bulk creates never stop at the first failure; every item is attempted and
counted as created or failed.
"""

from __future__ import annotations

import html
import logging
import math
import re

from .devops_client import DevOpsClient
from .exceptions import ExistingChildItemsError, WorkItemNotFoundError
from .llm_client import LLMClient
from .models import DateWindow, GeneratedItem, SuggestedTask, TaskEvaluation, build_work_item_data
from .rules import (
    ACCEPTANCE_CRITERIA_FIELD,
    AREA_PATH_FIELD,
    ASSIGNED_TO_FIELD,
    DESCRIPTION_FIELD,
    FIELD_KEYS,
    ITERATION_PATH_FIELD,
    STATE_FIELD,
    TITLE_FIELD,
    TYPE_FIELD,
)
from .validator import parse_date

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

PRODUCTIVE_HOURS_PER_DAY = 6
HOURS_PER_STORY_POINT = 8
DEFAULT_SUGGESTED_HOURS = 4

EXPERIENCE_LEVELS: dict[str, dict] = {
    "fresher": {
        "multiplier": 2.0,
        "prompt_context": (
            "a fresher developer (0-1 years experience) who is still learning the "
            "technology stack and needs detailed guidance, extra time for research, "
            "and frequent code reviews"
        ),
    },
    "junior": {
        "multiplier": 1.5,
        "prompt_context": (
            "a junior developer (1-2 years experience) who needs some guidance, may "
            "need to look up documentation, and requires code review time"
        ),
    },
    "mid": {
        "multiplier": 1.0,
        "prompt_context": (
            "a mid-level developer (2-5 years experience) who works independently "
            "and has good knowledge of the tech stack"
        ),
    },
    "senior": {
        "multiplier": 0.75,
        "prompt_context": (
            "a senior developer (5+ years experience) who is an expert, works very "
            "efficiently, and can implement complex features quickly"
        ),
    },
}


# ---------------------------------------------------------------------------
# Parent work item
# ---------------------------------------------------------------------------

def clean_html(text: str) -> str:
    """Strip HTML tags and entities from Azure DevOps rich text fields."""
    if not text:
        return ""
    text = re.sub(r"<div>", "\n", text)
    text = re.sub(r"</div>|</p>|</li>", "\n", text)
    text = re.sub(r"<br\s*/?>", "\n", text)
    text = re.sub(r"<[^>]+>", "", text)
    text = html.unescape(text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def _assignee_name(assigned_to) -> str | None:
    if isinstance(assigned_to, dict):
        return assigned_to.get("uniqueName") or assigned_to.get("displayName")
    return assigned_to or None


def fetch_parent(client: DevOpsClient, work_item_id: int) -> dict:
    """
    Fetch a work item and normalise what child creation and prompts need.

    Raises:
        WorkItemNotFoundError: If the work item does not exist.
    """
    raw = client.get_work_item(work_item_id)
    if raw is None:
        raise WorkItemNotFoundError(f"Work item {work_item_id} not found.")
    f = raw.get("fields") or {}
    return {
        "id": raw["id"],
        "type": f.get(TYPE_FIELD, ""),
        "title": f.get(TITLE_FIELD, ""),
        "description": clean_html(f.get(DESCRIPTION_FIELD, "")),
        "acceptance_criteria": clean_html(f.get(ACCEPTANCE_CRITERIA_FIELD, "")),
        "iteration_path": f.get(ITERATION_PATH_FIELD) or None,
        "area_path": f.get(AREA_PATH_FIELD) or None,
        "assigned_to": _assignee_name(f.get(ASSIGNED_TO_FIELD)),
        "planned_start": parse_date(f.get(FIELD_KEYS["StartDate"])),
        "planned_end": parse_date(f.get(FIELD_KEYS["FinishDate"])),
    }


def work_item_text(title: str, description: str = "", acceptance_criteria: str = "") -> str:
    """Render a work item as the plain text handed to the model."""
    text = f"Title: {title}"
    if description:
        text += f"\n\n{description}"
    if acceptance_criteria:
        text += f"\n\nAcceptance Criteria:\n{acceptance_criteria}"
    return text


# ---------------------------------------------------------------------------
# Breakdown
# ---------------------------------------------------------------------------

def hours_budget(days: int, level: str) -> tuple[int, int]:
    """Return ``(total_hours_available, hours_for_ai)`` for *days* at *level*.

    The model plans for a mid-level developer; its budget is shrunk by the
    level's multiplier so the scaled-back estimates still fit the days.
    """
    multiplier = EXPERIENCE_LEVELS[level]["multiplier"]
    total = days * PRODUCTIVE_HOURS_PER_DAY
    return total, math.floor(total / multiplier)


def generate_breakdown(
    client: DevOpsClient,
    llm: LLMClient,
    title: str,
    description: str = "",
    parent_id: int | None = None,
    level: str = "mid",
    days: int = 5,
    child_type: str = "Task",
    force: bool = False,
) -> list[GeneratedItem]:
    """
    Ask the model for child items of a work item.

    Args:
        client: DevOps client, used to look for existing children.
        llm: Completion client.
        title: Parent title.
        description: Parent description (plain text, acceptance criteria included).
        parent_id: Parent work item ID; enables the existing-children check.
        level: Experience level key in ``EXPERIENCE_LEVELS``.
        days: Days available to finish the work.
        child_type: "Task" or "User Story".
        force: Generate even if the parent already has children.

    Returns:
        Numbered, selected ``GeneratedItem`` list with experience-adjusted hours.

    Raises:
        ExistingChildItemsError: The parent has children and *force* is False.
        ValueError: Unknown experience level or empty title.
    """
    if level not in EXPERIENCE_LEVELS:
        raise ValueError(f"Unknown experience level: {level}")
    if not title.strip():
        raise ValueError("Please enter or fetch a work item first.")

    if parent_id and not force:
        existing = client.get_child_work_items(parent_id, child_type)
        if existing:
            raise ExistingChildItemsError(parent_id, len(existing))

    multiplier = EXPERIENCE_LEVELS[level]["multiplier"]
    _, hours_for_ai = hours_budget(days, level)
    proposed = llm.generate_items(
        work_item_text(title, description),
        EXPERIENCE_LEVELS[level]["prompt_context"],
        hours_for_ai,
        child_type,
    )

    items = [
        item.model_copy(update={
            "id": index,
            "hours": round(item.hours * multiplier, 1),
            "original_hours": item.hours,
            "selected": True,
        })
        for index, item in enumerate(proposed, start=1)
    ]
    logger.info(f"Generated {len(items)} {child_type} item(s) for '{title}'")
    return items


def selection_totals(items: list[GeneratedItem]) -> dict:
    """Count, hours and working days of the selected items."""
    selected = [item for item in items if item.selected]
    total_hours = round(sum(item.hours for item in selected), 1)
    return {
        "selected": len(selected),
        "total_hours": total_hours,
        "days": math.ceil(total_hours / PRODUCTIVE_HOURS_PER_DAY),
    }


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------

def _create_and_track(client, wi_type, data, parent_id=None):
    """
    Create a work item, never raising.

    Returns a result dict with keys: type, title, status, message, id.
    """
    title = data.get("title", "")
    try:
        result = client.create(wi_type, build_work_item_data(wi_type, data), parent_id)
        wi_id = result.get("id")
        return {"type": wi_type, "title": title, "status": "created",
                "message": f"ID: {wi_id}", "id": wi_id}
    except Exception as e:
        logger.warning(f"Failed to create {wi_type} '{title}': {e}")
        return {"type": wi_type, "title": title, "status": "error",
                "message": str(e), "id": None}


def _summarise(results: list[dict]) -> dict:
    created = sum(1 for r in results if r["status"] == "created")
    return {"created": created, "failed": len(results) - created, "results": results}


def _inherited(parent: dict | None) -> dict:
    if not parent:
        return {}
    return {
        key: parent[key]
        for key in ("iteration_path", "area_path", "assigned_to")
        if parent.get(key)
    }


def child_item_data(item: GeneratedItem, child_type: str, parent: dict | None = None) -> dict:
    """Create-data dict for a generated child item."""
    data = {
        "title": item.title,
        "description": item.description,
        "priority": item.priority,
        **_inherited(parent),
    }
    if child_type == "User Story":
        data["story_points"] = max(1, math.ceil(item.hours / HOURS_PER_STORY_POINT))
    else:
        data["estimate"] = item.hours
        data["activity"] = item.activity
    return data


def create_child_items(
    client: DevOpsClient,
    items: list[GeneratedItem],
    parent_id: int | None = None,
    child_type: str = "Task",
) -> dict:
    """
    Create every selected item under *parent_id*, one at a time.

    Returns:
        Dict with ``created``, ``failed`` counts and per-item ``results``.
    """
    selected = [item for item in items if item.selected]
    if not selected:
        raise ValueError("No items selected.")

    parent = fetch_parent(client, parent_id) if parent_id else None
    results = [
        _create_and_track(client, child_type, child_item_data(item, child_type, parent), parent_id)
        for item in selected
    ]
    summary = _summarise(results)
    logger.info(f"Created {summary['created']} {child_type} item(s), {summary['failed']} failed")
    return summary


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------

def fetch_child_tasks(client: DevOpsClient, story_id: int) -> list[dict]:
    """Child Tasks of a story, reduced to what the evaluation prompt needs."""
    tasks = []
    for raw in client.get_child_work_items(story_id, "Task"):
        f = raw.get("fields") or {}
        tasks.append({
            "id": raw["id"],
            "title": f.get(TITLE_FIELD, ""),
            "description": clean_html(f.get(DESCRIPTION_FIELD, "")),
            "estimate": f.get(FIELD_KEYS["OriginalEstimate"]) or 0,
            "activity": f.get(FIELD_KEYS["Activity"]) or "",
            "state": f.get(STATE_FIELD, ""),
        })
    return tasks


def available_hours(parent: dict) -> int | None:
    """Productive hours in the parent's planned window, or None without one."""
    window = DateWindow(planned_start=parent.get("planned_start"), planned_end=parent.get("planned_end"))
    if not window.is_complete:
        return None
    return window.days * PRODUCTIVE_HOURS_PER_DAY


def evaluate_children(
    client: DevOpsClient,
    llm: LLMClient,
    story_id: int,
    title: str | None = None,
    description: str | None = None,
) -> dict:
    """
    Review a story's existing child tasks with the model.

    *title* / *description* override the fetched story text.

    Returns:
        Dict with ``evaluation`` (``TaskEvaluation``), ``existing_tasks``
        and ``available_hours``.
    """
    story = fetch_parent(client, story_id)
    title = title or story["title"]
    if description is None:
        description = "\n\n".join(p for p in (story["description"], story["acceptance_criteria"]) if p)

    tasks = fetch_child_tasks(client, story_id)
    hours = available_hours(story)
    evaluation = llm.evaluate_tasks(title, description, tasks, hours)
    return {"evaluation": evaluation, "existing_tasks": tasks, "available_hours": hours}


def create_suggested_items(
    client: DevOpsClient,
    story_id: int,
    suggestions: list[SuggestedTask],
) -> dict:
    """
    Create the tasks an evaluation suggested under the story.

    Returns:
        Dict with ``created``, ``failed`` counts and per-item ``results``.
    """
    if not suggestions:
        raise ValueError("No tasks to create.")

    story = fetch_parent(client, story_id)
    results = []
    for task in suggestions:
        data = {
            "title": task.title,
            "description": task.description,
            "estimate": task.hours or DEFAULT_SUGGESTED_HOURS,
            "priority": 2,
            "activity": "Development",
            **_inherited(story),
        }
        results.append(_create_and_track(client, "Task", data, story_id))
    return _summarise(results)


def evaluation_summary(evaluation: TaskEvaluation) -> dict:
    """Counts per evaluation bucket."""
    return {
        "correct": len(evaluation.correct),
        "to_update": len(evaluation.to_update),
        "to_delete": len(evaluation.to_delete),
        "new_tasks": len(evaluation.new_tasks),
    }
