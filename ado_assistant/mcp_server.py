"""
MCP Server for the Azure DevOps AI work-item assistant.

Exposes child-item generation, child-task evaluation and the field
insights / auto-fix checks as MCP tools so that any MCP-compatible client
(VS Code Copilot, Claude Desktop, etc.) can drive them conversationally.

Usage:
    # stdio transport (default, for VS Code / Claude Desktop)
    python -m ado_assistant.mcp_server

    # SSE transport (for browser / remote clients)
    python -m ado_assistant.mcp_server --transport sse --port 8000

Environment variables (or .env file):
    AZURE_DEVOPS_ORG_NAME
    AZURE_DEVOPS_PROJECT_NAME
    AZURE_DEVOPS_PERSONAL_ACCESS_TOKEN
    AZURE_DEVOPS_API_VERSION  (default: 7.1)
    GROQ_API_KEY
    GROQ_MODEL                (default: llama-3.1-8b-instant)
"""

from __future__ import annotations

import json
import os
from typing import Optional

from dotenv import load_dotenv
from mcp.server.fastmcp import FastMCP

from .devops_client import DevOpsClient
from .insights_service import (
    auto_fix_work_item as _auto_fix_work_item,
    auto_fix_work_items as _auto_fix_work_items,
    item_insight,
    scan_assigned_work_items,
)
from .llm_client import DEFAULT_MODEL, LLMClient
from .models import GeneratedItem, SuggestedTask, WorkItem
from .task_service import (
    create_child_items as _create_child_items,
    create_suggested_items as _create_suggested_items,
    evaluation_summary,
    evaluate_children,
    fetch_parent,
    generate_breakdown,
    selection_totals,
)

# ---------------------------------------------------------------------------
# Bootstrap
# ---------------------------------------------------------------------------

load_dotenv()

ORG = os.getenv("AZURE_DEVOPS_ORG_NAME", "")
PROJECT = os.getenv("AZURE_DEVOPS_PROJECT_NAME", "")
PAT = os.getenv("AZURE_DEVOPS_PERSONAL_ACCESS_TOKEN", "")
API_VERSION = os.getenv("AZURE_DEVOPS_API_VERSION", "7.1")
GROQ_API_KEY = os.getenv("GROQ_API_KEY", "")
GROQ_MODEL = os.getenv("GROQ_MODEL", DEFAULT_MODEL)

mcp = FastMCP(
    "Azure DevOps AI Work Item Assistant",
    dependencies=["requests", "python-dotenv", "pydantic"],
)

# Singleton clients
_client: DevOpsClient | None = None
_llm: LLMClient | None = None


def _get_client() -> DevOpsClient:
    """Return a shared DevOpsClient configured from env vars."""
    global _client
    if _client is None:
        _client = DevOpsClient(ORG, PROJECT, PAT, API_VERSION)
    return _client


def _get_llm() -> LLMClient:
    """Return a shared LLMClient configured from env vars."""
    global _llm
    if _llm is None:
        _llm = LLMClient(GROQ_API_KEY, GROQ_MODEL)
    return _llm


def _dump(data) -> str:
    return json.dumps(data, indent=2, default=str)


def _insight_json(insight: dict) -> dict:
    return {**insight, "validation": insight["validation"].model_dump(mode="json")}


# ═══════════════════════════════════════════════════════════════════════════
# MCP TOOLS
# ═══════════════════════════════════════════════════════════════════════════


@mcp.tool()
def validate_connection() -> str:
    """Test the Azure DevOps connection and return status."""
    client = _get_client()
    ok, message = client.validate_connection()
    return json.dumps({"connected": ok, "message": message})


@mcp.tool()
def get_work_item(work_item_id: int) -> str:
    """
    Fetch a work item and return its title, plain-text description,
    acceptance criteria, iteration, area, assignee and planned dates.

    Args:
        work_item_id: The Azure DevOps work item ID.
    """
    try:
        return _dump(fetch_parent(_get_client(), work_item_id))
    except Exception as e:
        return json.dumps({"status": "error", "message": str(e)})


@mcp.tool()
def generate_child_items(
    title: str,
    description: str = "",
    work_item_id: Optional[int] = None,
    level: str = "mid",
    days: int = 5,
    child_type: str = "Task",
    force: bool = False,
) -> str:
    """
    Ask the AI to break a work item down into child Tasks or User Stories.

    Estimates are scaled to the developer's experience level and capped to
    the days available (6 productive hours per day).  Nothing is created;
    pass the returned items (edited or deselected as needed) to
    ``create_child_items``.

    Args:
        title: Work item title.
        description: Description and acceptance criteria as plain text.
        work_item_id: Parent ID; generation is refused if it already has children.
        level: "fresher", "junior", "mid" or "senior".
        days: Days available to complete the work.
        child_type: "Task" or "User Story".
        force: Generate even if the parent already has children.
    """
    try:
        items = generate_breakdown(
            _get_client(), _get_llm(), title, description,
            parent_id=work_item_id, level=level, days=days,
            child_type=child_type, force=force,
        )
        return _dump({
            "status": "generated",
            "items": [item.model_dump() for item in items],
            "totals": selection_totals(items),
        })
    except Exception as e:
        return json.dumps({"status": "error", "message": str(e)})


@mcp.tool()
def create_child_items(
    items: list[dict],
    parent_id: Optional[int] = None,
    child_type: str = "Task",
) -> str:
    """
    Create the selected generated items in Azure DevOps under *parent_id*.

    Iteration path, area path and assignee are copied from the parent.

    Args:
        items: Items as returned by ``generate_child_items`` (``selected``
               false items are skipped).
        parent_id: Parent work item ID.
        child_type: "Task" or "User Story".
    """
    try:
        generated = [GeneratedItem.model_validate(i) for i in items]
        result = _create_child_items(_get_client(), generated, parent_id, child_type)
        return _dump({"status": "completed", **result})
    except Exception as e:
        return json.dumps({"status": "error", "message": str(e)})


@mcp.tool()
def evaluate_child_items(
    story_id: int,
    title: Optional[str] = None,
    description: Optional[str] = None,
) -> str:
    """
    Ask the AI to review a User Story's existing child tasks: which are
    correct, which need updating or deleting, and which are missing.

    Args:
        story_id: The User Story ID.
        title: Override for the story title.
        description: Override for the story description.
    """
    try:
        result = evaluate_children(_get_client(), _get_llm(), story_id, title, description)
        evaluation = result["evaluation"]
        return _dump({
            "status": "evaluated",
            "evaluation": evaluation.model_dump(by_alias=True),
            "counts": evaluation_summary(evaluation),
            "existing_tasks": result["existing_tasks"],
            "available_hours": result["available_hours"],
        })
    except Exception as e:
        return json.dumps({"status": "error", "message": str(e)})


@mcp.tool()
def create_suggested_items(story_id: int, suggestions: list[dict]) -> str:
    """
    Create the new tasks suggested by ``evaluate_child_items``.

    Args:
        story_id: The User Story the tasks belong to.
        suggestions: Entries of the evaluation's ``newTasks`` list.
    """
    try:
        tasks = [SuggestedTask.model_validate(s) for s in suggestions]
        result = _create_suggested_items(_get_client(), story_id, tasks)
        return _dump({"status": "completed", **result})
    except Exception as e:
        return json.dumps({"status": "error", "message": str(e)})


@mcp.tool()
def analyze_insights(user_name: str, all_projects: bool = False) -> str:
    """
    Validate every open Feature, User Story and Task assigned to a user:
    missing required fields, implausible dates and inconsistent work hours.

    Args:
        user_name: Display name or e-mail fragment of the assignee.
        all_projects: Scan the whole organization instead of one project.
    """
    try:
        insights = scan_assigned_work_items(_get_client(), user_name, all_projects)
        result = {
            category: [_insight_json(i) for i in insights[category]]
            for category in ("features", "stories", "tasks")
        }
        result["summary"] = insights["summary"]
        return _dump(result)
    except Exception as e:
        return json.dumps({"status": "error", "message": str(e)})


@mcp.tool()
def validate_work_item_fields(work_item_id: int) -> str:
    """
    Validate a single work item's required fields and date / work-hour
    consistency.

    Args:
        work_item_id: The Azure DevOps work item ID.
    """
    try:
        raw = _get_client().get_work_item(work_item_id)
        if raw is None:
            return json.dumps({"error": f"Work item {work_item_id} not found."})
        return _dump(_insight_json(item_insight(WorkItem.from_api(raw))))
    except Exception as e:
        return json.dumps({"status": "error", "message": str(e)})


@mcp.tool()
def auto_fix_work_item(work_item_id: int) -> str:
    """
    Fill in defaults for a work item's missing or inconsistent fields,
    apply them, and return the re-validated result.

    Args:
        work_item_id: The Azure DevOps work item ID.
    """
    try:
        result = _auto_fix_work_item(_get_client(), work_item_id)
        return _dump({
            **result,
            "updates": [u.model_dump() for u in result["updates"]],
            "validation": result["validation"].model_dump(mode="json"),
        })
    except Exception as e:
        return json.dumps({"status": "error", "message": str(e)})


@mcp.tool()
def auto_fix_work_items(work_item_ids: list[int]) -> str:
    """
    Auto-fix several work items one at a time.  A failure on one item does
    not stop the others; counts of updated, failed and skipped items are
    returned.

    Args:
        work_item_ids: The work item IDs to fix.
    """
    try:
        return _dump(_auto_fix_work_items(_get_client(), work_item_ids))
    except Exception as e:
        return json.dumps({"status": "error", "message": str(e)})


# ═══════════════════════════════════════════════════════════════════════════
# Entry point
# ═══════════════════════════════════════════════════════════════════════════

def main():
    import argparse

    parser = argparse.ArgumentParser(description="Azure DevOps AI Work Item Assistant MCP Server")
    parser.add_argument(
        "--transport",
        choices=["stdio", "sse"],
        default="stdio",
        help="MCP transport (default: stdio)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port for SSE transport (default: 8000)",
    )
    args = parser.parse_args()

    if args.transport == "sse":
        mcp.settings.port = args.port
        mcp.run(transport="sse")
    else:
        mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
