"""
Chat-completion client used to break work items down and review child tasks.

Talks to an OpenAI-compatible ``/chat/completions`` endpoint (Groq by
default).  The model is told to answer with bare JSON; replies are stripped
of Markdown code fences and validated against the pydantic models in
``models.py``.
"""

from __future__ import annotations

import json
import logging
import re

import requests
from pydantic import ValidationError

from .exceptions import LLMError, LLMResponseError
from .models import GeneratedItem, TaskEvaluation

logger = logging.getLogger(__name__)

GROQ_API_URL = "https://api.groq.com/openai/v1/chat/completions"
DEFAULT_MODEL = "llama-3.1-8b-instant"

_FENCE = re.compile(r"```(?:json)?\s*")


def strip_code_fences(content: str) -> str:
    """Remove Markdown code fences the model may wrap its JSON in."""
    return _FENCE.sub("", content).strip()


def parse_json_reply(content: str):
    """Parse a model reply as JSON, tolerating code fences."""
    try:
        return json.loads(strip_code_fences(content))
    except json.JSONDecodeError as e:
        raise LLMResponseError("AI returned invalid JSON. Please try again.") from e


def build_breakdown_prompt(
    work_item_text: str,
    experience_context: str,
    hours_for_ai: int,
    child_type: str = "Task",
) -> str:
    """Prompt asking for a JSON array of child items for *work_item_text*."""
    noun = "user stories" if child_type == "User Story" else "development tasks"
    return f"""You are an expert Agile project manager. Break down the following work item into detailed, actionable {noun}.

WORK ITEM:
{work_item_text}

DEVELOPER CONTEXT:
Work will be assigned to {experience_context}.

TIME CONSTRAINT:
- Maximum hours for all items: {hours_for_ai} hours
- Each item should be 1-6 hours

INSTRUCTIONS:
1. Break down into 2-5 specific, actionable items
2. Total hours MUST NOT exceed {hours_for_ai} hours
3. Focus on essential work only

RESPOND WITH ONLY A VALID JSON ARRAY:
[
  {{
    "title": "Clear title",
    "description": "What needs to be done and how",
    "hours": number,
    "priority": 1 | 2 | 3 | 4,
    "activity": "Development" | "Testing" | "Design" | "Documentation" | "Deployment" | "Requirements"
  }}
]"""


def build_evaluation_prompt(
    story_title: str,
    story_description: str,
    existing_tasks: list[dict],
    available_hours: float | None = None,
) -> str:
    """Prompt asking the model to review *existing_tasks* against the story."""
    tasks_json = json.dumps(existing_tasks, indent=2) if existing_tasks else "No tasks found"
    desc_text = f"\nDescription: {story_description}" if story_description else ""

    time_constraint = ""
    if available_hours:
        existing_hours = sum(t.get("estimate") or 0 for t in existing_tasks)
        remaining = max(0, available_hours - existing_hours)
        time_constraint = (
            "\n\nTIME CONSTRAINT:"
            f"\n- Total available hours: {available_hours:g}h"
            f"\n- Existing tasks total: {existing_hours:g}h"
            f"\n- Remaining hours for new tasks: {remaining:g}h"
            f"\n- NEW TASKS MUST FIT WITHIN {remaining:g} HOURS TOTAL. "
            "Do not suggest tasks if no time remains."
        )

    return f"""You are an expert Agile coach. Evaluate the tasks created for this User Story.

USER STORY:
Title: {story_title}{desc_text}{time_constraint}

EXISTING TASKS:
{tasks_json}

ANALYZE AND RESPOND WITH ONLY THIS JSON STRUCTURE:
{{
  "correct": [
    {{ "id": number, "title": "string", "reason": "why it's correct" }}
  ],
  "toUpdate": [
    {{ "id": number, "title": "string", "issue": "what's wrong", "suggestion": "how to fix" }}
  ],
  "toDelete": [
    {{ "id": number, "title": "string", "reason": "why to delete" }}
  ],
  "newTasks": [
    {{ "title": "string", "description": "string", "hours": number, "reason": "why needed" }}
  ],
  "summary": "Overall assessment in 1-2 sentences"
}}"""


class LLMClient:
    """Client for an OpenAI-compatible chat-completion API."""

    def __init__(self, api_key, model=DEFAULT_MODEL, api_url=GROQ_API_URL,
                 temperature=0.3, max_tokens=2000):
        self.api_key = api_key
        self.model = model
        self.api_url = api_url
        self.temperature = temperature
        self.max_tokens = max_tokens

    def complete(self, system: str, prompt: str) -> str:
        """Send one system + user message pair and return the reply text."""
        if not self.api_key:
            raise LLMError("No API key configured for the completion API.")

        response = requests.post(
            self.api_url,
            headers={"Authorization": f"Bearer {self.api_key}"},
            json={
                "model": self.model,
                "messages": [
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
                "temperature": self.temperature,
                "max_tokens": self.max_tokens,
            },
            timeout=60,
        )
        if response.status_code != 200:
            try:
                message = response.json().get("error", {}).get("message")
            except ValueError:
                message = None
            raise LLMError(message or f"API Error: {response.status_code}")

        try:
            return response.json()["choices"][0]["message"]["content"].strip()
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise LLMResponseError("Completion API returned an unexpected payload.") from e

    def generate_items(
        self,
        work_item_text: str,
        experience_context: str,
        hours_for_ai: int,
        child_type: str = "Task",
    ) -> list[GeneratedItem]:
        """Ask the model to decompose a work item into child items."""
        prompt = build_breakdown_prompt(work_item_text, experience_context, hours_for_ai, child_type)
        content = self.complete(
            "You output only valid JSON arrays. No markdown, no explanations.", prompt
        )
        data = parse_json_reply(content)
        if not isinstance(data, list):
            raise LLMResponseError("AI returned items in an unexpected shape.")
        try:
            return [GeneratedItem.model_validate(item) for item in data]
        except ValidationError as e:
            logger.warning(f"Breakdown reply did not match the item schema: {e}")
            raise LLMResponseError("AI returned items in an unexpected shape.") from e

    def evaluate_tasks(
        self,
        story_title: str,
        story_description: str,
        existing_tasks: list[dict],
        available_hours: float | None = None,
    ) -> TaskEvaluation:
        """Ask the model to review a story's existing child tasks."""
        prompt = build_evaluation_prompt(
            story_title, story_description, existing_tasks, available_hours
        )
        content = self.complete("You output only valid JSON. No markdown, no explanations.", prompt)
        data = parse_json_reply(content)
        try:
            return TaskEvaluation.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Evaluation reply did not match the evaluation schema: {e}")
            raise LLMResponseError("AI returned an evaluation in an unexpected shape.") from e
