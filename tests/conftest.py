"""
Shared test configuration.

Clears Azure DevOps and completion-API credentials from the environment so
that all tests use the in-memory DevOpsClient backend and never reach the
network.  This runs once per session, before any test module is imported.
"""

import os
import sys
from datetime import datetime, timezone

import pytest

# Ensure ado_assistant is importable from all test files
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

# ---------------------------------------------------------------------------
# Strip credentials from the process environment so that load_dotenv() in
# mcp_server.py cannot inject them.  Setting the vars to empty strings means
# load_dotenv(override=False), the default, sees them as already set.
# ---------------------------------------------------------------------------
_CREDENTIAL_VARS = [
    "AZURE_DEVOPS_ORG_NAME",
    "AZURE_DEVOPS_PROJECT_NAME",
    "AZURE_DEVOPS_PERSONAL_ACCESS_TOKEN",
    "GROQ_API_KEY",
]

for var in _CREDENTIAL_VARS:
    os.environ[var] = ""


FIXED_NOW = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    """A fixed 'current time' so synthesized dates are deterministic."""
    return FIXED_NOW


class FakeLLM:
    """Stand-in for LLMClient that returns canned replies and records calls."""

    def __init__(self, items=None, evaluation=None):
        self.items = items or []
        self.evaluation = evaluation
        self.calls = []

    def generate_items(self, work_item_text, experience_context, hours_for_ai, child_type="Task"):
        self.calls.append(("generate_items", work_item_text, experience_context, hours_for_ai, child_type))
        return list(self.items)

    def evaluate_tasks(self, story_title, story_description, existing_tasks, available_hours=None):
        self.calls.append(("evaluate_tasks", story_title, story_description, existing_tasks, available_hours))
        return self.evaluation


@pytest.fixture
def fake_llm_factory():
    return FakeLLM
