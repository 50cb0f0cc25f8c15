"""Tests for the chat-completion client (HTTP calls are monkeypatched)."""

import json

import pytest

from ado_assistant import llm_client as lc
from ado_assistant.exceptions import LLMError, LLMResponseError
from ado_assistant.llm_client import (
    LLMClient,
    build_breakdown_prompt,
    build_evaluation_prompt,
    parse_json_reply,
    strip_code_fences,
)


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


def reply(content):
    return FakeResponse(200, {"choices": [{"message": {"content": content}}]})


@pytest.fixture
def sent(monkeypatch):
    """Capture requests.post calls and answer with the queued replies."""
    calls = {"requests": [], "replies": []}

    def fake_post(url, headers=None, json=None, timeout=None):
        calls["requests"].append({"url": url, "headers": headers, "json": json})
        return calls["replies"].pop(0)

    monkeypatch.setattr(lc.requests, "post", fake_post)
    return calls


class TestReplyParsing:
    def test_strip_code_fences(self):
        assert strip_code_fences('```json\n[{"a": 1}]\n```') == '[{"a": 1}]'

    def test_parse_plain_json(self):
        assert parse_json_reply('{"summary": "ok"}') == {"summary": "ok"}

    def test_invalid_json(self):
        with pytest.raises(LLMResponseError):
            parse_json_reply("Sure! Here are your tasks:")


class TestPrompts:
    def test_breakdown_prompt_mentions_budget_and_context(self):
        prompt = build_breakdown_prompt("Title: Login", "a senior developer", 18)
        assert "Title: Login" in prompt
        assert "a senior developer" in prompt
        assert "Maximum hours for all items: 18 hours" in prompt
        assert "development tasks" in prompt

    def test_breakdown_prompt_for_stories(self):
        assert "user stories" in build_breakdown_prompt("Title: X", "ctx", 30, "User Story")

    def test_evaluation_prompt_time_constraint(self):
        tasks = [{"id": 1, "title": "A", "estimate": 12}, {"id": 2, "title": "B", "estimate": 8}]
        prompt = build_evaluation_prompt("Story", "Details", tasks, available_hours=30)
        assert "Total available hours: 30h" in prompt
        assert "Existing tasks total: 20h" in prompt
        assert "Remaining hours for new tasks: 10h" in prompt
        assert '"title": "A"' in prompt

    def test_evaluation_prompt_without_tasks_or_window(self):
        prompt = build_evaluation_prompt("Story", "", [])
        assert "No tasks found" in prompt
        assert "TIME CONSTRAINT" not in prompt


class TestComplete:
    def test_requires_api_key(self):
        with pytest.raises(LLMError):
            LLMClient("").complete("system", "prompt")

    def test_sends_chat_request(self, sent):
        sent["replies"].append(reply("  hello  "))
        client = LLMClient("key", model="test-model", temperature=0.1, max_tokens=50)
        assert client.complete("be terse", "hi") == "hello"

        request = sent["requests"][0]
        assert request["url"] == lc.GROQ_API_URL
        assert request["headers"]["Authorization"] == "Bearer key"
        assert request["json"]["model"] == "test-model"
        assert request["json"]["messages"] == [
            {"role": "system", "content": "be terse"},
            {"role": "user", "content": "hi"},
        ]
        assert request["json"]["max_tokens"] == 50

    def test_api_error_message(self, sent):
        sent["replies"].append(FakeResponse(429, {"error": {"message": "Rate limit reached"}}))
        with pytest.raises(LLMError, match="Rate limit reached"):
            LLMClient("key").complete("s", "p")

    def test_api_error_without_body(self, sent):
        sent["replies"].append(FakeResponse(502))
        with pytest.raises(LLMError, match="API Error: 502"):
            LLMClient("key").complete("s", "p")

    def test_unexpected_payload(self, sent):
        sent["replies"].append(FakeResponse(200, {"choices": []}))
        with pytest.raises(LLMResponseError):
            LLMClient("key").complete("s", "p")


class TestGenerateItems:
    def test_parses_fenced_array(self, sent):
        items = [
            {"title": "Build form", "description": "UI", "hours": 3, "priority": 1, "activity": "Design"},
            {"title": "Write tests", "hours": 2, "priority": 7, "activity": "QA"},
        ]
        sent["replies"].append(reply("```json\n" + json.dumps(items) + "\n```"))
        result = LLMClient("key").generate_items("Title: Login", "ctx", 12)
        assert [i.title for i in result] == ["Build form", "Write tests"]
        assert result[0].activity == "Design"
        assert result[1].priority == 2
        assert result[1].activity == "Development"

    def test_wrong_shape(self, sent):
        sent["replies"].append(reply('{"title": "not a list"}'))
        with pytest.raises(LLMResponseError):
            LLMClient("key").generate_items("Title: Login", "ctx", 12)


class TestEvaluateTasks:
    def test_parses_evaluation(self, sent):
        payload = {
            "correct": [{"id": 1, "title": "A", "reason": "covers login"}],
            "toUpdate": [],
            "toDelete": [{"id": 2, "title": "B", "reason": "duplicate"}],
            "newTasks": [{"title": "C", "description": "tests", "hours": 3, "reason": "missing"}],
            "summary": "Good start",
        }
        sent["replies"].append(reply(json.dumps(payload)))
        evaluation = LLMClient("key").evaluate_tasks("Story", "", [{"id": 1, "title": "A"}])
        assert evaluation.to_delete[0].id == 2
        assert evaluation.new_tasks[0].hours == 3
        assert evaluation.summary == "Good start"

    def test_wrong_shape(self, sent):
        sent["replies"].append(reply('[1, 2, 3]'))
        with pytest.raises(LLMResponseError):
            LLMClient("key").evaluate_tasks("Story", "", [])
