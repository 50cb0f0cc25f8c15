"""Tests for DevOpsClient (in-memory mode and REST request shaping)."""

import pytest
import requests

from ado_assistant import devops_client as dc
from ado_assistant.devops_client import CHILD_RELATION, PARENT_RELATION, DevOpsClient
from ado_assistant.exceptions import DevOpsApiError
from ado_assistant.models import FieldUpdate
from ado_assistant.rules import FIELD_KEYS, STATE_FIELD


@pytest.fixture
def client():
    """DevOpsClient without credentials uses in-memory store."""
    return DevOpsClient()


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload if payload is not None else {}
        self.text = text

    def json(self):
        return self._payload


@pytest.fixture
def rest_client():
    return DevOpsClient("org", "proj", "pat")


# ── In-memory CRUD ────────────────────────────────────────────────────────────

def test_create_returns_id_and_fields(client):
    result = client.create("User Story", {"title": "Login", "story_points": 3})
    assert result["id"] == 1
    assert result["fields"]["System.Title"] == "Login"
    assert result["fields"]["System.WorkItemType"] == "User Story"
    assert result["fields"]["System.State"] == "New"
    assert result["fields"][FIELD_KEYS["StoryPoints"]] == 3


def test_create_increments_ids(client):
    assert client.create("Feature", {"title": "F"})["id"] == 1
    assert client.create("Task", {"title": "T"})["id"] == 2


def test_estimate_fills_work_tracking(client):
    fields = client.create("Task", {"title": "T", "estimate": "4"})["fields"]
    assert fields[FIELD_KEYS["OriginalEstimate"]] == 4.0
    assert fields[FIELD_KEYS["RemainingWork"]] == 4.0
    assert fields[FIELD_KEYS["CompletedWork"]] == 0


def test_unreadable_estimate_is_ignored(client):
    fields = client.create("Task", {"title": "T", "estimate": "lots"})["fields"]
    assert FIELD_KEYS["OriginalEstimate"] not in fields


def test_description_is_converted_to_html(client):
    fields = client.create("Task", {"title": "T", "description": "Intro\n- one\n- two"})["fields"]
    assert fields["System.Description"] == "<p>Intro</p><ul><li>one</li><li>two</li></ul>"


def test_create_with_parent_links_both_ways(client):
    story = client.create("User Story", {"title": "S"})
    task = client.create("Task", {"title": "T"}, parent_id=story["id"])
    assert task["fields"]["System.Parent"] == story["id"]

    child = client.get_work_item(task["id"], expand_relations=True)
    assert child["relations"][0]["rel"] == PARENT_RELATION

    parent = client.get_work_item(story["id"], expand_relations=True)
    assert parent["relations"] == [{"rel": CHILD_RELATION, "url": client.work_item_url(task["id"])}]


def test_get_work_item_without_relations(client):
    client.create("Task", {"title": "T"})
    assert "relations" not in client.get_work_item(1)


def test_get_missing_work_item(client):
    assert client.get_work_item(999) is None


def test_returned_items_are_copies(client):
    client.create("Task", {"title": "T"})
    client.get_work_item(1)["fields"]["System.Title"] = "changed"
    assert client.get_work_item(1)["fields"]["System.Title"] == "T"


def test_update_fields(client):
    client.create("Task", {"title": "T"})
    updated = client.update_fields(1, [FieldUpdate(field_key=FIELD_KEYS["Priority"], value=1)])
    assert updated["fields"][FIELD_KEYS["Priority"]] == 1
    assert client.get_work_item(1)["fields"][FIELD_KEYS["Priority"]] == 1


def test_update_missing_item_raises(client):
    with pytest.raises(DevOpsApiError) as exc:
        client.update_fields(5, [FieldUpdate(field_key="System.Title", value="x")])
    assert exc.value.status_code == 404


def test_batch_skips_unknown_ids(client):
    client.create("Task", {"title": "A"})
    client.create("Task", {"title": "B"})
    items = client.get_work_items_batch([2, 7, 1])
    assert [i["id"] for i in items] == [2, 1]


def test_children_filtered_by_type(client):
    feature = client.create("Feature", {"title": "F"})
    client.create("User Story", {"title": "S"}, parent_id=feature["id"])
    client.create("Task", {"title": "T"}, parent_id=feature["id"])
    stories = client.get_child_work_items(feature["id"], "User Story")
    assert [s["fields"]["System.Title"] for s in stories] == ["S"]
    assert len(client.get_child_work_items(feature["id"])) == 2


def test_children_of_missing_parent(client):
    assert client.get_child_work_items(404) == []


def test_find_assigned_ids(client):
    client.create("Task", {"title": "A", "assigned_to": "Jane Doe <jane@example.com>"})
    client.create("Task", {"title": "B", "assigned_to": "John Roe"})
    client.create("Task", {"title": "C", "assigned_to": "jane doe"})
    client.update_fields(3, [FieldUpdate(field_key=STATE_FIELD, value="Closed")])
    assert client.find_assigned_ids("JANE") == [1]


# ── Helpers ───────────────────────────────────────────────────────────────────

class TestToHtml:
    def test_empty(self):
        assert DevOpsClient._to_html("") == ""

    def test_paragraphs_and_bullets(self):
        text = "Intro\n• first\n• second\nOutro"
        assert DevOpsClient._to_html(text) == (
            "<p>Intro</p><ul><li>first</li><li>second</li></ul><p>Outro</p>"
        )

    def test_escaped_newlines(self):
        assert DevOpsClient._to_html("a\\nb") == "<p>a</p><p>b</p>"


def test_in_memory_flag():
    assert DevOpsClient().in_memory is True
    assert DevOpsClient("org", "proj", "pat").in_memory is False


def test_configure_resets_auth():
    client = DevOpsClient("org", "proj", "old")
    assert client.auth.password == "old"
    client.configure("org", "proj", "new")
    assert client.auth.password == "new"


# ── REST mode ─────────────────────────────────────────────────────────────────

class TestRestMode:
    def test_create_sends_json_patch_with_parent(self, rest_client, monkeypatch):
        calls = []

        def fake_post(url, json=None, **kwargs):
            calls.append((url, json, kwargs))
            return FakeResponse(200, {"id": 10})

        monkeypatch.setattr(dc.requests, "post", fake_post)
        result = rest_client.create("Task", {"title": "T", "priority": 2}, parent_id=5)

        assert result == {"id": 10}
        url, body, kwargs = calls[0]
        assert url == "https://dev.azure.com/org/proj/_apis/wit/workitems/$Task?api-version=7.1"
        assert {"op": "add", "path": "/fields/System.Title", "value": "T"} in body
        assert body[-1]["value"] == {
            "rel": PARENT_RELATION,
            "url": "https://dev.azure.com/org/_apis/wit/workItems/5",
        }
        assert kwargs["headers"]["Content-Type"] == "application/json-patch+json"

    def test_create_failure(self, rest_client, monkeypatch):
        monkeypatch.setattr(dc.requests, "post", lambda *a, **k: FakeResponse(400, text="bad"))
        with pytest.raises(DevOpsApiError) as exc:
            rest_client.create("Task", {"title": "T"})
        assert exc.value.status_code == 400

    def test_get_work_item_not_found(self, rest_client, monkeypatch):
        monkeypatch.setattr(dc.requests, "get", lambda *a, **k: FakeResponse(404))
        assert rest_client.get_work_item(1) is None

    def test_get_work_item_error(self, rest_client, monkeypatch):
        monkeypatch.setattr(dc.requests, "get", lambda *a, **k: FakeResponse(500, text="boom"))
        with pytest.raises(DevOpsApiError):
            rest_client.get_work_item(1)

    def test_update_fields_patch_body(self, rest_client, monkeypatch):
        sent = {}

        def fake_patch(url, json=None, **kwargs):
            sent["url"], sent["body"] = url, json
            return FakeResponse(200, {"id": 3})

        monkeypatch.setattr(dc.requests, "patch", fake_patch)
        rest_client.update_fields(3, [FieldUpdate(field_key=FIELD_KEYS["Risk"], value="2 - Medium")])
        assert sent["body"] == [
            {"op": "add", "path": f"/fields/{FIELD_KEYS['Risk']}", "value": "2 - Medium"}
        ]

    def test_batches_of_200(self, rest_client, monkeypatch):
        urls = []

        def fake_get(url, **kwargs):
            urls.append(url)
            return FakeResponse(200, {"value": [{"id": 1}]})

        monkeypatch.setattr(dc.requests, "get", fake_get)
        items = rest_client.get_work_items_batch(list(range(1, 251)))
        assert len(urls) == 2
        assert len(items) == 2
        assert "ids=201," in urls[1]

    def test_wiql_org_wide(self, rest_client, monkeypatch):
        urls = []

        def fake_post(url, json=None, **kwargs):
            urls.append(url)
            return FakeResponse(200, {"workItems": [{"id": 4}, {"id": 9}]})

        monkeypatch.setattr(dc.requests, "post", fake_post)
        assert rest_client.find_assigned_ids("O'Brien", all_projects=True) == [4, 9]
        assert urls[0].startswith("https://dev.azure.com/org/_apis/wit/wiql")

    def test_validate_connection_auth_failure(self, rest_client, monkeypatch):
        monkeypatch.setattr(dc.requests, "get", lambda *a, **k: FakeResponse(401))
        ok, message = rest_client.validate_connection()
        assert ok is False
        assert "Authentication failed" in message

    def test_validate_connection_network_error(self, rest_client, monkeypatch):
        def boom(*args, **kwargs):
            raise requests.exceptions.ConnectionError("offline")

        monkeypatch.setattr(dc.requests, "get", boom)
        ok, message = rest_client.validate_connection()
        assert ok is False
        assert message.startswith("Connection error")
