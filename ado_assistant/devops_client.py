"""
Azure DevOps REST API client for work item operations.
"""

import requests
from requests.auth import HTTPBasicAuth

from .exceptions import DevOpsApiError
from .rules import (
    ACCEPTANCE_CRITERIA_FIELD,
    AREA_PATH_FIELD,
    ASSIGNED_TO_FIELD,
    DESCRIPTION_FIELD,
    FIELD_KEYS,
    ITERATION_PATH_FIELD,
    PARENT_FIELD,
    STATE_FIELD,
    TITLE_FIELD,
    TYPE_FIELD,
)

CHILD_RELATION = "System.LinkTypes.Hierarchy-Forward"
PARENT_RELATION = "System.LinkTypes.Hierarchy-Reverse"

# create-data key -> field reference name
_DATA_FIELDS = {
    "title": TITLE_FIELD,
    "description": DESCRIPTION_FIELD,
    "acceptance_criteria": ACCEPTANCE_CRITERIA_FIELD,
    "story_points": FIELD_KEYS["StoryPoints"],
    "priority": FIELD_KEYS["Priority"],
    "activity": FIELD_KEYS["Activity"],
    "iteration_path": ITERATION_PATH_FIELD,
    "area_path": AREA_PATH_FIELD,
    "assigned_to": ASSIGNED_TO_FIELD,
}


class DevOpsClient:
    """Client for Azure DevOps work item operations.

    Without an organization or PAT every call is served from an in-memory
    store, which the tests use.
    """

    def __init__(self, organization=None, project=None, pat=None, api_version="7.1"):
        self.organization = organization
        self.project = project
        self.pat = pat
        self.api_version = api_version
        self._auth = None
        self._items = {}  # In-memory store for testing
        self._next_id = 1

    @property
    def auth(self):
        """Get HTTPBasicAuth object."""
        if self._auth is None and self.pat:
            self._auth = HTTPBasicAuth("", self.pat)
        return self._auth

    @property
    def base_url(self):
        """Get base URL for Azure DevOps work item tracking API."""
        return f"https://dev.azure.com/{self.organization}/{self.project}/_apis/wit"

    @property
    def in_memory(self):
        return not self.organization or not self.pat

    def configure(self, organization, project, pat):
        """Configure the client with Azure DevOps credentials."""
        self.organization = organization
        self.project = project
        self.pat = pat
        self._auth = None

    def work_item_url(self, work_item_id):
        """REST URL of a work item, as used in relation links."""
        return f"https://dev.azure.com/{self.organization}/_apis/wit/workItems/{work_item_id}"

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def create(self, work_item_type, data, parent_id=None):
        """
        Create a work item of any type.

        Args:
            work_item_type: "Feature", "User Story", or "Task".
            data: dict with title (required) and any of description,
                  acceptance_criteria, estimate, story_points, priority,
                  activity, iteration_path, area_path, assigned_to.
            parent_id: Numeric ID of the parent work item (optional).

        Returns:
            The created work item dict (``id``, ``fields``, ``url``).
        """
        fields = self._data_to_fields(data)
        if self.in_memory:
            return self._create_in_memory(work_item_type, fields, parent_id)

        url = f"{self.base_url}/workitems/${work_item_type}?api-version={self.api_version}"
        body = [
            {"op": "add", "path": f"/fields/{key}", "value": value}
            for key, value in fields.items()
        ]
        if parent_id:
            body.append({
                "op": "add",
                "path": "/relations/-",
                "value": {"rel": PARENT_RELATION, "url": self.work_item_url(parent_id)},
            })

        headers = {"Content-Type": "application/json-patch+json"}
        response = requests.post(url, json=body, auth=self.auth, headers=headers, timeout=30)
        if response.status_code in [200, 201]:
            return response.json()
        raise DevOpsApiError(
            f"Failed to create {work_item_type}: {response.text}", response.status_code
        )

    def get_work_item(self, work_item_id, expand_relations=False):
        """
        Get a work item by ID.

        Returns:
            Raw work item dict, or None if it does not exist.
        """
        if self.in_memory:
            item = self._items.get(work_item_id)
            return self._copy_item(item, expand_relations) if item else None

        url = f"{self.base_url}/workitems/{work_item_id}?api-version={self.api_version}"
        if expand_relations:
            url += "&$expand=relations"
        response = requests.get(url, auth=self.auth, timeout=30)
        if response.status_code == 200:
            return response.json()
        if response.status_code == 404:
            return None
        raise DevOpsApiError(f"Failed to get work item: {response.text}", response.status_code)

    def update_fields(self, work_item_id, updates):
        """
        Write field values onto a work item with JSON-Patch ``add`` operations.

        Args:
            work_item_id: The work item to update.
            updates: Iterable of ``FieldUpdate``.

        Returns:
            The updated work item dict.
        """
        updates = list(updates)
        if self.in_memory:
            item = self._items.get(work_item_id)
            if item is None:
                raise DevOpsApiError(f"Work item {work_item_id} not found", 404)
            for update in updates:
                item["fields"][update.field_key] = update.value
            return self._copy_item(item)

        url = f"{self.base_url}/workitems/{work_item_id}?api-version={self.api_version}"
        body = [update.to_patch_operation() for update in updates]
        headers = {"Content-Type": "application/json-patch+json"}
        response = requests.patch(url, json=body, auth=self.auth, headers=headers, timeout=30)
        if response.status_code == 200:
            return response.json()
        raise DevOpsApiError(f"Failed to update work item: {response.text}", response.status_code)

    def run_wiql(self, query_text, all_projects=False):
        """
        Execute a WIQL query and return matching work item IDs.

        Args:
            query_text: A WIQL query string.
            all_projects: Query the whole organization instead of one project.

        Returns:
            List of integer work item IDs.
        """
        if self.in_memory:
            return list(self._items.keys())

        if all_projects:
            url = f"https://dev.azure.com/{self.organization}/_apis/wit/wiql?api-version={self.api_version}"
        else:
            url = f"{self.base_url}/wiql?api-version={self.api_version}"
        resp = requests.post(url, json={"query": query_text}, auth=self.auth, timeout=30)
        if resp.status_code != 200:
            raise DevOpsApiError(f"Failed to query work items: {resp.text}", resp.status_code)
        return [item["id"] for item in resp.json().get("workItems", [])]

    def get_work_items_batch(self, ids, fields=None):
        """
        Fetch work item details in batches of 200 (API limit).

        Args:
            ids: List of work item IDs.
            fields: List of field reference names. All fields if None.

        Returns:
            List of raw work item dicts from the API.
        """
        if self.in_memory:
            return [self._copy_item(self._items[iid]) for iid in ids if iid in self._items]

        items = []
        for i in range(0, len(ids), 200):
            batch = ids[i:i + 200]
            url = (
                f"https://dev.azure.com/{self.organization}/_apis/wit/workitems"
                f"?ids={','.join(map(str, batch))}"
                f"&api-version={self.api_version}"
            )
            if fields:
                url += f"&fields={','.join(fields)}"
            resp = requests.get(url, auth=self.auth, timeout=30)
            if resp.status_code != 200:
                raise DevOpsApiError(f"Failed to fetch work items: {resp.text}", resp.status_code)
            items.extend(resp.json().get("value", []))
        return items

    def get_child_work_items(self, parent_id, work_item_type=None):
        """
        Fetch the children of a work item, optionally only those of one type.

        Returns:
            List of raw work item dicts; empty if the parent does not exist.
        """
        parent = self.get_work_item(parent_id, expand_relations=True)
        if parent is None:
            return []
        child_ids = [
            int(rel["url"].rstrip("/").rsplit("/", 1)[-1])
            for rel in parent.get("relations") or []
            if rel.get("rel") == CHILD_RELATION
        ]
        if not child_ids:
            return []
        children = self.get_work_items_batch(child_ids)
        if work_item_type:
            children = [
                c for c in children
                if (c.get("fields") or {}).get(TYPE_FIELD) == work_item_type
            ]
        return children

    def find_assigned_ids(self, user_name, all_projects=False):
        """IDs of open work items assigned to *user_name*."""
        safe_name = user_name.replace("'", "''")
        query = (
            "SELECT [System.Id], [System.Title], [System.WorkItemType] "
            "FROM WorkItems "
            f"WHERE [System.AssignedTo] CONTAINS '{safe_name}' "
            "AND [System.State] <> 'Closed' "
            "AND [System.State] <> 'Removed' "
            "ORDER BY [System.WorkItemType]"
        )
        if self.in_memory:
            return [
                iid for iid, item in self._items.items()
                if user_name.lower() in str(item["fields"].get(ASSIGNED_TO_FIELD, "")).lower()
                and item["fields"].get(STATE_FIELD) not in ("Closed", "Removed")
            ]
        return self.run_wiql(query, all_projects=all_projects)

    def validate_connection(self):
        """
        Test the Azure DevOps connection.

        Returns:
            Tuple (ok: bool, message: str).
        """
        url = f"https://dev.azure.com/{self.organization}/_apis/projects/{self.project}?api-version={self.api_version}"
        try:
            resp = requests.get(url, auth=self.auth, timeout=10)
            if resp.status_code == 200:
                name = resp.json().get("name", self.project)
                return True, f"Connected to project: {name}"
            elif resp.status_code == 401:
                return False, "Authentication failed. PAT may be expired or invalid."
            elif resp.status_code == 404:
                return False, f"Project '{self.project}' not found in org '{self.organization}'."
            else:
                return False, f"Connection failed: HTTP {resp.status_code}"
        except requests.exceptions.RequestException as e:
            return False, f"Connection error: {e}"

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _to_html(text):
        """Convert plain text to HTML for Azure DevOps rich-text fields.

        Lines starting with ``•`` or ``-`` become ``<li>`` items, other
        non-empty lines ``<p>`` paragraphs.
        """
        if not text:
            return text

        html_parts = []
        bullet_buffer = []

        def _flush_bullets():
            if bullet_buffer:
                items = "".join(f"<li>{b}</li>" for b in bullet_buffer)
                html_parts.append(f"<ul>{items}</ul>")
                bullet_buffer.clear()

        for line in text.replace("\\n", "\n").splitlines():
            stripped = line.strip()
            if not stripped:
                continue
            if stripped.startswith(("•", "- ")):
                bullet_buffer.append(stripped.lstrip("•- ").strip())
            else:
                _flush_bullets()
                html_parts.append(f"<p>{stripped}</p>")

        _flush_bullets()
        return "".join(html_parts)

    def _data_to_fields(self, data):
        """Map a create-data dict onto field reference names."""
        fields = {}
        for key, field_key in _DATA_FIELDS.items():
            value = data.get(key)
            if value is None or value == "":
                continue
            if key in ("description", "acceptance_criteria"):
                value = self._to_html(value)
            fields[field_key] = value

        estimate = data.get("estimate")
        if estimate is not None and str(estimate).strip():
            try:
                hours = float(estimate)
            except (ValueError, TypeError):
                hours = None
            if hours is not None:
                fields[FIELD_KEYS["OriginalEstimate"]] = hours
                fields[FIELD_KEYS["RemainingWork"]] = hours
                fields[FIELD_KEYS["CompletedWork"]] = 0
        return fields

    # In-memory methods for testing without Azure DevOps connection
    def _create_in_memory(self, work_item_type, fields, parent_id=None):
        """Create work item in memory (for testing)."""
        item_id = self._next_id
        self._next_id += 1

        item = {
            "id": item_id,
            "url": self.work_item_url(item_id),
            "fields": {
                TYPE_FIELD: work_item_type,
                STATE_FIELD: "New",
                **fields,
            },
            "relations": [],
        }
        if parent_id:
            item["fields"][PARENT_FIELD] = parent_id
            item["relations"].append({"rel": PARENT_RELATION, "url": self.work_item_url(parent_id)})
            parent = self._items.get(parent_id)
            if parent is not None:
                parent["relations"].append({"rel": CHILD_RELATION, "url": item["url"]})
        self._items[item_id] = item
        return self._copy_item(item)

    @staticmethod
    def _copy_item(item, with_relations=False):
        copy = {"id": item["id"], "url": item["url"], "fields": dict(item["fields"])}
        if with_relations:
            copy["relations"] = [dict(r) for r in item["relations"]]
        return copy
