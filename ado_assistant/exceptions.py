"""Exception hierarchy for the Azure DevOps AI assistant."""


class AssistantError(Exception):
    """Base exception for assistant errors."""

    pass


class DevOpsApiError(AssistantError):
    """The Azure DevOps REST API returned a non-success status."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class WorkItemNotFoundError(AssistantError):
    """The requested work item does not exist."""

    pass


class LLMError(AssistantError):
    """The completion API could not be called."""

    pass


class LLMResponseError(LLMError):
    """The completion API replied with something other than the expected JSON."""

    pass


class ExistingChildItemsError(AssistantError):
    """The parent work item already has children."""

    def __init__(self, parent_id: int, count: int):
        super().__init__(
            f"Work item {parent_id} already has {count} child item(s). "
            "Evaluate them instead, or force generation."
        )
        self.parent_id = parent_id
        self.count = count
