"""
Static field schema for work-item validation and default synthesis.

Three tables drive the validator and the synthesizer:

* ``FIELD_KEYS`` maps the short field vocabulary (``Priority``,
  ``StoryPoints``, ...) to Azure DevOps reference names.
* ``VALIDATION_RULES`` lists, per work-item type, the required fields in the
  order they are reported.
* ``FIELD_MAPPINGS`` maps, per type, a field label to its reference name.
  The order of this table is the order of a synthesized fix plan.
"""

from __future__ import annotations

from .models import ValidationRule, WorkItemType


# ---------------------------------------------------------------------------
# Field vocabulary
# ---------------------------------------------------------------------------

FIELD_KEYS: dict[str, str] = {
    "Priority": "Microsoft.VSTS.Common.Priority",
    "Risk": "Microsoft.VSTS.Common.Risk",
    "Effort": "Microsoft.VSTS.Scheduling.Effort",
    "BusinessValue": "Microsoft.VSTS.Common.BusinessValue",
    "TimeCriticality": "Microsoft.VSTS.Common.TimeCriticality",
    "StartDate": "Microsoft.VSTS.Scheduling.StartDate",
    "TargetDate": "Microsoft.VSTS.Scheduling.TargetDate",
    "FinishDate": "Microsoft.VSTS.Scheduling.FinishDate",
    "StoryPoints": "Microsoft.VSTS.Scheduling.StoryPoints",
    "QAReadyDate": "Custom.QAReadyDate",
    "OriginalEstimate": "Microsoft.VSTS.Scheduling.OriginalEstimate",
    "RemainingWork": "Microsoft.VSTS.Scheduling.RemainingWork",
    "CompletedWork": "Microsoft.VSTS.Scheduling.CompletedWork",
    "Activity": "Microsoft.VSTS.Common.Activity",
    "ActualStartDate": "Microsoft.VSTS.Scheduling.ActualStartDate",
    "ActualEndDate": "Microsoft.VSTS.Scheduling.ActualEndDate",
}

# System fields read alongside the validated ones
TITLE_FIELD = "System.Title"
TYPE_FIELD = "System.WorkItemType"
STATE_FIELD = "System.State"
DESCRIPTION_FIELD = "System.Description"
ACCEPTANCE_CRITERIA_FIELD = "Microsoft.VSTS.Common.AcceptanceCriteria"
ITERATION_PATH_FIELD = "System.IterationPath"
AREA_PATH_FIELD = "System.AreaPath"
ASSIGNED_TO_FIELD = "System.AssignedTo"
PARENT_FIELD = "System.Parent"

#: Labels whose value may legitimately be zero.
ZERO_IS_VALID_FIELDS = frozenset({"Completed Work", "Remaining Work"})

#: Labels of the work-tracking triple, in resolution order.
WORK_TRACKING_LABELS = ("Original Estimate", "Remaining Work", "Completed Work")


def _rule(key: str, label: str, date: bool = False) -> ValidationRule:
    field_key = FIELD_KEYS[key]
    return ValidationRule(
        field_key=field_key,
        label=label,
        is_date_field=date,
        is_custom_field=field_key.startswith("Custom."),
    )


# ---------------------------------------------------------------------------
# Required fields per type
# ---------------------------------------------------------------------------

VALIDATION_RULES: dict[WorkItemType, list[ValidationRule]] = {
    WorkItemType.FEATURE: [
        _rule("Priority", "Priority"),
        _rule("Risk", "Risk"),
        _rule("Effort", "Effort"),
        _rule("BusinessValue", "Business Value"),
        _rule("TimeCriticality", "Time Criticality"),
        _rule("StartDate", "Start Date", date=True),
        _rule("TargetDate", "Target Date", date=True),
    ],
    WorkItemType.USER_STORY: [
        _rule("StoryPoints", "Story Points"),
        _rule("Priority", "Priority"),
        _rule("Risk", "Risk"),
        _rule("QAReadyDate", "QA Ready Date", date=True),
        _rule("StartDate", "Planned Start Date", date=True),
        _rule("FinishDate", "Planned End Date", date=True),
        _rule("ActualStartDate", "Actual Start Date", date=True),
        _rule("ActualEndDate", "Actual End Date", date=True),
    ],
    WorkItemType.TASK: [
        _rule("Priority", "Priority"),
        _rule("Activity", "Activity"),
        _rule("StartDate", "Start Date", date=True),
        _rule("FinishDate", "Finish Date", date=True),
        _rule("OriginalEstimate", "Original Estimate"),
        _rule("RemainingWork", "Remaining Work"),
        _rule("CompletedWork", "Completed Work"),
    ],
}


# ---------------------------------------------------------------------------
# Fix-plan mapping per type (label -> reference name, in output order)
# ---------------------------------------------------------------------------

FIELD_MAPPINGS: dict[WorkItemType, dict[str, str]] = {
    WorkItemType.FEATURE: {
        "Priority": FIELD_KEYS["Priority"],
        "Risk": FIELD_KEYS["Risk"],
        "Effort": FIELD_KEYS["Effort"],
        "Business Value": FIELD_KEYS["BusinessValue"],
        "Time Criticality": FIELD_KEYS["TimeCriticality"],
        "Start Date": FIELD_KEYS["StartDate"],
        "Target Date": FIELD_KEYS["TargetDate"],
    },
    WorkItemType.USER_STORY: {
        "Story Points": FIELD_KEYS["StoryPoints"],
        "Priority": FIELD_KEYS["Priority"],
        "Risk": FIELD_KEYS["Risk"],
        "Planned Start Date": FIELD_KEYS["StartDate"],
        "Planned End Date": FIELD_KEYS["FinishDate"],
        "QA Ready Date": FIELD_KEYS["QAReadyDate"],
        "Actual Start Date": FIELD_KEYS["ActualStartDate"],
        "Actual End Date": FIELD_KEYS["ActualEndDate"],
    },
    WorkItemType.TASK: {
        "Priority": FIELD_KEYS["Priority"],
        "Activity": FIELD_KEYS["Activity"],
        "Start Date": FIELD_KEYS["StartDate"],
        "Original Estimate": FIELD_KEYS["OriginalEstimate"],
        "Remaining Work": FIELD_KEYS["RemainingWork"],
        "Completed Work": FIELD_KEYS["CompletedWork"],
        "Finish Date": FIELD_KEYS["FinishDate"],
    },
}


def rules_for(
    work_item_type: WorkItemType | str,
    rules: dict[WorkItemType, list[ValidationRule]] | None = None,
) -> list[ValidationRule]:
    """Return the rule-set for *work_item_type* from *rules* (default ``VALIDATION_RULES``).

    Unknown types have no rules.
    """
    rules = VALIDATION_RULES if rules is None else rules
    try:
        return rules.get(WorkItemType(work_item_type), [])
    except ValueError:
        return []


#: Labels holding the start and end of each type's schedule.
WINDOW_LABELS: dict[WorkItemType, tuple[str, str]] = {
    WorkItemType.FEATURE: ("Start Date", "Target Date"),
    WorkItemType.USER_STORY: ("Planned Start Date", "Planned End Date"),
    WorkItemType.TASK: ("Start Date", "Finish Date"),
}
