"""
Azure DevOps AI work-item assistant.

Breaks work items down into child items with an LLM, reviews existing
children, and validates / auto-fixes required fields of assigned work items.
"""

from .devops_client import DevOpsClient
from .defaults import (
    build_synthesis_context,
    complete_work_tracking,
    estimate_hours_from_title,
    synthesize_defaults,
)
from .exceptions import (
    AssistantError,
    DevOpsApiError,
    ExistingChildItemsError,
    LLMError,
    LLMResponseError,
    WorkItemNotFoundError,
)
from .insights_service import (
    auto_fix_work_item,
    auto_fix_work_items,
    plan_fixes,
    scan_assigned_work_items,
)
from .llm_client import LLMClient
from .models import (
    DateWindow,
    FieldUpdate,
    GeneratedItem,
    SynthesisContext,
    TaskEvaluation,
    ValidationResult,
    ValidationRule,
    WorkItem,
    WorkItemType,
    WorkTrackingTriple,
    build_work_item_data,
)
from .rules import FIELD_KEYS, FIELD_MAPPINGS, VALIDATION_RULES
from .task_service import (
    create_child_items,
    create_suggested_items,
    evaluate_children,
    fetch_parent,
    generate_breakdown,
    selection_totals,
)
from .validator import check_completeness, check_consistency, validate_work_item

__all__ = [
    'DevOpsClient', 'LLMClient',
    'build_synthesis_context', 'complete_work_tracking',
    'estimate_hours_from_title', 'synthesize_defaults',
    'AssistantError', 'DevOpsApiError', 'ExistingChildItemsError',
    'LLMError', 'LLMResponseError', 'WorkItemNotFoundError',
    'auto_fix_work_item', 'auto_fix_work_items', 'plan_fixes',
    'scan_assigned_work_items',
    'DateWindow', 'FieldUpdate', 'GeneratedItem', 'SynthesisContext',
    'TaskEvaluation', 'ValidationResult', 'ValidationRule', 'WorkItem',
    'WorkItemType', 'WorkTrackingTriple', 'build_work_item_data',
    'FIELD_KEYS', 'FIELD_MAPPINGS', 'VALIDATION_RULES',
    'create_child_items', 'create_suggested_items', 'evaluate_children',
    'fetch_parent', 'generate_breakdown', 'selection_totals',
    'check_completeness', 'check_consistency', 'validate_work_item',
]
