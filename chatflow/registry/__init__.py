"""Workflow registry: step tables keyed by workflow type."""

from __future__ import annotations

from typing import Dict

from ..contracts import WorkflowType
from .documents import INVOICE_WORKFLOW, PROPOSAL_WORKFLOW
from .models import (
    AnswerShape,
    StepContext,
    StepDefinition,
    WorkflowDefinition,
    goto,
    set_field,
)
from .transfers import PURCHASE_WORKFLOW, TRANSFER_WORKFLOW

# Canonical table of the workflows the dispatcher can run. Tests and
# deployments may register replacements; the last registration wins.
REGISTRY: Dict[WorkflowType, WorkflowDefinition] = {}


def register_workflow(definition: WorkflowDefinition) -> None:
    """Add ``definition`` to ``REGISTRY`` under its workflow type."""

    REGISTRY[definition.workflow_type] = definition


def get_workflow(workflow_type: WorkflowType) -> WorkflowDefinition:
    try:
        return REGISTRY[workflow_type]
    except KeyError:
        raise KeyError(f"No workflow registered for {workflow_type.value}") from None


for _definition in (INVOICE_WORKFLOW, PROPOSAL_WORKFLOW, TRANSFER_WORKFLOW, PURCHASE_WORKFLOW):
    register_workflow(_definition)


__all__ = [
    "AnswerShape",
    "StepContext",
    "StepDefinition",
    "WorkflowDefinition",
    "REGISTRY",
    "register_workflow",
    "get_workflow",
    "goto",
    "set_field",
    "INVOICE_WORKFLOW",
    "PROPOSAL_WORKFLOW",
    "TRANSFER_WORKFLOW",
    "PURCHASE_WORKFLOW",
]
