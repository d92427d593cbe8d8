"""Declarative step and workflow definitions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel

from ..constants import DEFAULT_CURRENCY, TERMINAL
from ..contracts import WorkflowType


class AnswerShape(str, Enum):
    """What a well-formed answer to a step looks like.

    Used by the ambiguity classifier to recognise direct answers early.
    """

    TEXT = "text"
    FREE_TEXT = "free_text"
    EMAIL = "email"
    AMOUNT = "amount"
    DATE = "date"
    NUMBER = "number"
    CHOICE = "choice"
    ADDRESS = "address"
    TOKEN = "token"


@dataclass(frozen=True)
class StepContext:
    """Values a validator may need besides the raw text."""

    default_currency: str = DEFAULT_CURRENCY
    today: Optional[date] = None


ValidateFn = Callable[[str, StepContext], Any]
ApplyFn = Callable[[BaseModel, Any], None]
NextFn = Callable[[BaseModel], str]


class _FieldView(dict):
    """Mapping used to render templates; unset fields render as blanks."""

    def __missing__(self, key: str) -> str:
        return ""


def template_values(fields: BaseModel) -> Dict[str, Any]:
    values = _FieldView()
    for name, value in fields.model_dump().items():
        if value is None:
            continue
        if isinstance(value, Enum):
            value = value.value
        if isinstance(value, list):
            value = ", ".join(str(v) for v in value)
        values[name] = value
    return values


@dataclass(frozen=True)
class StepDefinition:
    """One prompt / validate / apply / advance unit of a workflow.

    ``next`` may be omitted for linear flows; the owning
    :class:`WorkflowDefinition` then advances to the following step.
    ``fills`` lists the fields the step writes. When ``prefillable`` is set
    and all of them already hold a value, the step is skipped.
    """

    key: str
    prompt: str
    validate: ValidateFn
    apply: ApplyFn
    next: Optional[NextFn] = None
    ack: Optional[str] = None
    shape: AnswerShape = AnswerShape.TEXT
    choices: Tuple[str, ...] = ()
    fills: Tuple[str, ...] = ()
    prefillable: bool = False

    def is_satisfied(self, fields: BaseModel) -> bool:
        if not self.prefillable or not self.fills:
            return False
        return all(getattr(fields, name, None) is not None for name in self.fills)


@dataclass
class WorkflowDefinition:
    """Ordered step table for one workflow type."""

    workflow_type: WorkflowType
    title: str
    steps: List[StepDefinition]
    intro: str = ""
    requires_resource: bool = True
    numbered: bool = True
    _by_key: Dict[str, StepDefinition] = field(default_factory=dict, init=False, repr=False)
    _order: Dict[str, int] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        for index, step in enumerate(self.steps):
            if step.key in self._by_key:
                raise ValueError(
                    f"Duplicate step '{step.key}' in workflow {self.workflow_type.value}"
                )
            self._by_key[step.key] = step
            self._order[step.key] = index

    def step(self, key: str) -> StepDefinition:
        try:
            return self._by_key[key]
        except KeyError:
            raise KeyError(
                f"Unknown step '{key}' for workflow {self.workflow_type.value}"
            ) from None

    def has_step(self, key: str) -> bool:
        return key in self._by_key

    def _skip_satisfied(self, key: str, fields: BaseModel) -> str:
        while key != TERMINAL and self.step(key).is_satisfied(fields):
            key = self._successor(key, fields)
        return key

    def _successor(self, key: str, fields: BaseModel) -> str:
        step = self.step(key)
        if step.next is not None:
            return step.next(fields)
        index = self._order[key] + 1
        return self.steps[index].key if index < len(self.steps) else TERMINAL

    def first_step(self, fields: BaseModel) -> str:
        """Return the first step that still needs an answer."""
        return self._skip_satisfied(self.steps[0].key, fields)

    def next_step(self, key: str, fields: BaseModel) -> str:
        """Return the step after ``key`` given the fields collected so far."""
        return self._skip_satisfied(self._successor(key, fields), fields)

    def render_prompt(self, key: str, fields: BaseModel) -> str:
        step = self.step(key)
        body = step.prompt.format_map(template_values(fields))
        if not self.numbered:
            return body
        return f"**Step {self._order[key] + 1}/{len(self.steps)}:** {body}"

    def render_ack(self, key: str, fields: BaseModel) -> Optional[str]:
        step = self.step(key)
        if step.ack is None:
            return None
        return step.ack.format_map(template_values(fields))


# ---------------------------------------------------------------------------
# Small builders shared by the workflow tables


def set_field(name: str) -> ApplyFn:
    def _apply(fields: BaseModel, value: Any) -> None:
        setattr(fields, name, value)

    return _apply


def goto(key: str) -> NextFn:
    return lambda fields: key
