"""Decide whether a message is an answer to the active step.

:func:`classify` is pure: it looks only at the text and the
:class:`ClassifierContext` describing the step being asked. It never reads or
writes workflow state.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel

from .contracts import WorkflowType
from .errors import StepValidationError
from .registry.models import AnswerShape
from .validators import (
    parse_amount,
    parse_due_date,
    parse_email,
    parse_quantity,
    parse_token,
    parse_wallet_address,
)


class Decision(str, Enum):
    CONTROL = "control"
    ANSWER = "answer"
    INTERRUPTION = "interruption"


class ClassifierContext(BaseModel):
    workflow_type: Optional[WorkflowType] = None
    step_key: Optional[str] = None
    shape: AnswerShape = AnswerShape.TEXT
    choices: Tuple[str, ...] = ()
    short_answer_words: int = 4


class Classification(BaseModel):
    decision: Decision
    reason: str


CONTROL_RE = re.compile(
    r"^(?:please\s+)?(?:cancel|stop|quit|abort|exit)(?:\s+(?:it|this|that|the|my)(?:\s+\w+)?)?[.!]*$"
)
GREETING_RE = re.compile(
    r"^(?:hello|hi|hey|yo|gm|good\s+(?:morning|afternoon|evening)|thanks|thank\s+you|"
    r"bye|goodbye|see\s+you)(?:[\s!,.]|$)"
)
QUESTION_WORD_RE = re.compile(
    r"^(?:what|what's|whats|how|when|where|why|who|which|can|could|would|should|"
    r"is|are|do|does|did|will)\s"
)
REQUEST_RE = re.compile(
    r"^(?:i\s+want|i\s+need|i\s+would\s+like|i'd\s+like|please|help\s+me|show\s+me|"
    r"tell\s+me|explain|can\s+you|create\s+(?:a|an|my)|send\s+(?:money|crypto|\d)|"
    r"make\s+(?:a|an)|generate\s+(?:a|an)|check\s+my|view\s+my)\b"
)
# "and"/"or" are left out: they show up in ordinary answers such as deliverables.
CONNECTOR_RE = re.compile(
    r"\b(?:but|because|however|although|therefore|moreover|anyway|actually|btw)\b"
)


def _matches_shape(text: str, context: ClassifierContext) -> bool:
    shape = context.shape
    try:
        if shape == AnswerShape.EMAIL:
            parse_email(text)
        elif shape == AnswerShape.AMOUNT:
            parse_amount(text)
        elif shape == AnswerShape.DATE:
            parse_due_date(text)
        elif shape == AnswerShape.NUMBER:
            parse_quantity(text)
        elif shape == AnswerShape.ADDRESS:
            parse_wallet_address(text)
        elif shape == AnswerShape.TOKEN:
            parse_token(text)
        elif shape == AnswerShape.CHOICE:
            return text.lower() in {c.lower() for c in context.choices}
        else:
            return False
    except StepValidationError:
        return False
    return True


def classify(text: str, context: ClassifierContext) -> Classification:
    """Classify ``text`` as a control phrase, a step answer or an interruption."""
    stripped = text.strip()
    lowered = stripped.lower()
    word_count = len(lowered.split())

    if CONTROL_RE.match(lowered):
        return Classification(decision=Decision.CONTROL, reason="control phrase")

    if _matches_shape(stripped, context):
        return Classification(
            decision=Decision.ANSWER, reason=f"matches expected {context.shape.value}"
        )

    if GREETING_RE.match(lowered):
        return Classification(decision=Decision.INTERRUPTION, reason="greeting or closing")

    if lowered.endswith("?"):
        return Classification(decision=Decision.INTERRUPTION, reason="question mark")

    free_text = context.shape == AnswerShape.FREE_TEXT
    if not free_text and QUESTION_WORD_RE.match(lowered) and word_count >= 3:
        return Classification(decision=Decision.INTERRUPTION, reason="leading question word")

    if not free_text:
        if REQUEST_RE.match(lowered):
            return Classification(decision=Decision.INTERRUPTION, reason="request phrase")
        if word_count > context.short_answer_words and CONNECTOR_RE.search(lowered):
            return Classification(decision=Decision.INTERRUPTION, reason="clause connector")

    if word_count <= context.short_answer_words:
        return Classification(decision=Decision.ANSWER, reason="short input")
    return Classification(decision=Decision.ANSWER, reason="default")
