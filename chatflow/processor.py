"""Validate, apply and advance a single workflow step."""

from __future__ import annotations

import logging
from datetime import date, timedelta
from enum import Enum
from typing import Callable, List, Optional

from pydantic import BaseModel, Field

from .config import ChatflowConfig, WorkflowConfig
from .constants import TERMINAL
from .contracts import (
    ENTITY_KIND_BY_WORKFLOW,
    FIELDS_MODELS,
    STATE_MODELS,
    ReplyOption,
    WorkflowState,
    WorkflowType,
)
from .errors import StepValidationError
from .persistence import EntityRepository, StateStore
from .registry import StepContext, get_workflow

logger = logging.getLogger(__name__)


class OutcomeKind(str, Enum):
    ADVANCE = "advance"
    ERROR = "error"
    COMPLETED = "completed"


class StepOutcome(BaseModel):
    """Result of feeding one answer into a workflow.

    ``message`` is the acknowledgement (or the validation error) and ``prompt``
    is what the user should be asked next.
    """

    kind: OutcomeKind
    message: Optional[str] = None
    prompt: Optional[str] = None
    options: List[ReplyOption] = Field(default_factory=list)

    def texts(self) -> List[str]:
        return [t for t in (self.message, self.prompt) if t]


def workflow_ttl(workflow_type: WorkflowType, config: WorkflowConfig) -> timedelta:
    if workflow_type.is_document:
        return timedelta(hours=config.document_ttl_hours)
    return timedelta(minutes=config.transfer_ttl_minutes)


def _changed_fields(before: BaseModel, after: BaseModel) -> set[str]:
    old = before.model_dump()
    return {name for name, value in after.model_dump().items() if old.get(name) != value}


class StepProcessor:
    """Drive workflows forward one answer at a time.

    Reaching TERMINAL hands the state to ``pipeline.on_terminal``; the pipeline
    owns what happens to the state from then on.
    """

    def __init__(
        self,
        store: StateStore,
        repository: EntityRepository,
        pipeline,
        config: Optional[ChatflowConfig] = None,
        today: Optional[Callable[[], date]] = None,
    ) -> None:
        self.store = store
        self.repository = repository
        self.pipeline = pipeline
        self.config = config or ChatflowConfig()
        self._today = today or date.today

    def _context(self) -> StepContext:
        return StepContext(
            default_currency=self.config.default_currency, today=self._today()
        )

    def prompt_for(self, state: WorkflowState) -> str:
        """Render the prompt of the step ``state`` is waiting on."""
        definition = get_workflow(state.workflow_type)
        return definition.render_prompt(state.current_step, state.collected)

    async def begin(
        self,
        user_id: str,
        workflow_type: WorkflowType,
        collected: Optional[BaseModel] = None,
    ) -> StepOutcome:
        """Create the draft and state for a new workflow and ask the first question.

        ``collected`` holds values already known (profile details or parameters
        from the request); steps they satisfy are skipped.
        """
        definition = get_workflow(workflow_type)
        model = STATE_MODELS[workflow_type]
        fields = collected if collected is not None else FIELDS_MODELS[workflow_type]()

        draft_id = await self.repository.insert_draft(
            ENTITY_KIND_BY_WORKFLOW[workflow_type],
            user_id,
            fields.model_dump(mode="json", exclude_none=True),
        )
        first = definition.first_step(fields)
        state = model(
            user_id=user_id,
            draft_id=draft_id,
            current_step=first,
            collected=fields,
        )
        state.touch(workflow_ttl(workflow_type, self.config.workflows))
        logger.info(
            f"Started {workflow_type.value} for user {user_id} (draft {draft_id}) at {first}"
        )

        if first == TERMINAL:
            completion = await self.pipeline.on_terminal(state)
            return StepOutcome(
                kind=OutcomeKind.COMPLETED,
                message=definition.intro or None,
                prompt=completion.text,
                options=completion.options,
            )

        await self.store.put(state)
        return StepOutcome(
            kind=OutcomeKind.ADVANCE,
            message=definition.intro or None,
            prompt=definition.render_prompt(first, fields),
        )

    async def process(self, state: WorkflowState, raw_input: str) -> StepOutcome:
        definition = get_workflow(state.workflow_type)
        step = definition.step(state.current_step)

        try:
            value = step.validate(raw_input, self._context())
        except StepValidationError as exc:
            logger.debug(
                f"Rejected answer for {state.workflow_type.value}.{step.key} "
                f"from user {state.user_id}: {exc}"
            )
            return StepOutcome(
                kind=OutcomeKind.ERROR,
                message=str(exc),
                prompt=definition.render_prompt(step.key, state.collected),
            )

        fields = state.collected.model_copy(deep=True)
        step.apply(fields, value)
        changed = _changed_fields(state.collected, fields)
        if changed:
            await self.repository.update_draft(
                state.draft_id, fields.model_dump(mode="json", include=changed)
            )

        updated = state.model_copy(deep=True)
        updated.collected = fields
        ack = definition.render_ack(step.key, fields)
        next_key = definition.next_step(step.key, fields)
        updated.touch(workflow_ttl(updated.workflow_type, self.config.workflows))

        if next_key == TERMINAL:
            logger.info(
                f"{updated.workflow_type.value} for user {updated.user_id} collected all fields"
            )
            completion = await self.pipeline.on_terminal(updated)
            return StepOutcome(
                kind=OutcomeKind.COMPLETED,
                message=ack,
                prompt=completion.text,
                options=completion.options,
            )

        updated.current_step = next_key
        await self.store.put(updated)
        return StepOutcome(
            kind=OutcomeKind.ADVANCE,
            message=ack,
            prompt=definition.render_prompt(next_key, fields),
        )
