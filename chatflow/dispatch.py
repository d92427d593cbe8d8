"""Route inbound chat messages to workflows."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

from .classifier import ClassifierContext, Decision, classify
from .collaborators import (
    DeliveryChannel,
    DocumentRenderer,
    ExecutionClient,
    LogDeliveryChannel,
    ProfileLookup,
    ReplyChannel,
    ResourceCheck,
    SimulatedExecutionClient,
    StaticResourceCheck,
)
from .commands import (
    CancelCommand,
    ConfirmCommand,
    ContinueCommand,
    SendCommand,
    StartCommand,
    TextMessage,
    decode_command,
)
from .completion import Completion, CompletionPipeline, quote_options, quote_summary
from .config import ChatflowConfig, load_config
from .constants import QUOTED_STEP
from .contracts import (
    ENTITY_KIND_BY_WORKFLOW,
    FIELDS_MODELS,
    DraftStatus,
    EntityKind,
    InboundMessage,
    PurchaseFields,
    ReplyOption,
    TransferAction,
    TransferFields,
    TransferPhase,
    WorkflowState,
    WorkflowType,
)
from .errors import (
    CollaboratorError,
    CommandDecodeError,
    PersistenceError,
    PreconditionError,
)
from .intents import (
    AgentIntentResolver,
    CompositeIntentResolver,
    Intent,
    IntentResolver,
    prefill_fields,
)
from .persistence import EntityRepository, StateStore, get_entity_repository, get_state_store
from .processor import StepOutcome, StepProcessor
from .registry import get_workflow
from .validators import EMAIL_RE

logger = logging.getLogger(__name__)

FallbackHandler = Callable[[str, str], Awaitable[str]]

HELP_TEXT = (
    "👋 Here's what I can help with:\n\n"
    "📄 /invoice - create and email an invoice\n"
    "📋 /proposal - draft a client proposal\n"
    "💸 /transfer - send crypto to a wallet\n"
    "🔄 /swap - swap one token for another\n"
    "🌉 /bridge - move tokens between networks\n"
    "💳 /buy - buy stablecoins with local currency\n\n"
    "You can also just tell me what you need, e.g. \"send 10 USDC to 0x… on base\"."
)


async def help_reply(user_id: str, text: str) -> str:
    return HELP_TEXT


def _most_recent(states: Iterable[WorkflowState]) -> Optional[WorkflowState]:
    states = list(states)
    if not states:
        return None
    return max(states, key=lambda s: s.updated_at)


class Dispatcher:
    """Turn each inbound message into exactly one routing decision.

    Messages from the same user are serialised with a per-user lock.
    """

    def __init__(
        self,
        store: StateStore,
        repository: EntityRepository,
        processor: StepProcessor,
        pipeline: CompletionPipeline,
        replies: ReplyChannel,
        resources: Optional[ResourceCheck] = None,
        profiles: Optional[ProfileLookup] = None,
        intents: Optional[IntentResolver] = None,
        fallback: Optional[FallbackHandler] = None,
        config: Optional[ChatflowConfig] = None,
    ) -> None:
        self.store = store
        self.repository = repository
        self.processor = processor
        self.pipeline = pipeline
        self.replies = replies
        self.resources = resources or StaticResourceCheck()
        self.profiles = profiles
        self.intents = intents or CompositeIntentResolver()
        self.fallback = fallback or help_reply
        self.config = config or ChatflowConfig()
        self._locks: Dict[str, asyncio.Lock] = {}
        # handlers holding or waiting on each user's lock
        self._lock_holders: Dict[str, int] = defaultdict(int)

    # ------------------------------------------------------------------
    async def handle(self, message: InboundMessage) -> None:
        user_id = message.user_id
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        self._lock_holders[user_id] += 1
        try:
            async with lock:
                await self._handle_reporting_errors(message)
        finally:
            self._lock_holders[user_id] -= 1
            if not self._lock_holders[user_id]:
                del self._lock_holders[user_id]
                del self._locks[user_id]

    async def _handle_reporting_errors(self, message: InboundMessage) -> None:
        user_id = message.user_id
        try:
            await self._handle(message)
        except PreconditionError as exc:
            logger.info(f"Precondition failed for user {user_id}: {exc}")
            text = str(exc)
            if exc.setup_hint:
                text = f"{text}\n\n{exc.setup_hint}"
            await self._reply(user_id, text)
        except CommandDecodeError as exc:
            logger.warning(f"Could not decode message from user {user_id}: {exc}")
            await self._reply(
                user_id, "That button is no longer valid. Type /help to see what I can do."
            )
        except CollaboratorError as exc:
            logger.error(f"Collaborator failure for user {user_id}: {exc}")
            await self._reply(
                user_id, f"⚠️ {exc.stage.title()} failed: {exc.detail}. Nothing was lost, please try again."
            )
        except PersistenceError as exc:
            logger.error(f"Persistence failure for user {user_id}: {exc}")
            await self._reply(
                user_id, "⚠️ Something went wrong while saving your progress. Please try again."
            )

    async def _handle(self, message: InboundMessage) -> None:
        user_id = message.user_id
        command = decode_command(message.text, message.callback_data)
        active = await self._active_states(user_id)
        logger.debug(f"User {user_id} sent {command.kind}; active flows: {list(active)}")

        if isinstance(command, CancelCommand):
            await self._cancel(user_id, command, active)
        elif isinstance(command, ContinueCommand):
            await self._continue(user_id, command, active)
        elif isinstance(command, ConfirmCommand):
            await self._confirm(user_id, command, active, message.text)
        elif isinstance(command, SendCommand):
            await self._send(user_id, command, active, message.text)
        elif isinstance(command, StartCommand):
            await self._start(user_id, command.workflow_type, active, action=command.action)
        elif isinstance(command, TextMessage):
            await self._text(user_id, command.text, active)

    # ------------------------------------------------------------------
    # Helpers
    async def _reply(
        self, user_id: str, text: str, options: Optional[Sequence[ReplyOption]] = None
    ) -> None:
        await self.replies.prompt(user_id, text, options)

    async def _reply_completion(self, user_id: str, completion: Completion) -> None:
        await self._reply(user_id, completion.text, completion.options or None)

    async def _reply_outcome(self, user_id: str, outcome: StepOutcome) -> None:
        texts = outcome.texts()
        for index, text in enumerate(texts):
            last = index == len(texts) - 1
            await self._reply(user_id, text, outcome.options if last and outcome.options else None)

    async def _active_states(self, user_id: str) -> Dict[WorkflowType, WorkflowState]:
        """Load the user's states, discarding the ones that have expired."""
        active: Dict[WorkflowType, WorkflowState] = {}
        for state in await self.store.list_for_user(user_id):
            if state.is_expired():
                completion = await self.pipeline.cancel(state, reason="expired")
                await self._reply_completion(user_id, completion)
                continue
            active[state.workflow_type] = state
        return active

    def _target(
        self,
        active: Dict[WorkflowType, WorkflowState],
        workflow_type: Optional[WorkflowType],
    ) -> Optional[WorkflowState]:
        if workflow_type is not None:
            return active.get(workflow_type)
        return _most_recent(active.values())

    async def _show_current(self, state: WorkflowState) -> None:
        if state.current_step == QUOTED_STEP:
            await self._reply(state.user_id, quote_summary(state), quote_options(state))
        else:
            await self._reply(state.user_id, self.processor.prompt_for(state))

    # ------------------------------------------------------------------
    # Control commands
    async def _cancel(
        self,
        user_id: str,
        command: CancelCommand,
        active: Dict[WorkflowType, WorkflowState],
    ) -> None:
        if command.draft_id is not None:
            owner = next((s for s in active.values() if s.draft_id == command.draft_id), None)
            if owner is not None:
                completion = await self.pipeline.cancel(owner)
            else:
                completion = await self.pipeline.discard_document(user_id, command.draft_id)
            await self._reply_completion(user_id, completion)
            return

        target = self._target(active, command.workflow_type)
        if target is not None:
            await self._reply_completion(user_id, await self.pipeline.cancel(target))
            return

        # Nothing in progress: fall back to the latest document awaiting delivery.
        if command.workflow_type is None or command.workflow_type.is_document:
            kinds = (
                [ENTITY_KIND_BY_WORKFLOW[command.workflow_type]]
                if command.workflow_type is not None
                else [EntityKind.INVOICE, EntityKind.PROPOSAL]
            )
            pending = await self.repository.latest_for_user(
                user_id, kinds, status=DraftStatus.PENDING_DELIVERY
            )
            if pending is not None:
                await self._reply_completion(
                    user_id, await self.pipeline.discard_document(user_id, pending.id)
                )
                return
        await self._reply(user_id, "There's nothing to cancel.")

    async def _continue(
        self,
        user_id: str,
        command: ContinueCommand,
        active: Dict[WorkflowType, WorkflowState],
    ) -> None:
        target = self._target(active, command.workflow_type)
        if target is None:
            await self._reply(user_id, "You have nothing in progress. Type /help to get started.")
            return
        await self._show_current(target)

    async def _confirm(
        self,
        user_id: str,
        command: ConfirmCommand,
        active: Dict[WorkflowType, WorkflowState],
        raw_text: Optional[str],
    ) -> None:
        awaiting = {
            wt: s for wt, s in active.items() if s.current_step == QUOTED_STEP
        }
        target = self._target(awaiting, command.workflow_type)
        if target is None:
            if raw_text and active:
                await self._text(user_id, raw_text, active)
            else:
                await self._reply(user_id, "There's nothing waiting for your confirmation.")
            return
        if command.draft_id and command.draft_id != target.draft_id:
            await self._reply(user_id, "That quote is no longer active.")
            return
        if target.phase == TransferPhase.QUOTED:
            completion = await self.pipeline.execute(target)
        else:
            completion = await self.pipeline.requote(target)
        await self._reply_completion(user_id, completion)

    async def _send(
        self,
        user_id: str,
        command: SendCommand,
        active: Dict[WorkflowType, WorkflowState],
        raw_text: Optional[str],
    ) -> None:
        draft_id = command.draft_id
        if draft_id is None:
            pending = await self.repository.latest_for_user(
                user_id,
                [EntityKind.INVOICE, EntityKind.PROPOSAL],
                status=DraftStatus.PENDING_DELIVERY,
            )
            if pending is None:
                if raw_text and active:
                    await self._text(user_id, raw_text, active)
                else:
                    await self._reply(user_id, "There's no document waiting to be sent.")
                return
            draft_id = pending.id
        await self._reply_completion(
            user_id, await self.pipeline.send_document(user_id, draft_id)
        )

    # ------------------------------------------------------------------
    # Starting workflows
    async def _initial_fields(
        self,
        user_id: str,
        workflow_type: WorkflowType,
        action: Optional[TransferAction],
        intent: Optional[Intent],
    ):
        if workflow_type.is_document:
            fields = FIELDS_MODELS[workflow_type]()
            profile = await self.profiles.get_profile(user_id) if self.profiles else None
            if profile is not None:
                if profile.name and profile.name.strip():
                    fields.freelancer_name = profile.name.strip()
                if profile.email and EMAIL_RE.match(profile.email.strip()):
                    fields.freelancer_email = profile.email.strip()
            return fields
        if intent is not None:
            return prefill_fields(intent)
        if workflow_type == WorkflowType.TRANSFER:
            return TransferFields(action=action or TransferAction.SEND)
        return PurchaseFields()

    async def _start(
        self,
        user_id: str,
        workflow_type: WorkflowType,
        active: Dict[WorkflowType, WorkflowState],
        action: Optional[TransferAction] = None,
        intent: Optional[Intent] = None,
    ) -> None:
        existing = active.get(workflow_type)
        if existing is not None:
            await self._reply(
                user_id,
                f"You already have an open {workflow_type.label}. Let's pick up where you left off.",
            )
            await self._show_current(existing)
            return

        definition = get_workflow(workflow_type)
        gated = definition.requires_resource and (
            not workflow_type.is_document or self.config.workflows.require_wallet_for_documents
        )
        if gated and not await self.resources.has_required_resource(user_id):
            raise PreconditionError(
                f"You need a wallet before starting this {workflow_type.label}.",
                setup_hint="Create one with /wallet and try again.",
            )

        fields = await self._initial_fields(user_id, workflow_type, action, intent)
        outcome = await self.processor.begin(user_id, workflow_type, fields)
        await self._reply_outcome(user_id, outcome)

    # ------------------------------------------------------------------
    # Free text
    def _classifier_context(self, state: WorkflowState) -> ClassifierContext:
        if state.current_step == QUOTED_STEP:
            return ClassifierContext(workflow_type=state.workflow_type, step_key=QUOTED_STEP)
        step = get_workflow(state.workflow_type).step(state.current_step)
        return ClassifierContext(
            workflow_type=state.workflow_type,
            step_key=step.key,
            shape=step.shape,
            choices=step.choices,
        )

    async def _text(
        self,
        user_id: str,
        text: str,
        active: Dict[WorkflowType, WorkflowState],
    ) -> None:
        target = _most_recent(active.values())
        if target is None:
            await self._new_request(user_id, text, active)
            return

        result = classify(text, self._classifier_context(target))
        logger.debug(
            f"Classified {text!r} for {target.workflow_type.value}.{target.current_step} "
            f"as {result.decision.value} ({result.reason})"
        )
        if result.decision == Decision.CONTROL:
            await self._reply_completion(user_id, await self.pipeline.cancel(target))
        elif result.decision == Decision.ANSWER:
            if target.current_step == QUOTED_STEP:
                await self._show_current(target)
            else:
                await self._reply_outcome(user_id, await self.processor.process(target, text))
        else:
            started = await self._new_request(user_id, text, active)
            if not started:
                await self._reply(
                    user_id,
                    f"(Your {target.workflow_type.label} is still open. Reply *continue* to resume.)",
                )

    async def _new_request(
        self,
        user_id: str,
        text: str,
        active: Dict[WorkflowType, WorkflowState],
    ) -> bool:
        """Resolve ``text`` as a fresh request. Returns ``True`` if a workflow was started or resumed."""
        intent = await self.intents.resolve(text)
        workflow_type = intent.workflow_type
        if workflow_type is None:
            await self._reply(user_id, await self.fallback(user_id, text))
            return False
        await self._start(user_id, workflow_type, active, action=intent.action, intent=intent)
        return True


async def build_dispatcher(
    replies: ReplyChannel,
    config: Optional[ChatflowConfig] = None,
    *,
    store: Optional[StateStore] = None,
    repository: Optional[EntityRepository] = None,
    renderer: Optional[DocumentRenderer] = None,
    delivery: Optional[DeliveryChannel] = None,
    execution: Optional[ExecutionClient] = None,
    resources: Optional[ResourceCheck] = None,
    profiles: Optional[ProfileLookup] = None,
    intents: Optional[IntentResolver] = None,
    fallback: Optional[FallbackHandler] = None,
) -> Dispatcher:
    """Wire a dispatcher from configuration, letting callers override any collaborator."""
    if config is None:
        # share the process-wide backends with the rest of the CLI
        config = load_config()
        store = store or get_state_store()
        repository = repository or await get_entity_repository()
    else:
        store = store or get_state_store(config=config)
        repository = repository or await get_entity_repository(config=config)

    if renderer is None:
        from .render import PdfDocumentRenderer

        renderer = PdfDocumentRenderer()
    if delivery is None:
        if config.delivery.endpoint:
            from .delivery import HttpDeliveryChannel

            delivery = HttpDeliveryChannel(config.delivery)
        else:
            delivery = LogDeliveryChannel()
    if execution is None:
        if config.execution.endpoint:
            from .execution import HttpExecutionClient

            execution = HttpExecutionClient(config.execution)
        else:
            execution = SimulatedExecutionClient(
                rates=config.execution.simulated_rates,
                fee_rate=config.execution.simulated_fee_rate,
                quote_ttl_seconds=config.workflows.quote_ttl_seconds,
            )
    if intents is None:
        agent = AgentIntentResolver(config.intents.model) if config.intents.model else None
        intents = CompositeIntentResolver(agent=agent)

    pipeline = CompletionPipeline(store, repository, renderer, delivery, execution, config)
    processor = StepProcessor(store, repository, pipeline, config)
    return Dispatcher(
        store,
        repository,
        processor,
        pipeline,
        replies,
        resources=resources,
        profiles=profiles,
        intents=intents,
        fallback=fallback,
        config=config,
    )


__all__: List[str] = ["Dispatcher", "HELP_TEXT", "build_dispatcher", "help_reply"]
