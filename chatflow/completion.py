"""Side effects that run once a workflow has collected everything it needs."""

from __future__ import annotations

import hashlib
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .commands import CancelCommand, ConfirmCommand, SendCommand, encode_callback
from .config import ChatflowConfig
from .constants import PLATFORM_FEE_RATE, QUOTED_STEP
from .contracts import (
    ENTITY_KIND_BY_WORKFLOW,
    DraftEntity,
    DraftStatus,
    EntityKind,
    ReplyOption,
    TransferAction,
    TransferPhase,
    ValueTransferState,
    WorkflowState,
    WorkflowType,
)
from .collaborators import DeliveryChannel, DocumentRenderer, ExecutionClient
from .errors import CollaboratorError, PersistenceError
from .persistence import EntityRepository, StateStore
from .processor import workflow_ttl

logger = logging.getLogger(__name__)


class Completion(BaseModel):
    """Reply produced by a completion stage."""

    text: str
    options: List[ReplyOption] = Field(default_factory=list)


def idempotency_key(draft_id: str, revision: int, stage: str) -> str:
    """Stable key for one attempt at ``stage`` on one revision of a draft."""
    digest = hashlib.sha256(f"{draft_id}:{revision}:{stage}".encode()).hexdigest()
    return f"{stage}-{digest[:32]}"


def _money(value: Any, currency: Optional[str]) -> str:
    amount = Decimal(str(value))
    return f"{amount:,.2f} {currency or ''}".strip()


def document_preview(entity: DraftEntity) -> str:
    fields = entity.fields
    if entity.kind == EntityKind.INVOICE:
        total = Decimal(str(fields.get("amount", 0)))
        fee = total * Decimal(PLATFORM_FEE_RATE)
        currency = fields.get("currency")
        lines = [
            f"📄 **Invoice {entity.number}**",
            "",
            f"**From:** {fields.get('freelancer_name')} ({fields.get('freelancer_email')})",
            f"**To:** {fields.get('client_name')} ({fields.get('client_email')})",
            f"**Project:** {fields.get('project_description')}",
            f"**Quantity:** {fields.get('quantity')} × {_money(fields.get('rate', 0), currency)}",
            f"**Total:** {_money(total, currency)}",
            f"**Platform fee (1%):** {_money(fee, currency)}",
            f"**You receive:** {_money(total - fee, currency)}",
            f"**Due:** {fields.get('due_date')}",
            f"**Network:** {str(fields.get('network', '')).title()}",
        ]
    else:
        deliverables = fields.get("deliverables") or []
        lines = [
            f"📋 **Proposal {entity.number}**",
            "",
            f"**From:** {fields.get('freelancer_name')} ({fields.get('freelancer_email')})",
            f"**To:** {fields.get('client_name')} ({fields.get('client_email')})",
            f"**Project:** {fields.get('project_title')}",
            "**Deliverables:**",
            *[f"• {item}" for item in deliverables],
            f"**Complexity:** {str(fields.get('complexity', '')).title()}",
            f"**Budget:** {_money(fields.get('amount', 0), fields.get('currency'))}",
            f"**Timeline:** {fields.get('timeline')}",
        ]
    return "\n".join(lines)


def quote_summary(state: ValueTransferState) -> str:
    quote = state.quote
    fields = state.collected
    if state.workflow_type == WorkflowType.PURCHASE:
        header = f"💳 **Buy {fields.token} on {str(fields.network).title()}**"
    elif fields.action == TransferAction.SWAP:
        header = f"🔄 **Swap {fields.token} → {fields.to_token} on {str(fields.network).title()}**"
    elif fields.action == TransferAction.BRIDGE:
        header = (
            f"🌉 **Bridge {fields.token} from {str(fields.network).title()} "
            f"to {str(fields.to_network).title()}**"
        )
    else:
        header = f"💸 **Send {fields.token} on {str(fields.network).title()}**\nTo: `{fields.recipient}`"
    if quote is None:
        return f"{header}\n\nNo quote yet. Reply *confirm* to request one."
    return (
        f"{header}\n\n"
        f"You pay: {quote.amount_in} {quote.currency_in}\n"
        f"Fee: {quote.fee} {quote.currency_in}\n"
        f"You receive: {quote.amount_out} {quote.currency_out}\n"
        f"Rate: {quote.rate}\n"
        f"Quote valid until {quote.expires_at:%H:%M:%S} UTC\n\n"
        "Confirm to proceed or cancel to abort."
    )


def quote_options(state: ValueTransferState) -> List[ReplyOption]:
    return [
        ReplyOption(
            label="✅ Confirm",
            callback_data=encode_callback(
                ConfirmCommand(workflow_type=state.workflow_type, draft_id=state.draft_id)
            ),
        ),
        ReplyOption(
            label="❌ Cancel",
            callback_data=encode_callback(CancelCommand(workflow_type=state.workflow_type)),
        ),
    ]


class CompletionPipeline:
    """Render, deliver, quote and execute completed workflows.

    Every external call is tagged with an idempotency key derived from the
    draft id, its revision and the stage, and status guards keep a sent
    document or an executed transfer from being processed twice.
    """

    def __init__(
        self,
        store: StateStore,
        repository: EntityRepository,
        renderer: DocumentRenderer,
        delivery: DeliveryChannel,
        execution: ExecutionClient,
        config: Optional[ChatflowConfig] = None,
    ) -> None:
        self.store = store
        self.repository = repository
        self.renderer = renderer
        self.delivery = delivery
        self.execution = execution
        self.config = config or ChatflowConfig()

    async def _require_draft(self, draft_id: str) -> DraftEntity:
        entity = await self.repository.get_draft(draft_id)
        if entity is None:
            raise PersistenceError(f"Draft {draft_id} not found")
        return entity

    # ------------------------------------------------------------------
    # Terminal step
    async def on_terminal(self, state: WorkflowState) -> Completion:
        if state.workflow_type.is_document:
            return await self._finish_document(state)
        return await self._request_quote(state)

    async def _finish_document(self, state: WorkflowState) -> Completion:
        entity = await self._require_draft(state.draft_id)
        preview = document_preview(entity)
        await self.repository.set_status(entity.id, DraftStatus.PENDING_DELIVERY)
        await self.store.delete(state.user_id, state.workflow_type)
        logger.info(f"{entity.kind.value} {entity.number} is ready for delivery")
        recipient = entity.fields.get("client_email")
        return Completion(
            text=(
                f"{preview}\n\n"
                f"Reply *send* to email it to {recipient}, or *cancel* to discard it."
            ),
            options=[
                ReplyOption(
                    label=f"📧 Send to {recipient}",
                    callback_data=encode_callback(SendCommand(draft_id=entity.id)),
                ),
                ReplyOption(
                    label="🗑️ Discard",
                    callback_data=encode_callback(CancelCommand(draft_id=entity.id)),
                ),
            ],
        )

    def quote_params(self, state: ValueTransferState) -> Dict[str, Any]:
        return {
            "kind": ENTITY_KIND_BY_WORKFLOW[state.workflow_type].value,
            "user_id": state.user_id,
            **state.collected.model_dump(mode="json", exclude_none=True),
        }

    async def _request_quote(self, state: ValueTransferState) -> Completion:
        # Park the state before quoting so a failed quote can be retried.
        state.current_step = QUOTED_STEP
        state.phase = TransferPhase.COLLECTING
        state.quote = None
        await self.store.put(state)

        quote = await self.execution.quote(self.quote_params(state))
        state.quote = quote
        state.phase = TransferPhase.QUOTED
        state.touch(workflow_ttl(state.workflow_type, self.config.workflows))
        await self.repository.set_status(state.draft_id, DraftStatus.QUOTED)
        await self.store.put(state)
        logger.info(
            f"Quoted {state.workflow_type.value} draft {state.draft_id}: "
            f"{quote.amount_in} {quote.currency_in} -> {quote.amount_out} {quote.currency_out}"
        )
        return Completion(text=quote_summary(state), options=quote_options(state))

    async def requote(self, state: ValueTransferState) -> Completion:
        """Replace a missing or expired quote with a fresh one."""
        return await self._request_quote(state)

    # ------------------------------------------------------------------
    # Documents
    async def send_document(self, user_id: str, draft_id: str) -> Completion:
        entity = await self.repository.get_draft(draft_id)
        if entity is None or entity.user_id != user_id:
            return Completion(text="I couldn't find that document.")
        label = entity.kind.value.title()
        if entity.status == DraftStatus.SENT:
            return Completion(text=f"{label} {entity.number} was already sent.")
        if entity.status != DraftStatus.PENDING_DELIVERY:
            return Completion(
                text=f"{label} {entity.number} can't be sent while it is {entity.status.value}."
            )

        recipient = entity.fields.get("client_email")
        key = idempotency_key(entity.id, entity.revision, "deliver")
        try:
            artifact = await self.renderer.render(entity)
        except CollaboratorError:
            raise
        except Exception as exc:
            raise CollaboratorError("render", str(exc)) from exc

        delivered = await self.delivery.deliver(
            recipient,
            artifact,
            {
                "kind": entity.kind.value,
                "number": entity.number,
                "subject": f"{label} {entity.number} from {entity.fields.get('freelancer_name')}",
                "body": document_preview(entity),
                "idempotency_key": key,
            },
        )
        if not delivered:
            raise CollaboratorError("deliver", f"{recipient} was rejected by the provider")

        await self.repository.set_status(entity.id, DraftStatus.SENT)
        logger.info(f"{label} {entity.number} sent to {recipient}")
        return Completion(text=f"✅ {label} {entity.number} sent to {recipient}!")

    async def discard_document(self, user_id: str, draft_id: str) -> Completion:
        """Cancel a finished document that has not been delivered yet."""
        entity = await self.repository.get_draft(draft_id)
        if entity is None or entity.user_id != user_id:
            return Completion(text="I couldn't find that document.")
        label = entity.kind.value.title()
        if entity.status == DraftStatus.CANCELLED:
            return Completion(text=f"{label} {entity.number} was already discarded.")
        if entity.status != DraftStatus.PENDING_DELIVERY:
            return Completion(
                text=f"{label} {entity.number} can't be discarded while it is {entity.status.value}."
            )
        await self.repository.set_status(entity.id, DraftStatus.CANCELLED)
        logger.info(f"{label} {entity.number} discarded before delivery")
        return Completion(text=f"🗑️ {label} {entity.number} discarded.")

    # ------------------------------------------------------------------
    # Transfers and purchases
    async def execute(self, state: ValueTransferState) -> Completion:
        entity = await self._require_draft(state.draft_id)
        if entity.status == DraftStatus.EXECUTED:
            await self.store.delete(state.user_id, state.workflow_type)
            return Completion(text=f"{entity.number} was already completed.")
        if entity.status != DraftStatus.QUOTED or state.phase != TransferPhase.QUOTED:
            return Completion(
                text=f"{entity.number} can't be confirmed while it is {entity.status.value}."
            )
        if state.quote is None or state.quote.is_expired():
            completion = await self.requote(state)
            return Completion(
                text=f"⏱️ That quote expired, here is a fresh one.\n\n{completion.text}",
                options=completion.options,
            )

        await self.repository.set_status(entity.id, DraftStatus.CONFIRMED)
        state.phase = TransferPhase.CONFIRMED
        await self.store.put(state)

        params = {**self.quote_params(state), "quote_id": state.quote.quote_id}
        key = idempotency_key(entity.id, entity.revision, "execute")
        try:
            result = await self.execution.execute(params, key)
        except CollaboratorError:
            await self.repository.set_status(entity.id, DraftStatus.QUOTED)
            state.phase = TransferPhase.QUOTED
            await self.store.put(state)
            raise

        await self.repository.update_draft(
            entity.id,
            {
                "reference": result.reference,
                "quote": state.quote.model_dump(mode="json"),
                "detail": result.detail,
            },
        )
        await self.store.delete(state.user_id, state.workflow_type)
        if result.status == "failed":
            await self.repository.set_status(entity.id, DraftStatus.FAILED)
            logger.warning(f"{entity.number} failed: {result.detail}")
            return Completion(
                text=f"❌ {entity.number} failed: {result.detail or 'no details given'}"
            )

        await self.repository.set_status(entity.id, DraftStatus.EXECUTED)
        logger.info(f"{entity.number} executed with reference {result.reference}")
        return Completion(
            text=f"✅ Done! {entity.number} completed.\nReference: `{result.reference}`"
        )

    # ------------------------------------------------------------------
    # Cancellation and expiry
    async def cancel(self, state: WorkflowState, reason: str = "cancelled") -> Completion:
        """Mark the draft cancelled and drop the state. Never calls the execution client."""
        entity = await self.repository.get_draft(state.draft_id)
        if entity is not None and entity.status not in (
            DraftStatus.SENT,
            DraftStatus.EXECUTED,
            DraftStatus.FAILED,
        ):
            await self.repository.set_status(entity.id, DraftStatus.CANCELLED)
        await self.store.delete(state.user_id, state.workflow_type)
        logger.info(
            f"{state.workflow_type.value} for user {state.user_id} {reason} "
            f"(draft {state.draft_id})"
        )
        label = state.workflow_type.label.title()
        if reason == "expired":
            return Completion(text=f"⌛ Your {state.workflow_type.label} expired and was discarded.")
        return Completion(text=f"❌ {label} cancelled.")
