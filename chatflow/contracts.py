"""Core data contracts for chatflow workflows."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowType(str, Enum):
    """Kinds of guided workflows. At most one of each may be active per user."""

    INVOICE = "invoice_draft"
    PROPOSAL = "proposal_draft"
    TRANSFER = "transfer_confirm"
    PURCHASE = "purchase_confirm"

    @property
    def is_document(self) -> bool:
        return self in (WorkflowType.INVOICE, WorkflowType.PROPOSAL)

    @property
    def label(self) -> str:
        return _WORKFLOW_LABELS[self]


_WORKFLOW_LABELS = {
    WorkflowType.INVOICE: "invoice",
    WorkflowType.PROPOSAL: "proposal",
    WorkflowType.TRANSFER: "transfer",
    WorkflowType.PURCHASE: "purchase",
}


class EntityKind(str, Enum):
    INVOICE = "invoice"
    PROPOSAL = "proposal"
    TRANSFER = "transfer"
    PURCHASE = "purchase"


ENTITY_KIND_BY_WORKFLOW = {
    WorkflowType.INVOICE: EntityKind.INVOICE,
    WorkflowType.PROPOSAL: EntityKind.PROPOSAL,
    WorkflowType.TRANSFER: EntityKind.TRANSFER,
    WorkflowType.PURCHASE: EntityKind.PURCHASE,
}


class DraftStatus(str, Enum):
    DRAFT = "draft"
    PENDING_DELIVERY = "pending-delivery"
    SENT = "sent"
    QUOTED = "quoted"
    CONFIRMED = "confirmed"
    EXECUTED = "executed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TransferPhase(str, Enum):
    COLLECTING = "collecting"
    QUOTED = "quoted"
    CONFIRMED = "confirmed"
    EXECUTED = "executed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TransferAction(str, Enum):
    SEND = "send"
    SWAP = "swap"
    BRIDGE = "bridge"


# ---------------------------------------------------------------------------
# Per-flow collected fields. Field order follows step order.


class InvoiceFields(BaseModel):
    freelancer_name: Optional[str] = None
    freelancer_email: Optional[str] = None
    client_name: Optional[str] = None
    client_email: Optional[str] = None
    project_description: Optional[str] = None
    quantity: Optional[int] = None
    rate: Optional[Decimal] = None
    currency: Optional[str] = None
    amount: Optional[Decimal] = None
    due_date: Optional[date] = None
    network: Optional[str] = None


class ProposalFields(BaseModel):
    freelancer_name: Optional[str] = None
    freelancer_email: Optional[str] = None
    client_name: Optional[str] = None
    client_email: Optional[str] = None
    project_title: Optional[str] = None
    deliverables: Optional[List[str]] = None
    complexity: Optional[Literal["simple", "moderate", "complex"]] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    timeline: Optional[str] = None


class TransferFields(BaseModel):
    action: TransferAction = TransferAction.SEND
    amount: Optional[Decimal] = None
    token: Optional[str] = None
    recipient: Optional[str] = None
    to_token: Optional[str] = None
    to_network: Optional[str] = None
    network: Optional[str] = None


class PurchaseFields(BaseModel):
    token: Optional[str] = None
    network: Optional[str] = None
    fiat_amount: Optional[Decimal] = None
    fiat_currency: Optional[str] = None


CollectedFields = Union[InvoiceFields, ProposalFields, TransferFields, PurchaseFields]


# ---------------------------------------------------------------------------
# Quotes and execution results


class Quote(BaseModel):
    """Rate and fee estimate for a value transfer, valid until ``expires_at``."""

    quote_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    rate: Decimal
    fee: Decimal
    amount_in: Decimal
    currency_in: str
    amount_out: Decimal
    currency_out: str
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at


class ExecutionResult(BaseModel):
    reference: str
    status: Literal["executed", "failed"] = "executed"
    detail: Optional[str] = None


# ---------------------------------------------------------------------------
# Workflow state: one concrete model per workflow type


class _WorkflowStateBase(BaseModel):
    user_id: str
    draft_id: str
    current_step: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    expires_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) >= self.expires_at

    def touch(self, ttl: timedelta, now: Optional[datetime] = None) -> None:
        """Record activity and push the expiry forward by ``ttl``."""
        now = now or utcnow()
        self.updated_at = now
        self.expires_at = now + ttl


class InvoiceWorkflowState(_WorkflowStateBase):
    workflow_type: Literal[WorkflowType.INVOICE] = WorkflowType.INVOICE
    collected: InvoiceFields = Field(default_factory=InvoiceFields)


class ProposalWorkflowState(_WorkflowStateBase):
    workflow_type: Literal[WorkflowType.PROPOSAL] = WorkflowType.PROPOSAL
    collected: ProposalFields = Field(default_factory=ProposalFields)


class _ValueTransferStateBase(_WorkflowStateBase):
    phase: TransferPhase = TransferPhase.COLLECTING
    quote: Optional[Quote] = None


class TransferWorkflowState(_ValueTransferStateBase):
    workflow_type: Literal[WorkflowType.TRANSFER] = WorkflowType.TRANSFER
    collected: TransferFields = Field(default_factory=TransferFields)


class PurchaseWorkflowState(_ValueTransferStateBase):
    workflow_type: Literal[WorkflowType.PURCHASE] = WorkflowType.PURCHASE
    collected: PurchaseFields = Field(default_factory=PurchaseFields)


WorkflowState = Annotated[
    Union[
        InvoiceWorkflowState,
        ProposalWorkflowState,
        TransferWorkflowState,
        PurchaseWorkflowState,
    ],
    Field(discriminator="workflow_type"),
]

ValueTransferState = Union[TransferWorkflowState, PurchaseWorkflowState]

STATE_MODELS: Dict[WorkflowType, type] = {
    WorkflowType.INVOICE: InvoiceWorkflowState,
    WorkflowType.PROPOSAL: ProposalWorkflowState,
    WorkflowType.TRANSFER: TransferWorkflowState,
    WorkflowType.PURCHASE: PurchaseWorkflowState,
}

FIELDS_MODELS: Dict[WorkflowType, type] = {
    WorkflowType.INVOICE: InvoiceFields,
    WorkflowType.PROPOSAL: ProposalFields,
    WorkflowType.TRANSFER: TransferFields,
    WorkflowType.PURCHASE: PurchaseFields,
}

_STATE_ADAPTER: TypeAdapter = TypeAdapter(WorkflowState)


def state_to_json(state: _WorkflowStateBase) -> str:
    return state.model_dump_json()


def state_from_json(data: str | bytes) -> WorkflowState:
    """Deserialize a persisted state, selecting the model by ``workflow_type``."""
    return _STATE_ADAPTER.validate_json(data)


def state_from_dict(data: dict[str, Any]) -> WorkflowState:
    return _STATE_ADAPTER.validate_python(data)


# ---------------------------------------------------------------------------
# Draft entities and supporting records


class DraftEntity(BaseModel):
    """Business record being built by a workflow (document or transfer intent)."""

    id: str
    number: str
    kind: EntityKind
    user_id: str
    status: DraftStatus = DraftStatus.DRAFT
    fields: Dict[str, Any] = Field(default_factory=dict)
    revision: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class UserProfile(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None


class ReplyOption(BaseModel):
    """A tappable option rendered next to a reply; carries an encoded command."""

    label: str
    callback_data: str


class InboundMessage(BaseModel):
    """A message received from the chat transport."""

    user_id: str
    text: Optional[str] = None
    callback_data: Optional[str] = None
    received_at: datetime = Field(default_factory=utcnow)
