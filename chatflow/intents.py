"""Map free text onto a workflow intent.

Rules come first; an optional pydantic-ai agent handles whatever the rules
cannot place.
"""

from __future__ import annotations

import logging
import re
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Protocol

from pydantic import BaseModel, Field
from pydantic_ai import Agent
from pydantic_ai.exceptions import AgentRunError

from .contracts import (
    PurchaseFields,
    TransferAction,
    TransferFields,
    WorkflowType,
)
from .errors import CollaboratorError, StepValidationError
from .registry.transfers import PURCHASE_TOKENS, TRANSFER_NETWORKS
from .validators import EVM_ADDRESS_RE, parse_choice, parse_token, parse_wallet_address

logger = logging.getLogger(__name__)


class IntentName(str, Enum):
    CREATE_INVOICE = "create_invoice"
    CREATE_PROPOSAL = "create_proposal"
    SEND = "send"
    SWAP = "swap"
    BRIDGE = "bridge"
    BUY = "buy"
    HELP = "help"
    UNKNOWN = "unknown"


_WORKFLOW_BY_INTENT = {
    IntentName.CREATE_INVOICE: WorkflowType.INVOICE,
    IntentName.CREATE_PROPOSAL: WorkflowType.PROPOSAL,
    IntentName.SEND: WorkflowType.TRANSFER,
    IntentName.SWAP: WorkflowType.TRANSFER,
    IntentName.BRIDGE: WorkflowType.TRANSFER,
    IntentName.BUY: WorkflowType.PURCHASE,
}

_ACTION_BY_INTENT = {
    IntentName.SEND: TransferAction.SEND,
    IntentName.SWAP: TransferAction.SWAP,
    IntentName.BRIDGE: TransferAction.BRIDGE,
}


class Intent(BaseModel):
    """What the user asked for, with any parameters they already gave."""

    name: IntentName = IntentName.UNKNOWN
    amount: Optional[Decimal] = Field(default=None, description="Token or fiat amount")
    token: Optional[str] = Field(default=None, description="Token being sent, swapped or bought")
    recipient: Optional[str] = Field(default=None, description="Destination wallet address")
    to_token: Optional[str] = Field(default=None, description="Token to receive in a swap")
    network: Optional[str] = Field(default=None, description="Source network")
    to_network: Optional[str] = Field(default=None, description="Destination network of a bridge")
    fiat_currency: Optional[str] = Field(default=None, description="Fiat currency paid in a purchase")

    @property
    def workflow_type(self) -> Optional[WorkflowType]:
        return _WORKFLOW_BY_INTENT.get(self.name)

    @property
    def action(self) -> Optional[TransferAction]:
        return _ACTION_BY_INTENT.get(self.name)


class IntentResolver(Protocol):
    async def resolve(self, text: str) -> Intent:
        """Return the intent expressed by ``text``."""


# ---------------------------------------------------------------------------
# Rule based resolver

_NETWORKS = "|".join(TRANSFER_NETWORKS)
_FIAT = {"USD", "NGN", "GHS", "KES", "EUR", "GBP"}

CREATE_VERB_RE = r"(?:create|make|new|generate|draft|start|prepare|need|want|write|send)"
INVOICE_RE = re.compile(rf"^(?:/?invoice|.*\b{CREATE_VERB_RE}\b.*\binvoice\b.*)$")
PROPOSAL_RE = re.compile(rf"^(?:/?proposal|.*\b{CREATE_VERB_RE}\b.*\bproposal\b.*)$")
HELP_RE = re.compile(r"^(?:/?help|/start|menu|what can you do\??)$")
SWAP_RE = re.compile(r"\b(?:swap|exchange)\b")
BRIDGE_RE = re.compile(r"\bbridge\b")
BUY_RE = re.compile(r"\b(?:buy|purchase|onramp)\b")
SEND_RE = re.compile(r"\b(?:send|transfer|pay)\b")

AMOUNT_TOKEN_RE = re.compile(r"\b(?P<amount>\d+(?:\.\d+)?)\s*(?P<token>[A-Za-z][A-Za-z0-9]{1,9})\b")
ON_NETWORK_RE = re.compile(rf"\b(?:on|from)\s+(?P<network>{_NETWORKS})\b")
TO_NETWORK_RE = re.compile(rf"\bto\s+(?P<network>{_NETWORKS})\b")
TO_TOKEN_RE = re.compile(r"\b(?:to|for|into)\s+(?P<token>[A-Za-z][A-Za-z0-9]{1,9})\b")
ADDRESS_RE = re.compile(r"\b(0x[a-fA-F0-9]{40}|[1-9A-HJ-NP-Za-km-z]{32,44})\b")


def _amounts(text: str) -> list[tuple[Decimal, str]]:
    return [
        (Decimal(m.group("amount")), m.group("token").upper())
        for m in AMOUNT_TOKEN_RE.finditer(text.replace(",", ""))
    ]


class RuleIntentResolver:
    """Keyword and pattern based intent resolution."""

    async def resolve(self, text: str) -> Intent:
        original = text.strip()
        lowered = original.lower()

        if HELP_RE.match(lowered):
            return Intent(name=IntentName.HELP)
        if INVOICE_RE.match(lowered):
            return Intent(name=IntentName.CREATE_INVOICE)
        if PROPOSAL_RE.match(lowered):
            return Intent(name=IntentName.CREATE_PROPOSAL)

        amounts = _amounts(original)
        on_network = ON_NETWORK_RE.search(lowered)
        network = on_network.group("network") if on_network else None

        if BUY_RE.search(lowered):
            intent = Intent(name=IntentName.BUY, network=network)
            for amount, token in amounts:
                if token in _FIAT:
                    intent.amount, intent.fiat_currency = amount, token
                elif token in PURCHASE_TOKENS:
                    intent.token = token
            if intent.token is None:
                for token in PURCHASE_TOKENS:
                    if re.search(rf"\b{token.lower()}\b", lowered):
                        intent.token = token
                        break
            return intent

        if BRIDGE_RE.search(lowered):
            intent = Intent(name=IntentName.BRIDGE, network=network)
            to_network = TO_NETWORK_RE.search(lowered)
            if to_network:
                intent.to_network = to_network.group("network")
            if amounts:
                intent.amount, intent.token = amounts[0]
            return intent

        if SWAP_RE.search(lowered):
            intent = Intent(name=IntentName.SWAP, network=network)
            if amounts:
                intent.amount, intent.token = amounts[0]
            to_token = TO_TOKEN_RE.search(original)
            if to_token and to_token.group("token").lower() not in TRANSFER_NETWORKS:
                intent.to_token = to_token.group("token").upper()
            return intent

        address = ADDRESS_RE.search(original)
        if SEND_RE.search(lowered) and (amounts or address or "crypto" in lowered):
            intent = Intent(name=IntentName.SEND, network=network)
            if amounts:
                intent.amount, intent.token = amounts[0]
            if address:
                intent.recipient = address.group(1)
                if intent.network is None and EVM_ADDRESS_RE.match(intent.recipient) is None:
                    intent.network = "solana"
            return intent

        return Intent()


# ---------------------------------------------------------------------------
# LLM resolver

INTENT_SYSTEM_PROMPT = (
    "You route messages for a freelancer finance assistant. Classify the user's "
    "message as one of: create_invoice, create_proposal, send, swap, bridge, buy, "
    "help or unknown. Extract amounts, token symbols, wallet addresses and network "
    f"names ({', '.join(TRANSFER_NETWORKS)}) only when the user stated them."
)


class AgentIntentResolver:
    """Resolve intents with a pydantic-ai agent returning a typed :class:`Intent`."""

    def __init__(self, model: Any, system_prompt: str = INTENT_SYSTEM_PROMPT) -> None:
        self.model = model
        self.system_prompt = system_prompt
        self._agent: Optional[Agent] = None

    @property
    def agent(self) -> Agent:
        if self._agent is None:
            self._agent = Agent(
                self.model, output_type=Intent, system_prompt=self.system_prompt
            )
        return self._agent

    async def resolve(self, text: str) -> Intent:
        try:
            result = await self.agent.run(text)
        except AgentRunError as exc:
            raise CollaboratorError("intent", str(exc)) from exc
        return result.output


class CompositeIntentResolver:
    """Try the rules, then fall back to ``agent`` when one is configured."""

    def __init__(
        self,
        rules: Optional[IntentResolver] = None,
        agent: Optional[IntentResolver] = None,
    ) -> None:
        self.rules = rules or RuleIntentResolver()
        self.agent = agent

    async def resolve(self, text: str) -> Intent:
        intent = await self.rules.resolve(text)
        if intent.name != IntentName.UNKNOWN or self.agent is None:
            return intent
        try:
            return await self.agent.resolve(text)
        except CollaboratorError as exc:
            logger.warning(f"Intent agent unavailable, using rule result: {exc}")
            return intent


# ---------------------------------------------------------------------------
# Pre-filling workflow fields from an intent


def _clean(parser, value: Any) -> Any:
    if value is None:
        return None
    try:
        return parser(str(value))
    except StepValidationError:
        logger.debug(f"Ignoring unusable intent parameter {value!r}")
        return None


def _network(value: str) -> str:
    return parse_choice(value, TRANSFER_NETWORKS, "unknown network")


def prefill_fields(intent: Intent) -> TransferFields | PurchaseFields | None:
    """Turn the parameters of a value-transfer intent into collected fields.

    Values that would not pass the matching step's validator are dropped so
    the step asks for them instead.
    """
    if intent.workflow_type == WorkflowType.TRANSFER:
        token = _clean(parse_token, intent.token)
        amount = intent.amount if intent.amount and intent.amount > 0 else None
        return TransferFields(
            action=intent.action or TransferAction.SEND,
            # amount and token are collected together
            amount=amount if token else None,
            token=token if amount else None,
            recipient=_clean(parse_wallet_address, intent.recipient),
            to_token=_clean(parse_token, intent.to_token),
            to_network=_clean(_network, intent.to_network),
            network=_clean(_network, intent.network),
        )
    if intent.workflow_type == WorkflowType.PURCHASE:
        fiat = intent.amount if intent.amount and intent.amount > 0 else None
        return PurchaseFields(
            token=_clean(lambda v: parse_choice(v, PURCHASE_TOKENS, "unknown token").upper(), intent.token),
            network=_clean(_network, intent.network),
            fiat_amount=fiat if intent.fiat_currency else None,
            fiat_currency=intent.fiat_currency.upper() if fiat and intent.fiat_currency else None,
        )
    return None
