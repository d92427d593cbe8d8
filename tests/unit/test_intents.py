from decimal import Decimal

import pytest
from pydantic_ai.models.test import TestModel as ScriptedModel

from chatflow.contracts import PurchaseFields, TransferAction, TransferFields, WorkflowType
from chatflow.errors import CollaboratorError
from chatflow.intents import (
    AgentIntentResolver,
    CompositeIntentResolver,
    Intent,
    IntentName,
    RuleIntentResolver,
    prefill_fields,
)

EVM = "0x" + "ab" * 20
SOLANA = "7EcDhSYGxXyscszYEp35KHN8vvw3svAuLKTzXwCFLtV"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "text, name",
    [
        ("help", IntentName.HELP),
        ("/start", IntentName.HELP),
        ("invoice", IntentName.CREATE_INVOICE),
        ("Can you create an invoice for Acme?", IntentName.CREATE_INVOICE),
        ("I need a proposal for a new client", IntentName.CREATE_PROPOSAL),
        ("send crypto", IntentName.SEND),
        ("what's the weather like", IntentName.UNKNOWN),
        ("my invoice was paid", IntentName.UNKNOWN),
    ],
)
async def test_rule_resolver_names(text, name):
    assert (await RuleIntentResolver().resolve(text)).name == name


@pytest.mark.asyncio
async def test_rule_resolver_extracts_send_parameters():
    intent = await RuleIntentResolver().resolve(f"send 10 USDC to {EVM} on base")
    assert intent.name == IntentName.SEND
    assert intent.workflow_type == WorkflowType.TRANSFER
    assert intent.action == TransferAction.SEND
    assert intent.amount == Decimal("10")
    assert intent.token == "USDC"
    assert intent.recipient == EVM
    assert intent.network == "base"


@pytest.mark.asyncio
async def test_solana_address_implies_solana_network():
    intent = await RuleIntentResolver().resolve(f"transfer 5 sol to {SOLANA}")
    assert intent.recipient == SOLANA
    assert intent.network == "solana"
    assert intent.token == "SOL"


@pytest.mark.asyncio
async def test_rule_resolver_swap_bridge_and_buy():
    rules = RuleIntentResolver()

    swap = await rules.resolve("swap 0.5 ETH to USDC on base")
    assert swap.name == IntentName.SWAP
    assert (swap.amount, swap.token, swap.to_token, swap.network) == (
        Decimal("0.5"),
        "ETH",
        "USDC",
        "base",
    )

    bridge = await rules.resolve("bridge 20 USDC from base to celo")
    assert bridge.name == IntentName.BRIDGE
    assert (bridge.network, bridge.to_network) == ("base", "celo")

    buy = await rules.resolve("buy 50 USD of USDC on base")
    assert buy.name == IntentName.BUY
    assert buy.workflow_type == WorkflowType.PURCHASE
    assert (buy.amount, buy.fiat_currency, buy.token, buy.network) == (
        Decimal("50"),
        "USD",
        "USDC",
        "base",
    )


def test_prefill_transfer_fields_keeps_valid_values_only():
    fields = prefill_fields(
        Intent(name=IntentName.SEND, amount=Decimal("10"), token="usdc", recipient=EVM, network="Base")
    )
    assert fields == TransferFields(
        action=TransferAction.SEND,
        amount=Decimal("10"),
        token="USDC",
        recipient=EVM,
        network="base",
    )

    partial = prefill_fields(
        Intent(name=IntentName.SWAP, amount=Decimal("10"), token="$$", recipient="nope", network="mars")
    )
    assert partial == TransferFields(action=TransferAction.SWAP)


def test_prefill_purchase_fields():
    fields = prefill_fields(
        Intent(name=IntentName.BUY, amount=Decimal("50"), fiat_currency="usd", token="usdt")
    )
    assert fields == PurchaseFields(token="USDT", fiat_amount=Decimal("50"), fiat_currency="USD")

    # an amount without a currency is asked for again
    assert prefill_fields(Intent(name=IntentName.BUY, amount=Decimal("50"))) == PurchaseFields()
    assert prefill_fields(Intent(name=IntentName.HELP)) is None


@pytest.mark.asyncio
async def test_agent_resolver_returns_typed_intent():
    model = ScriptedModel(
        custom_output_args={"name": "swap", "amount": "1", "token": "ETH", "to_token": "USDC"}
    )
    intent = await AgentIntentResolver(model).resolve("could you turn my eth into dollars")
    assert intent.name == IntentName.SWAP
    assert intent.amount == Decimal("1")
    assert intent.to_token == "USDC"


class _StubResolver:
    def __init__(self, intent=None, error=None):
        self.intent = intent
        self.error = error
        self.calls = []

    async def resolve(self, text):
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return self.intent


@pytest.mark.asyncio
async def test_composite_uses_agent_only_for_unknown_text():
    agent = _StubResolver(Intent(name=IntentName.BUY))
    resolver = CompositeIntentResolver(agent=agent)

    assert (await resolver.resolve("/invoice")).name == IntentName.CREATE_INVOICE
    assert agent.calls == []

    assert (await resolver.resolve("get me some stablecoins")).name == IntentName.BUY
    assert agent.calls == ["get me some stablecoins"]


@pytest.mark.asyncio
async def test_composite_falls_back_to_rules_when_agent_fails():
    agent = _StubResolver(error=CollaboratorError("intent", "model unavailable"))
    resolver = CompositeIntentResolver(agent=agent)
    assert (await resolver.resolve("tell me a joke")).name == IntentName.UNKNOWN
