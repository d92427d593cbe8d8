"""Parameter-collection tables for value-transfer workflows.

These flows only cover the ``collecting`` phase. Reaching TERMINAL hands the
intent to the completion pipeline, which requests a quote and parks the
workflow in the ``quoted`` phase until the user confirms or cancels.
"""

from __future__ import annotations

from typing import Any

from ..constants import TERMINAL
from ..contracts import PurchaseFields, TransferAction, TransferFields, WorkflowType
from ..errors import StepValidationError
from ..validators import parse_amount, parse_choice, parse_token, parse_wallet_address
from .models import (
    AnswerShape,
    StepContext,
    StepDefinition,
    WorkflowDefinition,
    goto,
    set_field,
)

TRANSFER_NETWORKS = {
    "base": ("base network",),
    "ethereum": ("eth network", "mainnet", "ethereum network"),
    "solana": ("sol network", "solana network"),
    "celo": ("celo network",),
    "lisk": ("lisk network",),
}

PURCHASE_TOKENS = {
    "USDC": ("usdc",),
    "USDT": ("usdt",),
    "CUSD": ("cusd",),
}

_NETWORK_HINT = "Please choose a network: base, ethereum, solana, celo or lisk"


def _token_amount(raw: str, ctx: StepContext):
    amount, token = parse_amount(raw, default_currency="")
    if not token:
        raise StepValidationError("❌ Please include the token, e.g. 10 USDC or 0.05 ETH")
    return amount, token


def _apply_token_amount(fields: TransferFields, value: Any) -> None:
    fields.amount, fields.token = value


def _after_amount(fields: TransferFields) -> str:
    if fields.action == TransferAction.SWAP:
        return "to_token"
    if fields.action == TransferAction.BRIDGE:
        return "to_network"
    return "recipient"


def _network(raw: str, ctx: StepContext) -> str:
    return parse_choice(raw, TRANSFER_NETWORKS, _NETWORK_HINT)


def _address(raw: str, ctx: StepContext) -> str:
    return parse_wallet_address(raw)


def _token(raw: str, ctx: StepContext) -> str:
    return parse_token(raw)


def _purchase_token(raw: str, ctx: StepContext) -> str:
    return parse_choice(raw, PURCHASE_TOKENS, "Please choose a token: USDC, USDT or cUSD").upper()


def _fiat_amount(raw: str, ctx: StepContext):
    return parse_amount(raw, ctx.default_currency)


def _apply_fiat(fields: PurchaseFields, value: Any) -> None:
    fields.fiat_amount, fields.fiat_currency = value


TRANSFER_WORKFLOW = WorkflowDefinition(
    workflow_type=WorkflowType.TRANSFER,
    title="Transfer",
    numbered=False,
    steps=[
        StepDefinition(
            key="amount",
            prompt="How much would you like to {action}? (e.g., 10 USDC or 0.05 ETH)",
            validate=_token_amount,
            apply=_apply_token_amount,
            next=_after_amount,
            ack="✅ Amount: {amount} {token}",
            shape=AnswerShape.AMOUNT,
            fills=("amount", "token"),
            prefillable=True,
        ),
        StepDefinition(
            key="recipient",
            prompt="What's the recipient's wallet address?",
            validate=_address,
            apply=set_field("recipient"),
            next=goto("network"),
            ack="✅ Recipient: {recipient}",
            shape=AnswerShape.ADDRESS,
            fills=("recipient",),
            prefillable=True,
        ),
        StepDefinition(
            key="to_token",
            prompt="Which token would you like to receive? (e.g., ETH, USDC)",
            validate=_token,
            apply=set_field("to_token"),
            next=goto("network"),
            ack="✅ Swap to: {to_token}",
            shape=AnswerShape.TOKEN,
            fills=("to_token",),
            prefillable=True,
        ),
        StepDefinition(
            key="to_network",
            prompt="Which network should the funds arrive on? (base, ethereum, solana, celo, lisk)",
            validate=_network,
            apply=set_field("to_network"),
            next=goto("network"),
            ack="✅ Destination network: {to_network}",
            shape=AnswerShape.CHOICE,
            choices=tuple(TRANSFER_NETWORKS),
            fills=("to_network",),
            prefillable=True,
        ),
        StepDefinition(
            key="network",
            prompt="Which network are the funds on? (base, ethereum, solana, celo, lisk)",
            validate=_network,
            apply=set_field("network"),
            next=goto(TERMINAL),
            ack="✅ Network: {network}",
            shape=AnswerShape.CHOICE,
            choices=tuple(TRANSFER_NETWORKS),
            fills=("network",),
            prefillable=True,
        ),
    ],
)


PURCHASE_WORKFLOW = WorkflowDefinition(
    workflow_type=WorkflowType.PURCHASE,
    title="Purchase",
    numbered=False,
    intro="💳 **Buy Crypto**",
    steps=[
        StepDefinition(
            key="token",
            prompt="Which token would you like to buy? (USDC, USDT or cUSD)",
            validate=_purchase_token,
            apply=set_field("token"),
            ack="✅ Token: {token}",
            shape=AnswerShape.CHOICE,
            choices=tuple(PURCHASE_TOKENS),
            fills=("token",),
            prefillable=True,
        ),
        StepDefinition(
            key="network",
            prompt="Which network should we deliver to? (base, ethereum, solana, celo, lisk)",
            validate=_network,
            apply=set_field("network"),
            ack="✅ Network: {network}",
            shape=AnswerShape.CHOICE,
            choices=tuple(TRANSFER_NETWORKS),
            fills=("network",),
            prefillable=True,
        ),
        StepDefinition(
            key="fiat_amount",
            prompt="How much would you like to spend? (e.g., 50 USD or 20000 NGN)",
            validate=_fiat_amount,
            apply=_apply_fiat,
            ack="✅ Spend: {fiat_amount} {fiat_currency}",
            shape=AnswerShape.AMOUNT,
            fills=("fiat_amount", "fiat_currency"),
            prefillable=True,
        ),
    ],
)
