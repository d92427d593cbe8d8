"""Step tables for document-draft workflows (invoices and proposals)."""

from __future__ import annotations

from typing import Any

from ..contracts import InvoiceFields, ProposalFields, WorkflowType
from ..errors import StepValidationError
from ..validators import (
    parse_amount,
    parse_choice,
    parse_due_date,
    parse_email,
    parse_quantity,
    parse_text,
)
from .models import AnswerShape, StepContext, StepDefinition, WorkflowDefinition, set_field

NETWORK_CHOICES = {
    "base": ("base network", "b", "1", "🔵"),
    "celo": ("celo network", "c", "2", "🟢"),
}

COMPLEXITY_CHOICES = {
    "simple": ("easy", "basic"),
    "moderate": ("medium", "standard"),
    "complex": ("hard", "advanced"),
}


def _name(raw: str, ctx: StepContext) -> str:
    return parse_text(raw, "a name", max_length=120)


def _email(raw: str, ctx: StepContext) -> str:
    return parse_email(raw)


def _description(raw: str, ctx: StepContext) -> str:
    return parse_text(raw, "a short description")


def _quantity(raw: str, ctx: StepContext) -> int:
    return parse_quantity(raw)


def _amount(raw: str, ctx: StepContext):
    return parse_amount(raw, ctx.default_currency)


def _due_date(raw: str, ctx: StepContext):
    return parse_due_date(raw, ctx.today)


def _network(raw: str, ctx: StepContext) -> str:
    return parse_choice(
        raw,
        NETWORK_CHOICES,
        'Please select a valid blockchain network:\n• Type "base" for Base Network\n• Type "celo" for Celo Network',
    )


def _apply_rate(fields: InvoiceFields, value: Any) -> None:
    rate, currency = value
    fields.rate = rate
    fields.currency = currency
    fields.amount = (fields.quantity or 1) * rate


def _deliverables(raw: str, ctx: StepContext) -> list[str]:
    text = parse_text(raw, "at least one deliverable")
    items = [item.strip() for item in text.replace("\n", ",").split(",")]
    items = [item for item in items if item]
    if not items:
        raise StepValidationError("❌ Please enter at least one deliverable.")
    return items


def _complexity(raw: str, ctx: StepContext) -> str:
    return parse_choice(raw, COMPLEXITY_CHOICES, "Please choose: simple, moderate, or complex")


def _timeline(raw: str, ctx: StepContext) -> str:
    return parse_text(raw, "a timeline", max_length=120)


def _apply_budget(fields: ProposalFields, value: Any) -> None:
    fields.amount, fields.currency = value


def _freelancer_steps() -> list[StepDefinition]:
    return [
        StepDefinition(
            key="freelancer_name",
            prompt="What's your name (freelancer)?",
            validate=_name,
            apply=set_field("freelancer_name"),
            ack="✅ Freelancer: {freelancer_name}",
            fills=("freelancer_name",),
            prefillable=True,
        ),
        StepDefinition(
            key="freelancer_email",
            prompt="What's your email address?",
            validate=_email,
            apply=set_field("freelancer_email"),
            ack="✅ Email: {freelancer_email}",
            shape=AnswerShape.EMAIL,
            fills=("freelancer_email",),
            prefillable=True,
        ),
        StepDefinition(
            key="client_name",
            prompt="What's your client's name?",
            validate=_name,
            apply=set_field("client_name"),
            ack="✅ Client: {client_name}",
            fills=("client_name",),
        ),
        StepDefinition(
            key="client_email",
            prompt="What's your client's email address?",
            validate=_email,
            apply=set_field("client_email"),
            ack="✅ Client email: {client_email}",
            shape=AnswerShape.EMAIL,
            fills=("client_email",),
        ),
    ]


INVOICE_WORKFLOW = WorkflowDefinition(
    workflow_type=WorkflowType.INVOICE,
    title="Invoice",
    intro=(
        "📋 **Creating Professional Invoice**\n\n"
        "ℹ️ **Note:** A 1% platform fee will be deducted from payments."
    ),
    steps=_freelancer_steps()
    + [
        StepDefinition(
            key="project_description",
            prompt="What's the project description?",
            validate=_description,
            apply=set_field("project_description"),
            ack="✅ Project: {project_description}",
            shape=AnswerShape.FREE_TEXT,
            fills=("project_description",),
        ),
        StepDefinition(
            key="quantity",
            prompt="How many units/hours? (e.g., 1, 5, 10)",
            validate=_quantity,
            apply=set_field("quantity"),
            ack="✅ Quantity: {quantity}",
            shape=AnswerShape.NUMBER,
            fills=("quantity",),
        ),
        StepDefinition(
            key="rate",
            prompt="What's the rate per unit? (e.g., 100, 50.5 or 20000 NGN)",
            validate=_amount,
            apply=_apply_rate,
            ack="✅ Rate: {rate} {currency} per unit\n✅ Total: {amount} {currency}",
            shape=AnswerShape.AMOUNT,
            fills=("rate", "currency"),
        ),
        StepDefinition(
            key="due_date",
            prompt='When is the payment due? (e.g., 2024-02-15 or "in 30 days")',
            validate=_due_date,
            apply=set_field("due_date"),
            ack="✅ Due date: {due_date}",
            shape=AnswerShape.DATE,
            fills=("due_date",),
        ),
        StepDefinition(
            key="network",
            prompt=(
                "Which blockchain network would you like to use for payments?\n\n"
                '🔵 **Base Network** - Type "base"\n'
                '🟢 **Celo Network** - Type "celo"'
            ),
            validate=_network,
            apply=set_field("network"),
            ack="✅ Blockchain: {network}",
            shape=AnswerShape.CHOICE,
            choices=tuple(NETWORK_CHOICES),
            fills=("network",),
        ),
    ],
)


PROPOSAL_WORKFLOW = WorkflowDefinition(
    workflow_type=WorkflowType.PROPOSAL,
    title="Proposal",
    intro=(
        "📋 **Creating New Proposal**\n\n"
        "Let's create a personalized, professional proposal for your client."
    ),
    steps=_freelancer_steps()
    + [
        StepDefinition(
            key="project_title",
            prompt='What\'s the project title? (e.g., "Website Redesign")',
            validate=_description,
            apply=set_field("project_title"),
            ack="✅ Project title: {project_title}",
            shape=AnswerShape.FREE_TEXT,
            fills=("project_title",),
        ),
        StepDefinition(
            key="deliverables",
            prompt="What are the deliverables? (List what you'll provide, separated by commas)",
            validate=_deliverables,
            apply=set_field("deliverables"),
            ack="✅ Deliverables: {deliverables}",
            shape=AnswerShape.FREE_TEXT,
            fills=("deliverables",),
        ),
        StepDefinition(
            key="complexity",
            prompt=(
                "How would you rate the project complexity?\n\n"
                '🟢 Type "simple"\n🟡 Type "moderate"\n🔴 Type "complex"'
            ),
            validate=_complexity,
            apply=set_field("complexity"),
            ack="✅ Complexity set to {complexity}",
            shape=AnswerShape.CHOICE,
            choices=tuple(COMPLEXITY_CHOICES),
            fills=("complexity",),
        ),
        StepDefinition(
            key="budget",
            prompt="What's the budget? (e.g., 1500 USD or 600000 NGN)",
            validate=_amount,
            apply=_apply_budget,
            ack="✅ Budget: {amount} {currency}",
            shape=AnswerShape.AMOUNT,
            fills=("amount", "currency"),
        ),
        StepDefinition(
            key="timeline",
            prompt='What\'s the timeline? (e.g., "2 weeks", "1 month", "by March 15th")',
            validate=_timeline,
            apply=set_field("timeline"),
            ack="✅ Timeline: {timeline}",
            shape=AnswerShape.FREE_TEXT,
            fills=("timeline",),
        ),
    ],
)
