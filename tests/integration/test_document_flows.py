"""Invoice and proposal conversations driven through the dispatcher."""

import asyncio
from datetime import timedelta

import pytest

from chatflow.config import ChatflowConfig
from chatflow.contracts import DraftStatus, WorkflowType, utcnow
from chatflow.dispatch import HELP_TEXT

INVOICE_ANSWERS = [
    "Bob Builder",
    "bob@example.com",
    "Acme Corp",
    "billing@acme.com",
    "Website redesign and hosting",
    "10",
    "150 USD",
    "in 30 days",
    "base",
]


async def _complete_invoice(h, user_id="bob"):
    await h.say("/invoice", user_id)
    replies = []
    for answer in INVOICE_ANSWERS:
        replies = await h.say(answer, user_id)
    return replies


@pytest.mark.asyncio
async def test_invoice_end_to_end(harness):
    h = harness
    replies = await h.say("/invoice")
    assert replies[0].startswith("📋 **Creating Professional Invoice**")
    assert replies[1] == "**Step 1/9:** What's your name (freelancer)?"

    replies = await h.say("Bob Builder")
    assert replies == ["✅ Freelancer: Bob Builder", "**Step 2/9:** What's your email address?"]

    for answer in INVOICE_ANSWERS[1:-1]:
        await h.say(answer)
    state = await h.store.get("bob", WorkflowType.INVOICE)
    assert state.current_step == "network"
    assert str(state.collected.amount) == "1500"

    replies = await h.say("base")
    assert replies[0] == "✅ Blockchain: base"
    assert "**Total:** 1,500.00 USD" in replies[1]
    assert "**You receive:** 1,485.00 USD" in replies[1]
    assert replies[1].endswith("Reply *send* to email it to billing@acme.com, or *cancel* to discard it.")
    assert [o.label for o in h.replies.last.options] == ["📧 Send to billing@acme.com", "🗑️ Discard"]

    assert await h.store.get("bob", WorkflowType.INVOICE) is None
    [draft] = await h.drafts()
    assert draft.status == DraftStatus.PENDING_DELIVERY
    assert draft.fields["due_date"] == "2024-01-31"
    assert h.delivery.calls == []

    replies = await h.say("send")
    assert replies == [f"✅ Invoice {draft.number} sent to billing@acme.com!"]
    [draft] = await h.drafts()
    assert draft.status == DraftStatus.SENT
    assert h.renderer.rendered == [draft.number]
    call = h.delivery.calls[0]
    assert call["address"] == "billing@acme.com"
    assert call["subject"] == f"Invoice {draft.number} from Bob Builder"
    assert call["idempotency_key"].startswith("deliver-")


@pytest.mark.asyncio
async def test_failed_delivery_keeps_document_pending(harness):
    h = harness
    await _complete_invoice(h)
    h.delivery.accept = False

    replies = await h.press("Send to")
    assert replies == [
        "⚠️ Deliver failed: billing@acme.com was rejected by the provider. "
        "Nothing was lost, please try again."
    ]
    [draft] = await h.drafts()
    assert draft.status == DraftStatus.PENDING_DELIVERY

    h.delivery.accept = True
    replies = await h.press("Send to")
    assert replies == [f"✅ Invoice {draft.number} sent to billing@acme.com!"]
    first_key, second_key = (c["idempotency_key"] for c in h.delivery.calls)
    assert first_key == second_key

    replies = await h.press("Send to")
    assert replies == [f"Invoice {draft.number} was already sent."]
    assert len(h.delivery.calls) == 2


@pytest.mark.asyncio
async def test_render_failure_is_reported(harness):
    h = harness
    await _complete_invoice(h)
    h.renderer.error = RuntimeError("font missing")

    replies = await h.say("send")
    assert replies == ["⚠️ Render failed: font missing. Nothing was lost, please try again."]
    [draft] = await h.drafts()
    assert draft.status == DraftStatus.PENDING_DELIVERY


@pytest.mark.asyncio
async def test_send_without_pending_document(harness):
    assert await harness.say("send") == ["There's no document waiting to be sent."]


@pytest.mark.asyncio
async def test_invalid_answer_reprompts_without_changes(harness):
    h = harness
    await h.say("/invoice")
    for answer in INVOICE_ANSWERS[:3]:
        await h.say(answer)
    before = await h.store.get("bob", WorkflowType.INVOICE)
    [draft_before] = await h.drafts()

    replies = await h.say("not an email")
    assert replies == [
        "❌ Please enter a valid email address",
        "**Step 4/9:** What's your client's email address?",
    ]
    after = await h.store.get("bob", WorkflowType.INVOICE)
    assert after.model_dump() == before.model_dump()
    [draft_after] = await h.drafts()
    assert draft_after.revision == draft_before.revision == 3


@pytest.mark.asyncio
async def test_interruption_leaves_flow_untouched(harness):
    h = harness
    await h.say("/invoice")
    for answer in INVOICE_ANSWERS[:3]:
        await h.say(answer)
    before = await h.store.get("bob", WorkflowType.INVOICE)

    replies = await h.say("what can you do?")
    assert replies == [HELP_TEXT, "(Your invoice is still open. Reply *continue* to resume.)"]
    after = await h.store.get("bob", WorkflowType.INVOICE)
    assert after.model_dump() == before.model_dump()

    replies = await h.say("continue")
    assert replies == ["**Step 4/9:** What's your client's email address?"]


@pytest.mark.asyncio
async def test_restarting_resumes_open_invoice(harness):
    h = harness
    await h.say("/invoice")
    await h.say("Bob Builder")

    replies = await h.say("/invoice")
    assert replies == [
        "You already have an open invoice. Let's pick up where you left off.",
        "**Step 2/9:** What's your email address?",
    ]
    assert len(await h.drafts()) == 1


@pytest.mark.asyncio
async def test_profile_prefills_freelancer_details(harness):
    h = harness
    replies = await h.say("/invoice", user_id="alice")
    assert replies[-1] == "**Step 3/9:** What's your client's name?"
    state = await h.store.get("alice", WorkflowType.INVOICE)
    assert state.collected.freelancer_name == "Alice Freelancer"
    assert state.collected.freelancer_email == "alice@example.com"


@pytest.mark.asyncio
async def test_documents_require_wallet_by_default(make_harness):
    h = make_harness(allowed_users=[])
    replies = await h.say("/invoice")
    assert replies == [
        "You need a wallet before starting this invoice.\n\nCreate one with /wallet and try again."
    ]
    assert await h.drafts() == []

    config = ChatflowConfig()
    config.workflows.require_wallet_for_documents = False
    relaxed = make_harness(allowed_users=[], config=config)
    replies = await relaxed.say("/invoice")
    assert replies[-1] == "**Step 1/9:** What's your name (freelancer)?"


@pytest.mark.asyncio
async def test_cancel_discards_draft(harness):
    h = harness
    await h.say("/invoice")
    await h.say("Bob Builder")

    assert await h.say("cancel this invoice") == ["❌ Invoice cancelled."]
    assert await h.store.get("bob", WorkflowType.INVOICE) is None
    [draft] = await h.drafts()
    assert draft.status == DraftStatus.CANCELLED

    assert await h.say("cancel") == ["There's nothing to cancel."]


@pytest.mark.asyncio
async def test_expired_flow_is_cancelled_on_next_message(harness):
    h = harness
    await h.say("/invoice")
    state = await h.store.get("bob", WorkflowType.INVOICE)
    state.expires_at = utcnow() - timedelta(minutes=1)
    await h.store.put(state)

    replies = await h.say("hello")
    assert replies == ["⌛ Your invoice expired and was discarded.", HELP_TEXT]
    [draft] = await h.drafts()
    assert draft.status == DraftStatus.CANCELLED
    assert await h.store.list_for_user("bob") == []


@pytest.mark.asyncio
async def test_proposal_end_to_end(harness):
    h = harness
    replies = await h.say("I need a proposal for a new client")
    assert replies[0].startswith("📋 **Creating New Proposal**")

    for answer in [
        "Bob Builder",
        "bob@example.com",
        "Acme Corp",
        "billing@acme.com",
        "Website Redesign",
        "Logo, Landing page, CMS setup",
        "complex",
        "2500 EUR",
    ]:
        await h.say(answer)
    replies = await h.say("6 weeks")

    assert replies[0] == "✅ Timeline: 6 weeks"
    assert "• Landing page" in replies[1]
    assert "**Budget:** 2,500.00 EUR" in replies[1]
    [draft] = await h.drafts()
    assert draft.status == DraftStatus.PENDING_DELIVERY
    assert draft.fields["deliverables"] == ["Logo", "Landing page", "CMS setup"]

    replies = await h.say("send")
    assert replies == [f"✅ Proposal {draft.number} sent to billing@acme.com!"]


@pytest.mark.asyncio
async def test_messages_from_one_user_are_serialised(harness):
    h = harness
    await h.say("/invoice")
    await asyncio.gather(h.say("Bob Builder"), h.say("bob@example.com"))

    state = await h.store.get("bob", WorkflowType.INVOICE)
    assert state.current_step == "client_name"
    assert state.collected.freelancer_name == "Bob Builder"
    assert state.collected.freelancer_email == "bob@example.com"
    assert h.dispatcher._locks == {}
    assert h.dispatcher._lock_holders == {}


@pytest.mark.asyncio
@pytest.mark.parametrize("answer", ["²", "①", "٣"])
async def test_quantity_rejects_non_ascii_digits(harness, answer):
    h = harness
    await h.say("/invoice")
    for text in INVOICE_ANSWERS[:5]:
        await h.say(text)
    before = await h.store.get("bob", WorkflowType.INVOICE)
    assert before.current_step == "quantity"

    replies = await h.say(answer)
    assert replies == [
        "❌ Please enter a valid quantity (positive number)",
        h.processor.prompt_for(before),
    ]
    after = await h.store.get("bob", WorkflowType.INVOICE)
    assert after.model_dump() == before.model_dump()


@pytest.mark.asyncio
async def test_far_future_due_date_is_reprompted(harness):
    h = harness
    await h.say("/invoice")
    for text in INVOICE_ANSWERS[:7]:
        await h.say(text)
    before = await h.store.get("bob", WorkflowType.INVOICE)
    assert before.current_step == "due_date"

    replies = await h.say("in 99999999 days")
    assert replies == ["❌ That date is too far in the future", h.processor.prompt_for(before)]
    assert (await h.store.get("bob", WorkflowType.INVOICE)).model_dump() == before.model_dump()


@pytest.mark.asyncio
async def test_empty_deliverables_are_reprompted(harness):
    h = harness
    await h.say("/proposal")
    for text in ["Bob Builder", "bob@example.com", "Acme Corp", "billing@acme.com", "Website Redesign"]:
        await h.say(text)

    replies = await h.say(",")
    assert replies[0] == "❌ Please enter at least one deliverable."
    state = await h.store.get("bob", WorkflowType.PROPOSAL)
    assert state.current_step == "deliverables"
    assert state.collected.deliverables is None


@pytest.mark.asyncio
async def test_discard_button_cancels_pending_document(harness):
    h = harness
    await _complete_invoice(h)
    [draft] = await h.drafts()

    replies = await h.press("Discard")
    assert replies == [f"🗑️ Invoice {draft.number} discarded."]
    [draft] = await h.drafts()
    assert draft.status == DraftStatus.CANCELLED

    assert await h.press("Discard") == [f"Invoice {draft.number} was already discarded."]
    assert await h.press("Send to") == [
        f"Invoice {draft.number} can't be sent while it is cancelled."
    ]
    assert h.delivery.calls == []


@pytest.mark.asyncio
async def test_typed_cancel_discards_pending_document(harness):
    h = harness
    await _complete_invoice(h)
    [draft] = await h.drafts()

    assert await h.say("cancel") == [f"🗑️ Invoice {draft.number} discarded."]
    assert await h.say("cancel") == ["There's nothing to cancel."]
    assert await h.say("send") == ["There's no document waiting to be sent."]


@pytest.mark.asyncio
async def test_sent_document_cannot_be_discarded(harness):
    h = harness
    await _complete_invoice(h)
    await h.say("send")
    [draft] = await h.drafts()

    replies = await h.press("Discard")
    assert replies == [f"Invoice {draft.number} can't be discarded while it is sent."]
    [draft] = await h.drafts()
    assert draft.status == DraftStatus.SENT
