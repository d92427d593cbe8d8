import base64
import json
from datetime import timedelta
from decimal import Decimal

import httpx
import pytest

from chatflow.config import DeliveryConfig, ExecutionConfig
from chatflow.contracts import utcnow
from chatflow.delivery import HttpDeliveryChannel
from chatflow.errors import CollaboratorError
from chatflow.execution import HttpExecutionClient


def _delivery(handler) -> HttpDeliveryChannel:
    config = DeliveryConfig(
        endpoint="https://mail.example.com/send", api_key="mail-key", sender="billing@chatflow.io"
    )
    return HttpDeliveryChannel(config, transport=httpx.MockTransport(handler))


def _execution(handler) -> HttpExecutionClient:
    config = ExecutionConfig(endpoint="https://pay.example.com/v1/", api_key="pay-key")
    return HttpExecutionClient(config, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_delivery_posts_document_with_idempotency_key():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(202, json={"id": "msg-1"})

    channel = _delivery(handler)
    delivered = await channel.deliver(
        "billing@acme.com",
        b"%PDF-1.4 test",
        {"number": "INV-1", "subject": "Invoice INV-1", "body": "Hi", "idempotency_key": "deliver-abc"},
    )

    assert delivered is True
    request = requests[0]
    assert request.url == "https://mail.example.com/send"
    assert request.headers["Authorization"] == "Bearer mail-key"
    assert request.headers["Idempotency-Key"] == "deliver-abc"
    body = json.loads(request.content)
    assert body["from"] == "billing@chatflow.io"
    assert body["to"] == "billing@acme.com"
    assert body["subject"] == "Invoice INV-1"
    attachment = body["attachments"][0]
    assert attachment["filename"] == "INV-1.pdf"
    assert base64.b64decode(attachment["content"]) == b"%PDF-1.4 test"


@pytest.mark.asyncio
async def test_delivery_rejection_returns_false():
    channel = _delivery(lambda request: httpx.Response(422, json={"error": "bad address"}))
    assert await channel.deliver("nobody@invalid", b"pdf", {"number": "INV-2"}) is False


@pytest.mark.asyncio
async def test_delivery_server_error_raises():
    channel = _delivery(lambda request: httpx.Response(503))
    with pytest.raises(CollaboratorError) as exc:
        await channel.deliver("billing@acme.com", b"pdf", {"number": "INV-3"})
    assert exc.value.stage == "deliver"
    assert "503" in exc.value.detail


@pytest.mark.asyncio
async def test_delivery_network_error_raises():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(CollaboratorError):
        await _delivery(handler).deliver("billing@acme.com", b"pdf", {})


def test_delivery_requires_endpoint():
    with pytest.raises(ValueError):
        HttpDeliveryChannel(DeliveryConfig())


@pytest.mark.asyncio
async def test_execution_quote_and_execute():
    requests = []
    expires = (utcnow() + timedelta(minutes=2)).isoformat()

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path == "/v1/quotes":
            return httpx.Response(
                200,
                json={
                    "quote_id": "q-1",
                    "rate": "1",
                    "fee": "0.1",
                    "amount_in": "10",
                    "currency_in": "USDC",
                    "amount_out": "9.9",
                    "currency_out": "USDC",
                    "expires_at": expires,
                },
            )
        return httpx.Response(200, json={"reference": "TX-42", "status": "executed"})

    client = _execution(handler)
    quote = await client.quote({"kind": "transfer", "amount": "10", "token": "USDC"})
    assert quote.quote_id == "q-1"
    assert quote.amount_out == Decimal("9.9")
    assert "Idempotency-Key" not in requests[0].headers

    result = await client.execute({"quote_id": "q-1"}, "execute-123")
    assert result.reference == "TX-42"
    assert result.status == "executed"
    assert requests[1].url == "https://pay.example.com/v1/executions"
    assert requests[1].headers["Idempotency-Key"] == "execute-123"
    assert requests[1].headers["Authorization"] == "Bearer pay-key"


@pytest.mark.asyncio
async def test_execution_errors_are_tagged_with_stage():
    client = _execution(lambda request: httpx.Response(500, text="boom"))
    with pytest.raises(CollaboratorError) as exc:
        await client.quote({"amount": "10"})
    assert exc.value.stage == "quote"

    with pytest.raises(CollaboratorError) as exc:
        await client.execute({}, "key")
    assert exc.value.stage == "execute"


@pytest.mark.asyncio
async def test_execution_rejects_malformed_responses():
    client = _execution(lambda request: httpx.Response(200, json={"unexpected": True}))
    with pytest.raises(CollaboratorError, match="malformed quote"):
        await client.quote({"amount": "10"})

    not_json = _execution(lambda request: httpx.Response(200, text="<html>"))
    with pytest.raises(CollaboratorError):
        await not_json.execute({}, "key")
