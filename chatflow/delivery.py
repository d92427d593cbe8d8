"""Email delivery over a JSON HTTP API."""

from __future__ import annotations

import base64
import logging
from typing import Any, Mapping, Optional

import httpx

from .config import DeliveryConfig
from .errors import CollaboratorError

logger = logging.getLogger(__name__)


class HttpDeliveryChannel:
    """Deliver rendered documents through a transactional email endpoint.

    The provider is expected to accept ``POST {endpoint}`` with a JSON body and
    to honour the ``Idempotency-Key`` header.
    """

    def __init__(
        self,
        config: DeliveryConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not config.endpoint:
            raise ValueError("delivery.endpoint must be configured")
        self.config = config
        self._transport = transport

    def _headers(self, metadata: Mapping[str, Any]) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        if metadata.get("idempotency_key"):
            headers["Idempotency-Key"] = str(metadata["idempotency_key"])
        return headers

    async def deliver(
        self, address: str, artifact: bytes, metadata: Mapping[str, Any]
    ) -> bool:
        number = metadata.get("number", "document")
        payload = {
            "from": self.config.sender,
            "to": address,
            "subject": metadata.get("subject") or f"{number}",
            "text": metadata.get("body", ""),
            "attachments": [
                {
                    "filename": f"{number}.pdf",
                    "content": base64.b64encode(artifact).decode("ascii"),
                    "content_type": "application/pdf",
                }
            ],
        }
        try:
            async with httpx.AsyncClient(
                timeout=self.config.timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    self.config.endpoint, json=payload, headers=self._headers(metadata)
                )
        except httpx.HTTPError as exc:
            raise CollaboratorError("deliver", str(exc)) from exc

        if response.is_server_error:
            raise CollaboratorError(
                "deliver", f"provider returned {response.status_code}"
            )
        if response.is_client_error:
            logger.warning(
                f"Delivery of {number} to {address} rejected: "
                f"{response.status_code} {response.text}"
            )
            return False
        return True
