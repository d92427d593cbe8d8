"""Quote and execute transfers through an HTTP API."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

import httpx
from pydantic import ValidationError

from .config import ExecutionConfig
from .contracts import ExecutionResult, Quote
from .errors import CollaboratorError

logger = logging.getLogger(__name__)


class HttpExecutionClient:
    """Client for a quote/execute service.

    ``POST {endpoint}/quotes`` returns a quote and ``POST {endpoint}/executions``
    carries it out. Executions send an ``Idempotency-Key`` header so retries of
    the same confirmation are deduplicated by the service.
    """

    def __init__(
        self,
        config: ExecutionConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not config.endpoint:
            raise ValueError("execution.endpoint must be configured")
        self.config = config
        self.base_url = config.endpoint.rstrip("/")
        self._transport = transport

    async def _post(
        self,
        stage: str,
        path: str,
        payload: Mapping[str, Any],
        idempotency_key: Optional[str] = None,
    ) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        try:
            async with httpx.AsyncClient(
                timeout=self.config.timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    f"{self.base_url}{path}", json=dict(payload), headers=headers
                )
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            raise CollaboratorError(
                stage, f"service returned {exc.response.status_code}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise CollaboratorError(stage, str(exc)) from exc

    async def quote(self, params: Mapping[str, Any]) -> Quote:
        data = await self._post("quote", "/quotes", params)
        try:
            return Quote.model_validate(data)
        except ValidationError as exc:
            raise CollaboratorError("quote", f"malformed quote: {exc}") from exc

    async def execute(
        self, params: Mapping[str, Any], idempotency_key: str
    ) -> ExecutionResult:
        data = await self._post("execute", "/executions", params, idempotency_key)
        try:
            result = ExecutionResult.model_validate(data)
        except ValidationError as exc:
            raise CollaboratorError("execute", f"malformed result: {exc}") from exc
        logger.info(f"Execution {result.reference} finished with {result.status}")
        return result
