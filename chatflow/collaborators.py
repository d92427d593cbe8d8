"""Contracts for the services the workflow engine talks to.

Only simple in-process implementations live here; HTTP and PDF adapters are in
:mod:`chatflow.delivery`, :mod:`chatflow.execution` and :mod:`chatflow.render`.
"""

from __future__ import annotations

import logging
import uuid
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence

from pydantic import BaseModel, Field

from .constants import DEFAULT_QUOTE_TTL_SECONDS, PLATFORM_FEE_RATE
from .contracts import (
    DraftEntity,
    ExecutionResult,
    Quote,
    ReplyOption,
    UserProfile,
    utcnow,
)
from .errors import CollaboratorError

logger = logging.getLogger(__name__)


class ResourceCheck(Protocol):
    async def has_required_resource(self, user_id: str) -> bool:
        """Return ``True`` when the user may start a gated workflow."""


class ProfileLookup(Protocol):
    async def get_profile(self, user_id: str) -> UserProfile | None:
        """Return stored profile details used to pre-fill workflows."""


class DocumentRenderer(Protocol):
    async def render(self, entity: DraftEntity) -> bytes:
        """Render ``entity`` into a deliverable artifact."""


class DeliveryChannel(Protocol):
    async def deliver(
        self, address: str, artifact: bytes, metadata: Mapping[str, Any]
    ) -> bool:
        """Send ``artifact`` to ``address``. Returns ``False`` when rejected."""


class ExecutionClient(Protocol):
    async def quote(self, params: Mapping[str, Any]) -> Quote:
        """Price a transfer or purchase."""

    async def execute(
        self, params: Mapping[str, Any], idempotency_key: str
    ) -> ExecutionResult:
        """Carry out a quoted transfer or purchase."""


class ReplyChannel(Protocol):
    async def prompt(
        self,
        user_id: str,
        text: str,
        options: Optional[Sequence[ReplyOption]] = None,
    ) -> None:
        """Send ``text`` (and optional buttons) to the user."""


# ---------------------------------------------------------------------------
# In-process implementations


class StaticResourceCheck:
    """Allow every user, or only those listed in ``allowed``."""

    def __init__(self, allowed: Optional[Iterable[str]] = None) -> None:
        self.allowed = set(allowed) if allowed is not None else None

    async def has_required_resource(self, user_id: str) -> bool:
        return self.allowed is None or user_id in self.allowed


class StaticProfileLookup:
    def __init__(self, profiles: Optional[Mapping[str, UserProfile]] = None) -> None:
        self.profiles = dict(profiles or {})

    async def get_profile(self, user_id: str) -> UserProfile | None:
        return self.profiles.get(user_id)


class SentReply(BaseModel):
    user_id: str
    text: str
    options: List[ReplyOption] = Field(default_factory=list)


class RecordingReplyChannel:
    """Collect outgoing replies in memory."""

    def __init__(self) -> None:
        self.replies: List[SentReply] = []

    async def prompt(
        self,
        user_id: str,
        text: str,
        options: Optional[Sequence[ReplyOption]] = None,
    ) -> None:
        self.replies.append(SentReply(user_id=user_id, text=text, options=list(options or [])))

    @property
    def last(self) -> SentReply | None:
        return self.replies[-1] if self.replies else None

    def texts(self, user_id: Optional[str] = None) -> List[str]:
        return [r.text for r in self.replies if user_id is None or r.user_id == user_id]

    def clear(self) -> None:
        self.replies.clear()


class LogDeliveryChannel:
    """Log deliveries instead of sending them. Used when no email API is configured."""

    def __init__(self) -> None:
        self.sent: List[Dict[str, Any]] = []

    async def deliver(
        self, address: str, artifact: bytes, metadata: Mapping[str, Any]
    ) -> bool:
        logger.info(
            f"Delivering {metadata.get('number', 'document')} to {address} "
            f"({len(artifact)} bytes)"
        )
        self.sent.append({"address": address, "size": len(artifact), **metadata})
        return True


class SimulatedExecutionClient:
    """Price and execute transfers locally using fixed fiat rates.

    ``rates`` are units of each currency per US dollar. Executions are keyed by
    idempotency key, so repeating a key returns the first result.
    """

    def __init__(
        self,
        rates: Optional[Mapping[str, float]] = None,
        fee_rate: float | str = PLATFORM_FEE_RATE,
        quote_ttl_seconds: int = DEFAULT_QUOTE_TTL_SECONDS,
    ) -> None:
        self.rates = {k.upper(): Decimal(str(v)) for k, v in (rates or {"USD": 1.0}).items()}
        self.fee_rate = Decimal(str(fee_rate))
        self.quote_ttl = timedelta(seconds=quote_ttl_seconds)
        self.quotes: List[Quote] = []
        self.executions: Dict[str, ExecutionResult] = {}

    def _rate(self, currency_in: str, currency_out: str) -> Decimal:
        rate_in = self.rates.get(currency_in.upper())
        rate_out = self.rates.get(currency_out.upper())
        if rate_in is None or rate_out is None:
            return Decimal("1")
        return rate_out / rate_in

    async def quote(self, params: Mapping[str, Any]) -> Quote:
        if params.get("kind") == "purchase":
            amount_in = Decimal(str(params["fiat_amount"]))
            currency_in = params["fiat_currency"]
            currency_out = params["token"]
            # stablecoins are priced as dollars
            rate = self._rate(currency_in, "USD")
        else:
            amount_in = Decimal(str(params["amount"]))
            currency_in = params["token"]
            currency_out = params.get("to_token") or currency_in
            rate = self._rate(currency_in, currency_out)
        if amount_in <= 0:
            raise CollaboratorError("quote", "amount must be positive")
        fee = (amount_in * self.fee_rate).quantize(Decimal("0.000001"))
        amount_out = ((amount_in - fee) * rate).quantize(Decimal("0.000001"))
        quote = Quote(
            rate=rate,
            fee=fee,
            amount_in=amount_in,
            currency_in=currency_in,
            amount_out=amount_out,
            currency_out=currency_out,
            expires_at=utcnow() + self.quote_ttl,
        )
        self.quotes.append(quote)
        return quote

    async def execute(
        self, params: Mapping[str, Any], idempotency_key: str
    ) -> ExecutionResult:
        existing = self.executions.get(idempotency_key)
        if existing is not None:
            return existing
        result = ExecutionResult(reference=f"SIM-{uuid.uuid4().hex[:12].upper()}")
        self.executions[idempotency_key] = result
        return result
