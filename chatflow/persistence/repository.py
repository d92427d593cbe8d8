"""Repository abstraction for draft business entities."""

from __future__ import annotations

import secrets
from datetime import datetime
from typing import Any, Iterable, Optional, Protocol

from ..contracts import DraftEntity, DraftStatus, EntityKind, utcnow

NUMBER_PREFIXES = {
    EntityKind.INVOICE: "INV",
    EntityKind.PROPOSAL: "PROP",
    EntityKind.TRANSFER: "TX",
    EntityKind.PURCHASE: "BUY",
}


def generate_number(kind: EntityKind, now: Optional[datetime] = None) -> str:
    """Human readable identifier such as ``INV-20240215-3F9A``."""
    now = now or utcnow()
    return f"{NUMBER_PREFIXES[kind]}-{now:%Y%m%d}-{secrets.token_hex(2).upper()}"


class EntityRepository(Protocol):
    """Protocol for draft entity persistence backends."""

    async def insert_draft(
        self, kind: EntityKind, user_id: str, fields: dict[str, Any]
    ) -> str:
        """Create a draft with ``status = draft`` and return its id."""

    async def update_draft(self, draft_id: str, fields: dict[str, Any]) -> None:
        """Merge ``fields`` into the draft and bump its revision."""

    async def get_draft(self, draft_id: str) -> DraftEntity | None:
        """Retrieve a draft by id."""

    async def set_status(self, draft_id: str, status: DraftStatus) -> None:
        """Transition the draft to ``status``."""

    async def delete_draft(self, draft_id: str) -> None:
        """Remove the draft."""

    async def latest_for_user(
        self,
        user_id: str,
        kinds: Iterable[EntityKind],
        status: DraftStatus | None = None,
    ) -> DraftEntity | None:
        """Most recently updated draft of the given kinds (and status)."""

    async def list_for_user(self, user_id: str) -> list[DraftEntity]:
        """Return all drafts owned by ``user_id``."""
