"""In-memory implementations of the state store and entity repository."""

from __future__ import annotations

import uuid
from typing import Any, Dict, Iterable, Tuple

from ..contracts import (
    DraftEntity,
    DraftStatus,
    EntityKind,
    WorkflowState,
    WorkflowType,
    state_from_json,
    state_to_json,
    utcnow,
)
from ..errors import PersistenceError
from .repository import EntityRepository, generate_number
from .store import StateStore


class InMemoryStateStore(StateStore):
    """Store workflow state in local memory.

    Useful for tests or when no database is configured. States are kept as
    JSON so callers never share mutable objects with the store.
    """

    def __init__(self) -> None:
        self._states: Dict[Tuple[str, str], str] = {}

    # ------------------------------------------------------------------
    async def get(self, user_id: str, workflow_type: WorkflowType) -> WorkflowState | None:
        raw = self._states.get((user_id, workflow_type.value))
        return state_from_json(raw) if raw is not None else None

    async def put(self, state: WorkflowState) -> None:
        self._states[(state.user_id, state.workflow_type.value)] = state_to_json(state)

    async def delete(self, user_id: str, workflow_type: WorkflowType) -> None:
        self._states.pop((user_id, workflow_type.value), None)

    async def list_for_user(self, user_id: str) -> list[WorkflowState]:
        return [
            state_from_json(raw)
            for (owner, _), raw in self._states.items()
            if owner == user_id
        ]

    async def list_states(self) -> list[WorkflowState]:
        return [state_from_json(raw) for raw in self._states.values()]


class InMemoryEntityRepository(EntityRepository):
    """Keep draft entities in a dictionary. Data is lost on restart."""

    def __init__(self) -> None:
        self._drafts: Dict[str, DraftEntity] = {}

    def _require(self, draft_id: str) -> DraftEntity:
        draft = self._drafts.get(draft_id)
        if draft is None:
            raise PersistenceError(f"Draft {draft_id} not found")
        return draft

    # ------------------------------------------------------------------
    async def insert_draft(
        self, kind: EntityKind, user_id: str, fields: dict[str, Any]
    ) -> str:
        draft_id = str(uuid.uuid4())
        self._drafts[draft_id] = DraftEntity(
            id=draft_id,
            number=generate_number(kind),
            kind=kind,
            user_id=user_id,
            fields=dict(fields),
        )
        return draft_id

    async def update_draft(self, draft_id: str, fields: dict[str, Any]) -> None:
        draft = self._require(draft_id)
        draft.fields = {**draft.fields, **fields}
        draft.revision += 1
        draft.updated_at = utcnow()

    async def get_draft(self, draft_id: str) -> DraftEntity | None:
        draft = self._drafts.get(draft_id)
        return draft.model_copy(deep=True) if draft is not None else None

    async def set_status(self, draft_id: str, status: DraftStatus) -> None:
        draft = self._require(draft_id)
        draft.status = status
        draft.updated_at = utcnow()

    async def delete_draft(self, draft_id: str) -> None:
        self._drafts.pop(draft_id, None)

    async def latest_for_user(
        self,
        user_id: str,
        kinds: Iterable[EntityKind],
        status: DraftStatus | None = None,
    ) -> DraftEntity | None:
        wanted = set(kinds)
        candidates = [
            d
            for d in self._drafts.values()
            if d.user_id == user_id
            and d.kind in wanted
            and (status is None or d.status == status)
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda d: d.updated_at).model_copy(deep=True)

    async def list_for_user(self, user_id: str) -> list[DraftEntity]:
        return [
            d.model_copy(deep=True) for d in self._drafts.values() if d.user_id == user_id
        ]
