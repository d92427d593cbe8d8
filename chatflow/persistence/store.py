"""State store abstraction for in-progress workflows."""

from __future__ import annotations

from typing import Protocol

from ..contracts import WorkflowState, WorkflowType


class StateStore(Protocol):
    """Durable key-value store holding at most one state per (user, workflow type).

    Implementations never expire states on their own schedule; callers
    inspect ``state.is_expired()`` and clean up.
    """

    async def get(self, user_id: str, workflow_type: WorkflowType) -> WorkflowState | None:
        """Return the active state or ``None`` when there is none."""

    async def put(self, state: WorkflowState) -> None:
        """Insert or replace the state for ``(state.user_id, state.workflow_type)``."""

    async def delete(self, user_id: str, workflow_type: WorkflowType) -> None:
        """Remove the state. Deleting a missing state is not an error."""

    async def list_for_user(self, user_id: str) -> list[WorkflowState]:
        """Return every state held for ``user_id``."""

    async def list_states(self) -> list[WorkflowState]:
        """Return all persisted states."""
