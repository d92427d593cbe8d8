"""PostgreSQL implementation of the state store."""

from __future__ import annotations

from typing import Any

import asyncpg

from ..contracts import WorkflowState, WorkflowType, state_from_json, state_to_json
from ..errors import PersistenceError
from .store import StateStore


class PostgresStateStore(StateStore):
    """Persist workflow state using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        try:
            conn = await asyncpg.connect(self._dsn)
        except (OSError, asyncpg.PostgresError) as exc:
            raise PersistenceError(f"Could not connect to state database: {exc}") from exc
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_states (
                user_id TEXT NOT NULL,
                workflow_type TEXT NOT NULL,
                current_step TEXT NOT NULL,
                state JSONB NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL,
                expires_at TIMESTAMPTZ,
                PRIMARY KEY (user_id, workflow_type)
            )
            """
        )

    async def _run(self, method: str, query: str, *params: Any) -> Any:
        conn = await self._connect()
        try:
            return await getattr(conn, method)(query, *params)
        except asyncpg.PostgresError as exc:
            raise PersistenceError(f"Postgres state store {method} failed: {exc}") from exc
        finally:
            await conn.close()

    # ------------------------------------------------------------------
    async def get(self, user_id: str, workflow_type: WorkflowType) -> WorkflowState | None:
        row = await self._run(
            "fetchrow",
            "SELECT state::text AS state FROM workflow_states WHERE user_id = $1 AND workflow_type = $2",
            user_id,
            workflow_type.value,
        )
        return state_from_json(row["state"]) if row else None

    async def put(self, state: WorkflowState) -> None:
        await self._run(
            "execute",
            """
            INSERT INTO workflow_states
                (user_id, workflow_type, current_step, state, updated_at, expires_at)
            VALUES ($1, $2, $3, $4::jsonb, $5, $6)
            ON CONFLICT (user_id, workflow_type) DO UPDATE SET
                current_step = EXCLUDED.current_step,
                state = EXCLUDED.state,
                updated_at = EXCLUDED.updated_at,
                expires_at = EXCLUDED.expires_at
            """,
            state.user_id,
            state.workflow_type.value,
            state.current_step,
            state_to_json(state),
            state.updated_at,
            state.expires_at,
        )

    async def delete(self, user_id: str, workflow_type: WorkflowType) -> None:
        await self._run(
            "execute",
            "DELETE FROM workflow_states WHERE user_id = $1 AND workflow_type = $2",
            user_id,
            workflow_type.value,
        )

    async def list_for_user(self, user_id: str) -> list[WorkflowState]:
        rows = await self._run(
            "fetch",
            "SELECT state::text AS state FROM workflow_states WHERE user_id = $1 ORDER BY updated_at",
            user_id,
        )
        return [state_from_json(r["state"]) for r in rows]

    async def list_states(self) -> list[WorkflowState]:
        rows = await self._run(
            "fetch",
            "SELECT state::text AS state FROM workflow_states ORDER BY updated_at",
        )
        return [state_from_json(r["state"]) for r in rows]
