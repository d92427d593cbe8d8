"""SQLite implementation of the state store."""

from __future__ import annotations

import asyncio
import sqlite3
from pathlib import Path
from typing import Any

from ..contracts import WorkflowState, WorkflowType, state_from_json, state_to_json
from ..errors import PersistenceError
from .store import StateStore


class SQLiteStateStore(StateStore):
    """Persist workflow state using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_states (
                user_id TEXT NOT NULL,
                workflow_type TEXT NOT NULL,
                current_step TEXT NOT NULL,
                state TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                expires_at TEXT,
                PRIMARY KEY (user_id, workflow_type)
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> None:
        try:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()
        except sqlite3.Error as exc:
            raise PersistenceError(f"SQLite state store write failed: {exc}") from exc

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        try:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError(f"SQLite state store read failed: {exc}") from exc

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        try:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError(f"SQLite state store read failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Store API
    async def get(self, user_id: str, workflow_type: WorkflowType) -> WorkflowState | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT state FROM workflow_states WHERE user_id = ? AND workflow_type = ?",
            user_id,
            workflow_type.value,
        )
        return state_from_json(row["state"]) if row else None

    async def put(self, state: WorkflowState) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO workflow_states
                (user_id, workflow_type, current_step, state, updated_at, expires_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT (user_id, workflow_type) DO UPDATE SET
                current_step = excluded.current_step,
                state = excluded.state,
                updated_at = excluded.updated_at,
                expires_at = excluded.expires_at
            """,
            state.user_id,
            state.workflow_type.value,
            state.current_step,
            state_to_json(state),
            state.updated_at.isoformat(),
            state.expires_at.isoformat() if state.expires_at else None,
        )

    async def delete(self, user_id: str, workflow_type: WorkflowType) -> None:
        await asyncio.to_thread(
            self._execute,
            "DELETE FROM workflow_states WHERE user_id = ? AND workflow_type = ?",
            user_id,
            workflow_type.value,
        )

    async def list_for_user(self, user_id: str) -> list[WorkflowState]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT state FROM workflow_states WHERE user_id = ? ORDER BY updated_at",
            user_id,
        )
        return [state_from_json(r["state"]) for r in rows]

    async def list_states(self) -> list[WorkflowState]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT state FROM workflow_states ORDER BY updated_at",
        )
        return [state_from_json(r["state"]) for r in rows]
