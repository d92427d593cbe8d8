"""Redis implementation of the state store with native key expiry."""

from __future__ import annotations

import math
from typing import Any, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from ..constants import STATE_EXPIRY_GRACE_SECONDS
from ..contracts import (
    WorkflowState,
    WorkflowType,
    state_from_json,
    state_to_json,
    utcnow,
)
from ..errors import PersistenceError
from .store import StateStore

KEY_PREFIX = "chatflow:state"


class RedisStateStore(StateStore):
    """Keep one JSON document per (user, workflow type) in Redis.

    Keys expire ``STATE_EXPIRY_GRACE_SECONDS`` after the state's own
    ``expires_at`` so the dispatcher still gets a chance to cancel the
    draft behind an expired workflow.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        client: Optional[Any] = None,
    ) -> None:
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self._redis: Optional[Any] = client

    def _client(self) -> Any:
        if self._redis is None:
            self._redis = redis.Redis(
                host=self.host,
                port=self.port,
                db=self.db,
                password=self.password,
                decode_responses=True,
            )
        return self._redis

    async def disconnect(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    @staticmethod
    def _key(user_id: str, workflow_type: WorkflowType) -> str:
        return f"{KEY_PREFIX}:{user_id}:{workflow_type.value}"

    @staticmethod
    def _ttl_seconds(state: WorkflowState) -> Optional[int]:
        if state.expires_at is None:
            return None
        remaining = (state.expires_at - utcnow()).total_seconds()
        return max(1, math.ceil(remaining) + STATE_EXPIRY_GRACE_SECONDS)

    # ------------------------------------------------------------------
    async def get(self, user_id: str, workflow_type: WorkflowType) -> WorkflowState | None:
        try:
            raw = await self._client().get(self._key(user_id, workflow_type))
        except RedisError as exc:
            raise PersistenceError(f"Redis state store read failed: {exc}") from exc
        return state_from_json(raw) if raw else None

    async def put(self, state: WorkflowState) -> None:
        try:
            await self._client().set(
                self._key(state.user_id, state.workflow_type),
                state_to_json(state),
                ex=self._ttl_seconds(state),
            )
        except RedisError as exc:
            raise PersistenceError(f"Redis state store write failed: {exc}") from exc

    async def delete(self, user_id: str, workflow_type: WorkflowType) -> None:
        try:
            await self._client().delete(self._key(user_id, workflow_type))
        except RedisError as exc:
            raise PersistenceError(f"Redis state store delete failed: {exc}") from exc

    async def list_for_user(self, user_id: str) -> list[WorkflowState]:
        keys = [self._key(user_id, wt) for wt in WorkflowType]
        try:
            values = await self._client().mget(keys)
        except RedisError as exc:
            raise PersistenceError(f"Redis state store read failed: {exc}") from exc
        return [state_from_json(v) for v in values if v]

    async def list_states(self) -> list[WorkflowState]:
        states: list[WorkflowState] = []
        try:
            client = self._client()
            async for key in client.scan_iter(match=f"{KEY_PREFIX}:*"):
                raw = await client.get(key)
                if raw:
                    states.append(state_from_json(raw))
        except RedisError as exc:
            raise PersistenceError(f"Redis state store scan failed: {exc}") from exc
        return states
