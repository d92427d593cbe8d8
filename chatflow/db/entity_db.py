from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlmodel import SQLModel

from ..contracts import DraftEntity, DraftStatus, EntityKind, utcnow
from ..errors import PersistenceError
from ..persistence.repository import EntityRepository, generate_number
from .models import DraftRecord


def _to_entity(record: DraftRecord) -> DraftEntity:
    return DraftEntity(
        id=record.id,
        number=record.number,
        kind=EntityKind(record.kind),
        user_id=record.user_id,
        status=DraftStatus(record.status),
        fields=dict(record.fields or {}),
        revision=record.revision,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


class SQLEntityRepository(EntityRepository):
    """Async SQL repository for draft entities.

    Works with any SQLAlchemy async URL, e.g. ``sqlite+aiosqlite:///drafts.db``.
    Call :meth:`init_db` once before use to create the tables.
    """

    def __init__(self, database_url: str) -> None:
        connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        self.engine = create_async_engine(
            database_url, echo=False, future=True, connect_args=connect_args
        )

    async def init_db(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with AsyncSession(self.engine, expire_on_commit=False) as session:
                yield session
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Draft repository operation failed: {exc}") from exc

    async def _require(self, session: AsyncSession, draft_id: str) -> DraftRecord:
        record = await session.get(DraftRecord, draft_id)
        if record is None:
            raise PersistenceError(f"Draft {draft_id} not found")
        return record

    # ------------------------------------------------------------------
    async def insert_draft(
        self, kind: EntityKind, user_id: str, fields: dict[str, Any]
    ) -> str:
        record = DraftRecord(
            id=str(uuid.uuid4()),
            number=generate_number(kind),
            kind=kind.value,
            user_id=user_id,
            status=DraftStatus.DRAFT.value,
            fields=dict(fields),
        )
        async with self.session() as session:
            session.add(record)
            await session.commit()
        return record.id

    async def update_draft(self, draft_id: str, fields: dict[str, Any]) -> None:
        async with self.session() as session:
            record = await self._require(session, draft_id)
            # JSON columns are only flagged dirty on reassignment
            record.fields = {**(record.fields or {}), **fields}
            record.revision += 1
            record.updated_at = utcnow()
            await session.commit()

    async def get_draft(self, draft_id: str) -> DraftEntity | None:
        async with self.session() as session:
            record = await session.get(DraftRecord, draft_id)
            return _to_entity(record) if record else None

    async def set_status(self, draft_id: str, status: DraftStatus) -> None:
        async with self.session() as session:
            record = await self._require(session, draft_id)
            record.status = status.value
            record.updated_at = utcnow()
            await session.commit()

    async def delete_draft(self, draft_id: str) -> None:
        async with self.session() as session:
            record = await session.get(DraftRecord, draft_id)
            if record is None:
                return
            await session.delete(record)
            await session.commit()

    async def latest_for_user(
        self,
        user_id: str,
        kinds: Iterable[EntityKind],
        status: DraftStatus | None = None,
    ) -> DraftEntity | None:
        stmt = select(DraftRecord).where(
            DraftRecord.user_id == user_id,
            DraftRecord.kind.in_([k.value for k in kinds]),
        )
        if status is not None:
            stmt = stmt.where(DraftRecord.status == status.value)
        stmt = stmt.order_by(DraftRecord.updated_at.desc()).limit(1)
        async with self.session() as session:
            record = (await session.execute(stmt)).scalars().first()
            return _to_entity(record) if record else None

    async def list_for_user(self, user_id: str) -> list[DraftEntity]:
        stmt = (
            select(DraftRecord)
            .where(DraftRecord.user_id == user_id)
            .order_by(DraftRecord.created_at)
        )
        async with self.session() as session:
            records = (await session.execute(stmt)).scalars().all()
            return [_to_entity(r) for r in records]
