"""Persistence layer for chatflow workflow state and draft entities."""

from __future__ import annotations

import logging
from typing import Optional

from ..config import ChatflowConfig, load_config
from .inmemory import InMemoryEntityRepository, InMemoryStateStore
from .repository import EntityRepository, generate_number
from .sqlite import SQLiteStateStore
from .store import StateStore

logger = logging.getLogger(__name__)

_store_instance: StateStore | None = None
_repository_instance: EntityRepository | None = None


def get_state_store(
    url: Optional[str] = None, config: Optional[ChatflowConfig] = None
) -> StateStore:
    """Factory function to obtain the workflow state store.

    The backend is picked from ``url`` (or ``config.state.url`` which honours
    ``CHATFLOW_STATE_URL``), falling back to ``config.state.backend``. Without
    any configuration an in-memory store is returned.
    """

    global _store_instance
    if _store_instance is not None and url is None and config is None:
        return _store_instance

    config = config or load_config()
    url = url or config.state.url

    if url:
        if url.startswith("sqlite://"):
            _store_instance = SQLiteStateStore(url.replace("sqlite://", "", 1))
        elif url.startswith("postgres://") or url.startswith("postgresql://"):
            from .postgres import PostgresStateStore

            _store_instance = PostgresStateStore(url)
        elif url.startswith("redis://"):
            from redis.asyncio import Redis

            from .redis import RedisStateStore

            _store_instance = RedisStateStore(
                client=Redis.from_url(url, decode_responses=True)
            )
        else:
            raise ValueError(f"Unsupported state backend: {url}")
    elif config.state.backend == "redis":
        from .redis import RedisStateStore

        redis_cfg = config.state.redis
        _store_instance = RedisStateStore(
            host=redis_cfg.host,
            port=redis_cfg.port,
            db=redis_cfg.db,
            password=redis_cfg.password,
        )
    elif config.state.backend == "inmemory":
        _store_instance = InMemoryStateStore()
    else:
        raise ValueError(
            f"State backend '{config.state.backend}' requires state.url to be set"
        )

    logger.debug(f"Using state store {type(_store_instance).__name__}")
    return _store_instance


async def get_entity_repository(
    database_url: Optional[str] = None, config: Optional[ChatflowConfig] = None
) -> EntityRepository:
    """Factory function to obtain the draft entity repository.

    ``database_url`` is an SQLAlchemy async URL. When no database is
    configured an in-memory repository is returned.
    """

    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    config = config or load_config()
    database_url = database_url or config.database_url

    if not database_url:
        _repository_instance = InMemoryEntityRepository()
    else:
        from ..db import SQLEntityRepository

        repository = SQLEntityRepository(database_url)
        await repository.init_db()
        _repository_instance = repository

    logger.debug(f"Using entity repository {type(_repository_instance).__name__}")
    return _repository_instance


def reset_persistence() -> None:
    """Forget cached backends so the next factory call builds new ones."""
    global _store_instance, _repository_instance
    _store_instance = None
    _repository_instance = None


__all__ = [
    "StateStore",
    "EntityRepository",
    "InMemoryStateStore",
    "InMemoryEntityRepository",
    "SQLiteStateStore",
    "generate_number",
    "get_state_store",
    "get_entity_repository",
    "reset_persistence",
]
