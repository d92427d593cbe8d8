from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel

from .constants import (
    DEFAULT_CURRENCY,
    DEFAULT_DOCUMENT_TTL_HOURS,
    DEFAULT_QUOTE_TTL_SECONDS,
    DEFAULT_TRANSFER_TTL_MINUTES,
)


class RedisConfig(BaseModel):
    """Connection settings for the Redis state store."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


class StateConfig(BaseModel):
    """Where in-progress workflow state is kept."""

    backend: Literal["inmemory", "sqlite", "postgres", "redis"] = "inmemory"
    url: Optional[str] = None
    redis: RedisConfig = RedisConfig()


class WorkflowConfig(BaseModel):
    """Timing and gating rules shared by every workflow."""

    document_ttl_hours: int = DEFAULT_DOCUMENT_TTL_HOURS
    transfer_ttl_minutes: int = DEFAULT_TRANSFER_TTL_MINUTES
    quote_ttl_seconds: int = DEFAULT_QUOTE_TTL_SECONDS
    require_wallet_for_documents: bool = True


class DeliveryConfig(BaseModel):
    """Outbound email API used to deliver rendered documents."""

    endpoint: Optional[str] = None
    api_key: Optional[str] = None
    sender: str = "invoices@chatflow.local"
    timeout: float = 10.0


class ExecutionConfig(BaseModel):
    """Quote/execute API for transfers and purchases."""

    endpoint: Optional[str] = None
    api_key: Optional[str] = None
    timeout: float = 15.0
    simulated_rates: dict[str, float] = {"USD": 1.0, "NGN": 1550.0, "GHS": 15.5}
    simulated_fee_rate: float = 0.01


class IntentConfig(BaseModel):
    """Optional LLM used when the rule based resolver finds no intent."""

    model: Optional[str] = None


class LoggingConfig(BaseModel):
    level: str = "INFO"


class ChatflowConfig(BaseModel):
    """Top-level configuration model."""

    default_currency: str = DEFAULT_CURRENCY
    database_url: Optional[str] = None
    state: StateConfig = StateConfig()
    workflows: WorkflowConfig = WorkflowConfig()
    delivery: DeliveryConfig = DeliveryConfig()
    execution: ExecutionConfig = ExecutionConfig()
    intents: IntentConfig = IntentConfig()
    logging: LoggingConfig = LoggingConfig()


def load_config(path: Optional[str] = None) -> ChatflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to CHATFLOW_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("CHATFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = ChatflowConfig(**data)
    else:
        config = ChatflowConfig()

    env_state_url = os.getenv("CHATFLOW_STATE_URL")
    if env_state_url:
        config.state.url = env_state_url
    env_db_url = os.getenv("CHATFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_currency = os.getenv("CHATFLOW_DEFAULT_CURRENCY")
    if env_currency:
        config.default_currency = env_currency.upper()
    return config
