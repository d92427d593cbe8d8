"""Shared fixtures: an in-memory dispatcher wired to recording collaborators."""

from __future__ import annotations

from datetime import date
from typing import Any, List, Mapping, Optional

import pytest

from chatflow.collaborators import (
    RecordingReplyChannel,
    SimulatedExecutionClient,
    StaticProfileLookup,
    StaticResourceCheck,
)
from chatflow.completion import CompletionPipeline
from chatflow.config import ChatflowConfig
from chatflow.contracts import DraftEntity, ExecutionResult, InboundMessage, UserProfile
from chatflow.dispatch import Dispatcher
from chatflow.persistence import InMemoryEntityRepository, InMemoryStateStore
from chatflow.processor import StepProcessor

TODAY = date(2024, 1, 1)


class FakeRenderer:
    def __init__(self) -> None:
        self.rendered: List[str] = []
        self.error: Optional[Exception] = None

    async def render(self, entity: DraftEntity) -> bytes:
        if self.error is not None:
            raise self.error
        self.rendered.append(entity.number)
        return f"%PDF-fake {entity.number}".encode()


class FakeDelivery:
    def __init__(self) -> None:
        self.calls: List[dict] = []
        self.accept = True

    async def deliver(self, address: str, artifact: bytes, metadata: Mapping[str, Any]) -> bool:
        self.calls.append({"address": address, "artifact": artifact, **metadata})
        return self.accept


class ScriptedExecutionClient(SimulatedExecutionClient):
    """Simulated client whose execute step can be made to fail."""

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.execute_calls: List[dict] = []
        self.execute_error: Optional[Exception] = None
        self.result_status = "executed"

    async def execute(self, params: Mapping[str, Any], idempotency_key: str) -> ExecutionResult:
        self.execute_calls.append({"params": dict(params), "key": idempotency_key})
        if self.execute_error is not None:
            raise self.execute_error
        if self.result_status == "failed":
            return ExecutionResult(reference="SIM-FAILED", status="failed", detail="insufficient balance")
        return await super().execute(params, idempotency_key)


class Harness:
    """A dispatcher plus handles on every collaborator it talks to."""

    def __init__(
        self,
        allowed_users: Optional[List[str]] = None,
        config: Optional[ChatflowConfig] = None,
    ) -> None:
        self.config = config or ChatflowConfig()
        self.store = InMemoryStateStore()
        self.repository = InMemoryEntityRepository()
        self.replies = RecordingReplyChannel()
        self.renderer = FakeRenderer()
        self.delivery = FakeDelivery()
        self.execution = ScriptedExecutionClient(
            rates={"USD": 1.0, "NGN": 1550.0}, quote_ttl_seconds=120
        )
        self.profiles = StaticProfileLookup(
            {"alice": UserProfile(name="Alice Freelancer", email="alice@example.com")}
        )
        self.pipeline = CompletionPipeline(
            self.store, self.repository, self.renderer, self.delivery, self.execution, self.config
        )
        self.processor = StepProcessor(
            self.store, self.repository, self.pipeline, self.config, today=lambda: TODAY
        )
        self.dispatcher = Dispatcher(
            self.store,
            self.repository,
            self.processor,
            self.pipeline,
            self.replies,
            resources=StaticResourceCheck(allowed_users),
            profiles=self.profiles,
            config=self.config,
        )

    async def say(self, text: str, user_id: str = "bob") -> List[str]:
        """Send ``text`` and return the replies it produced."""
        before = len(self.replies.replies)
        await self.dispatcher.handle(InboundMessage(user_id=user_id, text=text))
        return [r.text for r in self.replies.replies[before:]]

    async def press(self, label: str, user_id: str = "bob") -> List[str]:
        """Press the most recent button whose label contains ``label``."""
        for reply in reversed(self.replies.replies):
            for option in reply.options:
                if label in option.label:
                    before = len(self.replies.replies)
                    await self.dispatcher.handle(
                        InboundMessage(user_id=user_id, callback_data=option.callback_data)
                    )
                    return [r.text for r in self.replies.replies[before:]]
        raise AssertionError(f"No button labelled {label!r} was offered")

    async def drafts(self, user_id: str = "bob") -> List[DraftEntity]:
        return await self.repository.list_for_user(user_id)


@pytest.fixture
def harness() -> Harness:
    return Harness()


@pytest.fixture
def make_harness():
    return Harness
