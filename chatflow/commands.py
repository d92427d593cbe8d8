"""Structured control commands.

Every inbound message is decoded exactly once into one of the command models
below. Buttons carry commands as compact JSON in their callback data; typed
text is matched against a small keyword table and otherwise becomes a
:class:`TextMessage`.
"""

from __future__ import annotations

import json
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from .contracts import TransferAction, WorkflowType
from .errors import CommandDecodeError


class CancelCommand(BaseModel):
    kind: Literal["cancel"] = "cancel"
    workflow_type: Optional[WorkflowType] = None
    draft_id: Optional[str] = None


class ContinueCommand(BaseModel):
    kind: Literal["continue"] = "continue"
    workflow_type: Optional[WorkflowType] = None


class ConfirmCommand(BaseModel):
    kind: Literal["confirm"] = "confirm"
    workflow_type: Optional[WorkflowType] = None
    draft_id: Optional[str] = None


class SendCommand(BaseModel):
    kind: Literal["send"] = "send"
    draft_id: Optional[str] = None


class StartCommand(BaseModel):
    kind: Literal["start"] = "start"
    workflow_type: WorkflowType
    action: Optional[TransferAction] = None


class TextMessage(BaseModel):
    kind: Literal["text"] = "text"
    text: str


Command = Annotated[
    Union[
        CancelCommand,
        ContinueCommand,
        ConfirmCommand,
        SendCommand,
        StartCommand,
        TextMessage,
    ],
    Field(discriminator="kind"),
]

_COMMAND_ADAPTER: TypeAdapter = TypeAdapter(Command)

# Callback payloads travel through chat buttons with tight size limits.
_SHORT_KEYS = {"kind": "k", "workflow_type": "w", "draft_id": "d", "action": "a"}
_LONG_KEYS = {v: k for k, v in _SHORT_KEYS.items()}

TEXT_COMMANDS = {
    "cancel": CancelCommand(),
    "stop": CancelCommand(),
    "/cancel": CancelCommand(),
    "continue": ContinueCommand(),
    "resume": ContinueCommand(),
    "/continue": ContinueCommand(),
    "send": SendCommand(),
    "/send": SendCommand(),
    "confirm": ConfirmCommand(),
    "yes": ConfirmCommand(),
    "/confirm": ConfirmCommand(),
    "/invoice": StartCommand(workflow_type=WorkflowType.INVOICE),
    "/proposal": StartCommand(workflow_type=WorkflowType.PROPOSAL),
    "/transfer": StartCommand(workflow_type=WorkflowType.TRANSFER, action=TransferAction.SEND),
    "/send_crypto": StartCommand(workflow_type=WorkflowType.TRANSFER, action=TransferAction.SEND),
    "/swap": StartCommand(workflow_type=WorkflowType.TRANSFER, action=TransferAction.SWAP),
    "/bridge": StartCommand(workflow_type=WorkflowType.TRANSFER, action=TransferAction.BRIDGE),
    "/buy": StartCommand(workflow_type=WorkflowType.PURCHASE),
}


def encode_callback(command: BaseModel) -> str:
    """Serialise a command for a reply button."""
    if isinstance(command, TextMessage):
        raise ValueError("Free text cannot be encoded as a button command")
    data = command.model_dump(mode="json", exclude_none=True)
    return json.dumps(
        {_SHORT_KEYS[key]: value for key, value in data.items()},
        separators=(",", ":"),
    )


def decode_callback(callback_data: str) -> Command:
    try:
        payload = json.loads(callback_data)
    except json.JSONDecodeError as exc:
        raise CommandDecodeError(f"Malformed callback data: {callback_data!r}") from exc
    if not isinstance(payload, dict):
        raise CommandDecodeError(f"Malformed callback data: {callback_data!r}")
    try:
        data = {_LONG_KEYS[key]: value for key, value in payload.items()}
    except KeyError as exc:
        raise CommandDecodeError(f"Unknown callback field {exc.args[0]!r}") from exc
    if data.get("kind") == "text":
        raise CommandDecodeError("Free text cannot arrive as a button command")
    try:
        return _COMMAND_ADAPTER.validate_python(data)
    except ValidationError as exc:
        raise CommandDecodeError(f"Unknown command in callback data: {callback_data!r}") from exc


def decode_text(text: str) -> Command:
    key = text.strip().lower()
    # Telegram style "/invoice@botname"
    if key.startswith("/") and "@" in key:
        key = key.split("@", 1)[0]
    command = TEXT_COMMANDS.get(key)
    if command is not None:
        return command.model_copy()
    return TextMessage(text=text.strip())


def decode_command(
    text: Optional[str] = None, callback_data: Optional[str] = None
) -> Command:
    """Decode an inbound message into a single command.

    Callback data wins over text when both are present.
    """
    if callback_data:
        return decode_callback(callback_data)
    if text is None or not text.strip():
        raise CommandDecodeError("Empty message")
    return decode_text(text)
