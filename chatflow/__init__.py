"""chatflow: resumable guided workflows for chat assistants."""

from .classifier import Classification, ClassifierContext, Decision, classify
from .commands import decode_command, encode_callback
from .completion import CompletionPipeline
from .contracts import DraftEntity, DraftStatus, InboundMessage, WorkflowType
from .dispatch import Dispatcher, build_dispatcher
from .persistence import get_entity_repository, get_state_store
from .processor import StepOutcome, StepProcessor
from .registry import REGISTRY

__version__ = "0.1.0"
__all__ = [
    "Classification",
    "ClassifierContext",
    "CompletionPipeline",
    "Decision",
    "Dispatcher",
    "DraftEntity",
    "DraftStatus",
    "InboundMessage",
    "REGISTRY",
    "StepOutcome",
    "StepProcessor",
    "WorkflowType",
    "build_dispatcher",
    "classify",
    "decode_command",
    "encode_callback",
    "get_entity_repository",
    "get_state_store",
]
