"""Knowledge graph pipeline: queues, critics, stores and the tick engine."""
from .critic import Critic, HeuristicCritic, ModelCritic, Verdict, build_critic, parse_decision
from .engine import Engine
from .events import EngineEvent, EventBus, EventType
from .models import EngineStatus, PipelineState, QueueName, Task
from .notes import NoteStore
from .prompts import PromptBuilder
from .store import ContentStore, QueueStore
from .text import clean_markdown_output, extract_linked_concepts, sanitize_filename

__all__ = [
    "Critic",
    "HeuristicCritic",
    "ModelCritic",
    "Verdict",
    "build_critic",
    "parse_decision",
    "Engine",
    "EngineEvent",
    "EventBus",
    "EventType",
    "EngineStatus",
    "PipelineState",
    "QueueName",
    "Task",
    "NoteStore",
    "PromptBuilder",
    "ContentStore",
    "QueueStore",
    "clean_markdown_output",
    "extract_linked_concepts",
    "sanitize_filename",
]
