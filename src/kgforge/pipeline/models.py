"""Pipeline data model: tasks, queues and engine status."""
import hashlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .text import sanitize_filename


class EngineStatus(str, Enum):
    """Engine lifecycle state."""
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"


class QueueName(str, Enum):
    """The four pipeline queues."""
    GENERATION = "generation"
    REVIEW = "review"
    REVISION = "revision"
    DISCARDED = "discarded"


@dataclass
class Task:
    """
    A generated concept moving through review and revision.

    Attributes:
        idea: The concept; unique within the active pipeline
        reason: Last rejection reason
        retries: Number of rejections so far
        content: Generated markdown, held in memory only. The Content Store
            keeps the durable copy and snapshots never include it.
    """
    idea: str
    reason: Optional[str] = None
    retries: int = 0
    content: Optional[str] = field(default=None, repr=False, compare=False)

    @property
    def task_id(self) -> str:
        """Content Store identifier: readable slug plus a digest of the raw idea."""
        digest = hashlib.sha1(self.idea.encode("utf-8")).hexdigest()[:10]
        slug = sanitize_filename(self.idea).replace(" ", "_")[:60] or "task"
        return f"{slug}-{digest}"

    def to_dict(self) -> dict:
        """Convert to the snapshot form (no content)."""
        data: dict = {"idea": self.idea, "retries": self.retries}
        if self.reason is not None:
            data["reason"] = self.reason
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Task":
        return cls(
            idea=data["idea"],
            reason=data.get("reason"),
            retries=int(data.get("retries") or 0),
        )


@dataclass
class PipelineState:
    """Engine status plus the four queues."""
    status: EngineStatus = EngineStatus.IDLE
    generation_queue: list[str] = field(default_factory=list)
    review_queue: list[Task] = field(default_factory=list)
    revision_queue: list[Task] = field(default_factory=list)
    discarded_pile: list[Task] = field(default_factory=list)

    @property
    def active_count(self) -> int:
        """Entries that keep the engine from going idle."""
        return len(self.generation_queue) + len(self.review_queue) + len(self.revision_queue)

    @property
    def is_drained(self) -> bool:
        return self.active_count == 0

    def counts(self) -> dict[str, int]:
        return {
            QueueName.GENERATION.value: len(self.generation_queue),
            QueueName.REVIEW.value: len(self.review_queue),
            QueueName.REVISION.value: len(self.revision_queue),
            QueueName.DISCARDED.value: len(self.discarded_pile),
        }

    def status_line(self) -> str:
        return (
            f"KG: {self.status.value} | G:{len(self.generation_queue)} "
            f"| C:{len(self.review_queue)} | R:{len(self.revision_queue)} "
            f"| Total:{self.active_count}"
        )

    def to_snapshot(self) -> dict:
        """JSON-ready snapshot with every task's content stripped."""
        return {
            "status": self.status.value,
            "generation_queue": list(self.generation_queue),
            "review_queue": [t.to_dict() for t in self.review_queue],
            "revision_queue": [t.to_dict() for t in self.revision_queue],
            "discarded_pile": [t.to_dict() for t in self.discarded_pile],
        }

    @classmethod
    def from_snapshot(cls, data: dict) -> "PipelineState":
        try:
            status = EngineStatus(data.get("status", EngineStatus.IDLE.value))
        except ValueError:
            status = EngineStatus.IDLE

        return cls(
            status=status,
            generation_queue=[str(c) for c in data.get("generation_queue", [])],
            review_queue=[Task.from_dict(t) for t in data.get("review_queue", [])],
            revision_queue=[Task.from_dict(t) for t in data.get("revision_queue", [])],
            discarded_pile=[Task.from_dict(t) for t in data.get("discarded_pile", [])],
        )
