"""
Pipeline persistence.

Two files of different weight:
- queues.json holds the lightweight snapshot (status + queues, no content)
- task_cache/<task_id>.md holds the generated content of each task
"""
import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Optional
from uuid import uuid4

from .models import PipelineState

logger = logging.getLogger(__name__)


class QueueStore:
    """Reads and writes the queue snapshot."""

    def __init__(self, path: Path):
        """
        Args:
            path: Path to queues.json
        """
        self.path = Path(path)

    def load(self) -> Optional[PipelineState]:
        """
        Load the queue snapshot.

        Returns:
            PipelineState, or None if the file is missing or unreadable
        """
        if not self.path.exists():
            return None

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load queue data from {self.path}: {e}")
            return None

        return PipelineState.from_snapshot(data)

    def save(self, state: PipelineState) -> None:
        """Write the snapshot atomically (content never included)."""
        self.write_snapshot(state.to_snapshot())

    def write_snapshot(self, snapshot: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(f"{self.path.name}.{uuid4().hex}.tmp")

        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(snapshot, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        finally:
            tmp_path.unlink(missing_ok=True)


class ContentStore:
    """
    Durable per-task content, one markdown file per task id.

    File I/O runs in worker threads; concurrent calls are safe as long as they
    target distinct task ids.
    """

    def __init__(self, cache_dir: Path):
        """
        Args:
            cache_dir: Directory holding the cached task files
        """
        self.cache_dir = Path(cache_dir)

    def _path(self, task_id: str) -> Path:
        return self.cache_dir / f"{task_id}.md"

    async def save(self, task_id: str, content: str) -> None:
        await asyncio.to_thread(self._save_sync, task_id, content)
        logger.debug(f"Saved content cache for: {task_id}")

    def _save_sync(self, task_id: str, content: str) -> None:
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self._path(task_id).write_text(content, encoding="utf-8")

    async def load(self, task_id: str) -> Optional[str]:
        """Return the stored content, or None when it is absent."""
        return await asyncio.to_thread(self._load_sync, task_id)

    def _load_sync(self, task_id: str) -> Optional[str]:
        path = self._path(task_id)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    async def delete(self, task_id: str) -> None:
        await asyncio.to_thread(self._path(task_id).unlink, missing_ok=True)
        logger.debug(f"Deleted content cache for: {task_id}")

    async def exists(self, task_id: str) -> bool:
        return await asyncio.to_thread(self._path(task_id).exists)
