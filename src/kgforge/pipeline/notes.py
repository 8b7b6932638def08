"""Note store: approved artifacts as markdown files."""
import asyncio
import logging
from pathlib import Path

from .text import sanitize_filename

logger = logging.getLogger(__name__)


class NoteStore:
    """Writes approved notes to <output_dir>/<sanitized title>.md."""

    def __init__(self, output_dir: Path):
        self.output_dir = Path(output_dir)

    def path_for(self, title: str) -> Path:
        return self.output_dir / f"{sanitize_filename(title)}.md"

    def exists(self, title: str) -> bool:
        return self.path_for(title).exists()

    def titles(self) -> set[str]:
        """Sanitized titles of every note already in the output directory."""
        if not self.output_dir.is_dir():
            return set()
        return {p.stem for p in self.output_dir.glob("*.md")}

    async def upsert(self, title: str, content: str) -> bool:
        """
        Create or overwrite a note.

        Args:
            title: Note title (sanitized for the filename)
            content: Markdown body

        Returns:
            True if written, False if the filesystem refused
        """
        path = self.path_for(title)
        try:
            created = await asyncio.to_thread(self._write, path, content)
        except OSError as e:
            logger.error(f"Failed to save note {path}: {e}")
            return False

        logger.info(f"Note {'created' if created else 'updated'}: {path.stem}")
        return True

    def _write(self, path: Path, content: str) -> bool:
        path.parent.mkdir(parents=True, exist_ok=True)
        created = not path.exists()
        path.write_text(content, encoding="utf-8")
        return created
