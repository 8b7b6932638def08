"""Configuration settings for kgforge."""
import json
import logging
from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

SETTINGS_FILENAME = "settings.json"

DEFAULT_REQUIRED_HEADERS = "\n".join([
    "## Core Idea",
    "## When to Use",
    "## Steps / Components",
    "## Case Study",
    "## Pros & Cons",
    "## Related Models",
])


def parse_lines(text: Optional[str]) -> list[str]:
    """Split newline-separated text into trimmed, non-empty entries."""
    if not text:
        return []
    return [line.strip() for line in text.split("\n") if line.strip()]


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Provider A: OpenAI-compatible chat completions
    openai_api_keys: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4o"
    openai_backup_model: str = ""

    # Provider B: Google Gemini
    google_api_keys: str = ""
    google_model: str = "gemini-2.5-flash"
    google_backup_model: str = ""

    # Failover
    failover_cooldown_seconds: int = 300
    request_timeout_seconds: Optional[float] = 120.0

    # Sampling
    generation_temperature: float = 0.7
    generation_max_tokens: int = 4096

    # Paths
    output_dir: Path = Path("KnowledgeGraphNotes")
    data_dir: Path = Path(".kgforge")

    # Scheduler
    generation_batch_size: int = 5
    request_delay: float = 5.0
    debug_mode: bool = False

    # Critic
    critic_mode: Literal["heuristic", "ai"] = "heuristic"
    critic_required_headers: str = DEFAULT_REQUIRED_HEADERS
    critic_min_content_length: int = 400

    # Reviser
    max_revision_retries: int = 2

    # Prompt overrides (Jinja2 source); None uses the packaged templates
    prompt_generator: Optional[str] = None
    prompt_critic: Optional[str] = None
    prompt_reviser: Optional[str] = None

    # Seed box
    seed_concepts: str = ""
    extract_new_concepts: bool = False

    # API Server
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    class Config:
        env_prefix = "KGFORGE_"
        env_file = ".env"

    @property
    def openai_key_list(self) -> list[str]:
        return parse_lines(self.openai_api_keys)

    @property
    def google_key_list(self) -> list[str]:
        return parse_lines(self.google_api_keys)

    @property
    def required_header_list(self) -> list[str]:
        return parse_lines(self.critic_required_headers)

    @property
    def queue_file(self) -> Path:
        return self.data_dir / "queues.json"

    @property
    def cache_dir(self) -> Path:
        return self.data_dir / "task_cache"

    @property
    def settings_file(self) -> Path:
        return self.data_dir / SETTINGS_FILENAME


def load_settings(path: Optional[Path] = None) -> Settings:
    """
    Load settings, letting values saved in a JSON file override the environment.

    Args:
        path: Path to settings.json. Defaults to <data_dir>/settings.json.

    Returns:
        Settings instance
    """
    file_path = Path(path) if path is not None else Settings().settings_file
    if not file_path.exists():
        return Settings()

    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Error loading settings from {file_path}: {e}")
        return Settings()

    logger.info(f"Loaded settings from {file_path}")
    return Settings(**data)


def save_settings(settings: Settings, path: Optional[Path] = None) -> Path:
    """Write settings to a JSON file and return its path."""
    file_path = Path(path) if path is not None else settings.settings_file
    file_path.parent.mkdir(parents=True, exist_ok=True)

    with open(file_path, "w", encoding="utf-8") as f:
        json.dump(settings.model_dump(mode="json"), f, indent=2, ensure_ascii=False)

    logger.info(f"Saved settings to {file_path}")
    return file_path
