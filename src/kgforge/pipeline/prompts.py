"""
Prompt building for generation, review and revision.

Prompts are Jinja2 templates. The packaged ones live in pipeline/templates;
any of them can be replaced through settings with inline Jinja2 source.

Usage:
    prompts = PromptBuilder.from_settings(settings)
    prompt = prompts.revision_prompt("Inversion", content, "Too short")
"""
import logging
from pathlib import Path
from typing import Optional

from jinja2 import Environment, FileSystemLoader, Template, select_autoescape

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"

GENERATOR_TEMPLATE = "generator.md.j2"
CRITIC_TEMPLATE = "critic.md.j2"
REVISER_TEMPLATE = "reviser.md.j2"


class PromptBuilder:
    """Renders the generator, critic and reviser prompts."""

    def __init__(
        self,
        template_dir: Optional[Path] = None,
        overrides: Optional[dict[str, Optional[str]]] = None,
    ):
        """
        Initialize the prompt builder.

        Args:
            template_dir: Path to Jinja2 templates. Defaults to pipeline/templates.
            overrides: Template name -> inline Jinja2 source replacing the file
        """
        self.template_dir = template_dir or TEMPLATE_DIR
        self.env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            autoescape=select_autoescape(["html", "xml"], default_for_string=False),
            keep_trailing_newline=True,
        )
        self.overrides = {name: src for name, src in (overrides or {}).items() if src}

    @classmethod
    def from_settings(cls, settings) -> "PromptBuilder":
        return cls(overrides={
            GENERATOR_TEMPLATE: settings.prompt_generator,
            CRITIC_TEMPLATE: settings.prompt_critic,
            REVISER_TEMPLATE: settings.prompt_reviser,
        })

    def _template(self, name: str) -> Template:
        source = self.overrides.get(name)
        if source:
            return self.env.from_string(source)
        return self.env.get_template(name)

    def generation_prompt(self, concept: str) -> str:
        return self._template(GENERATOR_TEMPLATE).render(concept=concept)

    def critic_prompt(self, content: str) -> str:
        return self._template(CRITIC_TEMPLATE).render(content=content)

    def revision_prompt(self, concept: str, original_content: str, rejection_reason: str) -> str:
        """
        Build the prompt asking for a revised note.

        Args:
            concept: The task's idea
            original_content: The rejected note
            rejection_reason: Why the critic rejected it

        Returns:
            Rendered prompt
        """
        return self._template(REVISER_TEMPLATE).render(
            concept=concept,
            original_content=original_content,
            rejection_reason=rejection_reason,
        )
