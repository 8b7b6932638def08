"""Text helpers for concept names and generated markdown."""
import re

MAX_FILENAME_LENGTH = 100

_PAREN_SUFFIX = re.compile(r"\s*\(.*\)")
_UNSAFE_CHARS = re.compile(r'[\\/*?:"<>|]')
_WIKI_LINK = re.compile(r"\[\[([^\]]+)\]\]")
_MARKDOWN_FENCE = "```markdown"


def sanitize_filename(name: str) -> str:
    """
    Turn a concept into a filesystem-safe note title.

    Parenthesised qualifiers are dropped, so "Pareto Principle (80/20 rule)"
    becomes "Pareto Principle".
    """
    clean = _PAREN_SUFFIX.sub("", name).strip()
    clean = _UNSAFE_CHARS.sub("", clean)
    return clean[:MAX_FILENAME_LENGTH]


def extract_linked_concepts(content: str) -> list[str]:
    """Return unique [[wiki link]] targets in first-seen order, without aliases."""
    seen: dict[str, None] = {}
    for match in _WIKI_LINK.findall(content):
        target = match.split("|")[0].strip()
        if target:
            seen.setdefault(target, None)
    return list(seen)


def clean_markdown_output(content: str) -> str:
    """Strip a ```markdown fence wrapping the whole response."""
    trimmed = content.strip()
    if trimmed.startswith(_MARKDOWN_FENCE) and trimmed.endswith("```"):
        return trimmed[len(_MARKDOWN_FENCE):-3].strip()
    return trimmed
