"""Prompt Registry - Load prompts from template files.

Prompts live as Markdown files under ``prompts/templates`` and support
``{variable}`` substitution.

Usage:
    from studycoach.prompts.registry import get_prompt

    prompt = get_prompt(
        "tutor/focused_mode",
        topic="Fractions",
    )
"""

from __future__ import annotations

import re
from functools import lru_cache
from pathlib import Path

import structlog

logger = structlog.get_logger(__name__)

PROMPTS_DIR = Path(__file__).parent / "templates"

# Only known names are replaced; JSON braces in templates are left alone
_VARIABLE_PATTERN = re.compile(r"\{([a-z_][a-z0-9_]*)\}")


def _get_prompt_uncached(key: str) -> str:
    """Load raw prompt from file without caching.

    Args:
        key: Path-like key, e.g., "tutor/system"

    Returns:
        Raw prompt content

    Raises:
        FileNotFoundError: If prompt file doesn't exist
    """
    file_path = PROMPTS_DIR / f"{key}.md"
    if not file_path.exists():
        raise FileNotFoundError(f"Prompt not found: {key} (looked at {file_path})")

    return file_path.read_text(encoding="utf-8")


@lru_cache(maxsize=64)
def _get_cached_prompt(key: str) -> str:
    """Cached version of prompt loading."""
    return _get_prompt_uncached(key)


def get_prompt(key: str, use_cache: bool = True, **variables: object) -> str:
    """Load prompt from file and substitute variables.

    Substitution is a single pass, so values that themselves contain
    ``{name}`` text (e.g. a student question) are never expanded.

    Args:
        key: Path-like key, e.g., "planner/study_plan"
        use_cache: Whether to use cached version (default True)
        **variables: Variables to substitute, e.g., name="Ana"

    Returns:
        Prompt string with variables substituted

    Raises:
        FileNotFoundError: If prompt file doesn't exist
    """
    if use_cache:
        content = _get_cached_prompt(key)
    else:
        content = _get_prompt_uncached(key)

    def _replace(match: re.Match[str]) -> str:
        name = match.group(1)
        if name in variables:
            return str(variables[name])
        return match.group(0)

    return _VARIABLE_PATTERN.sub(_replace, content)


def list_prompts() -> list[str]:
    """List all available prompt keys.

    Returns:
        Sorted list of prompt keys (e.g., ["planner/study_plan", "tutor/system"])
    """
    if not PROMPTS_DIR.exists():
        logger.warning("prompts_dir_not_found", path=str(PROMPTS_DIR))
        return []

    prompts = []
    for path in PROMPTS_DIR.rglob("*.md"):
        key = str(path.relative_to(PROMPTS_DIR)).replace(".md", "").replace("\\", "/")
        prompts.append(key)
    return sorted(prompts)


def clear_cache() -> None:
    """Clear the prompt cache."""
    _get_cached_prompt.cache_clear()
