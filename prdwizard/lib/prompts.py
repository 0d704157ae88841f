"""
Oracle prompt templates for the PRD wizard.

One markdown template per oracle call kind lives in prdwizard/prompts/.
Templates are str.format() strings; {{ and }} produce the literal braces of
the JSON shape the oracle must answer with. HTML comments document the
template and are stripped before rendering.

Every oracle prompt receives the session snapshot as session_json and the
conversation tail as conversation_section (empty when there is no log yet).
"""

import logging
import re
from functools import lru_cache
from pathlib import Path

logger = logging.getLogger(__name__)

__all__ = [
    "PromptError",
    "ORACLE_TEMPLATES",
    "PROMPTS_DIR",
    "load_prompt",
    "render_prompt",
    "render_oracle_prompt",
    "conversation_section",
    "build_section",
    "clear_cache",
]

_HTML_COMMENT_PATTERN = re.compile(r'<!--.*?-->\s*', re.DOTALL)

PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"

# oracle call kind -> template name
ORACLE_TEMPLATES = {
    "turn": "prd_turn",
    "score": "prd_score",
    "refine": "prd_refine",
    "priority": "prd_priority",
}

CONVERSATION_HEADER = "Recent conversation (markdown):"


class PromptError(Exception):
    """Raised when prompt loading or rendering fails."""
    pass


@lru_cache(maxsize=8)
def load_prompt(name: str) -> str:
    """Template text by name, comments stripped (cached).

    Raises:
        PromptError: If the template file doesn't exist
    """
    prompt_path = PROMPTS_DIR / f"{name}.md"
    if not prompt_path.exists():
        raise PromptError(f"Prompt template '{name}' not found. Expected file: {prompt_path}")

    logger.debug(f"Loading prompt template: {name}")
    content = _HTML_COMMENT_PATTERN.sub('', prompt_path.read_text(encoding="utf-8"))
    return content.lstrip()


def render_prompt(name: str, **kwargs) -> str:
    """Load and format a template.

    Raises:
        PromptError: If the template is missing or a placeholder has no value
    """
    template = load_prompt(name)
    try:
        return template.format(**kwargs)
    except KeyError as e:
        raise PromptError(
            f"Missing required variable {e} in prompt '{name}'. Provided: {sorted(kwargs)}"
        ) from e


def build_section(content: str | None, header: str, empty_msg: str | None = None) -> str:
    """Markdown section for content; "" when empty and no empty_msg is given."""
    if content and content.strip():
        return f"{header}\n\n{content.strip()}\n"
    if empty_msg is not None:
        return f"{header}\n\n{empty_msg}\n"
    return ""


def conversation_section(tail: str | None) -> str:
    """Conversation tail block for an oracle prompt, separated by a blank line."""
    section = build_section(tail, CONVERSATION_HEADER)
    return f"\n{section}" if section else ""


def render_oracle_prompt(kind: str, session_json: str, conversation_tail: str = "", **kwargs) -> str:
    """Render the template for one oracle call kind (turn, score, refine, priority).

    Raises:
        PromptError: Unknown kind, missing template or missing variable
    """
    name = ORACLE_TEMPLATES.get(kind)
    if name is None:
        raise PromptError(f"Unknown oracle prompt kind '{kind}'. Expected one of: {', '.join(ORACLE_TEMPLATES)}")
    return render_prompt(
        name,
        session_json=session_json,
        conversation_section=conversation_section(conversation_tail),
        **kwargs,
    )


def clear_cache() -> None:
    """Forget loaded templates so edits on disk are picked up."""
    load_prompt.cache_clear()
