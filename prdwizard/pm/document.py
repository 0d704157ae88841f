"""
PRD document rendering.

Turns a session into the JSON document handed to the issue importer:
metadata (product, clarity, full context) plus the ordered story list.
"""

import logging
from pathlib import Path

from prdwizard.lib.config import PRDPaths
from prdwizard.lib.constants import CLARITY_MIN_SCORE, DEFAULT_PRODUCT_FALLBACK, DOCUMENT_SOURCE
from prdwizard.lib.fileio import write_json_atomic
from prdwizard.lib.validate import ValidationError, validate_before_write
from prdwizard.pm.clarity import evaluate_clarity
from prdwizard.pm.errors import SerializationError
from prdwizard.pm.models import PRDSession, is_supported_role, utc_timestamp
from prdwizard.pm.priority import normalize_agent_priority, role_priority

logger = logging.getLogger(__name__)

DEFAULT_STORY_ROLE = "developer"


def resolve_document_path(paths: PRDPaths, chat_id: int, raw: str = "") -> Path:
    """Target path for save/apply; relative paths resolve against the project dir."""
    target = (raw or "").strip()
    if not target:
        return paths.default_document_file(chat_id)
    path = Path(target).expanduser()
    if not path.is_absolute():
        path = paths.project_dir / path
    return path.resolve()


def render_document(session: PRDSession) -> dict:
    """Document dict for a session. Missing story id/role/priority are backfilled."""
    clarity = evaluate_clarity(session)
    ctx = session.context

    stories = []
    for story in session.stories:
        role = story.role.strip().lower()
        if not is_supported_role(role):
            role = DEFAULT_STORY_ROLE
        priority = story.priority if story.priority > 0 else role_priority(session, role)
        stories.append({
            "id": story.id.strip() or session.story_id(len(stories) + 1),
            "title": story.title,
            "description": story.description,
            "role": role,
            "priority": priority,
        })

    return {
        "metadata": {
            "product": session.product_name.strip() or DEFAULT_PRODUCT_FALLBACK,
            "source": DOCUMENT_SOURCE,
            "generated_at_utc": utc_timestamp(),
            "clarity_score": clarity.score,
            "clarity_gate": CLARITY_MIN_SCORE,
            "context": {
                "problem": ctx.problem.strip(),
                "goal": ctx.goal.strip(),
                "in_scope": ctx.in_scope.strip(),
                "out_of_scope": ctx.out_of_scope.strip(),
                "acceptance": ctx.acceptance.strip(),
                "constraints": ctx.constraints.strip(),
                "assumptions": list(ctx.assumptions),
                "agent_priority": normalize_agent_priority(ctx.agent_priority),
            },
        },
        "userStories": stories,
    }


def write_document(path: Path, session: PRDSession) -> dict:
    """Render, validate and atomically write the document. Returns what was written.

    Raises:
        SerializationError: If the document is invalid or cannot be written
    """
    doc = render_document(session)
    try:
        validate_before_write(doc, "prd_document", path)
        write_json_atomic(Path(path), doc)
    except ValidationError as e:
        raise SerializationError(str(e)) from e
    except OSError as e:
        raise SerializationError(f"write prd json {path}: {e}") from e
    logger.info(f"[PRD] Wrote document {path} ({len(doc['userStories'])} stories)")
    return doc
