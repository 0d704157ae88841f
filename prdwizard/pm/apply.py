"""
Save and apply: the document handoff at the end of a PRD session.

Apply is gated on a fresh oracle clarity assessment. There is no manual
override: if the assessment cannot be obtained, or says the session is
not ready, apply is blocked and the session is kept.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from prdwizard.lib.constants import CLARITY_MIN_SCORE
from prdwizard.pm.document import write_document
from prdwizard.pm.errors import ApplyBlocked, ExternalServiceError, PRDError
from prdwizard.pm.importer import ImportResult
from prdwizard.pm.models import PRDSession
from prdwizard.pm.oracle import SCORE_TAIL_CHARS, OracleContext, refresh_score
from prdwizard.pm.store import SessionStore

logger = logging.getLogger(__name__)

APPLY_DEFAULT_ROLE = "developer"

ImportFn = Callable[..., ImportResult]


@dataclass
class ApplyResult:
    path: Path
    imported: ImportResult
    clarity_score: int


def require_stories(session: PRDSession) -> None:
    if not session.stories:
        raise PRDError("no stories in session yet")


def save_session(session: PRDSession, path: Path) -> Path:
    """Write the session's document to path without any gate."""
    require_stories(session)
    write_document(path, session)
    return path


def refresh_assessment(session: PRDSession, ctx: OracleContext) -> PRDSession:
    """Fresh oracle assessment for the apply gate.

    Raises:
        ApplyBlocked: If the oracle is unavailable
    """
    try:
        return refresh_score(session, ctx.oracles, ctx.tail(SCORE_TAIL_CHARS))
    except ExternalServiceError as e:
        logger.warning(f"[PRD] chat {session.chat_id}: apply gate unavailable: {e}")
        raise ApplyBlocked(category=e.category, detail=e.detail) from e


def is_apply_ready(session: PRDSession) -> bool:
    return session.codex_ready and session.codex_score >= CLARITY_MIN_SCORE


def apply_session(
    store: SessionStore,
    session: PRDSession,
    path: Path,
    ctx: OracleContext,
    importer: ImportFn,
) -> ApplyResult:
    """Gate, write, import and delete.

    The fresh assessment is persisted before the gate is checked, so
    preview and score show what apply saw.

    Raises:
        ApplyBlocked: If the gate does not pass
        SerializationError: If the document cannot be written
    """
    require_stories(session)
    scored = refresh_assessment(session, ctx)
    store.upsert(scored)
    if not is_apply_ready(scored):
        raise ApplyBlocked(score=scored.codex_score, missing=scored.codex_missing)

    write_document(path, scored)
    result = importer(store.paths, path, APPLY_DEFAULT_ROLE, False)
    store.delete(session.chat_id)
    logger.info(
        f"[PRD] chat {session.chat_id}: applied {path} "
        f"(imported={result.imported}, existing={result.skipped_existing}, invalid={result.skipped_invalid})"
    )
    return ApplyResult(path=path, imported=result, clarity_score=scored.codex_score)
