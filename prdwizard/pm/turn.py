"""
Oracle-assisted turn processing.

The oracle reads the session, the conversation tail and the raw message,
and answers with a sparse patch. The patch goes through the same
normalize/assume rules as the deterministic stages. A turn the oracle
cannot handle is reported as not handled so the stage machine runs instead.
"""

import copy
import logging

from prdwizard.lib.constants import CONTEXT_FIELDS, Stage, stage_prompt
from prdwizard.pm import replies
from prdwizard.pm.clarity import apply_context_answer, evaluate_clarity
from prdwizard.pm.errors import ExternalServiceError, PRDError
from prdwizard.pm.models import PRDSession
from prdwizard.pm.oracle import (
    TURN_TAIL_CHARS,
    OracleContext,
    TurnResponse,
    call_oracle,
    normalize_suggested_stage,
)
from prdwizard.pm.stages import StoryInput, append_story, parse_story_role
from prdwizard.workflow.fsm import StageFSM

logger = logging.getLogger(__name__)


def format_turn_reply(session: PRDSession, turn: TurnResponse, updated_fields: list[str], story_reply: str) -> str:
    reply = turn.reply.strip()
    next_question = turn.next_question.strip()

    if not reply and story_reply and not next_question and updated_fields == ["story"]:
        return story_reply

    lines = []
    if reply:
        lines.append(reply)
    if updated_fields:
        lines.append(f"updated: {', '.join(updated_fields)}")
    if story_reply:
        lines.append(story_reply)
    if not next_question:
        status = evaluate_clarity(session)
        if not status.ready_to_apply and status.next_stage:
            next_question = stage_prompt(status.next_stage)
    if next_question:
        lines.append(f"next question: {next_question}")
    return "\n".join(lines)


def apply_turn(session: PRDSession, turn: TurnResponse, ctx: OracleContext) -> tuple[PRDSession, str, bool]:
    """Apply an oracle turn to a copy of session.

    Returns:
        Tuple of (updated session, reply, handled)
    """
    updated = copy.deepcopy(session)
    updated_fields: list[str] = []

    patch = turn.session_patch
    product = patch.product_name.strip()
    if product and product != updated.product_name.strip():
        updated.product_name = product
        updated_fields.append("product")

    for name in CONTEXT_FIELDS:
        if apply_context_answer(updated.context, name, getattr(patch, name)):
            updated_fields.append(name)

    story_reply = ""
    story = turn.story
    if story and story.title.strip() and story.description.strip() and story.role.strip():
        try:
            role = parse_story_role(story.role)
            story_in = StoryInput(
                title=story.title,
                description=story.description,
                role=role,
                priority=story.priority if story.priority > 0 else None,
            )
            updated, added, source = append_story(updated, story_in, ctx)
        except PRDError as e:
            logger.info(f"[PRD] chat {session.chat_id}: oracle story ignored: {e}")
        else:
            story_reply = replies.story_added(updated, added, source)
            updated_fields.append("story")

    has_signal = bool(
        updated_fields
        or turn.reply.strip()
        or turn.next_question.strip()
        or turn.suggested_stage.strip()
        or turn.ready_to_apply
    )
    if not has_signal:
        return session, "", False

    if turn.ready_to_apply:
        next_stage = Stage.AWAIT_STORY_TITLE
    else:
        next_stage = (
            normalize_suggested_stage(turn.suggested_stage)
            or evaluate_clarity(updated).next_stage
            or Stage.AWAIT_STORY_TITLE
        )
    StageFSM(updated).move_to(next_stage)
    updated.touch()

    return updated, format_turn_reply(updated, turn, updated_fields, story_reply), True


def process_turn(session: PRDSession, text: str, ctx: OracleContext) -> tuple[PRDSession, str, bool]:
    """Ask the oracle to interpret text. Never raises on oracle failure.

    Returns:
        Tuple of (session, reply, handled). When not handled the session is
        returned unchanged.
    """
    text = (text or "").strip()
    if not text:
        return session, "", False
    try:
        turn = call_oracle(ctx.oracles.turn, session, text, ctx.tail(TURN_TAIL_CHARS))
    except ExternalServiceError as e:
        logger.warning(f"[PRD] chat {session.chat_id}: codex turn fallback: {e}")
        return session, "", False
    return apply_turn(session, turn, ctx)
