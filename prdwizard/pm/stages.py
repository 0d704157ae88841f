"""
Deterministic stage handling for PRD sessions.

The fallback path when the oracle turn does not handle a message, and the
authority for structured inputs such as "title | description | role [priority]".
Every handler works on a copy: on error the caller's session is untouched,
so the user stays at the same prompt.
"""

import copy
import logging
from dataclasses import dataclass
from typing import Optional

from prdwizard.lib.constants import (
    CONTEXT_FIELD_STAGES,
    ROLE_ALIASES,
    Stage,
    stage_prompt,
)
from prdwizard.pm import replies
from prdwizard.pm.clarity import apply_context_answer, evaluate_clarity
from prdwizard.pm.errors import (
    ExternalServiceError,
    IncompleteDraft,
    InvalidPriority,
    InvalidQuickFormat,
    InvalidRole,
)
from prdwizard.pm.models import PRDSession, PRDStory, is_supported_role
from prdwizard.pm.oracle import (
    PRIORITY_TAIL_CHARS,
    REFINE_TAIL_CHARS,
    OracleContext,
    normalize_suggested_stage,
    refresh_refine,
)
from prdwizard.pm.priority import SOURCE_MANUAL, resolve_priority
from prdwizard.workflow.fsm import StageFSM

logger = logging.getLogger(__name__)

AUTO_PRIORITY_WORDS = ("default", "skip")

# stage -> context field it fills
STAGE_FIELDS = {stage: name for name, stage in CONTEXT_FIELD_STAGES.items()}


@dataclass
class StoryInput:
    """A parsed story before priority resolution. priority None = resolve."""
    title: str
    description: str
    role: str
    priority: Optional[int] = None


# --- Input parsing ---

def parse_story_role(raw: str) -> str:
    """Role name from raw input, accepting the numeric aliases 1-4.

    Raises:
        InvalidRole: If the role is not supported
    """
    value = (raw or "").strip().lower()
    value = ROLE_ALIASES.get(value, value)
    if not is_supported_role(value):
        raise InvalidRole(raw)
    return value


def parse_story_priority(raw: str) -> Optional[int]:
    """Positive priority, or None when the answer asks for automatic resolution.

    Raises:
        InvalidPriority: If the value is not a positive integer
    """
    value = (raw or "").strip().lower()
    if not value or value in AUTO_PRIORITY_WORDS:
        return None
    try:
        priority = int(value)
    except ValueError:
        raise InvalidPriority(raw) from None
    if priority <= 0:
        raise InvalidPriority(raw)
    return priority


def parse_role_and_priority(raw_role: str, raw_priority: str = "") -> tuple[str, Optional[int]]:
    """Parse "role" or "role priority" (or role and priority given separately)."""
    role_input = (raw_role or "").strip()
    priority_input = (raw_priority or "").strip()

    if not priority_input:
        fields = role_input.split()
        if len(fields) > 2:
            raise InvalidRole(raw_role)
        if fields:
            role_input = fields[0]
        if len(fields) == 2:
            priority_input = fields[1]

    role = parse_story_role(role_input)
    return role, parse_story_priority(priority_input)


def parse_quick_story(text: str) -> Optional[StoryInput]:
    """Parse "title | description | role [priority]" or "title | description | role | priority".

    Returns None when text is not a quick form at all.

    Raises:
        InvalidQuickFormat: Wrong part count or empty title/description
        InvalidRole, InvalidPriority: From the role/priority parts
    """
    if "|" not in text:
        return None
    parts = [p.strip() for p in text.split("|")]
    if len(parts) < 3 or len(parts) > 4:
        raise InvalidQuickFormat(
            "quick format: title | description | role [priority] or title | description | role | priority"
        )
    title, desc = parts[0], parts[1]
    if not title or not desc:
        raise InvalidQuickFormat("quick format requires non-empty title and description")
    raw_priority = parts[3] if len(parts) == 4 else ""
    role, priority = parse_role_and_priority(parts[2], raw_priority)
    return StoryInput(title=title, description=desc, role=role, priority=priority)


# --- Story commit ---

def append_story(
    session: PRDSession, story_in: StoryInput, ctx: OracleContext
) -> tuple[PRDSession, PRDStory, str]:
    """Append a story, resolving its priority unless one was given.

    Clears the draft and returns the session to the story title prompt.

    Returns:
        Tuple of (session, story, priority_source)

    Raises:
        IncompleteDraft: If title, description or role is missing
    """
    title = (story_in.title or "").strip()
    desc = (story_in.description or "").strip()
    role = (story_in.role or "").strip()
    if not title or not desc or not role:
        raise IncompleteDraft()
    if not is_supported_role(role):
        raise InvalidRole(role)

    updated = copy.deepcopy(session)
    story = PRDStory(title=title, description=desc, role=role, priority=story_in.priority or 0)
    source = SOURCE_MANUAL
    if story.priority <= 0:
        story.priority, source = resolve_priority(
            updated, story, ctx.oracles, ctx.tail(PRIORITY_TAIL_CHARS)
        )
    story.id = updated.story_id(len(updated.stories) + 1)
    updated.stories.append(story)
    updated.clear_draft()

    fsm = StageFSM(updated)
    if fsm.can("commit_story"):
        fsm.commit_story()
    else:
        fsm.move_to(Stage.AWAIT_STORY_TITLE)
    logger.info(f"[PRD] chat {updated.chat_id}: story {story.id} added ({story.role}, {story.priority}, {source})")
    return updated, story, source


# --- Stage handlers ---

def _heuristic_next(session: PRDSession, default: Stage) -> Stage:
    return evaluate_clarity(session).next_stage or default


def _advance_after_context(session: PRDSession, ctx: OracleContext) -> tuple[PRDSession, str]:
    """Re-evaluate with the refine oracle after a context answer."""
    fsm = StageFSM(session)
    try:
        refined, refine = refresh_refine(session, ctx.oracles, ctx.tail(REFINE_TAIL_CHARS))
    except ExternalServiceError as e:
        logger.warning(f"[PRD] chat {session.chat_id}: refine fallback: {e}")
        next_stage = _heuristic_next(session, Stage.AWAIT_STORY_TITLE)
        fsm.move_to(next_stage)
        status = evaluate_clarity(session)
        return session, replies.refine_unavailable(session.stage, status.score, e, stage_prompt(next_stage))

    fsm = StageFSM(refined)
    if refine.ready_to_apply:
        next_stage = Stage.AWAIT_STORY_TITLE
    else:
        next_stage = normalize_suggested_stage(refine.suggested_stage) or _heuristic_next(
            refined, Stage.AWAIT_STORY_TITLE
        )
    fsm.move_to(next_stage)
    return refined, replies.refine_question(refine)


def advance_session(session: PRDSession, text: str, ctx: OracleContext) -> tuple[PRDSession, str]:
    """Apply one input to the current stage.

    Returns:
        Tuple of (updated session copy, reply)
    """
    updated = copy.deepcopy(session)
    updated.touch()
    text = (text or "").strip()
    if not text:
        return updated, stage_prompt(updated.stage)

    stage = Stage.parse(updated.stage)
    fsm = StageFSM(updated)

    if stage == Stage.AWAIT_PRODUCT:
        updated.product_name = text
        fsm.move_to(_heuristic_next(updated, Stage.AWAIT_STORY_TITLE))
        return updated, f"product set: {updated.product_name}\n- next: /prd refine"

    if stage in STAGE_FIELDS:
        apply_context_answer(updated.context, STAGE_FIELDS[stage], text)
        return _advance_after_context(updated, ctx)

    if stage == Stage.AWAIT_STORY_TITLE:
        quick = parse_quick_story(text)
        if quick is not None:
            updated, story, source = append_story(updated, quick, ctx)
            return updated, replies.story_added(updated, story, source)
        updated.draft_title = text
        fsm.save_title()
        return updated, (
            "story title saved\n"
            "- next: enter the description (quick: title | description | role [priority])"
        )

    if stage == Stage.AWAIT_STORY_DESC:
        updated.draft_desc = text
        fsm.save_desc()
        return updated, (
            "story description saved\n"
            "- next: enter the role (manager|planner|developer|qa, optional: role priority)"
        )

    if stage == Stage.AWAIT_STORY_ROLE:
        role, priority = parse_role_and_priority(text)
        draft = StoryInput(updated.draft_title, updated.draft_desc, role, priority)
        updated, story, source = append_story(updated, draft, ctx)
        return updated, replies.story_added(updated, story, source)

    if stage == Stage.AWAIT_STORY_PRIORITY:
        priority = parse_story_priority(text)
        draft = StoryInput(updated.draft_title, updated.draft_desc, updated.draft_role, priority)
        updated, story, source = append_story(updated, draft, ctx)
        return updated, replies.story_added(updated, story, source)

    # Unknown stage value
    fsm.move_to(_heuristic_next(updated, Stage.AWAIT_PRODUCT))
    return updated, "session stage reset\n- next: /prd refine"
