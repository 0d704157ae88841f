"""
Heuristic clarity scoring for PRD sessions.

Pure functions over a session snapshot. The score is a 0-100 completeness
measure; readiness additionally requires every required field to hold a
real (non-assumed) answer and at least one story.
"""

from dataclasses import dataclass, field
from typing import Optional

from prdwizard.lib.constants import (
    ASSUMED_PREFIX,
    CLARITY_MIN_SCORE,
    CONTEXT_DEFAULT_ASSUMPTIONS,
    SKIP_ANSWERS,
    Stage,
    stage_prompt,
)
from prdwizard.pm.models import PRDContext, PRDSession, is_assumed_value

PRODUCT_POINTS = 10
REQUIRED_REAL_POINTS = 14
REQUIRED_ASSUMED_POINTS = 9
STORY_POINTS = 20
STORY_BONUS_POINTS = 4
STORY_BONUS_THRESHOLD = 3
CONSTRAINTS_REAL_POINTS = 8
CONSTRAINTS_ASSUMED_POINTS = 4

# (field, label, stage) in the order they are asked
REQUIRED_FIELDS = (
    ("problem", "problem statement", Stage.AWAIT_PROBLEM),
    ("goal", "goal", Stage.AWAIT_GOAL),
    ("in_scope", "in-scope", Stage.AWAIT_IN_SCOPE),
    ("out_of_scope", "out-of-scope", Stage.AWAIT_OUT_OF_SCOPE),
    ("acceptance", "acceptance criteria", Stage.AWAIT_ACCEPTANCE),
)


@dataclass
class ClarityStatus:
    score: int = 0
    required_total: int = len(REQUIRED_FIELDS)
    required_ready: int = 0
    ready_to_apply: bool = False
    missing: list[str] = field(default_factory=list)
    next_stage: Optional[Stage] = None
    next_prompt: str = ""


def evaluate_clarity(session: PRDSession) -> ClarityStatus:
    """Score a session and recommend the next stage to fill."""
    score = 0
    missing: list[str] = []
    required_ready = 0
    assumed_required = 0
    next_stage: Optional[Stage] = None
    first_assumed: Optional[tuple[str, Stage]] = None

    if session.product_name.strip():
        score += PRODUCT_POINTS
    else:
        missing.append("product name")
        next_stage = Stage.AWAIT_PRODUCT

    for name, label, stage in REQUIRED_FIELDS:
        value = session.context.get(name).strip()
        if not value:
            missing.append(label)
            if next_stage is None:
                next_stage = stage
            continue
        required_ready += 1
        if is_assumed_value(value):
            score += REQUIRED_ASSUMED_POINTS
            assumed_required += 1
            if first_assumed is None:
                first_assumed = (label, stage)
        else:
            score += REQUIRED_REAL_POINTS

    story_count = len(session.stories)
    if story_count == 0:
        missing.append("at least 1 user story")
        if next_stage is None:
            next_stage = Stage.AWAIT_STORY_TITLE
    else:
        score += STORY_POINTS
        if story_count >= STORY_BONUS_THRESHOLD:
            score += STORY_BONUS_POINTS

    constraints = session.context.constraints.strip()
    if constraints:
        score += CONSTRAINTS_ASSUMED_POINTS if is_assumed_value(constraints) else CONSTRAINTS_REAL_POINTS

    score = min(score, 100)

    ready = (
        score >= CLARITY_MIN_SCORE
        and required_ready == len(REQUIRED_FIELDS)
        and story_count > 0
        and assumed_required == 0
    )

    next_prompt = stage_prompt(next_stage) if next_stage else ""
    if not ready and next_stage is None and first_assumed is not None:
        label, next_stage = first_assumed
        next_prompt = f"Enter a real value for {label} (currently an assumed value)"
        missing.insert(0, f"replace assumed value: {label}")
    if ready:
        next_stage = None
        next_prompt = ""

    return ClarityStatus(
        score=score,
        required_total=len(REQUIRED_FIELDS),
        required_ready=required_ready,
        ready_to_apply=ready,
        missing=missing,
        next_stage=next_stage,
        next_prompt=next_prompt,
    )


def normalize_context_answer(raw: str, field_name: str) -> str:
    """Trim an answer; skip/default/n/a become the field's assumed placeholder."""
    value = (raw or "").strip()
    if not value:
        return ""
    if value.lower() in SKIP_ANSWERS:
        return f"{ASSUMED_PREFIX} {CONTEXT_DEFAULT_ASSUMPTIONS[field_name].strip()}"
    return value


def record_assumption(context: PRDContext, field_name: str, value: str) -> None:
    """Log an assumed value as "field: value", once."""
    if not is_assumed_value(value):
        return
    stripped = value.strip()
    body = stripped[len(ASSUMED_PREFIX):].strip()
    entry = f"{field_name}: {body}"
    if entry not in context.assumptions:
        context.assumptions.append(entry)


def apply_context_answer(context: PRDContext, field_name: str, raw: str) -> bool:
    """Normalize raw into a context field and record any assumption.

    Returns True when the stored value changed. Empty input is a no-op.
    """
    normalized = normalize_context_answer(raw, field_name)
    if not normalized:
        return False
    if context.get(field_name).strip() == normalized.strip():
        return False
    context.set(field_name, normalized)
    record_assumption(context, field_name, normalized)
    return True
