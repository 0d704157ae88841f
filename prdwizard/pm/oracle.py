"""
Oracle calls for the PRD wizard.

Four independent request/response calls, each a plain callable so tests can
swap in a stub:

    turn(session, text, conversation_tail) -> TurnResponse
    score(session, conversation_tail) -> ScoreResponse
    refine(session, conversation_tail) -> RefineResponse
    priority(session, story, conversation_tail) -> PriorityResponse

Every callable raises ExternalServiceError on failure. Responses are parsed
leniently (fenced blocks, prose around the JSON object), validated against
their schema, then sanitized.
"""

import copy
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from prdwizard.agents.codex import CodexRunner
from prdwizard.lib.config import OracleProfile, PRDPaths
from prdwizard.lib.constants import (
    CLARITY_MIN_SCORE,
    ORACLE_STAGES,
    PRIORITY_MAX,
    PRIORITY_MIN,
    Stage,
)
from prdwizard.lib.prompts import PromptError, render_oracle_prompt
from prdwizard.lib.text import compact_single_line, truncate_chars
from prdwizard.lib.validate import ValidationError, validate
from prdwizard.pm.errors import ExternalServiceError
from prdwizard.pm.models import PRDSession, PRDStory, utc_timestamp

logger = logging.getLogger(__name__)

# Conversation tail limits (characters) per call kind
TURN_TAIL_CHARS = 4000
SCORE_TAIL_CHARS = 4000
REFINE_TAIL_CHARS = 5000
PRIORITY_TAIL_CHARS = 3000

MISSING_MAX_ITEMS = 8
MISSING_ITEM_CHARS = 120


# --- Responses ---

@dataclass
class SessionPatch:
    product_name: str = ""
    problem: str = ""
    goal: str = ""
    in_scope: str = ""
    out_of_scope: str = ""
    acceptance: str = ""
    constraints: str = ""


@dataclass
class StoryPatch:
    title: str = ""
    description: str = ""
    role: str = ""
    priority: int = 0                          # 0 = resolve automatically


@dataclass
class TurnResponse:
    reply: str = ""
    next_question: str = ""
    suggested_stage: str = ""
    ready_to_apply: bool = False
    session_patch: SessionPatch = field(default_factory=SessionPatch)
    story: Optional[StoryPatch] = None


@dataclass
class ScoreResponse:
    score: int = 0
    ready_to_apply: bool = False
    missing: list[str] = field(default_factory=list)
    summary: str = ""


@dataclass
class RefineResponse:
    score: int = 0
    ready_to_apply: bool = False
    ask: str = ""
    missing: list[str] = field(default_factory=list)
    suggested_stage: str = ""
    reason: str = ""


@dataclass
class PriorityResponse:
    priority: int = 0
    reason: str = ""


# --- Sanitation ---

def clamp_score(value: int) -> int:
    return max(0, min(int(value), 100))


def clamp_story_priority(value: int) -> int:
    return max(PRIORITY_MIN, min(int(value), PRIORITY_MAX))


def sanitize_missing_list(items) -> list[str]:
    """Compact each entry to one short line; keep at most eight non-empty ones."""
    out: list[str] = []
    for item in items or []:
        value = compact_single_line(str(item or "").strip(), MISSING_ITEM_CHARS)
        if not value:
            continue
        out.append(value)
        if len(out) >= MISSING_MAX_ITEMS:
            break
    return out


def normalize_suggested_stage(raw) -> Optional[Stage]:
    """Stage the oracle may steer into, or None if raw is not one of them."""
    stage = Stage.parse(raw)
    if stage in ORACLE_STAGES:
        return stage
    return None


def strip_markdown_fences(text: str) -> str:
    """Strip markdown code fences from text if present."""
    text = text.strip()
    if text.startswith("```"):
        lines = text.split("\n")
        if lines and lines[0].strip().startswith("```"):
            lines = lines[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        text = "\n".join(lines)
    return text.strip()


def extract_json_object(raw: str, kind: str) -> dict:
    """Decode the JSON object in an oracle answer.

    Tolerates a fenced block and prose before or after the outermost {...}.

    Raises:
        ExternalServiceError: invalid_response if no object can be decoded
    """
    text = strip_markdown_fences(raw or "")
    if not text:
        raise ExternalServiceError("invalid_response", f"empty codex {kind} response")
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        start = text.find("{")
        end = text.rfind("}")
        if start < 0 or end <= start:
            raise ExternalServiceError("invalid_response", f"invalid codex {kind} json") from None
        try:
            data = json.loads(text[start:end + 1])
        except json.JSONDecodeError as e:
            raise ExternalServiceError("invalid_response", f"parse codex {kind} json: {e}") from None
    if not isinstance(data, dict):
        raise ExternalServiceError("invalid_response", f"codex {kind} json is not an object")
    return data


def _checked(data: dict, schema_name: str, kind: str) -> dict:
    try:
        validate(data, schema_name)
    except ValidationError as e:
        raise ExternalServiceError("invalid_response", f"codex {kind} json schema: {e}") from None
    return data


def _text(data: dict, key: str) -> str:
    value = data.get(key)
    return value if isinstance(value, str) else ""


def parse_turn_response(raw: str) -> TurnResponse:
    data = _checked(extract_json_object(raw, "turn"), "oracle_turn", "turn")
    patch = data.get("session_patch") or {}

    turn = TurnResponse(
        reply=truncate_chars(_text(data, "reply"), 500),
        next_question=truncate_chars(_text(data, "next_question"), 240),
        suggested_stage=_text(data, "suggested_stage").strip(),
        ready_to_apply=bool(data.get("ready_to_apply")),
        session_patch=SessionPatch(
            product_name=truncate_chars(_text(patch, "product_name"), 140),
            problem=truncate_chars(_text(patch, "problem"), 320),
            goal=truncate_chars(_text(patch, "goal"), 260),
            in_scope=truncate_chars(_text(patch, "in_scope"), 320),
            out_of_scope=truncate_chars(_text(patch, "out_of_scope"), 320),
            acceptance=truncate_chars(_text(patch, "acceptance"), 320),
            constraints=truncate_chars(_text(patch, "constraints"), 280),
        ),
    )

    story = data.get("story")
    if isinstance(story, dict):
        priority = int(story.get("priority") or 0)
        turn.story = StoryPatch(
            title=truncate_chars(_text(story, "title"), 140),
            description=truncate_chars(_text(story, "description"), 320),
            role=_text(story, "role").strip().lower(),
            priority=clamp_story_priority(priority) if priority > 0 else 0,
        )
    return turn


def parse_score_response(raw: str) -> ScoreResponse:
    data = _checked(extract_json_object(raw, "score"), "oracle_score", "score")
    return ScoreResponse(
        score=clamp_score(data.get("score") or 0),
        ready_to_apply=bool(data.get("ready_to_apply")),
        missing=sanitize_missing_list(data.get("missing")),
        summary=compact_single_line(_text(data, "summary").strip(), 200),
    )


def parse_refine_response(raw: str) -> RefineResponse:
    data = _checked(extract_json_object(raw, "refine"), "oracle_refine", "refine")
    return RefineResponse(
        score=clamp_score(data.get("score") or 0),
        ready_to_apply=bool(data.get("ready_to_apply")),
        ask=compact_single_line(_text(data, "ask").strip(), 240),
        missing=sanitize_missing_list(data.get("missing")),
        suggested_stage=_text(data, "suggested_stage").strip(),
        reason=compact_single_line(_text(data, "reason").strip(), 200),
    )


def parse_priority_response(raw: str) -> PriorityResponse:
    data = _checked(extract_json_object(raw, "priority"), "oracle_priority", "priority")
    priority = int(data.get("priority") or 0)
    return PriorityResponse(
        priority=clamp_story_priority(priority) if priority > 0 else 0,
        reason=compact_single_line(_text(data, "reason").strip(), 160),
    )


# --- Prompts ---

def _session_json(session: PRDSession) -> str:
    return json.dumps(session.to_dict(), ensure_ascii=False)


def _stage_list() -> str:
    return ", ".join(s.value for s in ORACLE_STAGES)


def build_turn_prompt(session: PRDSession, user_input: str, conversation_tail: str) -> str:
    return render_oracle_prompt(
        "turn",
        _session_json(session),
        conversation_tail,
        stage=session.stage,
        stage_list=_stage_list(),
        user_input=(user_input or "").strip(),
    )


def build_score_prompt(session: PRDSession, conversation_tail: str) -> str:
    return render_oracle_prompt("score", _session_json(session), conversation_tail, gate=CLARITY_MIN_SCORE)


def build_refine_prompt(session: PRDSession, conversation_tail: str) -> str:
    return render_oracle_prompt(
        "refine",
        _session_json(session),
        conversation_tail,
        gate=CLARITY_MIN_SCORE,
        stage_list=_stage_list(),
    )


def build_priority_prompt(session: PRDSession, story: PRDStory, conversation_tail: str) -> str:
    return render_oracle_prompt(
        "priority",
        _session_json(session),
        conversation_tail,
        priority_min=PRIORITY_MIN,
        priority_max=PRIORITY_MAX,
        story_json=json.dumps(story.to_dict(), ensure_ascii=False),
    )


# --- Calls ---

def with_retries(
    call: Callable[[], object],
    attempts: int,
    backoff_sec: int,
    label: str,
    sleep: Callable[[float], None] = time.sleep,
):
    """Run call up to attempts times, sleeping attempt * backoff_sec between tries."""
    attempts = max(1, attempts)
    last_error: Optional[ExternalServiceError] = None
    for attempt in range(1, attempts + 1):
        try:
            return call()
        except ExternalServiceError as e:
            last_error = e
            logger.warning(f"[CODEX] {label} attempt {attempt}/{attempts} failed: {e}")
        if attempt < attempts:
            sleep(attempt * backoff_sec)
    if attempts == 1:
        raise last_error
    raise ExternalServiceError(last_error.category, f"codex {label} retries exhausted: {last_error.detail}")


TurnFn = Callable[[PRDSession, str, str], TurnResponse]
ScoreFn = Callable[[PRDSession, str], ScoreResponse]
RefineFn = Callable[[PRDSession, str], RefineResponse]
PriorityFn = Callable[[PRDSession, PRDStory, str], PriorityResponse]


def _unavailable(*_args, **_kwargs):
    raise ExternalServiceError("not_installed", "codex command not found")


@dataclass
class Oracles:
    """The four oracle call kinds as injectable functions."""
    turn: TurnFn
    score: ScoreFn
    refine: RefineFn
    priority: PriorityFn

    @classmethod
    def unavailable(cls) -> "Oracles":
        return cls(turn=_unavailable, score=_unavailable, refine=_unavailable, priority=_unavailable)

    @classmethod
    def codex(
        cls,
        paths: PRDPaths,
        profile: OracleProfile,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "Oracles":
        """Oracles backed by the codex CLI.

        The interactive turn gets a single attempt; score, refine and
        priority retry with linear backoff.
        """
        runner = CodexRunner(paths, profile)
        attempts = profile.resolved_attempts()
        backoff = profile.resolved_backoff()

        def turn(session: PRDSession, text: str, tail: str) -> TurnResponse:
            prompt = build_turn_prompt(session, text, tail)
            return parse_turn_response(runner.run(prompt, "turn"))

        def score(session: PRDSession, tail: str) -> ScoreResponse:
            prompt = build_score_prompt(session, tail)
            return with_retries(lambda: parse_score_response(runner.run(prompt, "score")),
                                attempts, backoff, "score", sleep)

        def refine(session: PRDSession, tail: str) -> RefineResponse:
            prompt = build_refine_prompt(session, tail)
            return with_retries(lambda: parse_refine_response(runner.run(prompt, "refine")),
                                attempts, backoff, "refine", sleep)

        def priority(session: PRDSession, story: PRDStory, tail: str) -> PriorityResponse:
            prompt = build_priority_prompt(session, story, tail)
            return with_retries(lambda: parse_priority_response(runner.run(prompt, "priority")),
                                attempts, backoff, "priority", sleep)

        return cls(turn=turn, score=score, refine=refine, priority=priority)


@dataclass
class OracleContext:
    """Oracles plus a reader for the chat's conversation tail."""
    oracles: Oracles
    read_tail: Callable[[int], str] = lambda max_chars: ""

    def tail(self, max_chars: int) -> str:
        try:
            return self.read_tail(max_chars)
        except OSError as e:
            logger.warning(f"[PRD] Conversation tail unavailable: {e}")
            return ""


def call_oracle(fn: Callable, *args):
    """Invoke an oracle callable, turning prompt errors into exec failures."""
    try:
        return fn(*args)
    except PromptError as e:
        raise ExternalServiceError("exec_failure", f"prompt render failed: {e}") from None


# --- Assessment refresh ---

def refresh_score(session: PRDSession, oracles: Oracles, conversation_tail: str) -> PRDSession:
    """Copy of session carrying a fresh oracle clarity assessment.

    Readiness is gated locally on the score regardless of what the oracle says.
    """
    result: ScoreResponse = call_oracle(oracles.score, session, conversation_tail)
    updated = copy.deepcopy(session)
    updated.codex_score = clamp_score(result.score)
    updated.codex_ready = bool(result.ready_to_apply) and updated.codex_score >= CLARITY_MIN_SCORE
    updated.codex_missing = sanitize_missing_list(result.missing)
    updated.codex_summary = (result.summary or "").strip()
    updated.codex_scored_at_utc = utc_timestamp()
    return updated


def refresh_refine(
    session: PRDSession, oracles: Oracles, conversation_tail: str
) -> tuple[PRDSession, RefineResponse]:
    """Like refresh_score, but also returns the gated refine answer."""
    result: RefineResponse = call_oracle(oracles.refine, session, conversation_tail)
    updated = copy.deepcopy(session)
    updated.codex_score = clamp_score(result.score)
    updated.codex_ready = bool(result.ready_to_apply) and updated.codex_score >= CLARITY_MIN_SCORE
    updated.codex_missing = sanitize_missing_list(result.missing)
    updated.codex_summary = compact_single_line((result.reason or "").strip(), 200)
    updated.codex_scored_at_utc = utc_timestamp()

    gated = copy.deepcopy(result)
    gated.score = updated.codex_score
    gated.ready_to_apply = updated.codex_ready
    gated.missing = list(updated.codex_missing)
    return updated, gated
