"""
Chat reply text for the PRD wizard.
"""

from prdwizard.lib.constants import CLARITY_MIN_SCORE, stage_prompt
from prdwizard.lib.text import compact_single_line, value_or_dash
from prdwizard.pm.clarity import evaluate_clarity
from prdwizard.pm.errors import ApplyBlocked, classify_failure
from prdwizard.pm.models import PRDSession, PRDStory
from prdwizard.pm.oracle import RefineResponse, normalize_suggested_stage
from prdwizard.pm.priority import SOURCE_MANUAL, format_agent_priority

NO_SESSION_REPLY = "no active PRD session\n- run: /prd start"

HELP_TEXT = "\n".join([
    "PRD Wizard",
    "==========",
    "",
    "Commands",
    "- /prd start [product_name]",
    "- /prd refine",
    "- /prd score",
    "- /prd preview",
    "- /prd priority [manager=900 planner=950 developer=1000 qa=1100|default]",
    "- /prd save [file]",
    "- /prd apply [file]",
    "- /prd cancel",
    "",
    "Flow",
    "1) /prd start",
    "2) /prd refine (the oracle asks for missing context one question at a time)",
    "3) (optional) /prd priority to adjust default priorities per agent role",
    "4) answer prompts, then add stories",
    "   - step by step: title -> description -> role (optional: priority)",
    "   - quick: title | description | role [priority]",
    "5) /prd score or /prd preview",
    "6) /prd apply",
])


def _error_lines(err: BaseException | None) -> list[str]:
    category, detail = classify_failure(err)
    lines = []
    if category:
        lines.append(f"- codex_error: {category}")
    if detail:
        lines.append(f"- codex_detail: {detail}")
    return lines


def refine_question(refine: RefineResponse) -> str:
    lines = [
        "prd refine question",
        f"- score: {refine.score}/100 (gate={CLARITY_MIN_SCORE})",
        "- scoring_mode: codex",
    ]
    if refine.ready_to_apply:
        lines.append("- status: ready_to_apply")
        lines.append("- next: /prd apply")
        return "\n".join(lines)
    if refine.ask.strip():
        lines.append(f"- ask: {refine.ask}")
    stage = normalize_suggested_stage(refine.suggested_stage)
    if stage:
        lines.append(f"- next_stage: {stage}")
    if refine.missing:
        lines.append(f"- missing_top: {refine.missing[0]}")
    if refine.reason.strip():
        lines.append(f"- reason: {refine.reason}")
    lines.append("- hint: answer `skip` or `default` if you are unsure")
    return "\n".join(lines)


def refine_unavailable(current_stage: str, fallback_score: int, err: BaseException | None,
                       next_prompt: str = "") -> str:
    lines = [
        "prd refine unavailable",
        f"- score: {fallback_score}/100 (gate={CLARITY_MIN_SCORE})",
        "- scoring_mode: codex_unavailable",
        f"- current_stage: {value_or_dash(str(current_stage or ''))}",
        "- reason: codex refine failed, no dynamic question available",
    ]
    if next_prompt:
        lines.append(f"- next: {next_prompt}")
    else:
        lines.append("- next: retry `/prd refine` after codex recovers")
    if err is not None:
        lines.extend(_error_lines(err))
    return "\n".join(lines)


def score_unavailable(err: BaseException | None, fallback_score: int) -> str:
    lines = [
        "prd score unavailable",
        "- scoring_mode: codex_unavailable",
        "- reason: codex scoring failed",
        f"- heuristic_score: {fallback_score}/100",
        "- next: retry `/prd score` after codex recovers, or use the deterministic prompts",
    ]
    lines.extend(_error_lines(err))
    return "\n".join(lines)


def codex_score(session: PRDSession) -> str:
    lines = [
        "prd clarity score",
        f"- score: {session.codex_score}/100",
        f"- gate: {CLARITY_MIN_SCORE}",
        "- scoring_mode: codex",
    ]
    if session.codex_ready:
        lines.append("- status: ready_to_apply")
        lines.append("- next: /prd apply")
    else:
        lines.append("- status: needs_input")
        if session.codex_missing:
            lines.append(f"- missing: {', '.join(session.codex_missing)}")
        lines.append("- next: /prd refine")
    if session.codex_summary.strip():
        lines.append(f"- summary: {session.codex_summary}")
    if session.codex_scored_at_utc.strip():
        lines.append(f"- scored_at: {session.codex_scored_at_utc}")
    return "\n".join(lines)


def story_added(session: PRDSession, story: PRDStory, priority_source: str) -> str:
    clarity = evaluate_clarity(session)
    if clarity.ready_to_apply:
        next_step = "enter the next story title, or /prd preview /prd save /prd apply"
    else:
        next_step = "/prd refine (ask for missing context) or enter the next story title"
    return "\n".join([
        "story added",
        f"- id: {story.id}",
        f"- title: {compact_single_line(story.title, 90)}",
        f"- role: {story.role}",
        f"- priority: {story.priority}",
        f"- priority_source: {priority_source or SOURCE_MANUAL}",
        f"- stories_total: {len(session.stories)}",
        f"- clarity_score: {clarity.score}/100",
        f"- next: {next_step}",
    ])


def preview(session: PRDSession) -> str:
    clarity = evaluate_clarity(session)
    score, ready, missing = clarity.score, clarity.ready_to_apply, clarity.missing
    mode = "heuristic"
    if session.codex_score > 0 or session.codex_scored_at_utc:
        score, ready = session.codex_score, session.codex_ready
        if session.codex_missing:
            missing = session.codex_missing
        mode = "codex"

    lines = [
        "PRD session",
        f"- product: {value_or_dash(session.product_name.strip())}",
        f"- stage: {session.stage}",
        f"- clarity_score: {score}/100",
        f"- clarity_gate: {CLARITY_MIN_SCORE}",
        f"- scoring_mode: {mode}",
    ]
    if ready:
        lines.append("- clarity_status: ready")
    else:
        lines.append(f"- clarity_status: needs_input ({clarity.required_ready}/{clarity.required_total} required)")
    lines.append(f"- stories: {len(session.stories)}")

    ctx = session.context
    for name, value in (
        ("problem", ctx.problem),
        ("goal", ctx.goal),
        ("in_scope", ctx.in_scope),
        ("out_of_scope", ctx.out_of_scope),
        ("acceptance", ctx.acceptance),
        ("constraints", ctx.constraints),
    ):
        if value.strip():
            lines.append(f"- {name}: {compact_single_line(value, 120)}")
    lines.append(f"- agent_priorities: {format_agent_priority(ctx.agent_priority)}")
    if ctx.assumptions:
        lines.append(f"- assumptions: {len(ctx.assumptions)}")

    for i, story in enumerate(session.stories[:10], start=1):
        lines.append(f"- [{i}] {compact_single_line(story.title, 70)} | role={story.role} | priority={story.priority}")
    if len(session.stories) > 10:
        lines.append(f"- ... and {len(session.stories) - 10} more")

    if missing:
        lines.append("- missing:")
        for item in missing[:5]:
            lines.append(f"  - {item}")
        if len(missing) > 5:
            lines.append(f"  - ... and {len(missing) - 5} more")
    lines.append(f"- next: {stage_prompt(session.stage)}")
    return "\n".join(lines)


def saved(path, stories: int) -> str:
    return f"prd saved\n- file: {path}\n- stories: {stories}"


def applied(path, result, clarity_score: int) -> str:
    return "\n".join([
        "prd applied",
        f"- file: {path}",
        f"- stories_total: {result.total}",
        f"- imported: {result.imported}",
        f"- skipped_existing: {result.skipped_existing}",
        f"- skipped_invalid: {result.skipped_invalid}",
        f"- clarity_score: {clarity_score}/100",
        "- next: /status",
    ])


def apply_blocked(blocked: ApplyBlocked) -> str:
    if blocked.category:
        lines = [
            "prd apply blocked",
            "- scoring_mode: codex_unavailable",
            "- reason: codex scoring failed, apply gate cannot be evaluated",
            "- next: retry `/prd score` or `/prd refine` after codex recovers",
            f"- codex_error: {blocked.category}",
        ]
        if blocked.detail:
            lines.append(f"- codex_detail: {blocked.detail}")
        return "\n".join(lines)

    missing = "-"
    if blocked.missing:
        missing = compact_single_line(", ".join(blocked.missing), 180)
    return "\n".join([
        "prd apply blocked",
        f"- clarity_score: {blocked.score}/100",
        f"- clarity_gate: {CLARITY_MIN_SCORE}",
        "- scoring_mode: codex",
        "- reason: missing required context",
        f"- missing: {missing}",
        "- next: /prd refine",
    ])
