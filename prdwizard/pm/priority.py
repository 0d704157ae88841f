"""
Story priority resolution and the per-session agent priority table.

Lower numbers run first. Manual priorities are stored as given; otherwise
the oracle estimates one, falling back to the session's per-role override
or the fixed role default.
"""

import logging

from prdwizard.lib.constants import ROLE_ORDER
from prdwizard.pm.errors import ExternalServiceError, InvalidPriority, InvalidRole
from prdwizard.pm.models import PRDSession, PRDStory, default_agent_priority, default_priority_for_role, is_supported_role
from prdwizard.pm.oracle import Oracles, PriorityResponse, call_oracle, clamp_story_priority

logger = logging.getLogger(__name__)

SOURCE_MANUAL = "manual"
SOURCE_ORACLE = "codex_auto"
SOURCE_FALLBACK = "fallback_role_profile"


def normalize_agent_priority(table: dict | None) -> dict[str, int]:
    """Full role table: positive overrides from table, defaults elsewhere."""
    out = default_agent_priority()
    for role in ROLE_ORDER:
        value = (table or {}).get(role)
        if isinstance(value, int) and value > 0:
            out[role] = value
    return out


def format_agent_priority(table: dict | None) -> str:
    normalized = normalize_agent_priority(table)
    return " ".join(f"{role}={normalized[role]}" for role in ROLE_ORDER)


def role_priority(session: PRDSession, role: str) -> int:
    """The session's override for role, else the role default."""
    role = (role or "").strip().lower()
    value = session.context.agent_priority.get(role, 0)
    if value > 0:
        return value
    return default_priority_for_role(role)


def parse_agent_priority_args(raw: str) -> dict[str, int]:
    """Parse "manager=900 qa:1100" style tokens (commas allowed as separators).

    Raises:
        InvalidRole: For a role outside the supported set
        InvalidPriority: For a malformed token or non-positive value
    """
    text = (raw or "").strip()
    if not text:
        raise InvalidPriority("", "usage: /prd priority manager=900 planner=950 developer=1000 qa=1100")

    updates: dict[str, int] = {}
    for token in text.replace(",", " ").split():
        if "=" in token:
            sep = "="
        elif ":" in token:
            sep = ":"
        else:
            raise InvalidPriority(token, f"invalid token: {token!r} (expected role=priority)")
        role, value = token.split(sep, 1)
        role = role.strip().lower()
        if not is_supported_role(role):
            raise InvalidRole(role)
        try:
            priority = int(value.strip())
        except ValueError:
            priority = 0
        if priority <= 0:
            raise InvalidPriority(value, f"invalid priority for {role}: {value!r}")
        updates[role] = priority

    if not updates:
        raise InvalidPriority(text, "at least one role priority is required")
    return updates


def estimate_priority(session: PRDSession, story: PRDStory, oracles: Oracles, conversation_tail: str) -> int:
    """Oracle estimate clamped into the auto-priority range.

    Raises:
        ExternalServiceError: If the oracle fails or returns a non-positive value
    """
    result: PriorityResponse = call_oracle(oracles.priority, session, story, conversation_tail)
    if result.priority <= 0:
        raise ExternalServiceError("invalid_response", f"invalid codex priority: {result.priority}")
    return clamp_story_priority(result.priority)


def resolve_priority(
    session: PRDSession, story: PRDStory, oracles: Oracles, conversation_tail: str = ""
) -> tuple[int, str]:
    """Resolve a story priority automatically.

    Returns:
        Tuple of (priority, source)
    """
    try:
        return estimate_priority(session, story, oracles, conversation_tail), SOURCE_ORACLE
    except ExternalServiceError as e:
        logger.info(f"[PRD] Priority fallback for role {story.role}: {e}")
        return role_priority(session, story.role), SOURCE_FALLBACK
