"""
Data models for the PRD session engine.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone

from prdwizard.lib.constants import (
    ASSUMED_PREFIX,
    DEFAULT_PRIORITY,
    DEFAULT_ROLE_PRIORITY,
    ROLE_ORDER,
    Stage,
)

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
STORY_ID_TIME_FORMAT = "%Y%m%dT%H%M%SZ"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_timestamp(moment: datetime | None = None) -> str:
    """RFC3339 UTC timestamp with second precision."""
    return (moment or utc_now()).astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(raw: str) -> datetime | None:
    value = (raw or "").strip()
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def is_supported_role(role: str) -> bool:
    return (role or "").strip().lower() in ROLE_ORDER


def is_assumed_value(value: str) -> bool:
    return (value or "").strip().lower().startswith(ASSUMED_PREFIX.lower())


def default_priority_for_role(role: str) -> int:
    return DEFAULT_ROLE_PRIORITY.get((role or "").strip().lower(), DEFAULT_PRIORITY)


def default_agent_priority() -> dict[str, int]:
    return {role: default_priority_for_role(role) for role in ROLE_ORDER}


@dataclass
class PRDStory:
    """One requirement item destined for the issue queue."""
    id: str = ""                               # PRD-20250101T000000Z-001
    title: str = ""
    description: str = ""
    role: str = ""                             # manager | planner | developer | qa
    priority: int = 0                          # lower runs first

    @classmethod
    def from_dict(cls, data: dict) -> "PRDStory":
        return cls(
            id=str(data.get("id") or ""),
            title=str(data.get("title") or ""),
            description=str(data.get("description") or ""),
            role=str(data.get("role") or ""),
            priority=int(data.get("priority") or 0),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class PRDContext:
    """Narrative context gathered before stories."""
    problem: str = ""
    goal: str = ""
    in_scope: str = ""
    out_of_scope: str = ""
    acceptance: str = ""
    constraints: str = ""
    assumptions: list[str] = field(default_factory=list)
    agent_priority: dict[str, int] = field(default_factory=dict)

    def get(self, name: str) -> str:
        return getattr(self, name)

    def set(self, name: str, value: str) -> None:
        setattr(self, name, value)

    @classmethod
    def from_dict(cls, data: dict | None) -> "PRDContext":
        data = data or {}
        return cls(
            problem=str(data.get("problem") or ""),
            goal=str(data.get("goal") or ""),
            in_scope=str(data.get("in_scope") or ""),
            out_of_scope=str(data.get("out_of_scope") or ""),
            acceptance=str(data.get("acceptance") or ""),
            constraints=str(data.get("constraints") or ""),
            assumptions=[str(a) for a in (data.get("assumptions") or [])],
            agent_priority={str(k): int(v) for k, v in (data.get("agent_priority") or {}).items()},
        )

    def to_dict(self) -> dict:
        return {
            "problem": self.problem,
            "goal": self.goal,
            "in_scope": self.in_scope,
            "out_of_scope": self.out_of_scope,
            "acceptance": self.acceptance,
            "constraints": self.constraints,
            "assumptions": list(self.assumptions),
            "agent_priority": dict(self.agent_priority),
        }


@dataclass
class PRDSession:
    """One chat's in-progress requirements conversation.

    stage is stored as a plain string so that a value written by another
    version survives a load and can be reset by the stage machine.
    """
    chat_id: int
    stage: str = Stage.AWAIT_PRODUCT.value
    product_name: str = ""
    stories: list[PRDStory] = field(default_factory=list)
    context: PRDContext = field(default_factory=PRDContext)
    draft_title: str = ""
    draft_desc: str = ""
    draft_role: str = ""
    codex_score: int = 0
    codex_ready: bool = False
    codex_missing: list[str] = field(default_factory=list)
    codex_summary: str = ""
    codex_scored_at_utc: str = ""
    created_at_utc: str = ""
    last_updated_at_utc: str = ""

    @classmethod
    def new(cls, chat_id: int, product_name: str = "") -> "PRDSession":
        """Fresh session seeded with the default agent priority table."""
        now = utc_timestamp()
        product_name = (product_name or "").strip()
        return cls(
            chat_id=int(chat_id),
            stage=(Stage.AWAIT_PROBLEM if product_name else Stage.AWAIT_PRODUCT).value,
            product_name=product_name,
            context=PRDContext(agent_priority=default_agent_priority()),
            created_at_utc=now,
            last_updated_at_utc=now,
        )

    @property
    def stage_enum(self) -> Stage | None:
        return Stage.parse(self.stage)

    def touch(self) -> None:
        self.last_updated_at_utc = utc_timestamp()

    def clear_draft(self) -> None:
        self.draft_title = ""
        self.draft_desc = ""
        self.draft_role = ""

    def story_id(self, index: int) -> str:
        """Story id derived from session creation time and a 1-based sequence."""
        created = parse_timestamp(self.created_at_utc) or utc_now()
        return f"PRD-{created.strftime(STORY_ID_TIME_FORMAT)}-{max(index, 1):03d}"

    @classmethod
    def from_dict(cls, data: dict) -> "PRDSession":
        return cls(
            chat_id=int(data.get("chat_id") or 0),
            stage=str(data.get("stage") or ""),
            product_name=str(data.get("product_name") or ""),
            stories=[PRDStory.from_dict(s) for s in (data.get("stories") or [])],
            context=PRDContext.from_dict(data.get("context")),
            draft_title=str(data.get("draft_title") or ""),
            draft_desc=str(data.get("draft_desc") or ""),
            draft_role=str(data.get("draft_role") or ""),
            codex_score=int(data.get("codex_score") or 0),
            codex_ready=bool(data.get("codex_ready")),
            codex_missing=[str(m) for m in (data.get("codex_missing") or [])],
            codex_summary=str(data.get("codex_summary") or ""),
            codex_scored_at_utc=str(data.get("codex_scored_at_utc") or ""),
            created_at_utc=str(data.get("created_at_utc") or ""),
            last_updated_at_utc=str(data.get("last_updated_at_utc") or ""),
        )

    def to_dict(self) -> dict:
        return {
            "chat_id": self.chat_id,
            "stage": str(self.stage),
            "product_name": self.product_name,
            "stories": [s.to_dict() for s in self.stories],
            "context": self.context.to_dict(),
            "draft_title": self.draft_title,
            "draft_desc": self.draft_desc,
            "draft_role": self.draft_role,
            "codex_score": self.codex_score,
            "codex_ready": self.codex_ready,
            "codex_missing": list(self.codex_missing),
            "codex_summary": self.codex_summary,
            "codex_scored_at_utc": self.codex_scored_at_utc,
            "created_at_utc": self.created_at_utc,
            "last_updated_at_utc": self.last_updated_at_utc,
        }
