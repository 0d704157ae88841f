"""Shared constants for the PRD wizard."""

from enum import Enum


class Stage(str, Enum):
    """Slot the deterministic flow is currently waiting to fill."""
    AWAIT_PRODUCT = "await_product"
    AWAIT_PROBLEM = "await_problem"
    AWAIT_GOAL = "await_goal"
    AWAIT_IN_SCOPE = "await_in_scope"
    AWAIT_OUT_OF_SCOPE = "await_out_of_scope"
    AWAIT_ACCEPTANCE = "await_acceptance"
    AWAIT_CONSTRAINTS = "await_constraints"
    AWAIT_STORY_TITLE = "await_story_title"
    AWAIT_STORY_DESC = "await_story_desc"
    AWAIT_STORY_ROLE = "await_story_role"
    AWAIT_STORY_PRIORITY = "await_story_priority"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, raw) -> "Stage | None":
        """Return the stage for a raw value, or None if it is not one of ours."""
        if isinstance(raw, Stage):
            return raw
        value = str(raw or "").strip().lower()
        try:
            return cls(value)
        except ValueError:
            return None


# Stages the oracle (turn and refine) may steer a session into.
# The story draft stages are only reachable through the deterministic flow.
ORACLE_STAGES = (
    Stage.AWAIT_PRODUCT,
    Stage.AWAIT_PROBLEM,
    Stage.AWAIT_GOAL,
    Stage.AWAIT_IN_SCOPE,
    Stage.AWAIT_OUT_OF_SCOPE,
    Stage.AWAIT_ACCEPTANCE,
    Stage.AWAIT_CONSTRAINTS,
    Stage.AWAIT_STORY_TITLE,
)

ROLE_ORDER = ("manager", "planner", "developer", "qa")

# Legacy numeric answers at the role prompt
ROLE_ALIASES = {"1": "manager", "2": "planner", "3": "developer", "4": "qa"}

DEFAULT_ROLE_PRIORITY = {
    "manager": 900,
    "planner": 950,
    "developer": 1000,
    "qa": 1100,
}
DEFAULT_PRIORITY = 1000

# Oracle priority estimates are clamped into this range
PRIORITY_MIN = 100
PRIORITY_MAX = 3000

CLARITY_MIN_SCORE = 80
ASSUMED_PREFIX = "[assumed]"
SKIP_ANSWERS = ("skip", "default", "n/a")

DEFAULT_PRODUCT_FALLBACK = "PRD Wizard"
DOCUMENT_SOURCE = "prd-wizard"

# Context fields in canonical order, with the placeholder recorded when skipped
CONTEXT_FIELDS = ("problem", "goal", "in_scope", "out_of_scope", "acceptance", "constraints")
CONTEXT_DEFAULT_ASSUMPTIONS = {
    "problem": "current functional or operational pain point was not stated",
    "goal": "short-term goal is a first working automation loop",
    "in_scope": "initial release covers only the core user flow",
    "out_of_scope": "large refactors and new infrastructure are excluded",
    "acceptance": "main scenarios succeed and failure recovery paths are verified",
    "constraints": "typical single-developer environment assumed",
}
CONTEXT_FIELD_STAGES = {
    "problem": Stage.AWAIT_PROBLEM,
    "goal": Stage.AWAIT_GOAL,
    "in_scope": Stage.AWAIT_IN_SCOPE,
    "out_of_scope": Stage.AWAIT_OUT_OF_SCOPE,
    "acceptance": Stage.AWAIT_ACCEPTANCE,
    "constraints": Stage.AWAIT_CONSTRAINTS,
}

STAGE_PROMPTS = {
    Stage.AWAIT_PRODUCT: "Enter the product or project name",
    Stage.AWAIT_PROBLEM: "Describe the problem (why is this work needed?)",
    Stage.AWAIT_GOAL: "Describe the goal (one-line definition of done)",
    Stage.AWAIT_IN_SCOPE: "Describe what is in scope (must be done this cycle)",
    Stage.AWAIT_OUT_OF_SCOPE: "Describe what is out of scope (not done this cycle)",
    Stage.AWAIT_ACCEPTANCE: "Describe the acceptance criteria (verifiable checks)",
    Stage.AWAIT_CONSTRAINTS: "Describe constraints (optional, `skip` allowed)",
    Stage.AWAIT_STORY_TITLE: "Enter a story title (quick: title | description | role [priority])",
    Stage.AWAIT_STORY_DESC: "Enter the story description",
    Stage.AWAIT_STORY_ROLE: "Enter the role (manager|planner|developer|qa, optional: role priority)",
    Stage.AWAIT_STORY_PRIORITY: "Enter the priority (number, default = role default)",
}


def stage_prompt(stage) -> str:
    """Static prompt shown for a stage."""
    parsed = Stage.parse(stage)
    if parsed is None:
        return "unknown stage"
    return STAGE_PROMPTS[parsed]
