"""PRD session stage machine using transitions library.

Wraps a PRDSession so every stage change goes through one machine:
- Explicit triggers for the story draft flow
- to_<stage> jumps for evaluator- and oracle-driven moves
- Logged transitions written back to the session

Usage:
    from prdwizard.workflow.fsm import StageFSM

    fsm = StageFSM(session)
    fsm.save_title()       # await_story_title -> await_story_desc
    fsm.move_to(Stage.AWAIT_GOAL)
"""

import logging

from transitions import Machine

from prdwizard.lib.constants import Stage
from prdwizard.pm.models import PRDSession

logger = logging.getLogger(__name__)


STATES = [stage.value for stage in Stage]

# Story draft flow; everything else moves through to_<stage>
TRANSITIONS = [
    {"trigger": "save_title", "source": "await_story_title", "dest": "await_story_desc"},
    {"trigger": "save_desc", "source": "await_story_desc", "dest": "await_story_role"},

    # Committing a story always returns to the title prompt; await_story_priority
    # is only reached by sessions saved with the older priority-first flow
    {"trigger": "commit_story", "source": "await_story_title", "dest": "await_story_title"},
    {"trigger": "commit_story", "source": "await_story_role", "dest": "await_story_title"},
    {"trigger": "commit_story", "source": "await_story_priority", "dest": "await_story_title"},
]


class StageFSM:
    """State machine for one session's stage.

    A stage value the machine does not know is left untouched on the
    session until the first transition replaces it.
    """

    def __init__(self, session: PRDSession):
        """Initialize FSM for a session (its stage is mutated in place)."""
        self.session = session

        parsed = Stage.parse(session.stage)
        self.known_stage = parsed is not None
        initial = parsed.value if parsed else Stage.AWAIT_PRODUCT.value
        if not self.known_stage:
            logger.warning(f"[FSM] chat {session.chat_id}: Unknown stage '{session.stage}'")

        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial=initial,
            auto_transitions=True,  # to_<stage> for evaluator-driven jumps
            send_event=True,
            after_state_change="on_state_change",
        )

    def on_state_change(self, event) -> None:
        """Callback after any state transition: write back and log."""
        from_state = event.transition.source if self.known_stage else str(self.session.stage)
        to_state = event.transition.dest
        trigger = event.event.name

        self.session.stage = to_state
        self.known_stage = True
        logger.info(f"[FSM] chat {self.session.chat_id}: {from_state} -> {to_state} ({trigger})")

    def move_to(self, stage: Stage) -> None:
        """Jump to any stage."""
        getattr(self, f"to_{Stage(stage).value}")()

    def can(self, trigger: str) -> bool:
        """Check if a trigger can be executed in current state."""
        return trigger in self.machine.get_triggers(self.state)
