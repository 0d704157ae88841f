"""Tests for prdwizard.workflow.fsm module."""

import pytest
from transitions import MachineError

from prdwizard.lib.constants import Stage
from prdwizard.pm.models import PRDSession
from prdwizard.workflow.fsm import STATES, TRANSITIONS, StageFSM


def session_at(stage) -> PRDSession:
    session = PRDSession.new(7, "Wallet")
    session.stage = str(stage)
    return session


class TestFSMStates:
    """Tests for FSM state definitions."""

    def test_all_stages_are_states(self):
        assert set(STATES) == {s.value for s in Stage}
        assert len(STATES) == 11

    def test_transition_targets_are_states(self):
        for t in TRANSITIONS:
            assert t["source"] in STATES
            assert t["dest"] in STATES


class TestStoryDraftFlow:
    """Tests for the explicit story triggers."""

    def test_title_desc_role(self):
        session = session_at(Stage.AWAIT_STORY_TITLE)
        fsm = StageFSM(session)
        fsm.save_title()
        assert session.stage == "await_story_desc"
        fsm.save_desc()
        assert session.stage == "await_story_role"
        fsm.commit_story()
        assert session.stage == "await_story_title"

    def test_commit_from_priority(self):
        session = session_at(Stage.AWAIT_STORY_PRIORITY)
        StageFSM(session).commit_story()
        assert session.stage == "await_story_title"

    def test_invalid_trigger_raises(self):
        session = session_at(Stage.AWAIT_GOAL)
        fsm = StageFSM(session)
        assert fsm.can("save_title") is False
        with pytest.raises(MachineError):
            fsm.save_title()
        assert session.stage == "await_goal"

    def test_triggers_from_title(self):
        fsm = StageFSM(session_at(Stage.AWAIT_STORY_TITLE))
        assert fsm.can("save_title")
        assert fsm.can("commit_story")
        assert fsm.can("to_await_goal")
        assert fsm.can("save_desc") is False


class TestMoveTo:
    """Tests for evaluator-driven jumps."""

    def test_jump_writes_back(self):
        session = session_at(Stage.AWAIT_PROBLEM)
        StageFSM(session).move_to(Stage.AWAIT_ACCEPTANCE)
        assert session.stage == "await_acceptance"

    def test_transition_logged(self, caplog):
        session = session_at(Stage.AWAIT_PROBLEM)
        with caplog.at_level("INFO"):
            StageFSM(session).move_to(Stage.AWAIT_GOAL)
        assert "[FSM] chat 7: await_problem -> await_goal (to_await_goal)" in caplog.text

    def test_unknown_stage_kept_until_transition(self, caplog):
        session = session_at("await_mystery")
        with caplog.at_level("WARNING"):
            fsm = StageFSM(session)
        assert session.stage == "await_mystery"
        assert "Unknown stage" in caplog.text

        fsm.move_to(Stage.AWAIT_PROBLEM)
        assert session.stage == "await_problem"
