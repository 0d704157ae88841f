"""Shared fixtures for the PRD wizard tests."""

import pytest

from prdwizard.lib.config import PRDPaths
from prdwizard.pm.conversation import ConversationLog
from prdwizard.pm.errors import ExternalServiceError
from prdwizard.pm.models import PRDSession, PRDStory
from prdwizard.pm.oracle import (
    OracleContext,
    Oracles,
    PriorityResponse,
    RefineResponse,
    ScoreResponse,
)
from prdwizard.pm.store import SessionStore


def fail(category="not_installed", detail="codex command not found"):
    """Oracle callable that always raises the given failure."""
    def _call(*_args, **_kwargs):
        raise ExternalServiceError(category, detail)
    return _call


def fixed(response):
    """Oracle callable that always returns response."""
    def _call(*_args, **_kwargs):
        return response
    return _call


def make_oracles(turn=None, score=None, refine=None, priority=None) -> Oracles:
    """Oracles where anything not given is unavailable."""
    return Oracles(
        turn=turn or fail(),
        score=score or fail(),
        refine=refine or fail(),
        priority=priority or fail(),
    )


def make_ready_session(chat_id: int = 42) -> PRDSession:
    """A session that passes the heuristic clarity gate."""
    session = PRDSession.new(chat_id, "Wallet")
    ctx = session.context
    ctx.problem = "Users cannot send money to friends"
    ctx.goal = "Peer transfers work end to end"
    ctx.in_scope = "Transfers between existing accounts"
    ctx.out_of_scope = "Currency exchange"
    ctx.acceptance = "A transfer shows up in both balances"
    session.stories.append(
        PRDStory(id=session.story_id(1), title="Send money", description="Transfer to a contact",
                 role="developer", priority=1000)
    )
    session.stage = "await_story_title"
    return session


@pytest.fixture
def paths(tmp_path):
    control = tmp_path / "control"
    project = tmp_path / "project"
    control.mkdir()
    project.mkdir()
    return PRDPaths.from_dirs(control, project)


@pytest.fixture
def store(paths):
    return SessionStore(paths, lock_timeout=0.5)


@pytest.fixture
def conversation(paths):
    return ConversationLog(paths)


@pytest.fixture
def unavailable_ctx():
    return OracleContext(oracles=Oracles.unavailable())


@pytest.fixture
def ready_score():
    return fixed(ScoreResponse(score=92, ready_to_apply=True, missing=[], summary="clear enough"))


@pytest.fixture
def ready_refine():
    return fixed(RefineResponse(score=90, ready_to_apply=True, ask="", missing=[], suggested_stage="", reason="ok"))


@pytest.fixture
def fixed_priority():
    return fixed(PriorityResponse(priority=700, reason="blocks other work"))
