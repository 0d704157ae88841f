"""Tests for prdwizard.pm.oracle module."""

import json

import pytest

from prdwizard.agents.codex import CodexRunner
from prdwizard.lib.config import OracleProfile
from prdwizard.pm.errors import ExternalServiceError
from prdwizard.pm.models import PRDSession, PRDStory
from prdwizard.pm.oracle import (
    Oracles,
    ScoreResponse,
    RefineResponse,
    build_priority_prompt,
    build_turn_prompt,
    extract_json_object,
    parse_priority_response,
    parse_refine_response,
    parse_score_response,
    parse_turn_response,
    refresh_refine,
    refresh_score,
    sanitize_missing_list,
    with_retries,
)

from conftest import fail, fixed, make_oracles


class TestExtractJson:
    """Tests for lenient JSON extraction."""

    def test_plain(self):
        assert extract_json_object('{"score": 1}', "score") == {"score": 1}

    def test_fenced(self):
        raw = '```json\n{"score": 2}\n```'
        assert extract_json_object(raw, "score") == {"score": 2}

    def test_prose_around_object(self):
        raw = 'Here you go:\n{"score": 3, "missing": []}\nThanks!'
        assert extract_json_object(raw, "score")["score"] == 3

    def test_empty(self):
        with pytest.raises(ExternalServiceError) as exc:
            extract_json_object("   ", "turn")
        assert exc.value.category == "invalid_response"

    def test_no_object(self):
        with pytest.raises(ExternalServiceError) as exc:
            extract_json_object("no json here", "turn")
        assert exc.value.category == "invalid_response"

    def test_array_is_rejected(self):
        with pytest.raises(ExternalServiceError):
            extract_json_object("[1, 2]", "turn")


class TestParsers:
    """Tests for response parsing and sanitation."""

    def test_turn_response(self):
        raw = json.dumps({
            "reply": "  Thanks  ",
            "next_question": "What is the goal?",
            "suggested_stage": " await_goal ",
            "ready_to_apply": False,
            "session_patch": {"problem": "x" * 400, "product_name": None},
            "story": {"title": "T", "description": "D", "role": "QA", "priority": 5},
        })
        turn = parse_turn_response(raw)
        assert turn.reply == "Thanks"
        assert turn.suggested_stage == "await_goal"
        assert len(turn.session_patch.problem) == 320
        assert turn.session_patch.product_name == ""
        assert turn.story.role == "qa"
        assert turn.story.priority == 100

    def test_turn_story_without_priority(self):
        turn = parse_turn_response('{"story": {"title": "T", "description": "D", "role": "qa"}}')
        assert turn.story.priority == 0

    def test_turn_schema_violation(self):
        with pytest.raises(ExternalServiceError) as exc:
            parse_turn_response('{"reply": 12}')
        assert exc.value.category == "invalid_response"

    def test_score_response_clamped(self):
        score = parse_score_response('{"score": 140, "ready_to_apply": true, "missing": ["", "a"]}')
        assert score.score == 100
        assert score.missing == ["a"]

    def test_score_requires_score(self):
        with pytest.raises(ExternalServiceError):
            parse_score_response('{"ready_to_apply": true}')

    def test_refine_response(self):
        refine = parse_refine_response(json.dumps({
            "score": -5, "ask": "What is out of scope?", "suggested_stage": "await_out_of_scope",
        }))
        assert refine.score == 0
        assert refine.ask == "What is out of scope?"
        assert refine.missing == []

    def test_priority_clamped(self):
        assert parse_priority_response('{"priority": 9999}').priority == 3000
        assert parse_priority_response('{"priority": 1}').priority == 100

    def test_non_positive_priority_kept_unresolved(self):
        assert parse_priority_response('{"priority": 0, "reason": "unknown"}').priority == 0
        assert parse_priority_response('{"priority": -40}').priority == 0

    def test_missing_list_limits(self):
        items = [f"item {i} " + "x" * 200 for i in range(12)]
        out = sanitize_missing_list(items)
        assert len(out) == 8
        assert all(len(item) <= 120 for item in out)


class TestPrompts:
    """Tests for prompt rendering."""

    def test_turn_prompt_contents(self):
        session = PRDSession.new(1, "Wallet")
        prompt = build_turn_prompt(session, "  we need refunds ", "### ts | user\nhello")
        assert "we need refunds" in prompt
        assert '"product_name": "Wallet"' in prompt
        assert "await_problem" in prompt
        assert "Recent conversation" in prompt
        assert "<!--" not in prompt

    def test_turn_prompt_without_tail(self):
        prompt = build_turn_prompt(PRDSession.new(1, "Wallet"), "hi", "")
        assert "Recent conversation" not in prompt

    def test_priority_prompt_has_story(self):
        story = PRDStory(title="Refunds", description="d", role="qa")
        prompt = build_priority_prompt(PRDSession.new(1, "Wallet"), story, "")
        assert '"title": "Refunds"' in prompt
        assert "3000" in prompt


class TestWithRetries:
    """Tests for linear-backoff retries."""

    def test_succeeds_after_failures(self):
        sleeps = []
        attempts = iter([ExternalServiceError("network", "down"), ExternalServiceError("network", "down"), "ok"])

        def call():
            value = next(attempts)
            if isinstance(value, Exception):
                raise value
            return value

        assert with_retries(call, 3, 2, "score", sleep=sleeps.append) == "ok"
        assert sleeps == [2, 4]

    def test_exhausted(self):
        sleeps = []
        with pytest.raises(ExternalServiceError) as exc:
            with_retries(fail("timeout", "slow"), 3, 1, "refine", sleep=sleeps.append)
        assert exc.value.category == "timeout"
        assert "retries exhausted" in exc.value.detail
        assert sleeps == [1, 2]

    def test_single_attempt_reraises(self):
        with pytest.raises(ExternalServiceError) as exc:
            with_retries(fail("permission", "denied"), 1, 1, "turn", sleep=lambda s: None)
        assert exc.value.detail == "denied"


class TestCodexOracles:
    """Tests for Oracles.codex() wiring with a stubbed runner."""

    def test_turn_single_attempt(self, paths, monkeypatch):
        calls = []

        def run(self, prompt, label="prd"):
            calls.append(label)
            raise ExternalServiceError("timeout", "slow")

        monkeypatch.setattr(CodexRunner, "run", run)
        oracles = Oracles.codex(paths, OracleProfile(retry_max_attempts=3), sleep=lambda s: None)
        with pytest.raises(ExternalServiceError):
            oracles.turn(PRDSession.new(1, "Wallet"), "hello", "")
        assert calls == ["turn"]

    def test_score_retries(self, paths, monkeypatch):
        answers = iter(["not json", '{"score": 85, "ready_to_apply": true}'])
        monkeypatch.setattr(CodexRunner, "run", lambda self, prompt, label="prd": next(answers))
        oracles = Oracles.codex(paths, OracleProfile(retry_max_attempts=3), sleep=lambda s: None)
        result = oracles.score(PRDSession.new(1, "Wallet"), "")
        assert result.score == 85
        assert result.ready_to_apply is True

    def test_unavailable(self):
        with pytest.raises(ExternalServiceError) as exc:
            Oracles.unavailable().refine(PRDSession.new(1), "")
        assert exc.value.category == "not_installed"


class TestRefresh:
    """Tests for refresh_score() and refresh_refine()."""

    def test_ready_is_gated_on_score(self):
        oracles = make_oracles(score=fixed(ScoreResponse(score=70, ready_to_apply=True, missing=["goal"])))
        session = PRDSession.new(1, "Wallet")
        scored = refresh_score(session, oracles, "")
        assert scored.codex_score == 70
        assert scored.codex_ready is False
        assert scored.codex_missing == ["goal"]
        assert scored.codex_scored_at_utc
        assert session.codex_scored_at_utc == ""

    def test_ready_passes(self, ready_score):
        scored = refresh_score(PRDSession.new(1, "Wallet"), make_oracles(score=ready_score), "")
        assert scored.codex_ready is True
        assert scored.codex_summary == "clear enough"

    def test_refine_gated_answer(self):
        refine = RefineResponse(score=60, ready_to_apply=True, ask="Goal?", suggested_stage="await_goal")
        updated, gated = refresh_refine(PRDSession.new(1, "Wallet"), make_oracles(refine=fixed(refine)), "")
        assert gated.ready_to_apply is False
        assert updated.codex_ready is False
        assert gated.ask == "Goal?"

    def test_failure_propagates(self):
        with pytest.raises(ExternalServiceError):
            refresh_score(PRDSession.new(1), make_oracles(), "")
