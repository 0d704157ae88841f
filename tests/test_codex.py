"""Tests for prdwizard.agents.codex module."""

import subprocess
from pathlib import Path

import pytest

from prdwizard.agents import codex
from prdwizard.agents.codex import CodexRunner
from prdwizard.lib.config import OracleProfile
from prdwizard.pm.errors import ExternalServiceError


def completed(returncode=0, stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout="", stderr=stderr)


@pytest.fixture
def on_path(monkeypatch):
    monkeypatch.setattr(codex.shutil, "which", lambda cmd: f"/usr/bin/{cmd}")


class TestBuildCommand:
    """Tests for CodexRunner.build_command()."""

    def test_default_flags(self, paths, tmp_path):
        cmd = CodexRunner(paths, OracleProfile()).build_command(tmp_path / "out.txt")
        assert cmd[:5] == ["codex", "--ask-for-approval", "never", "exec", "--sandbox"]
        assert "--model" not in cmd
        assert cmd[cmd.index("--cd") + 1] == str(paths.project_dir)
        assert "--skip-git-repo-check" in cmd
        assert cmd[cmd.index("--output-last-message") + 1] == str(tmp_path / "out.txt")
        assert cmd[-1] == "-"

    def test_model(self, paths, tmp_path):
        cmd = CodexRunner(paths, OracleProfile(model="o4-mini")).build_command(tmp_path / "o")
        assert cmd[cmd.index("--model") + 1] == "o4-mini"


class TestRun:
    """Tests for CodexRunner.run() failure classification."""

    def test_disabled(self, paths):
        with pytest.raises(ExternalServiceError) as exc:
            CodexRunner(paths, OracleProfile(enabled=False)).run("p")
        assert exc.value.category == "exec_failure"

    def test_not_installed(self, paths, monkeypatch):
        monkeypatch.setattr(codex.shutil, "which", lambda cmd: None)
        with pytest.raises(ExternalServiceError) as exc:
            CodexRunner(paths, OracleProfile()).run("p")
        assert exc.value.category == "not_installed"

    def test_success_reads_output_file(self, paths, monkeypatch, on_path):
        seen = {}

        def fake_run(cmd, input, capture_output, text, timeout):
            out = Path(cmd[cmd.index("--output-last-message") + 1])
            out.write_text('{"score": 90}')
            seen["input"] = input
            seen["timeout"] = timeout
            seen["tmp"] = out.parent
            return completed()

        monkeypatch.setattr(codex.subprocess, "run", fake_run)
        raw = CodexRunner(paths, OracleProfile(timeout_sec=0)).run("prompt text", "score")
        assert raw == '{"score": 90}'
        assert seen["input"] == "prompt text"
        assert seen["timeout"] == 45
        assert seen["tmp"].name.startswith("prd-score-")
        assert not seen["tmp"].exists()

    def test_timeout(self, paths, monkeypatch, on_path):
        def fake_run(cmd, **kwargs):
            raise subprocess.TimeoutExpired(cmd, kwargs["timeout"])
        monkeypatch.setattr(codex.subprocess, "run", fake_run)
        with pytest.raises(ExternalServiceError) as exc:
            CodexRunner(paths, OracleProfile(timeout_sec=5)).run("p")
        assert exc.value.category == "timeout"
        assert "5s" in exc.value.detail

    def test_non_zero_exit_is_classified(self, paths, monkeypatch, on_path):
        monkeypatch.setattr(codex.subprocess, "run",
                            lambda cmd, **kw: completed(1, "error: could not resolve host api.example"))
        with pytest.raises(ExternalServiceError) as exc:
            CodexRunner(paths, OracleProfile()).run("p")
        assert exc.value.category == "network"
        assert "exit 1" in exc.value.detail

    def test_missing_output_file(self, paths, monkeypatch, on_path):
        monkeypatch.setattr(codex.subprocess, "run", lambda cmd, **kw: completed())
        with pytest.raises(ExternalServiceError) as exc:
            CodexRunner(paths, OracleProfile()).run("p")
        assert exc.value.category == "file_not_found"

    def test_binary_vanished(self, paths, monkeypatch, on_path):
        def fake_run(cmd, **kwargs):
            raise FileNotFoundError(cmd[0])
        monkeypatch.setattr(codex.subprocess, "run", fake_run)
        with pytest.raises(ExternalServiceError) as exc:
            CodexRunner(paths, OracleProfile()).run("p")
        assert exc.value.category == "not_installed"
