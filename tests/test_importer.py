"""Tests for prdwizard.pm.importer module."""

import json
from pathlib import Path

import pytest

from prdwizard.pm.errors import PRDError, SerializationError
from prdwizard.pm.importer import (
    build_global_context,
    import_prd_stories,
    normalize_criteria,
    parse_acceptance_criteria,
    read_issue_headers,
)


def write_doc(path, stories, metadata=None):
    path.write_text(json.dumps({
        "metadata": metadata or {"product": "Wallet", "context": {"problem": "Slow\ntransfers", "goal": "Fast"}},
        "userStories": stories,
    }))
    return path


def story(id="PRD-1", title="Send money", role="developer", priority=900, **extra):
    data = {"id": id, "title": title, "description": "Transfer to a contact", "role": role, "priority": priority}
    data.update(extra)
    return data


class TestHelpers:
    """Tests for criteria and context helpers."""

    def test_criteria_shapes(self):
        assert parse_acceptance_criteria("one") == ["one"]
        assert parse_acceptance_criteria(["a", " ", "b"]) == ["a", "b"]
        assert parse_acceptance_criteria([{"text": "x"}, {"name": "y"}, {"other": 1}]) == ["x", "y"]
        assert parse_acceptance_criteria(None) == []
        assert parse_acceptance_criteria(42) == []

    def test_normalize_criteria(self):
        assert normalize_criteria(["- [x] done", "- item", "plain", ""]) == [
            "- [x] done", "- [ ] item", "- [ ] plain",
        ]

    def test_global_context(self):
        meta = {"product": "Wallet", "context": {"problem": "Slow\n transfers", "goal": "", "constraints": "Mobile"}}
        assert build_global_context(meta) == "product=Wallet; problem=Slow transfers; constraints=Mobile"


class TestImport:
    """Tests for import_prd_stories()."""

    def test_creates_issue(self, paths):
        doc = write_doc(paths.project_dir / "prd.json", [story(acceptanceCriteria=["Balance updates"])])
        result = import_prd_stories(paths, doc)

        assert (result.total, result.imported) == (1, 1)
        assert len(result.created_paths) == 1
        issue = Path(result.created_paths[0])
        assert issue.parent == paths.issues_dir
        headers = read_issue_headers(issue)
        assert headers["id"].startswith("I-")
        assert headers["role"] == "developer"
        assert headers["status"] == "ready"
        assert headers["priority"] == "900"
        assert headers["story_id"] == "PRD-1"
        assert headers["story_source"] == "prd.json"

        body = issue.read_text()
        assert "## Objective\n- Transfer to a contact\n" in body
        assert "## Acceptance Criteria\n- [ ] Balance updates\n" in body
        assert "## PRD Context\n- story_id: PRD-1\n- source: prd.json\n- priority: 900\n" in body
        assert "- global_context: product=Wallet; problem=Slow transfers; goal=Fast" in body

    def test_default_criteria(self, paths):
        doc = write_doc(paths.project_dir / "prd.json", [story()])
        result = import_prd_stories(paths, doc)
        body = open(result.created_paths[0]).read()
        assert "- [ ] Required changes are implemented." in body

    def test_relative_path(self, paths):
        write_doc(paths.project_dir / "prd.json", [story()])
        result = import_prd_stories(paths, "prd.json")
        assert result.source_path == str(paths.project_dir / "prd.json")

    def test_skip_rules(self, paths):
        doc = write_doc(paths.project_dir / "prd.json", [
            story(id="A"),
            story(id="B", passes=True),
            story(id="C", passed=True),
            story(id="", title="No id"),
            story(id="D", title="  "),
            story(id="A", title="Duplicate in document"),
        ])
        result = import_prd_stories(paths, doc)
        assert result.total == 6
        assert result.imported == 1
        assert result.skipped_passed == 2
        assert result.skipped_invalid == 2
        assert result.skipped_existing == 1

    def test_reimport_skips_existing(self, paths):
        doc = write_doc(paths.project_dir / "prd.json", [story(id="A"), story(id="B")])
        import_prd_stories(paths, doc)
        again = import_prd_stories(paths, doc)
        assert again.imported == 0
        assert again.skipped_existing == 2

    def test_existing_in_other_queue_dirs(self, paths):
        done = paths.queue_dir / "done"
        done.mkdir(parents=True)
        (done / "I-20260101T000000Z-0001.md").write_text("id: I-1\nstory_id: A\n\n## Objective\n")
        doc = write_doc(paths.project_dir / "prd.json", [story(id="A")])
        assert import_prd_stories(paths, doc).skipped_existing == 1

    def test_role_and_priority_fallbacks(self, paths):
        doc = write_doc(paths.project_dir / "prd.json", [story(role="designer", priority=0)])
        result = import_prd_stories(paths, doc, default_role="qa")
        headers = read_issue_headers(result.created_paths[0])
        assert headers["role"] == "qa"
        assert headers["priority"] == "1000"

    def test_role_case_normalized(self, paths):
        doc = write_doc(paths.project_dir / "prd.json", [story(role="Developer")])
        result = import_prd_stories(paths, doc, default_role="QA")
        assert read_issue_headers(result.created_paths[0])["role"] == "developer"

    def test_default_role_case_normalized(self, paths):
        doc = write_doc(paths.project_dir / "prd.json", [story(role="")])
        result = import_prd_stories(paths, doc, default_role="QA")
        assert read_issue_headers(result.created_paths[0])["role"] == "qa"

    def test_unsupported_default_role(self, paths):
        doc = write_doc(paths.project_dir / "prd.json", [story(role="")])
        result = import_prd_stories(paths, doc, default_role="boss")
        assert read_issue_headers(result.created_paths[0])["role"] == "developer"

    def test_dry_run_writes_nothing(self, paths):
        doc = write_doc(paths.project_dir / "prd.json", [story(id="A"), story(id="B")])
        result = import_prd_stories(paths, doc, dry_run=True)
        assert result.dry_run is True
        assert result.imported == 2
        assert result.created_paths == []
        assert not paths.issues_dir.exists()

    def test_no_stories(self, paths):
        doc = write_doc(paths.project_dir / "prd.json", [])
        with pytest.raises(PRDError, match="no userStories"):
            import_prd_stories(paths, doc)

    def test_unreadable_document(self, paths):
        bad = paths.project_dir / "prd.json"
        bad.write_text("{nope")
        with pytest.raises(SerializationError):
            import_prd_stories(paths, bad)
        with pytest.raises(SerializationError):
            import_prd_stories(paths, paths.project_dir / "missing.json")
