"""Tests for the prompts module."""

import pytest

from prdwizard.lib import prompts
from prdwizard.lib.prompts import (
    ORACLE_TEMPLATES,
    PROMPTS_DIR,
    PromptError,
    build_section,
    clear_cache,
    conversation_section,
    load_prompt,
    render_oracle_prompt,
    render_prompt,
)


@pytest.fixture(autouse=True)
def fresh_cache():
    clear_cache()
    yield
    clear_cache()


class TestLoadPrompt:
    """Tests for load_prompt function."""

    @pytest.mark.parametrize("name", sorted(ORACLE_TEMPLATES.values()))
    def test_oracle_templates_load(self, name):
        content = load_prompt(name)
        assert "{session_json}" in content
        assert "{conversation_section}" in content
        assert "<!--" not in content

    def test_load_nonexistent_prompt_raises(self):
        with pytest.raises(PromptError) as exc_info:
            load_prompt("nonexistent_prompt_xyz")
        assert "not found" in str(exc_info.value)

    def test_prompts_dir_ships_every_template(self):
        for name in ORACLE_TEMPLATES.values():
            assert (PROMPTS_DIR / f"{name}.md").exists()

    def test_clear_cache_picks_up_edits(self, tmp_path, monkeypatch):
        monkeypatch.setattr(prompts, "PROMPTS_DIR", tmp_path)
        template = tmp_path / "custom.md"
        template.write_text("<!-- notes -->\nfirst {x}")
        assert load_prompt("custom") == "first {x}"

        template.write_text("second {x}")
        assert load_prompt("custom") == "first {x}"
        clear_cache()
        assert load_prompt("custom") == "second {x}"


class TestRenderPrompt:
    """Tests for render_prompt and render_oracle_prompt."""

    def test_render_score(self):
        text = render_prompt("prd_score", session_json='{"chat_id": 1}', conversation_section="", gate=80)
        assert '{"chat_id": 1}' in text
        assert "{gate}" not in text

    def test_missing_variable_raises(self):
        with pytest.raises(PromptError) as exc_info:
            render_prompt("prd_score", session_json="{}")
        assert "Missing required variable" in str(exc_info.value)

    def test_oracle_prompt_includes_tail(self):
        text = render_oracle_prompt("score", '{"chat_id": 2}', "### t | user\nhello", gate=80)
        assert "Recent conversation (markdown):\n\n### t | user\nhello" in text
        assert '{"chat_id": 2}' in text

    def test_oracle_prompt_without_tail(self):
        text = render_oracle_prompt("score", "{}", "", gate=80)
        assert "Recent conversation" not in text

    def test_unknown_oracle_kind(self):
        with pytest.raises(PromptError, match="Unknown oracle prompt kind"):
            render_oracle_prompt("summarize", "{}")


class TestSections:
    def test_with_content(self):
        assert build_section("  hi  ", "## Header") == "## Header\n\nhi\n"

    def test_empty_with_message(self):
        assert build_section("  ", "## Header", "(none)") == "## Header\n\n(none)\n"

    def test_empty_without_message(self):
        assert build_section(None, "## Header") == ""

    def test_conversation_section(self):
        assert conversation_section("hello") == "\nRecent conversation (markdown):\n\nhello\n"
        assert conversation_section("   ") == ""
