from __future__ import annotations

import pytest

from resonance.services.prompt_store import (
    PromptCatalog,
    clear_prompt_cache,
    prompt_placeholders,
    render_prompt,
)


def test_placeholders_lists_required_values():
    assert prompt_placeholders("planner.system_prompt") == {"min_sub_questions", "max_sub_questions"}
    assert prompt_placeholders("synthesizer.system_prompt") == set()


def test_catalog_reloads_after_clear(tmp_path):
    path = tmp_path / "prompts.json"
    path.write_text('{"a": {"b": "Hello $name"}}', encoding="utf-8")
    local = PromptCatalog(path)
    assert local.render("a.b", name="there") == "Hello there"

    path.write_text('{"a": {"b": "Bye $name"}}', encoding="utf-8")
    local.clear()
    assert local.render("a.b", name="there") == "Bye there"


def test_non_string_entry_is_rejected():
    clear_prompt_cache()
    with pytest.raises(TypeError):
        render_prompt("planner")


def test_render_prompt_substitutes_template_values():
    prompt = render_prompt("planner.system_prompt", min_sub_questions=3, max_sub_questions=7)
    assert "3 to 7 subQuestions" in prompt


def test_render_prompt_requires_every_value():
    with pytest.raises(KeyError):
        render_prompt("analyzer.system_prompt")


def test_render_prompt_raises_for_unknown_key():
    with pytest.raises(KeyError):
        render_prompt("missing.prompt.key")


def test_every_stage_prompt_renders():
    assert "executiveSummary" in render_prompt("synthesizer.system_prompt")
    assert "clarifiedScope" in render_prompt("clarifier.scope_prompt")
    assert "initialQuestions" in render_prompt(
        "clarifier.questions_prompt", min_questions=3, max_questions=7
    )
    assert '"subQuestionId": "sq4"' in render_prompt("analyzer.system_prompt", sub_question_id="sq4")
