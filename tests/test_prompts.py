"""Tests for Handlebars prompt rendering and the prompt builders."""

import pytest

from storyteller.models import CharacterInfo, Pregnancy
from storyteller.prompts import (
    PromptError,
    build_system_context,
    character_sheet_prompt,
    render_prompt,
    story_hooks_prompt,
    system_instruction,
)


# ── render_prompt ────────────────────────────────────────────


def test_render_simple_variable():
    assert render_prompt("Hello {{name}}!", {"name": "World"}) == "Hello World!"


def test_render_missing_variable():
    assert render_prompt("Hello {{name}}!", {}) == "Hello !"


def test_render_invalid_template():
    with pytest.raises(PromptError):
        render_prompt("{{> missing_partial}}", {})


# ── helpers: mod & join ──────────────────────────────────────


@pytest.mark.parametrize("score, expected", [(16, "+3"), (10, "+0"), (7, "-2")])
def test_mod_helper(score, expected):
    assert render_prompt("{{mod s}}", {"s": score}) == expected


def test_join_helper():
    assert render_prompt("{{{join items}}}", {"items": ["stealth", "arcana"]}) == "stealth, arcana"


def test_join_helper_empty():
    assert render_prompt("{{{join items}}}", {"items": []}) == "None"


# ── system instruction ───────────────────────────────────────


def test_system_instruction_carries_character(hero_info, hero_state):
    text = system_instruction(hero_info, hero_state, mature=False)
    assert "Lyra (female, Elf Rogue)" in text
    assert "Dex 16 (+3)" in text
    assert "AC 14" in text
    assert "Weapon: Rapier" in text
    assert "stealth" in text
    assert "[ROLL|SKILL_or_ABILITY|DESCRIPTION|MODIFIER]" in text
    assert "[STATE_UPDATE]" in text


def test_system_instruction_free_text_not_escaped(hero_state):
    info = CharacterInfo(name="Mara", bio="Daughter of \"Old\" Tom & Nell")
    assert "Daughter of \"Old\" Tom & Nell" in system_instruction(info, hero_state, mature=False)


def test_mature_section_toggles(hero_info, hero_state):
    assert "PIV_SEX" not in system_instruction(hero_info, hero_state, mature=False)
    mature = system_instruction(hero_info, hero_state, mature=True)
    assert "[PIV_SEX|Name_Of_Male|Name_Of_Female]" in mature
    assert "[PREGNANCY_REVEALED|Lyra]" in mature


def test_day_from_turn_count(hero_info, hero_state):
    hero_state.turn_count = 17
    ctx = build_system_context(hero_info, hero_state, mature=False, turns_per_day=8)
    assert ctx["day"] == 3


def test_no_condition_by_default(hero_info, hero_state):
    ctx = build_system_context(hero_info, hero_state, mature=True)
    assert ctx["condition"] == ""
    assert "Condition" not in system_instruction(hero_info, hero_state, mature=True)


def test_pregnancy_condition(hero_info, hero_state):
    hero_state.pregnancy = Pregnancy(is_pregnant=True, conception_turn=0, sire="Corin")
    hero_state.turn_count = 8 * 21
    ctx = build_system_context(hero_info, hero_state, mature=True, turns_per_day=8)
    assert ctx["condition"].startswith("She is 3 weeks pregnant.")


# ── generators ───────────────────────────────────────────────


def test_character_sheet_prompt_embeds_description():
    text = character_sheet_prompt("A one-eyed dwarf with a grudge & a hammer")
    assert "A one-eyed dwarf with a grudge & a hammer" in text
    assert '"storyHooks"' in text


def test_story_hooks_prompt(hero_info, hero_state):
    text = story_hooks_prompt(hero_info, hero_state)
    assert "- Class: Rogue" in text
    assert "- Key Skills: stealth" in text
