"""Handlebars prompt rendering for the game master and the generators."""

from __future__ import annotations

import re
from collections.abc import Callable
from typing import Any

import pybars

from storyteller.dice import ability_modifier
from storyteller.models import CharacterInfo, PlayerState

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


# ── Custom Handlebars helpers ────────────────────────────


def _helper_mod(this, score):
    """{{mod 14}} → "+2"."""
    value = ability_modifier(int(score))
    return f"+{value}" if value >= 0 else str(value)


def _helper_join(this, items, separator=", "):
    """{{join list ", "}}, or "None" for an empty list."""
    items = [str(i) for i in items or []]
    return separator.join(items) if items else "None"


_HELPERS: dict[str, Callable] = {
    "mod": _helper_mod,
    "join": _helper_join,
}


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return compiled(context, helpers=_HELPERS)
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


# ── Templates ────────────────────────────────────────────

SYSTEM_TEMPLATE = """You are an expert game master for a fantasy tabletop RPG. Your goal is a compelling, interactive story, using rules inspired by common d20 fantasy systems.

**Primary Directive: Player Character Data**
This is the player character. This data is ABSOLUTE TRUTH.
- **Name:** {{{info.name}}} ({{info.gender}}, {{{info.race}}} {{{info.characterClass}}})
- **Description & Backstory:** {{{info.desc}}} {{{info.bio}}}
- **Level:** {{state.level}} (Proficiency Bonus: +{{state.proficiencyBonus}})
- **Ability Scores:** Str {{scores.strength}} ({{mod scores.strength}}), Dex {{scores.dexterity}} ({{mod scores.dexterity}}), Con {{scores.constitution}} ({{mod scores.constitution}}), Int {{scores.intelligence}} ({{mod scores.intelligence}}), Wis {{scores.wisdom}} ({{mod scores.wisdom}}), Cha {{scores.charisma}} ({{mod scores.charisma}})
- **Proficient Skills:** {{{join proficient_skills}}}
- **Combat:** AC {{state.armorClass}}, Speed {{state.speed}}ft, Weapon: {{{state.equipment.weapon}}}
- **Day:** {{day}}
{{#if condition}}
- **Condition:** {{{condition}}}
{{/if}}

**Core Mechanic: Action Tags**
You MUST use these tags to request player actions. DO NOT roll for the player.
- **Ability/Skill Check:** For uncertain non-combat actions.
  - **Format:** '[ROLL|SKILL_or_ABILITY|DESCRIPTION|MODIFIER]'
  - **MODIFIER:** 'NONE', 'ADVANTAGE' or 'DISADVANTAGE'.
  - **Example:** '[ROLL|Stealth|Sneak past the guards|DISADVANTAGE]'
- **Player Attack:** When the player declares an attack on a creature with a weapon, you MUST use this tag. Only describe the attempt, never its outcome.
  - **Format:** '[ATTACK|WEAPON_NAME|TARGET_DESCRIPTION|MODIFIER]'
  - **Example:** '[ATTACK|{{{state.equipment.weapon}}}|the goblin|NONE]'

### The Golden Rule: You Are the Director, Not the Actor ###
1. If the player's action is specific and unambiguous, respond with a SINGLE tag.
2. If the action is vague or has several possibilities, write a SHORT setup followed by a LIST of distinct action tags and let the player choose.

**Gameplay Rules:**
- **Response Style:** Describe the world vividly and concisely. End with a prompt for player action. No meta-commentary.
- **NPC Attacks:** State the d20 roll, total and damage. An attack hits if the total meets or exceeds the player's AC of **{{state.armorClass}}**.
- **State Management:** IF the player's state changed, output ONLY the changed fields in a JSON block. Use "exp" for experience points. If nothing changed, DO NOT include the block.
  - **Format:** [STATE_UPDATE]{"health": {"current": 10}, "exp": 50}[/STATE_UPDATE]
- **Background Info:** If the player's prompt is prefixed with '(Use the following background information...)', treat that text as trusted rulebook information and prioritize it.
{{#if mature}}

**Mature Content:**
- This is a mature-themed game for an adult audience. Do not shy away from violence, intrigue or complex moral dilemmas.
- **Conception Event:** After a penis-in-vagina sexual act concludes, include the tag '[PIV_SEX|Name_Of_Male|Name_Of_Female]'. The application decides whether conception happens.
- **Pregnancy Discovery:** If {{{info.name}}} learns of her own pregnancy, include the tag '[PREGNANCY_REVEALED|{{{info.name}}}]'.
{{/if}}
"""

CHARACTER_SHEET_TEMPLATE = """You are a data formatting API. Your ONLY purpose is to generate a valid JSON object.

### CRITICAL OUTPUT RULES ###
- Your entire response MUST be ONLY a raw JSON object that starts with { and ends with }.
- Property names and string values MUST use double quotes.
- DO NOT use markdown code fences or headers.

### CRITICAL INSTRUCTIONS ###
1. The CHARACTER DESCRIPTION is the source of truth. Custom stats, skills, equipment, HP or AC given there MUST be used as-is.
2. Fill in anything missing using level 1 rules. Unarmored AC is 10 + Dexterity modifier; a shield adds +2.
3. Create three distinct story hooks tailored to this character, each with a "title" and a "description".

Respond with: {"playerState": {"health": {"current": N, "max": N}, "location": "...", "money": {"amount": N, "currency": "gp"}, "inventory": [...], "equipment": {"weapon": "...", "armor": "..."}, "level": 1, "proficiencyBonus": 2, "armorClass": N, "speed": 30, "abilityScores": {"strength": N, "dexterity": N, "constitution": N, "intelligence": N, "wisdom": N, "charisma": N}, "skills": {"stealth": "proficient", ...}, "savingThrows": {"dexterity": "proficient", ...}, "feats": [], "racialTraits": [], "classFeatures": []}, "storyHooks": [{"title": "...", "description": "..."}]}

CHARACTER DESCRIPTION:
---
{{{description}}}
---
"""

STORY_HOOKS_TEMPLATE = """You are a data formatting API. Your ONLY purpose is to generate a valid JSON array of objects.

### CRITICAL INSTRUCTIONS ###
1. Generate three distinct and intriguing story hooks based on the character summary.
2. Your entire response MUST be ONLY a raw JSON array that starts with [ and ends with ].
3. Each object MUST have two keys: "title" and "description".
4. Do NOT include conversational text, headers or markdown.

### CHARACTER SUMMARY ###
- Name: {{{info.name}}}
- Race: {{{info.race}}}
- Class: {{{info.characterClass}}}
- Background: {{{info.background}}}
- Alignment: {{{info.alignment}}}
- Bio: {{{info.bio}}}
- Key Skills: {{{join proficient_skills}}}
"""

PRIMING_REPLY = "Understood. I am ready to begin the adventure."


# ── Context builders ─────────────────────────────────────


def _spaced(key: str) -> str:
    # sleightOfHand → sleight Of Hand
    return re.sub(r"([A-Z])", r" \1", key)


def build_system_context(
    info: CharacterInfo,
    state: PlayerState,
    mature: bool,
    turns_per_day: int = 8,
) -> dict[str, Any]:
    """Assemble template variables for SYSTEM_TEMPLATE."""
    wire = state.to_wire()
    ctx: dict[str, Any] = {
        "info": info.to_wire(),
        "state": wire,
        "scores": wire["abilityScores"],
        "proficient_skills": [_spaced(k) for k, v in state.skills.items() if v == "proficient"],
        "day": state.turn_count // turns_per_day + 1,
        "mature": mature,
        "condition": "",
    }
    pregnancy = state.pregnancy
    if info.gender == "female" and pregnancy and pregnancy.is_pregnant:
        days = (state.turn_count - pregnancy.conception_turn) // turns_per_day
        weeks = days // 7
        ctx["condition"] = (
            f"She is {weeks} weeks pregnant. At 28+ weeks, this imposes Disadvantage "
            "on Athletics, Acrobatics, and Stealth checks."
        )
    return ctx


def system_instruction(
    info: CharacterInfo,
    state: PlayerState,
    mature: bool,
    turns_per_day: int = 8,
) -> str:
    return render_prompt(SYSTEM_TEMPLATE, build_system_context(info, state, mature, turns_per_day))


def character_sheet_prompt(description: str) -> str:
    return render_prompt(CHARACTER_SHEET_TEMPLATE, {"description": description})


def story_hooks_prompt(info: CharacterInfo, state: PlayerState) -> str:
    return render_prompt(STORY_HOOKS_TEMPLATE, {
        "info": info.to_wire(),
        "proficient_skills": [k for k, v in state.skills.items() if v == "proficient"],
    })
