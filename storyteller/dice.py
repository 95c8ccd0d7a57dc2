"""Dice and combat arithmetic.

Only as much of the rules as the turn engine needs to narrate a check or an
attack:

  ability modifier   floor((score - 10) / 2)
  proficiency bonus  ceil(1 + level / 4)
  check              d20 + ability modifier (+ proficiency if the skill, or
                     failing that the governing saving throw, is proficient)
  attack             d20 + ability modifier + proficiency; a natural 20 is
                     a critical hit and doubles the damage dice
  damage             weapon dice + ability modifier, never below 1

ADVANTAGE rolls a second d20 and keeps the higher, DISADVANTAGE keeps the
lower. All randomness comes from the `rng` argument so callers (and tests)
can seed it.
"""

from __future__ import annotations

import math
import random
import re

from storyteller.models import AttackOutcome, DiceRoll, Modifier, PlayerState, RollOutcome
from storyteller.rulebook import Rulebook, Weapon, has_shield

_NOTATION_RE = re.compile(r"^\s*(\d*)\s*d\s*(\d+)\s*$", re.IGNORECASE)
_CONSTANT_RE = re.compile(r"^\s*(\d+)\s*$")

ABILITIES = ("strength", "dexterity", "constitution", "intelligence", "wisdom", "charisma")

SKILL_ABILITIES: dict[str, str] = {
    "acrobatics": "dexterity",
    "animalHandling": "wisdom",
    "arcana": "intelligence",
    "athletics": "strength",
    "deception": "charisma",
    "history": "intelligence",
    "insight": "wisdom",
    "intimidation": "charisma",
    "investigation": "intelligence",
    "medicine": "wisdom",
    "nature": "intelligence",
    "perception": "wisdom",
    "performance": "charisma",
    "persuasion": "charisma",
    "religion": "intelligence",
    "sleightOfHand": "dexterity",
    "stealth": "dexterity",
    "survival": "wisdom",
    **{ability: ability for ability in ABILITIES},
}

# "Sleight of Hand", "sleight_of_hand" and "sleightOfHand" are the same skill.
_CANONICAL = {re.sub(r"[\s_]", "", name).lower(): name for name in SKILL_ABILITIES}

_default_rng = random.Random()


def canonical_skill(name: str) -> str | None:
    return _CANONICAL.get(re.sub(r"[\s_]", "", name).lower())


def roll_dice(notation: str | int, rng: random.Random | None = None) -> DiceRoll:
    """Roll "NdM" dice or return a constant.

    Anything unrecognised is a zero roll rather than an error.
    """
    rng = rng or _default_rng
    text = str(notation)
    m = _NOTATION_RE.match(text)
    if m:
        count = int(m.group(1) or 1)
        sides = int(m.group(2))
        if sides > 0:
            rolls = tuple(rng.randint(1, sides) for _ in range(count))
            return DiceRoll(rolls=rolls, total=sum(rolls))
    m = _CONSTANT_RE.match(text)
    if m:
        value = int(m.group(1))
        return DiceRoll(rolls=(value,), total=value)
    return DiceRoll(rolls=(0,), total=0)


def ability_modifier(score: int) -> int:
    return (score - 10) // 2


def proficiency_bonus(level: int) -> int:
    return math.ceil(1 + level / 4)


def _ability_score(state: PlayerState, ability: str) -> int:
    return getattr(state.ability_scores, ability, 10)


def check_modifier(skill: str, state: PlayerState) -> int:
    """Ability modifier plus proficiency, if any, for a check on `skill`."""
    name = canonical_skill(skill)
    if name is None:
        return 0
    ability = SKILL_ABILITIES[name]
    modifier = ability_modifier(_ability_score(state, ability))
    skill_proficient = state.skills.get(name) == "proficient"
    save_proficient = state.saving_throws.get(ability) == "proficient"
    if skill_proficient or save_proficient:
        modifier += state.proficiency_bonus
    return modifier


def roll_d20(mode: Modifier, rng: random.Random | None = None) -> tuple[tuple[int, ...], int]:
    """Roll for a check or attack. Returns (all dice, the die that counts)."""
    rng = rng or _default_rng
    first = rng.randint(1, 20)
    if mode == "NONE":
        return (first,), first
    second = rng.randint(1, 20)
    chosen = max(first, second) if mode == "ADVANTAGE" else min(first, second)
    return (first, second), chosen


def roll_check(
    skill: str,
    state: PlayerState,
    mode: Modifier = "NONE",
    rng: random.Random | None = None,
    description: str = "",
) -> RollOutcome:
    modifier = check_modifier(skill, state)
    rolls, die = roll_d20(mode, rng)
    return RollOutcome(
        skill=skill,
        description=description,
        mode=mode,
        rolls=rolls,
        die=die,
        modifier=modifier,
        total=die + modifier,
        critical=die == 20,
    )


def attack_ability(weapon: Weapon, state: PlayerState) -> str:
    scores = state.ability_scores
    if weapon.is_finesse and scores.dexterity > scores.strength:
        return "dexterity"
    return "strength"


def resolve_attack(
    weapon: Weapon,
    state: PlayerState,
    mode: Modifier = "NONE",
    rng: random.Random | None = None,
    target: str = "",
) -> AttackOutcome:
    rng = rng or _default_rng
    ability_mod = ability_modifier(_ability_score(state, attack_ability(weapon, state)))
    attack_bonus = ability_mod + state.proficiency_bonus
    rolls, die = roll_d20(mode, rng)
    critical = die == 20

    damage = roll_dice(weapon.damage_dice, rng)
    damage_rolls = damage.rolls
    damage_total = damage.total
    if critical:
        extra = roll_dice(weapon.damage_dice, rng)
        damage_rolls += extra.rolls
        damage_total += extra.total

    return AttackOutcome(
        weapon=weapon.name,
        target=target,
        mode=mode,
        rolls=rolls,
        die=die,
        attack_bonus=attack_bonus,
        attack_total=die + attack_bonus,
        damage_rolls=damage_rolls,
        damage_bonus=ability_mod,
        total_damage=max(1, damage_total + ability_mod),
        critical=critical,
    )


def armor_class(state: PlayerState, rulebook: Rulebook) -> int:
    """Armor class from equipped armor, dexterity and a shield."""
    dex_mod = ability_modifier(state.ability_scores.dexterity)
    armor = rulebook.find_armor(state.equipment.armor) if state.equipment.armor else None
    if armor is None:
        ac = 10 + dex_mod
    else:
        ac = armor.ac_base
        if armor.ac_add_dexmod:
            cap = armor.ac_cap_dexmod
            ac += dex_mod if cap is None else min(dex_mod, cap)
    equipment_text = f"{state.equipment.weapon} {state.equipment.armor}"
    if has_shield(equipment_text, state.inventory):
        ac += 2
    return ac
