"""Starting character state.

A new character begins from a level 1 baseline:

  | field            | value                                   |
  |------------------|-----------------------------------------|
  | ability scores   | 10 across the board                     |
  | max health       | 8 + CON modifier                        |
  | money            | 10 gp                                   |
  | equipment        | class kit (see STARTING_EQUIPMENT)      |
  | proficiency      | ceil(1 + level / 4)                     |
  | armor class      | derived from armor, DEX and any shield  |

The generated character sheet is merged on top, so anything the model (or
the player's description) specified wins over the baseline.
"""

from __future__ import annotations

from typing import Any

from storyteller.dice import ability_modifier, armor_class, proficiency_bonus
from storyteller.models import CharacterInfo, CharacterSheet, Equipment, Health, Money, PlayerState
from storyteller.rulebook import Rulebook
from storyteller.session import deep_merge

STARTING_EQUIPMENT: dict[str, tuple[str, str, list[str]]] = {
    "barbarian": ("Greataxe", "No armor", ["Explorer's Pack", "Four javelins"]),
    "bard": ("Rapier", "Leather Armor", ["Diplomat's Pack", "Lute", "Dagger"]),
    "cleric": ("Mace", "Scale Mail", ["Priest's Pack", "Shield", "Holy symbol"]),
    "druid": ("Scimitar", "Leather Armor", ["Explorer's Pack", "Druidic focus", "Shield"]),
    "fighter": ("Longsword", "Chain Mail", ["Explorer's Pack", "Shield", "Light crossbow", "20 bolts"]),
    "monk": ("Shortsword", "No armor", ["Explorer's Pack", "10 darts"]),
    "paladin": ("Longsword", "Chain Mail", ["Priest's Pack", "Shield", "Five javelins", "Holy symbol"]),
    "ranger": ("Longbow", "Scale Mail", ["Explorer's Pack", "Two shortswords", "Quiver with 20 arrows"]),
    "rogue": ("Rapier", "Leather Armor", ["Burglar's Pack", "Two daggers", "Thieves' tools"]),
    "sorcerer": ("Light crossbow", "No armor", ["Explorer's Pack", "Component pouch", "Two daggers", "20 bolts"]),
    "warlock": ("Light crossbow", "Leather Armor", ["Scholar's Pack", "Component pouch", "Two daggers", "20 bolts"]),
    "wizard": ("Quarterstaff", "No armor", ["Scholar's Pack", "Spellbook", "Component pouch"]),
}
_DEFAULT_KIT = ("Dagger", "Leather Armor", ["Explorer's Pack"])


def base_player_state(info: CharacterInfo, rulebook: Rulebook | None = None) -> PlayerState:
    weapon, armor, inventory = STARTING_EQUIPMENT.get(info.character_class.lower(), _DEFAULT_KIT)
    max_health = 8 + ability_modifier(10)
    state = PlayerState(
        name=info.name,
        backstory=info.bio,
        appearance_description=info.desc,
        alignment=info.alignment,
        health=Health(current=max_health, max=max_health),
        location="A Bustling City",
        money=Money(amount=10, currency="gp"),
        inventory=list(inventory),
        equipment=Equipment(weapon=weapon, armor=armor),
        level=1,
        proficiency_bonus=proficiency_bonus(1),
    )
    state.armor_class = armor_class(state, rulebook or Rulebook.load())
    return state


def build_player_state(
    info: CharacterInfo,
    generated: dict[str, Any],
    rulebook: Rulebook | None = None,
) -> PlayerState:
    """Merge a generated player state (wire keys) over the baseline."""
    rulebook = rulebook or Rulebook.load()
    base = base_player_state(info, rulebook).to_wire()
    merged = deep_merge(base, generated)
    # Identity comes from the creation form, never from the model.
    merged.update(
        name=info.name,
        backstory=info.bio,
        appearanceDescription=info.desc,
        alignment=info.alignment,
        turnCount=0,
        pregnancy=None,
    )
    state = PlayerState.model_validate(merged)
    if "armorClass" not in generated:
        state.armor_class = armor_class(state, rulebook)
    return state


def assemble_character(
    info: CharacterInfo,
    sheet: CharacterSheet,
    rulebook: Rulebook | None = None,
) -> CharacterSheet:
    """Turn a freshly generated sheet into the session's starting sheet."""
    generated = sheet.player_state.model_dump(by_alias=True, exclude_unset=True, mode="json")
    return CharacterSheet(
        player_state=build_player_state(info, generated, rulebook),
        story_hooks=sheet.story_hooks,
    )
