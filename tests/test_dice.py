"""Tests for storyteller.dice: rolls, checks, attacks and armor class."""

import random

import pytest

from storyteller.dice import (
    ability_modifier,
    armor_class,
    canonical_skill,
    check_modifier,
    proficiency_bonus,
    resolve_attack,
    roll_check,
    roll_dice,
)
from storyteller.models import AbilityScores, Equipment, PlayerState
from storyteller.rulebook import Weapon


class TestRollDice:
    def test_notation(self, seeded) -> None:
        result = roll_dice("2d6", seeded(ints=[3, 5]))
        assert result.rolls == (3, 5)
        assert result.total == 8

    def test_implicit_single_die(self, seeded) -> None:
        assert roll_dice("d8", seeded(ints=[7])).total == 7

    def test_constant(self) -> None:
        result = roll_dice("1")
        assert result.rolls == (1,)
        assert result.total == 1

    def test_integer_constant(self) -> None:
        assert roll_dice(4).total == 4

    @pytest.mark.parametrize("notation", ["", "banana", "2x6", "d0"])
    def test_unrecognised_is_zero(self, notation) -> None:
        result = roll_dice(notation)
        assert result.rolls == (0,)
        assert result.total == 0

    def test_within_bounds(self) -> None:
        rng = random.Random(7)
        for _ in range(200):
            result = roll_dice("3d4", rng)
            assert 3 <= result.total <= 12


class TestModifiers:
    @pytest.mark.parametrize("score, expected", [
        (1, -5), (8, -1), (9, -1), (10, 0), (11, 0), (12, 1), (15, 2), (20, 5),
    ])
    def test_ability_modifier(self, score, expected) -> None:
        assert ability_modifier(score) == expected

    @pytest.mark.parametrize("level, expected", [(1, 2), (4, 2), (5, 3), (8, 3), (9, 4), (17, 6)])
    def test_proficiency_bonus(self, level, expected) -> None:
        assert proficiency_bonus(level) == expected

    @pytest.mark.parametrize("name", ["Sleight of Hand", "sleightOfHand", "sleight_of_hand", "SLEIGHT OF HAND"])
    def test_skill_names_normalised(self, name) -> None:
        assert canonical_skill(name) == "sleightOfHand"

    def test_proficient_skill(self, hero_state) -> None:
        # DEX 16 (+3) + proficiency 2
        assert check_modifier("Stealth", hero_state) == 5

    def test_proficient_save_covers_skill(self, hero_state) -> None:
        # acrobatics is not flagged, but the dexterity save is
        assert check_modifier("Acrobatics", hero_state) == 5

    def test_not_proficient(self, hero_state) -> None:
        # WIS 11 (+0), no skill or save proficiency
        assert check_modifier("Perception", hero_state) == 0

    def test_raw_ability(self, hero_state) -> None:
        assert check_modifier("Charisma", hero_state) == 2

    def test_unknown_skill(self, hero_state) -> None:
        assert check_modifier("Basket Weaving", hero_state) == 0


class TestRollCheck:
    def test_single_die(self, hero_state, seeded) -> None:
        outcome = roll_check("Stealth", hero_state, "NONE", seeded(ints=[11]))
        assert outcome.rolls == (11,)
        assert outcome.die == 11
        assert outcome.total == 16
        assert not outcome.critical

    def test_advantage_keeps_higher(self, hero_state, seeded) -> None:
        outcome = roll_check("Stealth", hero_state, "ADVANTAGE", seeded(ints=[4, 17]))
        assert outcome.rolls == (4, 17)
        assert outcome.die == 17

    def test_disadvantage_keeps_lower(self, hero_state, seeded) -> None:
        outcome = roll_check("Stealth", hero_state, "DISADVANTAGE", seeded(ints=[4, 17]))
        assert outcome.die == 4
        assert outcome.total == 9

    def test_natural_twenty_flagged(self, hero_state, seeded) -> None:
        assert roll_check("Perception", hero_state, "NONE", seeded(ints=[20])).critical

    @pytest.mark.parametrize("seed", range(50))
    def test_advantage_law(self, hero_state, seed) -> None:
        plain = roll_check("Stealth", hero_state, "NONE", random.Random(seed)).total
        better = roll_check("Stealth", hero_state, "ADVANTAGE", random.Random(seed)).total
        worse = roll_check("Stealth", hero_state, "DISADVANTAGE", random.Random(seed)).total
        assert better >= plain >= worse


class TestResolveAttack:
    RAPIER = Weapon(name="Rapier", damage_dice="1d8", is_finesse=True)
    GREATAXE = Weapon(name="Greataxe", damage_dice="1d12", is_finesse=False)

    def test_finesse_uses_dexterity(self, hero_state, seeded) -> None:
        outcome = resolve_attack(self.RAPIER, hero_state, "NONE", seeded(ints=[12, 6]), target="the thug")
        # DEX +3, proficiency +2
        assert outcome.attack_bonus == 5
        assert outcome.attack_total == 17
        assert outcome.damage_rolls == (6,)
        assert outcome.damage_bonus == 3
        assert outcome.total_damage == 9
        assert outcome.target == "the thug"

    def test_non_finesse_uses_strength(self, hero_state, seeded) -> None:
        outcome = resolve_attack(self.GREATAXE, hero_state, "NONE", seeded(ints=[12, 6]))
        assert outcome.attack_bonus == 2
        assert outcome.damage_bonus == 0

    def test_finesse_keeps_strength_when_stronger(self, seeded) -> None:
        brute = PlayerState(ability_scores=AbilityScores(strength=18, dexterity=12))
        outcome = resolve_attack(self.RAPIER, brute, "NONE", seeded(ints=[10, 1]))
        assert outcome.damage_bonus == 4

    def test_critical_doubles_dice(self, hero_state, seeded) -> None:
        outcome = resolve_attack(self.RAPIER, hero_state, "NONE", seeded(ints=[20, 5, 7]))
        assert outcome.critical
        assert outcome.damage_rolls == (5, 7)
        assert outcome.total_damage == 15

    def test_advantage_on_attack(self, hero_state, seeded) -> None:
        outcome = resolve_attack(self.RAPIER, hero_state, "ADVANTAGE", seeded(ints=[3, 20, 1, 1]))
        assert outcome.die == 20
        assert outcome.critical

    def test_damage_floor(self, seeded) -> None:
        weak = PlayerState(ability_scores=AbilityScores(strength=3, dexterity=3))
        outcome = resolve_attack(self.GREATAXE, weak, "NONE", seeded(ints=[10, 1]))
        assert outcome.total_damage == 1

    @pytest.mark.parametrize("seed", range(50))
    def test_damage_never_below_one(self, seed) -> None:
        weak = PlayerState(ability_scores=AbilityScores(strength=1, dexterity=1))
        dagger = Weapon(name="Dagger", damage_dice="1d4", is_finesse=True)
        assert resolve_attack(dagger, weak, "DISADVANTAGE", random.Random(seed)).total_damage >= 1


class TestArmorClass:
    def _state(self, armor: str, dex: int = 14, inventory=()) -> PlayerState:
        return PlayerState(
            equipment=Equipment(weapon="Longsword", armor=armor),
            ability_scores=AbilityScores(dexterity=dex),
            inventory=list(inventory),
        )

    def test_unarmored(self, rulebook) -> None:
        assert armor_class(self._state(""), rulebook) == 12

    def test_light_armor_adds_full_dex(self, rulebook) -> None:
        assert armor_class(self._state("Studded Leather Armor", dex=18), rulebook) == 16

    def test_medium_armor_caps_dex(self, rulebook) -> None:
        assert armor_class(self._state("Half Plate Armor", dex=18), rulebook) == 17

    def test_heavy_armor_ignores_dex(self, rulebook) -> None:
        assert armor_class(self._state("Chain Mail", dex=18), rulebook) == 16

    def test_shield_in_inventory(self, rulebook) -> None:
        assert armor_class(self._state("Chain Mail", inventory=["Shield", "Rope"]), rulebook) == 18

    def test_shield_in_equipment_text(self, rulebook) -> None:
        assert armor_class(self._state("Chain Mail and shield"), rulebook) == 18

    def test_shield_needs_whole_word(self, rulebook) -> None:
        assert armor_class(self._state("Chain Mail", inventory=["Shieldmaiden's locket"]), rulebook) == 16

    def test_unknown_armor_falls_back_to_unarmored(self, rulebook) -> None:
        assert armor_class(self._state("Robes of the Archmagi"), rulebook) == 12
