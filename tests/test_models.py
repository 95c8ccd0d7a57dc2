"""Tests for storyteller.models."""

import pytest
from pydantic import TypeAdapter, ValidationError

from storyteller.models import (
    ActionChoice,
    AttackChoice,
    CharacterInfo,
    Message,
    PlayerState,
    RollChoice,
    SaveSlot,
)


class TestCharacterInfo:
    def test_wire_keys_are_camel_case(self) -> None:
        info = CharacterInfo(name="Bram", character_class="Wizard")
        assert info.to_wire()["characterClass"] == "Wizard"

    def test_accepts_wire_keys(self) -> None:
        info = CharacterInfo.model_validate({"name": "Bram", "characterClass": "Wizard"})
        assert info.character_class == "Wizard"

    def test_frozen(self) -> None:
        info = CharacterInfo(name="Bram")
        with pytest.raises(ValidationError):
            info.name = "Other"

    def test_gender_restricted(self) -> None:
        with pytest.raises(ValidationError):
            CharacterInfo(name="Bram", gender="robot")


class TestPlayerState:
    def test_defaults(self) -> None:
        state = PlayerState()
        assert state.health.current == 10
        assert state.turn_count == 0
        assert state.pregnancy is None

    def test_quests_from_bare_strings(self) -> None:
        state = PlayerState.model_validate({"quests": ["Find the key", {"name": "Slay the wyrm"}]})
        assert [q.name for q in state.quests] == ["Find the key", "Slay the wyrm"]

    def test_unknown_keys_kept(self) -> None:
        state = PlayerState.model_validate({"reputation": {"guild": 3}})
        assert state.to_wire()["reputation"] == {"guild": 3}

    def test_bad_proficiency_rejected(self) -> None:
        with pytest.raises(ValidationError):
            PlayerState.model_validate({"skills": {"stealth": "expert"}})

    def test_wire_roundtrip(self, hero_state) -> None:
        assert PlayerState.model_validate(hero_state.to_wire()) == hero_state


class TestChoices:
    adapter = TypeAdapter(ActionChoice)

    def test_discriminated_union(self) -> None:
        roll = self.adapter.validate_python({"kind": "roll", "skill": "Stealth", "description": "hide"})
        attack = self.adapter.validate_python({"kind": "attack", "weapon": "Dagger", "target": "rat"})
        assert isinstance(roll, RollChoice)
        assert isinstance(attack, AttackChoice)

    def test_labels(self) -> None:
        assert RollChoice(skill="Stealth", description="hide").label == "Roll Stealth: hide"
        assert AttackChoice(weapon="Dagger", target="the rat").label == "Attack the rat with Dagger"

    def test_modifier_restricted(self) -> None:
        with pytest.raises(ValidationError):
            RollChoice(skill="Stealth", description="hide", modifier="SOMETIMES")


class TestSaveSlot:
    def test_roundtrip(self, hero_info, hero_state) -> None:
        slot = SaveSlot(
            id="lyra-1",
            character_info=hero_info,
            player_state=hero_state,
            chat_history=[Message(role="user", text="Hello"), Message(role="model", text="Hi")],
            current_model_index=1,
        )
        wire = slot.to_wire()
        assert wire["currentModelIndex"] == 1
        assert wire["chatHistory"][1] == {"role": "model", "text": "Hi"}
        assert SaveSlot.model_validate(wire) == slot

    def test_message_role_restricted(self) -> None:
        with pytest.raises(ValidationError):
            Message(role="narrator", text="x")
