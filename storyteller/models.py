"""Core domain models.

Every stage of a turn operates on these types. Pydantic validates at each
data boundary: model output, save files and API bodies. JSON on the wire
uses camelCase keys (that is what the model is prompted to emit); Python
attributes are snake_case.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

Modifier = Literal["NONE", "ADVANTAGE", "DISADVANTAGE"]
Proficiency = Literal["proficient", "none"]
Role = Literal["user", "model"]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


# ---------------------------------------------------------------------------
# Character
# ---------------------------------------------------------------------------

class CharacterInfo(_CamelModel):
    """Who the player is. Fixed for the lifetime of a session."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    name: str
    desc: str = ""
    bio: str = ""
    gender: Literal["male", "female"] = "male"
    race: str = "Human"
    character_class: str = "Fighter"
    background: str = ""
    alignment: str = "True Neutral"


class Health(_CamelModel):
    current: int = 10
    max: int = 10


class Money(_CamelModel):
    amount: int = 0
    currency: str = "gp"


class Equipment(_CamelModel):
    weapon: str = ""
    armor: str = ""


class Quest(_CamelModel):
    name: str
    description: str = ""


class AbilityScores(_CamelModel):
    strength: int = 10
    dexterity: int = 10
    constitution: int = 10
    intelligence: int = 10
    wisdom: int = 10
    charisma: int = 10


class Pregnancy(_CamelModel):
    is_pregnant: bool = False
    conception_turn: int = 0
    sire: str = ""
    knowledge_revealed: bool = False


class PlayerState(_CamelModel):
    """The mutable character sheet.

    Changed only through deep-merge patches (see Session.apply_patch).
    Unknown keys the model invents are kept rather than dropped.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    name: str = ""
    backstory: str = ""
    appearance_description: str = ""
    alignment: str = ""
    health: Health = Field(default_factory=Health)
    location: str = ""
    money: Money = Field(default_factory=Money)
    inventory: list[str] = Field(default_factory=list)
    equipment: Equipment = Field(default_factory=Equipment)
    party: list[Any] = Field(default_factory=list)
    quests: list[Quest] = Field(default_factory=list)
    exp: int = 0
    level: int = 1
    proficiency_bonus: int = 2
    armor_class: int = 10
    speed: int = 30
    ability_scores: AbilityScores = Field(default_factory=AbilityScores)
    skills: dict[str, Proficiency] = Field(default_factory=dict)
    saving_throws: dict[str, Proficiency] = Field(default_factory=dict)
    feats: list[str] = Field(default_factory=list)
    racial_traits: list[str] = Field(default_factory=list)
    class_features: list[str] = Field(default_factory=list)
    turn_count: int = 0
    pregnancy: Pregnancy | None = None
    npc_states: dict[str, Any] = Field(default_factory=dict)

    @field_validator("quests", mode="before")
    @classmethod
    def _quest_names(cls, value: Any) -> Any:
        # The model often lists quests as bare strings.
        if isinstance(value, list):
            return [{"name": q} if isinstance(q, str) else q for q in value]
        return value


class StoryHook(_CamelModel):
    title: str
    description: str = ""


class CharacterSheet(_CamelModel):
    player_state: PlayerState
    story_hooks: list[StoryHook] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Transcript
# ---------------------------------------------------------------------------

class Message(BaseModel):
    """A single entry in the session's append-only transcript."""

    role: Role
    text: str


# ---------------------------------------------------------------------------
# Actions and their outcomes
# ---------------------------------------------------------------------------

class RollChoice(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["roll"] = "roll"
    skill: str
    description: str
    modifier: Modifier = "NONE"

    @property
    def label(self) -> str:
        return f"Roll {self.skill}: {self.description}"


class AttackChoice(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["attack"] = "attack"
    weapon: str
    target: str
    modifier: Modifier = "NONE"

    @property
    def label(self) -> str:
        return f"Attack {self.target} with {self.weapon}"


ActionChoice = Annotated[Union[RollChoice, AttackChoice], Field(discriminator="kind")]


class DiceRoll(BaseModel):
    model_config = ConfigDict(frozen=True)

    rolls: tuple[int, ...]
    total: int


class RollOutcome(BaseModel):
    """A resolved skill or ability check."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["check"] = "check"
    skill: str
    description: str = ""
    mode: Modifier = "NONE"
    rolls: tuple[int, ...]
    die: int
    modifier: int
    total: int
    critical: bool = False


class AttackOutcome(BaseModel):
    """A resolved weapon attack."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["attack"] = "attack"
    weapon: str
    target: str = ""
    mode: Modifier = "NONE"
    rolls: tuple[int, ...]
    die: int
    attack_bonus: int
    attack_total: int
    damage_rolls: tuple[int, ...]
    damage_bonus: int
    total_damage: int
    critical: bool = False


Outcome = Annotated[Union[RollOutcome, AttackOutcome], Field(discriminator="kind")]

# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

class SaveSlot(_CamelModel):
    """Everything needed to resume a session."""

    id: str
    character_info: CharacterInfo
    player_state: PlayerState
    chat_history: list[Message] = Field(default_factory=list)
    current_model_index: int = 0
