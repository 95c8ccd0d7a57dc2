from collections.abc import Sequence

import pytest

from storyteller.models import (
    AbilityScores,
    CharacterInfo,
    Equipment,
    Health,
    Message,
    PlayerState,
)
from storyteller.pipeline.orchestrator import TurnEngine
from storyteller.providers.base import LLMProvider
from storyteller.rulebook import Rulebook
from storyteller.session import Session
from storyteller.sinks import MemoryNarrator, MemoryView
from storyteller.storage import Storage


async def _no_sleep(delay: float) -> None:
    return None


class ScriptedChat:
    def __init__(self, provider: "ScriptedProvider") -> None:
        self._provider = provider

    async def send_message_stream(self, message: str):
        provider = self._provider
        provider.sent.append((provider.current_model, message))
        step = provider.script.pop(0)
        if isinstance(step, BaseException):
            raise step
        if hasattr(step, "__aiter__"):
            async for fragment in step:
                yield fragment
            return
        if isinstance(step, str):
            step = [step]
        for fragment in step:
            if isinstance(fragment, BaseException):
                raise fragment
            yield fragment


class ScriptedProvider(LLMProvider):
    """Replays a script of replies.

    Each step is a string (one blob), a list of fragments, or an exception
    raised when the step is reached. An exception inside a fragment list is
    raised mid-stream. An async iterable is streamed as is.
    """

    kind = "scripted"

    def __init__(self, script: Sequence, models: Sequence[str] = ("model-a", "model-b")) -> None:
        super().__init__(models, sleep=_no_sleep)
        self.script = list(script)
        self.sent: list[tuple[str, str]] = []
        self.histories: list[list[Message]] = []

    async def create_chat_session(self, info, state, mature, history):
        self.histories.append(list(history))
        return ScriptedChat(self)

    async def generate(self, model, prompt, json_output=False):
        self.sent.append((model, prompt))
        step = self.script.pop(0)
        if isinstance(step, BaseException):
            raise step
        return step


class SeededRandom:
    """random.Random stand-in returning fixed values."""

    def __init__(self, ints: Sequence[int] = (), floats: Sequence[float] = ()) -> None:
        self.ints = list(ints)
        self.floats = list(floats)

    def randint(self, a: int, b: int) -> int:
        return self.ints.pop(0)

    def random(self) -> float:
        return self.floats.pop(0)


@pytest.fixture
def hero_info() -> CharacterInfo:
    return CharacterInfo(
        name="Lyra",
        desc="A wiry elf with ink-stained fingers.",
        bio="Raised by smugglers in the harbor district.",
        gender="female",
        race="Elf",
        character_class="Rogue",
        background="Criminal",
        alignment="Chaotic Good",
    )


@pytest.fixture
def hero_state() -> PlayerState:
    return PlayerState(
        name="Lyra",
        health=Health(current=12, max=12),
        location="Harbor",
        inventory=["Thieves' tools", "Rope"],
        equipment=Equipment(weapon="Rapier", armor="Leather Armor"),
        level=1,
        proficiency_bonus=2,
        armor_class=14,
        ability_scores=AbilityScores(
            strength=10, dexterity=16, constitution=12,
            intelligence=13, wisdom=11, charisma=14,
        ),
        skills={"stealth": "proficient", "perception": "none"},
        saving_throws={"dexterity": "proficient"},
    )


@pytest.fixture
def storage(tmp_path) -> Storage:
    return Storage(tmp_path)


@pytest.fixture
def rulebook() -> Rulebook:
    return Rulebook.load()


@pytest.fixture
def make_provider():
    def _make(*script, models: Sequence[str] = ("model-a", "model-b")) -> ScriptedProvider:
        return ScriptedProvider(script, models=models)
    return _make


@pytest.fixture
def make_engine(hero_info, hero_state, rulebook, storage):
    """Build a TurnEngine around a scripted provider.

    Returns (engine, view, narrator).
    """
    def _make(provider, *, rng=None, mature=False, info=None, state=None, **kwargs):
        session = Session(
            character_id="lyra-test",
            character_info=info or hero_info,
            player_state=state or hero_state.model_copy(deep=True),
            provider=provider,
            mature=mature,
        )
        view = MemoryView()
        narrator = MemoryNarrator()
        engine = TurnEngine(
            session, view,
            rulebook=rulebook, narrator=narrator, store=storage,
            rng=rng or SeededRandom(ints=[10] * 20, floats=[0.99] * 5),
            **kwargs,
        )
        return engine, view, narrator
    return _make


@pytest.fixture
def seeded():
    return SeededRandom
