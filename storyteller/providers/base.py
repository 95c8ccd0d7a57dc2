"""Provider contract shared by the hosted and the local backend.

A provider owns the model roster (an ordered fallback list plus the index
of the model in use) and offers:

    create_chat_session    a ChatSession that streams one reply per message
    create_character_sheet JSON character sheet + story hooks
    create_story_hooks     JSON list of story hooks
    use_next_model         advance the roster after a quota error
    supports_embeddings / batch_embed_contents

Resilience lives here so both backends behave the same:

    call_with_retry            rate limited without a quota signal: wait
                               1s, 2s, 4s and try again
    call_with_model_fallback   quota exhausted: switch model and run the
                               whole operation again; ProvidersExhausted
                               once the roster runs out
"""

from __future__ import annotations

import abc
import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from typing import Any, Protocol, TypeVar

from pydantic import TypeAdapter, ValidationError

from storyteller.errors import (
    MalformedResponse,
    ProviderError,
    ProvidersExhausted,
    QuotaExceeded,
    StreamTimeout,
    TransientProviderError,
    classify_provider_error,
)
from storyteller.json_repair import recover_json
from storyteller.models import CharacterInfo, CharacterSheet, Message, PlayerState, StoryHook
from storyteller.prompts import character_sheet_prompt, story_hooks_prompt, system_instruction

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[Any]]

# Keys a flat character sheet may carry at the top level.
PLAYER_STATE_KEYS = (
    "health", "location", "money", "inventory", "equipment", "party", "quests",
    "exp", "level", "proficiencyBonus", "armorClass", "speed", "abilityScores",
    "skills", "savingThrows", "feats", "racialTraits", "classFeatures",
)
_ABILITY_ALIASES = ("stats", "abilityscores")

_story_hooks = TypeAdapter(list[StoryHook])


# ---------------------------------------------------------------------------
# Protocol: a chat bound to one model and one system instruction
# ---------------------------------------------------------------------------

class ChatSession(Protocol):
    def send_message_stream(self, message: str) -> AsyncIterator[str]: ...


# ---------------------------------------------------------------------------
# Retry with backoff
# ---------------------------------------------------------------------------

async def call_with_retry(
    call: Callable[[], Awaitable[T]],
    *,
    retries: int = 3,
    delay: float = 1.0,
    sleep: Sleep = asyncio.sleep,
    on_retry: Callable[[float, int], None] | None = None,
) -> T:
    """Run `call`, retrying rate-limit errors with exponential backoff.

    Anything else surfaces immediately. Rate-limit and quota failures are
    re-raised as TransientProviderError and QuotaExceeded.
    """
    attempt = 1
    while True:
        try:
            return await call()
        except Exception as e:
            classified = classify_provider_error(e)
            if isinstance(classified, TransientProviderError) and retries > 0:
                logger.warning("rate limited, retrying in %.1fs (attempt %d)", delay, attempt)
                if on_retry is not None:
                    on_retry(delay, attempt)
                await sleep(delay)
                retries -= 1
                delay *= 2
                attempt += 1
                continue
            if classified is None or classified is e:
                raise
            raise classified from e


# ---------------------------------------------------------------------------
# Schema safety net for generated character sheets
# ---------------------------------------------------------------------------

def to_expected_schema(parsed: Any, raw_text: str = "") -> dict[str, Any]:
    """Reshape a character-sheet reply into {"playerState", "storyHooks"}.

    Models sometimes return the player state flat at the top level; known
    keys are lifted into playerState. Fails when level or ability scores are
    still missing afterwards.
    """
    if not isinstance(parsed, dict):
        raise MalformedResponse("Character sheet must be a JSON object", raw_text)
    if isinstance(parsed.get("playerState"), dict) and "storyHooks" in parsed:
        return parsed

    logger.warning("character sheet came back flat, reshaping")
    source = parsed["playerState"] if isinstance(parsed.get("playerState"), dict) else parsed
    player_state: dict[str, Any] = {}
    for key, value in source.items():
        if key in PLAYER_STATE_KEYS:
            player_state[key] = value
        elif key.lower() in _ABILITY_ALIASES:
            player_state["abilityScores"] = value

    if "level" not in player_state or "abilityScores" not in player_state:
        raise MalformedResponse(
            "Character sheet is missing critical data (level or ability scores)", raw_text,
        )
    return {"playerState": player_state, "storyHooks": parsed.get("storyHooks", [])}


def parse_story_hooks(text: str) -> list[StoryHook]:
    parsed = recover_json(text)
    if isinstance(parsed, dict):
        parsed = parsed.get("storyHooks", parsed.get("hooks", []))
    try:
        return _story_hooks.validate_python(parsed)
    except ValidationError as e:
        raise MalformedResponse(f"Story hooks have the wrong shape: {e}", text) from e


async def with_timeout(awaitable: Awaitable[T], seconds: float) -> T:
    try:
        return await asyncio.wait_for(awaitable, seconds)
    except asyncio.TimeoutError as e:
        raise StreamTimeout(seconds) from e


# ---------------------------------------------------------------------------
# LLMProvider: the two backends subclass this
# ---------------------------------------------------------------------------

class LLMProvider(abc.ABC):
    """Base class for the hosted and local backends.

    Args:
        models:             Ordered model identifiers, best first.
        generation_timeout: Budget in seconds for character sheets and hooks.
        retries:            Rate-limit retries per call.
        retry_delay:        First backoff delay in seconds; doubles each time.
        sleep:              Awaitable used for backoff (tests pass a fake).
    """

    kind: str = ""

    def __init__(
        self,
        models: Sequence[str],
        *,
        generation_timeout: float = 90.0,
        retries: int = 3,
        retry_delay: float = 1.0,
        sleep: Sleep = asyncio.sleep,
        turns_per_day: int = 8,
    ) -> None:
        if not models:
            raise ValueError("A provider needs at least one model")
        self.models = list(models)
        self._index = 0
        self.generation_timeout = generation_timeout
        self.retries = retries
        self.retry_delay = retry_delay
        self._sleep = sleep
        self.turns_per_day = turns_per_day

    # -- model roster ---------------------------------------------------

    @property
    def current_model(self) -> str:
        return self.models[self._index]

    @property
    def current_model_index(self) -> int:
        return self._index

    @current_model_index.setter
    def current_model_index(self, index: int) -> None:
        if 0 <= index < len(self.models):
            self._index = index

    def use_next_model(self) -> bool:
        """Advance to the next fallback model. False when there is none."""
        if self._index < len(self.models) - 1:
            self._index += 1
            return True
        return False

    # -- resilience -----------------------------------------------------

    async def retrying(self, call: Callable[[], Awaitable[T]]) -> T:
        return await call_with_retry(
            call, retries=self.retries, delay=self.retry_delay, sleep=self._sleep,
        )

    async def call_with_model_fallback(self, execute: Callable[[str], Awaitable[T]]) -> T:
        while True:
            model = self.current_model
            try:
                return await execute(model)
            except QuotaExceeded as e:
                if not self.use_next_model():
                    raise ProvidersExhausted("All available AI models have been exhausted.") from e
                logger.warning("quota exhausted on %s, falling back to %s", model, self.current_model)

    # -- prompts --------------------------------------------------------

    def system_instruction(self, info: CharacterInfo, state: PlayerState, mature: bool) -> str:
        return system_instruction(info, state, mature, self.turns_per_day)

    # -- operations -----------------------------------------------------

    @abc.abstractmethod
    async def create_chat_session(
        self,
        info: CharacterInfo,
        state: PlayerState,
        mature: bool,
        history: Sequence[Message],
    ) -> ChatSession: ...

    @abc.abstractmethod
    async def generate(self, model: str, prompt: str, json_output: bool = False) -> str:
        """One non-streamed completion on `model`."""

    async def _generate_json(self, stage: str, prompt: str) -> str:
        logger.debug("llm call stage=%s provider=%s prompt_len=%d", stage, self.kind, len(prompt))

        async def execute(model: str) -> str:
            return await self.retrying(lambda: self.generate(model, prompt, json_output=True))

        text = await with_timeout(self.call_with_model_fallback(execute), self.generation_timeout)
        logger.debug("llm response stage=%s len=%d", stage, len(text))
        return text

    async def create_character_sheet(self, info: CharacterInfo, description: str) -> CharacterSheet:
        text = await self._generate_json("character_sheet", character_sheet_prompt(description))
        shaped = to_expected_schema(recover_json(text), text)
        try:
            return CharacterSheet.model_validate(shaped)
        except ValidationError as e:
            raise MalformedResponse(f"Character sheet has the wrong shape: {e}", text) from e

    async def create_story_hooks(self, info: CharacterInfo, state: PlayerState) -> list[StoryHook]:
        text = await self._generate_json("story_hooks", story_hooks_prompt(info, state))
        return parse_story_hooks(text)

    def supports_embeddings(self) -> bool:
        return False

    async def batch_embed_contents(self, texts: Sequence[str]) -> list[list[float]]:
        raise ProviderError(f"The {self.kind} provider does not support embeddings.")
