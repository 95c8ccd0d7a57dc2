"""The session context: one game in progress.

A Session is created when a game is started or loaded and dropped when the
player starts over. The turn engine is the only writer while a turn is in
flight; everything else may read it at any time.
"""

from __future__ import annotations

import copy
import enum
import logging
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from storyteller.errors import MalformedResponse
from storyteller.models import (
    ActionChoice,
    CharacterInfo,
    Message,
    PlayerState,
    RollChoice,
    SaveSlot,
)

if TYPE_CHECKING:
    from storyteller.providers.base import ChatSession, LLMProvider

logger = logging.getLogger(__name__)


class TurnState(str, enum.Enum):
    IDLE = "idle"
    GENERATING = "generating"
    CLASSIFYING = "classifying"
    AWAITING_CHOICE = "awaiting_choice"
    ERROR = "error"


def deep_merge(target: dict[str, Any], patch: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of `target` with `patch` merged in.

    Nested dicts merge key by key; every other value (lists included)
    replaces what was there.
    """
    merged = copy.deepcopy(target)
    for key, value in patch.items():
        if isinstance(value, dict):
            current = merged.get(key)
            merged[key] = deep_merge(current if isinstance(current, dict) else {}, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


class Session:
    def __init__(
        self,
        *,
        character_id: str,
        character_info: CharacterInfo,
        player_state: PlayerState,
        provider: LLMProvider,
        transcript: list[Message] | None = None,
        mature: bool = False,
    ) -> None:
        self.character_id = character_id
        self.character_info = character_info
        self.player_state = player_state
        self.provider = provider
        self.transcript: list[Message] = list(transcript or [])
        self.mature = mature

        self.chat: ChatSession | None = None
        self.state = TurnState.IDLE
        self.is_generating = False
        self.pending_choices: list[ActionChoice] = []
        self.last_check: RollChoice | None = None

    # ------------------------------------------------------------------
    # Turn bookkeeping
    # ------------------------------------------------------------------

    @property
    def turn_count(self) -> int:
        return self.player_state.turn_count

    def increment_turn(self) -> int:
        self.player_state.turn_count += 1
        return self.player_state.turn_count

    def append(self, role: str, text: str) -> Message:
        message = Message(role=role, text=text)
        self.transcript.append(message)
        return message

    # ------------------------------------------------------------------
    # Player state
    # ------------------------------------------------------------------

    def apply_patch(self, patch: dict[str, Any]) -> PlayerState:
        """Deep-merge a STATE_UPDATE patch into the player state.

        Current health is clamped to [0, max]. The turn counter belongs to
        the engine and is never taken from a patch.
        """
        patch = {k: v for k, v in patch.items() if k != "turnCount"}
        merged = deep_merge(self.player_state.to_wire(), patch)
        try:
            state = PlayerState.model_validate(merged)
        except ValidationError as e:
            raise MalformedResponse(f"State update does not fit the character sheet: {e}") from e
        state.health.current = max(0, min(state.health.current, state.health.max))
        self.player_state = state
        return state

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    async def reinitialize_chat(self) -> ChatSession:
        """Open a fresh chat on the provider's current model from the transcript."""
        self.chat = await self.provider.create_chat_session(
            self.character_info, self.player_state, self.mature, list(self.transcript),
        )
        logger.debug(
            "chat reinitialized character=%s model=%s history=%d",
            self.character_id, self.provider.current_model, len(self.transcript),
        )
        return self.chat

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_save(self) -> SaveSlot:
        return SaveSlot(
            id=self.character_id,
            character_info=self.character_info,
            player_state=self.player_state,
            chat_history=list(self.transcript),
            current_model_index=self.provider.current_model_index,
        )

    @classmethod
    def from_save(cls, slot: SaveSlot, provider: LLMProvider, mature: bool = False) -> Session:
        provider.current_model_index = slot.current_model_index
        return cls(
            character_id=slot.id,
            character_info=slot.character_info,
            player_state=slot.player_state,
            provider=provider,
            transcript=slot.chat_history,
            mature=mature,
        )
