"""Pydantic request/response models for API endpoints."""

from typing import Any

from pydantic import BaseModel

from storyteller.models import CharacterInfo, PlayerState, StoryHook


class CharacterSheetBody(BaseModel):
    character_info: CharacterInfo
    description: str


class NewGameBody(BaseModel):
    character_info: CharacterInfo
    description: str = ""
    player_state: PlayerState | None = None


class StartBody(BaseModel):
    hook: StoryHook | str


class ChatBody(BaseModel):
    message: str


class ChooseBody(BaseModel):
    index: int


class CheckConnectionBody(BaseModel):
    local_url: str


class TurnResponse(BaseModel):
    result: dict[str, Any]
    replies: list[dict[str, Any]]
    notices: list[str]
    spoken: list[str]
    player_state: dict[str, Any]
