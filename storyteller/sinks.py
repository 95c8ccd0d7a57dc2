"""Collaborators the turn engine talks to, and in-memory versions of them.

The engine never touches a UI or a speech engine directly. It is handed:

    GameView     creates a ReplySurface per model reply and shows roll
                 outcomes, choices, notices and the post-reply controls
    Narrator     queue(text) / cancel() for read-aloud
    LoreIndex    is_ready() / search(query) for background lore
    SaveStore    save / update / delete keyed by character id

MemoryView records everything it is shown; the HTTP layer returns that
record to the client and the tests assert on it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, Sequence

from storyteller.models import ActionChoice, AttackOutcome, RollOutcome, SaveSlot


class ReplySurface(Protocol):
    def render(self, text: str) -> None: ...
    def fail(self, message: str) -> None: ...


class GameView(Protocol):
    def new_reply(self) -> ReplySurface: ...
    def show_outcome(self, outcome: RollOutcome | AttackOutcome) -> None: ...
    def show_choices(self, choices: Sequence[ActionChoice]) -> None: ...
    def show_notice(self, text: str) -> None: ...
    def show_reply_controls(self) -> None: ...


class Narrator(Protocol):
    def queue(self, text: str) -> None: ...
    def cancel(self) -> None: ...


class LoreIndex(Protocol):
    def is_ready(self) -> bool: ...
    async def search(self, query: str) -> list[str]: ...


class SaveStore(Protocol):
    def save(self, slot: SaveSlot) -> None: ...
    def update(self, character_id: str, fields: dict[str, Any]) -> SaveSlot | None: ...
    def delete(self, character_id: str) -> bool: ...


# ---------------------------------------------------------------------------
# In-memory implementations
# ---------------------------------------------------------------------------

@dataclass
class MemoryReply:
    text: str = ""
    error: str | None = None
    renders: int = 0

    def render(self, text: str) -> None:
        self.text = text
        self.renders += 1

    def fail(self, message: str) -> None:
        self.error = message


@dataclass
class MemoryView:
    replies: list[MemoryReply] = field(default_factory=list)
    outcomes: list[RollOutcome | AttackOutcome] = field(default_factory=list)
    choices: list[ActionChoice] = field(default_factory=list)
    notices: list[str] = field(default_factory=list)
    controls_shown: bool = False

    def new_reply(self) -> MemoryReply:
        reply = MemoryReply()
        self.replies.append(reply)
        return reply

    def show_outcome(self, outcome: RollOutcome | AttackOutcome) -> None:
        self.outcomes.append(outcome)

    def show_choices(self, choices: Sequence[ActionChoice]) -> None:
        self.choices = list(choices)

    def show_notice(self, text: str) -> None:
        self.notices.append(text)

    def show_reply_controls(self) -> None:
        self.controls_shown = True


@dataclass
class MemoryNarrator:
    """Collects queued sentences. `enabled=False` drops them, like a muted reader.

    `cancel` discards everything still queued.
    """

    enabled: bool = True
    spoken: list[str] = field(default_factory=list)
    cancelled: int = 0

    def queue(self, text: str) -> None:
        if self.enabled:
            self.spoken.append(text)

    def cancel(self) -> None:
        self.cancelled += 1
        self.spoken = []


class NoLore:
    """Lore index that is never ready."""

    def is_ready(self) -> bool:
        return False

    async def search(self, query: str) -> list[str]:
        return []
