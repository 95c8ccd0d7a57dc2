"""Running games: one TurnEngine per character, backed by save slots.

init_games() must be called before anything else (create_app does it).
A game not in memory is rebuilt from its save slot on first access.
"""

from __future__ import annotations

import logging
import re
import unicodedata
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from storyteller.config import Settings, get_config
from storyteller.models import CharacterInfo, PlayerState
from storyteller.pipeline.orchestrator import TurnEngine
from storyteller.providers import LLMProvider, create_provider
from storyteller.rulebook import Rulebook
from storyteller.session import Session
from storyteller.sinks import MemoryNarrator, MemoryView, NoLore
from storyteller.storage import Storage

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[Settings], LLMProvider]

_data_dir: Path | None = None
_storage: Storage | None = None
_provider_factory: ProviderFactory = create_provider
_rulebook: Rulebook | None = None
_games: dict[str, Game] = {}


@dataclass
class Game:
    engine: TurnEngine
    narrator: MemoryNarrator

    @property
    def session(self) -> Session:
        return self.engine.session

    def fresh_view(self) -> MemoryView:
        """Give the engine a new view so a response only carries its own output."""
        view = MemoryView()
        self.engine.view = view
        self.narrator.spoken = []
        return view


def slugify(name: str) -> str:
    """Filesystem-safe id stem: "Lyra Swiftwind" → "lyra-swiftwind"."""
    text = unicodedata.normalize("NFKD", name)
    text = text.encode("ascii", "ignore").decode("ascii").lower()
    text = re.sub(r"[^a-z0-9]+", "-", text).strip("-")
    return text or "hero"


def init_games(data_dir: Path, provider_factory: ProviderFactory | None = None) -> None:
    global _data_dir, _storage, _provider_factory, _rulebook
    _data_dir = data_dir
    _storage = Storage(data_dir)
    _provider_factory = provider_factory or create_provider
    _rulebook = Rulebook.load()
    _games.clear()


def storage() -> Storage:
    assert _storage is not None, "Call init_games() before using games"
    return _storage


def settings() -> Settings:
    assert _data_dir is not None, "Call init_games() before using games"
    return get_config(_data_dir)


def rulebook() -> Rulebook:
    assert _rulebook is not None, "Call init_games() before using games"
    return _rulebook


def make_provider() -> LLMProvider:
    return _provider_factory(settings())


def _engine(session: Session, config: Settings) -> Game:
    narrator = MemoryNarrator(enabled=config.read_aloud_enabled)
    engine = TurnEngine(
        session,
        MemoryView(),
        rulebook=rulebook(),
        narrator=narrator,
        lore=NoLore(),
        store=storage(),
        turn_timeout=config.turn_timeout,
        pregnancy_chance=config.pregnancy_chance,
    )
    return Game(engine=engine, narrator=narrator)


def new_game(info: CharacterInfo, state: PlayerState, provider: LLMProvider | None = None) -> Game:
    """Start a session for a freshly created character and save it."""
    config = settings()
    session = Session(
        character_id=f"{slugify(info.name)}-{uuid.uuid4().hex[:8]}",
        character_info=info,
        player_state=state,
        provider=provider or _provider_factory(config),
        mature=config.mature_enabled,
    )
    game = _engine(session, config)
    storage().save(session.to_save())
    _games[session.character_id] = game
    logger.info("new game id=%s provider=%s", session.character_id, session.provider.kind)
    return game


def get_game(character_id: str) -> Game | None:
    game = _games.get(character_id)
    if game is not None:
        return game
    slot = storage().get(character_id)
    if slot is None:
        return None
    config = settings()
    session = Session.from_save(slot, _provider_factory(config), mature=config.mature_enabled)
    game = _engine(session, config)
    _games[character_id] = game
    logger.info("loaded game id=%s history=%d", character_id, len(slot.chat_history))
    return game


def delete_game(character_id: str) -> bool:
    _games.pop(character_id, None)
    return storage().delete(character_id)
