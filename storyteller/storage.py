"""JSON file storage for save slots.

Every game is one flat JSON file keyed by character id. There is no
database. Reads and writes go through plain helper methods that load and
dump JSON.

Directory layout:

    {base}/
      config.json             ← settings (see storyteller.config)
      saves/
        {character_id}.json   ← SaveSlot: character, sheet, transcript, model index
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from storyteller.models import SaveSlot
from storyteller.session import deep_merge

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9_-]+$")


class Storage:
    def __init__(self, base_path: Path) -> None:
        self._base = base_path
        self._saves = base_path / "saves"
        self._saves.mkdir(parents=True, exist_ok=True)

    @property
    def base_path(self) -> Path:
        return self._base

    # ------------------------------------------------------------------
    # Internal path helpers
    # ------------------------------------------------------------------

    def _save_file(self, character_id: str) -> Path:
        if not _SAFE_ID.match(character_id):
            raise ValueError(f"Invalid character id: {character_id!r}")
        return self._saves / f"{character_id}.json"

    def _read_json(self, path: Path) -> Any:
        return json.loads(path.read_text())

    def _write_json(self, path: Path, data: Any) -> None:
        path.write_text(json.dumps(data, indent=2))

    # ------------------------------------------------------------------
    # Save slots
    # ------------------------------------------------------------------

    def save(self, slot: SaveSlot) -> None:
        """Create or overwrite the slot for slot.id."""
        self._write_json(self._save_file(slot.id), slot.to_wire())
        logger.debug("saved game id=%s history=%d", slot.id, len(slot.chat_history))

    def get(self, character_id: str) -> SaveSlot | None:
        """Load a slot. A file that no longer validates is treated as missing."""
        path = self._save_file(character_id)
        if not path.exists():
            return None
        try:
            return SaveSlot.model_validate(self._read_json(path))
        except (ValidationError, json.JSONDecodeError) as e:
            logger.warning("save %s is corrupt, ignoring: %s", character_id, e)
            return None

    def update(self, character_id: str, fields: dict[str, Any]) -> SaveSlot | None:
        """Deep-merge wire-format fields into an existing slot."""
        path = self._save_file(character_id)
        if not path.exists():
            return None
        merged = deep_merge(self._read_json(path), fields)
        slot = SaveSlot.model_validate(merged)
        self._write_json(path, slot.to_wire())
        return slot

    def delete(self, character_id: str) -> bool:
        path = self._save_file(character_id)
        if not path.exists():
            return False
        path.unlink()
        return True

    def list_saves(self) -> list[SaveSlot]:
        """All readable slots, most recently written first."""
        paths = sorted(self._saves.glob("*.json"), key=lambda p: p.stat().st_mtime, reverse=True)
        slots = [self.get(p.stem) for p in paths]
        return [s for s in slots if s is not None]
