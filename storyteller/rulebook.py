"""Weapon and armor rule data.

Tables are keyed by lower-cased name. Lookups are forgiving because the
names come from model prose: "Longsword +1" and "my trusty longsword" both
find "longsword". The longest key contained in the requested name wins.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Iterable

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).parent / "data"

_ENCHANTMENT_RE = re.compile(r"\+\d+\s*")
_SHIELD_RE = re.compile(r"\bshield\b", re.IGNORECASE)


class Weapon(BaseModel):
    name: str
    damage_dice: str = "1d4"
    is_finesse: bool = False
    properties: list[str] = Field(default_factory=list)


class Armor(BaseModel):
    name: str
    category: str = "light"
    ac_base: int = 10
    ac_add_dexmod: bool = True
    ac_cap_dexmod: int | None = None


def normalize_name(name: str) -> str:
    """Lower-case and drop a "+N" enchantment marker."""
    return _ENCHANTMENT_RE.sub("", name.lower(), count=1).strip()


def _longest_match(name: str, keys: Iterable[str]) -> str | None:
    wanted = normalize_name(name)
    if not wanted:
        return None
    best: str | None = None
    for key in keys:
        if key in wanted and (best is None or len(key) > len(best)):
            best = key
    return best


class Rulebook:
    """Weapon and armor tables with fuzzy lookup."""

    def __init__(self, weapons: Iterable[Weapon] = (), armor: Iterable[Armor] = ()) -> None:
        self.weapons = {w.name.lower(): w for w in weapons}
        self.armor = {a.name.lower(): a for a in armor}

    @classmethod
    def load(cls, data_dir: Path = DATA_DIR) -> Rulebook:
        """Read weapons.json and armor.json from `data_dir`."""
        weapons = [Weapon.model_validate(w) for w in _read_table(data_dir / "weapons.json")]
        armor = [Armor.model_validate(a) for a in _read_table(data_dir / "armor.json")]
        logger.debug("rulebook loaded weapons=%d armor=%d", len(weapons), len(armor))
        return cls(weapons, armor)

    def find_weapon(self, name: str) -> Weapon | None:
        key = _longest_match(name, self.weapons)
        return self.weapons[key] if key else None

    def find_armor(self, name: str) -> Armor | None:
        """Body armor only; shields are detected by has_shield()."""
        body = (k for k, a in self.armor.items() if a.category != "shield")
        key = _longest_match(name, body)
        return self.armor[key] if key else None


def has_shield(equipment_text: str, inventory: Iterable[str]) -> bool:
    """Whole-word scan of the equipment slots and inventory for a shield."""
    return any(_SHIELD_RE.search(text) for text in (equipment_text, *inventory))


def _read_table(path: Path) -> list[dict]:
    data = json.loads(path.read_text())
    # SRD dumps wrap the rows in {"results": [...]}
    if isinstance(data, dict):
        data = data.get("results", [])
    return data
