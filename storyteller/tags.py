"""Action tags embedded in the model's narrative text.

Tag grammar:

    [ROLL|<skill or ability>|<description>|<ADVANTAGE|DISADVANTAGE|NONE>]
    [ATTACK|<weapon>|<target>|<modifier>]
    [STATE_UPDATE]<json>[/STATE_UPDATE]
    [PIV_SEX|<male>|<female>]          mature mode only
    [PREGNANCY_REVEALED|<name>]        mature mode only

`extract_tags` reads a finished reply; `sanitize_for_display` strips every
tag so the prose can be shown and spoken. The sanitizer is called on each
growing prefix while a reply streams in.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from storyteller.models import ActionChoice, AttackChoice, RollChoice

_MODIFIER = r"(?:\|(ADVANTAGE|DISADVANTAGE|NONE))?\|?"

ROLL_RE = re.compile(r"\[ROLL\|([^|\]]+)\|([^|\]]*)" + _MODIFIER + r"\]")
ATTACK_RE = re.compile(r"\[ATTACK\|([^|\]]+)\|([^|\]]*)" + _MODIFIER + r"\]")
STATE_UPDATE_RE = re.compile(r"\[STATE_UPDATE\]([\s\S]*?)\[/STATE_UPDATE\]", re.IGNORECASE)
# A final block whose closing tag never arrived (or has not arrived yet).
OPEN_STATE_UPDATE_RE = re.compile(r"\[STATE_UPDATE\]([\s\S]*)$", re.IGNORECASE)
PIV_SEX_RE = re.compile(r"\[PIV_SEX\|([^|\]]+)\|([^|\]]+)\]")
PREGNANCY_REVEALED_RE = re.compile(r"\[PREGNANCY_REVEALED\|([^\]]+)\]")
EVENT_RE = re.compile(r"\[EVENT\|(ITEM|XP|MONEY)\|([^\]]+)\]")
NPC_DAMAGE_RE = re.compile(r"\[NPC_DAMAGE\|(\d+)\|([^|\]]+)\|([^\]]+)\]")

_DISPLAY_STRIP = (
    STATE_UPDATE_RE,
    OPEN_STATE_UPDATE_RE,
    ROLL_RE,
    ATTACK_RE,
    PIV_SEX_RE,
    PREGNANCY_REVEALED_RE,
    EVENT_RE,
    NPC_DAMAGE_RE,
)


@dataclass(frozen=True)
class ExtractedTags:
    """Everything actionable found in one reply."""

    choices: tuple[ActionChoice, ...] = ()
    state_updates: tuple[str, ...] = ()
    conceptions: tuple[tuple[str, str], ...] = ()
    revealed: tuple[str, ...] = ()

    @property
    def state_update(self) -> str | None:
        return self.state_updates[0] if self.state_updates else None


def extract_tags(text: str) -> ExtractedTags:
    """Scan `text` for every tag family.

    ROLL and ATTACK tags are merged into one choice list in the order they
    appear in the text.
    """
    found: list[tuple[int, ActionChoice]] = []
    for m in ROLL_RE.finditer(text):
        found.append((m.start(), RollChoice(
            skill=m.group(1).strip(),
            description=m.group(2).strip(),
            modifier=m.group(3) or "NONE",
        )))
    for m in ATTACK_RE.finditer(text):
        found.append((m.start(), AttackChoice(
            weapon=m.group(1).strip(),
            target=m.group(2).strip(),
            modifier=m.group(3) or "NONE",
        )))
    found.sort(key=lambda pair: pair[0])

    updates = [m.group(1) for m in STATE_UPDATE_RE.finditer(text)]
    tail = STATE_UPDATE_RE.sub("", text)
    dangling = OPEN_STATE_UPDATE_RE.search(tail)
    if dangling and "{" in dangling.group(1):
        updates.append(dangling.group(1))

    return ExtractedTags(
        choices=tuple(choice for _, choice in found),
        state_updates=tuple(updates),
        conceptions=tuple((m.group(1).strip(), m.group(2).strip()) for m in PIV_SEX_RE.finditer(text)),
        revealed=tuple(m.group(1).strip() for m in PREGNANCY_REVEALED_RE.finditer(text)),
    )


def sanitize_for_display(text: str) -> str:
    """Remove every tag from `text`, leaving the prose around it intact."""
    for pattern in _DISPLAY_STRIP:
        text = pattern.sub("", text)
    return text.strip()
