"""Streaming response processor.

Drains the fragments of one model reply. After every fragment the whole
accumulated text is sanitized and re-rendered, so a tag that has just
closed disappears from the display. Speech runs separately: complete
sentences are queued for narration as soon as their boundary arrives,
and whatever is left is queued when the stream ends. Boundaries are
looked for in the sanitized text, and nothing after a tag that is still
open is spoken until it closes.

A one-piece reply goes through exactly the same path as a token stream.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import AsyncIterable

from storyteller.errors import StreamTimeout
from storyteller.sinks import Narrator, ReplySurface
from storyteller.tags import sanitize_for_display

logger = logging.getLogger(__name__)

SENTENCE_END_RE = re.compile(r"[.!?]\s")


class StreamProcessor:
    def __init__(
        self,
        surface: ReplySurface,
        narrator: Narrator | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.surface = surface
        self.narrator = narrator
        self.timeout = timeout
        self.text = ""
        self._spoken = 0

    async def run(self, fragments: AsyncIterable[str]) -> str:
        """Drain `fragments` and return the full raw reply text.

        Raises StreamTimeout when the stream has not ended within the budget.
        """
        try:
            return await asyncio.wait_for(self._drain(fragments), self.timeout)
        except asyncio.TimeoutError as e:
            logger.warning("stream abandoned after %.0fs, %d chars received", self.timeout, len(self.text))
            raise StreamTimeout(self.timeout) from e

    async def _drain(self, fragments: AsyncIterable[str]) -> str:
        async for fragment in fragments:
            if not fragment:
                continue
            self.text += fragment
            self.surface.render(sanitize_for_display(self.text))
            self._flush_sentences()
        self._flush_remainder()
        logger.debug("stream complete len=%d", len(self.text))
        return self.text

    def _speak(self, text: str) -> None:
        text = text.strip()
        if text and self.narrator is not None:
            self.narrator.queue(text)

    def _speakable(self) -> str:
        """Sanitized text up to any tag that is still open."""
        text = self.text
        open_at = text.rfind("[")
        if open_at > text.rfind("]"):
            text = text[:open_at]
        clean = sanitize_for_display(text)
        # sanitizing strips the trailing space a sentence boundary needs
        if clean and text[-1:].isspace():
            clean += " "
        return clean

    def _flush_sentences(self) -> None:
        clean = self._speakable()
        while (m := SENTENCE_END_RE.search(clean, self._spoken)) is not None:
            self._speak(clean[self._spoken:m.start() + 1])
            self._spoken = m.end()

    def _flush_remainder(self) -> None:
        clean = sanitize_for_display(self.text)
        self._speak(clean[self._spoken:])
        self._spoken = len(clean)
