"""Turn engine: runs one player action through to a settled state.

Turn flow:
  1. Guard: refuse to start while another turn is generating.
  2. Generating: stream the reply into a fresh render surface. On a quota
     or rate-limit failure switch to the next model, reopen the chat, drop
     queued narration and resend the same prompt into the same surface.
  3. Record the exchange in the transcript (once, after the stream ends).
  4. Classifying: apply STATE_UPDATE patches (and the mature-mode events),
     then persist and reopen the chat if the sheet changed.
  5. Exactly one action tag: resolve it, make the result the next prompt
     and go back to 2. Several: wait for the player to pick one. None: the
     turn is over.

Failures that end the turn (no model left, timeout, server errors) put the
session in ERROR and mark the surface as failed.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from pydantic import BaseModel, Field

from storyteller.dice import resolve_attack, roll_check
from storyteller.errors import (
    LLMError,
    MalformedResponse,
    ProvidersExhausted,
    QuotaExceeded,
    TransientProviderError,
    TurnInProgress,
)
from storyteller.json_repair import recover_json
from storyteller.models import (
    ActionChoice,
    AttackChoice,
    AttackOutcome,
    Outcome,
    RollOutcome,
    StoryHook,
)
from storyteller.pipeline.stream import StreamProcessor
from storyteller.rulebook import Rulebook
from storyteller.session import Session, TurnState
from storyteller.sinks import GameView, LoreIndex, Narrator, ReplySurface, SaveStore
from storyteller.tags import ExtractedTags, extract_tags

logger = logging.getLogger(__name__)

CONCEPTION_NOTICE = "A subtle change, a feeling deep within... something is different."
LORE_PREFIX = "(Use the following background information...)"


class TurnResult(BaseModel):
    """Where the session ended up after a turn-initiating call."""

    state: TurnState
    turn_count: int
    choices: list[ActionChoice] = Field(default_factory=list)
    outcomes: list[Outcome] = Field(default_factory=list)
    error: str | None = None
    warnings: list[str] = Field(default_factory=list)


@dataclass(frozen=True)
class _Prompt:
    api: str      # sent to the model
    history: str  # recorded in the transcript; "" records nothing


class TurnEngine:
    """Drives one Session. All turn-initiating calls go through here."""

    def __init__(
        self,
        session: Session,
        view: GameView,
        *,
        rulebook: Rulebook | None = None,
        narrator: Narrator | None = None,
        lore: LoreIndex | None = None,
        store: SaveStore | None = None,
        rng: random.Random | None = None,
        turn_timeout: float = 30.0,
        pregnancy_chance: float = 0.20,
    ) -> None:
        self.session = session
        self.view = view
        self.rulebook = rulebook or Rulebook.load()
        self.narrator = narrator
        self.lore = lore
        self.store = store
        self.rng = rng or random.Random()
        self.turn_timeout = turn_timeout
        self.pregnancy_chance = pregnancy_chance
        self._outcomes: list[RollOutcome | AttackOutcome] = []
        self._warnings: list[str] = []

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def submit_message(self, text: str) -> TurnResult:
        self._ensure_free()
        text = text.strip()
        if not text:
            raise ValueError("Message is empty")

        async def build() -> _Prompt:
            self.session.increment_turn()
            return _Prompt(api=await self._with_lore(text), history=text)

        return await self._start(build)

    async def start_adventure(self, hook: StoryHook | str) -> TurnResult:
        self._ensure_free()
        scenario = hook if isinstance(hook, str) else f"{hook.title}: {hook.description}"

        async def build() -> _Prompt:
            self.session.increment_turn()
            prompt = f"My adventure begins with this scenario: {scenario}"
            return _Prompt(api=prompt, history=prompt)

        return await self._start(build)

    async def select_choice(self, index: int) -> TurnResult:
        session = self.session
        self._ensure_free()
        if session.state != TurnState.AWAITING_CHOICE:
            raise ValueError("No choice is pending")
        if not 0 <= index < len(session.pending_choices):
            raise ValueError(f"Choice {index} does not exist")

        async def build() -> _Prompt:
            choice = session.pending_choices[index]
            session.pending_choices = []
            return self._resolve(choice)

        return await self._start(build)

    async def reroll_last_check(self) -> TurnResult:
        session = self.session
        self._ensure_free()
        check = session.last_check
        if check is None:
            raise ValueError("There is no check to reroll")
        if len(session.transcript) < 2 or session.transcript[-1].role != "model":
            raise ValueError("The last check has no reply to replace")

        async def build() -> _Prompt:
            del session.transcript[-2:]
            session.pending_choices = []
            await session.reinitialize_chat()
            return self._resolve(check)

        return await self._start(build)

    async def regenerate_last_response(self) -> TurnResult:
        session = self.session
        self._ensure_free()
        entries = session.transcript
        if entries and entries[-1].role == "model":
            entries = entries[:-1]
        if not entries or entries[-1].role != "user":
            raise ValueError("There is no message to regenerate a reply for")
        text = entries[-1].text

        async def build() -> _Prompt:
            session.transcript[:] = entries[:-1]
            session.pending_choices = []
            await session.reinitialize_chat()
            return _Prompt(api=text, history=text)

        return await self._start(build)

    # ------------------------------------------------------------------
    # The loop
    # ------------------------------------------------------------------

    async def _start(self, build: Callable[[], Awaitable[_Prompt]]) -> TurnResult:
        session = self.session
        self._ensure_free()
        session.is_generating = True
        self._outcomes = []
        self._warnings = []
        if self.narrator is not None:
            self.narrator.cancel()
        try:
            return await self._loop(await build())
        finally:
            session.is_generating = False

    def _ensure_free(self) -> None:
        if self.session.is_generating:
            raise TurnInProgress("A turn is already in progress")

    async def _loop(self, prompt: _Prompt) -> TurnResult:
        session = self.session
        while True:
            surface = self.view.new_reply()
            try:
                text = await self._generate(prompt, surface)
            except LLMError as e:
                return self._fail(surface, e)

            session.state = TurnState.CLASSIFYING
            tags = extract_tags(text)
            if self._classify_state(tags):
                self._persist()
                await session.reinitialize_chat()

            if len(tags.choices) == 1:
                prompt = self._resolve(tags.choices[0])
                continue

            if tags.choices:
                session.state = TurnState.AWAITING_CHOICE
                session.pending_choices = list(tags.choices)
                self.view.show_choices(tags.choices)
            else:
                session.state = TurnState.IDLE
                self.view.show_reply_controls()
            self._persist()
            return self._result()

    async def _generate(self, prompt: _Prompt, surface: ReplySurface) -> str:
        session = self.session
        while True:
            session.state = TurnState.GENERATING
            chat = session.chat or await session.reinitialize_chat()
            processor = StreamProcessor(surface, self.narrator, self.turn_timeout)
            try:
                text = await processor.run(chat.send_message_stream(prompt.api))
                break
            except (QuotaExceeded, TransientProviderError) as e:
                provider = session.provider
                failed = provider.current_model
                if not provider.use_next_model():
                    raise ProvidersExhausted(
                        "API limit reached, and no fallback models are available. Please try again later."
                    ) from e
                logger.warning("model %s unavailable (%s), falling back to %s", failed, e, provider.current_model)
                # the resent prompt replays the reply from the start
                if self.narrator is not None:
                    self.narrator.cancel()
                surface.render(
                    f"API limit reached for {failed}. Switching to fallback: {provider.current_model}. Retrying..."
                )
                session.is_generating = False
                await session.reinitialize_chat()
                session.is_generating = True

        if prompt.history:
            session.append("user", prompt.history)
        session.append("model", text)
        return text

    def _fail(self, surface: ReplySurface, error: LLMError) -> TurnResult:
        logger.error("turn failed: %s", error)
        self.session.state = TurnState.ERROR
        self.session.pending_choices = []
        surface.fail(str(error))
        return self._result(error=str(error))

    def _result(self, error: str | None = None) -> TurnResult:
        session = self.session
        return TurnResult(
            state=session.state,
            turn_count=session.turn_count,
            choices=list(session.pending_choices),
            outcomes=list(self._outcomes),
            error=error,
            warnings=list(self._warnings),
        )

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def _classify_state(self, tags: ExtractedTags) -> bool:
        """Apply state patches and mature events. True if the sheet changed."""
        updated = False
        for body in tags.state_updates:
            try:
                patch = recover_json(body)
                if not isinstance(patch, dict):
                    raise MalformedResponse("State update must be a JSON object", body)
                self.session.apply_patch(patch)
                updated = True
            except MalformedResponse as e:
                logger.warning("state update skipped: %s raw=%r", e, e.raw_text[:200])
                self._warnings.append(str(e))
        if self.session.mature:
            updated = self._mature_events(tags) or updated
        return updated

    def _mature_events(self, tags: ExtractedTags) -> bool:
        session = self.session
        pregnancy = session.player_state.pregnancy
        pregnant = pregnancy is not None and pregnancy.is_pregnant
        updated = False

        if tags.conceptions and session.character_info.gender == "female" and not pregnant:
            if self.rng.random() < self.pregnancy_chance:
                sire = tags.conceptions[0][0]
                session.apply_patch({"pregnancy": {
                    "isPregnant": True,
                    "conceptionTurn": session.turn_count,
                    "sire": sire,
                    "knowledgeRevealed": False,
                }})
                logger.info("conception event turn=%d", session.turn_count)
                self.view.show_notice(CONCEPTION_NOTICE)
                updated = True

        pregnancy = session.player_state.pregnancy
        if tags.revealed and pregnancy is not None and pregnancy.is_pregnant and not pregnancy.knowledge_revealed:
            session.apply_patch({"pregnancy": {"knowledgeRevealed": True}})
            updated = True
        return updated

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def _resolve(self, choice: ActionChoice) -> _Prompt:
        """Roll for an action tag and build the prompt that narrates it."""
        session = self.session
        session.increment_turn()

        if isinstance(choice, AttackChoice):
            weapon = self.rulebook.find_weapon(choice.weapon)
            if weapon is None:
                logger.warning("attack with unknown weapon %r", choice.weapon)
                return _Prompt(
                    api=f"(Attack failed: Weapon '{choice.weapon}' not found.)",
                    history="Action: Attack failed, weapon not found.",
                )
            attack = resolve_attack(weapon, session.player_state, choice.modifier, self.rng, target=choice.target)
            self._record(attack)
            crit = "It was a critical hit. " if attack.critical else ""
            return _Prompt(
                api=(
                    f'The attack roll against "{choice.target}" with the {choice.weapon} is '
                    f"{attack.attack_total}, dealing {attack.total_damage} damage. {crit}Narrate the outcome."
                ),
                history=(
                    f"Action: Attacked {choice.target} with {choice.weapon} "
                    f"(Attack Roll: {attack.attack_total}, Damage: {attack.total_damage})"
                ),
            )

        check = roll_check(choice.skill, session.player_state, choice.modifier, self.rng, choice.description)
        session.last_check = choice
        self._record(check)
        return _Prompt(
            api=(
                f"The {choice.skill} check for my character's attempt to \"{choice.description}\" "
                f"resulted in a total of {check.total}. Narrate the outcome."
            ),
            history=f"Action: {choice.description} (Result: {check.total})",
        )

    def _record(self, outcome: RollOutcome | AttackOutcome) -> None:
        self._outcomes.append(outcome)
        self.view.show_outcome(outcome)

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    async def _with_lore(self, text: str) -> str:
        if self.lore is None or not self.lore.is_ready():
            return text
        chunks = await self.lore.search(text)
        if not chunks:
            return text
        context = "\n---\n".join(chunks)
        return f"{LORE_PREFIX}\n{context}\n\nMy action is: {text}"

    def _persist(self) -> None:
        if self.store is not None:
            self.store.save(self.session.to_save())
