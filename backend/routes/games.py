"""Game endpoints: character creation, turns, choices, reroll, regenerate."""

from collections.abc import Awaitable, Callable

from fastapi import APIRouter, HTTPException

from backend import games
from storyteller.character import assemble_character
from storyteller.errors import LLMError, MalformedResponse, ProviderError, TurnInProgress
from storyteller.pipeline.orchestrator import TurnResult
from storyteller.providers import LLMProvider

from .models import CharacterSheetBody, ChatBody, ChooseBody, NewGameBody, StartBody, TurnResponse

router = APIRouter()


def _provider() -> LLMProvider:
    try:
        return games.make_provider()
    except ProviderError as e:
        raise HTTPException(400, str(e))


def _game(character_id: str) -> games.Game:
    try:
        game = games.get_game(character_id)
    except ProviderError as e:
        raise HTTPException(400, str(e))
    except ValueError:
        raise HTTPException(404, "Game not found")
    if game is None:
        raise HTTPException(404, "Game not found")
    return game


async def _turn(game: games.Game, run: Callable[[], Awaitable[TurnResult]]) -> TurnResponse:
    # checked before fresh_view so a rejected request leaves the running turn's view alone
    if game.session.is_generating:
        raise HTTPException(409, "A turn is already in progress")
    view = game.fresh_view()
    try:
        result = await run()
    except TurnInProgress as e:
        raise HTTPException(409, str(e))
    except ValueError as e:
        raise HTTPException(400, str(e))
    return TurnResponse(
        result=result.model_dump(mode="json"),
        replies=[{"text": r.text, "error": r.error} for r in view.replies],
        notices=view.notices,
        spoken=list(game.narrator.spoken),
        player_state=game.session.player_state.to_wire(),
    )


@router.post("/characters/sheet")
async def generate_character_sheet(body: CharacterSheetBody):
    """Generate a character sheet and story hooks from a free-text description."""
    provider = _provider()
    try:
        sheet = await provider.create_character_sheet(body.character_info, body.description)
    except (LLMError, MalformedResponse) as e:
        raise HTTPException(502, str(e))
    return assemble_character(body.character_info, sheet, games.rulebook()).to_wire()


@router.get("/games")
async def list_games():
    """List saved games, most recent first."""
    return [
        {
            "id": slot.id,
            "name": slot.character_info.name,
            "level": slot.player_state.level,
            "location": slot.player_state.location,
            "turnCount": slot.player_state.turn_count,
        }
        for slot in games.storage().list_saves()
    ]


@router.post("/games")
async def create_game(body: NewGameBody):
    """Create a game from a finished sheet, or generate one from the description."""
    provider = _provider()
    story_hooks = []
    if body.player_state is not None:
        state = body.player_state
    else:
        try:
            sheet = await provider.create_character_sheet(body.character_info, body.description)
        except (LLMError, MalformedResponse) as e:
            raise HTTPException(502, str(e))
        sheet = assemble_character(body.character_info, sheet, games.rulebook())
        state, story_hooks = sheet.player_state, sheet.story_hooks
    game = games.new_game(body.character_info, state, provider)
    return {
        "id": game.session.character_id,
        "playerState": game.session.player_state.to_wire(),
        "storyHooks": [h.to_wire() for h in story_hooks],
    }


@router.get("/games/{character_id}")
async def get_game(character_id: str):
    """Current state of a game: sheet, transcript and any pending choices."""
    game = _game(character_id)
    session = game.session
    return {
        "id": session.character_id,
        "state": session.state.value,
        "isGenerating": session.is_generating,
        "characterInfo": session.character_info.to_wire(),
        "playerState": session.player_state.to_wire(),
        "transcript": [m.model_dump() for m in session.transcript],
        "pendingChoices": [c.model_dump() for c in session.pending_choices],
        "model": session.provider.current_model,
    }


@router.delete("/games/{character_id}")
async def delete_game(character_id: str):
    try:
        deleted = games.delete_game(character_id)
    except ValueError:
        deleted = False
    if not deleted:
        raise HTTPException(404, "Game not found")
    return {"ok": True}


@router.post("/games/{character_id}/story-hooks")
async def story_hooks(character_id: str):
    """Generate fresh story hooks for an existing character."""
    session = _game(character_id).session
    try:
        hooks = await session.provider.create_story_hooks(session.character_info, session.player_state)
    except (LLMError, MalformedResponse) as e:
        raise HTTPException(502, str(e))
    return [h.to_wire() for h in hooks]


@router.post("/games/{character_id}/start", response_model=TurnResponse)
async def start_adventure(character_id: str, body: StartBody):
    game = _game(character_id)
    if game.session.transcript:
        raise HTTPException(400, "Adventure already started")
    return await _turn(game, lambda: game.engine.start_adventure(body.hook))


@router.post("/games/{character_id}/chat", response_model=TurnResponse)
async def chat(character_id: str, body: ChatBody):
    """Send the player's action and run the turn."""
    game = _game(character_id)
    return await _turn(game, lambda: game.engine.submit_message(body.message))


@router.post("/games/{character_id}/choose", response_model=TurnResponse)
async def choose(character_id: str, body: ChooseBody):
    game = _game(character_id)
    return await _turn(game, lambda: game.engine.select_choice(body.index))


@router.post("/games/{character_id}/reroll", response_model=TurnResponse)
async def reroll(character_id: str):
    game = _game(character_id)
    return await _turn(game, game.engine.reroll_last_check)


@router.post("/games/{character_id}/regenerate", response_model=TurnResponse)
async def regenerate(character_id: str):
    game = _game(character_id)
    return await _turn(game, game.engine.regenerate_last_response)
