"""FastAPI API endpoints under /api.

Endpoint groups: settings (health, settings, check-connection) and games
(character sheets, save slots, and the turn interfaces: start, chat,
choose, reroll, regenerate). Each game's resources are nested under
/api/games/{character_id}/.
"""

from fastapi import APIRouter

from .games import router as games_router
from .settings import router as settings_router

router = APIRouter()
router.include_router(settings_router)
router.include_router(games_router)
