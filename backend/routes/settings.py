"""Health check, settings and local-server connection check endpoints."""

import httpx
from fastapi import APIRouter, HTTPException
from pydantic import ValidationError

from backend import games
from storyteller.config import update_config
from storyteller.providers.local import LOCAL_MODEL

from .models import CheckConnectionBody

router = APIRouter()


@router.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


@router.post("/check-connection")
async def check_connection(body: CheckConnectionBody):
    """Send a one-token completion to a local chat-completions URL."""
    payload = {
        "model": LOCAL_MODEL,
        "messages": [{"role": "user", "content": "ping"}],
        "stream": False,
        "max_tokens": 1,
    }
    try:
        async with httpx.AsyncClient(timeout=5) as client:
            resp = await client.post(body.local_url, json=payload)
            resp.raise_for_status()
        return {"ok": True}
    except httpx.HTTPError as e:
        return {"ok": False, "error": str(e) or type(e).__name__}


@router.get("/settings")
async def get_settings():
    """Get app settings. The API key is masked."""
    config = games.settings().model_dump()
    config["api_key"] = "***" if config["api_key"] else ""
    return config


@router.patch("/settings")
async def update_settings(body: dict):
    """Update app settings (partial merge)."""
    try:
        config = update_config(games.storage().base_path, body).model_dump()
    except ValidationError as e:
        raise HTTPException(400, str(e))
    config["api_key"] = "***" if config["api_key"] else ""
    return config
