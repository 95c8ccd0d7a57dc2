"""Application settings.

Precedence, lowest first: built-in defaults, `config.json` in the data
directory, then environment variables (a `.env` file is loaded by the app
entry points). get_config() returns the merged result; update_config()
applies a partial update and persists it.

Environment overrides:
    STORYTELLER_PROVIDER   "gemini" | "local"
    GEMINI_API_KEY         hosted provider key
    LOCAL_LLM_URL          local chat-completions endpoint
    STORYTELLER_MATURE     "1" to enable mature content
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field

from storyteller.providers.gemini import TEXT_MODELS

_ENV_OVERRIDES = {
    "STORYTELLER_PROVIDER": "provider",
    "GEMINI_API_KEY": "api_key",
    "LOCAL_LLM_URL": "local_url",
    "STORYTELLER_MATURE": "mature_enabled",
}


class Settings(BaseModel):
    provider: Literal["gemini", "local"] = "gemini"
    api_key: str = ""
    local_url: str = ""
    text_models: list[str] = Field(default_factory=lambda: list(TEXT_MODELS))
    mature_enabled: bool = False
    read_aloud_enabled: bool = False
    turn_timeout: float = 30.0
    generation_timeout: float = 90.0
    local_history_messages: int = 10
    pregnancy_chance: float = 0.20
    turns_per_day: int = 8


def _config_path(data_dir: Path) -> Path:
    return data_dir / "config.json"


def get_config(data_dir: Path) -> Settings:
    """Read config, returning defaults merged with stored values and env."""
    values: dict[str, Any] = {}
    path = _config_path(data_dir)
    if path.is_file():
        values.update(json.loads(path.read_text()))
    for env, field in _ENV_OVERRIDES.items():
        if os.getenv(env):
            values[field] = os.environ[env]
    return Settings.model_validate(values)


def update_config(data_dir: Path, fields: dict[str, Any]) -> Settings:
    """Merge fields into the stored config and persist. Returns full settings."""
    path = _config_path(data_dir)
    stored: dict[str, Any] = json.loads(path.read_text()) if path.is_file() else {}
    stored.update(fields)
    Settings.model_validate(stored)  # reject bad values before writing
    data_dir.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(stored, indent=2))
    return get_config(data_dir)
