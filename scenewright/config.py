"""Application configuration (LLM connection, memory budgets, context order).

Resolution order, lowest priority first:
  1. built-in defaults (_CONFIG_DEFAULTS)
  2. stored config.json in the data directory (partial, merged key-by-key)
  3. environment variables, after loading .env:
       SCENEWRIGHT_LLM_URL, SCENEWRIGHT_LLM_API_KEY, SCENEWRIGHT_LLM_FORMAT,
       SCENEWRIGHT_LLM_MODEL, SCENEWRIGHT_LLM_TIMEOUT
"""

import copy
import json
import os
from pathlib import Path
from typing import Any, Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from scenewright.models import ContextKind


class MemorySettings(BaseModel):
    """Character budgets and thresholds for rolling memory refresh."""

    scene_source_chars: int = Field(12_000, ge=1)
    chapter_source_chars: int = Field(18_000, ge=1)
    chapter_chunk_chars: int = Field(6_000, ge=1)
    workshop_source_chars: int = Field(12_000, ge=1)
    workshop_summary_chars: int = Field(3_200, ge=1)
    scene_summary_chars: int = Field(2_200, ge=1)
    chapter_summary_chars: int = Field(2_600, ge=1)
    min_delta_messages: int = Field(4, ge=1)
    delta_window: int = Field(18, ge=1)


class LLMConnection(BaseModel):
    provider_url: str = ""
    api_key: str = ""
    provider_format: Literal["koboldcpp", "openai"] = "openai"
    model: str = ""
    timeout: float = 120.0


class AppConfig(BaseModel):
    llm: LLMConnection = Field(default_factory=LLMConnection)
    memory: MemorySettings = Field(default_factory=MemorySettings)
    context_section_order: list[ContextKind] = Field(
        default_factory=lambda: [
            ContextKind.COMPENDIUM,
            ContextKind.SCENE_SUMMARY,
            ContextKind.CHAPTER_SUMMARY,
        ]
    )
    rolling_memory_first: bool = True


_CONFIG_DEFAULTS: dict[str, Any] = AppConfig().model_dump(mode="json")

_ENV_OVERRIDES: dict[str, str] = {
    "SCENEWRIGHT_LLM_URL": "provider_url",
    "SCENEWRIGHT_LLM_API_KEY": "api_key",
    "SCENEWRIGHT_LLM_FORMAT": "provider_format",
    "SCENEWRIGHT_LLM_MODEL": "model",
    "SCENEWRIGHT_LLM_TIMEOUT": "timeout",
}


def _config_path(data_dir: Path) -> Path:
    return data_dir / "config.json"


def _merge(config: dict[str, Any], fields: dict[str, Any]) -> None:
    """Nested dicts merge key-by-key; lists and scalars are replaced."""
    for key, value in fields.items():
        if isinstance(value, dict) and isinstance(config.get(key), dict):
            config[key].update(value)
        else:
            config[key] = value


def get_config(data_dir: Path | None = None) -> AppConfig:
    """Read config, returning defaults merged with stored values and env overrides."""
    load_dotenv()
    config = copy.deepcopy(_CONFIG_DEFAULTS)
    if data_dir is not None:
        path = _config_path(data_dir)
        if path.is_file():
            _merge(config, json.loads(path.read_text()))
    for env_name, key in _ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            config["llm"][key] = value
    return AppConfig.model_validate(config)


def update_config(data_dir: Path, fields: dict[str, Any]) -> AppConfig:
    """Merge fields into the stored config and persist. Returns the full config."""
    path = _config_path(data_dir)
    stored: dict[str, Any] = json.loads(path.read_text()) if path.is_file() else {}
    _merge(stored, fields)
    merged = copy.deepcopy(_CONFIG_DEFAULTS)
    _merge(merged, stored)
    AppConfig.model_validate(merged)  # reject invalid updates before writing
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(stored, indent=2))
    return get_config(data_dir)
