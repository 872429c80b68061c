"""Tests for config loading: defaults, stored merge, env overrides."""

import json

import pytest
from pydantic import ValidationError

from scenewright import config
from scenewright.models import ContextKind


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in config._ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(config, "load_dotenv", lambda *a, **kw: False)


def test_get_config_defaults(tmp_path):
    cfg = config.get_config(tmp_path)
    assert cfg.llm.provider_format == "openai"
    assert cfg.memory.min_delta_messages == 4
    assert cfg.memory.scene_summary_chars == 2200
    assert cfg.context_section_order == [
        ContextKind.COMPENDIUM, ContextKind.SCENE_SUMMARY, ContextKind.CHAPTER_SUMMARY,
    ]
    assert cfg.rolling_memory_first is True


def test_update_config_partial_nested_merge(tmp_path):
    config.update_config(tmp_path, {"memory": {"min_delta_messages": 6}})
    config.update_config(tmp_path, {"memory": {"delta_window": 10}})

    cfg = config.get_config(tmp_path)
    assert cfg.memory.min_delta_messages == 6
    assert cfg.memory.delta_window == 10
    assert cfg.memory.scene_source_chars == 12000


def test_update_config_stores_only_overrides(tmp_path):
    config.update_config(tmp_path, {"llm": {"provider_url": "http://localhost:5001"}})
    stored = json.loads((tmp_path / "config.json").read_text())
    assert stored == {"llm": {"provider_url": "http://localhost:5001"}}


def test_update_config_rejects_invalid_values(tmp_path):
    with pytest.raises(ValidationError):
        config.update_config(tmp_path, {"memory": {"min_delta_messages": 0}})
    assert not (tmp_path / "config.json").exists()


def test_section_order_is_replaced(tmp_path):
    cfg = config.update_config(tmp_path, {"context_section_order": ["chapter_summary"]})
    assert cfg.context_section_order == [ContextKind.CHAPTER_SUMMARY]


def test_env_overrides_stored_values(tmp_path, monkeypatch):
    config.update_config(tmp_path, {"llm": {"provider_url": "http://stored"}})
    monkeypatch.setenv("SCENEWRIGHT_LLM_URL", "http://from-env")
    monkeypatch.setenv("SCENEWRIGHT_LLM_TIMEOUT", "30")

    cfg = config.get_config(tmp_path)
    assert cfg.llm.provider_url == "http://from-env"
    assert cfg.llm.timeout == 30.0


def test_get_config_without_data_dir():
    assert config.get_config().memory.chapter_chunk_chars == 6000
