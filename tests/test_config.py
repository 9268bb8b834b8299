"""Tests for aria.config — environment-driven settings."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from aria.config import (
    AdaptationConfig,
    AgentConfig,
    AriaConfig,
    CheckpointConfig,
    ClaudeConfig,
    MonitoringConfig,
    SafetyConfig,
)


def test_agent_defaults(monkeypatch):
    for var in ("ARIA_AGENT_NAME", "ARIA_CAPABILITIES", "ARIA_SAFETY_LEVEL", "ARIA_MAX_MEMORY_SIZE"):
        monkeypatch.delenv(var, raising=False)
    cfg = AgentConfig()
    assert cfg.name == "Aria"
    assert cfg.capabilities == []
    assert cfg.safety_level == "medium"
    assert cfg.learning_enabled is True
    assert cfg.max_memory_size == 100


def test_agent_reads_environment(monkeypatch):
    monkeypatch.setenv("ARIA_AGENT_NAME", "Nova")
    monkeypatch.setenv("ARIA_CAPABILITIES", "file_read, web_fetch")
    monkeypatch.setenv("ARIA_SAFETY_LEVEL", "high")
    monkeypatch.setenv("ARIA_LEARNING_ENABLED", "false")

    cfg = AgentConfig()

    assert cfg.name == "Nova"
    assert cfg.capabilities == ["file_read", "web_fetch"]
    assert cfg.safety_level == "high"
    assert cfg.learning_enabled is False


def test_single_capability_string(monkeypatch):
    monkeypatch.setenv("ARIA_CAPABILITIES", "code_analyze")
    assert AgentConfig().capabilities == ["code_analyze"]


def test_json_array_capabilities(monkeypatch):
    monkeypatch.setenv("ARIA_CAPABILITIES", '["file_read", " system_info "]')
    assert AgentConfig().capabilities == ["file_read", "system_info"]


def test_master_config_builds_with_capability_list_in_env(monkeypatch):
    monkeypatch.setenv("ARIA_CAPABILITIES", "file_read,web_fetch")
    cfg = AriaConfig()
    assert cfg.agent.capabilities == ["file_read", "web_fetch"]


def test_invalid_safety_level_rejected():
    with pytest.raises(ValidationError):
        AgentConfig(safety_level="extreme")


def test_limits_are_normalized():
    assert AgentConfig(max_memory_size=0).max_memory_size == 1
    assert SafetyConfig(max_output_length=5).max_output_length == 100
    assert AdaptationConfig(history_size=-3).history_size == 1
    assert MonitoringConfig(window_size=0).window_size == 1


def test_adaptation_base_confidence_respects_floor():
    cfg = AdaptationConfig(confidence_floor=0.3, base_confidence=0.1)
    assert cfg.base_confidence == 0.3


def test_claude_availability(monkeypatch):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    assert ClaudeConfig().is_available is False
    assert ClaudeConfig(api_key="sk-ant-test").is_available is True


def test_relative_checkpoint_directory_is_resolved():
    config = AriaConfig(checkpoint=CheckpointConfig(directory=Path("rel/ckpt")))
    assert config.checkpoint.directory.is_absolute()
    assert config.checkpoint.directory.parts[-2:] == ("rel", "ckpt")


def test_repr_mentions_claude_state():
    config = AriaConfig(claude=ClaudeConfig(api_key=None), checkpoint=CheckpointConfig(directory=Path("/tmp/x")))
    assert "claude=off" in repr(config)
