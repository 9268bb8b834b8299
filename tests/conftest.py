"""
Shared fixtures for the Aria test suite.

Provides explicit configs (never read from the environment), capability
builders, and a runtime wired with a fixed resource monitor so individual
test modules can focus on behavior rather than setup.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Optional

import pytest

from aria.capabilities.registry import CapabilityDescriptor, CapabilityRegistry
from aria.config import (
    AdaptationConfig,
    AgentConfig,
    AriaConfig,
    CheckpointConfig,
    ClaudeConfig,
    MonitoringConfig,
    SafetyConfig,
)
from aria.harness.safety import SafetyGate
from aria.memory.bounded import BoundedMemoryStore
from aria.runtime import AgentRuntime


# ---------------------------------------------------------------------------
# Capability helpers
# ---------------------------------------------------------------------------

def make_capability(
    capability_id: str = "echo",
    category: str = "file",
    execute: Optional[Callable[[dict[str, Any]], Any]] = None,
    **kwargs: Any,
) -> CapabilityDescriptor:
    """Build a capability whose default handler echoes its parameters."""
    return CapabilityDescriptor(
        id=capability_id,
        name=kwargs.pop("name", capability_id.replace("_", " ").title()),
        category=category,
        execute=execute or (lambda params: {"echo": params}),
        **kwargs,
    )


class StaticResources:
    """Resource monitor stand-in with fixed, healthy readings."""

    def __init__(self, memory: float = 0.1, cpu: float = 0.1) -> None:
        self.memory = memory
        self.cpu = cpu

    def memory_ratio(self) -> float:
        return self.memory

    def cpu_ratio(self) -> float:
        return self.cpu


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------

def build_config(tmp_path: Path, **agent_overrides: Any) -> AriaConfig:
    agent_values: dict[str, Any] = {
        "name": "TestAria",
        "description": "test agent",
        "capabilities": [],
        "safety_level": "medium",
        "learning_enabled": True,
        "max_memory_size": 100,
    }
    agent_values.update(agent_overrides)
    return AriaConfig(
        agent=AgentConfig(**agent_values),
        safety=SafetyConfig(capability_default_timeout=2.0, scan_dangerous_inputs=True),
        adaptation=AdaptationConfig(),
        monitoring=MonitoringConfig(),
        claude=ClaudeConfig(api_key=None),
        checkpoint=CheckpointConfig(directory=tmp_path / "checkpoints", max_checkpoints=3),
    )


@pytest.fixture()
def aria_config(tmp_path: Path) -> AriaConfig:
    return build_config(tmp_path)


@pytest.fixture()
def safety_config() -> SafetyConfig:
    return SafetyConfig(capability_default_timeout=2.0, scan_dangerous_inputs=True)


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def registry() -> CapabilityRegistry:
    return CapabilityRegistry()


@pytest.fixture()
def gate(safety_config: SafetyConfig) -> SafetyGate:
    return SafetyGate(safety_config, level="medium")


@pytest.fixture()
def memory() -> BoundedMemoryStore:
    return BoundedMemoryStore(capacity=10)


@pytest.fixture()
def catalog() -> list[CapabilityDescriptor]:
    return [
        make_capability(
            "file_echo",
            category="file",
            parameter_schema={
                "type": "object",
                "properties": {"path": {"type": "string"}},
                "required": ["path"],
            },
        ),
        make_capability("web_echo", category="web"),
        make_capability("code_echo", category="code"),
    ]


@pytest.fixture()
def runtime(aria_config: AriaConfig, catalog: list[CapabilityDescriptor]) -> AgentRuntime:
    return AgentRuntime(aria_config, catalog=catalog, resource_monitor=StaticResources())


@pytest.fixture()
def capability_factory() -> Callable[..., CapabilityDescriptor]:
    return make_capability


@pytest.fixture()
def config_factory(tmp_path: Path) -> Callable[..., AriaConfig]:
    return lambda **overrides: build_config(tmp_path, **overrides)


@pytest.fixture()
def static_resources() -> StaticResources:
    return StaticResources()
