# aria/config.py
"""
Configuration for the Aria runtime.

All configuration flows through this module. Values are loaded from environment
variables (via .env file) and validated with Pydantic. Every subsystem receives
its own section; ``AriaConfig`` composes them.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Literal, Optional

import structlog
from pydantic import BeforeValidator, Field, model_validator
from pydantic_settings import BaseSettings, NoDecode

logger = structlog.get_logger(__name__)

# Resolve .env relative to the project root (one level above aria/ package),
# so the config works regardless of the user's current working directory.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"

SAFETY_LEVELS = ("low", "medium", "high")


def _coerce_str_list(value: object) -> list[str]:
    """Coerce env-var values into a list of stripped, non-empty strings.

    Accepts:
      - A single str         → ["value"]
      - Comma-separated str  → ["a", "b"]
      - JSON array str       → ["a", "b"]
      - An existing list     → passthrough with str coercion

    Fields using this are marked ``NoDecode`` so pydantic-settings hands the
    raw env string over instead of JSON-decoding it first.
    """
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if str(item).strip()]
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return []
        if stripped.startswith("["):
            try:
                parsed = json.loads(stripped)
            except json.JSONDecodeError:
                parsed = None
            if isinstance(parsed, list):
                return _coerce_str_list(parsed)
        if "," in stripped:
            return [part.strip() for part in stripped.split(",") if part.strip()]
        return [stripped]
    return []


StrList = Annotated[list[str], NoDecode, BeforeValidator(_coerce_str_list)]


class AgentConfig(BaseSettings):
    """Identity and decision-policy settings for one agent instance."""

    name: str = Field("Aria", alias="ARIA_AGENT_NAME")
    description: str = Field(
        "Interactive agent with capability dispatch and adaptive learning",
        alias="ARIA_AGENT_DESCRIPTION",
    )
    # Ids of capabilities to enable. Empty means every capability in the catalog.
    capabilities: StrList = Field(default_factory=list, alias="ARIA_CAPABILITIES")
    safety_level: Literal["low", "medium", "high"] = Field("medium", alias="ARIA_SAFETY_LEVEL")
    learning_enabled: bool = Field(True, alias="ARIA_LEARNING_ENABLED")
    max_memory_size: int = Field(100, alias="ARIA_MAX_MEMORY_SIZE")

    # Context handed to the classifier on every decision
    recent_messages_window: int = Field(10, alias="ARIA_RECENT_MESSAGES_WINDOW")
    recent_memory_window: int = Field(20, alias="ARIA_RECENT_MEMORY_WINDOW")

    classifier_timeout_seconds: float = Field(15.0, alias="ARIA_CLASSIFIER_TIMEOUT")
    generator_timeout_seconds: float = Field(60.0, alias="ARIA_GENERATOR_TIMEOUT")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "AgentConfig":
        self.max_memory_size = max(1, int(self.max_memory_size))
        self.recent_messages_window = max(1, int(self.recent_messages_window))
        self.recent_memory_window = max(1, int(self.recent_memory_window))
        self.classifier_timeout_seconds = max(0.1, float(self.classifier_timeout_seconds))
        self.generator_timeout_seconds = max(0.1, float(self.generator_timeout_seconds))
        return self


class SafetyConfig(BaseSettings):
    """Configuration for the safety gate and capability execution limits."""

    capability_default_timeout: float = Field(30.0, alias="ARIA_CAPABILITY_TIMEOUT")
    max_concurrent_sync: int = Field(8, alias="ARIA_MAX_CONCURRENT_SYNC")
    max_output_length: int = Field(25000, alias="ARIA_MAX_OUTPUT_LENGTH")
    # Scan string parameters for destructive shell/SQL fragments on top of
    # each capability's own safety predicate.
    scan_dangerous_inputs: bool = Field(True, alias="ARIA_SCAN_DANGEROUS_INPUTS")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "SafetyConfig":
        self.capability_default_timeout = max(0.01, float(self.capability_default_timeout))
        self.max_concurrent_sync = max(1, int(self.max_concurrent_sync))
        self.max_output_length = max(100, int(self.max_output_length))
        return self


class AdaptationConfig(BaseSettings):
    """Configuration for the pattern table and adaptation rules."""

    history_size: int = Field(1000, alias="ARIA_ADAPTATION_HISTORY_SIZE")
    base_confidence: float = Field(0.5, alias="ARIA_PATTERN_BASE_CONFIDENCE")
    confidence_floor: float = Field(0.1, alias="ARIA_PATTERN_CONFIDENCE_FLOOR")
    confidence_boost: float = Field(0.1, alias="ARIA_PATTERN_CONFIDENCE_BOOST")
    confidence_decay: float = Field(0.05, alias="ARIA_PATTERN_CONFIDENCE_DECAY")
    # Decisions above this confidence corroborate their patterns.
    corroboration_threshold: float = Field(0.7, alias="ARIA_PATTERN_CORROBORATION_THRESHOLD")
    # Decisions above this confidence count as successes in the history.
    success_threshold: float = Field(0.5, alias="ARIA_ADAPTATION_SUCCESS_THRESHOLD")

    # Rule thresholds
    slow_response_ms: float = Field(5000.0, alias="ARIA_ADAPT_SLOW_RESPONSE_MS")
    min_success_rate: float = Field(0.8, alias="ARIA_ADAPT_MIN_SUCCESS_RATE")
    memory_cleanup_threshold: int = Field(1000, alias="ARIA_ADAPT_MEMORY_CLEANUP_THRESHOLD")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "AdaptationConfig":
        self.history_size = max(1, int(self.history_size))
        self.confidence_floor = max(0.0, min(1.0, float(self.confidence_floor)))
        self.base_confidence = max(self.confidence_floor, min(1.0, float(self.base_confidence)))
        self.confidence_boost = max(0.0, float(self.confidence_boost))
        self.confidence_decay = max(0.0, float(self.confidence_decay))
        self.memory_cleanup_threshold = max(1, int(self.memory_cleanup_threshold))
        return self


class MonitoringConfig(BaseSettings):
    """Configuration for health monitoring thresholds and sample retention."""

    window_size: int = Field(1000, alias="ARIA_MONITORING_WINDOW_SIZE")
    default_window_minutes: float = Field(60.0, alias="ARIA_MONITORING_WINDOW_MINUTES")
    response_time_ms: float = Field(5000.0, alias="ARIA_HEALTH_RESPONSE_TIME_MS")
    memory_usage: float = Field(0.8, alias="ARIA_HEALTH_MEMORY_USAGE")
    cpu_usage: float = Field(0.7, alias="ARIA_HEALTH_CPU_USAGE")
    error_rate: float = Field(0.1, alias="ARIA_HEALTH_ERROR_RATE")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "MonitoringConfig":
        self.window_size = max(1, int(self.window_size))
        self.default_window_minutes = max(0.0, float(self.default_window_minutes))
        return self


class ClaudeConfig(BaseSettings):
    """Connection settings for the Claude-backed classifier and generator (optional)."""

    api_key: Optional[str] = Field(None, alias="ANTHROPIC_API_KEY")
    model: str = Field("claude-sonnet-4-5-20250929", alias="ARIA_MODEL")
    max_tokens: int = Field(1024, alias="ARIA_MAX_TOKENS")
    classifier_temperature: float = Field(0.3, alias="ARIA_CLASSIFIER_TEMPERATURE")
    generator_temperature: float = Field(0.7, alias="ARIA_GENERATOR_TEMPERATURE")
    request_timeout_seconds: float = Field(60.0, alias="ARIA_REQUEST_TIMEOUT_SECONDS")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @property
    def is_available(self) -> bool:
        return bool(self.api_key)


class CheckpointConfig(BaseSettings):
    """Where exported runtime state is persisted between sessions."""

    directory: Path = Field(Path("./aria_data/checkpoints"), alias="ARIA_CHECKPOINT_DIR")
    max_checkpoints: int = Field(10, alias="ARIA_MAX_CHECKPOINTS")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}


class AriaConfig:
    """
    Master configuration that composes all subsystem configs.

    Every component receives its section from here. Nothing is read from
    process-wide state after construction.
    """

    def __init__(
        self,
        agent: Optional[AgentConfig] = None,
        safety: Optional[SafetyConfig] = None,
        adaptation: Optional[AdaptationConfig] = None,
        monitoring: Optional[MonitoringConfig] = None,
        claude: Optional[ClaudeConfig] = None,
        checkpoint: Optional[CheckpointConfig] = None,
    ):
        self.agent = agent or AgentConfig()
        self.safety = safety or SafetyConfig()
        self.adaptation = adaptation or AdaptationConfig()
        self.monitoring = monitoring or MonitoringConfig()
        self.claude = claude or ClaudeConfig()
        self.checkpoint = checkpoint or CheckpointConfig()

        if not self.checkpoint.directory.is_absolute():
            self.checkpoint.directory = (_PROJECT_ROOT / self.checkpoint.directory).resolve()

    def __repr__(self) -> str:
        return (
            f"AriaConfig(agent={self.agent.name}, "
            f"safety_level={self.agent.safety_level}, "
            f"memory={self.agent.max_memory_size}, "
            f"claude={'on' if self.claude.is_available else 'off'})"
        )
