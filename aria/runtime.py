"""
AgentRuntime — the integration that turns the subsystems into one agent.

Each module on its own is a component: the registry holds capabilities, the
decision engine picks an action, the dispatcher runs it, memory records it,
adaptation learns from it and monitoring watches it. This class owns one of
each and runs them as a single loop per request:

  user Message → Decision → DispatchResult → assistant Message
      → conversation MemoryRecord → performance counters
      → adaptation (directives for the next cycle) → monitoring sample

The runtime is responsible for:
  1. Building every subsystem from ``AriaConfig`` with its own section
  2. Keeping the message / decision / memory triple consistent per request
  3. Applying adaptation directives between requests
  4. Exporting and importing the full state document

Requests are serialized: one ``asyncio.Lock`` is held around the whole loop,
so a conversation never interleaves two requests. State export and import
take the same lock.
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Iterable, Literal, Optional, Union

import structlog
from pydantic import BaseModel, Field, ValidationError

from aria.api.claude import ClaudeClassifier, ClaudeEngine, ClaudeGenerator
from aria.api.local import EchoGenerator
from aria.capabilities.builtin import builtin_capabilities
from aria.capabilities.registry import CapabilityDescriptor, CapabilityRegistry
from aria.cognition.adaptation import AdaptationContext, AdaptationDirective, AdaptationEngine, LearningData
from aria.cognition.decision import Classifier, DecisionContext, DecisionEngine
from aria.config import AriaConfig
from aria.errors import StateImportError
from aria.harness.dispatcher import DispatchStatus, Dispatcher, TextGenerator
from aria.harness.safety import SafetyGate
from aria.memory.bounded import BoundedMemoryStore
from aria.metrics import MetricsRegistry
from aria.monitoring import MonitoringService, PerformanceSample
from aria.resources import ResourceMonitor
from aria.types import (
    AgentResponse,
    Complexity,
    Decision,
    DecisionType,
    MemoryKind,
    MemoryRecord,
    Message,
    Role,
    new_id,
)

logger = structlog.get_logger(__name__)

STATE_FORMAT_VERSION = 1
LEARNING_PROGRESS_STEP = 0.1


# ---------------------------------------------------------------------------
# State document
# ---------------------------------------------------------------------------


class ConfigSnapshot(BaseModel):
    """The part of the agent configuration that travels with exported state."""

    name: str
    description: str = ""
    capabilities: list[str] = Field(default_factory=list)
    safety_level: Literal["low", "medium", "high"] = "medium"
    learning_enabled: bool = True
    max_memory_size: int = Field(100, ge=1)


class PerformanceCounters(BaseModel):
    total_interactions: int = Field(0, ge=0)
    successful_actions: int = Field(0, ge=0)
    average_response_time_ms: float = Field(0.0, ge=0.0)
    learning_progress: float = Field(0.0, ge=0.0)

    @property
    def success_rate(self) -> float:
        if self.total_interactions == 0:
            return 1.0
        return self.successful_actions / self.total_interactions


class MetricsSnapshot(BaseModel):
    """Counter, gauge and histogram values carried across export and import."""

    counters: dict[str, int] = Field(default_factory=dict)
    gauges: dict[str, float] = Field(default_factory=dict)
    histograms: dict[str, dict[str, float]] = Field(default_factory=dict)


class AgentStateDocument(BaseModel):
    """Everything ``export_state()`` writes and ``import_state()`` accepts."""

    id: str
    config: ConfigSnapshot
    messages: list[Message] = Field(default_factory=list)
    memory: list[MemoryRecord] = Field(default_factory=list)
    decisions: list[Decision] = Field(default_factory=list)
    performance: PerformanceCounters = Field(default_factory=PerformanceCounters)
    learning: Optional[dict[str, Any]] = None
    metrics: Optional[MetricsSnapshot] = None
    exported_at: float = Field(default_factory=time.time)
    format_version: int = STATE_FORMAT_VERSION


# ---------------------------------------------------------------------------
# Runtime
# ---------------------------------------------------------------------------


class AgentRuntime:
    """One agent: its capabilities, memory, learning state and health."""

    def __init__(
        self,
        config: Optional[AriaConfig] = None,
        *,
        catalog: Optional[Iterable[CapabilityDescriptor]] = None,
        classifier: Optional[Classifier] = None,
        generator: Optional[TextGenerator] = None,
        resource_monitor: Optional[ResourceMonitor] = None,
    ):
        self._config = config or AriaConfig()
        agent_cfg = self._config.agent

        self.id = new_id()
        self.name = agent_cfg.name
        self.description = agent_cfg.description
        self.metrics = MetricsRegistry()
        self.resources = resource_monitor or ResourceMonitor()

        # Every capability this runtime can resolve by id; the registry holds
        # the enabled subset.
        self._catalog: dict[str, CapabilityDescriptor] = {}
        for capability in (builtin_capabilities() if catalog is None else catalog):
            self._catalog[capability.id] = capability
        self.registry = CapabilityRegistry()
        self.registry.replace(self._resolve_capabilities(agent_cfg.capabilities or list(self._catalog)))

        if (classifier is None or generator is None) and self._config.claude.is_available:
            engine = ClaudeEngine(self._config.claude)
            classifier = classifier or ClaudeClassifier(engine, self._config.claude)
            generator = generator or ClaudeGenerator(engine, self._config.claude, agent_name=self.name)

        self.safety_gate = SafetyGate(self._config.safety, level=agent_cfg.safety_level)
        self.memory = BoundedMemoryStore(agent_cfg.max_memory_size)
        self.decision_engine = DecisionEngine(
            self.registry,
            self.safety_gate,
            classifier=classifier,
            learning_enabled=agent_cfg.learning_enabled,
            classifier_timeout=agent_cfg.classifier_timeout_seconds,
        )
        self.dispatcher = Dispatcher(
            self.registry,
            self.safety_gate,
            self.memory,
            config=self._config.safety,
            generator=generator or EchoGenerator(),
            generator_timeout=agent_cfg.generator_timeout_seconds,
            metrics=self.metrics,
        )
        self.adaptation = AdaptationEngine(self._config.adaptation)
        self.monitoring = MonitoringService(self._config.monitoring)

        self._messages: list[Message] = []
        self._decisions: list[Decision] = []
        self._performance = PerformanceCounters()
        self._directives: frozenset[AdaptationDirective] = frozenset()
        self._lock = asyncio.Lock()

        logger.info(
            "runtime.initialized",
            agent=self.name,
            capabilities=self.registry.count,
            safety_level=agent_cfg.safety_level,
            memory_capacity=self.memory.capacity,
        )

    # -------------------------------------------------------------------------
    # The request loop
    # -------------------------------------------------------------------------

    async def process_message(self, text: str) -> AgentResponse:
        """
        Run one request through the full loop.

        Always returns a response: an unexpected fault becomes an assistant
        message describing the error, and the triple is still recorded.
        """
        async with self._lock:
            start = time.monotonic()
            user_message = Message(role=Role.USER, content=text)
            self._messages.append(user_message)

            decision: Optional[Decision] = None
            status = DispatchStatus.EXECUTION_FAILED
            try:
                context = self._decision_context()
                decision = await self.decision_engine.decide(text, context)
                self._decisions.append(decision)
                result = await self.dispatcher.dispatch(decision, context.to_dict())
                reply_text, status = result.text, result.status
            except Exception as e:
                logger.error("runtime.process_failed", error=str(e), exc_info=True)
                reply_text = f"I encountered an error: {e}"
                if decision is None:
                    decision = Decision(
                        type=DecisionType.REPLY,
                        confidence=0.0,
                        reasoning=f"Unhandled error before a decision was made: {type(e).__name__}",
                        action={"message": text},
                    )
                    self._decisions.append(decision)

            elapsed_ms = (time.monotonic() - start) * 1000.0
            success = status == DispatchStatus.OK
            assistant_message = Message(
                role=Role.ASSISTANT,
                content=reply_text,
                metadata={
                    "decision_id": decision.id,
                    "response_time_ms": round(elapsed_ms, 2),
                    "status": status.value,
                },
            )
            self._messages.append(assistant_message)
            self.memory.append(MemoryRecord(
                kind=MemoryKind.CONVERSATION,
                payload={
                    "user_message": user_message.model_dump(mode="json"),
                    "assistant_message": assistant_message.model_dump(mode="json"),
                    "decision": decision.model_dump(mode="json"),
                },
            ))

            self._update_performance(elapsed_ms, success, decision)
            try:
                self._integrate(user_message, assistant_message, decision, elapsed_ms)
            except Exception:
                logger.warning("runtime.integrate_failed", decision_id=decision.id, exc_info=True)

            logger.info(
                "runtime.processed",
                decision_id=decision.id,
                decision_type=decision.type.value,
                status=status.value,
                elapsed_ms=round(elapsed_ms, 1),
            )
            return AgentResponse(
                text=reply_text,
                decision_id=decision.id,
                user_message_id=user_message.id,
                assistant_message_id=assistant_message.id,
                success=success,
            )

    def _decision_context(self) -> DecisionContext:
        agent_cfg = self._config.agent
        return DecisionContext(
            recent_messages=self._messages[-agent_cfg.recent_messages_window:],
            recent_memory=self.memory.recent(agent_cfg.recent_memory_window),
            performance_summary=self._performance.model_dump(),
            available_capability_ids=self.registry.ids(),
        )

    def _update_performance(self, elapsed_ms: float, success: bool, decision: Decision) -> None:
        perf = self._performance
        perf.total_interactions += 1
        if success:
            perf.successful_actions += 1
        total = perf.total_interactions
        perf.average_response_time_ms = (
            perf.average_response_time_ms * (total - 1) + elapsed_ms
        ) / total
        if decision.type == DecisionType.ADAPT and success:
            perf.learning_progress = round(perf.learning_progress + LEARNING_PROGRESS_STEP, 4)

        self.metrics.inc("interactions_total")
        self.metrics.inc("interactions_ok" if success else "interactions_failed")
        self.metrics.observe("response_ms", elapsed_ms)
        self.metrics.set_gauge("memory_utilization", self.memory.utilization)

    def _integrate(
        self,
        user_message: Message,
        assistant_message: Message,
        decision: Decision,
        elapsed_ms: float,
    ) -> None:
        """Post-response work: learning, directives, and the monitoring sample."""
        perf = self._performance
        if self.decision_engine.learning_enabled:
            outcome = self.adaptation.learn(
                user_message,
                assistant_message,
                decision,
                AdaptationContext(
                    response_time_ms=elapsed_ms,
                    average_response_time_ms=perf.average_response_time_ms,
                    total_interactions=perf.total_interactions,
                    successful_actions=perf.successful_actions,
                    memory_size=self.memory.size,
                ),
            )
            if outcome.new_patterns:
                self.memory.append(MemoryRecord(
                    kind=MemoryKind.PATTERN,
                    payload={"decision_id": decision.id, "patterns": outcome.new_patterns},
                ))
            self._apply_directives(outcome.directives, decision)

        total = perf.total_interactions
        success_rate = perf.successful_actions / total
        self.monitoring.record(PerformanceSample(
            response_time_ms=elapsed_ms,
            memory_usage_ratio=self.resources.memory_ratio(),
            cpu_usage_ratio=self.resources.cpu_ratio(),
            success_rate=success_rate,
            error_rate=1.0 - success_rate,
            active_connections=1,
            queue_size=0,
        ))

    def _apply_directives(self, directives: list[AdaptationDirective], decision: Decision) -> None:
        """
        Make the next decision cycle reflect the current directive set.

        A directive that stops firing lifts its effect, so each application is
        idempotent and scoped to the next cycle.
        """
        active = frozenset(directives)
        self.decision_engine.set_complexity_ceiling(
            Complexity.SIMPLE if AdaptationDirective.REDUCE_COMPLEXITY in active else None
        )
        self.safety_gate.set_strict(AdaptationDirective.INCREASE_SAFETY_CHECKS in active)
        if AdaptationDirective.CLEANUP_MEMORY in active:
            self.memory.prune(self._config.adaptation.memory_cleanup_threshold // 2)

        if active != self._directives:
            self.memory.append(MemoryRecord(
                kind=MemoryKind.ADAPTATION_EVENT,
                payload={
                    "decision_id": decision.id,
                    "directives": sorted(d.value for d in active),
                    "previous": sorted(d.value for d in self._directives),
                },
            ))
            logger.info(
                "runtime.directives_changed",
                directives=sorted(d.value for d in active),
            )
            self._directives = active

    # -------------------------------------------------------------------------
    # Capabilities
    # -------------------------------------------------------------------------

    def _resolve_capabilities(self, capability_ids: Iterable[str]) -> list[CapabilityDescriptor]:
        resolved = []
        for capability_id in dict.fromkeys(capability_ids):
            capability = self._catalog.get(capability_id)
            if capability is None:
                logger.warning("runtime.unknown_capability", capability_id=capability_id)
                continue
            resolved.append(capability)
        return resolved

    def add_capability(self, capability: CapabilityDescriptor) -> None:
        """Make ``capability`` known and enabled. Replaces one with the same id."""
        self._catalog[capability.id] = capability
        self.registry.register(capability, allow_override=True)

    def remove_capability(self, capability_id: str) -> bool:
        """Disable ``capability_id``. It stays resolvable for later imports."""
        return self.registry.unregister(capability_id)

    @property
    def catalog_ids(self) -> list[str]:
        return list(self._catalog)

    # -------------------------------------------------------------------------
    # Read paths
    # -------------------------------------------------------------------------

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    @property
    def decisions(self) -> list[Decision]:
        return list(self._decisions)

    @property
    def performance(self) -> PerformanceCounters:
        return self._performance.model_copy()

    @property
    def active_directives(self) -> list[str]:
        return sorted(d.value for d in self._directives)

    def clear_memory(self) -> int:
        return self.memory.clear()

    def get_state(self) -> dict[str, Any]:
        """Compact status view for dashboards and the CLI."""
        health = self.monitoring.health()
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "capabilities": self.registry.ids(),
            "safety_level": self.safety_gate.level,
            "effective_safety_level": self.safety_gate.effective_level,
            "learning_enabled": self.decision_engine.learning_enabled,
            "messages": len(self._messages),
            "decisions": len(self._decisions),
            "memory": {
                "size": self.memory.size,
                "capacity": self.memory.capacity,
                "evicted_total": self.memory.evicted_total,
            },
            "dispatch": self.dispatcher.stats,
            "metrics": self.metrics.snapshot(),
            "performance": self._performance.model_dump(),
            "directives": self.active_directives,
            "health": health.status,
            "trend": self.monitoring.trend(),
        }

    # -------------------------------------------------------------------------
    # Export / import
    # -------------------------------------------------------------------------

    def _config_snapshot(self) -> ConfigSnapshot:
        return ConfigSnapshot(
            name=self.name,
            description=self.description,
            capabilities=self.registry.ids(),
            safety_level=self.safety_gate.level,
            learning_enabled=self.decision_engine.learning_enabled,
            max_memory_size=self.memory.capacity,
        )

    async def export_state(self) -> dict[str, Any]:
        """
        Snapshot the full agent state as a JSON-ready document.

        Waits for any in-flight request to finish, so the document never holds
        a user message without its decision and reply.
        """
        async with self._lock:
            return self._build_document().model_dump(mode="json")

    async def export_state_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(await self.export_state(), indent=indent)

    def _build_document(self) -> AgentStateDocument:
        return AgentStateDocument(
            id=self.id,
            config=self._config_snapshot(),
            messages=list(self._messages),
            memory=self.memory.all(),
            decisions=list(self._decisions),
            performance=self._performance.model_copy(),
            learning=self.adaptation.export_data(),
            metrics=MetricsSnapshot.model_validate(self.metrics.snapshot()),
        )

    async def import_state(self, document: Union[str, bytes, dict[str, Any]]) -> None:
        """
        Replace the whole agent state with ``document``.

        The document is validated before anything changes: on a malformed
        document ``StateImportError`` is raised and the current state is kept.
        Capability ids in the imported config are resolved against the
        capabilities this runtime knows; unknown ids are skipped.

        The swap holds the request lock, so it waits for an in-flight request
        and no request starts until the new state is fully in place.
        """
        try:
            if isinstance(document, (str, bytes)):
                parsed = AgentStateDocument.model_validate_json(document)
            else:
                parsed = AgentStateDocument.model_validate(document)
            if parsed.learning is not None:
                LearningData.model_validate(parsed.learning)
        except ValidationError as e:
            logger.warning("runtime.import_rejected", errors=e.error_count())
            raise StateImportError(f"Invalid state format: {e.error_count()} validation error(s)") from e

        async with self._lock:
            self._apply_document(parsed)

    def _apply_document(self, parsed: AgentStateDocument) -> None:
        cfg = parsed.config
        capabilities = self._resolve_capabilities(cfg.capabilities)
        memory = BoundedMemoryStore(cfg.max_memory_size)
        memory.load(parsed.memory)

        # Validation is done; from here on nothing can fail on document content.
        self.id = parsed.id
        self.name = cfg.name
        self.description = cfg.description
        self.registry.replace(capabilities)
        self.safety_gate.set_level(cfg.safety_level)
        self.safety_gate.set_strict(False)
        self.decision_engine.learning_enabled = cfg.learning_enabled
        self.decision_engine.set_complexity_ceiling(None)
        self.memory = memory
        self.dispatcher.set_memory(memory)
        self._messages = list(parsed.messages)
        self._decisions = list(parsed.decisions)
        self._performance = parsed.performance.model_copy()
        self._directives = frozenset()
        if parsed.learning is not None:
            self.adaptation.import_data(parsed.learning)
        self.metrics.restore(parsed.metrics.model_dump() if parsed.metrics else {})
        self.metrics.set_gauge("memory_utilization", memory.utilization)

        logger.info(
            "runtime.imported",
            agent=self.name,
            capabilities=len(capabilities),
            messages=len(self._messages),
            memory=memory.size,
        )
