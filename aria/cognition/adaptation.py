"""
Adaptation Engine — learning from the shape of past requests.

After every interaction the runtime hands the engine the user message, the
reply, the decision and a snapshot of rolling performance. ``learn()`` then:

1. EXTRACTS lexical patterns: every bigram and trigram of the lower-cased
   message plus any of a fixed list of key phrases it contains.
2. UPDATES the pattern table. An unseen key starts at confidence 0.5; every
   occurrence then moves it +0.1 (capped at 1.0) when the decision was
   confident (> 0.7) or −0.05 (floored at 0.1) when it was not.
3. RECORDS {decision type, confidence, response time, success} in a rolling
   history capped at 1000 entries.
4. EVALUATES adaptation rules. Every rule whose predicate holds fires, in
   ascending priority. Each action is a named, idempotent hook that yields an
   ``AdaptationDirective`` for the runtime to apply to the next decision
   cycle. A rule that raises is logged and skipped; the rest still run.

Every step is independently fallible. A failure in one is logged and the
remaining steps still run; ``learn()`` itself never raises.

The pattern table is the only state shared between concurrent ``learn()``
calls and it is guarded by a single writer lock, so occurrence counts and
confidence updates are never lost.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

import structlog
from pydantic import BaseModel, Field, ValidationError

from aria.config import AdaptationConfig
from aria.errors import StateImportError
from aria.types import Decision, Message

logger = structlog.get_logger(__name__)

KEY_PHRASES = (
    "help me", "how to", "what is", "can you", "please",
    "thank you", "i want", "i need", "show me", "tell me",
)

# Seed entries installed at construction and on reset. Only multi-word
# phrases are seeded because extraction never yields single words.
SEED_PATTERNS: dict[str, tuple[tuple[str, ...], float]] = {
    "greeting": (("good morning", "good afternoon", "good evening"), 0.9),
    "help_request": (("how do i", "can you help"), 0.8),
    "file_operation": (("read file", "write file", "delete file", "create file", "list files"), 0.7),
    "code_request": (("generate code", "write code", "create function"), 0.8),
    "system_command": (("run command",), 0.7),
}


def extract_patterns(content: str) -> list[str]:
    """Bigrams, then trigrams, then matching key phrases. May contain duplicates."""
    lowered = content.lower()
    words = lowered.split()
    patterns = [f"{words[i]} {words[i + 1]}" for i in range(len(words) - 1)]
    patterns.extend(
        f"{words[i]} {words[i + 1]} {words[i + 2]}" for i in range(len(words) - 2)
    )
    patterns.extend(phrase for phrase in KEY_PHRASES if phrase in lowered)
    return patterns


class AdaptationDirective(str, Enum):
    """Parameter changes the runtime applies before the next decision."""
    REDUCE_COMPLEXITY = "reduce_complexity"
    INCREASE_SAFETY_CHECKS = "increase_safety_checks"
    CLEANUP_MEMORY = "cleanup_memory"


@dataclass
class PatternEntry:
    """A lexical fragment and what it has tended to mean."""
    key: str
    intent: str
    confidence: float = 0.5
    occurrences: int = 0
    first_seen: float = field(default_factory=time.time)
    last_seen: float = field(default_factory=time.time)


@dataclass
class PerformanceRecord:
    """One entry in the rolling decision-performance history."""
    decision_type: str
    confidence: float
    response_time_ms: float
    success: bool
    timestamp: float = field(default_factory=time.time)


@dataclass
class AdaptationContext:
    """Rolling performance figures the rules are evaluated against."""
    response_time_ms: float = 0.0
    average_response_time_ms: float = 0.0
    total_interactions: int = 0
    successful_actions: int = 0
    memory_size: int = 0

    @property
    def success_rate(self) -> Optional[float]:
        if self.total_interactions <= 0:
            return None
        return self.successful_actions / self.total_interactions


@dataclass
class AdaptationRule:
    """A (predicate, action, priority) triple. Lower priority runs first."""
    name: str
    predicate: Callable[[AdaptationContext], bool]
    action: str
    priority: int


@dataclass
class IntentPrediction:
    intent: str
    confidence: float
    matched_pattern: str


@dataclass
class LearningOutcome:
    """What one ``learn()`` call did."""
    patterns: list[str] = field(default_factory=list)
    new_patterns: list[str] = field(default_factory=list)
    fired_rules: list[str] = field(default_factory=list)
    directives: list[AdaptationDirective] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class _PatternModel(BaseModel):
    key: str
    intent: str
    confidence: float = Field(ge=0.0, le=1.0)
    occurrences: int = Field(ge=0)
    first_seen: float = 0.0
    last_seen: float = 0.0


class _PerformanceModel(BaseModel):
    decision_type: str
    confidence: float
    response_time_ms: float = 0.0
    success: bool
    timestamp: float = 0.0


class LearningData(BaseModel):
    """Serialized pattern table and performance history."""
    patterns: list[_PatternModel] = Field(default_factory=list)
    performance_history: list[_PerformanceModel] = Field(default_factory=list)
    rules: list[dict[str, Any]] = Field(default_factory=list)
    exported_at: float = Field(default_factory=time.time)


class AdaptationEngine:
    """
    Pattern table, performance history and rule-based adaptation.

    One engine per agent. ``learn()`` is the write path; ``predict_intent()``,
    ``performance_metrics()`` and ``patterns()`` are read paths.
    """

    def __init__(self, config: Optional[AdaptationConfig] = None):
        self._config = config or AdaptationConfig()
        self._patterns: dict[str, PatternEntry] = {}
        self._patterns_lock = threading.Lock()
        self._history: deque[PerformanceRecord] = deque(maxlen=self._config.history_size)
        self._history_lock = threading.Lock()
        self._rules: list[AdaptationRule] = []
        self._actions: dict[str, Callable[[AdaptationContext], AdaptationDirective]] = {
            "reduce_complexity": self._reduce_complexity,
            "increase_safety_checks": self._increase_safety_checks,
            "cleanup_memory": self._cleanup_memory,
        }

        self._install_seed_patterns()
        self._install_default_rules()

        logger.info(
            "adaptation.initialized",
            patterns=len(self._patterns),
            rules=len(self._rules),
            history_size=self._config.history_size,
        )

    def _install_seed_patterns(self) -> None:
        with self._patterns_lock:
            for intent, (phrases, confidence) in SEED_PATTERNS.items():
                for phrase in phrases:
                    self._patterns[phrase] = PatternEntry(
                        key=phrase, intent=intent, confidence=confidence,
                    )

    def _install_default_rules(self) -> None:
        cfg = self._config
        self._rules = [
            AdaptationRule(
                name="response_time_optimization",
                predicate=lambda ctx: ctx.average_response_time_ms > cfg.slow_response_ms,
                action="reduce_complexity",
                priority=1,
            ),
            AdaptationRule(
                name="success_rate_improvement",
                predicate=lambda ctx: (
                    ctx.success_rate is not None and ctx.success_rate < cfg.min_success_rate
                ),
                action="increase_safety_checks",
                priority=2,
            ),
            AdaptationRule(
                name="memory_optimization",
                predicate=lambda ctx: ctx.memory_size > cfg.memory_cleanup_threshold,
                action="cleanup_memory",
                priority=3,
            ),
        ]

    def add_rule(self, rule: AdaptationRule) -> None:
        if rule.action not in self._actions:
            raise ValueError(f"Unknown adaptation action: {rule.action}")
        self._rules.append(rule)

    # -------------------------------------------------------------------------
    # Learn
    # -------------------------------------------------------------------------

    def learn(
        self,
        message: Message,
        response: Message,
        decision: Decision,
        context: AdaptationContext,
    ) -> LearningOutcome:
        """Run the four learning steps for one interaction. Never raises."""
        outcome = LearningOutcome()

        try:
            outcome.patterns = extract_patterns(message.content)
        except Exception as e:
            self._step_failed(outcome, "extract", e)

        try:
            outcome.new_patterns = self._update_patterns(outcome.patterns, decision)
        except Exception as e:
            self._step_failed(outcome, "update_patterns", e)

        try:
            self._record_performance(decision, context)
        except Exception as e:
            self._step_failed(outcome, "record_performance", e)

        try:
            outcome.fired_rules, outcome.directives = self._evaluate_rules(context)
        except Exception as e:
            self._step_failed(outcome, "evaluate_rules", e)

        logger.info(
            "adaptation.insight",
            decision_id=decision.id,
            decision_type=decision.type.value,
            content=message.content,
            response_length=len(response.content),
            patterns=len(outcome.patterns),
            new_patterns=len(outcome.new_patterns),
            directives=[d.value for d in outcome.directives],
            success=decision.confidence > self._config.success_threshold,
        )
        return outcome

    @staticmethod
    def _step_failed(outcome: LearningOutcome, step: str, exc: Exception) -> None:
        detail = f"{step}: {type(exc).__name__}: {exc}"
        outcome.errors.append(detail)
        logger.warning("adaptation.step_failed", step=step, exc_info=True)

    def _clamp(self, value: float) -> float:
        return round(max(self._config.confidence_floor, min(1.0, value)), 4)

    def _update_patterns(self, patterns: list[str], decision: Decision) -> list[str]:
        """Apply one occurrence per distinct key. Returns keys created by this call."""
        cfg = self._config
        corroborating = decision.confidence > cfg.corroboration_threshold
        created: list[str] = []
        now = time.time()

        with self._patterns_lock:
            for key in dict.fromkeys(patterns):
                entry = self._patterns.get(key)
                if entry is None:
                    entry = PatternEntry(
                        key=key,
                        intent=decision.type.value,
                        confidence=cfg.base_confidence,
                        first_seen=now,
                    )
                    self._patterns[key] = entry
                    created.append(key)

                entry.occurrences += 1
                entry.last_seen = now
                if corroborating:
                    entry.confidence = self._clamp(entry.confidence + cfg.confidence_boost)
                else:
                    entry.confidence = self._clamp(entry.confidence - cfg.confidence_decay)

        return created

    def _record_performance(self, decision: Decision, context: AdaptationContext) -> None:
        record = PerformanceRecord(
            decision_type=decision.type.value,
            confidence=decision.confidence,
            response_time_ms=float(context.response_time_ms or 0.0),
            success=decision.confidence > self._config.success_threshold,
        )
        with self._history_lock:
            self._history.append(record)

    def _evaluate_rules(
        self, context: AdaptationContext
    ) -> tuple[list[str], list[AdaptationDirective]]:
        applicable: list[AdaptationRule] = []
        for rule in self._rules:
            try:
                if rule.predicate(context):
                    applicable.append(rule)
            except Exception:
                logger.warning("adaptation.rule_failed", rule=rule.name, exc_info=True)

        fired: list[str] = []
        directives: list[AdaptationDirective] = []
        for rule in sorted(applicable, key=lambda r: r.priority):
            handler = self._actions.get(rule.action)
            if handler is None:
                logger.warning("adaptation.unknown_action", rule=rule.name, action=rule.action)
                continue
            try:
                directive = handler(context)
            except Exception:
                logger.warning("adaptation.action_failed", rule=rule.name, exc_info=True)
                continue
            fired.append(rule.name)
            if directive not in directives:
                directives.append(directive)
        return fired, directives

    # -- Action hooks --

    def _reduce_complexity(self, context: AdaptationContext) -> AdaptationDirective:
        logger.info(
            "adaptation.reduce_complexity",
            average_response_time_ms=round(context.average_response_time_ms, 1),
        )
        return AdaptationDirective.REDUCE_COMPLEXITY

    def _increase_safety_checks(self, context: AdaptationContext) -> AdaptationDirective:
        logger.info("adaptation.increase_safety_checks", success_rate=context.success_rate)
        return AdaptationDirective.INCREASE_SAFETY_CHECKS

    def _cleanup_memory(self, context: AdaptationContext) -> AdaptationDirective:
        logger.info("adaptation.cleanup_memory", memory_size=context.memory_size)
        return AdaptationDirective.CLEANUP_MEMORY

    # -------------------------------------------------------------------------
    # Read paths
    # -------------------------------------------------------------------------

    def predict_intent(self, text: str) -> IntentPrediction:
        """The highest-confidence known pattern in ``text`` (first wins ties)."""
        best: Optional[IntentPrediction] = None
        with self._patterns_lock:
            for key in extract_patterns(text):
                entry = self._patterns.get(key)
                if entry is None:
                    continue
                if best is None or entry.confidence > best.confidence:
                    best = IntentPrediction(
                        intent=entry.intent,
                        confidence=entry.confidence,
                        matched_pattern=key,
                    )
        return best or IntentPrediction(intent="unknown", confidence=0.1, matched_pattern="none")

    def get_pattern(self, key: str) -> Optional[PatternEntry]:
        with self._patterns_lock:
            entry = self._patterns.get(key)
            return PatternEntry(**asdict(entry)) if entry else None

    def patterns(self) -> list[dict[str, Any]]:
        with self._patterns_lock:
            return [asdict(entry) for entry in self._patterns.values()]

    @property
    def pattern_count(self) -> int:
        with self._patterns_lock:
            return len(self._patterns)

    def history(self) -> list[PerformanceRecord]:
        with self._history_lock:
            return list(self._history)

    def performance_metrics(self) -> dict[str, Any]:
        with self._history_lock:
            history = list(self._history)
        if not history:
            return {
                "total_interactions": 0,
                "average_confidence": 0.0,
                "success_rate": 0.0,
                "average_response_time_ms": 0.0,
            }
        total = len(history)
        return {
            "total_interactions": total,
            "average_confidence": sum(r.confidence for r in history) / total,
            "success_rate": sum(1 for r in history if r.success) / total,
            "average_response_time_ms": sum(r.response_time_ms for r in history) / total,
        }

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def export_data(self) -> dict[str, Any]:
        with self._patterns_lock:
            patterns = [_PatternModel(**asdict(e)) for e in self._patterns.values()]
        with self._history_lock:
            history = [_PerformanceModel(**asdict(r)) for r in self._history]
        data = LearningData(
            patterns=patterns,
            performance_history=history,
            rules=[
                {"name": r.name, "action": r.action, "priority": r.priority}
                for r in self._rules
            ],
        )
        return data.model_dump(mode="json")

    def import_data(self, data: dict[str, Any]) -> None:
        """Replace patterns and history with ``data``. Rules are code and stay as is."""
        try:
            parsed = LearningData.model_validate(data)
        except ValidationError as e:
            raise StateImportError(f"Invalid learning data: {e.error_count()} error(s)") from e

        floor = self._config.confidence_floor
        patterns = {
            p.key: PatternEntry(
                key=p.key,
                intent=p.intent,
                confidence=max(floor, min(1.0, p.confidence)),
                occurrences=p.occurrences,
                first_seen=p.first_seen,
                last_seen=p.last_seen,
            )
            for p in parsed.patterns
        }
        history = [PerformanceRecord(**p.model_dump()) for p in parsed.performance_history]

        with self._patterns_lock:
            self._patterns = patterns
        with self._history_lock:
            self._history = deque(history, maxlen=self._config.history_size)

        logger.info("adaptation.imported", patterns=len(patterns), history=len(history))

    def reset(self) -> None:
        """Forget everything learned and reinstall the seeds."""
        with self._patterns_lock:
            self._patterns.clear()
        with self._history_lock:
            self._history.clear()
        self._install_seed_patterns()
        self._install_default_rules()
        logger.info("adaptation.reset")
