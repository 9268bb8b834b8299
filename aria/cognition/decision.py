"""
Decision Engine — choosing what to do with an incoming message.

For every request the engine produces exactly one ``Decision``. It never
raises: the worst case is a reply decision built on the fallback intent.

The flow has three steps:

1. CLASSIFY: ask the injected classifier for {intent, entities, urgency,
   complexity}. Any failure (exception, timeout, malformed output) falls back
   to {intent: "reply", entities: {}, urgency: medium, complexity: simple}.

2. ROUTE: map the intent label to a capability category with
   ``intent_to_category()`` and collect the enabled capabilities in that
   category, in registry order.

3. SELECT, evaluated strictly in this order:
     a. a matching capability exists and the effective safety tier is not
        "high"                         → invoke the first match, confidence 0.8
     b. complexity is "complex" and learning is enabled
                                       → plan, confidence 0.7
     c. otherwise                      → reply with the verbatim message, 0.6

This is a fixed table, not a learned policy. Capability order and branch
precedence are the tie-breaks, so both are kept stable.
"""

from __future__ import annotations

import asyncio
import inspect
import re
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import structlog
from pydantic import ValidationError

from aria.capabilities.registry import CapabilityRegistry
from aria.errors import ClassifierUnavailable
from aria.harness.safety import SafetyGate
from aria.types import (
    Complexity,
    Decision,
    DecisionType,
    IntentClassification,
    Message,
    MemoryRecord,
    Urgency,
)

logger = structlog.get_logger(__name__)

INVOKE_CONFIDENCE = 0.8
PLAN_CONFIDENCE = 0.7
REPLY_CONFIDENCE = 0.6

# Stripped from intent labels, in this order, to derive a capability category.
_INTENT_SUFFIXES = ("_operation", "_search", "_generation")


def intent_to_category(intent: str) -> str:
    """
    Map an intent label to a capability category.

    Removes the first occurrence of each known suffix in turn:
    "code_generation" → "code", "file_operation" → "file",
    "web_search" → "web". Labels without a known suffix pass through
    unchanged ("deployment" → "deployment", "system_command" stays as is).
    """
    category = intent
    for suffix in _INTENT_SUFFIXES:
        category = category.replace(suffix, "", 1)
    return category


class Classifier(Protocol):
    """Anything that can label a message. ``classify`` may be sync or async."""

    def classify(self, text: str, context: dict[str, Any]) -> Any: ...


@dataclass
class DecisionContext:
    """What the engine knows about the conversation when it decides."""
    recent_messages: list[Message] = field(default_factory=list)
    recent_memory: list[MemoryRecord] = field(default_factory=list)
    performance_summary: dict[str, Any] = field(default_factory=dict)
    available_capability_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Plain-JSON view handed to classifiers."""
        return {
            "recent_messages": [
                {"role": m.role.value, "content": m.content} for m in self.recent_messages
            ],
            "recent_memory": [
                {"kind": r.kind.value, "timestamp": r.timestamp} for r in self.recent_memory
            ],
            "performance": dict(self.performance_summary),
            "available_capabilities": list(self.available_capability_ids),
        }


# ---------------------------------------------------------------------------
# Local heuristic classifier
# ---------------------------------------------------------------------------

_URL_RE = re.compile(r"https?://[^\s'\"<>]+")
_PATH_RE = re.compile(r"(?:^|\s)((?:~|\.{1,2})?/[\w.\-/]+|[\w\-]+\.[A-Za-z0-9]{1,5})(?=\s|$|[,;:!?])")
_BACKTICK_RE = re.compile(r"`([^`]+)`")
_SEQUENCE_MARKERS = ("then", "after that", "afterwards", "next", "finally", "step")
_URGENT_WORDS = ("urgent", "asap", "immediately", "right now", "emergency")
_RELAXED_WORDS = ("whenever", "no rush", "eventually", "someday")

# intent label → trigger words (first hit in this order wins)
_INTENT_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("code_generation", ("generate code", "write code", "function", "refactor", "analyze code", "python", "script")),
    ("file_operation", ("read file", "write file", "create file", "delete file", "list files", "file", "directory", "folder")),
    ("web_search", ("http", "https", "fetch", "website", "url", "search the web", "download")),
    ("system_operation", ("run command", "execute", "terminal", "shell", "bash", "system info", "cpu", "disk")),
    ("deployment", ("deploy", "release", "rollout", "docker", "kubernetes")),
    ("communication", ("send email", "email", "notify", "slack", "message to")),
)

_INTENT_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = tuple(
    (label, re.compile(r"(?<!\w)(?:" + "|".join(re.escape(k) for k in keywords) + r")(?!\w)"))
    for label, keywords in _INTENT_KEYWORDS
)


class HeuristicClassifier:
    """
    Keyword-driven intent classifier that needs no network access.

    Emits intent labels that ``intent_to_category()`` resolves to real
    categories, and pulls the obvious entities (URLs, paths, back-quoted
    commands) out of the text so they can be passed as capability parameters.
    """

    def classify(self, text: str, context: dict[str, Any]) -> IntentClassification:
        lowered = text.lower()
        intent = "reply"
        for label, pattern in _INTENT_PATTERNS:
            if pattern.search(lowered):
                intent = label
                break

        return IntentClassification(
            intent=intent,
            entities=self._entities(text, intent),
            urgency=self._urgency(lowered),
            complexity=self._complexity(lowered),
        )

    @staticmethod
    def _entities(text: str, intent: str) -> dict[str, Any]:
        entities: dict[str, Any] = {}
        url = _URL_RE.search(text)
        if url:
            entities["url"] = url.group(0).rstrip(".,;")
        quoted = _BACKTICK_RE.search(text)
        if quoted:
            key = "code" if intent == "code_generation" else "command"
            entities[key] = quoted.group(1)
        if "url" not in entities:
            path = _PATH_RE.search(text)
            if path:
                entities["path"] = path.group(1)
        return entities

    @staticmethod
    def _urgency(lowered: str) -> Urgency:
        if any(w in lowered for w in _URGENT_WORDS):
            return Urgency.HIGH
        if any(w in lowered for w in _RELAXED_WORDS):
            return Urgency.LOW
        return Urgency.MEDIUM

    @staticmethod
    def _complexity(lowered: str) -> Complexity:
        words = lowered.split()
        markers = sum(1 for w in _SEQUENCE_MARKERS if re.search(rf"\b{w}\b", lowered))
        if len(words) > 60 or markers >= 2:
            return Complexity.COMPLEX
        if len(words) > 20 or markers == 1:
            return Complexity.MEDIUM
        return Complexity.SIMPLE


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class DecisionEngine:
    """
    Classifies intent and applies the three-branch decision table.

    State held here is per-agent: the learning flag and the complexity ceiling
    that the adaptation engine can lower between requests. The effective
    safety tier is read from the shared ``SafetyGate``.
    """

    def __init__(
        self,
        registry: CapabilityRegistry,
        safety_gate: SafetyGate,
        classifier: Optional[Classifier] = None,
        learning_enabled: bool = True,
        classifier_timeout: float = 15.0,
    ):
        self._registry = registry
        self._safety_gate = safety_gate
        self._classifier: Classifier = classifier or HeuristicClassifier()
        self._learning_enabled = learning_enabled
        self._classifier_timeout = classifier_timeout
        self._complexity_ceiling: Optional[Complexity] = None

        self._total_decisions = 0
        self._fallback_count = 0
        self._counts: dict[str, int] = {t.value: 0 for t in DecisionType}

        logger.info(
            "decision_engine.initialized",
            classifier=type(self._classifier).__name__,
            learning_enabled=learning_enabled,
        )

    # -------------------------------------------------------------------------
    # Tunables adjusted by adaptation directives
    # -------------------------------------------------------------------------

    @property
    def learning_enabled(self) -> bool:
        return self._learning_enabled

    @learning_enabled.setter
    def learning_enabled(self, value: bool) -> None:
        self._learning_enabled = bool(value)

    @property
    def complexity_ceiling(self) -> Optional[Complexity]:
        return self._complexity_ceiling

    def set_complexity_ceiling(self, ceiling: Optional[Complexity]) -> None:
        """Cap declared complexity at ``ceiling`` (None lifts the cap). Idempotent."""
        if ceiling == self._complexity_ceiling:
            return
        self._complexity_ceiling = ceiling
        logger.info(
            "decision_engine.complexity_ceiling",
            ceiling=ceiling.value if ceiling else None,
        )

    # -------------------------------------------------------------------------
    # Decide
    # -------------------------------------------------------------------------

    async def decide(self, message: str, context: Optional[DecisionContext] = None) -> Decision:
        """Produce the decision for ``message``. Never raises."""
        context = context or DecisionContext()
        self._total_decisions += 1

        try:
            intent = await self._classify(message, context)
            fell_back = False
        except ClassifierUnavailable as e:
            self._fallback_count += 1
            logger.warning("decision_engine.classifier_fallback", error=str(e))
            intent = IntentClassification.fallback()
            fell_back = True

        decision = self._select(message, intent, fell_back)
        self._counts[decision.type.value] += 1

        logger.info(
            "decision_engine.decided",
            decision_id=decision.id,
            type=decision.type.value,
            confidence=decision.confidence,
            intent=intent.intent,
            complexity=intent.complexity.value,
            fallback=fell_back,
        )
        return decision

    async def _classify(self, message: str, context: DecisionContext) -> IntentClassification:
        """Run the classifier, converting every failure into ClassifierUnavailable."""
        classify = self._classifier.classify
        payload = context.to_dict()
        try:
            if inspect.iscoroutinefunction(classify):
                raw = await asyncio.wait_for(classify(message, payload), timeout=self._classifier_timeout)
            else:
                # Blocking classifiers run off the event loop under the same timeout.
                raw = await asyncio.wait_for(
                    asyncio.to_thread(classify, message, payload),
                    timeout=self._classifier_timeout,
                )
            if inspect.isawaitable(raw):
                raw = await asyncio.wait_for(raw, timeout=self._classifier_timeout)
        except asyncio.TimeoutError as e:
            raise ClassifierUnavailable(
                f"classifier timed out after {self._classifier_timeout}s"
            ) from e
        except Exception as e:
            raise ClassifierUnavailable(f"{type(e).__name__}: {e}") from e

        if isinstance(raw, IntentClassification):
            return raw
        try:
            return IntentClassification.model_validate(raw)
        except ValidationError as e:
            raise ClassifierUnavailable(f"malformed classification: {e.error_count()} error(s)") from e

    def _effective_complexity(self, declared: Complexity) -> Complexity:
        if self._complexity_ceiling is None:
            return declared
        order = [Complexity.SIMPLE, Complexity.MEDIUM, Complexity.COMPLEX]
        return order[min(order.index(declared), order.index(self._complexity_ceiling))]

    def _select(self, message: str, intent: IntentClassification, fell_back: bool) -> Decision:
        category = intent_to_category(intent.intent)
        matches = self._registry.by_category(category)
        if matches and not self._safety_gate.is_most_restrictive:
            chosen = matches[0]
            return Decision(
                type=DecisionType.INVOKE,
                confidence=INVOKE_CONFIDENCE,
                reasoning=f"Found {len(matches)} relevant capabilities for intent: {intent.intent}",
                action={"capability_id": chosen.id, "parameters": dict(intent.entities)},
            )

        complexity = self._effective_complexity(intent.complexity)
        if complexity == Complexity.COMPLEX and self._learning_enabled:
            return Decision(
                type=DecisionType.PLAN,
                confidence=PLAN_CONFIDENCE,
                reasoning="Complex request requires planning",
                action={
                    "intent": intent.model_dump(mode="json"),
                    "entities": dict(intent.entities),
                    "message": message,
                },
            )

        reasoning = "Default response generation"
        if fell_back:
            reasoning = "Classifier unavailable; default response generation"
        return Decision(
            type=DecisionType.REPLY,
            confidence=REPLY_CONFIDENCE,
            reasoning=reasoning,
            action={"message": message},
        )

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "total_decisions": self._total_decisions,
            "classifier_fallbacks": self._fallback_count,
            "by_type": dict(self._counts),
            "complexity_ceiling": self._complexity_ceiling.value if self._complexity_ceiling else None,
        }
