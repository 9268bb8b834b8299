"""Tests for aria.cognition.adaptation — pattern learning and adaptation rules."""

from __future__ import annotations

import threading

import pytest

from aria.cognition.adaptation import (
    AdaptationContext,
    AdaptationDirective,
    AdaptationEngine,
    AdaptationRule,
    extract_patterns,
)
from aria.config import AdaptationConfig
from aria.errors import StateImportError
from aria.types import Decision, DecisionType, Message, Role


def _interaction(text: str, confidence: float, decision_type: DecisionType = DecisionType.REPLY):
    return (
        Message(role=Role.USER, content=text),
        Message(role=Role.ASSISTANT, content="ok"),
        Decision(type=decision_type, confidence=confidence, action={"message": text}),
    )


def _learn(engine: AdaptationEngine, text: str, confidence: float, context=None):
    message, response, decision = _interaction(text, confidence)
    return engine.learn(message, response, decision, context or AdaptationContext())


class TestExtractPatterns:
    def test_bigrams_trigrams_then_key_phrases(self):
        assert extract_patterns("Please Help me now") == [
            "please help", "help me", "me now",
            "please help me", "help me now",
            "help me", "please",
        ]

    def test_single_word_yields_only_key_phrases(self):
        assert extract_patterns("please") == ["please"]
        assert extract_patterns("hello") == []


class TestPatternLearning:
    def test_new_pattern_then_decay(self):
        engine = AdaptationEngine()

        outcome = _learn(engine, "help me", 0.8)
        entry = engine.get_pattern("help me")
        assert "help me" in outcome.new_patterns
        assert entry.confidence == pytest.approx(0.6)
        assert entry.occurrences == 1
        assert entry.intent == "reply"

        outcome = _learn(engine, "help me", 0.6)
        entry = engine.get_pattern("help me")
        assert outcome.new_patterns == []
        assert entry.confidence == pytest.approx(0.55)
        assert entry.occurrences == 2

    def test_confidence_is_bounded(self):
        engine = AdaptationEngine()
        for _ in range(10):
            _learn(engine, "tell me", 0.9)
        assert engine.get_pattern("tell me").confidence == pytest.approx(1.0)

        for _ in range(30):
            _learn(engine, "tell me", 0.2)
        assert engine.get_pattern("tell me").confidence == pytest.approx(0.1)

    def test_seeds_are_present(self):
        engine = AdaptationEngine()
        seed = engine.get_pattern("good morning")
        assert seed.intent == "greeting"
        assert seed.confidence == pytest.approx(0.9)
        assert seed.occurrences == 0

    def test_get_pattern_returns_a_copy(self):
        engine = AdaptationEngine()
        engine.get_pattern("good morning").confidence = 0.0
        assert engine.get_pattern("good morning").confidence == pytest.approx(0.9)

    def test_concurrent_learning_loses_no_occurrences(self):
        engine = AdaptationEngine()

        def worker():
            for _ in range(25):
                _learn(engine, "show me", 0.8)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert engine.get_pattern("show me").occurrences == 100


class TestPredictIntent:
    def test_unknown_text(self):
        prediction = AdaptationEngine().predict_intent("zzz qqq")
        assert prediction.intent == "unknown"
        assert prediction.confidence == pytest.approx(0.1)
        assert prediction.matched_pattern == "none"

    def test_highest_confidence_pattern_wins(self):
        engine = AdaptationEngine()
        prediction = engine.predict_intent("good morning can you help me read file x")
        assert prediction.intent == "greeting"
        assert prediction.matched_pattern == "good morning"
        assert prediction.confidence == pytest.approx(0.9)

    def test_learned_pattern_is_predicted(self):
        engine = AdaptationEngine()
        _learn(engine, "deploy service", 0.8)
        prediction = engine.predict_intent("please deploy service now")
        assert prediction.matched_pattern == "deploy service"
        assert prediction.intent == "reply"


class TestRules:
    def test_slow_responses_reduce_complexity(self):
        engine = AdaptationEngine()
        context = AdaptationContext(average_response_time_ms=6000.0, total_interactions=1, successful_actions=1)
        outcome = _learn(engine, "hi there", 0.8, context)
        assert outcome.directives == [AdaptationDirective.REDUCE_COMPLEXITY]
        assert outcome.fired_rules == ["response_time_optimization"]

    def test_low_success_rate_increases_safety(self):
        engine = AdaptationEngine()
        context = AdaptationContext(total_interactions=10, successful_actions=5)
        outcome = _learn(engine, "hi there", 0.8, context)
        assert outcome.directives == [AdaptationDirective.INCREASE_SAFETY_CHECKS]

    def test_no_interactions_means_no_success_rule(self):
        engine = AdaptationEngine()
        outcome = _learn(engine, "hi there", 0.8, AdaptationContext())
        assert outcome.directives == []

    def test_rules_fire_in_priority_order(self):
        engine = AdaptationEngine()
        context = AdaptationContext(
            average_response_time_ms=9000.0,
            total_interactions=10,
            successful_actions=1,
            memory_size=5000,
        )
        outcome = _learn(engine, "hi there", 0.8, context)
        assert outcome.directives == [
            AdaptationDirective.REDUCE_COMPLEXITY,
            AdaptationDirective.INCREASE_SAFETY_CHECKS,
            AdaptationDirective.CLEANUP_MEMORY,
        ]

    def test_custom_thresholds(self):
        engine = AdaptationEngine(AdaptationConfig(memory_cleanup_threshold=5))
        outcome = _learn(engine, "hi there", 0.8, AdaptationContext(memory_size=6))
        assert outcome.directives == [AdaptationDirective.CLEANUP_MEMORY]

    def test_failing_rule_is_skipped(self):
        engine = AdaptationEngine()

        def explode(ctx):
            raise RuntimeError("bad rule")

        engine.add_rule(AdaptationRule(name="broken", predicate=explode, action="cleanup_memory", priority=0))
        context = AdaptationContext(average_response_time_ms=6000.0)

        outcome = _learn(engine, "hi there", 0.8, context)

        assert outcome.directives == [AdaptationDirective.REDUCE_COMPLEXITY]
        assert outcome.errors == []

    def test_unknown_action_rejected(self):
        engine = AdaptationEngine()
        with pytest.raises(ValueError):
            engine.add_rule(AdaptationRule(name="x", predicate=lambda c: True, action="fly", priority=1))


class TestPerformance:
    def test_metrics_from_history(self):
        engine = AdaptationEngine()
        _learn(engine, "a b", 0.8, AdaptationContext(response_time_ms=100.0))
        _learn(engine, "c d", 0.4, AdaptationContext(response_time_ms=300.0))

        metrics = engine.performance_metrics()

        assert metrics["total_interactions"] == 2
        assert metrics["success_rate"] == pytest.approx(0.5)
        assert metrics["average_confidence"] == pytest.approx(0.6)
        assert metrics["average_response_time_ms"] == pytest.approx(200.0)

    def test_empty_history(self):
        assert AdaptationEngine().performance_metrics()["total_interactions"] == 0

    def test_history_is_capped(self):
        engine = AdaptationEngine(AdaptationConfig(history_size=3))
        for i in range(5):
            _learn(engine, f"word{i} x", 0.8)
        assert len(engine.history()) == 3


class TestPersistence:
    def test_export_import_round_trip(self):
        engine = AdaptationEngine()
        _learn(engine, "help me", 0.8)
        exported = engine.export_data()

        restored = AdaptationEngine()
        restored.reset()
        restored.import_data(exported)

        assert restored.get_pattern("help me").confidence == pytest.approx(0.6)
        assert len(restored.history()) == 1
        assert restored.pattern_count == engine.pattern_count

    def test_invalid_import_raises_and_keeps_state(self):
        engine = AdaptationEngine()
        _learn(engine, "help me", 0.8)

        with pytest.raises(StateImportError):
            engine.import_data({"patterns": [{"key": "x", "intent": "y", "confidence": 7, "occurrences": 1}]})

        assert engine.get_pattern("help me") is not None

    def test_reset_restores_seeds_only(self):
        engine = AdaptationEngine()
        seeded = engine.pattern_count
        _learn(engine, "alpha beta gamma", 0.8)
        assert engine.pattern_count > seeded

        engine.reset()

        assert engine.pattern_count == seeded
        assert engine.history() == []
