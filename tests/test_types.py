"""Tests for aria.types — the records shared across subsystems."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from aria.types import (
    AgentResponse,
    Complexity,
    Decision,
    DecisionType,
    IntentClassification,
    Message,
    Role,
    Urgency,
)


class TestDecisionConfidence:
    @pytest.mark.parametrize("confidence", [0.0, 0.5, 1.0])
    def test_inclusive_range_accepted(self, confidence):
        decision = Decision(type=DecisionType.REPLY, confidence=confidence)
        assert decision.confidence == confidence

    @pytest.mark.parametrize("confidence", [-0.01, 1.01, 7])
    def test_out_of_range_rejected(self, confidence):
        with pytest.raises(ValidationError):
            Decision(type=DecisionType.REPLY, confidence=confidence)


def test_decision_is_immutable():
    decision = Decision(type=DecisionType.PLAN, confidence=0.7)
    with pytest.raises(ValidationError):
        decision.confidence = 0.1


def test_message_ids_are_unique():
    a = Message(role=Role.USER, content="hi")
    b = Message(role=Role.USER, content="hi")
    assert a.id != b.id
    assert a.metadata is None


def test_intent_fallback_values():
    fallback = IntentClassification.fallback()
    assert fallback.intent == "reply"
    assert fallback.entities == {}
    assert fallback.urgency == Urgency.MEDIUM
    assert fallback.complexity == Complexity.SIMPLE


def test_intent_classification_parses_strings():
    parsed = IntentClassification.model_validate(
        {"intent": "web_search", "urgency": "high", "complexity": "complex"}
    )
    assert parsed.urgency == Urgency.HIGH
    assert parsed.complexity == Complexity.COMPLEX


def test_agent_response_str_is_text():
    assert str(AgentResponse(text="hello")) == "hello"
