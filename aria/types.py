"""
Core data types shared across Aria subsystems.

This module defines the records that cross subsystem boundaries: messages,
decisions, memory records and intent classifications. They live here rather
than in a specific subsystem to avoid circular imports.

Messages, decisions and memory records are frozen Pydantic models. Once the
runtime creates one it is appended to a log and never mutated, and the same
models drive state export and import.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


def new_id() -> str:
    return uuid.uuid4().hex


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class DecisionType(str, Enum):
    """The four action families the decision engine can choose from."""
    INVOKE = "invoke"
    PLAN = "plan"
    REPLY = "reply"
    ADAPT = "adapt"


class MemoryKind(str, Enum):
    CONVERSATION = "conversation"
    INVOCATION_RESULT = "invocation_result"
    ADAPTATION_EVENT = "adaptation_event"
    PATTERN = "pattern"


class Urgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Complexity(str, Enum):
    SIMPLE = "simple"
    MEDIUM = "medium"
    COMPLEX = "complex"


class Message(BaseModel):
    """A single conversation turn."""

    model_config = {"frozen": True}

    id: str = Field(default_factory=new_id)
    role: Role
    content: str
    timestamp: float = Field(default_factory=time.time)
    metadata: Optional[dict[str, Any]] = None


class Decision(BaseModel):
    """
    The decision engine's single output for one incoming message.

    ``confidence`` is validated into [0, 1] at construction; a value outside
    that range raises a ``ValidationError``. ``action`` is an opaque payload
    whose shape depends on ``type``:

    - invoke: {"capability_id": str, "parameters": dict}
    - plan:   {"intent": dict, "entities": dict, "message": str}
    - reply:  {"message": str}
    - adapt:  {"message": str}
    """

    model_config = {"frozen": True}

    id: str = Field(default_factory=new_id)
    type: DecisionType
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""
    action: dict[str, Any] = Field(default_factory=dict)
    timestamp: float = Field(default_factory=time.time)


class MemoryRecord(BaseModel):
    """An entry in bounded memory. Payloads must be JSON-serializable."""

    model_config = {"frozen": True}

    id: str = Field(default_factory=new_id)
    kind: MemoryKind
    payload: Any = None
    timestamp: float = Field(default_factory=time.time)
    relevance: Optional[float] = None


class IntentClassification(BaseModel):
    """What a classifier reports about an incoming message."""

    intent: str = "reply"
    entities: dict[str, Any] = Field(default_factory=dict)
    urgency: Urgency = Urgency.MEDIUM
    complexity: Complexity = Complexity.SIMPLE

    @classmethod
    def fallback(cls) -> "IntentClassification":
        """The deterministic classification used when the classifier fails."""
        return cls(intent="reply", entities={}, urgency=Urgency.MEDIUM, complexity=Complexity.SIMPLE)


@dataclass
class AgentResponse:
    """Structured response from ``AgentRuntime.process_message()``.

    Carries the reply text alongside the ids of the records the request
    produced, so channels can correlate a reply with its decision.
    """

    text: str
    decision_id: str = ""
    user_message_id: str = ""
    assistant_message_id: str = ""
    success: bool = True

    def __str__(self) -> str:
        return self.text
