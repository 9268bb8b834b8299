"""
Claude API adapters — the remote classifier and text generator.

Both wrap one ``ClaudeEngine`` around the Anthropic SDK. The runtime injects
them when an API key is configured; otherwise the local heuristic classifier
and echo generator are used. Neither adapter catches API errors: the decision
engine and dispatcher own the fallbacks.
"""

from __future__ import annotations

import asyncio
import json
import re
import time
from typing import Any, Optional

import anthropic
import structlog

from aria.config import ClaudeConfig
from aria.types import IntentClassification

logger = structlog.get_logger(__name__)

CLASSIFIER_PROMPT = """\
Analyze the user message below and determine its intent.

Context: {context}

Return ONLY a JSON object with:
- intent: primary intent (e.g. "file_operation", "web_search", "code_generation",
  "system_operation", "deployment", "communication", or "reply")
- entities: extracted entities or parameters, as an object
- urgency: "low" | "medium" | "high"
- complexity: "simple" | "medium" | "complex"
"""

GENERATOR_PROMPT = """\
You are {name}, an interactive assistant with access to registered capabilities.

Context: {context}

Provide a helpful, accurate and detailed response to the user's message.
If a capability would help, mention it explicitly.
"""

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


class ClaudeEngine:
    """Thin async wrapper over ``anthropic.AsyncAnthropic`` with call telemetry."""

    def __init__(self, config: ClaudeConfig, client: Optional[Any] = None):
        if client is None and not config.api_key:
            raise ValueError("ClaudeEngine requires ANTHROPIC_API_KEY")
        self._client = client or anthropic.AsyncAnthropic(api_key=config.api_key)
        self._model = config.model
        self._max_tokens = config.max_tokens
        self._timeout = float(config.request_timeout_seconds)

        self._total_calls = 0
        self._total_input_tokens = 0
        self._total_output_tokens = 0
        self._last_call_time: Optional[float] = None

        logger.info("claude_engine.initialized", model=self._model)

    async def complete(
        self,
        system_prompt: str,
        user_content: str,
        temperature: float,
        max_tokens: Optional[int] = None,
    ) -> str:
        """One system + user turn; returns the concatenated text blocks."""
        start_time = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.messages.create(
                    model=self._model,
                    max_tokens=max_tokens or self._max_tokens,
                    temperature=temperature,
                    system=system_prompt,
                    messages=[{"role": "user", "content": user_content}],
                ),
                timeout=self._timeout,
            )
        except anthropic.RateLimitError as e:
            logger.warning("claude_engine.rate_limited", error=str(e))
            raise
        except anthropic.APIError as e:
            logger.error(
                "claude_engine.api_error",
                error=str(e),
                status=getattr(e, "status_code", None),
            )
            raise

        elapsed = time.monotonic() - start_time
        self._total_calls += 1
        self._last_call_time = elapsed
        usage = getattr(response, "usage", None)
        if usage is not None:
            self._total_input_tokens += getattr(usage, "input_tokens", 0) or 0
            self._total_output_tokens += getattr(usage, "output_tokens", 0) or 0

        logger.debug(
            "claude_engine.complete",
            elapsed_seconds=round(elapsed, 2),
            stop_reason=getattr(response, "stop_reason", None),
        )
        return extract_text(response)

    @property
    def telemetry(self) -> dict[str, Any]:
        return {
            "total_calls": self._total_calls,
            "total_input_tokens": self._total_input_tokens,
            "total_output_tokens": self._total_output_tokens,
            "last_call_seconds": self._last_call_time or 0.0,
        }


def extract_text(response: Any) -> str:
    """Join the text blocks of a Messages API response, ignoring everything else."""
    parts = []
    for block in getattr(response, "content", None) or []:
        if getattr(block, "type", None) == "text":
            parts.append(block.text)
    return "\n".join(parts)


def parse_classification(raw: str) -> IntentClassification:
    """Parse the classifier's JSON reply. Raises ValueError on anything else."""
    cleaned = _FENCE_RE.sub("", raw.strip()).strip()
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ValueError(f"classifier returned non-JSON output: {e.msg}") from e
    if not isinstance(data, dict):
        raise ValueError("classifier output must be a JSON object")
    return IntentClassification.model_validate(data)


class ClaudeClassifier:
    """Intent classifier backed by Claude at a low temperature."""

    def __init__(self, engine: ClaudeEngine, config: ClaudeConfig):
        self._engine = engine
        self._temperature = config.classifier_temperature

    async def classify(self, text: str, context: dict[str, Any]) -> IntentClassification:
        system = CLASSIFIER_PROMPT.format(context=json.dumps(context, default=str))
        raw = await self._engine.complete(system, text, self._temperature, max_tokens=512)
        return parse_classification(raw)


class ClaudeGenerator:
    """Reply generator backed by Claude."""

    def __init__(self, engine: ClaudeEngine, config: ClaudeConfig, agent_name: str = "Aria"):
        self._engine = engine
        self._temperature = config.generator_temperature
        self._agent_name = agent_name

    async def generate(self, prompt: str, context: dict[str, Any]) -> str:
        system = GENERATOR_PROMPT.format(
            name=self._agent_name,
            context=json.dumps(context, default=str),
        )
        return await self._engine.complete(system, prompt, self._temperature)
