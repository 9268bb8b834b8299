"""
Safety Gate — the checkpoint every capability invocation passes through.

Before the dispatcher calls a capability's effectful function, the gate checks
the proposed parameters at three levels:

1. SCHEMA: required keys present and basic JSON types respected
2. PREDICATE: the capability's own ``safety_check(params)``, if it declares one
3. INPUT SCAN: destructive shell/SQL fragments anywhere in the parameters

Any failure short-circuits with a ``SafetyCheckResult`` whose ``allowed`` is
False; the capability is never called.

The gate also owns the agent's active safety tier. The adaptation engine can
put the gate into strict mode ("raise safety threshold"), which lifts the
effective tier one step and forces input scanning on. The decision engine
reads the effective tier when it considers invoking a capability.
"""

from __future__ import annotations

import re
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Optional

import structlog

from aria.capabilities.registry import CapabilityDescriptor
from aria.config import SAFETY_LEVELS, SafetyConfig

logger = structlog.get_logger(__name__)


@dataclass
class SafetyCheckResult:
    """Result of a safety pre-check."""
    allowed: bool = True
    reason: str = ""


# JSON Schema type → Python types (for lightweight validation)
_JSON_TYPE_MAP: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "array": (list,),
    "object": (dict,),
}


def validate_parameters(
    schema: dict[str, Any],
    params: dict[str, Any],
) -> Optional[str]:
    """
    Lightweight JSON Schema validation for capability parameters.

    Checks required fields and basic type constraints. Returns an error
    message string on failure, or None if the parameters are valid.
    """
    if not isinstance(params, dict):
        return f"Parameters must be an object, got {type(params).__name__}"

    required = schema.get("required", [])
    properties = schema.get("properties", {})

    missing = [name for name in required if name not in params]
    if missing:
        return f"Missing required parameter(s): {', '.join(missing)}"

    for name, value in params.items():
        prop_schema = properties.get(name)
        if not prop_schema or not isinstance(prop_schema, dict):
            continue
        expected_type = prop_schema.get("type")
        if not expected_type:
            continue
        py_types = _JSON_TYPE_MAP.get(expected_type)
        if py_types is None:
            continue
        # In Python bool is a subclass of int, but JSON booleans are distinct
        if isinstance(value, bool) and expected_type in ("integer", "number"):
            return f"Parameter '{name}' expected {expected_type}, got boolean"
        if not isinstance(value, py_types):
            return f"Parameter '{name}' expected {expected_type}, got {type(value).__name__}"

    return None


class SafetyGate:
    """
    Parameter validation plus the agent's active safety tier.

    One gate per agent instance. ``check()`` is pure apart from the
    blocked-action audit trail, so concurrent dispatches can share a gate.
    """

    def __init__(self, config: SafetyConfig, level: str = "medium", max_blocked_history: int = 200):
        if level not in SAFETY_LEVELS:
            raise ValueError(f"Unknown safety level '{level}'. Expected one of: {', '.join(SAFETY_LEVELS)}")
        self._config = config
        self._level = level
        self._strict = False
        self._blocked_actions: deque[dict[str, Any]] = deque(maxlen=max(1, max_blocked_history))

        # Dangerous fragments in parameters (checked as substrings, lowercased)
        self._dangerous_patterns = [
            "rm -rf /",
            "format c:",
            "drop table",
            "delete from",
            "chmod 777",
            "mkfs.",
        ]

        self._dangerous_regexes = [
            (re.compile(r"\bsudo\b", re.IGNORECASE), "sudo command"),
            (re.compile(r"curl\s+.*\|\s*(?:bash|sh)\b", re.IGNORECASE), "curl pipe to bash"),
            (re.compile(r"wget\s+.*\|\s*(?:bash|sh)\b", re.IGNORECASE), "wget pipe to bash"),
            (re.compile(r"\bdd\s+if=", re.IGNORECASE), "raw disk write"),
        ]

        logger.info(
            "safety_gate.initialized",
            level=level,
            scan_dangerous_inputs=config.scan_dangerous_inputs,
        )

    # -------------------------------------------------------------------------
    # Safety tier
    # -------------------------------------------------------------------------

    @property
    def level(self) -> str:
        """The configured tier."""
        return self._level

    @property
    def effective_level(self) -> str:
        """The configured tier, lifted one step while strict mode is on."""
        if not self._strict:
            return self._level
        index = SAFETY_LEVELS.index(self._level)
        return SAFETY_LEVELS[min(index + 1, len(SAFETY_LEVELS) - 1)]

    @property
    def is_most_restrictive(self) -> bool:
        return self.effective_level == SAFETY_LEVELS[-1]

    @property
    def strict(self) -> bool:
        return self._strict

    def set_level(self, level: str) -> None:
        if level not in SAFETY_LEVELS:
            raise ValueError(f"Unknown safety level '{level}'. Expected one of: {', '.join(SAFETY_LEVELS)}")
        self._level = level
        logger.info("safety_gate.level_changed", level=level)

    def set_strict(self, strict: bool) -> None:
        """Toggle strict mode. Idempotent."""
        if strict == self._strict:
            return
        self._strict = strict
        logger.info(
            "safety_gate.strict_mode",
            strict=strict,
            effective_level=self.effective_level,
        )

    # -------------------------------------------------------------------------
    # Invocation checks
    # -------------------------------------------------------------------------

    def check(self, capability: CapabilityDescriptor, params: dict[str, Any]) -> SafetyCheckResult:
        """Decide whether ``capability`` may run with ``params``."""
        schema_error = validate_parameters(capability.parameter_schema, params)
        if schema_error:
            return self._block(capability.id, "invalid_parameters", schema_error)

        if capability.safety_check is not None:
            try:
                passed = bool(capability.safety_check(params))
            except Exception as e:
                logger.warning(
                    "safety_gate.predicate_raised",
                    capability_id=capability.id,
                    error=f"{type(e).__name__}: {e}",
                )
                passed = False
            if not passed:
                return self._block(
                    capability.id,
                    "predicate_rejected",
                    "Rejected by the capability's safety predicate",
                )

        if self._config.scan_dangerous_inputs or self._strict:
            pattern = self._scan(params)
            if pattern:
                logger.warning(
                    "safety_gate.dangerous_pattern",
                    capability_id=capability.id,
                    pattern=pattern,
                )
                return self._block(
                    capability.id,
                    "dangerous_pattern",
                    f"Dangerous pattern detected: '{pattern}'",
                )

        return SafetyCheckResult(allowed=True)

    def _scan(self, params: dict[str, Any]) -> Optional[str]:
        raw = str(params)
        lowered = raw.lower()
        for pattern in self._dangerous_patterns:
            if pattern in lowered:
                return pattern
        for regex, description in self._dangerous_regexes:
            if regex.search(raw):
                return description
        return None

    def _block(self, capability_id: str, kind: str, reason: str) -> SafetyCheckResult:
        self._blocked_actions.append({
            "capability_id": capability_id,
            "kind": kind,
            "reason": reason,
            "timestamp": time.time(),
        })
        logger.info("safety_gate.blocked", capability_id=capability_id, kind=kind)
        return SafetyCheckResult(allowed=False, reason=reason)

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "level": self._level,
            "effective_level": self.effective_level,
            "strict": self._strict,
            "blocked_actions": len(self._blocked_actions),
        }
