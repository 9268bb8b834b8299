"""
Capability Registry — Aria's Catalog of Invocable Actions.

Every capability the runtime can invoke is registered here with its parameter
schema, optional safety predicate and execution function. The registry serves
two purposes:

1. ROUTING: The decision engine asks for every capability in a category and
   picks the first one, so iteration order is registration order and is
   load-bearing.

2. DISPATCH: The dispatcher resolves a capability by id right before invoking
   it.

Registration normally happens once at startup, but capabilities can be added
and removed while requests are in flight. All access goes through a single
lock so a removal never interleaves with a lookup.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterator, Optional

import structlog

logger = structlog.get_logger(__name__)


class CapabilityCategory(str, Enum):
    """Closed set of categories used for coarse intent routing."""
    FILE = "file"
    WEB = "web"
    CODE = "code"
    SYSTEM = "system"
    DEPLOYMENT = "deployment"
    COMMUNICATION = "communication"


_VALID_CATEGORIES = frozenset(c.value for c in CapabilityCategory)


@dataclass
class CapabilityDescriptor:
    """
    A registered capability with its schema, safety predicate and handler.

    ``parameter_schema`` is a JSON-Schema subset ({"properties": ..., "required":
    [...]}) checked by the safety gate before every invocation. ``execute``
    receives the parameters as a single dict and may be sync or async.
    """
    id: str
    name: str
    category: str
    execute: Callable[[dict[str, Any]], Any]
    description: str = ""
    parameter_schema: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )
    safety_check: Optional[Callable[[dict[str, Any]], bool]] = None
    timeout: Optional[float] = None       # Per-capability timeout in seconds (None = default)
    enabled: bool = True

    def __post_init__(self) -> None:
        if isinstance(self.category, CapabilityCategory):
            self.category = self.category.value
        if self.category not in _VALID_CATEGORIES:
            raise ValueError(
                f"Capability '{self.id}' has unknown category '{self.category}'. "
                f"Expected one of: {', '.join(sorted(_VALID_CATEGORIES))}"
            )

    def describe(self) -> dict[str, Any]:
        """Serializable metadata (everything except the callables)."""
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "description": self.description,
            "parameters": self.parameter_schema,
            "has_safety_check": self.safety_check is not None,
            "enabled": self.enabled,
        }


class CapabilityRegistry:
    """
    Central registry for all capabilities available to an agent.

    The registry supports:
    - Registering and removing capabilities by id
    - Category lookups in registration order (for routing)
    - Id lookups (for dispatch)
    - Listing metadata for export and UI
    """

    def __init__(self):
        self._capabilities: dict[str, CapabilityDescriptor] = {}
        self._lock = threading.Lock()
        logger.info("capability_registry.initialized")

    def register(self, capability: CapabilityDescriptor, *, allow_override: bool = False) -> None:
        """Register a capability, blocking accidental id collisions by default."""
        with self._lock:
            existing = self._capabilities.get(capability.id)
            if existing is not None and not allow_override:
                logger.warning(
                    "capability_registry.id_collision",
                    capability_id=capability.id,
                    existing_category=existing.category,
                    new_category=capability.category,
                )
                raise ValueError(
                    f"Capability '{capability.id}' is already registered. "
                    "Use allow_override=True for an explicit replacement."
                )
            self._capabilities[capability.id] = capability

        logger.info(
            "capability_registry.registered",
            capability_id=capability.id,
            category=capability.category,
            has_safety_check=capability.safety_check is not None,
        )

    def unregister(self, capability_id: str) -> bool:
        """Remove a capability from the registry."""
        with self._lock:
            removed = self._capabilities.pop(capability_id, None)
        if removed is not None:
            logger.info("capability_registry.unregistered", capability_id=capability_id)
            return True
        return False

    def get(self, capability_id: str) -> Optional[CapabilityDescriptor]:
        """Look up a capability by id."""
        with self._lock:
            return self._capabilities.get(capability_id)

    def by_category(self, category: str) -> list[CapabilityDescriptor]:
        """Enabled capabilities in ``category``, in registration order."""
        with self._lock:
            return [
                cap for cap in self._capabilities.values()
                if cap.enabled and cap.category == category
            ]

    def ids(self) -> list[str]:
        with self._lock:
            return list(self._capabilities)

    def all(self) -> list[CapabilityDescriptor]:
        with self._lock:
            return list(self._capabilities.values())

    def clear(self) -> None:
        with self._lock:
            self._capabilities.clear()

    def replace(self, capabilities: list[CapabilityDescriptor]) -> None:
        """Swap the whole mapping in one step (used by state import)."""
        rebuilt = {cap.id: cap for cap in capabilities}
        with self._lock:
            self._capabilities = rebuilt
        logger.info("capability_registry.replaced", count=len(rebuilt))

    def list_capabilities(self) -> list[dict[str, Any]]:
        """List all registered capabilities with metadata."""
        return [cap.describe() for cap in self.all()]

    def __contains__(self, capability_id: object) -> bool:
        with self._lock:
            return capability_id in self._capabilities

    def __iter__(self) -> Iterator[CapabilityDescriptor]:
        return iter(self.all())

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._capabilities)
