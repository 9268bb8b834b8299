"""
Error taxonomy for the Aria runtime.

Only ``StateImportError`` is allowed to escape to a caller. Everything else is
recovered at the component boundary where it occurs: classifier failures fall
back to a default intent, and capability failures are reported through a
typed ``DispatchResult`` rather than raised.
"""

from __future__ import annotations


class AriaError(Exception):
    """Base class for all runtime errors."""


class ClassifierUnavailable(AriaError):
    """The intent classifier failed, timed out, or returned garbage."""


class GeneratorUnavailable(AriaError):
    """The text generator failed or timed out."""


class CapabilityNotFound(AriaError):
    """No capability is registered under the requested id."""

    def __init__(self, capability_id: str):
        super().__init__(f"Capability not found: {capability_id}")
        self.capability_id = capability_id


class SafetyCheckFailed(AriaError):
    """The safety gate rejected an invocation before it ran."""

    def __init__(self, capability_id: str, reason: str = ""):
        super().__init__(reason or f"Safety check failed for capability: {capability_id}")
        self.capability_id = capability_id
        self.reason = reason


class CapabilityExecutionError(AriaError):
    """A capability raised or timed out while executing."""

    def __init__(self, capability_id: str, detail: str):
        super().__init__(f"Error executing {capability_id}: {detail}")
        self.capability_id = capability_id
        self.detail = detail


class StateImportError(AriaError):
    """A persisted state document is structurally invalid and was rejected."""
