"""Agent harness — safety gating and capability dispatch."""
from aria.harness.dispatcher import DispatchResult, DispatchStatus, Dispatcher
from aria.harness.safety import SafetyCheckResult, SafetyGate

__all__ = ["Dispatcher", "DispatchResult", "DispatchStatus", "SafetyGate", "SafetyCheckResult"]
