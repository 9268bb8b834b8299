from aria.capabilities.builtin import builtin_capabilities, register_builtin_capabilities
from aria.capabilities.registry import CapabilityCategory, CapabilityDescriptor, CapabilityRegistry

__all__ = [
    "CapabilityCategory",
    "CapabilityDescriptor",
    "CapabilityRegistry",
    "builtin_capabilities",
    "register_builtin_capabilities",
]
