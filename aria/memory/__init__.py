"""Memory — the bounded, FIFO-evicting interaction log."""
from aria.memory.bounded import BoundedMemoryStore

__all__ = ["BoundedMemoryStore"]
