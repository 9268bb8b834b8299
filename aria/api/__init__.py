from aria.api.claude import ClaudeClassifier, ClaudeEngine, ClaudeGenerator
from aria.api.local import EchoGenerator

__all__ = ["ClaudeClassifier", "ClaudeEngine", "ClaudeGenerator", "EchoGenerator"]
