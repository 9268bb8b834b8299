"""
Cognition layer — deciding what to do and learning from how it went.

Modules:
  - decision: intent classification and the invoke / plan / reply table
  - adaptation: pattern table, performance history and adaptation rules
"""
from aria.cognition.adaptation import AdaptationDirective, AdaptationEngine
from aria.cognition.decision import DecisionContext, DecisionEngine, HeuristicClassifier

__all__ = [
    "AdaptationDirective",
    "AdaptationEngine",
    "DecisionContext",
    "DecisionEngine",
    "HeuristicClassifier",
]
