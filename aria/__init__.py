"""
Aria — Adaptive Runtime for Interactive Agents

This package contains an interactive agent runtime. A free-text request flows
through a single decision → dispatch → memory → adaptation → monitoring loop:

    1. Decision Engine (intent classification + three-branch action table)
    2. Dispatcher (capability invocation under the safety gate, timeouts)
    3. Bounded Memory (capacity-limited FIFO interaction log)
    4. Adaptation Engine (lexical pattern table + rule-based directives)
    5. Monitoring Service (health status, aggregates, trend)

Concrete capabilities (file, web, code, system operations) are plug-ins that
honor a small contract and live in ``aria.capabilities``.
"""

__version__ = "0.1.0"
