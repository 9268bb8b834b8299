"""Offline text generator used when no Claude API key is configured."""

from __future__ import annotations

from typing import Any


class EchoGenerator:
    """Acknowledges the message and lists what the agent can do."""

    def generate(self, prompt: str, context: dict[str, Any]) -> str:
        capabilities = context.get("available_capabilities") or []
        text = f"You said: \"{prompt}\"."
        if capabilities:
            text += f" I can help with: {', '.join(capabilities)}."
        return text
