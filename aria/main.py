"""
Aria — logging setup and process entry point.

``configure_logging()`` must run before the first log line so every module's
structlog logger picks up the same processors. The CLI calls it on startup;
tests that want real log output call it explicitly.
"""

from __future__ import annotations

import logging
import re

import structlog

_SENSITIVE_KEYS = ("content", "user_message", "message", "prompt", "text")
_MAX_DISPLAY_LEN = 80
_API_KEY_RE = re.compile(r"sk-ant-[A-Za-z0-9_\-]{8,}")


def _redact_sensitive_fields(logger, method_name, event_dict):
    """
    Structlog processor that masks API keys and truncates user content.

    Keeps raw user messages and generated replies out of log files beyond a
    short prefix.
    """
    for key in _SENSITIVE_KEYS:
        val = event_dict.get(key)
        if isinstance(val, str):
            val = _API_KEY_RE.sub("sk-ant-***", val)
            if len(val) > _MAX_DISPLAY_LEN:
                val = val[:_MAX_DISPLAY_LEN] + "... [truncated]"
            event_dict[key] = val

    error = event_dict.get("error")
    if isinstance(error, str):
        event_dict["error"] = _API_KEY_RE.sub("sk-ant-***", error)
    return event_dict


_logging_configured = False


def configure_logging(verbose: bool = False, colors: bool = True) -> None:
    """Configure structlog over standard-library logging.

    Safe to call more than once; subsequent calls only adjust the level.
    """
    global _logging_configured  # noqa: PLW0603
    level = logging.DEBUG if verbose else logging.WARNING
    if _logging_configured:
        logging.getLogger().setLevel(level)
        return
    _logging_configured = True

    logging.basicConfig(format="%(message)s", level=level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            _redact_sensitive_fields,
            structlog.dev.ConsoleRenderer(colors=colors),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


def main() -> None:
    """``python -m aria.main``: same as the ``aria`` console script."""
    from aria.cli.app import cli

    cli()


if __name__ == "__main__":
    main()
