"""
Built-in Capabilities — Aria's Native Plug-ins.

These ship with Aria and cover the file, web, code and system categories.
Each one honors the capability contract: a parameter schema, an optional
safety predicate that the gate runs before execution, and an ``execute``
callable that takes the parameter dict and returns JSON-able data or raises.

Parameter names line up with the entities the heuristic classifier extracts
(``path``, ``url``, ``code``, ``command``), so a request routed to one of
these categories arrives with usable parameters.

Registration order matters: the decision engine invokes the first enabled
capability of the routed category.

Nothing here covers the deployment or communication categories. Requests
routed there fall through to a plan or a direct reply until a host registers
its own capability for that category with ``AgentRuntime.add_capability()``.
"""

from __future__ import annotations

import ast
import ipaddress
import os
import platform
import re
import shutil
import subprocess
import time
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import httpx
import structlog

from aria.capabilities.registry import CapabilityCategory, CapabilityDescriptor, CapabilityRegistry

logger = structlog.get_logger(__name__)

_SENSITIVE_READ_PATTERNS = (
    re.compile(r"/etc/passwd"),
    re.compile(r"/etc/shadow"),
    re.compile(r"\.env$"),
    re.compile(r"private.*key", re.IGNORECASE),
    re.compile(r"secret", re.IGNORECASE),
)

_SYSTEM_WRITE_PREFIXES = ("/etc/", "/usr/", "/bin/", "/sbin/", "/boot/", "/lib/", "/proc/", "/sys/")

# Matched against the start of the stripped command.
_DANGEROUS_COMMANDS = tuple(re.compile(p) for p in (
    r"^rm\s+-rf\s+/",
    r"^dd\s+if=",
    r"^mkfs\.",
    r"^fdisk",
    r"^format",
    r"^del\s+[A-Z]:\\",
    r"^rmdir/s/q",
    r"^shutdown",
    r"^reboot",
    r"^halt",
    r"^passwd",
    r"^su\s+",
    r"^sudo\s+",
    r"^chmod\s+777",
    r"^chown\s+root",
))

WEB_FETCH_MAX_CHARS = 4000
WEB_FETCH_TIMEOUT = 10.0


# ---------------------------------------------------------------------------
# file
# ---------------------------------------------------------------------------


def file_read_allowed(params: dict[str, Any]) -> bool:
    path = params.get("path")
    if not isinstance(path, str) or not path:
        return False
    return not any(p.search(path) for p in _SENSITIVE_READ_PATTERNS)


def file_read(params: dict[str, Any]) -> dict[str, Any]:
    encoding = params.get("encoding") or "utf-8"
    content = Path(params["path"]).expanduser().read_text(encoding=encoding)
    return {"path": params["path"], "content": content, "encoding": encoding}


def file_write_allowed(params: dict[str, Any]) -> bool:
    path = params.get("path")
    if not isinstance(path, str) or not path or not params.get("content"):
        return False
    return not path.startswith(_SYSTEM_WRITE_PREFIXES)


def file_write(params: dict[str, Any]) -> dict[str, Any]:
    path = Path(params["path"]).expanduser()
    mode = params.get("mode") or "overwrite"
    if mode not in ("overwrite", "append"):
        raise ValueError(f"Unknown write mode: {mode}")
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a" if mode == "append" else "w", encoding=params.get("encoding") or "utf-8") as f:
        written = f.write(params["content"])
    return {"path": str(path), "mode": mode, "chars_written": written}


def file_list_allowed(params: dict[str, Any]) -> bool:
    path = params.get("path")
    if not isinstance(path, str) or not path:
        return False
    return ".." not in path and not path.startswith("/etc")


def file_list(params: dict[str, Any]) -> dict[str, Any]:
    root = Path(params["path"]).expanduser()
    pattern = params.get("pattern") or ""
    if params.get("recursive"):
        files = sorted(
            str(p) for p in root.rglob("*")
            if p.is_file() and (not pattern or pattern in p.name)
        )
        return {"path": str(root), "files": files, "count": len(files)}
    items = [
        {"name": p.name, "path": str(p), "is_directory": p.is_dir(), "is_file": p.is_file()}
        for p in sorted(root.iterdir())
        if not pattern or pattern in p.name
    ]
    return {"path": str(root), "items": items, "count": len(items)}


# ---------------------------------------------------------------------------
# web
# ---------------------------------------------------------------------------


def _is_blocked_host(host: str) -> bool:
    if host == "localhost":
        return True
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return False
    return any((
        ip.is_private,
        ip.is_loopback,
        ip.is_link_local,
        ip.is_multicast,
        ip.is_reserved,
        ip.is_unspecified,
    ))


def web_fetch_allowed(params: dict[str, Any]) -> bool:
    url = params.get("url")
    if not isinstance(url, str) or not url:
        return False
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or parsed.username or parsed.password:
        return False
    host = (parsed.hostname or "").rstrip(".").lower()
    return bool(host) and not _is_blocked_host(host)


async def web_fetch(params: dict[str, Any]) -> dict[str, Any]:
    url = params["url"]
    method = (params.get("method") or "GET").upper()
    max_chars = max(100, int(params.get("max_chars") or WEB_FETCH_MAX_CHARS))
    async with httpx.AsyncClient(timeout=WEB_FETCH_TIMEOUT, follow_redirects=True) as client:
        response = await client.request(
            method,
            url,
            headers=params.get("headers") or None,
            content=params.get("body"),
        )
    response.raise_for_status()
    text = response.text
    return {
        "url": str(response.url),
        "status": response.status_code,
        "content_type": response.headers.get("content-type", ""),
        "content": text[:max_chars],
        "truncated": len(text) > max_chars,
    }


# ---------------------------------------------------------------------------
# code
# ---------------------------------------------------------------------------


def code_analyze(params: dict[str, Any]) -> dict[str, Any]:
    """Structural summary of a code snippet; Python gets a full AST pass."""
    code = params["code"]
    language = (params.get("language") or "python").lower()
    lines = code.splitlines()
    summary: dict[str, Any] = {
        "language": language,
        "lines": len(lines),
        "blank_lines": sum(1 for line in lines if not line.strip()),
    }
    if language != "python":
        return summary

    try:
        tree = ast.parse(code)
    except SyntaxError as e:
        summary.update(valid=False, error=f"{e.msg} (line {e.lineno})")
        return summary

    functions, classes, imports = [], [], []
    for node in ast.walk(tree):
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
            functions.append(node.name)
        elif isinstance(node, ast.ClassDef):
            classes.append(node.name)
        elif isinstance(node, ast.Import):
            imports.extend(alias.name for alias in node.names)
        elif isinstance(node, ast.ImportFrom) and node.module:
            imports.append(node.module)
    summary.update(
        valid=True,
        functions=functions,
        classes=classes,
        imports=sorted(set(imports)),
        has_docstring=ast.get_docstring(tree) is not None,
    )
    return summary


# ---------------------------------------------------------------------------
# system
# ---------------------------------------------------------------------------


def system_execute_allowed(params: dict[str, Any]) -> bool:
    command = params.get("command")
    if not isinstance(command, str) or not command.strip():
        return False
    stripped = command.strip()
    return not any(p.search(stripped) for p in _DANGEROUS_COMMANDS)


def system_execute(params: dict[str, Any]) -> dict[str, Any]:
    timeout = float(params.get("timeout") or 30.0)
    completed = subprocess.run(
        params["command"],
        shell=True,
        capture_output=True,
        text=True,
        timeout=timeout,
        cwd=params.get("cwd") or None,
    )
    return {
        "command": params["command"],
        "success": completed.returncode == 0,
        "exit_code": completed.returncode,
        "stdout": completed.stdout,
        "stderr": completed.stderr or None,
    }


def system_info(params: dict[str, Any]) -> dict[str, Any]:
    kind = params.get("type") or "all"
    info: dict[str, Any] = {}
    if kind in ("all", "os"):
        info["os"] = {
            "platform": platform.system(),
            "release": platform.release(),
            "hostname": platform.node(),
            "arch": platform.machine(),
            "python": platform.python_version(),
        }
    if kind in ("all", "cpu"):
        try:
            load = list(os.getloadavg())
        except (OSError, AttributeError):
            load = []
        info["cpu"] = {"count": os.cpu_count(), "load_average": load}
    if kind in ("all", "disk"):
        usage = shutil.disk_usage("/")
        info["disk"] = {"total": usage.total, "used": usage.used, "free": usage.free}
    return {"type": kind, "info": info, "timestamp": time.time()}


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


def builtin_capabilities() -> list[CapabilityDescriptor]:
    """Fresh descriptors for every built-in, in routing order."""
    return [
        CapabilityDescriptor(
            id="file_read",
            name="Read File",
            category=CapabilityCategory.FILE,
            description="Read the contents of a text file.",
            parameter_schema={
                "type": "object",
                "properties": {
                    "path": {"type": "string", "description": "Path to the file."},
                    "encoding": {"type": "string", "description": "Text encoding. Default utf-8."},
                },
                "required": ["path"],
            },
            safety_check=file_read_allowed,
            execute=file_read,
        ),
        CapabilityDescriptor(
            id="file_write",
            name="Write File",
            category=CapabilityCategory.FILE,
            description="Write or append text to a file, creating parent directories.",
            parameter_schema={
                "type": "object",
                "properties": {
                    "path": {"type": "string"},
                    "content": {"type": "string"},
                    "encoding": {"type": "string"},
                    "mode": {"type": "string", "description": "overwrite (default) or append"},
                },
                "required": ["path", "content"],
            },
            safety_check=file_write_allowed,
            execute=file_write,
        ),
        CapabilityDescriptor(
            id="file_list",
            name="List Directory",
            category=CapabilityCategory.FILE,
            description="List the entries of a directory, optionally recursively.",
            parameter_schema={
                "type": "object",
                "properties": {
                    "path": {"type": "string"},
                    "recursive": {"type": "boolean"},
                    "pattern": {"type": "string", "description": "Substring the name must contain."},
                },
                "required": ["path"],
            },
            safety_check=file_list_allowed,
            execute=file_list,
        ),
        CapabilityDescriptor(
            id="web_fetch",
            name="Fetch Web Content",
            category=CapabilityCategory.WEB,
            description="Fetch a public http(s) URL and return the start of its body.",
            parameter_schema={
                "type": "object",
                "properties": {
                    "url": {"type": "string"},
                    "method": {"type": "string"},
                    "headers": {"type": "object"},
                    "body": {"type": "string"},
                    "max_chars": {"type": "integer"},
                },
                "required": ["url"],
            },
            safety_check=web_fetch_allowed,
            execute=web_fetch,
            timeout=WEB_FETCH_TIMEOUT + 5.0,
        ),
        CapabilityDescriptor(
            id="code_analyze",
            name="Analyze Code",
            category=CapabilityCategory.CODE,
            description="Summarize the structure of a code snippet.",
            parameter_schema={
                "type": "object",
                "properties": {
                    "code": {"type": "string"},
                    "language": {"type": "string", "description": "Default python."},
                },
                "required": ["code"],
            },
            execute=code_analyze,
        ),
        CapabilityDescriptor(
            id="system_execute",
            name="Execute Command",
            category=CapabilityCategory.SYSTEM,
            description="Run a shell command and capture its output.",
            parameter_schema={
                "type": "object",
                "properties": {
                    "command": {"type": "string"},
                    "timeout": {"type": "number", "description": "Seconds. Default 30."},
                    "cwd": {"type": "string"},
                },
                "required": ["command"],
            },
            safety_check=system_execute_allowed,
            execute=system_execute,
        ),
        CapabilityDescriptor(
            id="system_info",
            name="System Information",
            category=CapabilityCategory.SYSTEM,
            description="Report OS, CPU and disk information.",
            parameter_schema={
                "type": "object",
                "properties": {
                    "type": {"type": "string", "description": "os, cpu, disk or all"},
                },
            },
            execute=system_info,
        ),
    ]


def register_builtin_capabilities(registry: CapabilityRegistry) -> int:
    """Register every built-in with ``registry``. Returns how many were added."""
    added = 0
    for capability in builtin_capabilities():
        registry.register(capability)
        added += 1
    logger.info("capabilities.builtin_registered", count=added)
    return added
