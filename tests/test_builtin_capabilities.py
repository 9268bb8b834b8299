"""Tests for aria.capabilities.builtin — the shipped file/web/code/system capabilities."""

from __future__ import annotations

import sys

import httpx
import pytest

from aria.capabilities import builtin
from aria.capabilities.builtin import (
    builtin_capabilities,
    code_analyze,
    file_list,
    file_list_allowed,
    file_read,
    file_read_allowed,
    file_write,
    file_write_allowed,
    register_builtin_capabilities,
    system_execute,
    system_execute_allowed,
    system_info,
    web_fetch,
    web_fetch_allowed,
)
from aria.capabilities.registry import CapabilityRegistry
from aria.cognition.decision import DecisionEngine
from aria.types import DecisionType


def test_catalog_order_and_categories():
    caps = builtin_capabilities()
    assert [c.id for c in caps] == [
        "file_read", "file_write", "file_list",
        "web_fetch", "code_analyze", "system_execute", "system_info",
    ]
    assert {c.category for c in caps} == {"file", "web", "code", "system"}


@pytest.mark.asyncio
@pytest.mark.parametrize("text", ["deploy the service", "send email to the team"])
async def test_uncovered_categories_fall_through_to_reply(gate, text):
    registry = CapabilityRegistry()
    register_builtin_capabilities(registry)
    engine = DecisionEngine(registry, gate)

    decision = await engine.decide(text)

    assert decision.type == DecisionType.REPLY


def test_register_builtin_capabilities():
    registry = CapabilityRegistry()
    assert register_builtin_capabilities(registry) == 7
    assert registry.by_category("file")[0].id == "file_read"


class TestFileCapabilities:
    def test_read_write_append(self, tmp_path):
        target = tmp_path / "sub" / "notes.txt"

        written = file_write({"path": str(target), "content": "hello"})
        file_write({"path": str(target), "content": " world", "mode": "append"})

        assert written["chars_written"] == 5
        assert file_read({"path": str(target)})["content"] == "hello world"

    def test_write_rejects_unknown_mode(self, tmp_path):
        with pytest.raises(ValueError):
            file_write({"path": str(tmp_path / "x"), "content": "a", "mode": "truncate"})

    def test_read_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            file_read({"path": str(tmp_path / "nope.txt")})

    def test_list_flat_and_recursive(self, tmp_path):
        (tmp_path / "a.py").write_text("x")
        (tmp_path / "pkg").mkdir()
        (tmp_path / "pkg" / "b.py").write_text("y")
        (tmp_path / "pkg" / "c.txt").write_text("z")

        flat = file_list({"path": str(tmp_path)})
        assert flat["count"] == 2
        assert {item["name"] for item in flat["items"]} == {"a.py", "pkg"}

        deep = file_list({"path": str(tmp_path), "recursive": True, "pattern": ".py"})
        assert deep["count"] == 2

    @pytest.mark.parametrize(
        ("path", "allowed"),
        [("notes.txt", True), ("/etc/passwd", False), ("app/.env", False), ("my_secret.txt", False), ("", False)],
    )
    def test_read_predicate(self, path, allowed):
        assert file_read_allowed({"path": path}) is allowed

    def test_write_predicate(self):
        assert file_write_allowed({"path": "out.txt", "content": "x"})
        assert not file_write_allowed({"path": "out.txt", "content": ""})
        assert not file_write_allowed({"path": "/etc/hosts", "content": "x"})

    def test_list_predicate(self):
        assert file_list_allowed({"path": "."})
        assert not file_list_allowed({"path": "../.."})
        assert not file_list_allowed({"path": "/etc"})


class TestWebFetch:
    @pytest.mark.parametrize(
        ("url", "allowed"),
        [
            ("https://example.com/page", True),
            ("http://example.com", True),
            ("ftp://example.com", False),
            ("https://user:pw@example.com", False),
            ("http://localhost:8080", False),
            ("http://127.0.0.1", False),
            ("http://10.0.0.5/admin", False),
            ("http://169.254.169.254/latest", False),
        ],
    )
    def test_predicate(self, url, allowed):
        assert web_fetch_allowed({"url": url}) is allowed

    @pytest.mark.asyncio
    async def test_fetch_truncates(self, monkeypatch):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="a" * 500, headers={"content-type": "text/plain"})

        real_client = httpx.AsyncClient
        monkeypatch.setattr(
            builtin.httpx,
            "AsyncClient",
            lambda **kw: real_client(transport=httpx.MockTransport(handler), **kw),
        )

        result = await web_fetch({"url": "https://example.com/", "max_chars": 100})

        assert result["status"] == 200
        assert result["content"] == "a" * 100
        assert result["truncated"] is True
        assert result["content_type"].startswith("text/plain")

    @pytest.mark.asyncio
    async def test_fetch_error_status_raises(self, monkeypatch):
        real_client = httpx.AsyncClient
        monkeypatch.setattr(
            builtin.httpx,
            "AsyncClient",
            lambda **kw: real_client(transport=httpx.MockTransport(lambda r: httpx.Response(404)), **kw),
        )
        with pytest.raises(httpx.HTTPStatusError):
            await web_fetch({"url": "https://example.com/missing"})


class TestCodeAnalyze:
    def test_python_structure(self):
        code = '"""Module."""\nimport os\nfrom pathlib import Path\n\nclass A:\n    def m(self):\n        pass\n\nasync def f():\n    pass\n'
        result = code_analyze({"code": code})

        assert result["valid"] is True
        assert result["classes"] == ["A"]
        assert set(result["functions"]) == {"m", "f"}
        assert result["imports"] == ["os", "pathlib"]
        assert result["has_docstring"] is True
        assert result["blank_lines"] == 2

    def test_syntax_error(self):
        result = code_analyze({"code": "def broken(:\n"})
        assert result["valid"] is False
        assert "line 1" in result["error"]

    def test_other_language_counts_lines_only(self):
        result = code_analyze({"code": "let x = 1;\n\nlet y = 2;", "language": "JavaScript"})
        assert result == {"language": "javascript", "lines": 3, "blank_lines": 1}


class TestSystem:
    @pytest.mark.parametrize(
        ("command", "allowed"),
        [
            ("ls -la", True),
            ("echo hi", True),
            ("  rm -rf /", False),
            ("sudo ls", False),
            ("shutdown now", False),
            ("chmod 777 x", False),
            ("", False),
        ],
    )
    def test_execute_predicate(self, command, allowed):
        assert system_execute_allowed({"command": command}) is allowed

    def test_execute_captures_output(self):
        result = system_execute({"command": f'"{sys.executable}" -c "print(42)"'})
        assert result["success"] is True
        assert result["exit_code"] == 0
        assert result["stdout"].strip() == "42"

    def test_execute_nonzero_exit(self):
        result = system_execute({"command": f'"{sys.executable}" -c "import sys; sys.exit(3)"'})
        assert result["success"] is False
        assert result["exit_code"] == 3

    def test_info_subset(self):
        result = system_info({"type": "cpu"})
        assert result["type"] == "cpu"
        assert set(result["info"]) == {"cpu"}
        assert result["info"]["cpu"]["count"] >= 1

    def test_info_all(self):
        assert set(system_info({})["info"]) == {"os", "cpu", "disk"}
