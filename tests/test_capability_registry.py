"""Tests for aria.capabilities.registry.CapabilityRegistry."""

from __future__ import annotations

import threading

import pytest

from aria.capabilities.registry import CapabilityCategory, CapabilityDescriptor, CapabilityRegistry


def _cap(capability_id: str, category: str = "file", **kwargs) -> CapabilityDescriptor:
    return CapabilityDescriptor(
        id=capability_id,
        name=capability_id,
        category=category,
        execute=lambda params: params,
        **kwargs,
    )


def test_register_rejects_id_collisions_unless_override():
    registry = CapabilityRegistry()
    registry.register(_cap("dup"))

    with pytest.raises(ValueError):
        registry.register(_cap("dup", category="web"))

    registry.register(_cap("dup", category="web"), allow_override=True)
    assert registry.get("dup").category == "web"


def test_unknown_category_rejected():
    with pytest.raises(ValueError, match="unknown category"):
        _cap("bad", category="telepathy")


def test_enum_category_is_normalized():
    cap = _cap("x", category=CapabilityCategory.CODE)
    assert cap.category == "code"


def test_by_category_preserves_registration_order_and_skips_disabled():
    registry = CapabilityRegistry()
    registry.register(_cap("b_first"))
    registry.register(_cap("a_second"))
    registry.register(_cap("off", enabled=False))
    registry.register(_cap("other", category="web"))

    assert [c.id for c in registry.by_category("file")] == ["b_first", "a_second"]


def test_unregister_reports_whether_removed():
    registry = CapabilityRegistry()
    registry.register(_cap("one"))
    assert registry.unregister("one") is True
    assert registry.unregister("one") is False
    assert "one" not in registry


def test_replace_swaps_whole_mapping():
    registry = CapabilityRegistry()
    registry.register(_cap("old"))
    registry.replace([_cap("new1"), _cap("new2", category="code")])
    assert registry.ids() == ["new1", "new2"]
    assert registry.count == 2


def test_describe_excludes_callables():
    cap = _cap(
        "guarded",
        safety_check=lambda params: True,
        parameter_schema={"type": "object", "properties": {}, "required": []},
    )
    described = cap.describe()
    assert described["has_safety_check"] is True
    assert "execute" not in described


def test_concurrent_register_and_lookup():
    registry = CapabilityRegistry()
    errors: list[Exception] = []

    def writer(start: int) -> None:
        try:
            for i in range(start, start + 50):
                registry.register(_cap(f"cap_{i}"))
                registry.unregister(f"cap_{i - 1}")
        except Exception as e:  # pragma: no cover - surfaced by the assert
            errors.append(e)

    def reader() -> None:
        try:
            for _ in range(200):
                registry.by_category("file")
                registry.ids()
        except Exception as e:  # pragma: no cover - surfaced by the assert
            errors.append(e)

    threads = [threading.Thread(target=writer, args=(n * 100,)) for n in range(3)]
    threads += [threading.Thread(target=reader) for _ in range(3)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
