from __future__ import annotations

import sys
import types

import pytest

from replypilot.sms.errors import ProviderContractError, ProviderNotRegisteredError
from replypilot.sms.registry import ProviderRegistry, parse_extra_providers


class _MissingRelease:
    def send(self, params):  # type: ignore[no-untyped-def]
        return None

    def handle_incoming(self, payload):  # type: ignore[no-untyped-def]
        return None

    def provision_number(self, params):  # type: ignore[no-untyped-def]
        return None

    def verify_webhook_signature(self, request):  # type: ignore[no-untyped-def]
        return True


def test_register_and_require(make_provider) -> None:
    registry = ProviderRegistry()
    provider = make_provider("acme")
    registry.register("acme", provider)

    assert registry.require("acme") is provider
    assert registry.get("acme") is provider
    assert "acme" in registry
    assert registry.ids() == ["acme"]


def test_require_unknown_provider_raises() -> None:
    registry = ProviderRegistry()
    with pytest.raises(ProviderNotRegisteredError) as exc:
        registry.require("nope")
    assert exc.value.provider_id == "nope"
    assert registry.get("nope") is None


def test_register_rejects_incomplete_provider() -> None:
    registry = ProviderRegistry()
    with pytest.raises(ProviderContractError, match="release_number"):
        registry.register("half", _MissingRelease())
    assert "half" not in registry


def test_register_rejects_duplicates_and_empty_ids(make_provider) -> None:
    registry = ProviderRegistry()
    first = make_provider("acme")
    registry.register("acme", first)

    with pytest.raises(ProviderContractError, match="already registered"):
        registry.register("acme", make_provider("acme"))
    assert registry.require("acme") is first

    with pytest.raises(ProviderContractError):
        registry.register("  ", make_provider("blank"))


def test_register_from_path_instantiates_classes(monkeypatch, make_provider) -> None:
    module = types.ModuleType("replypilot_test_ext_provider")

    class ExtProvider(type(make_provider("x"))):  # type: ignore[misc]
        def __init__(self) -> None:
            super().__init__("ext")

    module.ExtProvider = ExtProvider  # type: ignore[attr-defined]
    module.instance = make_provider("ext-instance")  # type: ignore[attr-defined]
    monkeypatch.setitem(sys.modules, module.__name__, module)

    registry = ProviderRegistry()
    registry.register_from_path("ext", f"{module.__name__}:ExtProvider")
    registry.register_from_path("ext2", f"{module.__name__}:instance")

    assert isinstance(registry.require("ext"), ExtProvider)
    assert registry.require("ext2") is module.instance


def test_register_from_path_bad_target() -> None:
    registry = ProviderRegistry()
    with pytest.raises(ProviderContractError):
        registry.register_from_path("x", "no_colon_here")
    with pytest.raises(ProviderContractError, match="Cannot load"):
        registry.register_from_path("x", "replypilot_missing_module_xyz:Provider")


def test_parse_extra_providers() -> None:
    assert parse_extra_providers("") == []
    assert parse_extra_providers(" a=pkg.mod:A , b=pkg.other:B ") == [
        ("a", "pkg.mod:A"),
        ("b", "pkg.other:B"),
    ]
    with pytest.raises(ProviderContractError):
        parse_extra_providers("broken")
