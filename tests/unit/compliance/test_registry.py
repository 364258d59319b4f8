"""Tests for the rule kind registry."""

import pytest

from netcomply.compliance import (
    RegistryFrozenError,
    RuleKindRegistry,
    RuleValidationError,
    UnknownRuleKindError,
    get_registry,
    rule_from_dict,
)
from netcomply.compliance.registry import register_builtin_kinds
from netcomply.rules import JavaScriptRule, PythonRule, TextRule
from tests.factories import StaticRule


class TestRuleKindRegistry:
    """Tests for RuleKindRegistry."""

    def setup_method(self):
        """Create a fresh registry for each test."""
        self.registry = RuleKindRegistry()

    def test_register(self):
        self.registry.register(StaticRule)

        assert "static" in self.registry
        assert self.registry.get("static") is StaticRule
        assert self.registry.list_kinds() == ["static"]

    def test_get_unknown(self):
        with pytest.raises(UnknownRuleKindError):
            self.registry.get("perl")
        assert self.registry.find("perl") is None

    def test_frozen_registry_rejects_registration(self):
        self.registry.freeze()

        with pytest.raises(RegistryFrozenError):
            self.registry.register(StaticRule)

    def test_create(self):
        self.registry.register(StaticRule)

        rule = self.registry.create("static", name="s", id=3, enabled=True)

        assert isinstance(rule, StaticRule)
        assert rule.id == 3

    def test_rule_from_dict_requires_type(self):
        with pytest.raises(RuleValidationError):
            self.registry.rule_from_dict({"name": "untyped"})

    def test_builtin_kinds(self):
        register_builtin_kinds(self.registry)

        assert self.registry.frozen
        assert self.registry.list_kinds() == ["javascript", "python", "text"]
        assert self.registry.get("text") is TextRule
        assert self.registry.get("python") is PythonRule
        assert self.registry.get("javascript") is JavaScriptRule

    def test_builtin_kinds_keep_custom_kinds(self):
        self.registry.register(StaticRule)
        register_builtin_kinds(self.registry)

        assert "static" in self.registry


class TestGlobalRegistry:
    """Tests for the process-wide registry."""

    def test_global_registry_is_frozen(self):
        registry = get_registry()

        assert registry.frozen
        assert registry is get_registry()
        with pytest.raises(RegistryFrozenError):
            registry.register(StaticRule)

    def test_rule_from_dict(self):
        rule = rule_from_dict({
            "type": "text",
            "id": 12,
            "name": "banner-check",
            "enabled": True,
            "text": "Authorized access only",
        })

        assert isinstance(rule, TextRule)
        assert rule.enabled
        assert rule.text == "Authorized access only"
