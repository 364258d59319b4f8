"""Rule kind registry.

Maps the type tag stored with each rule ("text", "python", "javascript")
to the Rule subclass implementing it. The registry is populated once at
startup and frozen before any compliance run starts.
"""

import threading
from typing import Any, Dict, List, Optional, Type

from ..common.logger import get_logger
from .errors import RegistryFrozenError, RuleValidationError, UnknownRuleKindError
from .rule import Rule

logger = get_logger("rule_registry")


class RuleKindRegistry:
    """Registry of rule kinds by type tag."""

    def __init__(self):
        self._kinds: Dict[str, Type[Rule]] = {}
        self._frozen = False
        self._lock = threading.Lock()

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(self, rule_class: Type[Rule]) -> Type[Rule]:
        """Register a rule kind.

        Args:
            rule_class: Rule subclass with a ``kind`` tag

        Returns:
            The registered class, so this can be used as a decorator

        Raises:
            RegistryFrozenError: If the registry was frozen
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(
                    f"Cannot register rule kind '{rule_class.kind}' after startup"
                )
            if rule_class.kind in self._kinds:
                logger.warning(f"Overwriting existing rule kind: {rule_class.kind}")
            self._kinds[rule_class.kind] = rule_class
        logger.debug(f"Registered rule kind: {rule_class.kind}")
        return rule_class

    def freeze(self) -> None:
        """Forbid further registration."""
        self._frozen = True

    def get(self, kind: str) -> Type[Rule]:
        """Get the rule class for a type tag.

        Raises:
            UnknownRuleKindError: If no kind is registered under the tag
        """
        try:
            return self._kinds[kind]
        except KeyError:
            raise UnknownRuleKindError(f"Unknown rule type: {kind}") from None

    def find(self, kind: str) -> Optional[Type[Rule]]:
        return self._kinds.get(kind)

    def list_kinds(self) -> List[str]:
        return sorted(self._kinds)

    def create(self, kind: str, **fields: Any) -> Rule:
        """Instantiate a rule of the given kind."""
        return self.rule_from_dict({"type": kind, **fields})

    def rule_from_dict(self, data: Dict[str, Any]) -> Rule:
        """Build a rule from its serialized form (``type`` selects the kind).

        Raises:
            RuleValidationError: If the type tag is missing
            UnknownRuleKindError: If the type tag is not registered
        """
        kind = data.get("type")
        if not kind:
            raise RuleValidationError("Rule definition has no type", rule_name=data.get("name"))
        return self.get(kind).from_dict(data)

    def __contains__(self, kind: object) -> bool:
        return kind in self._kinds


# Global registry instance
_registry = RuleKindRegistry()
_init_lock = threading.Lock()


def get_registry() -> RuleKindRegistry:
    """Get the process-wide rule kind registry.

    The built-in kinds are registered and the registry frozen on first use.
    """
    if not _registry.frozen:
        with _init_lock:
            register_builtin_kinds(_registry)
    return _registry


def register_builtin_kinds(registry: RuleKindRegistry) -> None:
    """Register the text, Python and JavaScript rule kinds and freeze."""
    # Imported here to avoid circular imports
    from ..rules.script_rule import JavaScriptRule, PythonRule
    from ..rules.text_rule import TextRule

    if registry.frozen:
        return
    for rule_class in (TextRule, PythonRule, JavaScriptRule):
        if rule_class.kind not in registry:
            registry.register(rule_class)
    registry.freeze()
    logger.info(f"Rule kinds available: {', '.join(registry.list_kinds())}")


def rule_from_dict(data: Dict[str, Any]) -> Rule:
    """Build a rule using the global registry."""
    return get_registry().rule_from_dict(data)
