"""Compliance policies.

A policy is a named, ordered group of rules applied to a selection of
devices (by group membership).
"""

from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, Optional

from ..common.logger import get_logger
from .context import EvaluationContext
from .device import DeviceView
from .errors import DuplicateRuleError
from .exemptions import ExemptionRegistry
from .result import CheckResult, ResultOption
from .rule import Rule

logger = get_logger("policy")


class Policy:
    """Named, ordered collection of rules."""

    def __init__(
        self,
        name: str,
        id: int = 0,
        target_groups: Iterable[str] = (),
        rules: Iterable[Rule] = (),
    ):
        self.id = id
        self.name = name
        self.target_groups: FrozenSet[str] = frozenset(target_groups)
        self._rules: List[Rule] = []
        for rule in rules:
            self.add_rule(rule)

    @property
    def rules(self) -> List[Rule]:
        """Rules in insertion order."""
        return list(self._rules)

    def add_rule(self, rule: Rule) -> Rule:
        """Attach a rule to this policy.

        Raises:
            DuplicateRuleError: If another rule already uses the name
        """
        if self.get_rule(rule.name) is not None:
            raise DuplicateRuleError(self.name, rule.name)
        rule.policy = self
        self._rules.append(rule)
        return rule

    def get_rule(self, name: str) -> Optional[Rule]:
        for rule in self._rules:
            if rule.name == name:
                return rule
        return None

    def remove_rule(self, rule: Rule, exemptions: Optional[ExemptionRegistry] = None) -> bool:
        """Detach a rule, dropping its exemptions when a registry is given.

        Returns:
            True if the rule belonged to this policy
        """
        for index, candidate in enumerate(self._rules):
            if candidate is rule or (candidate == rule and candidate.name == rule.name):
                del self._rules[index]
                candidate.policy = None
                if exemptions is not None:
                    exemptions.clear_rule(candidate)
                return True
        return False

    def applies_to(self, device: Any) -> bool:
        """Whether the device is in scope (no target groups means every device)."""
        if not self.target_groups:
            return True
        return bool(self.target_groups & frozenset(getattr(device, "groups", ())))

    def check(
        self, device: DeviceView, context: Optional[EvaluationContext] = None
    ) -> List[CheckResult]:
        """Evaluate every rule of the policy against a device, in order.

        A failing rule yields an ERROR result and the remaining rules are
        still evaluated.
        """
        context = context or EvaluationContext()
        results = []
        for rule in self._rules:
            try:
                results.append(rule.check(device, context))
            except Exception as e:
                logger.exception(f"Rule '{rule.name}' of policy '{self.name}' crashed on {device.name}")
                results.append(CheckResult(
                    rule_id=rule.id,
                    rule_name=rule.name,
                    device_id=device.id,
                    device_name=device.name,
                    result=ResultOption.ERROR,
                    comment=f"Evaluation error: {e}",
                ))
        return results

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "target_groups": sorted(self.target_groups),
            "rules": [rule.to_dict() for rule in self._rules],
        }

    def __iter__(self) -> Iterator[Rule]:
        return iter(list(self._rules))

    def __len__(self) -> int:
        return len(self._rules)

    def __repr__(self) -> str:
        return f"<Policy id={self.id} name={self.name!r} rules={len(self._rules)}>"
