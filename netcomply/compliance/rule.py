"""Compliance rule contract.

A rule defines a constraint that a device should comply with. Concrete
rule kinds (text patterns, scripts) subclass Rule and provide their own
applicability test and verdict; the precedence between administrative
state, exemptions and the kind's verdict lives here only.
"""

from typing import TYPE_CHECKING, Any, ClassVar, Dict, Optional, Tuple

from ..common.logger import get_logger
from .context import EvaluationContext
from .device import DeviceView
from .errors import RuleEvaluationError, RuleValidationError
from .result import VERDICT_OPTIONS, CheckResult, ResultOption

if TYPE_CHECKING:
    from .policy import Policy

logger = get_logger("rule")

Verdict = Tuple[ResultOption, Optional[str]]


class Rule:
    """Base compliance rule.

    Used as is, a rule has no logic of its own and reports every device
    it is evaluated against as not applicable.
    """

    kind: ClassVar[str] = "generic"
    # Kind-specific constructor arguments, serialized by definition()
    definition_fields: ClassVar[Tuple[str, ...]] = ()

    def __init__(
        self,
        name: str = "",
        policy: Optional["Policy"] = None,
        enabled: bool = False,
        id: int = 0,
    ):
        self.id = id
        self.name = name
        self.enabled = enabled
        self.policy = policy

    def check(
        self, device: DeviceView, context: Optional[EvaluationContext] = None
    ) -> CheckResult:
        """Evaluate this rule against a device.

        Disablement dominates exemption, which dominates the kind's own
        verdict. Failures inside the kind's logic are reported as ERROR.

        Args:
            device: Device snapshot to check
            context: Diagnostics sink and evaluation instant

        Returns:
            CheckResult for the (rule, device) pair
        """
        context = context or EvaluationContext()

        if not self.enabled:
            return self._result(device, ResultOption.DISABLED)
        if device.is_exempted(self, context.now):
            return self._result(device, ResultOption.EXEMPTED)

        try:
            if not self.applies_to(device):
                return self._result(device, ResultOption.NOT_APPLICABLE)
            option, comment = self._evaluate(device, context)
            if option not in VERDICT_OPTIONS:
                raise ValueError(f"Rule kind '{self.kind}' reported invalid verdict {option!r}")
        except Exception as e:
            logger.warning(f"Rule '{self.name}' failed on device {device.name}: {e}")
            context.error(f"Error while checking rule '{self.name}' on device {device.name}: {e}")
            return self._result(device, ResultOption.ERROR, f"Evaluation error: {e}")

        return self._result(device, option, comment)

    def applies_to(self, device: DeviceView) -> bool:
        """Whether the rule is relevant for the device's platform."""
        return True

    def _evaluate(self, device: DeviceView, context: EvaluationContext) -> Verdict:
        logger.warning("Called generic rule check.")
        return ResultOption.NOT_APPLICABLE, None

    def validate(self) -> None:
        """Check the rule definition without any device.

        Raises:
            RuleValidationError: If the definition cannot be evaluated
        """

    def definition(self) -> Dict[str, Any]:
        """Kind-specific fields of the rule."""
        return {name: getattr(self, name) for name in self.definition_fields}

    def to_dict(self) -> Dict[str, Any]:
        """Convert rule to dictionary for serialization."""
        return {
            "type": self.kind,
            "id": self.id,
            "name": self.name,
            "enabled": self.enabled,
            **self.definition(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Rule":
        """Create a rule of this kind from its dictionary form.

        Raises:
            RuleValidationError: If the dictionary carries unknown fields
        """
        known = {"type", "id", "name", "enabled", *cls.definition_fields}
        unknown = sorted(set(data) - known)
        if unknown:
            raise RuleValidationError(
                f"Unknown field(s) for {cls.kind} rule: {', '.join(unknown)}",
                rule_name=data.get("name"),
            )
        return cls(
            name=data.get("name", ""),
            enabled=bool(data.get("enabled", False)),
            id=int(data.get("id") or 0),
            **{name: data[name] for name in cls.definition_fields if name in data},
        )

    def _result(
        self, device: DeviceView, option: ResultOption, comment: Optional[str] = None
    ) -> CheckResult:
        return CheckResult(
            rule_id=self.id,
            rule_name=self.name,
            device_id=device.id,
            device_name=device.name,
            result=option,
            comment=comment,
        )

    def __eq__(self, other: object) -> bool:
        if self is other:
            return True
        if other is None or type(self) is not type(other):
            return False
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id} name={self.name!r}>"

    def __str__(self) -> str:
        return f"Compliance rule {self.id} (name '{self.name}')"


class InvalidRule(Rule):
    """Stand-in for a stored rule that could not be rebuilt.

    Keeps the rule's identity so the problem is reported per device as an
    ERROR result instead of aborting the whole run.
    """

    kind = "invalid"

    def __init__(
        self,
        name: str = "",
        policy: Optional["Policy"] = None,
        enabled: bool = False,
        id: int = 0,
        reason: str = "",
    ):
        super().__init__(name=name, policy=policy, enabled=enabled, id=id)
        self.reason = reason

    def validate(self) -> None:
        raise RuleValidationError(self.reason, rule_name=self.name)

    def _evaluate(self, device: DeviceView, context: EvaluationContext) -> Verdict:
        raise RuleEvaluationError(f"Invalid rule definition: {self.reason}")
