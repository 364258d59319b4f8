"""Outcome model for compliance checks.

A CheckResult pairs the outcome of evaluating one rule against one device
with the identities of both and an optional diagnostic comment.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional


class ResultOption(str, Enum):
    """Closed set of compliance outcomes."""

    # Decided by the base rule contract
    DISABLED = "disabled"              # Rule administratively disabled
    EXEMPTED = "exempted"              # Device excused from the rule
    NOT_APPLICABLE = "not_applicable"  # Rule does not apply to the device

    # Reported by rule kinds
    CONFORMING = "conforming"
    NON_CONFORMING = "non_conforming"
    ERROR = "error"                    # Invalid rule or evaluation failure


# Outcomes a rule kind is allowed to report as its own verdict
VERDICT_OPTIONS: FrozenSet[ResultOption] = frozenset({
    ResultOption.NOT_APPLICABLE,
    ResultOption.CONFORMING,
    ResultOption.NON_CONFORMING,
})

FAILURE_OPTIONS: FrozenSet[ResultOption] = frozenset({
    ResultOption.NON_CONFORMING,
    ResultOption.ERROR,
})


def parse_result_option(value: Any) -> ResultOption:
    """Convert a name or value ("CONFORMING", "non_conforming") to a ResultOption.

    Raises:
        ValueError: If the value names no outcome
    """
    if isinstance(value, ResultOption):
        return value
    if isinstance(value, str):
        key = value.strip().upper().replace("-", "_")
        if key in ResultOption.__members__:
            return ResultOption[key]
        try:
            return ResultOption(value.strip().lower())
        except ValueError:
            pass
    raise ValueError(f"Unknown compliance result: {value!r}")


@dataclass(frozen=True)
class CheckResult:
    """Result of checking one rule against one device."""

    rule_id: int
    rule_name: str
    device_id: int
    device_name: str
    result: ResultOption
    comment: Optional[str] = None
    check_date: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc), compare=False
    )

    @property
    def is_failure(self) -> bool:
        """Whether the outcome should be reported as a compliance problem."""
        return self.result in FAILURE_OPTIONS

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "device_id": self.device_id,
            "device_name": self.device_name,
            "result": self.result.value,
            "comment": self.comment,
            "check_date": self.check_date.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CheckResult":
        """Create a result from its dictionary form."""
        check_date = data.get("check_date")
        return cls(
            rule_id=data["rule_id"],
            rule_name=data["rule_name"],
            device_id=data["device_id"],
            device_name=data["device_name"],
            result=parse_result_option(data["result"]),
            comment=data.get("comment"),
            check_date=(
                datetime.fromisoformat(check_date)
                if check_date
                else datetime.now(timezone.utc)
            ),
        )

    def __str__(self) -> str:
        text = f"{self.device_name} / {self.rule_name}: {self.result.name}"
        if self.comment:
            text += f" ({self.comment})"
        return text
