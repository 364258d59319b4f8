"""Exceptions raised by the compliance core."""

from typing import Optional


class ComplianceError(Exception):
    """Base class for all compliance errors."""


class RuleValidationError(ComplianceError):
    """Raised when a rule definition is invalid (bad pattern or script)."""

    def __init__(self, message: str, rule_name: Optional[str] = None):
        super().__init__(message)
        self.rule_name = rule_name


class RuleEvaluationError(ComplianceError):
    """Raised by rule kinds when evaluation against a device fails."""


class MissingConfigurationError(RuleEvaluationError):
    """Raised when a device lacks the configuration data a rule needs."""

    def __init__(self, device_name: str, attribute: str):
        super().__init__(f"Device {device_name} has no '{attribute}' configuration data")
        self.device_name = device_name
        self.attribute = attribute


class ScriptExecutionError(RuleEvaluationError):
    """Raised when a rule script fails inside its sandbox."""


class ScriptTimeoutError(ScriptExecutionError):
    """Raised when a rule script exceeds the sandbox time limit."""


class DuplicateRuleError(ComplianceError):
    """Raised when a rule name is already used within a policy."""

    def __init__(self, policy_name: str, rule_name: str):
        super().__init__(f"Policy '{policy_name}' already has a rule named '{rule_name}'")
        self.policy_name = policy_name
        self.rule_name = rule_name


class UnknownRuleKindError(ComplianceError):
    """Raised when no rule kind is registered under a type tag."""


class RegistryFrozenError(ComplianceError):
    """Raised when the rule kind registry is modified after startup."""


class PersistenceError(ComplianceError):
    """Raised when rules, policies or exemptions cannot be loaded or saved."""


class ComplianceRunError(ComplianceError):
    """Raised when a whole compliance run cannot proceed."""
