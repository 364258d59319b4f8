"""Compliance evaluation core for netcomply.

Evaluates devices against rules grouped in policies, honouring rule
enablement and per-device exemptions.
"""

from .context import EvaluationContext
from .device import Device
from .errors import (
    ComplianceError,
    ComplianceRunError,
    DuplicateRuleError,
    MissingConfigurationError,
    PersistenceError,
    RegistryFrozenError,
    RuleEvaluationError,
    RuleValidationError,
    ScriptExecutionError,
    ScriptTimeoutError,
    UnknownRuleKindError,
)
from .exemptions import Exemption, ExemptionRegistry
from .policy import Policy
from .registry import RuleKindRegistry, get_registry, rule_from_dict
from .result import CheckResult, ResultOption
from .rule import Rule
from .runner import ComplianceRun, ComplianceRunner

__all__ = [
    "CheckResult",
    "ComplianceError",
    "ComplianceRun",
    "ComplianceRunError",
    "ComplianceRunner",
    "Device",
    "DuplicateRuleError",
    "EvaluationContext",
    "Exemption",
    "ExemptionRegistry",
    "MissingConfigurationError",
    "PersistenceError",
    "Policy",
    "RegistryFrozenError",
    "ResultOption",
    "Rule",
    "RuleEvaluationError",
    "RuleKindRegistry",
    "RuleValidationError",
    "ScriptExecutionError",
    "ScriptTimeoutError",
    "UnknownRuleKindError",
    "get_registry",
    "rule_from_dict",
]
