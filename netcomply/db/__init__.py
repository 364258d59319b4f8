"""Persistence of compliance policies, rules and exemptions."""

from netcomply.db.base import Base
from netcomply.db.models import ExemptionRecord, PolicyRecord, RuleRecord
from netcomply.db.repository import ComplianceRepository

__all__ = [
    "Base",
    "ComplianceRepository",
    "ExemptionRecord",
    "PolicyRecord",
    "RuleRecord",
]
