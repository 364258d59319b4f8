"""Database models for policies, rules and exemptions.

Rule deletion does not cascade to exemptions through the ORM; the
repository removes them explicitly before deleting the rule.
"""

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from netcomply.db.base import Base


class PolicyRecord(Base):
    __tablename__ = "compliance_policies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False, unique=True)
    target_groups = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    rules = relationship(
        "RuleRecord", back_populates="policy", order_by="RuleRecord.id", passive_deletes=True
    )


class RuleRecord(Base):
    __tablename__ = "compliance_rules"
    __table_args__ = (
        UniqueConstraint("policy_id", "name", name="uq_compliance_rules_policy_name"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    policy_id = Column(Integer, ForeignKey("compliance_policies.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    type = Column(String(32), nullable=False)
    enabled = Column(Boolean, nullable=False, default=False)
    definition = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    policy = relationship("PolicyRecord", back_populates="rules")
    exemptions = relationship("ExemptionRecord", back_populates="rule", passive_deletes=True)


class ExemptionRecord(Base):
    __tablename__ = "compliance_exemptions"

    rule_id = Column(Integer, ForeignKey("compliance_rules.id"), primary_key=True)
    device_id = Column(Integer, primary_key=True, index=True)
    expiration_date = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    rule = relationship("RuleRecord", back_populates="exemptions")
