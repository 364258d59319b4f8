"""Persistence of compliance policies, rules and exemptions.

Assigns rule and policy identities, enforces rule name uniqueness within a
policy, and rebuilds the domain objects used by compliance runs.
"""

from typing import Iterable, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from netcomply.common.logger import get_logger
from netcomply.compliance.errors import (
    ComplianceError,
    DuplicateRuleError,
    PersistenceError,
)
from netcomply.compliance.exemptions import Exemption, ExemptionRegistry
from netcomply.compliance.policy import Policy
from netcomply.compliance.registry import RuleKindRegistry, get_registry
from netcomply.compliance.rule import InvalidRule, Rule
from netcomply.db.models import ExemptionRecord, PolicyRecord, RuleRecord

logger = get_logger("repository")


class ComplianceRepository:
    """Loads and saves compliance entities through a database session."""

    def __init__(self, db: Session, registry: Optional[RuleKindRegistry] = None):
        """
        Initialize the repository.

        Args:
            db: Database session
            registry: Rule kind registry used to rebuild rules
        """
        self.db = db
        self.registry = registry or get_registry()

    # ------------------------------------------------------------------
    # Policies
    # ------------------------------------------------------------------

    def create_policy(self, name: str, target_groups: Iterable[str] = ()) -> Policy:
        """Store a new, empty policy and return it with its id."""
        record = PolicyRecord(name=name, target_groups=sorted(set(target_groups)))
        self._commit_new(record, f"Could not create policy '{name}'")
        logger.info(f"Created policy '{name}' (id {record.id})")
        return Policy(name=record.name, id=record.id, target_groups=record.target_groups)

    def delete_policy(self, policy_id: int) -> None:
        """Delete a policy, its rules and their exemptions."""
        record = self._get_policy_record(policy_id)
        try:
            for rule in list(record.rules):
                self._delete_exemptions(rule.id)
                self.db.delete(rule)
            self.db.delete(record)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Could not delete policy {policy_id}: {e}") from e

    def load_policies(self, policy_ids: Optional[Iterable[int]] = None) -> List[Policy]:
        """Load policies with their rules, in id order.

        Rules whose stored definition cannot be rebuilt are loaded as
        InvalidRule so they report ERROR instead of failing the run.

        Raises:
            PersistenceError: If the database cannot be read
        """
        try:
            query = self.db.query(PolicyRecord)
            if policy_ids is not None:
                query = query.filter(PolicyRecord.id.in_(list(policy_ids)))
            records = query.order_by(PolicyRecord.id).all()

            policies = []
            for record in records:
                policy = Policy(name=record.name, id=record.id, target_groups=record.target_groups or [])
                for rule_record in record.rules:
                    policy.add_rule(self._to_rule(rule_record))
                policies.append(policy)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not load policies: {e}") from e
        return policies

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def add_rule(self, policy_id: int, rule: Rule) -> Rule:
        """Validate and store a rule in a policy, assigning its id.

        Raises:
            DuplicateRuleError: If the policy already has a rule with the name
            RuleValidationError: If the rule definition is invalid
        """
        policy = self._get_policy_record(policy_id)
        rule.validate()
        self._check_unique_name(policy, rule.name)

        record = RuleRecord(
            policy_id=policy.id,
            name=rule.name,
            type=rule.kind,
            enabled=rule.enabled,
            definition=rule.definition(),
        )
        try:
            self.db.add(record)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise DuplicateRuleError(policy.name, rule.name) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Could not save rule '{rule.name}': {e}") from e

        rule.id = record.id
        logger.info(f"Added {rule.kind} rule '{rule.name}' (id {rule.id}) to policy '{policy.name}'")
        return rule

    def update_rule(self, rule: Rule) -> Rule:
        """Save the name, enablement and definition of an existing rule."""
        record = self._get_rule_record(rule.id)
        rule.validate()
        if rule.name != record.name:
            self._check_unique_name(record.policy, rule.name)
        record.name = rule.name
        record.enabled = rule.enabled
        record.type = rule.kind
        record.definition = rule.definition()
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise DuplicateRuleError(record.policy.name, rule.name) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Could not update rule {rule.id}: {e}") from e
        return rule

    def delete_rule(self, rule_id: int) -> int:
        """Delete a rule after removing all of its exemptions.

        Returns:
            Number of exemptions removed with the rule
        """
        record = self._get_rule_record(rule_id)
        try:
            removed = self._delete_exemptions(rule_id)
            self.db.delete(record)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Could not delete rule {rule_id}: {e}") from e
        logger.info(f"Deleted rule {rule_id} and {removed} exemption(s)")
        return removed

    # ------------------------------------------------------------------
    # Exemptions
    # ------------------------------------------------------------------

    def add_exemption(self, exemption: Exemption) -> Exemption:
        """Store an exemption, replacing the expiry of an existing one."""
        self._get_rule_record(exemption.rule_id)
        try:
            self.db.merge(ExemptionRecord(
                rule_id=exemption.rule_id,
                device_id=exemption.device_id,
                expiration_date=exemption.expiration_date,
            ))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Could not save exemption: {e}") from e
        return exemption

    def remove_exemption(self, rule_id: int, device_id: int) -> bool:
        try:
            record = self.db.get(ExemptionRecord, (rule_id, device_id))
            if record is None:
                return False
            self.db.delete(record)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Could not remove exemption: {e}") from e
        return True

    def load_exemptions(self, device_ids: Optional[Iterable[int]] = None) -> ExemptionRegistry:
        """Load exemptions, optionally restricted to some devices."""
        try:
            query = self.db.query(ExemptionRecord)
            if device_ids is not None:
                query = query.filter(ExemptionRecord.device_id.in_(list(device_ids)))
            return ExemptionRegistry([
                Exemption(r.rule_id, r.device_id, r.expiration_date) for r in query.all()
            ])
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not load exemptions: {e}") from e

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _to_rule(self, record: RuleRecord) -> Rule:
        data = {
            **(record.definition or {}),
            "type": record.type,
            "id": record.id,
            "name": record.name,
            "enabled": record.enabled,
        }
        try:
            return self.registry.rule_from_dict(data)
        except ComplianceError as e:
            logger.error(f"Stored rule {record.id} ('{record.name}') cannot be loaded: {e}")
            return InvalidRule(name=record.name, enabled=record.enabled, id=record.id, reason=str(e))

    def _delete_exemptions(self, rule_id: int) -> int:
        return self.db.query(ExemptionRecord).filter(
            ExemptionRecord.rule_id == rule_id
        ).delete(synchronize_session="fetch")

    def _check_unique_name(self, policy: PolicyRecord, name: str) -> None:
        exists = self.db.query(RuleRecord).filter(
            RuleRecord.policy_id == policy.id,
            RuleRecord.name == name,
        ).first()
        if exists is not None:
            raise DuplicateRuleError(policy.name, name)

    def _get_policy_record(self, policy_id: int) -> PolicyRecord:
        try:
            record = self.db.get(PolicyRecord, policy_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not load policy {policy_id}: {e}") from e
        if record is None:
            raise PersistenceError(f"Policy {policy_id} not found")
        return record

    def _get_rule_record(self, rule_id: int) -> RuleRecord:
        try:
            record = self.db.get(RuleRecord, rule_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not load rule {rule_id}: {e}") from e
        if record is None:
            raise PersistenceError(f"Rule {rule_id} not found")
        return record

    def _commit_new(self, record, message: str) -> None:
        try:
            self.db.add(record)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"{message}: {e}") from e
