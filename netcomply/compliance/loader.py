"""Load policies, exemptions and devices from YAML files.

Used by the command line front end. Rules are validated while loading so
authoring errors surface before any device is evaluated.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import yaml

from ..common.logger import get_logger
from .device import Device
from .errors import ComplianceRunError, RuleValidationError
from .exemptions import Exemption, ExemptionRegistry
from .policy import Policy
from .registry import RuleKindRegistry, get_registry

logger = get_logger("loader")


class _IdAllocator:
    """Hands out ids, keeping the ids set explicitly in a file unique."""

    def __init__(self, label: str, requested: Iterable[Any]):
        self.label = label
        self.reserved: Set[int] = {int(r) for r in requested if r}
        self.claimed: Set[int] = set()
        self._next = 1

    def allocate(self, requested: Any = None) -> int:
        if requested:
            value = int(requested)
            if value in self.claimed:
                raise ComplianceRunError(f"Duplicate {self.label} id {value}")
        else:
            while self._next in self.reserved or self._next in self.claimed:
                self._next += 1
            value = self._next
        self.claimed.add(value)
        return value


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse a YAML timestamp or ISO 8601 string (naive values are UTC)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as e:
            raise ComplianceRunError(f"Invalid date: {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _read_yaml(path: Path) -> Any:
    if not path.exists():
        raise ComplianceRunError(f"File not found: {path}")
    try:
        with path.open("r") as f:
            return yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ComplianceRunError(f"Invalid YAML in {path}: {e}") from e


def parse_policies(
    data: Dict[str, Any],
    registry: Optional[RuleKindRegistry] = None,
    validate: bool = True,
) -> Tuple[List[Policy], ExemptionRegistry]:
    """Build policies and exemptions from a parsed policies document.

    Raises:
        ComplianceRunError: If the document structure is invalid
        RuleValidationError: If a rule definition is invalid
    """
    registry = registry or get_registry()
    if not isinstance(data, dict) or not isinstance(data.get("policies"), list):
        raise ComplianceRunError("Policies document must contain a 'policies' list")

    policy_entries = data["policies"]
    try:
        rule_entries = [
            rule for entry in policy_entries for rule in (entry.get("rules") or [])
        ]
        policy_ids = _IdAllocator("policy", (e.get("id") for e in policy_entries))
        rule_ids = _IdAllocator("rule", (r.get("id") for r in rule_entries))
    except (AttributeError, TypeError, ValueError) as e:
        raise ComplianceRunError(f"Invalid policies document: {e}") from e

    policies = []
    exemptions = ExemptionRegistry()
    for entry in policy_entries:
        try:
            policies.append(
                _parse_policy(entry, registry, validate, policy_ids, rule_ids, exemptions)
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            detail = f"missing field {e}" if isinstance(e, KeyError) else str(e)
            raise ComplianceRunError(
                f"Invalid entry in policy '{entry.get('name')}': {detail}"
            ) from e

    logger.info(
        f"Loaded {len(policies)} policy(ies), "
        f"{sum(len(p) for p in policies)} rule(s), {len(exemptions)} exemption(s)"
    )
    return policies, exemptions


def _parse_policy(
    entry: Dict[str, Any],
    registry: RuleKindRegistry,
    validate: bool,
    policy_ids: _IdAllocator,
    rule_ids: _IdAllocator,
    exemptions: ExemptionRegistry,
) -> Policy:
    if not entry.get("name"):
        raise ComplianceRunError("Every policy needs a name")
    policy = Policy(
        name=entry["name"],
        id=policy_ids.allocate(entry.get("id")),
        target_groups=entry.get("target_groups") or [],
    )
    for rule_entry in entry.get("rules") or []:
        rule_data = dict(rule_entry)
        rule_exemptions = rule_data.pop("exemptions", None) or []
        rule_data["id"] = rule_ids.allocate(rule_data.get("id"))
        rule = registry.rule_from_dict(rule_data)
        if validate:
            rule.validate()
        policy.add_rule(rule)
        for exemption in rule_exemptions:
            exemptions.add(Exemption(
                rule_id=rule.id,
                device_id=int(exemption["device_id"]),
                expiration_date=parse_datetime(exemption.get("expiration_date")),
            ))
    return policy


def load_policies(
    path: str,
    registry: Optional[RuleKindRegistry] = None,
    validate: bool = True,
) -> Tuple[List[Policy], ExemptionRegistry]:
    """Load policies and exemptions from a YAML file."""
    try:
        return parse_policies(_read_yaml(Path(path)), registry, validate)
    except RuleValidationError as e:
        rule = f" (rule '{e.rule_name}')" if e.rule_name else ""
        raise RuleValidationError(f"{path}{rule}: {e}", rule_name=e.rule_name) from e


def load_devices(path: str, exemptions: Optional[ExemptionRegistry] = None) -> List[Device]:
    """Load device snapshots from a YAML file.

    The file holds either a single device mapping or a ``devices`` list.
    """
    data = _read_yaml(Path(path))
    if isinstance(data, dict) and "devices" in data:
        entries = data["devices"] or []
    elif isinstance(data, dict):
        entries = [data]
    else:
        raise ComplianceRunError(f"Device file {path} must contain a mapping")

    devices = []
    for entry in entries:
        try:
            devices.append(Device.from_dict(entry, exemptions=exemptions))
        except (KeyError, TypeError, ValueError) as e:
            raise ComplianceRunError(f"Invalid device entry in {path}: {e}") from e
    return devices
