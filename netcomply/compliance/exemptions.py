"""Exemption registry.

An exemption excuses one device from one rule, permanently or until an
expiration date. The registry is read by rule evaluation and mutated only
by administrative operations (and by rule deletion, which clears every
exemption of the deleted rule).
"""

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Tuple

from ..common.logger import get_logger

logger = get_logger("exemptions")


def _identity(obj: Any) -> int:
    """Return the id of a rule/device or the value itself for plain ids."""
    return obj if isinstance(obj, int) else obj.id


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_aware(value: datetime) -> datetime:
    # Naive timestamps are taken as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class Exemption:
    """Override excusing a device from a rule."""

    rule_id: int
    device_id: int
    expiration_date: Optional[datetime] = None

    @property
    def key(self) -> Tuple[int, int]:
        return (self.rule_id, self.device_id)

    def is_active(self, now: Optional[datetime] = None) -> bool:
        """Check whether the exemption still applies at ``now``."""
        if self.expiration_date is None:
            return True
        return _as_aware(self.expiration_date) > _as_aware(now or utcnow())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "device_id": self.device_id,
            "expiration_date": (
                self.expiration_date.isoformat() if self.expiration_date else None
            ),
        }


class ExemptionRegistry:
    """In-memory set of exemptions keyed by (rule id, device id)."""

    def __init__(self, exemptions: Optional[List[Exemption]] = None):
        self._exemptions: Dict[Tuple[int, int], Exemption] = {}
        self._lock = threading.RLock()
        for exemption in exemptions or []:
            self.add(exemption)

    def add(self, exemption: Exemption) -> None:
        """Add an exemption, replacing any existing one for the same pair."""
        with self._lock:
            if exemption.key in self._exemptions:
                logger.debug(
                    f"Replacing exemption for rule {exemption.rule_id} "
                    f"on device {exemption.device_id}"
                )
            self._exemptions[exemption.key] = exemption

    def exempt(
        self, rule: Any, device: Any, expiration_date: Optional[datetime] = None
    ) -> Exemption:
        """Create and add an exemption for a rule/device pair."""
        exemption = Exemption(_identity(rule), _identity(device), expiration_date)
        self.add(exemption)
        return exemption

    def remove(self, rule: Any, device: Any) -> bool:
        """Remove the exemption for a pair.

        Returns:
            True if an exemption was removed
        """
        with self._lock:
            return self._exemptions.pop((_identity(rule), _identity(device)), None) is not None

    def get(self, rule: Any, device: Any) -> Optional[Exemption]:
        return self._exemptions.get((_identity(rule), _identity(device)))

    def is_exempted(self, rule: Any, device: Any, now: Optional[datetime] = None) -> bool:
        """Check whether an active exemption exists for the pair at ``now``."""
        exemption = self.get(rule, device)
        return exemption is not None and exemption.is_active(now)

    def clear_rule(self, rule: Any) -> int:
        """Remove every exemption of a rule (used when the rule is deleted).

        Returns:
            Number of exemptions removed
        """
        rule_id = _identity(rule)
        with self._lock:
            keys = [key for key in self._exemptions if key[0] == rule_id]
            for key in keys:
                del self._exemptions[key]
        if keys:
            logger.info(f"Cleared {len(keys)} exemption(s) of rule {rule_id}")
        return len(keys)

    def for_rule(self, rule: Any) -> List[Exemption]:
        rule_id = _identity(rule)
        return [e for e in self if e.rule_id == rule_id]

    def for_device(self, device: Any) -> List[Exemption]:
        device_id = _identity(device)
        return [e for e in self if e.device_id == device_id]

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Drop exemptions that are no longer active.

        Returns:
            Number of exemptions removed
        """
        with self._lock:
            expired = [key for key, e in self._exemptions.items() if not e.is_active(now)]
            for key in expired:
                del self._exemptions[key]
        return len(expired)

    def __iter__(self) -> Iterator[Exemption]:
        with self._lock:
            exemptions = list(self._exemptions.values())
        return iter(exemptions)

    def __len__(self) -> int:
        return len(self._exemptions)

    def __contains__(self, exemption: object) -> bool:
        return isinstance(exemption, Exemption) and self._exemptions.get(exemption.key) == exemption
