"""Device view consumed by the compliance core.

The inventory and its configuration snapshots live outside the core; a
Device is the already-fetched, read-only snapshot a run works on, bound to
the exemption registry it must consult.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, Optional, Protocol

from .errors import MissingConfigurationError
from .exemptions import ExemptionRegistry


class DeviceView(Protocol):
    """What rule evaluation needs from a device."""

    id: int
    name: str

    def is_exempted(self, rule: Any, now: Optional[datetime] = None) -> bool:
        ...


@dataclass
class Device:
    """Configuration snapshot of a managed network device."""

    id: int
    name: str
    driver: str = ""
    family: str = ""
    groups: FrozenSet[str] = field(default_factory=frozenset)
    attributes: Dict[str, Any] = field(default_factory=dict)
    exemptions: Optional[ExemptionRegistry] = field(default=None, repr=False, compare=False)

    def is_exempted(self, rule: Any, now: Optional[datetime] = None) -> bool:
        """Check whether this device is currently excused from ``rule``."""
        if self.exemptions is None:
            return False
        return self.exemptions.is_exempted(rule, self, now)

    def has_attribute(self, name: str) -> bool:
        return self.attributes.get(name) is not None

    def get_attribute(self, name: str) -> Any:
        """Return a configuration attribute.

        Raises:
            MissingConfigurationError: If the snapshot lacks the attribute
        """
        value = self.attributes.get(name)
        if value is None:
            raise MissingConfigurationError(self.name, name)
        return value

    def to_script_payload(self) -> Dict[str, Any]:
        """Normalized JSON-compatible view passed to rule scripts."""
        return {
            "id": self.id,
            "name": self.name,
            "driver": self.driver,
            "family": self.family,
            "groups": sorted(self.groups),
            "config": dict(self.attributes),
        }

    @classmethod
    def from_dict(
        cls, data: Dict[str, Any], exemptions: Optional[ExemptionRegistry] = None
    ) -> "Device":
        """Build a device from a scheduler or file payload."""
        return cls(
            id=int(data["id"]),
            name=data["name"],
            driver=data.get("driver", ""),
            family=data.get("family", ""),
            groups=frozenset(data.get("groups", [])),
            attributes=dict(data.get("attributes", {}) or {}),
            exemptions=exemptions,
        )
