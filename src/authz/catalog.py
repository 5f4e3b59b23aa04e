from __future__ import annotations
from dataclasses import dataclass
from typing import Iterable, Tuple


@dataclass(frozen=True)
class Capability:
    id: str
    label: str


class CapabilityCatalog:
    """Ordered, read-only registry of the capabilities the system recognises."""

    def __init__(self, entries: Iterable[Capability]):
        self._entries: Tuple[Capability, ...] = tuple(entries)

    def all(self) -> Tuple[Capability, ...]:
        return self._entries

    def ids(self) -> Tuple[str, ...]:
        return tuple(c.id for c in self._entries)

    def label(self, capability_id: str) -> str | None:
        for c in self._entries:
            if c.id == capability_id:
                return c.label
        return None

    def extended(self, *extra: Capability) -> "CapabilityCatalog":
        return CapabilityCatalog(self._entries + tuple(extra))

    def __contains__(self, capability_id: object) -> bool:
        return capability_id in self.ids()

    def __iter__(self):
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


CATALOG = CapabilityCatalog([
    Capability("member-management", "Member management"),
    Capability("ministries", "Ministry management"),
    Capability("events-management", "Event management"),
    Capability("devotionals-management", "Devotional management"),
    Capability("order-of-service", "Order of service"),
    Capability("journey-config", "Journey configuration"),
    Capability("financial-panel", "Financial panel"),
    Capability("kids-management", "Kids management"),
    Capability("notification-management", "Notification management"),
    Capability("devotional-approver", "Devotional approval"),
    Capability("system-settings", "System settings"),
])
