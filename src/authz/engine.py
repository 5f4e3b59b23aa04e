from __future__ import annotations
from enum import Enum
from typing import Dict, Tuple, FrozenSet
from .catalog import CATALOG, CapabilityCatalog


class Role(str, Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    PASTOR = "pastor"
    MINISTRY_LEADER = "lider_ministerio"
    FINANCE = "financeiro"
    KIDS_COORDINATOR = "gestao_kids"
    INTEGRATION = "integra"
    MEDIA_TECH = "midia_tecnologia"
    VOLUNTEER = "voluntario"
    MEMBER = "membro"
    SMALL_GROUP_MEMBER = "gc_membro"
    SMALL_GROUP_LEADER = "gc_lider"


# Sentinel: resolve to every capability in the catalog at lookup time
ALL_CAPABILITIES = "*"

# role -> default capability preset
POLICY: Dict[Role, Tuple[str, ...]] = {
    Role.SUPER_ADMIN: (ALL_CAPABILITIES,),
    Role.ADMIN: (ALL_CAPABILITIES,),
    Role.PASTOR: (
        "member-management",
        "ministries",
        "events-management",
        "devotionals-management",
        "order-of-service",
        "journey-config",
        "financial-panel",
        "kids-management",
        "notification-management",
    ),
    Role.MINISTRY_LEADER: (
        "ministries",
        "order-of-service",
        "events-management",
        "devotionals-management",
    ),
    Role.FINANCE: ("financial-panel",),
    Role.KIDS_COORDINATOR: ("kids-management",),
    Role.INTEGRATION: ("member-management", "journey-config"),
    Role.MEDIA_TECH: ("order-of-service",),
    Role.VOLUNTEER: (),
    Role.MEMBER: (),
    Role.SMALL_GROUP_MEMBER: (),
    Role.SMALL_GROUP_LEADER: (),
}


def parse_role(value) -> Role | None:
    if isinstance(value, Role):
        return value
    if not isinstance(value, str):
        return None
    try:
        return Role(value.strip().lower())
    except ValueError:
        return None


def resolve_capabilities(role, catalog: CapabilityCatalog = CATALOG) -> FrozenSet[str]:
    """Default capability ids for a role. Unknown roles get nothing."""
    parsed = parse_role(role)
    if parsed is None:
        return frozenset()
    preset = POLICY.get(parsed, ())
    if ALL_CAPABILITIES in preset:
        return frozenset(catalog.ids())
    return frozenset(preset)


def can(role, capability: str, catalog: CapabilityCatalog = CATALOG) -> Tuple[bool, str]:
    if capability not in catalog:
        return False, f"default_deny: capability {capability} not in catalog"
    if capability in resolve_capabilities(role, catalog):
        return True, "allow"
    return False, f"missing_capability: role {getattr(role, 'value', role)} lacks {capability}"
