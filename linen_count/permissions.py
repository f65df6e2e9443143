"""Capability checks for the linen count module.

Callers never test roles directly; they ask an ``Authorizer`` whether a
principal holds a capability. Two implementations exist:

``RoleCapabilityAuthorizer``
    The capability table: each role is granted an explicit set of
    capabilities. This is the normal configuration.

``GenericRoleAuthorizer``
    Used when no capability table is configured. Each capability is mapped
    onto a generic role rank ("can edit", "can edit others", ...), so a
    deployment without fine-grained permissions still behaves sensibly.
"""
from __future__ import annotations

from enum import Enum
from typing import Protocol

from linen_count.models import StaffRole


class Capability(str, Enum):
    ACCESS_MODULE = 'linen_access_module'
    EDIT_SUBMITTED = 'linen_edit_submitted'
    VIEW_REPORTS = 'linen_view_reports'
    MANAGE_SETTINGS = 'linen_manage_settings'


class Actor(Protocol):
    role: StaffRole
    active: bool


class Authorizer(Protocol):
    def can(self, actor: Actor, capability: Capability) -> bool: ...


DEFAULT_CAPABILITY_TABLE: dict[StaffRole, frozenset[Capability]] = {
    StaffRole.HOUSEKEEPING: frozenset({Capability.ACCESS_MODULE}),
    StaffRole.SUPERVISOR: frozenset(
        {Capability.ACCESS_MODULE, Capability.EDIT_SUBMITTED, Capability.VIEW_REPORTS}
    ),
    StaffRole.MANAGER: frozenset({Capability.VIEW_REPORTS}),
    StaffRole.ADMIN: frozenset(Capability),
}


class RoleCapabilityAuthorizer:
    def __init__(self, table: dict[StaffRole, frozenset[Capability]] | None = None) -> None:
        self.table = table if table is not None else DEFAULT_CAPABILITY_TABLE

    def can(self, actor: Actor, capability: Capability) -> bool:
        if not actor.active:
            return False
        return capability in self.table.get(actor.role, frozenset())


ROLE_RANK: dict[StaffRole, int] = {
    StaffRole.HOUSEKEEPING: 1,
    StaffRole.MANAGER: 2,
    StaffRole.SUPERVISOR: 2,
    StaffRole.ADMIN: 3,
}

# Minimum rank: 1 = can edit, 2 = can edit others, 3 = can manage.
GENERIC_MIN_RANK: dict[Capability, int] = {
    Capability.ACCESS_MODULE: 1,
    Capability.EDIT_SUBMITTED: 2,
    Capability.VIEW_REPORTS: 2,
    Capability.MANAGE_SETTINGS: 3,
}


class GenericRoleAuthorizer:
    def can(self, actor: Actor, capability: Capability) -> bool:
        if not actor.active:
            return False
        return ROLE_RANK.get(actor.role, 0) >= GENERIC_MIN_RANK[capability]


def build_authorizer(permission_mode: str) -> Authorizer:
    mode = permission_mode.strip().lower()
    if mode == 'generic':
        return GenericRoleAuthorizer()
    if mode == 'table':
        return RoleCapabilityAuthorizer()
    raise ValueError(f'Unknown permission mode: {permission_mode}')
