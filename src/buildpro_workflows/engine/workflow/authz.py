"""Actors and the capabilities the engine checks.

Authentication and role management live outside the engine. Whatever sits in front of it
resolves the caller into an :class:`Actor`; the engine only inspects the booleans.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum

from .errors import MissingCapability


class Capability(str, Enum):
    CREATE_WORKFLOW_TEMPLATE = "create_workflow_template"
    EDIT_WORKFLOW_TEMPLATE = "edit_workflow_template"
    DELETE_WORKFLOW_TEMPLATE = "delete_workflow_template"
    START_WORKFLOW = "start_workflow"
    CANCEL_WORKFLOW = "cancel_workflow"
    OVERRIDE_WORKFLOW_ASSIGNMENT = "override_workflow_assignment"


@dataclass(frozen=True, slots=True)
class Actor:
    user_id: str
    roles: frozenset[str] = field(default_factory=frozenset)
    capabilities: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def of(
        cls,
        user_id: str,
        *,
        roles: Iterable[str] = (),
        capabilities: Iterable[str | Capability] = (),
    ) -> Actor:
        caps = frozenset(c.value if isinstance(c, Capability) else c for c in capabilities)
        return cls(user_id=user_id, roles=frozenset(roles), capabilities=caps)

    def can(self, capability: Capability) -> bool:
        return capability.value in self.capabilities

    def require(self, capability: Capability) -> None:
        if not self.can(capability):
            raise MissingCapability(capability.value, self.user_id)


@dataclass(frozen=True, slots=True)
class OverridePolicy:
    """Decides who may act on a stage they are not assigned to."""

    admin_roles: frozenset[str] = frozenset({"admin"})

    def allows(self, actor: Actor) -> bool:
        if actor.can(Capability.OVERRIDE_WORKFLOW_ASSIGNMENT):
            return True
        return bool(actor.roles & self.admin_roles)
