"""Roles, capabilities and actor gating for the claim and receipt workflows.

Authentication and role resolution happen outside this package; callers hand
in an ``Actor`` carrying the roles they resolved. Authorization is
deny-by-default: a capability is granted only when one of the actor's roles
maps to it.

Role highlights:
- Only CLAIMS_HANDLER, GENERAL_MANAGER and ADMIN can validate receipts (APPROVE)
- Only ACCOUNTANT, GENERAL_MANAGER and ADMIN can record payments (DISBURSE)
- Only GENERAL_MANAGER and ADMIN can close claims (CLOSE)
- AUDITOR is read-only
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from claimflow.workflow.errors import UnauthorizedError


class Role(str, Enum):
    """Roles known to the workflow.

    - PARTNER_AGENT: partner institution staff declaring claims
    - CLAIMS_HANDLER: instructs dossiers and validates receipts
    - ACCOUNTANT: disburses validated receipts
    - GENERAL_MANAGER: senior approver, may close claims
    - ADMIN: system administrators
    - AUDITOR: read-only compliance role
    """

    PARTNER_AGENT = "PARTNER_AGENT"
    CLAIMS_HANDLER = "CLAIMS_HANDLER"
    ACCOUNTANT = "ACCOUNTANT"
    GENERAL_MANAGER = "GENERAL_MANAGER"
    ADMIN = "ADMIN"
    AUDITOR = "AUDITOR"


class Capability(str, Enum):
    """Fine-grained permissions checked by the engines."""

    DECLARE = "DECLARE"
    INSTRUCT = "INSTRUCT"
    GENERATE_RECEIPTS = "GENERATE_RECEIPTS"
    APPROVE = "APPROVE"
    DISBURSE = "DISBURSE"
    CLOSE = "CLOSE"
    READ = "READ"


ALL_ROLES: frozenset[str] = frozenset(r.value for r in Role)

ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.PARTNER_AGENT: frozenset({Capability.DECLARE, Capability.READ}),
    Role.CLAIMS_HANDLER: frozenset(
        {
            Capability.DECLARE,
            Capability.INSTRUCT,
            Capability.GENERATE_RECEIPTS,
            Capability.APPROVE,
            Capability.READ,
        }
    ),
    Role.ACCOUNTANT: frozenset({Capability.DISBURSE, Capability.READ}),
    Role.GENERAL_MANAGER: frozenset(Capability),
    Role.ADMIN: frozenset(Capability),
    Role.AUDITOR: frozenset({Capability.READ}),
}


@dataclass(frozen=True, slots=True)
class Actor:
    """Opaque identity of whoever invokes an operation.

    Attributes:
        actor_id: Stable identifier used in audit trails.
        roles: Roles resolved by the authentication collaborator.
        name: Optional display name.
    """

    actor_id: str
    roles: frozenset[Role] = field(default_factory=frozenset)
    name: str | None = None

    @classmethod
    def with_roles(cls, actor_id: str, *roles: Role | str, name: str | None = None) -> Actor:
        """Build an actor from role values, rejecting unknown roles."""
        return cls(actor_id=actor_id, roles=frozenset(Role(r) for r in roles), name=name)

    @property
    def capabilities(self) -> frozenset[Capability]:
        """Union of the capabilities granted by every role."""
        granted: set[Capability] = set()
        for role in self.roles:
            granted |= ROLE_CAPABILITIES.get(role, frozenset())
        return frozenset(granted)

    def can(self, capability: Capability) -> bool:
        """Return True if the actor holds the capability."""
        return capability in self.capabilities


SYSTEM_ACTOR = Actor(actor_id="system", roles=frozenset({Role.ADMIN}), name="system")


def require_capability(actor: Actor, capability: Capability) -> None:
    """Deny-by-default capability check.

    Raises:
        UnauthorizedError: If the actor lacks the capability.
    """
    if not actor.can(capability):
        raise UnauthorizedError(actor.actor_id, capability.value)
