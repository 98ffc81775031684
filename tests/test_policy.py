"""Tests for roles, capabilities and actor gating."""

from __future__ import annotations

import pytest

from claimflow.workflow.errors import UnauthorizedError
from claimflow.workflow.policy import (
    ALL_ROLES,
    SYSTEM_ACTOR,
    Actor,
    Capability,
    Role,
    require_capability,
)


class TestCapabilities:
    """Tests for the role to capability mapping."""

    def test_actor_without_roles_has_nothing(self) -> None:
        """Deny by default."""
        assert Actor(actor_id="nobody").capabilities == frozenset()

    def test_accountant_cannot_approve(self) -> None:
        """Validation and disbursement are separated."""
        accountant = Actor.with_roles("a", Role.ACCOUNTANT)

        assert accountant.can(Capability.DISBURSE)
        assert not accountant.can(Capability.APPROVE)

    def test_handler_cannot_disburse_or_close(self) -> None:
        """Claims handlers validate but never pay or close."""
        handler = Actor.with_roles("h", Role.CLAIMS_HANDLER)

        assert handler.can(Capability.APPROVE)
        assert not handler.can(Capability.DISBURSE)
        assert not handler.can(Capability.CLOSE)

    def test_roles_combine(self) -> None:
        """Capabilities are the union over roles."""
        actor = Actor.with_roles("x", "CLAIMS_HANDLER", "ACCOUNTANT")

        assert actor.can(Capability.APPROVE)
        assert actor.can(Capability.DISBURSE)

    def test_auditor_is_read_only(self) -> None:
        """Auditors only read."""
        assert Actor.with_roles("au", Role.AUDITOR).capabilities == {Capability.READ}

    def test_system_actor_is_admin(self) -> None:
        """The system actor holds every capability."""
        assert SYSTEM_ACTOR.capabilities == frozenset(Capability)

    def test_with_roles_rejects_unknown_role(self) -> None:
        """Unknown role values are refused."""
        with pytest.raises(ValueError):
            Actor.with_roles("x", "SUPERUSER")

    def test_all_roles_lists_values(self) -> None:
        """ALL_ROLES holds the role values as strings."""
        assert "GENERAL_MANAGER" in ALL_ROLES
        assert len(ALL_ROLES) == len(Role)


class TestRequireCapability:
    """Tests for require_capability."""

    def test_missing_capability_raises(self) -> None:
        """The error names the actor and the capability."""
        agent = Actor.with_roles("agent-7", Role.PARTNER_AGENT)

        with pytest.raises(UnauthorizedError) as exc_info:
            require_capability(agent, Capability.APPROVE)

        assert exc_info.value.details() == {"actor": "agent-7", "capability": "APPROVE"}

    def test_granted_capability_passes(self) -> None:
        """No error when the capability is held."""
        require_capability(Actor.with_roles("m", Role.GENERAL_MANAGER), Capability.CLOSE)
