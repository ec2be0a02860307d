"""Profile roles and subscription tiers.

A profile's role is a closed variant: every authorization decision branches
on :class:`Role` members, never on raw strings.
"""

from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    """Capability class of a profile."""

    COMPANY_ADMIN = "company_admin"
    COMPANY_MEMBER = "company_member"
    INDEPENDENT_USER = "independent_user"

    @property
    def is_tenant_scoped(self) -> bool:
        """``True`` for roles that may hold a tenant reference."""
        return self is not Role.INDEPENDENT_USER


# Roles an invitation may grant.
GRANTABLE_ROLES: frozenset[Role] = frozenset({Role.COMPANY_ADMIN, Role.COMPANY_MEMBER})


def parse_role(raw: str) -> Role:
    """Convert a stored or submitted role string into a :class:`Role`.

    Raises :class:`ValueError` if the string does not map to a known role.
    """
    try:
        return Role(raw.strip().lower())
    except ValueError:
        raise ValueError(f"Unknown role '{raw}'. Valid roles: {sorted(r.value for r in Role)}")


class SubscriptionTier(str, Enum):
    """Per-profile subscription level gating note quotas."""

    STANDARD = "standard"
    PREMIUM = "premium"

