"""
Role model for Keystone category sharing

Defines the ordered role set used by category permissions and the
capability levels carried by guest links.  This module is the single place
where role comparison lives; everything else calls ``satisfies()`` or
``level_satisfies()`` instead of comparing role strings.

Order: ADMIN > REVIEWER > SUBMITTER
Guest: REVIEW_ONLY > SUBMIT_ONLY
"""
from __future__ import annotations

import enum

# ---------------------------------------------------------------------------
# Category roles
# ---------------------------------------------------------------------------


class Role(str, enum.Enum):
    SUBMITTER = "SUBMITTER"  # submit expenses, view the category
    REVIEWER = "REVIEWER"  # approve expenses, manage the shared subtree
    ADMIN = "ADMIN"  # everything, including sharing


_ROLE_RANK: dict[Role, int] = {
    Role.SUBMITTER: 1,
    Role.REVIEWER: 2,
    Role.ADMIN: 3,
}


# ---------------------------------------------------------------------------
# Guest link capability levels
# ---------------------------------------------------------------------------


class GuestPermissionLevel(str, enum.Enum):
    SUBMIT_ONLY = "SUBMIT_ONLY"
    REVIEW_ONLY = "REVIEW_ONLY"


_LEVEL_RANK: dict[GuestPermissionLevel, int] = {
    GuestPermissionLevel.SUBMIT_ONLY: 1,
    GuestPermissionLevel.REVIEW_ONLY: 2,
}


class GuestTokenStatus(str, enum.Enum):
    ACTIVE = "active"
    REVOKED = "revoked"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def parse_role(value: str | Role | None) -> Role | None:
    """Return the ``Role`` for *value*, or ``None`` if it is not a known role."""
    if value is None:
        return None
    try:
        return Role(value)
    except ValueError:
        return None


def satisfies(held: Role | str | None, required: Role | str) -> bool:
    """True iff *held* ranks at least as high as *required*.

    Unknown or missing roles never satisfy anything.
    """
    held_role = parse_role(held)
    required_role = parse_role(required)
    if held_role is None or required_role is None:
        return False
    return _ROLE_RANK[held_role] >= _ROLE_RANK[required_role]


def highest(*roles: Role | None) -> Role | None:
    """Return the highest-ranked role among *roles*, ignoring ``None``."""
    present = [r for r in roles if r is not None]
    if not present:
        return None
    return max(present, key=_ROLE_RANK.__getitem__)


def parse_level(value: str | GuestPermissionLevel | None) -> GuestPermissionLevel | None:
    if value is None:
        return None
    try:
        return GuestPermissionLevel(value)
    except ValueError:
        return None


def level_satisfies(
    held: GuestPermissionLevel | str | None,
    required: GuestPermissionLevel | str,
) -> bool:
    """True iff a guest link at level *held* may perform a *required* action."""
    held_level = parse_level(held)
    required_level = parse_level(required)
    if held_level is None or required_level is None:
        return False
    return _LEVEL_RANK[held_level] >= _LEVEL_RANK[required_level]
