"""Exceptions raised by the Keystone access core.

"No permission" is never an exception here: predicates and the gate return
outcomes for that.  These cover malformed requests, the single guest-token
failure, and broken invariants in the stored category tree.
"""
from __future__ import annotations


class AccessError(Exception):
    """Base class for errors raised by ``keystone_access``."""


class InvalidOrExpiredToken(AccessError):
    """Guest token is unknown, revoked, or past its expiry.

    One undifferentiated error so callers cannot tell which.
    """

    def __init__(self) -> None:
        super().__init__("Invalid or expired share link")


class CategoryHierarchyError(AccessError):
    """The ancestor chain of a category is cyclic or deeper than allowed."""

    def __init__(self, category_id: int, reason: str) -> None:
        self.category_id = category_id
        super().__init__(f"Broken category hierarchy at {category_id}: {reason}")


class GuestLinkRequestError(AccessError, ValueError):
    """A guest link could not be issued from the given parameters."""


class UserNotFound(AccessError):
    """The user referenced by a grant request does not exist."""


class PermissionNotFound(AccessError):
    """No explicit grant exists for the (user, category) pair."""
