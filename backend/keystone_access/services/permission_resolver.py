"""Category permission resolution.

A user's role on a category is decided by walking from the category up to
its root, one level at a time:

1. Unknown category -> no role (fail closed).
2. The report owner holds ADMIN everywhere in the report; this short-circuits
   the walk and dominates any explicit grant.
3. A direct ``CategoryPermission`` row on the current level that satisfies the
   required role answers yes.
4. Otherwise continue with the parent; a root without a match answers no.

Grants therefore flow downward only: a grant on an ancestor covers every
descendant, a grant on a descendant never reaches its parent or siblings.

The walk is iterative and bounded by ``settings.MAX_CATEGORY_DEPTH``.  Parent
chains are acyclic by precondition; a revisited node or an over-deep chain
raises ``CategoryHierarchyError`` instead of answering.
"""
from __future__ import annotations

import logging
from collections.abc import AsyncIterator

from keystone_access.config import settings
from keystone_access.errors import CategoryHierarchyError
from keystone_access.rbac import Role, highest, parse_role, satisfies
from keystone_access.services.access_store import AccessStore, CategoryNode

logger = logging.getLogger(__name__)


async def iter_ancestry(
    store: AccessStore,
    category_id: int,
    max_depth: int | None = None,
) -> AsyncIterator[CategoryNode]:
    """Yield *category_id*'s node, then its parent, up to the root.

    Yields nothing if the category does not exist.
    """
    limit = max_depth if max_depth is not None else settings.MAX_CATEGORY_DEPTH
    seen: set[int] = set()
    current: int | None = category_id

    while current is not None:
        if current in seen:
            raise CategoryHierarchyError(category_id, f"cycle through {current}")
        if len(seen) >= limit:
            raise CategoryHierarchyError(category_id, f"deeper than {limit} levels")
        seen.add(current)

        node = await store.find_node(current)
        if node is None:
            # Dangling parent reference: the chain ends here.
            return
        yield node
        current = node.parent_category_id


async def is_descendant_or_self(
    store: AccessStore, category_id: int, ancestor_id: int
) -> bool:
    """True if *category_id* is *ancestor_id* or lies somewhere below it."""
    async for node in iter_ancestry(store, category_id):
        if node.id == ancestor_id:
            return True
    return False


class PermissionResolver:
    """Answers ``has_role`` questions against an ``AccessStore``."""

    def __init__(self, store: AccessStore) -> None:
        self.store = store

    async def has_role(
        self, user_id: int, category_id: int, required: Role | str
    ) -> bool:
        """True iff *user_id* holds at least *required* on *category_id*."""
        async for node in iter_ancestry(self.store, category_id):
            if node.owner_id == user_id:
                return True

            grant = await self.store.find_permission(user_id, node.id)
            if grant is not None and satisfies(grant.role, required):
                return True

        return False

    async def effective_role(self, user_id: int, category_id: int) -> Role | None:
        """The highest role *user_id* holds on *category_id*, or ``None``.

        ``has_role(u, c, r)`` is exactly ``satisfies(effective_role(u, c), r)``.
        """
        best: Role | None = None
        async for node in iter_ancestry(self.store, category_id):
            if node.owner_id == user_id:
                return Role.ADMIN

            grant = await self.store.find_permission(user_id, node.id)
            if grant is not None:
                best = highest(best, parse_role(grant.role))
                if best is Role.ADMIN:
                    return best

        return best

    async def direct_role(self, user_id: int, category_id: int) -> Role | None:
        """Role from the explicit grant on *category_id* itself, if any."""
        grant = await self.store.find_permission(user_id, category_id)
        if grant is None:
            return None
        return parse_role(grant.role)

    async def is_report_owner(self, user_id: int, report_id: int) -> bool:
        report = await self.store.find_report(report_id)
        return report is not None and report.owner_id == user_id
