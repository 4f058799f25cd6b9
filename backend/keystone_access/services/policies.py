"""Per-operation authorization policies for categories, reports and expenses.

Each policy returns a ``PolicyOutcome``.  Every policy ends in an explicit
``FORBIDDEN``; the only allow paths are the cases listed in its docstring.
Existence of the target is checked by the caller (the access gate) before a
policy runs, and a missing target inside a policy still resolves to
``FORBIDDEN``.

Edit/delete asymmetry: a REVIEWER may administer categories *below* the one
shared with them, but not the shared category itself.  Deleting through
that REVIEWER path additionally requires the category to hold no expenses.
"""
from __future__ import annotations

import enum
import logging

from keystone_access.rbac import Role
from keystone_access.services.access_store import AccessStore
from keystone_access.services.permission_resolver import PermissionResolver

logger = logging.getLogger(__name__)


class PolicyOutcome(str, enum.Enum):
    ALLOW = "allow"
    FORBIDDEN = "forbidden"
    NON_EMPTY_SUBTREE = "non_empty_subtree"

    @property
    def allowed(self) -> bool:
        return self is PolicyOutcome.ALLOW


def _outcome(allowed: bool) -> PolicyOutcome:
    return PolicyOutcome.ALLOW if allowed else PolicyOutcome.FORBIDDEN


class CategoryPolicies:
    def __init__(self, store: AccessStore, resolver: PermissionResolver | None = None) -> None:
        self.store = store
        self.resolver = resolver or PermissionResolver(store)

    # ------------------------------------------------------------------
    # Read / submit / review
    # ------------------------------------------------------------------

    async def can_view_category(self, user_id: int, category_id: int) -> PolicyOutcome:
        """Any role on the category or an ancestor, or report ownership."""
        return _outcome(await self.resolver.has_role(user_id, category_id, Role.SUBMITTER))

    async def can_view_report(self, user_id: int, report_id: int) -> PolicyOutcome:
        """Report owner, or a direct grant on any category of the report.

        Only direct grants count here; the walk used for categories does not
        apply to the report-level check.
        """
        report = await self.store.find_report(report_id)
        if report is None:
            return PolicyOutcome.FORBIDDEN
        if report.owner_id == user_id:
            return PolicyOutcome.ALLOW
        return _outcome(await self.store.report_has_any_grant(user_id, report_id))

    async def can_submit(self, user_id: int, category_id: int) -> PolicyOutcome:
        """Same rule as viewing; gates expense creation."""
        return _outcome(await self.resolver.has_role(user_id, category_id, Role.SUBMITTER))

    async def can_review_category(self, user_id: int, category_id: int) -> PolicyOutcome:
        return _outcome(await self.resolver.has_role(user_id, category_id, Role.REVIEWER))

    async def can_manage_category(self, user_id: int, category_id: int) -> PolicyOutcome:
        """ADMIN: share the category, issue guest links, change options."""
        return _outcome(await self.resolver.has_role(user_id, category_id, Role.ADMIN))

    async def can_review_expense(self, user_id: int, expense_id: int) -> PolicyOutcome:
        """Report owner or REVIEWER on the expense's category."""
        expense = await self.store.find_expense(expense_id)
        if expense is None:
            return PolicyOutcome.FORBIDDEN
        # Ownership is covered by the resolver's first step.
        return _outcome(
            await self.resolver.has_role(user_id, expense.category_id, Role.REVIEWER)
        )

    # ------------------------------------------------------------------
    # Category creation / mutation
    # ------------------------------------------------------------------

    async def can_create_category(
        self,
        user_id: int,
        report_id: int,
        parent_category_id: int | None = None,
    ) -> PolicyOutcome:
        """Roots need report ownership; children need REVIEWER on the parent."""
        if await self.resolver.is_report_owner(user_id, report_id):
            return PolicyOutcome.ALLOW
        if parent_category_id is None:
            return PolicyOutcome.FORBIDDEN

        parent = await self.store.find_category(parent_category_id)
        if parent is None or parent.report_id != report_id:
            return PolicyOutcome.FORBIDDEN
        return _outcome(
            await self.resolver.has_role(user_id, parent_category_id, Role.REVIEWER)
        )

    async def can_edit_category(self, user_id: int, category_id: int) -> PolicyOutcome:
        """Allowed for:

        * the report owner,
        * ADMIN on the category (direct or inherited),
        * REVIEWER or higher on the parent, i.e. on the shared subtree above.

        A REVIEWER whose only grant is the direct one on this category is
        refused: the parent check never sees that row.
        """
        node = await self.store.find_node(category_id)
        if node is None:
            return PolicyOutcome.FORBIDDEN
        if node.owner_id == user_id:
            return PolicyOutcome.ALLOW
        if await self.resolver.has_role(user_id, category_id, Role.ADMIN):
            return PolicyOutcome.ALLOW
        if node.parent_category_id is not None and await self.resolver.has_role(
            user_id, node.parent_category_id, Role.REVIEWER
        ):
            return PolicyOutcome.ALLOW
        return PolicyOutcome.FORBIDDEN

    async def can_delete_category(self, user_id: int, category_id: int) -> PolicyOutcome:
        """Same as editing, except the inherited-REVIEWER path requires the
        category to have no expenses (``NON_EMPTY_SUBTREE`` otherwise)."""
        node = await self.store.find_node(category_id)
        if node is None:
            return PolicyOutcome.FORBIDDEN
        if node.owner_id == user_id:
            return PolicyOutcome.ALLOW
        if await self.resolver.has_role(user_id, category_id, Role.ADMIN):
            return PolicyOutcome.ALLOW
        if node.parent_category_id is not None and await self.resolver.has_role(
            user_id, node.parent_category_id, Role.REVIEWER
        ):
            if await self.store.count_expenses(category_id) == 0:
                return PolicyOutcome.ALLOW
            return PolicyOutcome.NON_EMPTY_SUBTREE
        return PolicyOutcome.FORBIDDEN
