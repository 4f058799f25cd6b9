"""Access gate: the per-operation authorization entry point.

Callers hand in who is acting (an external user id, or a guest token) and
what they are acting on; the gate returns an ``AccessDecision`` value.  It
never raises for "no permission" and never allows on an error: store
failures propagate to the caller untouched, every other non-success path is
a deny with a reason.

Order of checks for users:

1. No principal, or a principal with no local user -> ``UNAUTHENTICATED``
2. Missing target id -> ``BAD_REQUEST``
3. Target does not exist -> ``NOT_FOUND``
4. Policy for the operation -> ``OK`` / ``FORBIDDEN`` / ``NON_EMPTY_SUBTREE``

Guests skip the resolver entirely: the token's level and bound category are
the whole grant.
"""
from __future__ import annotations

import dataclasses
import enum
import logging

from keystone_access.errors import InvalidOrExpiredToken
from keystone_access.rbac import GuestPermissionLevel, Role, level_satisfies
from keystone_access.services.access_store import AccessStore
from keystone_access.services.guest_links import (
    Clock,
    GuestClaims,
    GuestLinkService,
    token_hint,
    utcnow,
)
from keystone_access.services.permission_resolver import (
    PermissionResolver,
    is_descendant_or_self,
)
from keystone_access.services.policies import CategoryPolicies, PolicyOutcome

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Vocabulary
# ---------------------------------------------------------------------------


class Operation(str, enum.Enum):
    VIEW_CATEGORY = "view_category"
    VIEW_REPORT = "view_report"
    SUBMIT_EXPENSE = "submit_expense"
    REVIEW_CATEGORY = "review_category"
    MANAGE_CATEGORY = "manage_category"
    CREATE_CATEGORY = "create_category"
    EDIT_CATEGORY = "edit_category"
    DELETE_CATEGORY = "delete_category"
    REVIEW_EXPENSE = "review_expense"


class GuestOperation(str, enum.Enum):
    SESSION = "session"  # open the guest landing view
    SUBMIT_EXPENSE = "submit_expense"
    VIEW_CATEGORY = "view_category"
    VIEW_EXPENSE = "view_expense"
    REVIEW_EXPENSE = "review_expense"


class DecisionReason(str, enum.Enum):
    OK = "ok"
    UNAUTHENTICATED = "unauthenticated"
    INVALID_TOKEN = "invalid_token"
    BAD_REQUEST = "bad_request"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    NON_EMPTY_SUBTREE = "non_empty_subtree"


@dataclasses.dataclass(frozen=True)
class Principal:
    user_id: int
    external_id: str


@dataclasses.dataclass(frozen=True)
class AccessTarget:
    category_id: int | None = None
    report_id: int | None = None
    expense_id: int | None = None
    parent_category_id: int | None = None


@dataclasses.dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: DecisionReason
    role: Role | None = None
    principal: Principal | None = None
    guest: GuestClaims | None = None
    category_id: int | None = None
    report_id: int | None = None

    @classmethod
    def deny(cls, reason: DecisionReason, **context) -> AccessDecision:
        return cls(allowed=False, reason=reason, **context)


# Operations that act on a category identified directly by ``category_id``.
_CATEGORY_OPERATIONS = {
    Operation.VIEW_CATEGORY: CategoryPolicies.can_view_category,
    Operation.SUBMIT_EXPENSE: CategoryPolicies.can_submit,
    Operation.REVIEW_CATEGORY: CategoryPolicies.can_review_category,
    Operation.MANAGE_CATEGORY: CategoryPolicies.can_manage_category,
    Operation.EDIT_CATEGORY: CategoryPolicies.can_edit_category,
    Operation.DELETE_CATEGORY: CategoryPolicies.can_delete_category,
}

_OUTCOME_REASONS = {
    PolicyOutcome.ALLOW: DecisionReason.OK,
    PolicyOutcome.FORBIDDEN: DecisionReason.FORBIDDEN,
    PolicyOutcome.NON_EMPTY_SUBTREE: DecisionReason.NON_EMPTY_SUBTREE,
}

_GUEST_REQUIRED_LEVEL = {
    GuestOperation.SESSION: GuestPermissionLevel.SUBMIT_ONLY,
    GuestOperation.SUBMIT_EXPENSE: GuestPermissionLevel.SUBMIT_ONLY,
    GuestOperation.VIEW_CATEGORY: GuestPermissionLevel.REVIEW_ONLY,
    GuestOperation.VIEW_EXPENSE: GuestPermissionLevel.REVIEW_ONLY,
    GuestOperation.REVIEW_EXPENSE: GuestPermissionLevel.REVIEW_ONLY,
}


# ---------------------------------------------------------------------------
# Gate
# ---------------------------------------------------------------------------


class AccessGate:
    def __init__(self, store: AccessStore, clock: Clock = utcnow) -> None:
        self.store = store
        self.resolver = PermissionResolver(store)
        self.policies = CategoryPolicies(store, self.resolver)
        self.guest_links = GuestLinkService(store, clock=clock)

    async def resolve_principal(self, external_id: str | None) -> Principal | None:
        if not external_id:
            return None
        user = await self.store.find_user_by_external_id(external_id)
        if user is None:
            return None
        return Principal(user_id=user.id, external_id=user.external_id)

    # ------------------------------------------------------------------
    # Authenticated users
    # ------------------------------------------------------------------

    async def authorize(
        self,
        external_id: str | None,
        operation: Operation,
        target: AccessTarget,
    ) -> AccessDecision:
        principal = await self.resolve_principal(external_id)
        if principal is None:
            return self._denied(operation, DecisionReason.UNAUTHENTICATED, target)

        if operation is Operation.VIEW_REPORT:
            decision = await self._authorize_report_view(principal, target)
        elif operation is Operation.CREATE_CATEGORY:
            decision = await self._authorize_create(principal, target)
        elif operation is Operation.REVIEW_EXPENSE:
            decision = await self._authorize_expense_review(principal, target)
        elif operation in _CATEGORY_OPERATIONS:
            decision = await self._authorize_category(principal, operation, target)
        else:
            decision = AccessDecision.deny(DecisionReason.FORBIDDEN, principal=principal)

        if not decision.allowed:
            return self._denied(operation, decision.reason, target, decision)
        return decision

    async def _authorize_category(
        self, principal: Principal, operation: Operation, target: AccessTarget
    ) -> AccessDecision:
        if target.category_id is None:
            return AccessDecision.deny(DecisionReason.BAD_REQUEST, principal=principal)

        node = await self.store.find_node(target.category_id)
        if node is None:
            return AccessDecision.deny(DecisionReason.NOT_FOUND, principal=principal)

        policy = _CATEGORY_OPERATIONS[operation]
        outcome = await policy(self.policies, principal.user_id, node.id)
        return await self._from_outcome(outcome, principal, node.id, node.report_id)

    async def _authorize_report_view(
        self, principal: Principal, target: AccessTarget
    ) -> AccessDecision:
        if target.report_id is None:
            return AccessDecision.deny(DecisionReason.BAD_REQUEST, principal=principal)

        report = await self.store.find_report(target.report_id)
        if report is None:
            return AccessDecision.deny(DecisionReason.NOT_FOUND, principal=principal)

        outcome = await self.policies.can_view_report(principal.user_id, report.id)
        if not outcome.allowed:
            return AccessDecision.deny(
                _OUTCOME_REASONS[outcome], principal=principal, report_id=report.id
            )
        return AccessDecision(
            allowed=True,
            reason=DecisionReason.OK,
            role=Role.ADMIN if report.owner_id == principal.user_id else None,
            principal=principal,
            report_id=report.id,
        )

    async def _authorize_create(
        self, principal: Principal, target: AccessTarget
    ) -> AccessDecision:
        if target.report_id is None:
            return AccessDecision.deny(DecisionReason.BAD_REQUEST, principal=principal)

        report = await self.store.find_report(target.report_id)
        if report is None:
            return AccessDecision.deny(DecisionReason.NOT_FOUND, principal=principal)

        if target.parent_category_id is not None:
            parent = await self.store.find_category(target.parent_category_id)
            if parent is None or parent.report_id != report.id:
                return AccessDecision.deny(
                    DecisionReason.NOT_FOUND, principal=principal, report_id=report.id
                )

        outcome = await self.policies.can_create_category(
            principal.user_id, report.id, target.parent_category_id
        )
        if target.parent_category_id is not None:
            return await self._from_outcome(
                outcome, principal, target.parent_category_id, report.id
            )
        if not outcome.allowed:
            return AccessDecision.deny(
                _OUTCOME_REASONS[outcome], principal=principal, report_id=report.id
            )
        return AccessDecision(
            allowed=True,
            reason=DecisionReason.OK,
            role=Role.ADMIN,
            principal=principal,
            report_id=report.id,
        )

    async def _authorize_expense_review(
        self, principal: Principal, target: AccessTarget
    ) -> AccessDecision:
        if target.expense_id is None:
            return AccessDecision.deny(DecisionReason.BAD_REQUEST, principal=principal)

        expense = await self.store.find_expense(target.expense_id)
        if expense is None:
            return AccessDecision.deny(DecisionReason.NOT_FOUND, principal=principal)

        node = await self.store.find_node(expense.category_id)
        if node is None:
            return AccessDecision.deny(DecisionReason.NOT_FOUND, principal=principal)

        outcome = await self.policies.can_review_expense(principal.user_id, expense.id)
        return await self._from_outcome(outcome, principal, node.id, node.report_id)

    async def _from_outcome(
        self,
        outcome: PolicyOutcome,
        principal: Principal,
        category_id: int,
        report_id: int,
    ) -> AccessDecision:
        if not outcome.allowed:
            return AccessDecision.deny(
                _OUTCOME_REASONS[outcome],
                principal=principal,
                category_id=category_id,
                report_id=report_id,
            )
        role = await self.resolver.effective_role(principal.user_id, category_id)
        return AccessDecision(
            allowed=True,
            reason=DecisionReason.OK,
            role=role,
            principal=principal,
            category_id=category_id,
            report_id=report_id,
        )

    async def describe_access(
        self, principal: Principal, category_id: int
    ) -> dict[str, bool | str | None]:
        """Effective role plus the outcome of every category policy."""
        role = await self.resolver.effective_role(principal.user_id, category_id)
        uid = principal.user_id
        node = await self.store.find_node(category_id)
        delete_outcome = await self.policies.can_delete_category(uid, category_id)
        return {
            "role": role.value if role else None,
            "can_view": (await self.policies.can_view_category(uid, category_id)).allowed,
            "can_submit": (await self.policies.can_submit(uid, category_id)).allowed,
            "can_review": (await self.policies.can_review_category(uid, category_id)).allowed,
            "can_create_subcategory": (
                node is not None
                and (
                    await self.policies.can_create_category(uid, node.report_id, category_id)
                ).allowed
            ),
            "can_edit": (await self.policies.can_edit_category(uid, category_id)).allowed,
            "can_delete": delete_outcome.allowed,
            "can_manage": (await self.policies.can_manage_category(uid, category_id)).allowed,
            # "non_empty_subtree" tells the client why a delete is refused
            "delete_outcome": delete_outcome.value,
        }

    # ------------------------------------------------------------------
    # Guests
    # ------------------------------------------------------------------

    async def authorize_guest(
        self,
        token: str | None,
        operation: GuestOperation,
        target: AccessTarget | None = None,
    ) -> AccessDecision:
        target = target or AccessTarget()
        if not token:
            return self._denied(operation, DecisionReason.UNAUTHENTICATED, target)

        try:
            claims = await self.guest_links.validate(token)
        except InvalidOrExpiredToken:
            logger.info("Guest token %s rejected for %s", token_hint(token), operation.value)
            return AccessDecision.deny(DecisionReason.INVALID_TOKEN)

        required = _GUEST_REQUIRED_LEVEL.get(operation)
        if required is None or not level_satisfies(claims.permission_level, required):
            return self._denied(
                operation, DecisionReason.FORBIDDEN, target,
                AccessDecision.deny(DecisionReason.FORBIDDEN, guest=claims),
            )

        decision = await self._guest_target(claims, operation, target)
        if not decision.allowed:
            return self._denied(operation, decision.reason, target, decision)
        return decision

    async def _guest_target(
        self, claims: GuestClaims, operation: GuestOperation, target: AccessTarget
    ) -> AccessDecision:
        bound = claims.category_id

        if operation in (GuestOperation.SESSION, GuestOperation.SUBMIT_EXPENSE,
                         GuestOperation.VIEW_CATEGORY):
            category_id = target.category_id if target.category_id is not None else bound
            node = await self.store.find_node(category_id)
            if node is None:
                return AccessDecision.deny(DecisionReason.NOT_FOUND, guest=claims)
            if operation is GuestOperation.VIEW_CATEGORY:
                in_scope = await is_descendant_or_self(self.store, node.id, bound)
            else:
                in_scope = node.id == bound
            return self._guest_result(in_scope, claims, node.id, node.report_id)

        if target.expense_id is None:
            return AccessDecision.deny(DecisionReason.BAD_REQUEST, guest=claims)
        expense = await self.store.find_expense(target.expense_id)
        if expense is None:
            return AccessDecision.deny(DecisionReason.NOT_FOUND, guest=claims)
        node = await self.store.find_node(expense.category_id)
        if node is None:
            return AccessDecision.deny(DecisionReason.NOT_FOUND, guest=claims)

        if operation is GuestOperation.VIEW_EXPENSE:
            in_scope = await is_descendant_or_self(self.store, node.id, bound)
        elif operation is GuestOperation.REVIEW_EXPENSE:
            in_scope = node.id == bound
        else:
            in_scope = False
        return self._guest_result(in_scope, claims, node.id, node.report_id)

    @staticmethod
    def _guest_result(
        in_scope: bool, claims: GuestClaims, category_id: int, report_id: int
    ) -> AccessDecision:
        if not in_scope:
            return AccessDecision.deny(
                DecisionReason.FORBIDDEN, guest=claims,
                category_id=category_id, report_id=report_id,
            )
        return AccessDecision(
            allowed=True,
            reason=DecisionReason.OK,
            guest=claims,
            category_id=category_id,
            report_id=report_id,
        )

    # ------------------------------------------------------------------

    @staticmethod
    def _denied(
        operation: Operation | GuestOperation,
        reason: DecisionReason,
        target: AccessTarget,
        decision: AccessDecision | None = None,
    ) -> AccessDecision:
        logger.info(
            "Access denied: op=%s reason=%s category=%s report=%s expense=%s",
            operation.value, reason.value, target.category_id, target.report_id,
            target.expense_id,
        )
        return decision or AccessDecision.deny(reason)
