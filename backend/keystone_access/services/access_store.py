"""Read/write access to the tables the authorization core depends on.

``AccessStore`` wraps one ``AsyncSession`` and is the only place the
resolver, the policies, the guest-link service and the gate touch the
database.  Every lookup is a point query; the tree walk lives in the
resolver, one ``find_node()`` per level.
"""
from __future__ import annotations

import dataclasses
import datetime
from collections.abc import Sequence

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from keystone_access.models import (
    Category,
    CategoryPermission,
    Expense,
    GuestToken,
    Report,
    User,
)
from keystone_access.rbac import GuestTokenStatus


@dataclasses.dataclass(frozen=True)
class CategoryNode:
    """The slice of a category the resolver needs at each level."""
    id: int
    report_id: int
    parent_category_id: int | None
    owner_id: int


class AccessStore:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def find_user_by_external_id(self, external_id: str) -> User | None:
        result = await self.db.execute(
            select(User).where(User.external_id == external_id)
        )
        return result.scalar_one_or_none()

    async def find_user(self, user_id: int) -> User | None:
        return await self.db.get(User, user_id)

    async def find_user_by_email(self, email: str) -> User | None:
        result = await self.db.execute(
            select(User).where(func.lower(User.email) == email.lower())
        )
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Reports, categories, expenses
    # ------------------------------------------------------------------

    async def find_report(self, report_id: int) -> Report | None:
        return await self.db.get(Report, report_id)

    async def find_category(self, category_id: int) -> Category | None:
        return await self.db.get(Category, category_id)

    async def find_node(self, category_id: int) -> CategoryNode | None:
        """Load a category together with its report owner in one query."""
        stmt = (
            select(
                Category.id,
                Category.report_id,
                Category.parent_category_id,
                Report.owner_id,
            )
            .join(Report, Report.id == Category.report_id)
            .where(Category.id == category_id)
        )
        row = (await self.db.execute(stmt)).one_or_none()
        if row is None:
            return None
        return CategoryNode(
            id=row.id,
            report_id=row.report_id,
            parent_category_id=row.parent_category_id,
            owner_id=row.owner_id,
        )

    async def count_expenses(self, category_id: int) -> int:
        result = await self.db.execute(
            select(func.count(Expense.id)).where(Expense.category_id == category_id)
        )
        return result.scalar_one()

    async def find_expense(self, expense_id: int) -> Expense | None:
        return await self.db.get(Expense, expense_id)

    # ------------------------------------------------------------------
    # Category permissions
    # ------------------------------------------------------------------

    async def find_permission(
        self, user_id: int, category_id: int
    ) -> CategoryPermission | None:
        result = await self.db.execute(
            select(CategoryPermission).where(
                CategoryPermission.user_id == user_id,
                CategoryPermission.category_id == category_id,
            )
        )
        return result.scalar_one_or_none()

    async def report_has_any_grant(self, user_id: int, report_id: int) -> bool:
        """True if *user_id* holds a direct grant on any category of the report."""
        stmt = (
            select(CategoryPermission.id)
            .join(Category, Category.id == CategoryPermission.category_id)
            .where(
                CategoryPermission.user_id == user_id,
                Category.report_id == report_id,
            )
            .limit(1)
        )
        return (await self.db.execute(stmt)).first() is not None

    async def list_permissions_for_categories(
        self, category_ids: Sequence[int]
    ) -> list[tuple[CategoryPermission, User]]:
        stmt = (
            select(CategoryPermission, User)
            .join(User, User.id == CategoryPermission.user_id)
            .where(CategoryPermission.category_id.in_(category_ids))
            .order_by(User.name, User.id)
        )
        result = await self.db.execute(stmt)
        return [(perm, user) for perm, user in result.all()]

    async def upsert_permission(
        self, user_id: int, category_id: int, role: str
    ) -> tuple[CategoryPermission, bool]:
        """Create or update the grant; returns ``(row, created)``."""
        existing = await self.find_permission(user_id, category_id)
        if existing is not None:
            existing.role = role
            await self.db.flush()
            return existing, False

        perm = CategoryPermission(user_id=user_id, category_id=category_id, role=role)
        self.db.add(perm)
        await self.db.flush()
        return perm, True

    async def delete_permission(self, permission: CategoryPermission) -> None:
        await self.db.delete(permission)
        await self.db.flush()

    # ------------------------------------------------------------------
    # Guest tokens
    # ------------------------------------------------------------------

    async def find_guest_token(self, token: str) -> GuestToken | None:
        result = await self.db.execute(
            select(GuestToken).where(GuestToken.token == token)
        )
        return result.scalar_one_or_none()

    async def insert_guest_token(self, guest_token: GuestToken) -> GuestToken:
        self.db.add(guest_token)
        await self.db.flush()
        await self.db.refresh(guest_token)
        return guest_token

    async def mark_guest_token_revoked(self, token: str) -> bool:
        """Flip an existing token to revoked; False if no such token."""
        result = await self.db.execute(
            update(GuestToken)
            .where(GuestToken.token == token)
            .values(status=GuestTokenStatus.REVOKED.value)
        )
        return result.rowcount > 0

    async def list_guest_tokens(
        self, category_id: int, now: datetime.datetime
    ) -> list[GuestToken]:
        """Active, unexpired tokens for a category, newest first."""
        stmt = (
            select(GuestToken)
            .where(
                GuestToken.category_id == category_id,
                GuestToken.status == GuestTokenStatus.ACTIVE.value,
                or_(GuestToken.expires_at.is_(None), GuestToken.expires_at > now),
            )
            .order_by(GuestToken.created_at.desc(), GuestToken.id.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def delete_stale_guest_tokens(self, now: datetime.datetime) -> int:
        """Delete revoked tokens and tokens whose expiry has passed."""
        result = await self.db.execute(
            delete(GuestToken).where(
                or_(
                    GuestToken.status != GuestTokenStatus.ACTIVE.value,
                    GuestToken.expires_at <= now,
                )
            )
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0
