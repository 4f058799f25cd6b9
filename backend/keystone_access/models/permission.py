"""SQLAlchemy models for category sharing: explicit grants and audit logging."""
from __future__ import annotations

import datetime

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from keystone_access.database import Base
from keystone_access.models.base import CreatedAtMixin, IntegerPrimaryKeyMixin


class CategoryPermission(IntegerPrimaryKeyMixin, CreatedAtMixin, Base):
    """Explicit (user, category, role) grant.

    At most one row per (user, category).  Inheritance down the category
    tree is resolved at check time; the row itself only covers its category.
    """
    __tablename__ = "category_permissions"
    __table_args__ = (
        UniqueConstraint("user_id", "category_id", name="uq_category_permissions_user_category"),
    )

    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    category_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("categories.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return f"<CategoryPermission user={self.user_id} category={self.category_id} {self.role}>"


class AuditLog(IntegerPrimaryKeyMixin, CreatedAtMixin, Base):
    """Immutable audit trail of sharing mutations."""
    __tablename__ = "audit_log"

    user_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL")
    )
    external_id: Mapped[str | None] = mapped_column(String(128))
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    resource_type: Mapped[str | None] = mapped_column(String(100))
    resource_id: Mapped[str | None] = mapped_column(String(200))
    details: Mapped[dict | None] = mapped_column(JSON)
    event_category: Mapped[str] = mapped_column(
        String(20), nullable=False, server_default=text("'mutation'")
    )

    def __repr__(self) -> str:
        return f"<AuditLog {self.action!r} by {self.external_id!r}>"
