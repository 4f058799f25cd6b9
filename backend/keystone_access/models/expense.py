"""Expense model, kept only as far as authorization needs it."""
from __future__ import annotations

from sqlalchemy import ForeignKey, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from keystone_access.database import Base
from keystone_access.models.base import CreatedAtMixin, IntegerPrimaryKeyMixin


class Expense(IntegerPrimaryKeyMixin, CreatedAtMixin, Base):
    """An expense filed under exactly one category."""
    __tablename__ = "expenses"

    category_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("categories.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    submitter_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL")
    )
    description: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str] = mapped_column(
        String(30), nullable=False, server_default=text("'PENDING_REVIEW'")
    )

    def __repr__(self) -> str:
        return f"<Expense {self.id} category={self.category_id} {self.status}>"
