"""Report (workspace) and category tree models."""
from __future__ import annotations

from sqlalchemy import Boolean, ForeignKey, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from keystone_access.database import Base
from keystone_access.models.base import CreatedAtMixin, IntegerPrimaryKeyMixin


class Report(IntegerPrimaryKeyMixin, CreatedAtMixin, Base):
    """Top-level workspace.  Its owner holds ADMIN on every category in it."""
    __tablename__ = "reports"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    owner_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # ------ relationships ------
    categories: Mapped[list[Category]] = relationship(
        "Category",
        back_populates="report",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Report {self.id} {self.name!r} owner={self.owner_id}>"


class Category(IntegerPrimaryKeyMixin, CreatedAtMixin, Base):
    """A node in a report's category forest.

    ``parent_category_id`` is ``None`` for roots.  Parent chains are acyclic
    and stay within one report; that is enforced where categories are
    created or moved, not here.
    """
    __tablename__ = "categories"

    report_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("reports.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    parent_category_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("categories.id", ondelete="CASCADE"),
        index=True,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    allow_guest_submissions: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("true")
    )
    allow_user_submissions: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("true")
    )
    require_receipt: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("false")
    )

    # ------ relationships ------
    report: Mapped[Report] = relationship(
        "Report",
        back_populates="categories",
    )
    parent: Mapped[Category | None] = relationship(
        "Category",
        remote_side="Category.id",
        back_populates="children",
    )
    children: Mapped[list[Category]] = relationship(
        "Category",
        back_populates="parent",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Category {self.id} {self.name!r} parent={self.parent_category_id}>"
