"""Guest link (capability token) model."""
from __future__ import annotations

import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from keystone_access.database import Base
from keystone_access.models.base import CreatedAtMixin, IntegerPrimaryKeyMixin


class GuestToken(IntegerPrimaryKeyMixin, CreatedAtMixin, Base):
    """Opaque, revocable, time-bounded credential for one category.

    Rows are inserted once and afterwards only change ``status`` from
    ``active`` to ``revoked``.
    """
    __tablename__ = "guest_tokens"

    token: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    category_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("categories.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    permission_level: Mapped[str] = mapped_column(String(20), nullable=False)
    expires_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True)
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, server_default=text("'active'")
    )
    description: Mapped[str | None] = mapped_column(Text)

    def __repr__(self) -> str:
        return (
            f"<GuestToken {self.id} category={self.category_id} "
            f"{self.permission_level} {self.status}>"
        )
