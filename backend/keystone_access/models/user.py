"""User model: local identity mapped from the upstream identity provider."""
from __future__ import annotations

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from keystone_access.database import Base
from keystone_access.models.base import CreatedAtMixin, IntegerPrimaryKeyMixin


class User(IntegerPrimaryKeyMixin, CreatedAtMixin, Base):
    """A Keystone user.

    ``external_id`` is the stable subject issued by the identity provider and
    never changes; ``id`` is the local key every permission row joins on.
    """
    __tablename__ = "users"

    external_id: Mapped[str] = mapped_column(
        String(128), unique=True, nullable=False, index=True
    )
    email: Mapped[str | None] = mapped_column(String(200), unique=True)
    name: Mapped[str | None] = mapped_column(String(200))

    def __repr__(self) -> str:
        return f"<User {self.id} external_id={self.external_id!r}>"
