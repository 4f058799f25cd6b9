"""Base model utilities for Keystone.

Every table is keyed by an auto-incrementing integer ``id``; the local
numeric id is the join key for all permission records.
"""
from __future__ import annotations

import datetime

from sqlalchemy import DateTime, Integer, func
from sqlalchemy.orm import Mapped, mapped_column


class IntegerPrimaryKeyMixin:
    """Mixin that adds an integer primary key column named ``id``."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)


class CreatedAtMixin:
    """Mixin that adds a ``created_at`` column filled by the database."""

    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
