"""Guest share links: issue, validate, list, revoke, clean up.

A guest link is a capability bound to exactly one category and one
``GuestPermissionLevel``.  Whoever presents the token gets that level on
that category and nothing else; the permission resolver is never consulted
for guests.

Authorization of the *caller* (ADMIN to issue or revoke, REVIEWER to list)
is the access gate's job.  This service assumes it has already happened.

Validation reads the row at call time.  A token is valid iff it exists, its
status is ``active`` and ``now < expires_at`` (or it never expires).  Every
failure raises the same ``InvalidOrExpiredToken``.
"""
from __future__ import annotations

import dataclasses
import datetime
import logging
import secrets
from collections.abc import Callable
from datetime import timezone

from keystone_access.config import settings
from keystone_access.errors import GuestLinkRequestError, InvalidOrExpiredToken
from keystone_access.models import GuestToken
from keystone_access.rbac import GuestPermissionLevel, GuestTokenStatus, parse_level
from keystone_access.services.access_store import AccessStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime.datetime]


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(timezone.utc)


def as_utc(value: datetime.datetime) -> datetime.datetime:
    """Treat naive datetimes as UTC (SQLite drops the offset)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def token_hint(token: str) -> str:
    """Loggable prefix of a token; never log the whole value."""
    return f"{token[:8]}..."


@dataclasses.dataclass(frozen=True)
class GuestClaims:
    """What a validated guest token entitles its bearer to."""
    token: str
    category_id: int
    permission_level: GuestPermissionLevel
    expires_at: datetime.datetime | None


class GuestLinkService:
    def __init__(self, store: AccessStore, clock: Clock = utcnow) -> None:
        self.store = store
        self.clock = clock

    @staticmethod
    def generate_token() -> str:
        return secrets.token_hex(settings.GUEST_TOKEN_BYTES)

    @staticmethod
    def share_url(token: str) -> str:
        return f"{settings.FRONTEND_URL.rstrip('/')}/guest?token={token}"

    def _is_live(self, row: GuestToken, now: datetime.datetime) -> bool:
        if row.status != GuestTokenStatus.ACTIVE.value:
            return False
        if row.expires_at is not None and now >= as_utc(row.expires_at):
            return False
        return True

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def issue(
        self,
        category_id: int,
        permission_level: GuestPermissionLevel | str,
        expires_at: datetime.datetime | None = None,
        description: str | None = None,
    ) -> GuestToken:
        """Create a new active token for *category_id*."""
        level = parse_level(permission_level)
        if level is None:
            raise GuestLinkRequestError(
                "permission_level must be either SUBMIT_ONLY or REVIEW_ONLY"
            )

        expiry = as_utc(expires_at) if expires_at is not None else None
        if expiry is not None and expiry <= self.clock():
            raise GuestLinkRequestError("expires_at must be in the future")

        row = GuestToken(
            token=self.generate_token(),
            category_id=category_id,
            permission_level=level.value,
            expires_at=expiry,
            status=GuestTokenStatus.ACTIVE.value,
            description=description,
        )
        row = await self.store.insert_guest_token(row)
        logger.info(
            "Issued %s guest link %s for category %s (expires %s)",
            level.value, token_hint(row.token), category_id,
            expiry.isoformat() if expiry else "never",
        )
        return row

    async def validate(self, token: str) -> GuestClaims:
        """Return the claims of a live token or raise ``InvalidOrExpiredToken``."""
        if not token:
            raise InvalidOrExpiredToken()

        row = await self.store.find_guest_token(token)
        if row is None or not self._is_live(row, self.clock()):
            raise InvalidOrExpiredToken()

        level = parse_level(row.permission_level)
        if level is None:
            # Unknown level in storage is treated as an unusable token.
            raise InvalidOrExpiredToken()

        return GuestClaims(
            token=row.token,
            category_id=row.category_id,
            permission_level=level,
            expires_at=as_utc(row.expires_at) if row.expires_at else None,
        )

    async def find(self, token: str) -> GuestToken | None:
        """Raw lookup, live or not; used to locate the category before revoking."""
        return await self.store.find_guest_token(token)

    async def revoke(self, token: str) -> bool:
        """Mark *token* revoked.  False if no such token exists."""
        revoked = await self.store.mark_guest_token_revoked(token)
        if revoked:
            logger.info("Revoked guest link %s", token_hint(token))
        return revoked

    async def list_for_category(self, category_id: int) -> list[GuestToken]:
        """Active, unexpired links for a category, newest first."""
        return await self.store.list_guest_tokens(category_id, self.clock())

    async def cleanup_stale(self) -> int:
        """Delete revoked and expired tokens; returns the number removed."""
        removed = await self.store.delete_stale_guest_tokens(self.clock())
        logger.info("Guest link cleanup removed %d token(s)", removed)
        return removed
