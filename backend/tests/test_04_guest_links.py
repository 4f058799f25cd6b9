"""
Tests 401-430: Guest share links

Issue/validate/revoke/list/cleanup with a frozen clock.
"""
from datetime import timedelta

import pytest

from keystone_access.errors import GuestLinkRequestError, InvalidOrExpiredToken
from keystone_access.rbac import GuestPermissionLevel, GuestTokenStatus
from keystone_access.services.guest_links import GuestLinkService, as_utc, token_hint

SUBMIT_ONLY = GuestPermissionLevel.SUBMIT_ONLY
REVIEW_ONLY = GuestPermissionLevel.REVIEW_ONLY


@pytest.fixture
def links(store, clock):
    return GuestLinkService(store, clock=clock)


class TestGuestLinks:

    # =================================================================
    # Tests 401-410: issue
    # =================================================================

    async def test_401_issue_returns_active_token(self, db, links, scenario):
        """Issued token is 64 hex chars, active, and bound to the category."""
        row = await links.issue(scenario.c.id, SUBMIT_ONLY)
        await db.commit()
        assert len(row.token) == 64
        int(row.token, 16)
        assert row.status == GuestTokenStatus.ACTIVE.value
        assert row.category_id == scenario.c.id
        assert row.permission_level == "SUBMIT_ONLY"
        assert row.expires_at is None

    async def test_402_tokens_are_unique(self, db, links, scenario):
        """Two links for the same category never share a token."""
        first = await links.issue(scenario.c.id, SUBMIT_ONLY)
        second = await links.issue(scenario.c.id, SUBMIT_ONLY)
        await db.commit()
        assert first.token != second.token

    async def test_403_level_accepts_string(self, db, links, scenario):
        """The stored level string is accepted in place of the enum."""
        row = await links.issue(scenario.c.id, "REVIEW_ONLY", description="Auditor")
        await db.commit()
        assert row.permission_level == "REVIEW_ONLY"
        assert row.description == "Auditor"

    async def test_404_unknown_level_rejected(self, links, scenario):
        """Unknown level is a request error, and also a ValueError."""
        with pytest.raises(GuestLinkRequestError):
            await links.issue(scenario.c.id, "ADMIN_ONLY")
        with pytest.raises(ValueError):
            await links.issue(scenario.c.id, "")

    async def test_405_expiry_must_be_in_future(self, links, clock, scenario):
        """Past or present expiry is refused."""
        with pytest.raises(GuestLinkRequestError):
            await links.issue(scenario.c.id, SUBMIT_ONLY, clock.now - timedelta(minutes=1))
        with pytest.raises(GuestLinkRequestError):
            await links.issue(scenario.c.id, SUBMIT_ONLY, clock.now)

    async def test_406_share_url(self):
        """Share URL points at the guest landing page."""
        assert GuestLinkService.share_url("abc") == "http://localhost:3000/guest?token=abc"

    async def test_407_token_hint_is_short(self):
        """Logged token prefix never contains the full value."""
        token = "f" * 64
        assert token_hint(token) == "ffffffff..."

    # =================================================================
    # Tests 411-420: validate
    # =================================================================

    async def test_411_validate_returns_claims(self, db, links, scenario):
        """A live token returns its category and level."""
        row = await links.issue(scenario.c.id, REVIEW_ONLY)
        await db.commit()
        claims = await links.validate(row.token)
        assert claims.category_id == scenario.c.id
        assert claims.permission_level is REVIEW_ONLY
        assert claims.expires_at is None

    async def test_412_expiry_boundary(self, db, links, clock, scenario):
        """Valid one second before expiry, invalid exactly at expiry."""
        expires = clock.now + timedelta(hours=1)
        row = await links.issue(scenario.c.id, SUBMIT_ONLY, expires)
        await db.commit()

        clock.advance(minutes=59, seconds=59)
        claims = await links.validate(row.token)
        assert claims.expires_at == expires

        clock.advance(seconds=1)
        with pytest.raises(InvalidOrExpiredToken):
            await links.validate(row.token)

    async def test_413_unknown_token(self, links, scenario):
        """Unknown and empty tokens fail the same way."""
        with pytest.raises(InvalidOrExpiredToken):
            await links.validate("0" * 64)
        with pytest.raises(InvalidOrExpiredToken):
            await links.validate("")

    async def test_414_revocation_is_terminal(self, db, links, clock, scenario):
        """A revoked token never validates again."""
        row = await links.issue(scenario.c.id, SUBMIT_ONLY)
        await db.commit()
        assert await links.revoke(row.token) is True
        await db.commit()

        for _ in range(3):
            with pytest.raises(InvalidOrExpiredToken):
                await links.validate(row.token)
            clock.advance(days=1)

    async def test_415_revoke_unknown(self, links, scenario):
        """Revoking a token that never existed reports False."""
        assert await links.revoke("nope") is False

    async def test_416_error_message_is_uniform(self, db, links, clock, scenario):
        """Expired and revoked tokens raise the same message."""
        expired = await links.issue(scenario.c.id, SUBMIT_ONLY, clock.now + timedelta(minutes=5))
        revoked = await links.issue(scenario.c.id, SUBMIT_ONLY)
        await links.revoke(revoked.token)
        await db.commit()
        clock.advance(minutes=10)

        messages = set()
        for token in (expired.token, revoked.token, "missing"):
            with pytest.raises(InvalidOrExpiredToken) as exc:
                await links.validate(token)
            messages.add(str(exc.value))
        assert messages == {"Invalid or expired share link"}

    # =================================================================
    # Tests 421-430: list / cleanup
    # =================================================================

    async def test_421_list_active_newest_first(self, db, links, clock, scenario):
        """Listing skips revoked links and other categories, newest first."""
        t1 = await links.issue(scenario.c.id, SUBMIT_ONLY)
        t2 = await links.issue(scenario.c.id, REVIEW_ONLY, clock.now + timedelta(hours=1))
        t3 = await links.issue(scenario.c.id, SUBMIT_ONLY)
        await links.issue(scenario.b.id, SUBMIT_ONLY)
        await links.revoke(t3.token)
        await db.commit()

        listed = await links.list_for_category(scenario.c.id)
        assert [row.token for row in listed] == [t2.token, t1.token]

    async def test_422_list_drops_expired(self, db, links, clock, scenario):
        """Once past expiry a link disappears from the listing."""
        t1 = await links.issue(scenario.c.id, SUBMIT_ONLY)
        await links.issue(scenario.c.id, SUBMIT_ONLY, clock.now + timedelta(hours=1))
        await db.commit()

        clock.advance(hours=1)
        listed = await links.list_for_category(scenario.c.id)
        assert [row.token for row in listed] == [t1.token]

    async def test_423_cleanup_removes_stale(self, db, links, clock, scenario):
        """Cleanup deletes revoked and expired rows and keeps live ones."""
        live = await links.issue(scenario.c.id, SUBMIT_ONLY)
        later = await links.issue(scenario.c.id, SUBMIT_ONLY, clock.now + timedelta(days=2))
        soon = await links.issue(scenario.c.id, SUBMIT_ONLY, clock.now + timedelta(hours=1))
        gone = await links.issue(scenario.c.id, SUBMIT_ONLY)
        await links.revoke(gone.token)
        await db.commit()

        clock.advance(hours=2)
        removed = await links.cleanup_stale()
        await db.commit()

        assert removed == 2
        assert await links.find(soon.token) is None
        assert await links.find(gone.token) is None
        assert await links.find(live.token) is not None
        assert await links.find(later.token) is not None

    async def test_424_cleanup_nothing_to_do(self, db, links, scenario):
        """Cleanup on a clean table removes nothing."""
        await links.issue(scenario.c.id, SUBMIT_ONLY)
        await db.commit()
        assert await links.cleanup_stale() == 0

    async def test_425_as_utc_handles_naive(self, clock):
        """Naive timestamps read back from storage are taken as UTC."""
        naive = clock.now.replace(tzinfo=None)
        assert as_utc(naive) == clock.now
