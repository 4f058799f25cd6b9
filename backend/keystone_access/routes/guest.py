"""Guest link routes -- revoke, public validation, guest session scope."""
from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from keystone_access.database import get_db
from keystone_access.errors import InvalidOrExpiredToken
from keystone_access.middleware.auth import (
    access_error,
    audit_actor,
    get_external_id,
    get_gate,
    raise_for_decision,
    require_guest,
)
from keystone_access.rbac import GuestPermissionLevel, level_satisfies
from keystone_access.services.access_gate import (
    AccessDecision,
    AccessGate,
    AccessTarget,
    DecisionReason,
    GuestOperation,
    Operation,
)
from keystone_access.services.audit_service import write_audit_log

router = APIRouter(tags=["guest"])


class TokenValidate(BaseModel):
    token: str


@router.delete("/api/guest-links/{token}", status_code=204)
async def revoke_guest_link(
    token: str,
    db: AsyncSession = Depends(get_db),
    external_id: str | None = Depends(get_external_id),
    gate: AccessGate = Depends(get_gate),
):
    """Revoke a link.  Requires ADMIN on the category the link is bound to."""
    principal = await gate.resolve_principal(external_id)
    if principal is None:
        raise access_error(DecisionReason.UNAUTHENTICATED)

    link = await gate.guest_links.find(token)
    if link is None:
        raise access_error(DecisionReason.NOT_FOUND, "Link not found")

    decision = await gate.authorize(
        external_id, Operation.MANAGE_CATEGORY, AccessTarget(category_id=link.category_id)
    )
    raise_for_decision(decision)

    if not await gate.guest_links.revoke(token):
        raise access_error(DecisionReason.NOT_FOUND, "Link not found")

    await write_audit_log(
        db,
        audit_actor(decision),
        action="guest_link.revoke",
        resource_type="category",
        resource_id=str(link.category_id),
        details={"guest_link_id": link.id},
    )
    await db.commit()


@router.post("/api/guest-links/validate-token")
async def validate_guest_token(
    body: TokenValidate,
    gate: AccessGate = Depends(get_gate),
):
    """Public: exchange a token for its scope so a guest session can start."""
    try:
        claims = await gate.guest_links.validate(body.token)
    except InvalidOrExpiredToken:
        raise access_error(DecisionReason.INVALID_TOKEN)
    return {
        "category_id": claims.category_id,
        "permission_level": claims.permission_level.value,
    }


@router.get("/api/guest")
async def guest_session(
    decision: AccessDecision = Depends(require_guest(GuestOperation.SESSION)),
):
    """Scope of the presented guest token.

    ``SUBMIT_ONLY`` guests get a submission-only view; review capabilities
    are reported only for ``REVIEW_ONLY`` links.
    """
    claims = decision.guest
    return {
        "category_id": claims.category_id,
        "report_id": decision.report_id,
        "permission_level": claims.permission_level.value,
        "expires_at": claims.expires_at.isoformat() if claims.expires_at else None,
        "can_submit": True,
        "can_review": level_satisfies(
            claims.permission_level, GuestPermissionLevel.REVIEW_ONLY
        ),
    }
