"""Category sharing routes -- access summary, permissions, guest links."""
from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from keystone_access.database import get_db
from keystone_access.errors import GuestLinkRequestError, PermissionNotFound, UserNotFound
from keystone_access.middleware.auth import access_error, audit_actor, get_gate, require_access
from keystone_access.models import GuestToken
from keystone_access.rbac import GuestPermissionLevel, Role
from keystone_access.services.access_gate import (
    AccessDecision,
    AccessGate,
    DecisionReason,
    Operation,
)
from keystone_access.services.access_store import AccessStore
from keystone_access.services.audit_service import write_audit_log
from keystone_access.services.guest_links import GuestLinkService
from keystone_access.services.permission_service import PermissionService

router = APIRouter(prefix="/api/categories", tags=["categories"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------


class PermissionGrant(BaseModel):
    user: str
    role: Role


class GuestLinkCreate(BaseModel):
    permission_level: GuestPermissionLevel
    expires_at: datetime | None = None
    description: str | None = None


def guest_link_dict(link: GuestToken) -> dict:
    return {
        "id": link.id,
        "token": link.token,
        "url": GuestLinkService.share_url(link.token),
        "category_id": link.category_id,
        "permission_level": link.permission_level,
        "expires_at": link.expires_at.isoformat() if link.expires_at else None,
        "description": link.description,
        "status": link.status,
        "created_at": link.created_at.isoformat() if link.created_at else None,
    }


# ---------------------------------------------------------------------------
# ACCESS SUMMARY
# ---------------------------------------------------------------------------


@router.get("/{category_id}/access")
async def get_category_access(
    category_id: int,
    gate: AccessGate = Depends(get_gate),
    decision: AccessDecision = Depends(require_access(Operation.VIEW_CATEGORY)),
):
    """What the caller may do on this category."""
    summary = await gate.describe_access(decision.principal, category_id)
    return {"category_id": category_id, **summary}


# ---------------------------------------------------------------------------
# PERMISSIONS
# ---------------------------------------------------------------------------


@router.get("/{category_id}/permissions")
async def list_category_permissions(
    category_id: int,
    db: AsyncSession = Depends(get_db),
    _decision: AccessDecision = Depends(require_access(Operation.MANAGE_CATEGORY)),
):
    """Owner first, then direct and inherited grants."""
    service = PermissionService(AccessStore(db))
    items = [
        {
            "id": p.permission_id,
            "user_id": p.user_id,
            "role": p.role,
            "source_category_id": p.source_category_id,
            "is_direct": p.is_direct,
            "is_inherited": p.is_inherited,
        }
        for p in await service.list_effective(category_id)
    ]
    return {"items": items, "total": len(items)}


@router.post("/{category_id}/permissions")
async def grant_category_permission(
    category_id: int,
    body: PermissionGrant,
    db: AsyncSession = Depends(get_db),
    decision: AccessDecision = Depends(require_access(Operation.MANAGE_CATEGORY)),
):
    service = PermissionService(AccessStore(db))
    try:
        perm, created = await service.grant(category_id, body.user, body.role)
    except UserNotFound:
        raise access_error(DecisionReason.NOT_FOUND, "Target user not found")

    await write_audit_log(
        db,
        audit_actor(decision),
        action="permission.grant",
        resource_type="category",
        resource_id=str(category_id),
        details={"user_id": perm.user_id, "role": perm.role, "created": created},
    )
    await db.commit()
    return {
        "id": perm.id,
        "user_id": perm.user_id,
        "category_id": perm.category_id,
        "role": perm.role,
        "created": created,
    }


@router.delete("/{category_id}/permissions/{user_id}")
async def revoke_category_permission(
    category_id: int,
    user_id: int,
    db: AsyncSession = Depends(get_db),
    decision: AccessDecision = Depends(require_access(Operation.MANAGE_CATEGORY)),
):
    service = PermissionService(AccessStore(db))
    try:
        perm = await service.revoke(category_id, user_id)
    except PermissionNotFound:
        raise access_error(
            DecisionReason.NOT_FOUND, "Permission not found for this user on this category"
        )

    await write_audit_log(
        db,
        audit_actor(decision),
        action="permission.revoke",
        resource_type="category",
        resource_id=str(category_id),
        details={"user_id": user_id, "role": perm.role},
    )
    await db.commit()
    return {"user_id": user_id, "category_id": category_id, "role": perm.role}


# ---------------------------------------------------------------------------
# GUEST LINKS
# ---------------------------------------------------------------------------


@router.get("/{category_id}/guest-links")
async def list_guest_links(
    category_id: int,
    db: AsyncSession = Depends(get_db),
    _decision: AccessDecision = Depends(require_access(Operation.REVIEW_CATEGORY)),
):
    links = await GuestLinkService(AccessStore(db)).list_for_category(category_id)
    items = [guest_link_dict(link) for link in links]
    return {"items": items, "total": len(items)}


@router.post("/{category_id}/guest-links", status_code=201)
async def create_guest_link(
    category_id: int,
    body: GuestLinkCreate,
    db: AsyncSession = Depends(get_db),
    decision: AccessDecision = Depends(require_access(Operation.MANAGE_CATEGORY)),
):
    service = GuestLinkService(AccessStore(db))
    try:
        link = await service.issue(
            category_id, body.permission_level, body.expires_at, body.description
        )
    except GuestLinkRequestError as e:
        raise access_error(DecisionReason.BAD_REQUEST, str(e))

    await write_audit_log(
        db,
        audit_actor(decision),
        action="guest_link.create",
        resource_type="category",
        resource_id=str(category_id),
        details={"guest_link_id": link.id, "permission_level": link.permission_level},
    )
    await db.commit()
    return guest_link_dict(link)
