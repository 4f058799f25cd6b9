"""Category sharing: grant, revoke and list explicit permissions.

Callers must already hold ADMIN on the category (checked by the gate).
"""
from __future__ import annotations

import dataclasses
import logging

from keystone_access.errors import PermissionNotFound, UserNotFound
from keystone_access.models import CategoryPermission, User
from keystone_access.rbac import Role, parse_role
from keystone_access.services.access_store import AccessStore
from keystone_access.services.permission_resolver import iter_ancestry

logger = logging.getLogger(__name__)

OWNER_ROLE = "OWNER"


@dataclasses.dataclass(frozen=True)
class EffectivePermission:
    """One row of the "who has access here" list."""
    permission_id: int | None
    user_id: int
    role: str
    source_category_id: int | None
    is_direct: bool

    @property
    def is_inherited(self) -> bool:
        return not self.is_direct


class PermissionService:
    def __init__(self, store: AccessStore) -> None:
        self.store = store

    async def find_target_user(self, reference: str | int) -> User | None:
        """Resolve a grant target given as numeric id, email, or external id."""
        if isinstance(reference, int) or str(reference).isdigit():
            return await self.store.find_user(int(reference))
        reference = str(reference).strip()
        if "@" in reference:
            return await self.store.find_user_by_email(reference)
        return await self.store.find_user_by_external_id(reference)

    async def grant(
        self, category_id: int, target: str | int, role: Role | str
    ) -> tuple[CategoryPermission, bool]:
        """Create or replace the grant for the target on *category_id*.

        Returns ``(permission, created)``.
        """
        parsed = parse_role(role)
        if parsed is None:
            raise ValueError("role must be either SUBMITTER, REVIEWER or ADMIN")

        user = await self.find_target_user(target)
        if user is None:
            raise UserNotFound(f"User {target!r} not found")

        perm, created = await self.store.upsert_permission(user.id, category_id, parsed.value)
        logger.info(
            "%s %s on category %s for user %s",
            "Granted" if created else "Updated", parsed.value, category_id, user.id,
        )
        return perm, created

    async def revoke(self, category_id: int, user_id: int) -> CategoryPermission:
        perm = await self.store.find_permission(user_id, category_id)
        if perm is None:
            raise PermissionNotFound(
                f"No permission for user {user_id} on category {category_id}"
            )
        await self.store.delete_permission(perm)
        logger.info("Revoked %s on category %s for user %s", perm.role, category_id, user_id)
        return perm

    async def list_effective(self, category_id: int) -> list[EffectivePermission]:
        """Owner first, then one entry per user with a grant on the category or
        an ancestor.  The grant on the closest category wins."""
        chain = [node async for node in iter_ancestry(self.store, category_id)]
        if not chain:
            return []

        owner_id = chain[0].owner_id
        rows = await self.store.list_permissions_for_categories([n.id for n in chain])
        by_category: dict[int, list[CategoryPermission]] = {}
        for perm, _user in rows:
            by_category.setdefault(perm.category_id, []).append(perm)

        result = [
            EffectivePermission(
                permission_id=None,
                user_id=owner_id,
                role=OWNER_ROLE,
                source_category_id=None,
                is_direct=True,
            )
        ]
        seen = {owner_id}
        for node in chain:
            for perm in by_category.get(node.id, []):
                if perm.user_id in seen:
                    continue
                seen.add(perm.user_id)
                result.append(
                    EffectivePermission(
                        permission_id=perm.id,
                        user_id=perm.user_id,
                        role=perm.role,
                        source_category_id=node.id,
                        is_direct=node.id == category_id,
                    )
                )
        return result
