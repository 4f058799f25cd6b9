"""Audit logging for sharing mutations.

Each event is written to the ``audit_log`` table and categorised for
retention:

* **MUTATION** -- kept forever (grant, revoke, issue, ...)
* **SYSTEM** -- scheduler runs and other housekeeping
"""

from __future__ import annotations

import enum
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from keystone_access.models import AuditLog

logger = logging.getLogger(__name__)


class AuditEventCategory(str, enum.Enum):
    MUTATION = "mutation"
    SYSTEM = "system"


_SYSTEM_PREFIXES = (
    "system.",
    "scheduler.",
)


def classify_action(action: str) -> AuditEventCategory:
    """Map an action string to a retention category."""
    action_lower = action.lower()
    for prefix in _SYSTEM_PREFIXES:
        if action_lower.startswith(prefix):
            return AuditEventCategory.SYSTEM
    # Unknown actions are kept as mutations so they are never purged by mistake
    return AuditEventCategory.MUTATION


async def write_audit_log(
    db: AsyncSession,
    actor: dict | None,
    action: str,
    resource_type: str | None = None,
    resource_id: str | None = None,
    details: dict | None = None,
) -> AuditLog:
    """Add an audit row to the current transaction."""
    entry = AuditLog(
        user_id=actor.get("user_id") if actor else None,
        external_id=actor.get("external_id") if actor else None,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        details=details,
        event_category=classify_action(action).value,
    )
    db.add(entry)
    await db.flush()
    logger.debug("Audit %s %s/%s", action, resource_type, resource_id)
    return entry
