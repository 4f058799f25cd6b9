"""Authentication and authorization dependencies for Keystone.

Provides:
- Bearer JWT decoding (the ``sub`` claim is the user's external id)
- ``get_current_principal()`` dependency
- ``require_access()`` for signed-in users and ``require_guest()`` for guest
  links, both backed by the ``AccessGate``
- Mapping of gate decisions to HTTP errors
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from keystone_access.config import settings
from keystone_access.database import get_db
from keystone_access.services.access_gate import (
    AccessDecision,
    AccessGate,
    AccessTarget,
    DecisionReason,
    GuestOperation,
    Operation,
    Principal,
)
from keystone_access.services.access_store import AccessStore

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# JWT helpers
# ---------------------------------------------------------------------------


def create_access_token(data: dict[str, Any], expires_minutes: int = 60) -> str:
    """Create a signed JWT.  Used by local tooling and tests; production
    tokens come from the identity provider with the same ``sub`` claim."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_subject(token: str) -> str | None:
    """Return the ``sub`` claim of a valid token, or ``None``."""
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except JWTError:
        return None
    subject = payload.get("sub")
    return subject if isinstance(subject, str) and subject else None


bearer_scheme = HTTPBearer(auto_error=False)

# ---------------------------------------------------------------------------
# Gate dependency
# ---------------------------------------------------------------------------


async def get_gate(db: AsyncSession = Depends(get_db)) -> AccessGate:
    return AccessGate(AccessStore(db))


# ---------------------------------------------------------------------------
# Decision -> HTTP
# ---------------------------------------------------------------------------

_STATUS_BY_REASON: dict[DecisionReason, tuple[int, str]] = {
    DecisionReason.UNAUTHENTICATED: (
        status.HTTP_401_UNAUTHORIZED, "Could not validate credentials"
    ),
    DecisionReason.INVALID_TOKEN: (
        status.HTTP_401_UNAUTHORIZED, "Invalid or expired guest token"
    ),
    DecisionReason.BAD_REQUEST: (status.HTTP_400_BAD_REQUEST, "Invalid resource identifier"),
    DecisionReason.NOT_FOUND: (status.HTTP_404_NOT_FOUND, "Resource not found"),
    DecisionReason.FORBIDDEN: (status.HTTP_403_FORBIDDEN, "Insufficient permissions"),
    DecisionReason.NON_EMPTY_SUBTREE: (
        status.HTTP_409_CONFLICT, "Cannot delete subcategory that contains expenses"
    ),
}


def access_error(reason: DecisionReason, message: str | None = None) -> HTTPException:
    """HTTP error for *reason* with the ``{"error", "message"}`` detail shape."""
    # Anything unmapped is still a denial.
    code, default = _STATUS_BY_REASON.get(
        reason, (status.HTTP_403_FORBIDDEN, "Insufficient permissions")
    )
    headers = {"WWW-Authenticate": "Bearer"} if code == status.HTTP_401_UNAUTHORIZED else None
    return HTTPException(
        status_code=code,
        detail={"error": reason.value, "message": message or default},
        headers=headers,
    )


def raise_for_decision(decision: AccessDecision) -> AccessDecision:
    """Return *decision* if allowed, otherwise raise the matching HTTP error."""
    if decision.allowed:
        return decision
    raise access_error(decision.reason)


# ---------------------------------------------------------------------------
# Current-principal dependency
# ---------------------------------------------------------------------------


async def get_external_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str | None:
    if credentials is None or credentials.scheme.lower() != "bearer":
        return None
    return decode_subject(credentials.credentials)


async def get_current_principal(
    external_id: str | None = Depends(get_external_id),
    gate: AccessGate = Depends(get_gate),
) -> Principal:
    """Resolve the bearer token to a local user or raise 401."""
    principal = await gate.resolve_principal(external_id)
    if principal is None:
        raise_for_decision(AccessDecision.deny(DecisionReason.UNAUTHENTICATED))
    return principal


# ---------------------------------------------------------------------------
# Target extraction
# ---------------------------------------------------------------------------

_BODY_KEYS = {
    "category_id": ("categoryId", "category_id"),
    "parent_category_id": ("parentCategoryId", "parent_category_id"),
}


def _as_int(value: Any) -> int | None | bool:
    """Parse an id; ``False`` marks a present but malformed value.

    Only integers and strings of ASCII digits are ids.  JSON booleans and
    floats are rejected rather than coerced.
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isascii() and value.isdigit():
        return int(value)
    return False


def _reads_body_target(request: Request, operation: Operation | GuestOperation) -> bool:
    """Body ids are consulted for creation, or when the path names no category."""
    if request.method not in ("POST", "PUT", "PATCH"):
        return False
    return operation is Operation.CREATE_CATEGORY or "category_id" not in request.path_params


async def _target_from_request(
    request: Request, operation: Operation | GuestOperation
) -> AccessTarget | None:
    """Collect ids from path params, then from the JSON body where the
    operation takes its target from there.  Path ids win over body ids.

    Returns ``None`` if any present id is malformed.
    """
    raw: dict[str, Any] = {
        "category_id": request.path_params.get("category_id"),
        "report_id": request.path_params.get("report_id"),
        "expense_id": request.path_params.get("expense_id"),
        "parent_category_id": request.path_params.get("parent_category_id"),
    }

    if _reads_body_target(request, operation):
        try:
            body = await request.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            for field, keys in _BODY_KEYS.items():
                if raw.get(field) is None:
                    raw[field] = next((body[k] for k in keys if k in body), None)

    parsed = {field: _as_int(value) for field, value in raw.items()}
    if any(value is False for value in parsed.values()):
        return None
    return AccessTarget(**parsed)


# ---------------------------------------------------------------------------
# Permission-checking dependency factories
# ---------------------------------------------------------------------------


def require_access(operation: Operation):
    """Return a FastAPI dependency that runs the gate for *operation* and
    yields the allowed ``AccessDecision``.

    Usage::

        @router.delete("/api/categories/{category_id}")
        async def delete_category(
            category_id: int,
            decision: AccessDecision = Depends(require_access(Operation.DELETE_CATEGORY)),
        ):
            ...
    """

    async def _check_access(
        request: Request,
        external_id: str | None = Depends(get_external_id),
        gate: AccessGate = Depends(get_gate),
    ) -> AccessDecision:
        target = await _target_from_request(request, operation)
        if target is None:
            return raise_for_decision(AccessDecision.deny(DecisionReason.BAD_REQUEST))
        decision = await gate.authorize(external_id, operation, target)
        return raise_for_decision(decision)

    return _check_access


def require_guest(operation: GuestOperation):
    """Dependency factory for guest routes; the token comes from ``?token=``."""

    async def _check_guest(
        request: Request,
        gate: AccessGate = Depends(get_gate),
    ) -> AccessDecision:
        target = await _target_from_request(request, operation)
        if target is None:
            return raise_for_decision(AccessDecision.deny(DecisionReason.BAD_REQUEST))
        token = request.query_params.get("token")
        decision = await gate.authorize_guest(token, operation, target)
        return raise_for_decision(decision)

    return _check_guest


def audit_actor(decision: AccessDecision) -> dict[str, Any] | None:
    """Actor dict for ``write_audit_log`` from an allowed decision."""
    if decision.principal is None:
        return None
    return {
        "user_id": decision.principal.user_id,
        "external_id": decision.principal.external_id,
    }
