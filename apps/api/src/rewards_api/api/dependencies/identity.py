"""Identity dependencies resolved from headers forwarded by the gateway."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from fastapi import Depends, Header, HTTPException, status


class Role(str, Enum):
    USER = "USER"
    OPERATOR = "OPERATOR"
    AUDITOR = "AUDITOR"
    ADMIN = "ADMIN"


@dataclass(frozen=True, slots=True)
class Actor:
    user_id: str
    roles: frozenset[Role]

    def has_any(self, *roles: Role) -> bool:
        return bool(self.roles.intersection(roles))


async def require_actor(
    user_id: str | None = Header(None, alias="X-User-Id"),
    user_roles: str | None = Header(None, alias="X-User-Roles"),
) -> Actor:
    """Resolve the caller from forwarded identity headers."""

    if not user_id or not user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing user context",
        )

    roles: set[Role] = set()
    for raw in (user_roles or Role.USER.value).split(","):
        value = raw.strip().upper()
        if not value:
            continue
        try:
            roles.add(Role(value))
        except ValueError as error:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Unknown role {value}",
            ) from error
    return Actor(user_id=user_id.strip(), roles=frozenset(roles or {Role.USER}))


async def require_operator(actor: Actor = Depends(require_actor)) -> Actor:
    if not actor.has_any(Role.OPERATOR, Role.ADMIN):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Operator role required")
    return actor


async def require_auditor_or_operator(actor: Actor = Depends(require_actor)) -> Actor:
    if not actor.has_any(Role.AUDITOR, Role.OPERATOR, Role.ADMIN):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Auditor or operator role required")
    return actor


__all__ = ["Actor", "Role", "require_actor", "require_auditor_or_operator", "require_operator"]
