"""Caller identity and role checks.

Authentication happens upstream; this layer only reads the identity the
gateway forwards in ``X-Actor-Id`` / ``X-Actor-Roles`` and checks roles.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request
from pydantic import BaseModel, Field
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

ACTOR_ID_HEADER = "X-Actor-Id"
ACTOR_ROLES_HEADER = "X-Actor-Roles"


class Actor(BaseModel):
    actor_id: str = "anonymous"
    roles: frozenset[str] = Field(default_factory=frozenset)

    @property
    def is_anonymous(self) -> bool:
        return self.actor_id == "anonymous"

    def has_any_role(self, roles: set[str] | frozenset[str] | list[str]) -> bool:
        return bool(self.roles & set(roles))


def parse_actor(actor_id: str | None, roles: str | None) -> Actor:
    if not actor_id or not actor_id.strip():
        return Actor()
    parsed = frozenset(r.strip().lower() for r in (roles or "").split(",") if r.strip())
    return Actor(actor_id=actor_id.strip(), roles=parsed)


class ActorMiddleware(BaseHTTPMiddleware):
    """Attach the forwarded caller identity to ``request.state.actor``."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request.state.actor = parse_actor(
            request.headers.get(ACTOR_ID_HEADER),
            request.headers.get(ACTOR_ROLES_HEADER),
        )
        return await call_next(request)


def current_actor(request: Request) -> Actor:
    return getattr(request.state, "actor", None) or Actor()


def require_roles(*roles: str):
    """FastAPI dependency that requires one of ``roles``.

    With no roles given, the reviewer roles from ``Settings.auth`` apply.
    """

    def dependency(request: Request) -> Actor:
        actor = current_actor(request)
        allowed = set(roles) or set(request.app.state.settings.auth.reviewer_roles)
        if actor.is_anonymous:
            raise HTTPException(status_code=401, detail="Missing actor identity")
        if not actor.has_any_role(allowed):
            raise HTTPException(
                status_code=403,
                detail=f"Requires one of roles {sorted(allowed)}",
            )
        return actor

    return Depends(dependency)
