from __future__ import annotations

from typing import Iterable, Set

from flask import current_app, g, request, session

from mercado_obras.db import get_db
from mercado_obras.domain.contracts import Actor
from mercado_obras.errors import AuthRequiredError, ForbiddenError
from mercado_obras.infrastructure.repositories import UserRepository


VALID_ROLES: Set[str] = {"client", "supplier", "admin"}

ACTOR_HEADER = "X-Actor-Id"
ACTOR_SESSION_KEY = "actor_id"

PUBLIC_PATHS = {"/health"}


def normalize_role(role: str | None, default: str = "client") -> str:
    normalized = str(role or "").strip().lower()
    if normalized in VALID_ROLES:
        return normalized
    return default if default in VALID_ROLES else ""


def normalize_allowed_roles(roles: Iterable[str]) -> Set[str]:
    allowed: Set[str] = set()
    for role in roles:
        normalized = normalize_role(role, default="")
        if normalized:
            allowed.add(normalized)
    return allowed


def has_any_role(role: str | None, allowed_roles: Iterable[str]) -> bool:
    allowed = normalize_allowed_roles(allowed_roles)
    return not allowed or normalize_role(role, default="") in allowed


def _requested_actor_id() -> int | None:
    raw = (request.headers.get(ACTOR_HEADER) or "").strip() or session.get(ACTOR_SESSION_KEY)
    try:
        actor_id = int(raw)
    except (TypeError, ValueError):
        return None
    return actor_id if actor_id > 0 else None


def load_actor() -> Actor | None:
    """Resolves the caller from the identity header or the session; the role always comes from the database."""
    if "actor" in g:
        return g.actor
    actor = None
    actor_id = _requested_actor_id()
    if actor_id is not None:
        user = UserRepository().get_by_id(get_db(), actor_id)
        if user:
            actor = Actor(
                id=int(user["id"]),
                role=normalize_role(user.get("role"), default=""),
                name=str(user.get("company_name") or user.get("name") or ""),
                supplier_id=user.get("supplier_id"),
            )
    g.actor = actor
    g.actor_id = actor.id if actor else None
    return actor


def current_actor() -> Actor:
    actor = load_actor()
    if actor is None:
        raise AuthRequiredError()
    return actor


def require_roles(*allowed_roles: str, actor: Actor | None = None) -> Actor:
    actor = actor or current_actor()
    if has_any_role(actor.role, allowed_roles):
        return actor
    raise ForbiddenError(payload={"required_roles": sorted(normalize_allowed_roles(allowed_roles))})


def register_identity(app) -> None:
    @app.before_request
    def _require_actor():
        if not current_app.config.get("AUTH_ENABLED", True):
            return None
        path = request.path or "/"
        if path in PUBLIC_PATHS or not path.startswith("/api/"):
            return None
        if load_actor() is not None:
            return None
        raise AuthRequiredError()
