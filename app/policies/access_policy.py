# app/policies/access_policy.py

from __future__ import annotations

from dataclasses import dataclass, field
from functools import wraps
from typing import FrozenSet, Optional

from flask import g, jsonify, session

STAFF_ROLE = "ALL"
ADMIN_ROLE = "ADMIN"


@dataclass(frozen=True)
class Principal:
    """
    Eingeloggter User, wie ihn der Steam-Login in der Session hinterlässt.
    """

    id: int
    steam_id: str
    display_name: str
    roles: FrozenSet[str] = field(default_factory=frozenset)

    def has_role(self, role: str) -> bool:
        # Staff (ALL) darf alles
        return role in self.roles or STAFF_ROLE in self.roles

    @property
    def is_staff(self) -> bool:
        return STAFF_ROLE in self.roles


@dataclass(frozen=True)
class RequestContext:
    principal: Optional[Principal] = None

    @property
    def is_authenticated(self) -> bool:
        return self.principal is not None

    @property
    def actor_id(self) -> Optional[int]:
        return self.principal.id if self.principal else None


def principal_from_session(data) -> Optional[Principal]:
    user_id = data.get("user_id")
    if not user_id:
        return None
    try:
        user_id = int(user_id)
    except (TypeError, ValueError):
        return None

    roles = frozenset(str(r).strip().upper() for r in (data.get("roles") or []) if r)
    return Principal(
        id=user_id,
        steam_id=str(data.get("steam_id") or ""),
        display_name=str(data.get("steam_name") or ""),
        roles=roles,
    )


def load_request_context() -> None:
    """
    before_request-Hook: legt den RequestContext in flask.g ab.
    Gibt nichts zurück, sonst würde Flask den Wert als Response behandeln.
    """
    g.request_context = RequestContext(principal=principal_from_session(session))


def current_context() -> RequestContext:
    if g.get("request_context") is None:
        load_request_context()
    return g.request_context


def require_role(role: str):
    """
    Route-Decorator: 401 ohne Login, 403 ohne passende Rolle.
    """

    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            ctx = current_context()
            if not ctx.is_authenticated:
                return jsonify(success=False, error="Login required"), 401
            if not ctx.principal.has_role(role):
                return jsonify(success=False, error="Insufficient permissions"), 403
            return view(*args, **kwargs)

        return wrapped

    return decorator
