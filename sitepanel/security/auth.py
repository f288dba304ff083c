"""Site-scoped authorization dependencies for FastAPI routers."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from typing import Callable

from fastapi import Depends
from sqlalchemy.orm import Session, sessionmaker

from sitepanel.core.auth import SessionTokenPayload, get_session_claims
from sitepanel.core.site_context import SiteConnectorContext, resolve_site_context
from sitepanel.filemanager.errors import Forbidden
from sitepanel.models.session import get_sessionmaker


_ROLE_LEVELS = {"viewer": 0, "operator": 1, "admin": 2}
_SESSION_FACTORY: sessionmaker[Session] | None = None


def _get_session_factory() -> sessionmaker[Session]:
    global _SESSION_FACTORY
    if _SESSION_FACTORY is None:
        _SESSION_FACTORY = get_sessionmaker()
    return _SESSION_FACTORY


def reset_session_factory() -> None:
    """Forget the cached session factory; tests call this after changing DATABASE_URL."""

    global _SESSION_FACTORY
    _SESSION_FACTORY = None


def get_db_session() -> Iterator[Session]:
    """Yield a SQLAlchemy session for request-scoped dependencies."""

    session = _get_session_factory()()
    try:
        yield session
    finally:
        session.close()


def _highest_role(roles: list[str]) -> str | None:
    ranked = sorted({role for role in roles if role in _ROLE_LEVELS}, key=_ROLE_LEVELS.get)
    return ranked[-1] if ranked else None


@dataclass(frozen=True)
class SiteAccess:
    """Resolved connector context plus the caller's effective role."""

    context: SiteConnectorContext
    role: str

    def require(self, min_role: str) -> None:
        if min_role not in _ROLE_LEVELS:
            raise ValueError(f"Unknown role: {min_role}")
        if _ROLE_LEVELS[self.role] < _ROLE_LEVELS[min_role]:
            raise Forbidden("Insufficient role.")


def require_site_access(
    site_id: str,
    claims: SessionTokenPayload = Depends(get_session_claims),
    session: Session = Depends(get_db_session),
) -> SiteAccess:
    """Resolve ``site_id`` for the caller and return their access to it."""

    context = resolve_site_context(session, site_id, claims)

    roles = claims.get("roles") or []
    if isinstance(roles, str):
        roles = [roles]
    highest = _highest_role(list(roles))
    if highest is None:
        raise Forbidden("No roles assigned to user.")
    return SiteAccess(context=context, role=highest)


def require_site_role(min_role: str) -> Callable[..., SiteAccess]:
    """Create a dependency ensuring the caller has at least ``min_role`` on the site."""

    if min_role not in _ROLE_LEVELS:
        raise ValueError(f"Unknown role: {min_role}")

    def dependency(access: SiteAccess = Depends(require_site_access)) -> SiteAccess:
        access.require(min_role)
        return access

    return dependency


__all__ = [
    "SiteAccess",
    "get_db_session",
    "require_site_access",
    "require_site_role",
    "reset_session_factory",
]
