"""Security utilities exposed for convenience."""

from .auth import SiteAccess, get_db_session, require_site_access, require_site_role

__all__ = [
    "SiteAccess",
    "get_db_session",
    "require_site_access",
    "require_site_role",
]
