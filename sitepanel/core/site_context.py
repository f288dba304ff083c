"""Resolution of a site identifier into connector credentials.

A :class:`SiteConnectorContext` is built once per request, after the caller
has been authenticated, and is passed explicitly into every file manager
operation. Nothing in the file manager reads request-global state.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from urllib.parse import urlsplit

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..filemanager.errors import Forbidden, InvalidRequest, SiteNotFound
from ..models import Site
from .auth import SessionTokenPayload

__all__ = [
    "DEFAULT_CONNECTOR_PORT",
    "SiteConnectorContext",
    "connector_base_url",
    "resolve_site_context",
]

logger = logging.getLogger(__name__)

DEFAULT_CONNECTOR_PORT = 8080
_SCHEME = re.compile(r"^https?://", re.IGNORECASE)


@dataclass(frozen=True)
class SiteConnectorContext:
    """Connector coordinates for one site, valid for one request."""

    site_id: str
    connector_base_url: str
    connector_token: str

    def __repr__(self) -> str:
        return (
            f"SiteConnectorContext(site_id={self.site_id!r}, "
            f"connector_base_url={self.connector_base_url!r}, connector_token='***')"
        )


def connector_base_url(fqdn: str | None, *, ssl_enabled: bool = False) -> str | None:
    """Derive the connector base URL from a stored FQDN.

    Values that already carry an ``http(s)://`` scheme are kept as they are
    (minus a trailing slash). Bare host names get ``https://`` when the
    connector daemon has SSL enabled, ``http://`` otherwise, and the default
    daemon port when none is given. Returns ``None`` for unusable input.
    """

    raw = (fqdn or "").strip()
    if not raw:
        return None

    has_scheme = bool(_SCHEME.match(raw))
    base = raw if has_scheme else f"{'https' if ssl_enabled else 'http'}://{raw}"

    try:
        parts = urlsplit(base)
        port = parts.port
    except ValueError:
        return None
    if not parts.hostname:
        return None

    netloc = parts.netloc
    if not has_scheme and port is None:
        netloc = f"{netloc}:{DEFAULT_CONNECTOR_PORT}"

    path = parts.path.rstrip("/")
    return f"{parts.scheme.lower()}://{netloc}{path}"


def _is_admin(claims: SessionTokenPayload) -> bool:
    roles = claims.get("roles") or []
    if isinstance(roles, str):
        roles = [roles]
    return "admin" in roles


def resolve_site_context(
    session: Session, site_id: str | None, claims: SessionTokenPayload
) -> SiteConnectorContext:
    """Authorise ``claims`` for ``site_id`` and return its connector context.

    Raises:
        InvalidRequest: ``site_id`` is blank.
        SiteNotFound: the site, its connector or the connector address is missing.
        Forbidden: the caller is banned or belongs to another organisation.
    """

    site_key = (site_id or "").strip()
    if not site_key:
        raise InvalidRequest("Invalid site ID")

    if claims.get("banned"):
        raise Forbidden("Banned")

    site = session.execute(select(Site).where(Site.id == site_key)).scalar_one_or_none()
    if site is None:
        raise SiteNotFound("Site not found")

    if not _is_admin(claims) and claims.get("org_id") != site.organization_id:
        raise Forbidden("Forbidden")

    connector = site.connector
    if connector is None or not connector.fqdn or not connector.token:
        logger.warning("Site %s has no usable connector record", site_key)
        raise SiteNotFound("Site not found")

    base = connector_base_url(connector.fqdn, ssl_enabled=bool(connector.daemon_ssl_enabled))
    if base is None:
        logger.warning("Site %s has an invalid connector address", site_key)
        raise SiteNotFound("Site not found")

    return SiteConnectorContext(
        site_id=site.id,
        connector_base_url=base,
        connector_token=connector.token,
    )
