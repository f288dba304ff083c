"""Utility CLI to register a connector daemon and a site behind it."""

from __future__ import annotations

import argparse
import logging
from typing import Iterable, Optional

from dotenv import load_dotenv
from sqlalchemy import select
from sqlalchemy.orm import Session

from sitepanel.core.site_context import connector_base_url
from sitepanel.models import Connector, Site
from sitepanel.models.session import create_schema, get_engine, session_scope

logger = logging.getLogger("tools.register_site")


def ensure_connector(
    session: Session,
    *,
    fqdn: str,
    token: str,
    name: str = "",
    ssl_enabled: bool = False,
) -> tuple[Connector, bool]:
    """Create or update the connector reachable at ``fqdn``.

    Returns:
        The connector and whether it was created.
    """

    normalized = fqdn.strip()
    if connector_base_url(normalized, ssl_enabled=ssl_enabled) is None:
        raise ValueError(f"Invalid connector address: {fqdn!r}")

    connector = session.execute(
        select(Connector).where(Connector.fqdn == normalized)
    ).scalar_one_or_none()
    if connector is None:
        connector = Connector(
            fqdn=normalized,
            token=token,
            name=name or normalized,
            daemon_ssl_enabled=ssl_enabled,
        )
        session.add(connector)
        session.flush()
        logger.info("Created connector %s (id=%s)", connector.fqdn, connector.id)
        return connector, True

    connector.token = token
    connector.daemon_ssl_enabled = ssl_enabled
    if name:
        connector.name = name
    session.flush()
    logger.info("Updated connector %s (id=%s)", connector.fqdn, connector.id)
    return connector, False


def ensure_site(
    session: Session,
    *,
    connector: Connector,
    organization_id: str,
    name: str,
    domain: str = "",
    site_id: str | None = None,
) -> tuple[Site, bool]:
    """Create ``site_id`` (or a new site) bound to ``connector``, or rebind it."""

    site = session.get(Site, site_id) if site_id else None
    if site is None:
        site = Site(
            organization_id=organization_id,
            name=name,
            domain=domain,
            connector_id=connector.id,
        )
        if site_id:
            site.id = site_id
        session.add(site)
        session.flush()
        logger.info("Created site %s (id=%s)", site.name, site.id)
        return site, True

    site.organization_id = organization_id
    site.name = name
    site.domain = domain or site.domain
    site.connector_id = connector.id
    session.flush()
    logger.info("Updated site %s (id=%s)", site.name, site.id)
    return site, False


def parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--database-url", help="SQLAlchemy URL (defaults to DATABASE_URL)")
    parser.add_argument("--connector-fqdn", required=True, help="Connector host or base URL")
    parser.add_argument("--connector-token", required=True, help="Bearer token the daemon accepts")
    parser.add_argument("--connector-name", default="", help="Display name for the connector")
    parser.add_argument("--ssl", action="store_true", help="Reach a bare host name over HTTPS")
    parser.add_argument("--org-id", required=True, help="Owning organisation id")
    parser.add_argument("--site-name", required=True)
    parser.add_argument("--site-domain", default="")
    parser.add_argument("--site-id", help="Reuse or create the site with this id")
    parser.add_argument(
        "--create-schema",
        action="store_true",
        help="Create the site/connector tables before registering",
    )
    return parser.parse_args(list(argv) if argv is not None else None)


def main(argv: Optional[Iterable[str]] = None) -> int:
    """Script entrypoint; prints the site id on success."""

    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    args = parse_args(argv)

    if args.create_schema:
        create_schema(get_engine(args.database_url))

    with session_scope(args.database_url) as session:
        connector, _ = ensure_connector(
            session,
            fqdn=args.connector_fqdn,
            token=args.connector_token,
            name=args.connector_name,
            ssl_enabled=args.ssl,
        )
        site, _ = ensure_site(
            session,
            connector=connector,
            organization_id=args.org_id,
            name=args.site_name,
            domain=args.site_domain,
            site_id=args.site_id,
        )
        site_id = site.id

    print(site_id)
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI execution
    raise SystemExit(main())
