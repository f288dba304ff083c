"""Site and connector models.

Attributes mirror the columns the panel's admin screens maintain; ids are
opaque strings generated by the panel.
"""

from __future__ import annotations

import datetime as dt
import uuid
from typing import List, Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from . import Base


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class Connector(Base):
    """A remote connector daemon hosting one or more sites.

    Attributes:
        fqdn: Host name or full base URL of the daemon.
        token: Static bearer token the daemon accepts.
        daemon_ssl_enabled: Whether a bare ``fqdn`` should be reached over HTTPS.
    """

    __tablename__ = "connectors"

    id: Mapped[str] = mapped_column(String(length=64), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(length=255), nullable=False, default="")
    fqdn: Mapped[str] = mapped_column(String(length=255), nullable=False)
    token: Mapped[str] = mapped_column(Text, nullable=False)
    daemon_ssl_enabled: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    sites: Mapped[List["Site"]] = relationship(back_populates="connector")


class Site(Base):
    """A managed WordPress installation bound to exactly one connector."""

    __tablename__ = "sites"
    __table_args__ = (Index("ix_sites_organization_id", "organization_id"),)

    id: Mapped[str] = mapped_column(String(length=64), primary_key=True, default=_new_id)
    organization_id: Mapped[str] = mapped_column(String(length=64), nullable=False)
    name: Mapped[str] = mapped_column(String(length=255), nullable=False)
    domain: Mapped[str] = mapped_column(String(length=255), nullable=False, default="")
    connector_id: Mapped[Optional[str]] = mapped_column(
        String(length=64),
        ForeignKey("connectors.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    connector: Mapped[Optional[Connector]] = relationship(back_populates="sites")
