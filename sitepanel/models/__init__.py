"""SQLAlchemy declarative base and the site/connector store.

The control panel keeps its sites and connector daemons in a relational
store. The file manager only ever reads it to turn a site id into connector
coordinates, so the models here are limited to what that lookup needs.
"""

from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy declarative models."""


from .site import Connector, Site


__all__ = [
    "Base",
    "Connector",
    "Site",
]
