from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base for tenant-scoped tables.

    Tables are declared without a schema; the tenant client decides which
    schema they resolve to at connection time.
    """
