"""SQLAlchemy declarative base shared by the journal tables."""

from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base for journal persistence models."""

    pass
