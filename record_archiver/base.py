"""SQLAlchemy declarative base for the hot store and archive metadata."""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base for all archiver models."""

    pass
