"""Declarative base shared by all models.

Models are registered on import of ``examdesk.models``; import that package (not
individual modules) before touching ``Base.metadata``.
"""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass
