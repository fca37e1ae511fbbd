"""
Declarative base for all ORM models.
Every model inherits from Base so Alembic and create_all() can see its table.
"""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """SQLAlchemy 2.0 declarative base class."""
    pass
