"""
Tool model - a generated application owned by the caller.
The pipeline only needs the last known generated source, so the table is small.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Text, DateTime, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from bwork.db.base import Base


class Tool(Base):
    """
    SQLAlchemy ORM model for the 'tools' table.

    A Tool is the logical unit a sandbox previews. Its `code` column holds the
    most recent generated (or repaired) source for src/App.jsx, which is what
    the retry and repair entrypoints re-read.
    """

    __tablename__ = "tools"

    # ---------------------------------------------------------------------------
    # PRIMARY KEY
    # ---------------------------------------------------------------------------
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # ---------------------------------------------------------------------------
    # TOOL CONTENT
    # ---------------------------------------------------------------------------
    # name: Optional display name, not used by the pipeline
    name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    # code: Last known generated source (nullable until the first provision)
    code: Mapped[str | None] = mapped_column(Text, nullable=True)

    # ---------------------------------------------------------------------------
    # TIMESTAMPS
    # ---------------------------------------------------------------------------
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
