"""
Sandbox model - the durable state of one pipeline run.
The orchestrator is the only writer of a record's non-identity fields.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Text, DateTime, Integer, Boolean, ForeignKey, JSON, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from bwork.db.base import Base


class SandboxRecord(Base):
    """
    SQLAlchemy ORM model for the 'sandboxes' table.

    One record per generation attempt. A retry re-enters the pipeline with the
    same record id after resetting retry_count to 0.
    """

    __tablename__ = "sandboxes"

    # ---------------------------------------------------------------------------
    # IDENTITY
    # ---------------------------------------------------------------------------
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # tool_id: Owning tool; deleting the tool deletes its sandboxes
    tool_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tools.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # generation_id: Opaque reference to the generation that produced the code
    generation_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # ---------------------------------------------------------------------------
    # PROVIDER
    # ---------------------------------------------------------------------------
    # provider: Driver that created the environment ("e2b", "docker")
    provider: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # external_id: Provider-native sandbox / container id, used for termination
    external_id: Mapped[str | None] = mapped_column(String(200), nullable=True)

    # url: Public preview URL of the running dev server
    url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # ---------------------------------------------------------------------------
    # STATE MACHINE
    # ---------------------------------------------------------------------------
    # status: One of SandboxStatus values (pending ... ready / failed / terminated)
    status: Mapped[str] = mapped_column(String(30), default="pending", nullable=False, index=True)

    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_retries: Mapped[int] = mapped_column(Integer, default=3, nullable=False)

    # ---------------------------------------------------------------------------
    # ERRORS
    # ---------------------------------------------------------------------------
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # error_history: [{"category", "message", "timestamp", "fixable"}, ...]
    error_history: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    # ---------------------------------------------------------------------------
    # VALIDATION FLAGS (None until the stage has run)
    # ---------------------------------------------------------------------------
    build_passed: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    tests_passed: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    health_check_passed: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    # ---------------------------------------------------------------------------
    # TIMESTAMPS
    # ---------------------------------------------------------------------------
    # expires_at: Hard lifetime bound; expired ready sandboxes are reaped
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
