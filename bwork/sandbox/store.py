"""
Sandbox Store - Persistence of sandbox records and tool source.

Each call opens its own short-lived session from the factory and returns
detached snapshots, so the orchestrator never holds a transaction open
across slow sandbox commands.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from bwork.db.session import SessionLocal
from bwork.models import SandboxRecord, Tool
from bwork.sandbox.contracts import SandboxStatus
from bwork.sandbox.exceptions import SandboxNotFoundError

logger = logging.getLogger("bwork.sandbox.store")

IdLike = Union[str, uuid.UUID]

# Statuses whose environment has already been released
RELEASED_STATUSES = (SandboxStatus.FAILED.value, SandboxStatus.TERMINATED.value)


def _as_uuid(value: IdLike) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


class SandboxStore:
    """
    CRUD over the sandboxes and tools tables.

    Usage:
        store = SandboxStore()
        record = store.create(tool_id, "gen-1", max_retries=3, expires_at=...)
        store.update(record.id, status=SandboxStatus.SETUP.value)
    """

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self._session_factory = session_factory

    def _detach(self, db: Session, obj):
        db.refresh(obj)
        db.expunge(obj)
        return obj

    def _load(self, db: Session, sandbox_id: IdLike) -> SandboxRecord:
        key = _as_uuid(sandbox_id)
        record = db.get(SandboxRecord, key) if key is not None else None
        if record is None:
            raise SandboxNotFoundError(f"Sandbox {sandbox_id} not found")
        return record

    # =========================================================================
    # SANDBOX RECORDS
    # =========================================================================

    def create(
        self,
        tool_id: IdLike,
        generation_id: Optional[str],
        expires_at: datetime,
        provider: Optional[str] = None,
        max_retries: int = 3,
    ) -> SandboxRecord:
        with self._session_factory() as db:
            record = SandboxRecord(
                tool_id=_as_uuid(tool_id),
                generation_id=generation_id,
                provider=provider,
                status=SandboxStatus.PENDING.value,
                retry_count=0,
                max_retries=max_retries,
                error_history=[],
                expires_at=expires_at,
            )
            db.add(record)
            db.commit()
            logger.debug(f"Created sandbox record {record.id}")
            return self._detach(db, record)

    def get(self, sandbox_id: IdLike) -> SandboxRecord:
        """Raises SandboxNotFoundError for an unknown id."""
        with self._session_factory() as db:
            record = self._load(db, sandbox_id)
            db.expunge(record)
            return record

    def update(self, sandbox_id: IdLike, **fields: Any) -> SandboxRecord:
        """Partial update by id; updated_at is always bumped."""
        with self._session_factory() as db:
            record = self._load(db, sandbox_id)
            for name, value in fields.items():
                if isinstance(value, SandboxStatus):
                    value = value.value
                setattr(record, name, value)
            record.updated_at = datetime.now(timezone.utc)
            db.commit()
            return self._detach(db, record)

    def append_error_history(self, sandbox_id: IdLike, entries: List[Dict[str, Any]]) -> SandboxRecord:
        with self._session_factory() as db:
            record = self._load(db, sandbox_id)
            # Reassign so the JSON column is flagged dirty
            record.error_history = list(record.error_history or []) + list(entries)
            record.updated_at = datetime.now(timezone.utc)
            db.commit()
            return self._detach(db, record)

    def list_expired(self, now: Optional[datetime] = None) -> List[SandboxRecord]:
        """Records still holding an environment after their lifetime elapsed."""
        now = now or datetime.now(timezone.utc)
        with self._session_factory() as db:
            records = db.scalars(
                select(SandboxRecord).where(
                    SandboxRecord.expires_at <= now,
                    SandboxRecord.status.not_in(RELEASED_STATUSES),
                )
            ).all()
            for record in records:
                db.expunge(record)
            return list(records)

    # =========================================================================
    # TOOL SOURCE
    # =========================================================================

    def get_tool_code(self, tool_id: IdLike) -> Optional[str]:
        key = _as_uuid(tool_id)
        if key is None:
            return None
        with self._session_factory() as db:
            tool = db.get(Tool, key)
            return tool.code if tool else None

    def save_tool_code(self, tool_id: IdLike, code: str, name: Optional[str] = None) -> Tool:
        """Store the latest source for a tool, creating the tool if needed."""
        key = _as_uuid(tool_id)
        if key is None:
            raise ValueError(f"Invalid tool id: {tool_id}")
        with self._session_factory() as db:
            tool = db.get(Tool, key)
            if tool is None:
                tool = Tool(id=key, name=name or "Untitled tool", code=code)
                db.add(tool)
            else:
                tool.code = code
                if name:
                    tool.name = name
            db.commit()
            return self._detach(db, tool)


# ---------------------------------------------------------------------------
# SINGLETON INSTANCE
# ---------------------------------------------------------------------------
sandbox_store = SandboxStore()
