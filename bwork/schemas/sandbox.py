"""
Sandbox schemas - Pydantic models for the preview pipeline endpoints.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# REQUEST SCHEMAS (what the client sends)
# ---------------------------------------------------------------------------

class ProvisionRequest(BaseModel):
    """
    Schema for starting a preview of generated code.

    Example request body:
    {
        "tool_id": "550e8400-e29b-41d4-a716-446655440000",
        "generation_id": "gen-42",
        "code": "export default function App() { ... }"
    }
    """
    tool_id: uuid.UUID
    generation_id: Optional[str] = Field(None, max_length=100)

    # code: Complete source for src/App.jsx
    code: str = Field(..., min_length=1, description="Generated React component source")


# ---------------------------------------------------------------------------
# RESPONSE SCHEMAS (what the server returns)
# ---------------------------------------------------------------------------

class ErrorHistoryEntry(BaseModel):
    category: str
    message: str
    timestamp: str
    fixable: bool


class SandboxStatusOut(BaseModel):
    """
    Snapshot of a sandbox record.

    Example response:
    {
        "id": "7d0c...",
        "status": "ready",
        "url": "https://5173-abc.e2b.app",
        "retry_count": 1,
        "build_passed": true,
        ...
    }
    """
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    tool_id: uuid.UUID
    generation_id: Optional[str]
    provider: Optional[str]
    url: Optional[str]
    status: str
    retry_count: int
    max_retries: int
    last_error: Optional[str]
    error_history: List[ErrorHistoryEntry] = []
    build_passed: Optional[bool]
    tests_passed: Optional[bool]
    health_check_passed: Optional[bool]
    expires_at: datetime
    created_at: datetime
    updated_at: datetime


class PipelineResultOut(BaseModel):
    """
    Outcome of a provision, retry or repair request.

    Example response:
    {
        "success": false,
        "sandbox_id": "7d0c...",
        "sandbox_url": null,
        "error": "Cannot find module 'left-pad'",
        "user_message": "A required library is missing. Try generating again.",
        "can_retry": true,
        "duration_ms": 48211.7
    }
    """
    success: bool
    sandbox_id: Optional[str] = None
    sandbox_url: Optional[str] = None
    error: Optional[str] = None
    user_message: Optional[str] = None
    can_retry: bool = False
    duration_ms: float = 0.0

    @classmethod
    def from_result(cls, result) -> "PipelineResultOut":
        data: Dict[str, Any] = result.to_dict()
        return cls(**data)


class ProvidersOut(BaseModel):
    """
    Sandbox drivers configured on this server.

    Example response:
    {
        "status": "ok",
        "available": ["e2b", "docker"],
        "preferred": "auto",
        "ai_repair_available": true
    }
    """
    status: str
    available: List[str]
    preferred: str
    ai_repair_available: bool
