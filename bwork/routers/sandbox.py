"""
Sandbox router - live previews of generated code.

This module provides REST endpoints for:
- Provisioning a sandbox for generated code (runs the full pipeline)
- Listing the configured sandbox drivers
- Reading a sandbox's status snapshot
- Retrying a failed sandbox with the tool's stored code
- AI-repairing a failed sandbox's code, then retrying
- Terminating a sandbox

Pipeline requests are long-running: provision, retry and repair return
only once the run reaches a terminal status.
"""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from bwork.core.config import settings
from bwork.db.session import get_db
from bwork.models import SandboxRecord
from bwork.schemas.sandbox import PipelineResultOut, ProvidersOut, ProvisionRequest, SandboxStatusOut
from bwork.sandbox.contracts import ClassifiedError, ErrorCategory, Fixability, SandboxStatus
from bwork.sandbox.exceptions import SandboxError, SandboxNotFoundError
from bwork.sandbox.orchestrator import PipelineOrchestrator, get_orchestrator
from bwork.sandbox.repair.error_classifier import classify_error

# ---------------------------------------------------------------------------
# ROUTER SETUP
# ---------------------------------------------------------------------------
router = APIRouter(prefix="/sandbox", tags=["sandbox"])

# Most recent history entries handed to the AI repairer
REPAIR_CONTEXT_ERRORS = 10


def get_pipeline_orchestrator() -> PipelineOrchestrator:
    """Dependency so tests can swap in an orchestrator with fake collaborators."""
    return get_orchestrator()


# ---------------------------------------------------------------------------
# HELPER FUNCTIONS
# ---------------------------------------------------------------------------

def get_sandbox_or_404(db: Session, sandbox_id: UUID) -> SandboxRecord:
    """
    Get a sandbox record by ID.

    Raises:
        404: If the sandbox does not exist
    """
    record = db.get(SandboxRecord, sandbox_id)
    if not record:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Sandbox not found"
        )
    return record


def require_failed(record: SandboxRecord, action: str) -> None:
    if record.status != SandboxStatus.FAILED.value:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Only failed sandboxes can be {action} (current status: {record.status})"
        )


def errors_from_history(record: SandboxRecord) -> List[ClassifiedError]:
    """Rebuild the latest distinct errors of a failed run for the AI repairer."""
    errors: List[ClassifiedError] = []
    seen = set()
    for entry in reversed(record.error_history or []):
        message = entry.get("message", "")
        if not message or message in seen:
            continue
        seen.add(message)
        try:
            category = ErrorCategory(entry.get("category"))
        except ValueError:
            category = ErrorCategory.UNKNOWN
        errors.append(ClassifiedError(category=category, message=message, fixable=Fixability.AI))
        if len(errors) >= REPAIR_CONTEXT_ERRORS:
            break
    errors.reverse()

    if not errors and record.last_error:
        errors.append(classify_error(record.last_error))
    return errors


# ---------------------------------------------------------------------------
# PROVISION
# ---------------------------------------------------------------------------

@router.post("/provision", response_model=PipelineResultOut)
async def provision_sandbox(
    payload: ProvisionRequest,
    orchestrator: PipelineOrchestrator = Depends(get_pipeline_orchestrator),
):
    """
    Store the generated code on its tool and run the preview pipeline.

    The response reports the terminal outcome; `sandbox_id` can be polled
    on /sandbox/{id}/status by other clients while the run is in progress.
    """
    orchestrator.store.save_tool_code(payload.tool_id, payload.code)
    result = await orchestrator.run_pipeline(
        tool_id=payload.tool_id,
        generation_id=payload.generation_id,
        code=payload.code,
    )
    return PipelineResultOut.from_result(result)


# ---------------------------------------------------------------------------
# PROVIDERS
# ---------------------------------------------------------------------------

@router.get("/providers", response_model=ProvidersOut)
def list_providers(orchestrator: PipelineOrchestrator = Depends(get_pipeline_orchestrator)):
    """Which sandbox drivers are configured, in fallback order."""
    available = [name.value for name in orchestrator.provider_factory.get_available_providers()]
    return ProvidersOut(
        status="ok" if available else "no_providers",
        available=available,
        preferred=settings.SANDBOX_PROVIDER,
        ai_repair_available=orchestrator.ai_repairer.is_ai_repair_available(),
    )


# ---------------------------------------------------------------------------
# STATUS
# ---------------------------------------------------------------------------

@router.get("/{sandbox_id}/status", response_model=SandboxStatusOut)
def get_sandbox_status(sandbox_id: UUID, db: Session = Depends(get_db)):
    """Current snapshot of the sandbox record."""
    return get_sandbox_or_404(db, sandbox_id)


# ---------------------------------------------------------------------------
# RETRY
# ---------------------------------------------------------------------------

@router.post("/{sandbox_id}/retry", response_model=PipelineResultOut)
async def retry_sandbox(
    sandbox_id: UUID,
    db: Session = Depends(get_db),
    orchestrator: PipelineOrchestrator = Depends(get_pipeline_orchestrator),
):
    """Re-run a failed sandbox on the same record with the tool's stored code."""
    record = get_sandbox_or_404(db, sandbox_id)
    require_failed(record, "retried")

    try:
        result = await orchestrator.retry_sandbox(sandbox_id)
    except SandboxNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Sandbox not found")
    except SandboxError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return PipelineResultOut.from_result(result)


# ---------------------------------------------------------------------------
# REPAIR
# ---------------------------------------------------------------------------

@router.post("/{sandbox_id}/repair", response_model=PipelineResultOut)
async def repair_sandbox(
    sandbox_id: UUID,
    db: Session = Depends(get_db),
    orchestrator: PipelineOrchestrator = Depends(get_pipeline_orchestrator),
):
    """
    AI-repair the stored code of a failed sandbox, save it, then retry.

    Raises:
        400: Sandbox is not failed, or the tool has no stored code
        502: The AI repair produced no usable code
        503: No AI provider is configured
    """
    record = get_sandbox_or_404(db, sandbox_id)
    require_failed(record, "repaired")

    repairer = orchestrator.ai_repairer
    if not repairer.is_ai_repair_available():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="AI repair is not configured"
        )

    code = orchestrator.store.get_tool_code(record.tool_id)
    if not code:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No stored code for this sandbox's tool"
        )

    repair = await repairer.repair_code(code, errors_from_history(record))
    if not repair.success:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"AI repair failed: {repair.error}"
        )

    orchestrator.store.save_tool_code(record.tool_id, repair.repaired_code)
    try:
        result = await orchestrator.retry_sandbox(sandbox_id)
    except SandboxError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return PipelineResultOut.from_result(result)


# ---------------------------------------------------------------------------
# TERMINATE
# ---------------------------------------------------------------------------

@router.delete("/{sandbox_id}", response_model=SandboxStatusOut)
async def terminate_sandbox(
    sandbox_id: UUID,
    orchestrator: PipelineOrchestrator = Depends(get_pipeline_orchestrator),
):
    """Cancel any in-flight run and release the environment."""
    try:
        return await orchestrator.terminate_sandbox(sandbox_id)
    except SandboxNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Sandbox not found")
