"""
Pipeline Logger - Structured logging for sandbox pipeline runs.

Each entry is a single JSON object on the `bwork.sandbox` logger so runs
can be traced by sandbox id across phases:
- pipeline_start / pipeline_end
- phase transitions
- validation outcomes
- repair attempts
- provider lifecycle (created, terminated, fallback)
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bwork.sandbox.contracts import RepairResult, ValidationResult

logger = logging.getLogger("bwork.sandbox")
logger.setLevel(logging.INFO)

if not logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(logging.INFO)
    formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s [%(name)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


class PipelineLogger:
    """
    Structured logger for pipeline runs.

    Usage:
        pipeline_logger.log_start(sandbox_id, tool_id, generation_id)
        pipeline_logger.log_phase(sandbox_id, "setup")
        pipeline_logger.log_validation(sandbox_id, validation)
    """

    def __init__(self):
        self._logger = logger

    def _emit(self, level: int, label: str, data: Dict[str, Any]) -> None:
        data["timestamp"] = datetime.now(timezone.utc).isoformat()
        self._logger.log(level, f"{label}: {json.dumps(data, default=str)}")

    def log_start(self, sandbox_id: str, tool_id: str, generation_id: Optional[str]) -> None:
        self._emit(logging.INFO, "Pipeline Start", {
            "event": "pipeline_start",
            "sandbox_id": sandbox_id,
            "tool_id": tool_id,
            "generation_id": generation_id,
        })

    def log_phase(self, sandbox_id: str, status: str, message: Optional[str] = None) -> None:
        data = {"event": "phase", "sandbox_id": sandbox_id, "status": status}
        if message:
            data["message"] = message
        self._emit(logging.INFO, "Pipeline Phase", data)

    def log_validation(self, sandbox_id: str, validation: ValidationResult, attempt: int) -> None:
        self._emit(logging.INFO if validation.success else logging.WARNING, "Validation", {
            "event": "validation",
            "sandbox_id": sandbox_id,
            "attempt": attempt,
            "success": validation.success,
            "build_passed": validation.build.passed,
            "health_passed": validation.health.passed,
            "tests_passed": validation.tests_passed,
            "errors": [e.describe() for e in validation.errors[:5]],
        })

    def log_repair(self, sandbox_id: str, attempt: int, result: RepairResult) -> None:
        self._emit(logging.INFO if result.success else logging.WARNING, "Repair", {
            "event": "repair",
            "sandbox_id": sandbox_id,
            "attempt": attempt,
            "success": result.success,
            "method": result.method.value,
            "fixes": result.fixes_applied,
            "remaining": len(result.remaining_errors),
            "tokens_used": result.tokens_used,
        })

    def log_provider(self, sandbox_id: Optional[str], provider: str, action: str,
                     error: Optional[str] = None) -> None:
        data = {
            "event": "provider",
            "sandbox_id": sandbox_id,
            "provider": provider,
            "action": action,
        }
        if error:
            data["error"] = error
        self._emit(logging.WARNING if error else logging.INFO, "Provider", data)

    def log_end(self, sandbox_id: str, success: bool, status: str, duration_ms: float,
                retry_count: int, error: Optional[str] = None) -> None:
        data = {
            "event": "pipeline_end",
            "sandbox_id": sandbox_id,
            "success": success,
            "status": status,
            "retry_count": retry_count,
            "duration_ms": round(duration_ms, 1),
        }
        if error:
            data["error"] = error
        self._emit(logging.INFO if success else logging.WARNING, "Pipeline End", data)


# ---------------------------------------------------------------------------
# SINGLETON INSTANCE
# ---------------------------------------------------------------------------
pipeline_logger = PipelineLogger()
