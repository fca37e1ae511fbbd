"""
Sandbox Contracts - Data structures shared across the sandbox pipeline.

Defines the state machine statuses, the closed error taxonomy, and the
result objects returned by providers, validators, repairers and the
orchestrator. Every pipeline component communicates through these
result objects instead of raising.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class SandboxStatus(str, Enum):
    """
    States of a sandbox record.

    Forward-only, except for the validating <-> repairing cycle.
    """

    PENDING = "pending"
    """Record created, nothing provisioned yet."""

    PROVISIONING = "provisioning"
    """Creating the environment through the provider factory."""

    SETUP = "setup"
    """Writing the project template and starting the dev server."""

    APPLYING_CODE = "applying_code"
    """Writing generated source into the running app."""

    INSTALLING_PACKAGES = "installing_packages"
    """Installing third-party packages detected in the source."""

    VALIDATING = "validating"
    """Running build, health check and smoke tests."""

    REPAIRING = "repairing"
    """Running auto-fixes or AI repair."""

    READY = "ready"
    """Validated and reachable for preview."""

    FAILED = "failed"
    """Gave up after repairs or on an unexpected error."""

    TERMINATED = "terminated"
    """Environment released by explicit cancellation or cleanup."""

    @property
    def is_terminal(self) -> bool:
        return self in (SandboxStatus.READY, SandboxStatus.FAILED, SandboxStatus.TERMINATED)


class ProviderName(str, Enum):
    """Available sandbox drivers, in auto-mode priority order."""
    E2B = "e2b"
    DOCKER = "docker"


class ErrorCategory(str, Enum):
    """Closed taxonomy of classified errors."""
    MISSING_PACKAGE = "missing-package"
    MISSING_IMPORT = "missing-import"
    SYNTAX_ERROR = "syntax-error"
    TYPE_ERROR = "type-error"
    RUNTIME_ERROR = "runtime-error"
    BUILD_ERROR = "build-error"
    TIMEOUT = "timeout"
    PROVIDER_ERROR = "provider-error"
    UNKNOWN = "unknown"


class Fixability(str, Enum):
    """
    Repair routing tier of a classified error.

    AUTO < AI < USER is also the order in which errors are attempted.
    """
    AUTO = "auto"
    AI = "ai"
    USER = "user"


class RepairMethod(str, Enum):
    AUTO = "auto"
    AI = "ai"
    NONE = "none"


# ---------------------------------------------------------------------------
# PROVIDER RESULTS
# ---------------------------------------------------------------------------

@dataclass
class CommandResult:
    """
    Result of a command executed inside a sandbox.

    stdout and stderr are always plain strings, whatever the driver's SDK
    hands back.
    """

    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        """Combined stdout and stderr, as scanned by validators."""
        return f"{self.stdout}\n{self.stderr}"


@dataclass
class SandboxInfo:
    """Identity of a live sandbox, as persisted on the record."""

    id: str
    """Provider-native id (E2B sandbox id, Docker container id)."""

    url: str
    """Public URL of the dev server."""

    provider: ProviderName

    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# ERRORS
# ---------------------------------------------------------------------------

@dataclass
class ClassifiedError:
    """
    A raw diagnostic normalized into the closed taxonomy.

    category and fixable are never empty: unrecognized text is
    classified as UNKNOWN / USER.
    """

    category: ErrorCategory
    message: str
    fixable: Fixability
    file: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None
    suggestion: Optional[str] = None
    """Suggested remedy, e.g. 'npm install left-pad'."""

    def to_history_entry(self, timestamp: Optional[datetime] = None) -> Dict[str, Any]:
        """Shape stored in SandboxRecord.error_history."""
        ts = timestamp or datetime.now(timezone.utc)
        return {
            "category": self.category.value,
            "message": self.message,
            "timestamp": ts.isoformat(),
            "fixable": self.fixable == Fixability.AUTO,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "message": self.message,
            "fixable": self.fixable.value,
            "file": self.file,
            "line": self.line,
            "column": self.column,
            "suggestion": self.suggestion,
        }

    def describe(self) -> str:
        """Generate human-readable description."""
        location = ""
        if self.file:
            location = f" at {self.file}"
            if self.line is not None:
                location += f":{self.line}"
        return f"[{self.category.value}/{self.fixable.value}] {self.message}{location}"


# ---------------------------------------------------------------------------
# VALIDATION RESULTS
# ---------------------------------------------------------------------------

@dataclass
class BuildValidationResult:
    passed: bool
    errors: List[ClassifiedError] = field(default_factory=list)
    output: str = ""
    duration_ms: float = 0.0


@dataclass
class HealthCheckResult:
    """Outcome of HTTP checks against the dev server."""

    passed: bool
    status_code: Optional[int] = None
    response_time_ms: float = 0.0
    error: Optional[str] = None
    """Failure reason; contains 'Timeout' when the request timed out."""

    attempts: int = 1


@dataclass
class TestValidationResult:
    __test__ = False  # not a pytest test class

    passed: bool
    total_tests: int = 0
    passed_tests: int = 0
    failed_tests: int = 0
    errors: List[ClassifiedError] = field(default_factory=list)
    output: str = ""
    duration_ms: float = 0.0
    skipped: bool = False


@dataclass
class ValidationResult:
    """
    Aggregate of one validation pass.

    success requires build and health check; tests are advisory and may be
    skipped for trivial components.
    """

    build: BuildValidationResult
    health: HealthCheckResult
    tests: Optional[TestValidationResult] = None
    errors: List[ClassifiedError] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.build.passed and self.health.passed

    @property
    def tests_passed(self) -> Optional[bool]:
        if self.tests is None or self.tests.skipped:
            return None
        return self.tests.passed


# ---------------------------------------------------------------------------
# REPAIR RESULTS
# ---------------------------------------------------------------------------

@dataclass
class FixApplied:
    type: str
    """Kind of fix: package-install, add-import, tailwind, import-path, pattern."""

    description: str
    file: Optional[str] = None


@dataclass
class AutoFixResult:
    success: bool
    """True only when no auto-tier error remains unresolved."""

    fixes_applied: List[FixApplied] = field(default_factory=list)
    remaining_errors: List[ClassifiedError] = field(default_factory=list)


@dataclass
class AIRepairResult:
    success: bool
    repaired_code: str
    """Repaired source, or the original source when the repair failed."""

    explanation: Optional[str] = None
    tokens_used: int = 0
    error: Optional[str] = None


@dataclass
class RepairResult:
    """
    Outcome of the repair policy.

    success means a step completed without internal error. Only the
    re-validation that follows decides whether the sandbox is healthy.
    """

    success: bool
    method: RepairMethod = RepairMethod.NONE
    fixes_applied: List[str] = field(default_factory=list)
    remaining_errors: List[ClassifiedError] = field(default_factory=list)
    tokens_used: int = 0


# ---------------------------------------------------------------------------
# PIPELINE RESULTS
# ---------------------------------------------------------------------------

@dataclass
class PipelineResult:
    success: bool
    sandbox_id: Optional[str] = None
    """Id of the SandboxRecord (not the provider-native id)."""

    sandbox_url: Optional[str] = None
    validation: Optional[ValidationResult] = None
    repair: Optional[RepairResult] = None
    error: Optional[str] = None
    user_message: Optional[str] = None
    can_retry: bool = False
    duration_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "sandbox_id": self.sandbox_id,
            "sandbox_url": self.sandbox_url,
            "error": self.error,
            "user_message": self.user_message,
            "can_retry": self.can_retry,
            "duration_ms": round(self.duration_ms, 1),
        }


@dataclass
class PipelineProgress:
    """Progress event emitted on every phase transition."""

    status: SandboxStatus
    label: str
    percent: int
    message: Optional[str] = None
    sandbox_id: Optional[str] = None


# Label and completion percent per status, for progress reporting
PIPELINE_STEPS: Dict[SandboxStatus, tuple] = {
    SandboxStatus.PENDING: ("Queued...", 0),
    SandboxStatus.PROVISIONING: ("Preparing environment...", 30),
    SandboxStatus.SETUP: ("Configuring Vite...", 40),
    SandboxStatus.APPLYING_CODE: ("Applying code...", 55),
    SandboxStatus.INSTALLING_PACKAGES: ("Installing packages...", 70),
    SandboxStatus.VALIDATING: ("Verifying...", 85),
    SandboxStatus.REPAIRING: ("Repairing automatically...", 90),
    SandboxStatus.READY: ("Ready!", 100),
    SandboxStatus.FAILED: ("Failed", 100),
    SandboxStatus.TERMINATED: ("Terminated", 100),
}


USER_ERROR_MESSAGES: Dict[ErrorCategory, str] = {
    ErrorCategory.MISSING_PACKAGE: "A required library is missing. Try generating again.",
    ErrorCategory.MISSING_IMPORT: "The code is missing an import. Try generating again.",
    ErrorCategory.SYNTAX_ERROR: "The generated code contains a syntax error. Try rephrasing your request.",
    ErrorCategory.TYPE_ERROR: "The generated code has a type problem. Try simplifying your request.",
    ErrorCategory.RUNTIME_ERROR: "The application crashed while running. Try simplifying your request.",
    ErrorCategory.BUILD_ERROR: "The application could not be built. Try generating again.",
    ErrorCategory.TIMEOUT: "The preview took too long to start. Please try again.",
    ErrorCategory.PROVIDER_ERROR: "The preview environment is unavailable right now. Please try again later.",
    ErrorCategory.UNKNOWN: "Something went wrong while preparing the preview. Please try again.",
}
