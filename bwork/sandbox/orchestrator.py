"""
Pipeline Orchestrator - Provision, validate and repair one generated app.

Phases (each persisted on the SandboxRecord before it runs):
1. provisioning         create an environment through the provider factory
2. setup                write the Vite template, npm install, start dev server
3. applying_code        write the generated source to src/App.jsx
4. installing_packages  install third-party packages detected in the source
5. validating           build + health check + smoke tests
6. repairing            auto-fixes, then AI repair, then back to validating
7. ready / failed       terminal

The repair loop is bounded by the record's max_retries and also ends as
soon as a repair step reports that it could not do anything. A repair
step's success only earns another validation pass; validation alone
decides the outcome.

Every exit path except `ready` releases the environment. A ready
sandbox stays up for preview until it is terminated or reaped after
expires_at.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from bwork.core.config import settings
from bwork.models import SandboxRecord
from bwork.sandbox.cancellation import (
    CancellationRegistry,
    CancellationToken,
    cancellation_registry,
)
from bwork.sandbox.config import APP_ENTRY_FILE
from bwork.sandbox.contracts import (
    PIPELINE_STEPS,
    ClassifiedError,
    ErrorCategory,
    HealthCheckResult,
    PipelineProgress,
    PipelineResult,
    RepairMethod,
    RepairResult,
    SandboxStatus,
    ValidationResult,
)
from bwork.sandbox.exceptions import (
    PipelineCancelledError,
    ProviderConfigurationError,
    SandboxError,
)
from bwork.sandbox.factory import ProviderFactory, provider_factory
from bwork.sandbox.logger import pipeline_logger
from bwork.sandbox.providers.base import SandboxProvider
from bwork.sandbox.repair.ai_repairer import AIRepairer
from bwork.sandbox.repair.auto_fixer import AutoFixer
from bwork.sandbox.repair.error_classifier import (
    can_auto_fix,
    classify_error,
    get_user_message,
    needs_ai_repair,
    prioritize_errors,
)
from bwork.sandbox.store import SandboxStore
from bwork.sandbox.utils.package_detector import PackageDetector
from bwork.sandbox.validation.build_validator import BuildValidator
from bwork.sandbox.validation.health_checker import HealthChecker
from bwork.sandbox.validation.test_runner import SmokeTestRunner, should_skip_tests

logger = logging.getLogger("bwork.sandbox.orchestrator")

ProgressCallback = Callable[[PipelineProgress], None]

CANCELLED_MESSAGE = "The preview was cancelled."


@dataclass
class PipelineRun:
    """State owned by a single run_pipeline() invocation."""

    sandbox_id: str
    max_retries: int
    token: CancellationToken
    on_progress: Optional[ProgressCallback] = None

    provider: Optional[SandboxProvider] = None
    """The environment this run owns; released on every non-ready exit."""

    retry_count: int = 0


class PipelineOrchestrator:
    """
    Runs the sandbox pipeline end to end.

    Usage:
        orchestrator = PipelineOrchestrator()
        result = await orchestrator.run_pipeline(tool_id, "gen-42", code)
        if result.success:
            print(result.sandbox_url)

    All collaborators are injectable; missing ones are created lazily.
    """

    def __init__(
        self,
        store: Optional[SandboxStore] = None,
        provider_factory: Optional[ProviderFactory] = None,
        ai_repairer: Optional[AIRepairer] = None,
        health_checker: Optional[HealthChecker] = None,
        build_validator: Optional[BuildValidator] = None,
        test_runner: Optional[SmokeTestRunner] = None,
        auto_fixer: Optional[AutoFixer] = None,
        package_detector: Optional[PackageDetector] = None,
        registry: Optional[CancellationRegistry] = None,
        health_attempts: Optional[int] = None,
        health_interval_ms: Optional[int] = None,
        health_timeout_ms: Optional[int] = None,
    ):
        self._store = store
        self._factory = provider_factory
        self._ai_repairer = ai_repairer
        self._health_checker = health_checker
        self._build_validator = build_validator
        self._test_runner = test_runner
        self._auto_fixer = auto_fixer
        self._package_detector = package_detector
        self._registry = registry or cancellation_registry

        self._health_attempts = health_attempts or settings.HEALTH_CHECK_ATTEMPTS
        self._health_interval_ms = settings.HEALTH_CHECK_INTERVAL_MS if health_interval_ms is None else health_interval_ms
        self._health_timeout_ms = health_timeout_ms or settings.HEALTH_CHECK_TIMEOUT_MS

    @property
    def store(self) -> SandboxStore:
        return self._get_store()

    @property
    def ai_repairer(self) -> AIRepairer:
        return self._get_ai_repairer()

    @property
    def provider_factory(self) -> ProviderFactory:
        return self._get_factory()

    def _get_store(self) -> SandboxStore:
        if self._store is None:
            self._store = SandboxStore()
        return self._store

    def _get_factory(self) -> ProviderFactory:
        if self._factory is None:
            self._factory = provider_factory
        return self._factory

    def _get_ai_repairer(self) -> AIRepairer:
        if self._ai_repairer is None:
            self._ai_repairer = AIRepairer()
        return self._ai_repairer

    def _get_health_checker(self) -> HealthChecker:
        if self._health_checker is None:
            self._health_checker = HealthChecker()
        return self._health_checker

    def _get_build_validator(self) -> BuildValidator:
        if self._build_validator is None:
            self._build_validator = BuildValidator()
        return self._build_validator

    def _get_test_runner(self) -> SmokeTestRunner:
        if self._test_runner is None:
            self._test_runner = SmokeTestRunner()
        return self._test_runner

    def _get_auto_fixer(self) -> AutoFixer:
        if self._auto_fixer is None:
            self._auto_fixer = AutoFixer()
        return self._auto_fixer

    def _get_package_detector(self) -> PackageDetector:
        if self._package_detector is None:
            self._package_detector = PackageDetector()
        return self._package_detector

    # =========================================================================
    # ENTRYPOINTS
    # =========================================================================

    async def run_pipeline(
        self,
        tool_id,
        generation_id: Optional[str],
        code: str,
        sandbox_id=None,
        cancel_token: Optional[CancellationToken] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> PipelineResult:
        """
        Run the whole pipeline for one generated source.

        Args:
            tool_id: Owning tool
            generation_id: Opaque generation reference
            code: Generated source for src/App.jsx
            sandbox_id: Existing record to reuse (retry); a new one is created if None
            cancel_token: Aborts the run between phases and during waits
            on_progress: Called with a PipelineProgress on every transition

        Returns:
            PipelineResult. Never raises past this boundary, except for an
            unknown sandbox_id.
        """
        start = time.time()
        store = self._get_store()

        if sandbox_id is None:
            record = store.create(
                tool_id=tool_id,
                generation_id=generation_id,
                max_retries=settings.SANDBOX_MAX_RETRIES,
                expires_at=self._expiry(),
            )
        else:
            record = store.get(sandbox_id)

        run = PipelineRun(
            sandbox_id=str(record.id),
            max_retries=record.max_retries,
            token=cancel_token or CancellationToken(),
            on_progress=on_progress,
        )
        self._registry.register(run.sandbox_id, run.token)
        pipeline_logger.log_start(run.sandbox_id, str(tool_id), generation_id)

        result: Optional[PipelineResult] = None
        try:
            result = await self._execute(run, code)

        except ProviderConfigurationError as e:
            logger.error(f"No sandbox provider for {run.sandbox_id}: {e}")
            self._record_failure(run, SandboxStatus.FAILED, str(e))
            result = PipelineResult(
                success=False,
                sandbox_id=run.sandbox_id,
                error=str(e),
                user_message=get_user_message(ErrorCategory.PROVIDER_ERROR),
                can_retry=False,
            )

        except PipelineCancelledError as e:
            logger.info(f"Pipeline {run.sandbox_id} cancelled: {e}")
            self._record_failure(run, SandboxStatus.TERMINATED, str(e))
            result = PipelineResult(
                success=False,
                sandbox_id=run.sandbox_id,
                error=str(e),
                user_message=CANCELLED_MESSAGE,
                can_retry=True,
            )

        except Exception as e:
            logger.exception(f"Pipeline {run.sandbox_id} failed: {e}")
            self._record_failure(run, SandboxStatus.FAILED, str(e) or e.__class__.__name__)
            result = PipelineResult(
                success=False,
                sandbox_id=run.sandbox_id,
                error=str(e) or e.__class__.__name__,
                user_message=get_user_message(ErrorCategory.UNKNOWN),
                can_retry=True,
            )

        finally:
            self._registry.unregister(run.sandbox_id)
            if run.provider is not None and not (result is not None and result.success):
                await self._release(run)

        result.duration_ms = (time.time() - start) * 1000
        pipeline_logger.log_end(
            run.sandbox_id,
            success=result.success,
            status=self._current_status(run),
            duration_ms=result.duration_ms,
            retry_count=run.retry_count,
            error=result.error,
        )
        return result

    async def retry_sandbox(
        self,
        sandbox_id,
        cancel_token: Optional[CancellationToken] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> PipelineResult:
        """
        Re-run the pipeline on an existing record with the tool's stored code.

        The record keeps its id; retry_count is reset to 0 and status to
        pending before the run starts.

        Raises:
            SandboxNotFoundError: Unknown sandbox id
            SandboxError: The tool has no stored code to retry with
        """
        store = self._get_store()
        record = store.get(sandbox_id)

        code = store.get_tool_code(record.tool_id)
        if not code:
            raise SandboxError(f"No stored code for tool {record.tool_id}")

        if record.status == SandboxStatus.READY.value and record.external_id:
            # Still serving a preview from the previous run
            await self._terminate_external(record)

        store.update(
            record.id,
            status=SandboxStatus.PENDING,
            retry_count=0,
            last_error=None,
            build_passed=None,
            tests_passed=None,
            health_check_passed=None,
            external_id=None,
            url=None,
            expires_at=self._expiry(),
        )
        logger.info(f"Retrying sandbox {record.id}")

        return await self.run_pipeline(
            tool_id=record.tool_id,
            generation_id=record.generation_id,
            code=code,
            sandbox_id=record.id,
            cancel_token=cancel_token,
            on_progress=on_progress,
        )

    async def terminate_sandbox(self, sandbox_id) -> SandboxRecord:
        """
        Cancel any in-flight run and release the environment.

        Records that already released their environment (failed or
        terminated) are returned unchanged.

        Raises:
            SandboxNotFoundError: Unknown sandbox id
        """
        store = self._get_store()
        record = store.get(sandbox_id)

        if record.status in (SandboxStatus.FAILED.value, SandboxStatus.TERMINATED.value):
            return record

        if self._registry.cancel(str(record.id), "Terminated by request"):
            logger.info(f"Cancelled in-flight pipeline for {record.id}")

        if record.external_id:
            await self._terminate_external(record)

        record = store.update(record.id, status=SandboxStatus.TERMINATED)
        pipeline_logger.log_phase(str(record.id), SandboxStatus.TERMINATED.value)
        return record

    async def reap_expired(self, now: Optional[datetime] = None) -> int:
        """Terminate every sandbox past expires_at. Returns how many were reaped."""
        expired = self._get_store().list_expired(now)
        for record in expired:
            logger.info(f"Reaping expired sandbox {record.id} ({record.status})")
            await self.terminate_sandbox(record.id)
        return len(expired)

    # =========================================================================
    # PIPELINE
    # =========================================================================

    async def _execute(self, run: PipelineRun, code: str) -> PipelineResult:
        store = self._get_store()

        # Phase 1: provision
        self._transition(run, SandboxStatus.PROVISIONING)
        run.provider = await self._get_factory().create_sandbox_with_fallback()
        info = run.provider.info
        store.update(run.sandbox_id, provider=info.provider.value, external_id=info.id, url=info.url)
        pipeline_logger.log_provider(run.sandbox_id, info.provider.value, "attached")

        # Phase 2: template + dev server
        self._transition(run, SandboxStatus.SETUP)
        setup = await run.provider.setup_app(cancel_token=run.token)
        if not setup.success:
            raise SandboxError(f"Template setup failed: {setup.stderr.strip()[-500:] or 'npm install failed'}")

        # Phase 3: generated source
        self._transition(run, SandboxStatus.APPLYING_CODE)
        await run.provider.write_file(APP_ENTRY_FILE, code)

        # Phase 4: third-party packages
        self._transition(run, SandboxStatus.INSTALLING_PACKAGES)
        detector = self._get_package_detector()
        packages = detector.detect(code)
        if packages:
            installed = await run.provider.install_packages(
                [detector.format_install_spec(p) for p in packages],
                cancel_token=run.token,
            )
            if not installed.success:
                # Validation will surface the unresolved imports
                logger.warning(f"Package install failed for {run.sandbox_id}: {installed.stderr[:200]}")

        # Phase 5: validate
        self._transition(run, SandboxStatus.VALIDATING)
        validation = await self.run_validation(run, code)

        # Phase 6: bounded repair loop
        repair: Optional[RepairResult] = None
        repairable = True
        while not validation.success and repairable and run.retry_count < run.max_retries:
            run.retry_count += 1
            logger.info(f"Repair attempt {run.retry_count}/{run.max_retries} for {run.sandbox_id}")
            self._transition(run, SandboxStatus.REPAIRING, retry_count=run.retry_count)
            store.append_error_history(
                run.sandbox_id,
                [e.to_history_entry() for e in validation.errors],
            )

            repair = await self.run_repair(run, validation.errors)
            pipeline_logger.log_repair(run.sandbox_id, run.retry_count, repair)

            repairable = repair.success
            if repairable:
                self._transition(run, SandboxStatus.VALIDATING)
                validation = await self.run_validation(run, code)

        # Phase 7: outcome
        if validation.success:
            self._transition(run, SandboxStatus.READY)
            return PipelineResult(
                success=True,
                sandbox_id=run.sandbox_id,
                sandbox_url=run.provider.url,
                validation=validation,
                repair=repair,
                can_retry=False,
            )

        first = validation.errors[0] if validation.errors else None
        last_error = first.message if first else "Validation failed"
        self._transition(run, SandboxStatus.FAILED, message=last_error, last_error=last_error)
        return PipelineResult(
            success=False,
            sandbox_id=run.sandbox_id,
            validation=validation,
            repair=repair,
            error=last_error,
            user_message=get_user_message(first.category if first else ErrorCategory.UNKNOWN),
            can_retry=True,
        )

    async def run_validation(self, run: PipelineRun, code: str) -> ValidationResult:
        """Build, health check and (unless the component is trivial) smoke tests."""
        provider = run.provider

        build = await self._get_build_validator().validate(provider)
        run.token.raise_if_cancelled()

        if provider.url:
            health = await self._get_health_checker().wait_for_healthy(
                provider.url,
                max_attempts=self._health_attempts,
                interval_ms=self._health_interval_ms,
                timeout_ms=self._health_timeout_ms,
                cancel_token=run.token,
            )
        else:
            health = HealthCheckResult(passed=False, attempts=0, error="No sandbox URL")

        runner = self._get_test_runner()
        if should_skip_tests(code):
            tests = runner.skipped()
        else:
            tests = await runner.run_tests(provider, cancel_token=run.token)

        errors: List[ClassifiedError] = list(build.errors) + list(tests.errors)
        if not health.passed:
            errors.append(classify_error(health.error or "Health check failed"))

        validation = ValidationResult(build=build, health=health, tests=tests, errors=errors)
        self._get_store().update(
            run.sandbox_id,
            build_passed=build.passed,
            tests_passed=validation.tests_passed,
            health_check_passed=health.passed,
        )
        pipeline_logger.log_validation(run.sandbox_id, validation, attempt=run.retry_count)
        return validation

    async def run_repair(self, run: PipelineRun, errors: List[ClassifiedError]) -> RepairResult:
        """
        Cheapest repair first: auto-fixes, then AI for what remains.

        success means a step completed its work, not that the app is fixed.
        """
        prioritized = prioritize_errors(errors)
        remaining = prioritized
        fixes: List[str] = []

        if can_auto_fix(prioritized):
            auto = await self._get_auto_fixer().run_all_auto_fixes(
                run.provider, prioritized, cancel_token=run.token
            )
            fixes.extend(f.description for f in auto.fixes_applied)
            if auto.success:
                return RepairResult(success=True, method=RepairMethod.AUTO, fixes_applied=fixes)
            remaining = auto.remaining_errors

        repairer = self._get_ai_repairer()
        if needs_ai_repair(remaining) and repairer.is_ai_repair_available():
            ai = await repairer.apply_ai_repair(run.provider, remaining, cancel_token=run.token)
            if ai.success:
                fixes.append("AI repair applied")
                return RepairResult(
                    success=True,
                    method=RepairMethod.AI,
                    fixes_applied=fixes,
                    tokens_used=ai.tokens_used,
                )
            logger.warning(f"AI repair failed for {run.sandbox_id}: {ai.error}")
            return RepairResult(
                success=False,
                fixes_applied=fixes,
                remaining_errors=remaining,
                tokens_used=ai.tokens_used,
            )

        return RepairResult(success=False, fixes_applied=fixes, remaining_errors=remaining)

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _transition(self, run: PipelineRun, status: SandboxStatus, message: Optional[str] = None, **fields) -> None:
        """Persist a status change and report progress. Checks for cancellation first."""
        run.token.raise_if_cancelled()
        self._get_store().update(run.sandbox_id, status=status, **fields)
        pipeline_logger.log_phase(run.sandbox_id, status.value, message)

        if run.on_progress is not None:
            label, percent = PIPELINE_STEPS[status]
            try:
                run.on_progress(PipelineProgress(
                    status=status,
                    label=label,
                    percent=percent,
                    message=message,
                    sandbox_id=run.sandbox_id,
                ))
            except Exception as e:
                logger.warning(f"Progress callback raised: {e}")

    def _record_failure(self, run: PipelineRun, status: SandboxStatus, error: str) -> None:
        try:
            self._get_store().update(run.sandbox_id, status=status, last_error=error)
            pipeline_logger.log_phase(run.sandbox_id, status.value, error)
        except Exception as e:
            logger.error(f"Could not record {status.value} for {run.sandbox_id}: {e}")

    def _current_status(self, run: PipelineRun) -> str:
        try:
            return self._get_store().get(run.sandbox_id).status
        except Exception:
            return "unknown"

    async def _release(self, run: PipelineRun) -> None:
        provider_name = run.provider.provider_name.value
        try:
            await run.provider.terminate()
            pipeline_logger.log_provider(run.sandbox_id, provider_name, "terminated")
        except Exception as e:
            logger.error(f"Failed to terminate provider for {run.sandbox_id}: {e}")
            pipeline_logger.log_provider(run.sandbox_id, provider_name, "terminate_failed", error=str(e))
        finally:
            run.provider = None

    async def _terminate_external(self, record: SandboxRecord) -> None:
        try:
            await self._get_factory().terminate_by_id(record.provider, record.external_id)
            pipeline_logger.log_provider(str(record.id), record.provider, "terminated")
        except Exception as e:
            logger.error(f"Failed to terminate {record.provider}:{record.external_id}: {e}")
            pipeline_logger.log_provider(str(record.id), record.provider, "terminate_failed", error=str(e))

    @staticmethod
    def _expiry() -> datetime:
        return datetime.now(timezone.utc) + timedelta(minutes=settings.SANDBOX_EXPIRES_MINUTES)


# ---------------------------------------------------------------------------
# SINGLETON INSTANCE
# ---------------------------------------------------------------------------
_orchestrator: Optional[PipelineOrchestrator] = None


def get_orchestrator() -> PipelineOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = PipelineOrchestrator()
    return _orchestrator
