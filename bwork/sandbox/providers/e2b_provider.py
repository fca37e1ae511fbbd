"""
E2B Provider - Cloud micro-VM sandboxes.

Primary driver. Each sandbox is an isolated Firecracker VM with Node
preinstalled; the Vite dev server is exposed through E2B's public host
for the sandbox port.

API Documentation: https://e2b.dev/docs
"""

import logging
from typing import List, Optional

from e2b import CommandExitException, NotFoundException
from e2b_code_interpreter import AsyncSandbox

from bwork.core.config import settings
from bwork.sandbox.config import E2B_CONFIG, ProviderConfig
from bwork.sandbox.contracts import CommandResult, ProviderName, SandboxInfo
from bwork.sandbox.providers.base import SandboxProvider

logger = logging.getLogger("bwork.sandbox.providers.e2b")


class E2BSandboxProvider(SandboxProvider):
    """
    E2B cloud sandbox driver.

    Usage:
        provider = E2BSandboxProvider()
        info = await provider.create()
        print(info.url)  # https://5173-<id>.e2b.app
    """

    provider_name = ProviderName.E2B

    def __init__(self, api_key: str = None, config: ProviderConfig = E2B_CONFIG):
        super().__init__(config)
        self.api_key = api_key or settings.E2B_API_KEY
        self._sandbox: Optional[AsyncSandbox] = None

    @classmethod
    def is_configured(cls) -> bool:
        return bool(settings.E2B_API_KEY)

    async def create(self) -> SandboxInfo:
        logger.info("Creating E2B sandbox...")
        create_kwargs = {
            "api_key": self.api_key,
            "timeout": self.config.lifetime_s,
        }
        if settings.E2B_TEMPLATE:
            create_kwargs["template"] = settings.E2B_TEMPLATE

        self._sandbox = await AsyncSandbox.create(**create_kwargs)
        await self._sandbox.commands.run(f"mkdir -p {self.work_dir}")

        host = self._sandbox.get_host(self.port)
        self._info = SandboxInfo(
            id=self._sandbox.sandbox_id,
            url=f"https://{host}",
            provider=self.provider_name,
        )
        logger.info(f"E2B sandbox created: {self._info.id} -> {self._info.url}")
        return self._info

    async def run_command(self, command: str, timeout: Optional[float] = None) -> CommandResult:
        self._require_active()
        try:
            result = await self._sandbox.commands.run(
                command,
                cwd=self.work_dir,
                timeout=timeout or settings.SANDBOX_TIMEOUT_SECONDS,
            )
            return CommandResult(
                stdout=self._to_text(result.stdout),
                stderr=self._to_text(result.stderr),
                exit_code=result.exit_code,
            )
        except CommandExitException as e:
            # Non-zero exit is reported by the SDK as an exception
            return CommandResult(
                stdout=self._to_text(e.stdout),
                stderr=self._to_text(e.stderr) or self._to_text(e.error),
                exit_code=e.exit_code or 1,
            )
        except Exception as e:
            logger.error(f"E2B command failed to execute: {command[:80]}: {e}")
            return CommandResult(stderr=str(e), exit_code=-1)

    async def write_file(self, path: str, content: str) -> None:
        self._require_active()
        full_path = self.normalize_path(path)
        await self._sandbox.files.write(full_path, content)
        self._track_write(path)

    async def read_file(self, path: str) -> str:
        self._require_active()
        full_path = self.normalize_path(path)
        try:
            content = await self._sandbox.files.read(full_path)
        except NotFoundException:
            raise FileNotFoundError(full_path)
        return self._to_text(content)

    async def list_files(self, directory: str = ".") -> List[str]:
        self._require_active()
        entries = await self._sandbox.files.list(self.normalize_path(directory))
        return [entry.path for entry in entries]

    async def terminate(self) -> None:
        if self._sandbox is None:
            return
        sandbox_id = self._sandbox.sandbox_id
        try:
            await self._sandbox.kill()
            logger.info(f"E2B sandbox terminated: {sandbox_id}")
        finally:
            self._sandbox = None
            self._info = None

    async def is_alive(self) -> bool:
        if self._sandbox is None:
            return False
        try:
            return await self._sandbox.is_running()
        except Exception as e:
            logger.warning(f"E2B liveness check failed: {e}")
            return False

    @classmethod
    async def terminate_by_id(cls, external_id: str) -> None:
        """Kill a sandbox created by an earlier run, by its E2B id."""
        await AsyncSandbox.kill(external_id, api_key=settings.E2B_API_KEY)
        logger.info(f"E2B sandbox terminated by id: {external_id}")
