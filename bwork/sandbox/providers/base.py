"""
Base Sandbox Provider - Abstract interface for all sandbox drivers.

Every driver (E2B cloud sandboxes, local Docker containers) implements the
same capability set so the orchestrator never knows which infrastructure
it is talking to.

Design Pattern: Strategy Pattern
================================
The base class defines the primitive operations (create, run, read, write,
list, terminate, is_alive) and builds the shared workflow on top of them:
template setup, package installation and dev-server management.

Contract:
- Relative paths resolve against the driver's working directory.
- run_command() never raises for a failing command; it returns a
  CommandResult with a non-zero exit code and stderr filled in.
- stdout / stderr are always plain strings. Each driver normalizes
  whatever its SDK returns through _to_text().
- create() allocates a billable remote resource. The owner must call
  terminate() on every exit path.

Example:
    provider = E2BSandboxProvider()
    info = await provider.create()
    try:
        await provider.setup_app()
        result = await provider.run_command("npm run build")
    finally:
        await provider.terminate()
"""

import logging
import posixpath
import shlex
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Set

from bwork.sandbox.cancellation import CancellationToken, cancellable, cancellable_sleep
from bwork.sandbox.config import DEV_SERVER_LOG, VITE_TEMPLATE, ProviderConfig
from bwork.sandbox.contracts import CommandResult, ProviderName, SandboxInfo
from bwork.sandbox.exceptions import SandboxNotActiveError

logger = logging.getLogger("bwork.sandbox.providers")


class SandboxProvider(ABC):
    """
    Abstract base class for sandbox drivers.

    Subclasses implement the primitives; everything else is shared.
    """

    provider_name: ProviderName

    def __init__(self, config: ProviderConfig):
        self.config = config
        self.work_dir = config.work_dir
        self.port = config.port
        self._info: Optional[SandboxInfo] = None
        self._written_files: Set[str] = set()

    # =========================================================================
    # PRIMITIVES - implemented by each driver
    # =========================================================================

    @abstractmethod
    async def create(self) -> SandboxInfo:
        """Allocate the environment and return its id and public URL."""
        pass

    @abstractmethod
    async def run_command(self, command: str, timeout: Optional[float] = None) -> CommandResult:
        """
        Run a shell command in the working directory.

        Raises:
            This method should NOT raise for a failing command.
            Failures are captured in CommandResult.exit_code / stderr.
        """
        pass

    @abstractmethod
    async def write_file(self, path: str, content: str) -> None:
        pass

    @abstractmethod
    async def read_file(self, path: str) -> str:
        pass

    @abstractmethod
    async def list_files(self, directory: str = ".") -> List[str]:
        pass

    @abstractmethod
    async def terminate(self) -> None:
        """Release the environment. Safe to call more than once."""
        pass

    @abstractmethod
    async def is_alive(self) -> bool:
        pass

    @classmethod
    def is_configured(cls) -> bool:
        """Whether static configuration (keys, flags) allows this driver."""
        return False

    @classmethod
    async def terminate_by_id(cls, external_id: str) -> None:
        """Release an environment by its provider-native id."""
        raise NotImplementedError(f"{cls.__name__} cannot terminate by id")

    # =========================================================================
    # SHARED WORKFLOW
    # =========================================================================

    async def install_packages(
        self,
        packages: Iterable[str],
        cancel_token: Optional[CancellationToken] = None,
    ) -> CommandResult:
        """
        npm install the given packages, then restart the dev server so Vite
        picks them up. An empty list is a successful no-op.
        """
        packages = [p for p in packages if p]
        if not packages:
            return CommandResult(stdout="No packages to install", exit_code=0)

        package_list = " ".join(shlex.quote(p) for p in packages)
        logger.info(f"[{self.provider_name.value}] Installing packages: {package_list}")
        result = await cancellable(
            self.run_command(f"npm install --legacy-peer-deps {package_list}"),
            cancel_token,
        )

        if result.success:
            await self.restart_dev_server(cancel_token=cancel_token)
        else:
            logger.warning(f"[{self.provider_name.value}] npm install failed: {result.stderr[:300]}")
        return result

    async def setup_app(self, cancel_token: Optional[CancellationToken] = None) -> CommandResult:
        """
        Write the Vite + React + Tailwind template, install its dependencies
        and start the dev server.

        Returns:
            The result of `npm install`; the dev server is only started
            when it succeeded.
        """
        logger.info(f"[{self.provider_name.value}] Setting up Vite template...")
        await self.write_files(VITE_TEMPLATE)

        result = await cancellable(self.run_command("npm install"), cancel_token)
        if not result.success:
            return result

        await self.start_dev_server(cancel_token=cancel_token)
        return result

    async def start_dev_server(self, cancel_token: Optional[CancellationToken] = None) -> None:
        await self._launch_dev_server(
            settle_s=1.0,
            cancel_token=cancel_token,
        )

    async def restart_dev_server(self, cancel_token: Optional[CancellationToken] = None) -> None:
        await self._launch_dev_server(
            settle_s=self.config.restart_delay_s,
            cancel_token=cancel_token,
        )

    async def _launch_dev_server(self, settle_s: float, cancel_token: Optional[CancellationToken]) -> None:
        await self.run_command("pkill -f vite || true")
        await cancellable_sleep(settle_s, cancel_token)
        await self.run_command(f"nohup npm run dev > {DEV_SERVER_LOG} 2>&1 &")
        await cancellable_sleep(self.config.startup_delay_s, cancel_token)
        logger.info(f"[{self.provider_name.value}] Dev server started on port {self.port}")

    async def write_files(self, files: Dict[str, str]) -> None:
        for path, content in files.items():
            await self.write_file(path, content)

    # =========================================================================
    # INFO
    # =========================================================================

    @property
    def info(self) -> Optional[SandboxInfo]:
        return self._info

    @property
    def url(self) -> Optional[str]:
        return self._info.url if self._info else None

    def has_file(self, path: str) -> bool:
        return self.normalize_path(path) in self._written_files

    def get_written_files(self) -> List[str]:
        return sorted(self._written_files)

    # =========================================================================
    # HELPERS
    # =========================================================================

    def normalize_path(self, path: str) -> str:
        """Absolute paths pass through; relative ones join the working directory."""
        if path.startswith("/"):
            return posixpath.normpath(path)
        return posixpath.normpath(posixpath.join(self.work_dir, path))

    def _track_write(self, path: str) -> None:
        self._written_files.add(self.normalize_path(path))

    def _require_active(self) -> None:
        if self._info is None:
            raise SandboxNotActiveError(
                f"{self.provider_name.value} sandbox is not running; call create() first"
            )

    @staticmethod
    def _to_text(value: Any) -> str:
        """
        Normalize SDK output to a plain string.

        Drivers receive bytes, None, lists of chunks, or lazily-evaluated
        callables depending on the SDK and call path.
        """
        if value is None:
            return ""
        if callable(value):
            return SandboxProvider._to_text(value())
        if isinstance(value, (bytes, bytearray)):
            return bytes(value).decode("utf-8", errors="replace")
        if isinstance(value, (list, tuple)):
            return "".join(SandboxProvider._to_text(v) for v in value)
        return str(value)
