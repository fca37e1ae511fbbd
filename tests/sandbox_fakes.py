"""
Test doubles for the sandbox pipeline.

- FakeProvider: in-memory sandbox driver with scriptable commands
- StubFactory: hands out one pre-built provider
- MockTransport helpers for the health checker
"""

from typing import Callable, Dict, List, Optional, Union

import httpx

from bwork.sandbox.config import ProviderConfig
from bwork.sandbox.contracts import CommandResult, ProviderName, SandboxInfo
from bwork.sandbox.providers.base import SandboxProvider


FAKE_CONFIG = ProviderConfig(
    work_dir="/app",
    port=5173,
    startup_delay_s=0,
    restart_delay_s=0,
    lifetime_s=60,
)

SIMPLE_APP = """export default function App() {
  return <div className="p-4">Hello</div>;
}
"""

Handler = Union[CommandResult, Callable[[str], CommandResult]]


class FakeProvider(SandboxProvider):
    """
    In-memory sandbox.

    Commands succeed by default; tests script them by prefix:
        provider.on("npm run build", CommandResult(stderr="boom", exit_code=1))
        provider.on("npm run build", lambda cmd: ...)
    """

    provider_name = ProviderName.DOCKER

    def __init__(self, url: Optional[str] = "http://sandbox.test", fail_create: bool = False):
        super().__init__(FAKE_CONFIG)
        self.files: Dict[str, str] = {}
        self.commands: List[str] = []
        self.handlers: Dict[str, Handler] = {}
        self.terminated = False
        self.fail_create = fail_create
        self._url = url

    @classmethod
    def is_configured(cls) -> bool:
        return True

    def on(self, prefix: str, handler: Handler) -> None:
        self.handlers[prefix] = handler

    def ran(self, fragment: str) -> bool:
        return any(fragment in command for command in self.commands)

    async def create(self) -> SandboxInfo:
        if self.fail_create:
            raise RuntimeError("quota exceeded")
        self._info = SandboxInfo(id="fake-sandbox-1", url=self._url, provider=self.provider_name)
        return self._info

    async def run_command(self, command: str, timeout: Optional[float] = None) -> CommandResult:
        self._require_active()
        self.commands.append(command)
        for prefix, handler in self.handlers.items():
            if command.startswith(prefix):
                return handler(command) if callable(handler) else handler
        return CommandResult(stdout="ok")

    async def write_file(self, path: str, content: str) -> None:
        self._require_active()
        self.files[self.normalize_path(path)] = content
        self._track_write(path)

    async def read_file(self, path: str) -> str:
        key = self.normalize_path(path)
        if key not in self.files:
            raise FileNotFoundError(path)
        return self.files[key]

    async def list_files(self, directory: str = ".") -> List[str]:
        base = self.normalize_path(directory).rstrip("/") + "/"
        return sorted(p for p in self.files if p.startswith(base))

    async def terminate(self) -> None:
        self.terminated = True
        self._info = None

    async def is_alive(self) -> bool:
        return self._info is not None


class StubFactory:
    """Hands out one pre-built provider; records terminate_by_id calls."""

    def __init__(
        self,
        provider: Optional[FakeProvider] = None,
        error: Optional[Exception] = None,
        available: Optional[List[ProviderName]] = None,
    ):
        self.provider = provider
        self.error = error
        self.available = [ProviderName.DOCKER] if available is None else available
        self.terminated_ids: List[tuple] = []

    def get_available_providers(self) -> List[ProviderName]:
        return list(self.available)

    async def create_sandbox_with_fallback(self, preference: Optional[str] = None) -> SandboxProvider:
        if self.error is not None:
            raise self.error
        await self.provider.create()
        return self.provider

    async def terminate_by_id(self, provider_name: str, external_id: str) -> None:
        self.terminated_ids.append((provider_name, external_id))


def healthy_transport(status_code: int = 200, body: str = '<div id="root"></div>') -> httpx.MockTransport:
    return httpx.MockTransport(lambda request: httpx.Response(status_code, text=body))


def unreachable_transport() -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)
    return httpx.MockTransport(handler)


def failed(stderr: str, stdout: str = "") -> CommandResult:
    return CommandResult(stdout=stdout, stderr=stderr, exit_code=1)
