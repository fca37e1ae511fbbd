"""
Docker Provider - Local container sandboxes.

Fallback driver for development machines and self-hosted deployments.
Each sandbox is a long-lived Node container (`sleep infinity`) with the
dev-server port published on a random host port. Commands run through
`exec_run`; files move in and out as tar archives.

The Docker SDK is blocking, so every call goes through asyncio.to_thread.
"""

import asyncio
import io
import logging
import posixpath
import tarfile
import time
from typing import List, Optional

import docker
from docker.errors import APIError, DockerException, NotFound

from bwork.core.config import settings
from bwork.sandbox.config import DOCKER_CONFIG, ProviderConfig
from bwork.sandbox.contracts import CommandResult, ProviderName, SandboxInfo
from bwork.sandbox.providers.base import SandboxProvider

logger = logging.getLogger("bwork.sandbox.providers.docker")

CONTAINER_LABEL = "bwork.sandbox"


class DockerSandboxProvider(SandboxProvider):
    """
    Docker container driver.

    Usage:
        provider = DockerSandboxProvider()
        info = await provider.create()
        print(info.url)  # http://localhost:49153
    """

    provider_name = ProviderName.DOCKER

    def __init__(self, client: Optional[docker.DockerClient] = None, config: ProviderConfig = DOCKER_CONFIG):
        super().__init__(config)
        self._client = client
        self._container = None

    @classmethod
    def is_configured(cls) -> bool:
        return settings.DOCKER_ENABLED

    def _get_client(self) -> docker.DockerClient:
        if self._client is None:
            self._client = docker.from_env()
        return self._client

    async def create(self) -> SandboxInfo:
        logger.info(f"Starting Docker sandbox from image {settings.DOCKER_IMAGE}...")
        client = self._get_client()
        port_key = f"{self.port}/tcp"

        def _run():
            container = client.containers.run(
                image=settings.DOCKER_IMAGE,
                command="sleep infinity",
                detach=True,
                working_dir=self.work_dir,
                ports={port_key: None},  # random free host port
                labels={CONTAINER_LABEL: "1"},
                environment={"NODE_ENV": "development"},
            )
            container.reload()
            return container

        self._container = await asyncio.to_thread(_run)
        host_port = self._container.ports[port_key][0]["HostPort"]

        self._info = SandboxInfo(
            id=self._container.id,
            url=f"http://{settings.DOCKER_PUBLIC_HOST}:{host_port}",
            provider=self.provider_name,
        )
        logger.info(f"Docker sandbox started: {self._container.short_id} -> {self._info.url}")
        return self._info

    async def run_command(self, command: str, timeout: Optional[float] = None) -> CommandResult:
        self._require_active()
        limit = int(timeout or settings.SANDBOX_TIMEOUT_SECONDS)
        # coreutils timeout bounds the command inside the container
        wrapped = ["timeout", str(limit), "sh", "-c", command]
        try:
            exit_code, output = await asyncio.to_thread(
                self._container.exec_run,
                wrapped,
                demux=True,
                workdir=self.work_dir,
            )
        except (APIError, DockerException) as e:
            logger.error(f"Docker exec failed: {command[:80]}: {e}")
            return CommandResult(stderr=str(e), exit_code=-1)

        stdout, stderr = output if output else (None, None)
        if exit_code == 124:
            stderr = f"{self._to_text(stderr)}\nCommand timed out after {limit}s"
        return CommandResult(
            stdout=self._to_text(stdout),
            stderr=self._to_text(stderr),
            exit_code=exit_code if exit_code is not None else -1,
        )

    async def write_file(self, path: str, content: str) -> None:
        self._require_active()
        full_path = self.normalize_path(path)
        directory, name = posixpath.split(full_path)
        data = content.encode("utf-8")

        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w") as tar:
            info = tarfile.TarInfo(name=name)
            info.size = len(data)
            info.mtime = int(time.time())
            tar.addfile(info, io.BytesIO(data))
        buffer.seek(0)

        await self.run_command(f"mkdir -p '{directory}'")
        await asyncio.to_thread(self._container.put_archive, directory, buffer.read())
        self._track_write(path)

    async def read_file(self, path: str) -> str:
        self._require_active()
        full_path = self.normalize_path(path)

        def _read() -> bytes:
            stream, _ = self._container.get_archive(full_path)
            raw = b"".join(stream)
            with tarfile.open(fileobj=io.BytesIO(raw)) as tar:
                member = tar.getmembers()[0]
                extracted = tar.extractfile(member)
                return extracted.read() if extracted else b""

        try:
            return self._to_text(await asyncio.to_thread(_read))
        except NotFound:
            raise FileNotFoundError(full_path)

    async def list_files(self, directory: str = ".") -> List[str]:
        full_path = self.normalize_path(directory)
        result = await self.run_command(
            f"find '{full_path}' -type f -not -path '*/node_modules/*'"
        )
        if not result.success:
            return []
        return [line for line in result.stdout.splitlines() if line.strip()]

    async def terminate(self) -> None:
        if self._container is None:
            return
        container = self._container
        try:
            await asyncio.to_thread(container.remove, force=True)
            logger.info(f"Docker sandbox removed: {container.short_id}")
        except NotFound:
            logger.info(f"Docker sandbox already removed: {container.short_id}")
        finally:
            self._container = None
            self._info = None

    async def is_alive(self) -> bool:
        if self._container is None:
            return False
        try:
            await asyncio.to_thread(self._container.reload)
        except (NotFound, APIError) as e:
            logger.warning(f"Docker liveness check failed: {e}")
            return False
        return self._container.status == "running"

    @classmethod
    async def terminate_by_id(cls, external_id: str) -> None:
        """Remove a container created by an earlier run, by its id."""
        def _remove():
            client = docker.from_env()
            try:
                client.containers.get(external_id).remove(force=True)
            except NotFound:
                logger.info(f"Docker sandbox {external_id} already removed")

        await asyncio.to_thread(_remove)
