"""
Sandbox providers - interchangeable drivers behind one capability contract.

- E2BSandboxProvider: E2B cloud micro-VMs (primary)
- DockerSandboxProvider: local Docker containers (fallback)
"""

from bwork.sandbox.providers.base import SandboxProvider
from bwork.sandbox.providers.e2b_provider import E2BSandboxProvider
from bwork.sandbox.providers.docker_provider import DockerSandboxProvider

__all__ = [
    "SandboxProvider",
    "E2BSandboxProvider",
    "DockerSandboxProvider",
]
