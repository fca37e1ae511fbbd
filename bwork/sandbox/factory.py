"""
Provider Factory - Select and start a sandbox driver with ordered fallback.

Selection logic:
1. An explicit preference ("e2b", "docker") is tried first, if configured.
2. "auto" (the default) walks the drivers in priority order: e2b, docker.
3. A driver is skipped when its static configuration is missing; a driver
   whose create() fails is logged and the next one is tried.
4. If nothing is configured, or every configured driver fails, a
   ProviderConfigurationError is raised. Callers must not enter the
   repair loop for it.
"""

import logging
from typing import Dict, List, Optional, Type

from bwork.core.config import settings
from bwork.sandbox.contracts import ProviderName
from bwork.sandbox.exceptions import ProviderConfigurationError
from bwork.sandbox.logger import pipeline_logger
from bwork.sandbox.providers import DockerSandboxProvider, E2BSandboxProvider, SandboxProvider

logger = logging.getLogger("bwork.sandbox.factory")


# Priority order for "auto" mode
DEFAULT_REGISTRY: Dict[ProviderName, Type[SandboxProvider]] = {
    ProviderName.E2B: E2BSandboxProvider,
    ProviderName.DOCKER: DockerSandboxProvider,
}


class ProviderFactory:
    """
    Creates live sandbox providers.

    Usage:
        factory = ProviderFactory()
        provider = await factory.create_sandbox_with_fallback()
        print(provider.url)
    """

    def __init__(self, registry: Optional[Dict[ProviderName, Type[SandboxProvider]]] = None):
        self._registry = dict(registry or DEFAULT_REGISTRY)

    def is_provider_configured(self, name: ProviderName) -> bool:
        provider_cls = self._registry.get(name)
        return provider_cls is not None and provider_cls.is_configured()

    def get_available_providers(self) -> List[ProviderName]:
        """Configured drivers, in priority order."""
        return [name for name in self._registry if self.is_provider_configured(name)]

    def get_provider_class(self, name: ProviderName) -> Type[SandboxProvider]:
        try:
            return self._registry[name]
        except KeyError:
            raise ProviderConfigurationError(f"Unknown sandbox provider: {name}")

    def create_provider(self, name: ProviderName) -> SandboxProvider:
        """Instantiate a driver without allocating an environment."""
        if not self.is_provider_configured(name):
            raise ProviderConfigurationError(
                f"Sandbox provider '{name.value}' requested but not configured"
            )
        return self._registry[name]()

    def _ordered_candidates(self, preference: str) -> List[ProviderName]:
        available = self.get_available_providers()
        if preference in (None, "", "auto"):
            return available

        try:
            preferred = ProviderName(preference)
        except ValueError:
            raise ProviderConfigurationError(f"Unknown sandbox provider: {preference}")

        if preferred not in available:
            logger.warning(f"Preferred provider '{preferred.value}' is not configured, falling back")
            return available
        return [preferred] + [name for name in available if name != preferred]

    async def create_sandbox_with_fallback(self, preference: Optional[str] = None) -> SandboxProvider:
        """
        Start an environment on the first driver that succeeds.

        Returns:
            A provider whose create() has completed

        Raises:
            ProviderConfigurationError: nothing configured, or all drivers failed
        """
        preference = preference or settings.SANDBOX_PROVIDER
        candidates = self._ordered_candidates(preference)

        if not candidates:
            raise ProviderConfigurationError(
                "No sandbox provider available. Configure E2B_API_KEY or enable DOCKER_ENABLED."
            )

        failures: List[str] = []
        for name in candidates:
            provider = self._registry[name]()
            try:
                logger.info(f"Trying sandbox provider: {name.value}")
                await provider.create()
            except Exception as e:
                logger.error(f"Failed to create sandbox with {name.value}: {e}")
                pipeline_logger.log_provider(None, name.value, "create_failed", error=str(e))
                failures.append(f"{name.value}: {e}")
                await self._discard(provider)
                continue

            pipeline_logger.log_provider(provider.info.id, name.value, "created")
            return provider

        raise ProviderConfigurationError(
            "Failed to create sandbox with any provider (" + "; ".join(failures) + ")"
        )

    async def _discard(self, provider: SandboxProvider) -> None:
        """Release anything a half-created driver may have allocated."""
        try:
            await provider.terminate()
        except Exception as e:
            logger.warning(f"Cleanup after failed create raised: {e}")

    async def terminate_by_id(self, provider_name: str, external_id: str) -> None:
        """Release an environment owned by a finished run."""
        provider_cls = self.get_provider_class(ProviderName(provider_name))
        await provider_cls.terminate_by_id(external_id)


# ---------------------------------------------------------------------------
# SINGLETON INSTANCE
# ---------------------------------------------------------------------------
provider_factory = ProviderFactory()
