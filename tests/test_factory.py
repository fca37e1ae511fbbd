"""
Tests for the provider factory.

Driver classes are replaced with fakes whose configuration and create()
outcome are set per test.
"""

from unittest.mock import patch

import pytest

from bwork.sandbox.contracts import ProviderName
from bwork.sandbox.exceptions import ProviderConfigurationError
from bwork.sandbox.factory import ProviderFactory

from sandbox_fakes import FakeProvider


def driver(name: ProviderName, configured: bool = True, fails: bool = False):
    """Build a FakeProvider subclass standing in for one registered driver."""

    class Driver(FakeProvider):
        provider_name = name
        instances = []
        terminated_ids = []

        def __init__(self):
            super().__init__(fail_create=fails)
            Driver.instances.append(self)

        @classmethod
        def is_configured(cls) -> bool:
            return configured

        @classmethod
        async def terminate_by_id(cls, external_id: str) -> None:
            cls.terminated_ids.append(external_id)

    return Driver


class TestProviderSelection:
    """Tests for availability and ordering."""

    def test_available_providers_in_priority_order(self):
        """Only configured drivers are listed, E2B first."""
        factory = ProviderFactory({
            ProviderName.E2B: driver(ProviderName.E2B),
            ProviderName.DOCKER: driver(ProviderName.DOCKER),
        })

        assert factory.get_available_providers() == [ProviderName.E2B, ProviderName.DOCKER]

    def test_unconfigured_driver_skipped(self):
        """A driver without configuration is not available."""
        factory = ProviderFactory({
            ProviderName.E2B: driver(ProviderName.E2B, configured=False),
            ProviderName.DOCKER: driver(ProviderName.DOCKER),
        })

        assert factory.get_available_providers() == [ProviderName.DOCKER]
        assert factory.is_provider_configured(ProviderName.E2B) is False

    def test_create_provider_requires_configuration(self):
        """Explicitly creating an unconfigured driver fails."""
        factory = ProviderFactory({ProviderName.E2B: driver(ProviderName.E2B, configured=False)})

        with pytest.raises(ProviderConfigurationError):
            factory.create_provider(ProviderName.E2B)


class TestCreateWithFallback:
    """Tests for create_sandbox_with_fallback()."""

    @pytest.mark.asyncio
    async def test_uses_first_configured(self):
        """Auto mode starts the highest-priority driver."""
        factory = ProviderFactory({
            ProviderName.E2B: driver(ProviderName.E2B),
            ProviderName.DOCKER: driver(ProviderName.DOCKER),
        })

        provider = await factory.create_sandbox_with_fallback("auto")

        assert provider.provider_name == ProviderName.E2B
        assert provider.info is not None

    @pytest.mark.asyncio
    async def test_falls_back_when_create_fails(self):
        """A failing driver is discarded and the next one used."""
        e2b = driver(ProviderName.E2B, fails=True)
        factory = ProviderFactory({
            ProviderName.E2B: e2b,
            ProviderName.DOCKER: driver(ProviderName.DOCKER),
        })

        provider = await factory.create_sandbox_with_fallback("auto")

        assert provider.provider_name == ProviderName.DOCKER
        assert e2b.instances[0].terminated is True

    @pytest.mark.asyncio
    async def test_preference_goes_first(self):
        """An explicit preference outranks priority order."""
        factory = ProviderFactory({
            ProviderName.E2B: driver(ProviderName.E2B),
            ProviderName.DOCKER: driver(ProviderName.DOCKER),
        })

        provider = await factory.create_sandbox_with_fallback("docker")

        assert provider.provider_name == ProviderName.DOCKER

    @pytest.mark.asyncio
    async def test_unconfigured_preference_falls_back(self):
        """A preferred but unconfigured driver is ignored."""
        factory = ProviderFactory({
            ProviderName.E2B: driver(ProviderName.E2B),
            ProviderName.DOCKER: driver(ProviderName.DOCKER, configured=False),
        })

        provider = await factory.create_sandbox_with_fallback("docker")

        assert provider.provider_name == ProviderName.E2B

    @pytest.mark.asyncio
    async def test_unknown_preference(self):
        """An unknown driver name is a configuration error."""
        factory = ProviderFactory({ProviderName.E2B: driver(ProviderName.E2B)})

        with pytest.raises(ProviderConfigurationError):
            await factory.create_sandbox_with_fallback("vercel")

    @pytest.mark.asyncio
    async def test_nothing_configured(self):
        """No configured driver raises a configuration error."""
        factory = ProviderFactory({
            ProviderName.E2B: driver(ProviderName.E2B, configured=False),
            ProviderName.DOCKER: driver(ProviderName.DOCKER, configured=False),
        })

        with pytest.raises(ProviderConfigurationError, match="No sandbox provider available"):
            await factory.create_sandbox_with_fallback("auto")

    @pytest.mark.asyncio
    async def test_all_fail(self):
        """Every driver failing raises with each failure listed."""
        factory = ProviderFactory({
            ProviderName.E2B: driver(ProviderName.E2B, fails=True),
            ProviderName.DOCKER: driver(ProviderName.DOCKER, fails=True),
        })

        with pytest.raises(ProviderConfigurationError) as exc_info:
            await factory.create_sandbox_with_fallback("auto")

        assert "e2b: quota exceeded" in str(exc_info.value)
        assert "docker: quota exceeded" in str(exc_info.value)
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_default_preference_from_settings(self):
        """Without an argument SANDBOX_PROVIDER is used."""
        factory = ProviderFactory({
            ProviderName.E2B: driver(ProviderName.E2B),
            ProviderName.DOCKER: driver(ProviderName.DOCKER),
        })

        with patch("bwork.sandbox.factory.settings") as settings:
            settings.SANDBOX_PROVIDER = "docker"
            provider = await factory.create_sandbox_with_fallback()

        assert provider.provider_name == ProviderName.DOCKER


class TestTerminateById:
    """Tests for terminate_by_id()."""

    @pytest.mark.asyncio
    async def test_dispatches_to_driver(self):
        """Termination goes to the driver named on the record."""
        docker = driver(ProviderName.DOCKER)
        factory = ProviderFactory({ProviderName.DOCKER: docker})

        await factory.terminate_by_id("docker", "c0ffee")

        assert docker.terminated_ids == ["c0ffee"]

    @pytest.mark.asyncio
    async def test_unregistered_driver(self):
        """A driver missing from the registry is a configuration error."""
        factory = ProviderFactory({ProviderName.DOCKER: driver(ProviderName.DOCKER)})

        with pytest.raises(ProviderConfigurationError):
            await factory.terminate_by_id("e2b", "sbx-1")
