"""
Sandbox exceptions.

Pipeline components report failures through result objects. These
exceptions are reserved for conditions that must cross component
boundaries: no usable provider, a driver used outside its lifetime,
a cancelled run, or an unknown record id.
"""


class SandboxError(Exception):
    """Base class for sandbox pipeline errors."""

    retryable: bool = True


class ProviderConfigurationError(SandboxError):
    """
    No sandbox driver is configured, or every configured driver failed
    at creation time. Entering the repair loop cannot help.
    """

    retryable = False


class SandboxNotActiveError(SandboxError):
    """A driver operation was called before create() or after terminate()."""


class PipelineCancelledError(SandboxError):
    """The run's cancellation token was triggered."""


class SandboxNotFoundError(SandboxError):
    """No sandbox record exists for the given id."""

    retryable = False
