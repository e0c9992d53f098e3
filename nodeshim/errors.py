"""Errors raised by the dispatcher.

Every error here is fatal for the invocation and maps to exit code 1.
They are raised before any process or container is started.
"""


class ShimError(RuntimeError):
    """Base class for dispatcher-level failures."""

    exit_code = 1


class ConfigurationError(ShimError, ValueError):
    """Invalid configuration file or environment setting."""


class RuntimeUnavailable(ShimError):
    """Container runtime is not installed or not running."""


class ToolNotFound(ShimError):
    """Local mode was requested but the tool is not installed on the host."""


class SocketNotFound(ShimError):
    """Socket bridging was requested but no runtime socket exists."""


class ContainerStartFailure(ShimError):
    """The container runtime could not be started."""
