from __future__ import annotations

EXIT_OK = 0
EXIT_FATAL = 1


class LauncherError(Exception):
    """Base class for launcher errors that must reach the control loop."""


class ElevationRequiredError(LauncherError):
    """The game server cannot be spawned without higher privileges.

    Retrying the same launch cannot succeed, so this aborts the whole service.
    """


class OperationCancelled(LauncherError):
    """Raised when a blocking step is interrupted by the stop event."""
