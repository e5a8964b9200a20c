"""Error taxonomy for database operations.

Backup and recovery services convert these into structured results at their
public boundary. The slow query monitor and replica manager never wrap driver
errors; they re-raise them unchanged.
"""


class ResilienceError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(ResilienceError):
    """Missing or malformed configuration (connection URL, retention, schedule)."""


class ToolInvocationError(ResilienceError):
    """An external database tool was missing or exited with a non-zero status."""

    def __init__(self, tool: str, returncode: int | None, stderr: str = "") -> None:
        self.tool = tool
        self.returncode = returncode
        self.stderr = stderr.strip()
        if returncode is None:
            message = f"{tool} could not be started: {self.stderr}"
        else:
            message = f"{tool} failed with exit code {returncode}"
            if self.stderr:
                message = f"{message}: {self.stderr}"
        super().__init__(message)


class IntegrityError(ResilienceError):
    """A backup artifact is empty or its compression container is corrupt."""


class ResourceExhaustionError(ResilienceError):
    """The database refused another connection during a limit probe.

    This is the expected terminal condition of a connection-limit test.
    """

    def __init__(self, opened: int, cause: BaseException) -> None:
        self.opened = opened
        self.cause = cause
        super().__init__(str(cause) or type(cause).__name__)


class UploadError(ResilienceError):
    """Uploading a backup artifact to object storage failed."""
