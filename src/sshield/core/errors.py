"""Error types raised by sshield."""

from pathlib import Path


class SSHieldError(Exception):
    """Base class for all sshield errors."""

    pass


class NotFoundError(SSHieldError):
    """Raised when a project, key, server or file does not exist."""

    pass


class ConflictError(SSHieldError):
    """Raised when an ID or name is already taken."""

    pass


class InvalidOperationError(SSHieldError):
    """Raised when an operation is not allowed in the current state."""

    pass


class AuthRequiredError(SSHieldError):
    """Raised when a key needs a passphrase that is not available."""

    pass


class ExternalToolError(SSHieldError):
    """Raised when an SSH toolchain command fails or returns garbage."""

    def __init__(
        self,
        message: str,
        command: list[str] | None = None,
        returncode: int | None = None,
        stderr: str = "",
    ) -> None:
        """Initialize external tool error.

        Args:
            message: Human readable description.
            command: Command line that was executed.
            returncode: Exit code of the process, if it ran.
            stderr: Captured standard error.
        """
        details = message
        if returncode is not None:
            details += f" (exit code {returncode})"
        if stderr.strip():
            details += f": {stderr.strip()}"
        super().__init__(details)
        self.command = command or []
        self.returncode = returncode
        self.stderr = stderr


class IOFailureError(SSHieldError):
    """Raised when a filesystem operation fails or a file is malformed."""

    def __init__(self, message: str, path: Path | str | None = None) -> None:
        super().__init__(message)
        self.path = Path(path) if path is not None else None
