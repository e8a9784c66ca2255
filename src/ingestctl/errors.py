"""
Exception taxonomy for ingestctl.

Every error the CLI can halt on derives from ``ProvisioningError``, a
``click.ClickException``, so an uncaught instance prints its message and
exits with status 1. ``PolicyConflictError`` and ``RegistrationWarning``
are raised to the step that owns the decision and are normally caught
there: the step degrades and carries on.
"""

from __future__ import annotations

from typing import Optional, Sequence

import click


class ProvisioningError(click.ClickException):
    """Base class for provisioning failures."""

    exit_code = 1


class UserInputError(ProvisioningError):
    """Missing or invalid token, bad domain, or a declined confirmation."""


class ToolMissingError(ProvisioningError):
    """A required executable is not installed."""

    def __init__(self, tool: str, hint: str = ""):
        self.tool = tool
        message = f"{tool} not found in PATH."
        if hint:
            message += f"\n{hint}"
        super().__init__(message)


class AuthError(ProvisioningError):
    """Operator is not logged in or credentials could not be refreshed."""


class CommandFailure(ProvisioningError):
    """Rich error for subprocess failures with context."""

    def __init__(
        self,
        cmd: Sequence[str],
        returncode: int,
        stdout: str,
        stderr: str,
        context: str = "",
    ):
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.context = context
        super().__init__(self._format_message())

    @classmethod
    def from_result(cls, result, context: str = ""):
        """Build from a ``CommandResult``."""
        return cls(result.cmd, result.exit_code, result.stdout, result.stderr, context=context)

    def _format_message(self) -> str:
        parts = []
        if self.context:
            parts.append(self.context)
        parts.append(f"Command: {' '.join(self.cmd)}")
        parts.append(f"Exit code: {self.returncode}")
        if self.stderr:
            parts.append(f"Error: {self.stderr.strip()}")
        if self.stdout and self.returncode != 0:
            parts.append(f"Output: {self.stdout.strip()}")
        return "\n".join(parts)


class TransientCloudError(CommandFailure):
    """Propagation delay that did not clear after the single retry."""


class PolicyConflictError(CommandFailure):
    """An organization policy rejected the operation."""


class FatalProvisioningError(CommandFailure):
    """Unexpected non-zero exit from a mutating command."""


class StorageError(ProvisioningError):
    """The local state medium could not be read or written."""

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        super().__init__(message)


class RegistrationWarning(ProvisioningError):
    """The registry was unreachable or rejected a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)
