"""
Error taxonomy for backend operations.

Every failure an operation can surface derives from ``UpmError`` so
the CLI can catch one type at the command boundary. Nothing here is
retried: the first error aborts the operation.
"""

from __future__ import annotations


class UpmError(Exception):
    """Base class for all backend errors."""


class ExternalToolError(UpmError):
    """An invoked executable failed to spawn or exited non-zero."""

    def __init__(
        self,
        message: str,
        cmd: list[str] | None = None,
        returncode: int | None = None,
        stderr: str = "",
    ):
        super().__init__(message)
        self.cmd = cmd or []
        self.returncode = returncode
        self.stderr = stderr


class ResponseFormatError(UpmError):
    """Tool or network output could not be decoded."""


class SpecfileMissingError(UpmError):
    """The specfile is required but does not exist."""


class LockfileMissingError(UpmError):
    """The lockfile is required but does not exist."""


class ParseError(UpmError):
    """A specfile or lockfile is structurally invalid."""


class ConfigError(UpmError):
    """Raised when upm.yml or an override is invalid."""


class UnknownBackendError(UpmError):
    """No backend is registered under the requested name."""
