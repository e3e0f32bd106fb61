"""Custom exceptions for the restore CLI.

All exceptions provide:
- Clear error messages
- Optional hints for resolution
- Optional details for debugging
- The pipeline stage that raised them (set by the orchestrator)

Every failure maps to exit code 1; success is the only other outcome.
"""

from typing import Optional


class RestoreError(Exception):
    """Base exception for all restore errors.

    Attributes:
        message: Human-readable error description
        hint: Suggested action to resolve the error
        details: Additional context for debugging
        stage: Pipeline stage that failed (None outside the pipeline)
        exit_code: Shell exit code
    """

    exit_code: int = 1

    def __init__(
        self,
        message: str,
        *,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.details = details or []
        self.stage: Optional[str] = None

    def __str__(self) -> str:
        return self.message


class ConfigurationError(RestoreError):
    """Tool configuration errors.

    Raised when:
    - Config file unreadable
    - Invalid YAML syntax
    - Invalid configuration values
    """


class ValidationError(RestoreError):
    """Input validation errors.

    Raised when:
    - Invalid role or database names
    - Protected system names used as restore target
    - Empty password
    """


class PrerequisiteError(RestoreError):
    """Missing prerequisites.

    Raised when:
    - psql not found
    - Insufficient permissions
    """


class ExecutionError(RestoreError):
    """Command execution failures.

    Raised when:
    - Shell command returns non-zero exit code
    - SQL statement fails
    """

    def __init__(
        self,
        message: str,
        *,
        command: Optional[str] = None,
        return_code: Optional[int] = None,
        stderr: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        if not details:
            details = []
        if return_code is not None:
            details.append(f"Exit code: {return_code}")
        if stderr:
            details.append(f"Error output: {stderr.strip()}")
        super().__init__(message, hint=hint, details=details)
        self.command = command
        self.return_code = return_code
        self.stderr = stderr


# Pipeline stage exceptions

class ArchiveError(RestoreError):
    """Backup archive could not be used."""


class MissingArchiveMember(ArchiveError):
    """The archive lacks dump.sql or filestore/ (or does not exist)."""


class InvalidArchive(ArchiveError):
    """The archive is corrupt, unsupported, or contains unsafe entries."""


class AmbiguousFilestoreLayout(RestoreError):
    """The filestore member cannot be classified safely."""


class DataDirectoryUnresolvable(RestoreError):
    """The instance data directory cannot be determined.

    Raised when:
    - Instance config exists but cannot be read
    - data_dir is empty or not an absolute path
    """


class FilestoreDeploymentFailure(RestoreError):
    """Copying the filestore into the data directory failed.

    The destination may be left partially populated.
    """


class ProvisioningFailure(RestoreError):
    """Dropping or creating the role/database pair failed."""


class ExtensionCreationFailure(RestoreError):
    """Pre-creating an extension as the elevated role failed."""

    def __init__(
        self,
        message: str,
        *,
        extension: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message, hint=hint, details=details)
        self.extension = extension


class SanitizationAnomaly(RestoreError):
    """A dump line has an unexpected shape.

    Anomalous lines are always passed through; this is only raised in
    strict mode.
    """

    def __init__(
        self,
        message: str,
        *,
        line_number: Optional[int] = None,
        line: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message, hint=hint, details=details)
        self.line_number = line_number
        self.line = line


class SqlRestoreFailure(RestoreError):
    """Executing the sanitized dump failed.

    The database may be left partially populated.
    """


class SequenceCleanupFailure(RestoreError):
    """Dropping signaling sequences failed."""


class StageFailure(RestoreError):
    """An unexpected error escaped a pipeline stage."""


class RestoreInterrupted(StageFailure):
    """The process received SIGTERM or SIGHUP during a stage."""
