"""Core framework components for the restore CLI."""

from odoo_restore.core.exceptions import (
    RestoreError,
    ConfigurationError,
    ValidationError,
    PrerequisiteError,
    ExecutionError,
    ArchiveError,
    MissingArchiveMember,
    InvalidArchive,
    AmbiguousFilestoreLayout,
    DataDirectoryUnresolvable,
    FilestoreDeploymentFailure,
    ProvisioningFailure,
    ExtensionCreationFailure,
    SanitizationAnomaly,
    SqlRestoreFailure,
    SequenceCleanupFailure,
    StageFailure,
    RestoreInterrupted,
)

from odoo_restore.core.context import ExecutionContext, create_context
from odoo_restore.core.output import console, Console, Verbosity
from odoo_restore.core.config import AppConfig, ToolConfig
from odoo_restore.core.audit import (
    AuditLogger,
    AuditEvent,
    AuditEventType,
    AuditResult,
    configure_audit_logger,
    get_audit_logger,
)
from odoo_restore.core.executor import CommandExecutor, CommandResult

__all__ = [
    # Exceptions
    "RestoreError",
    "ConfigurationError",
    "ValidationError",
    "PrerequisiteError",
    "ExecutionError",
    "ArchiveError",
    "MissingArchiveMember",
    "InvalidArchive",
    "AmbiguousFilestoreLayout",
    "DataDirectoryUnresolvable",
    "FilestoreDeploymentFailure",
    "ProvisioningFailure",
    "ExtensionCreationFailure",
    "SanitizationAnomaly",
    "SqlRestoreFailure",
    "SequenceCleanupFailure",
    "StageFailure",
    "RestoreInterrupted",
    # Context
    "ExecutionContext",
    "create_context",
    # Output
    "console",
    "Console",
    "Verbosity",
    # Config
    "AppConfig",
    "ToolConfig",
    # Audit
    "AuditLogger",
    "AuditEvent",
    "AuditEventType",
    "AuditResult",
    "configure_audit_logger",
    "get_audit_logger",
    # Executor
    "CommandExecutor",
    "CommandResult",
]
