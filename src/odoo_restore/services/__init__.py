"""Restore pipeline stages and their collaborators."""

from odoo_restore.services.collaborators import DatabaseIdentity, RoleDatabaseAdmin
from odoo_restore.services.postgresql import PostgreSQLService
from odoo_restore.services.provisioner import RoleDatabaseProvisioner, ScriptRoleDatabaseAdmin
from odoo_restore.services.pipeline import (
    RestorePipeline,
    RestoreRequest,
    RestoreResult,
    RestoreStage,
)

__all__ = [
    "DatabaseIdentity",
    "RoleDatabaseAdmin",
    "PostgreSQLService",
    "RoleDatabaseProvisioner",
    "ScriptRoleDatabaseAdmin",
    "RestorePipeline",
    "RestoreRequest",
    "RestoreResult",
    "RestoreStage",
]
