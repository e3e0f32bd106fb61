"""Collaborator interfaces for the role/database side of a restore.

The pipeline never builds shell strings; every external call goes through
one of these typed methods and returns a checked result or raises
ExecutionError.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol

from pydantic import SecretStr

from odoo_restore.core.executor import CommandResult
from odoo_restore.core.validation import (
    validate_database_name,
    validate_password,
    validate_role_name,
)


@dataclass(frozen=True)
class DatabaseIdentity:
    """The (role, database, password) triple the restore is rehomed under."""
    user: str
    database: str
    password: SecretStr = field(repr=False)

    @classmethod
    def create(cls, user: str, database: str, password: str) -> "DatabaseIdentity":
        """Validate and build an identity.

        Raises:
            ValidationError: If any component is invalid
        """
        return cls(
            user=validate_role_name(user),
            database=validate_database_name(database),
            password=SecretStr(validate_password(password)),
        )


class RoleDatabaseAdmin(Protocol):
    """Operations the pipeline needs from the database host."""

    def delete_role_and_database(self, user: str, database: str) -> None:
        """Drop the database and role if they exist."""
        ...

    def create_role_and_database(self, identity: DatabaseIdentity) -> None:
        """Create a login role and a database it owns."""
        ...

    def run_statements_as_role(
        self,
        identity: DatabaseIdentity,
        *,
        sql: Optional[str] = None,
        sql_file: Optional[Path] = None,
        description: Optional[str] = None,
    ) -> CommandResult:
        """Execute SQL in identity.database, authenticated as identity.user."""
        ...

    def run_statements_as_elevated_role(
        self,
        database: str,
        sql: str,
        *,
        description: Optional[str] = None,
    ) -> str:
        """Execute SQL in database as the administrative role."""
        ...
