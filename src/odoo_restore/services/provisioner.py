"""Role/database provisioning.

Always delete-then-create so the restore starts from an empty database
owned by a freshly (re)created role, even if the identity was used before.
"""

from pathlib import Path
from typing import Optional

from odoo_restore.core.context import ExecutionContext
from odoo_restore.core.exceptions import ExecutionError, ProvisioningFailure
from odoo_restore.core.executor import CommandExecutor, CommandResult
from odoo_restore.services.collaborators import DatabaseIdentity, RoleDatabaseAdmin
from odoo_restore.services.postgresql import PostgreSQLService


class ScriptRoleDatabaseAdmin:
    """RoleDatabaseAdmin that delegates drop/create to helper executables.

    Contract of the helpers:
        delete_script <db_user> <db_name>               (idempotent)
        create_script <db_user> <db_name> <db_password>

    Statement execution is delegated to PostgreSQLService.
    """

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        pg: PostgreSQLService,
        *,
        delete_script: Path,
        create_script: Path,
    ) -> None:
        self.ctx = ctx
        self.executor = executor
        self.pg = pg
        self.delete_script = delete_script
        self.create_script = create_script

    def delete_role_and_database(self, user: str, database: str) -> None:
        self.executor.run(
            [str(self.delete_script), user, database],
            description=f"Drop database '{database}' and role '{user}' ({self.delete_script.name})",
        )

    def create_role_and_database(self, identity: DatabaseIdentity) -> None:
        self.executor.run(
            [
                str(self.create_script),
                identity.user,
                identity.database,
                identity.password.get_secret_value(),
            ],
            description=f"Create role '{identity.user}' and database '{identity.database}' ({self.create_script.name})",
            sensitive=True,
        )

    def run_statements_as_role(
        self,
        identity: DatabaseIdentity,
        *,
        sql: Optional[str] = None,
        sql_file: Optional[Path] = None,
        description: Optional[str] = None,
    ) -> CommandResult:
        return self.pg.run_statements_as_role(
            identity, sql=sql, sql_file=sql_file, description=description,
        )

    def run_statements_as_elevated_role(
        self,
        database: str,
        sql: str,
        *,
        description: Optional[str] = None,
    ) -> str:
        return self.pg.run_statements_as_elevated_role(database, sql, description=description)


class RoleDatabaseProvisioner:
    """Obtain a clean role + database pair for the restore."""

    def __init__(self, ctx: ExecutionContext, admin: RoleDatabaseAdmin) -> None:
        self.ctx = ctx
        self.admin = admin

    def reprovision(self, identity: DatabaseIdentity) -> None:
        """Drop any existing role/database, then create them fresh.

        Raises:
            ProvisioningFailure: With the collaborator's diagnostic
        """
        try:
            self.admin.delete_role_and_database(identity.user, identity.database)
        except ExecutionError as e:
            raise ProvisioningFailure(
                f"Failed to drop existing database '{identity.database}' / role '{identity.user}'",
                hint="The role may own objects in other databases; reassign or drop them first",
                details=e.details,
            ) from e

        try:
            self.admin.create_role_and_database(identity)
        except ExecutionError as e:
            raise ProvisioningFailure(
                f"Failed to create role '{identity.user}' and database '{identity.database}'",
                details=e.details,
            ) from e

        self.ctx.console.success(
            f"Role '{identity.user}' and database '{identity.database}' ready"
        )
