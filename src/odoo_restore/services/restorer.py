"""Replay a sanitized dump as the restored database's owner."""

from pathlib import Path

from odoo_restore.core.context import ExecutionContext
from odoo_restore.core.exceptions import ExecutionError, SqlRestoreFailure
from odoo_restore.services.collaborators import DatabaseIdentity, RoleDatabaseAdmin


class SqlRestorer:
    """Execute the sanitized dump in the target database.

    Every object created by the dump is owned by the role that runs it, so
    no ownership statements are needed afterwards.
    """

    def __init__(self, ctx: ExecutionContext, admin: RoleDatabaseAdmin) -> None:
        self.ctx = ctx
        self.admin = admin

    def restore(self, identity: DatabaseIdentity, sanitized_dump: Path) -> None:
        """Run the dump with psql, stopping at the first error.

        Raises:
            SqlRestoreFailure: With psql's diagnostic; the database may be
                partially populated
        """
        if not self.ctx.dry_run and not sanitized_dump.is_file():
            raise SqlRestoreFailure(f"Sanitized dump not found: {sanitized_dump}")

        try:
            self.admin.run_statements_as_role(
                identity,
                sql_file=sanitized_dump,
                description=f"Restoring dump into '{identity.database}' as '{identity.user}'",
            )
        except ExecutionError as e:
            raise SqlRestoreFailure(
                f"SQL restore into '{identity.database}' failed",
                hint="The database is partially restored; fix the dump and rerun",
                details=e.details,
            ) from e

        self.ctx.console.success(f"Dump restored into '{identity.database}'")
