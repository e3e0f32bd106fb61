"""PostgreSQL service abstraction.

Implements the role/database collaborator on top of psql:
- elevated work runs as the local admin user over peer authentication
- restore work runs over TCP as the new role with a per-call password
"""

from pathlib import Path
from typing import Optional

from odoo_restore.core.context import ExecutionContext
from odoo_restore.core.executor import CommandExecutor, CommandResult
from odoo_restore.core.validation import quote_ident, quote_literal
from odoo_restore.services.collaborators import DatabaseIdentity


class PostgreSQLService:
    """psql-backed implementation of RoleDatabaseAdmin.

    All operations:
    - Respect dry-run mode
    - Quote every identifier and literal
    - Keep passwords off the command line
    """

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        *,
        host: str = "127.0.0.1",
        port: int = 5432,
        admin_user: str = "postgres",
        admin_database: str = "postgres",
    ) -> None:
        """Initialize PostgreSQL service.

        Args:
            ctx: Execution context
            executor: Command executor
            host: PostgreSQL host for role connections
            port: PostgreSQL port
            admin_user: Local OS/PostgreSQL superuser for elevated work
            admin_database: Maintenance database for cluster-level SQL
        """
        self.ctx = ctx
        self.executor = executor
        self.host = host
        self.port = port
        self.admin_user = admin_user
        self.admin_database = admin_database

    def _run_admin_sql(
        self,
        sql: str,
        *,
        database: Optional[str] = None,
        description: Optional[str] = None,
        check: bool = True,
    ) -> str:
        return self.executor.run_sql(
            sql,
            database=database or self.admin_database,
            as_user=self.admin_user,
            description=description,
            check=check,
        )

    # =========================================================================
    # Existence checks
    # =========================================================================

    def database_exists(self, name: str) -> bool:
        if self.ctx.dry_run:
            return False

        result = self._run_admin_sql(
            f"SELECT 1 FROM pg_database WHERE datname = {quote_literal(name)}",
            check=False,
        )
        return bool(result.strip())

    def role_exists(self, name: str) -> bool:
        if self.ctx.dry_run:
            return False

        result = self._run_admin_sql(
            f"SELECT 1 FROM pg_roles WHERE rolname = {quote_literal(name)}",
            check=False,
        )
        return bool(result.strip())

    # =========================================================================
    # Role/database lifecycle
    # =========================================================================

    def delete_role_and_database(self, user: str, database: str) -> None:
        """Drop the database (terminating its sessions) and then the role.

        Idempotent: missing objects are skipped.

        Raises:
            ExecutionError: If a drop fails
        """
        if self.database_exists(database):
            self._run_admin_sql(
                f"""
                SELECT pg_terminate_backend(pid)
                FROM pg_stat_activity
                WHERE datname = {quote_literal(database)}
                AND pid <> pg_backend_pid()
                """,
                description=f"Terminate connections to '{database}'",
                check=False,
            )
        else:
            self.ctx.console.verbose(f"Database '{database}' does not exist")

        self._run_admin_sql(
            f"DROP DATABASE IF EXISTS {quote_ident(database)}",
            description=f"Drop database '{database}'",
        )
        self._run_admin_sql(
            f"DROP ROLE IF EXISTS {quote_ident(user)}",
            description=f"Drop role '{user}'",
        )

    def create_role_and_database(self, identity: DatabaseIdentity) -> None:
        """Create a LOGIN role with a SCRAM-SHA-256 password and its database.

        The role gets no elevated attributes; it owns the new database.

        Raises:
            ExecutionError: If creation fails
        """
        user = identity.user
        options = "NOSUPERUSER NOCREATEDB NOCREATEROLE LOGIN INHERIT NOREPLICATION"
        verb = "ALTER" if self.role_exists(user) else "CREATE"

        # Plain literal on stdin; no dollar-quoted block the password could close
        password = quote_literal(identity.password.get_secret_value())
        sql = (
            "SET password_encryption = 'scram-sha-256';\n"
            f"{verb} ROLE {quote_ident(user)} WITH {options} PASSWORD {password};\n"
        )

        self._run_admin_sql(sql, description=f"Create role '{user}' (SCRAM-SHA-256)")

        self._run_admin_sql(
            f"CREATE DATABASE {quote_ident(identity.database)} "
            f"OWNER {quote_ident(user)} ENCODING 'UTF8' TEMPLATE template0",
            description=f"Create database '{identity.database}' owned by '{user}'",
        )

    # =========================================================================
    # Statement execution
    # =========================================================================

    def run_statements_as_role(
        self,
        identity: DatabaseIdentity,
        *,
        sql: Optional[str] = None,
        sql_file: Optional[Path] = None,
        description: Optional[str] = None,
    ) -> CommandResult:
        """Execute SQL as the restored database's owner.

        Raises:
            ExecutionError: On the first failing statement
        """
        return self.executor.run_psql_as_role(
            role=identity.user,
            password=identity.password.get_secret_value(),
            database=identity.database,
            host=self.host,
            port=self.port,
            sql=sql,
            sql_file=sql_file,
            description=description,
        )

    def run_statements_as_elevated_role(
        self,
        database: str,
        sql: str,
        *,
        description: Optional[str] = None,
    ) -> str:
        """Execute SQL in a database as the admin user.

        Raises:
            ExecutionError: If the SQL fails
        """
        return self._run_admin_sql(sql, database=database, description=description)
