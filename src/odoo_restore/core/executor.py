"""Command execution for the restore pipeline.

Provides:
- Checked command execution with output capture
- SQL execution via psql, as the elevated OS user or as a password role
- Per-call environment (credentials never touch os.environ)
- Dry-run mode support
"""

import os
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from odoo_restore.core.context import ExecutionContext
from odoo_restore.core.exceptions import ExecutionError, PrerequisiteError


@dataclass
class CommandResult:
    """Result of a command execution."""
    command: list[str]
    return_code: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        """Check if command succeeded."""
        return self.return_code == 0


class CommandExecutor:
    """Safe command execution with dry-run support and output capture.

    Features:
    - Dry-run mode shows what would happen
    - Output capture for diagnostics
    - User switching (sudo -u)
    - Sensitive command masking
    - Scoped environment for credentials
    """

    def __init__(self, ctx: ExecutionContext) -> None:
        """Initialize executor with context.

        Args:
            ctx: Execution context with flags
        """
        self.ctx = ctx

    def require_commands(self, *names: str) -> None:
        """Fail early if required executables are missing.

        Raises:
            PrerequisiteError: If any command is not on PATH
        """
        missing = [name for name in names if not shutil.which(name)]
        if missing:
            raise PrerequisiteError(
                f"Required commands not found: {', '.join(missing)}",
                hint="Install the postgresql-client package",
            )

    def run(
        self,
        command: list[str],
        *,
        description: Optional[str] = None,
        check: bool = True,
        as_user: Optional[str] = None,
        sensitive: bool = False,
        env: Optional[dict[str, str]] = None,
        input_text: Optional[str] = None,
        cwd: Optional[Path] = None,
    ) -> CommandResult:
        """Execute a command safely.

        Args:
            command: Command as list of strings
            description: Human-readable description for logging
            check: Raise exception on non-zero exit
            as_user: Run as different OS user (via sudo -u)
            sensitive: Don't log the actual command
            env: Extra environment for this process only
            input_text: Text fed to the process on stdin
            cwd: Working directory

        Returns:
            CommandResult with output

        Raises:
            ExecutionError: If command fails and check=True
        """
        if as_user:
            command = ["sudo", "-u", as_user] + command

        if description:
            self.ctx.console.step(description)

        cmd_display = "<sensitive command>" if sensitive else shlex.join(command)
        self.ctx.console.debug(f"Running: {cmd_display}")

        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(f"Run: {cmd_display}")
            return CommandResult(command=command, return_code=0, stdout="", stderr="")

        # The child gets a copy; the parent's environment is never modified
        run_env = None
        if env:
            run_env = os.environ.copy()
            run_env.update(env)

        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                input=input_text,
                env=run_env,
                cwd=cwd,
            )
        except FileNotFoundError as e:
            raise ExecutionError(
                f"Command not found: {command[0]}",
                command=cmd_display,
                details=[str(e)],
            ) from e

        cmd_result = CommandResult(
            command=command,
            return_code=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
        )

        if check and result.returncode != 0:
            raise ExecutionError(
                f"Command failed: {description or cmd_display}",
                command=cmd_display,
                return_code=result.returncode,
                stderr=result.stderr,
            )

        return cmd_result

    def run_sql(
        self,
        sql: str,
        *,
        database: str = "postgres",
        as_user: str = "postgres",
        description: Optional[str] = None,
        check: bool = True,
    ) -> str:
        """Execute SQL via psql as a local OS user (peer authentication).

        The SQL is sent on stdin so that it never shows up in the process
        list.

        Args:
            sql: SQL statement(s) to execute
            database: Database to connect to
            as_user: OS and PostgreSQL user to run as
            description: Human-readable description
            check: Raise exception on error

        Returns:
            Query output (tuples only, unaligned)

        Raises:
            ExecutionError: If query fails and check=True
        """
        command = [
            "psql",
            "-X",
            "-q",
            "-v", "ON_ERROR_STOP=1",
            "-d", database,
            "-t",  # Tuples only (no headers)
            "-A",  # Unaligned output
            "-f", "-",
        ]

        if description:
            self.ctx.console.step(description)

        if self.ctx.dry_run or self.ctx.is_debug:
            sql_display = sql.strip()
            sql_display = sql_display[:200] + "..." if len(sql_display) > 200 else sql_display
            if self.ctx.dry_run:
                self.ctx.console.dry_run_msg(f"Execute SQL on '{database}': {sql_display}")
                return ""
            self.ctx.console.debug(f"SQL: {sql_display}")

        result = self.run(
            command,
            as_user=as_user,
            check=check,
            sensitive=True,  # SQL might contain a password
            input_text=sql,
        )

        return result.stdout.strip()

    def run_psql_as_role(
        self,
        *,
        role: str,
        password: str,
        database: str,
        host: str,
        port: int,
        sql: Optional[str] = None,
        sql_file: Optional[Path] = None,
        description: Optional[str] = None,
        check: bool = True,
    ) -> CommandResult:
        """Execute SQL via psql over TCP, authenticated as a password role.

        The password is placed in the environment of this one psql process
        and nowhere else.

        Args:
            role: PostgreSQL role to authenticate as
            password: Role password
            database: Database to connect to
            host: PostgreSQL host
            port: PostgreSQL port
            sql: SQL text (sent on stdin)
            sql_file: SQL file to execute (psql -f)
            description: Human-readable description
            check: Raise exception on error

        Returns:
            CommandResult with psql output
        """
        if (sql is None) == (sql_file is None):
            raise ValueError("Exactly one of sql or sql_file is required")

        command = [
            "psql",
            "-X",
            "-q",
            "-v", "ON_ERROR_STOP=1",
            "-h", host,
            "-p", str(port),
            "-U", role,
            "-d", database,
            "-t",
            "-A",
            "-f", str(sql_file) if sql_file is not None else "-",
        ]

        if self.ctx.dry_run:
            if description:
                self.ctx.console.step(description)
            target = str(sql_file) if sql_file is not None else (sql or "").strip()[:200]
            self.ctx.console.dry_run_msg(f"Execute as '{role}' on '{database}': {target}")
            return CommandResult(command=command, return_code=0, stdout="", stderr="")

        return self.run(
            command,
            description=description,
            check=check,
            env={"PGPASSWORD": password},
            input_text=sql,
        )
