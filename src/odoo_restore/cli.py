"""CLI entry point using Typer.

    odoo-restore DB_USER DB_NAME DB_PASSWORD BACKUP_ARCHIVE [CONFIG_PATH]

Restores an Odoo backup archive (dump.sql + filestore/) under a new role
and database name on this host.
"""

import os
from pathlib import Path
from typing import Annotated, Optional

import click
import typer
from rich.console import Console
from rich.markup import escape
from typer.core import TyperCommand

from odoo_restore import __version__
from odoo_restore.core.audit import configure_audit_logger
from odoo_restore.core.config import DEFAULT_CONFIG_PATH, AppConfig
from odoo_restore.core.context import ExecutionContext, create_context
from odoo_restore.core.exceptions import PrerequisiteError, RestoreError
from odoo_restore.core.executor import CommandExecutor
from odoo_restore.core.output import console as app_console
from odoo_restore.services.collaborators import DatabaseIdentity, RoleDatabaseAdmin
from odoo_restore.services.pipeline import RestorePipeline, RestoreRequest
from odoo_restore.services.postgresql import PostgreSQLService
from odoo_restore.services.provisioner import ScriptRoleDatabaseAdmin


app = typer.Typer(
    name="odoo-restore",
    help="Restore an Odoo backup under a new database role and name.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=True,
    pretty_exceptions_show_locals=False,
)


# Type aliases for common options
DryRunOption = Annotated[
    bool,
    typer.Option(
        "--dry-run",
        help="Preview changes without executing. Shows what would happen.",
        is_flag=True,
    ),
]

YesOption = Annotated[
    bool,
    typer.Option(
        "--yes",
        "-y",
        help="Skip the confirmation prompt.",
        is_flag=True,
    ),
]

StrictSanitizeOption = Annotated[
    bool,
    typer.Option(
        "--strict-sanitize",
        help="Abort when the dump contains statements the sanitizer cannot classify.",
        is_flag=True,
    ),
]

VerboseOption = Annotated[
    int,
    typer.Option(
        "--verbose",
        "-v",
        count=True,
        help="Increase output verbosity. Can be repeated (-v, -vv).",
    ),
]

QuietOption = Annotated[
    bool,
    typer.Option(
        "--quiet",
        "-q",
        help="Suppress non-essential output. Only show errors.",
        is_flag=True,
    ),
]

NoColorOption = Annotated[
    bool,
    typer.Option(
        "--no-color",
        help="Disable colored output.",
        is_flag=True,
    ),
]

ConfigOption = Annotated[
    Optional[Path],
    typer.Option(
        "--config",
        "-c",
        help=f"Path to tool configuration file. Default: {DEFAULT_CONFIG_PATH}",
        exists=False,
        file_okay=True,
        dir_okay=False,
    ),
]


class RestoreCommand(TyperCommand):
    """Exit 1 on usage errors (wrong argument count, bad option)."""

    def make_context(self, info_name, args, parent=None, **extra):
        try:
            return super().make_context(info_name, args, parent=parent, **extra)
        except click.UsageError as e:
            e.exit_code = 1
            raise


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console = Console()
        console.print(f"odoo-restore version {__version__}")
        raise typer.Exit()


def handle_error(error: RestoreError) -> None:
    """Handle a RestoreError by printing formatted error and exiting."""
    app_console.error(error.message)

    if error.stage:
        app_console.print_err(f"  [dim]Stage: {escape(error.stage)}[/dim]")

    if error.details:
        for detail in error.details:
            app_console.print_err(f"  [dim]{escape(detail)}[/dim]")

    if error.hint:
        app_console.hint(error.hint)

    raise typer.Exit(error.exit_code)


def require_root() -> None:
    """Fail unless running as root.

    Raises:
        PrerequisiteError: If the effective user is not root
    """
    if os.geteuid() != 0:
        raise PrerequisiteError(
            "This operation requires root privileges",
            hint="Run with: sudo odoo-restore ... (or preview with --dry-run)",
        )


def build_admin(
    ctx: ExecutionContext,
    executor: CommandExecutor,
    app_config: AppConfig,
) -> RoleDatabaseAdmin:
    """Pick the role/database collaborator from configuration."""
    pg_config = app_config.postgres
    pg = PostgreSQLService(
        ctx,
        executor,
        host=pg_config.host,
        port=pg_config.port,
        admin_user=pg_config.admin_user,
        admin_database=pg_config.admin_database,
    )

    scripts = app_config.provisioner.scripts
    if scripts is not None:
        delete_script, create_script = scripts
        ctx.console.verbose(f"Using provisioning helpers {delete_script} / {create_script}")
        return ScriptRoleDatabaseAdmin(
            ctx,
            executor,
            pg,
            delete_script=delete_script,
            create_script=create_script,
        )
    return pg


@app.command(cls=RestoreCommand)
def restore(
    db_user: Annotated[str, typer.Argument(help="Role that will own the restored database")],
    db_name: Annotated[str, typer.Argument(help="Name of the restored database")],
    db_password: Annotated[str, typer.Argument(help="Password for the new role")],
    backup_archive: Annotated[Path, typer.Argument(help="Backup archive (.zip with dump.sql and filestore/)")],
    config_path: Annotated[
        Optional[Path],
        typer.Argument(help="Odoo configuration file. Default: /etc/odoo/odoo.conf"),
    ] = None,
    config: ConfigOption = None,
    dry_run: DryRunOption = False,
    yes: YesOption = False,
    strict_sanitize: StrictSanitizeOption = False,
    verbose: VerboseOption = 0,
    quiet: QuietOption = False,
    no_color: NoColorOption = False,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """Restore an Odoo backup under a new role and database name.

    [bold]What happens:[/bold]
    - The filestore replaces <data_dir>/filestore/DB_NAME
    - DB_NAME and DB_USER are dropped and recreated
    - Extensions are created as the admin user
    - The dump is restored as DB_USER (ownership and grants removed)
    - Odoo's signaling sequences are dropped

    [bold]Examples:[/bold]
        odoo-restore acme_user acme 's3cret' /backups/acme.zip
        odoo-restore acme_user acme 's3cret' /backups/acme.zip /etc/odoo/odoo.conf --yes
        odoo-restore acme_user acme 's3cret' /backups/acme.zip --dry-run -v
    """
    ctx = create_context(
        dry_run=dry_run,
        yes=yes,
        strict_sanitize=strict_sanitize,
        verbose=verbose,
        quiet=quiet,
        no_color=no_color,
        config=config,
    )

    ctx.console.register_secret(db_password)

    try:
        identity = DatabaseIdentity.create(db_user, db_name, db_password)

        if not ctx.dry_run:
            require_root()

        app_config = ctx.config
        audit = configure_audit_logger(
            log_path=app_config.audit.log_path,
            enabled=app_config.audit.enabled and not ctx.dry_run,
        )

        executor = CommandExecutor(ctx)
        if not ctx.dry_run:
            executor.require_commands("psql")
        admin = build_admin(ctx, executor, app_config)

        if ctx.should_confirm:
            confirmed = ctx.console.confirm_critical(
                f"replace database '{identity.database}', role '{identity.user}' "
                "and their filestore",
                identity.database,
            )
            if not confirmed:
                ctx.console.warn("Restore cancelled")
                raise typer.Exit(1)

        if ctx.dry_run:
            ctx.console.warn("DRY-RUN MODE - no changes will be made")

        pipeline = RestorePipeline(ctx, admin, app_config, audit=audit)
        result = pipeline.run(
            RestoreRequest(
                identity=identity,
                archive_path=backup_archive,
                instance_config_path=config_path,
            )
        )
    except RestoreError as e:
        handle_error(e)
    except KeyboardInterrupt:
        app_console.error("Interrupted")
        raise typer.Exit(1) from None

    ctx.console.operation_summary("Restore", True, result.summary_items())


if __name__ == "__main__":
    app()
