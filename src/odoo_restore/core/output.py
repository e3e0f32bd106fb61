"""Console output for the restore CLI using Rich.

Provides:
- Prefixed, color-coded message levels routed to stdout or stderr
- Verbosity control (-q, -v, -vv)
- Dry-run indicators
- Numbered stage headers for the restore pipeline
- Result panels and the typed-name confirmation prompt
- Masking of registered secrets in everything printed
"""

from enum import IntEnum
from typing import Any, NamedTuple

from rich.console import Console as RichConsole
from rich.markup import escape
from rich.panel import Panel


MASK = "********"
MIN_SECRET_LENGTH = 4


class Verbosity(IntEnum):
    """Output verbosity levels."""
    QUIET = 0    # Errors only
    NORMAL = 1   # Standard output
    VERBOSE = 2  # Additional details
    DEBUG = 3    # Everything


class _Level(NamedTuple):
    prefix: str
    min_verbosity: Verbosity
    stderr: bool


_LEVELS: dict[str, _Level] = {
    "info": _Level("[green][INFO][/green] ", Verbosity.NORMAL, False),
    "success": _Level("[green][OK][/green] ", Verbosity.NORMAL, False),
    "step": _Level("[blue]->[/blue] ", Verbosity.NORMAL, False),
    "verbose": _Level("[dim]   ", Verbosity.VERBOSE, False),
    "debug": _Level("[cyan][DEBUG][/cyan] ", Verbosity.DEBUG, False),
    "warn": _Level("[yellow][WARN][/yellow] ", Verbosity.QUIET, True),
    "error": _Level("[red][ERROR][/red] ", Verbosity.QUIET, True),
    "hint": _Level("[cyan]Hint:[/cyan] ", Verbosity.QUIET, True),
}


class Console:
    """Centralized console output with Rich integration.

    Messages are escaped before printing, so paths and SQL fragments with
    square brackets are shown literally.
    """

    def __init__(self) -> None:
        self._console = RichConsole(highlight=False)
        self._err_console = RichConsole(stderr=True, highlight=False)
        self.verbosity = Verbosity.NORMAL
        self.dry_run = False
        self.no_color = False
        self._secrets: set[str] = set()

    def configure(
        self,
        verbosity: int = 1,
        dry_run: bool = False,
        no_color: bool = False,
    ) -> None:
        """Configure console output settings."""
        self.verbosity = Verbosity(max(Verbosity.QUIET, min(verbosity, Verbosity.DEBUG)))
        self.dry_run = dry_run
        self.no_color = no_color
        self._console = RichConsole(highlight=False, no_color=no_color)
        self._err_console = RichConsole(stderr=True, highlight=False, no_color=no_color)

    def register_secret(self, value: str) -> None:
        """Replace value with a mask wherever it appears in output.

        Values shorter than MIN_SECRET_LENGTH are ignored.
        """
        if len(value) >= MIN_SECRET_LENGTH:
            self._secrets.add(value)

    def _mask(self, text: str) -> str:
        for secret in self._secrets:
            text = text.replace(secret, MASK)
        return text

    def _emit(self, level: str, message: str) -> None:
        entry = _LEVELS[level]
        if self.verbosity < entry.min_verbosity:
            return
        text = entry.prefix + escape(self._mask(message))
        if level == "verbose":
            text += "[/dim]"
        (self._err_console if entry.stderr else self._console).print(text)

    def info(self, message: str) -> None:
        self._emit("info", message)

    def success(self, message: str) -> None:
        self._emit("success", message)

    def warn(self, message: str) -> None:
        """Warnings go to stderr and survive --quiet."""
        self._emit("warn", message)

    def error(self, message: str) -> None:
        """Errors go to stderr and survive --quiet."""
        self._emit("error", message)

    def debug(self, message: str) -> None:
        self._emit("debug", message)

    def verbose(self, message: str) -> None:
        self._emit("verbose", message)

    def step(self, message: str) -> None:
        self._emit("step", message)

    def hint(self, message: str) -> None:
        self._emit("hint", message)

    def stage(self, number: int, total: int, title: str) -> None:
        """Print a pipeline stage header, e.g. [3/9] Resolving data directory."""
        if self.verbosity >= Verbosity.NORMAL:
            self._console.print(
                f"\n[bold blue]\\[{number}/{total}][/bold blue] [bold]{escape(title)}[/bold]"
            )

    def dry_run_msg(self, message: str) -> None:
        """Print what would happen; silent outside dry-run."""
        if self.dry_run and self.verbosity >= Verbosity.NORMAL:
            self._console.print(f"[blue][DRY-RUN][/blue] Would: {escape(self._mask(message))}")

    # Raw output (Rich markup allowed, secrets still masked)
    def print(self, message: Any = "", **kwargs: Any) -> None:
        if self.verbosity >= Verbosity.NORMAL:
            self._console.print(self._mask(message) if isinstance(message, str) else message, **kwargs)

    def print_err(self, message: Any = "", **kwargs: Any) -> None:
        """Print to stderr regardless of verbosity."""
        self._err_console.print(self._mask(message) if isinstance(message, str) else message, **kwargs)

    def operation_summary(
        self,
        operation: str,
        success: bool,
        details: dict[str, Any],
    ) -> None:
        """Print a result panel.

        Failures are always shown (on stderr), successes respect verbosity.
        """
        status = "[green]SUCCESS[/green]" if success else "[red]FAILED[/red]"
        content = "\n".join(
            f"[bold]{escape(key)}:[/bold] {escape(self._mask(str(value)))}"
            for key, value in details.items()
        )
        panel = Panel(
            content,
            title=f"{operation} - {status}",
            border_style="green" if success else "red",
        )

        if not success:
            self._err_console.print(panel)
        elif self.verbosity >= Verbosity.NORMAL:
            self._console.print(panel)

    def confirm_critical(
        self,
        operation: str,
        resource_name: str,
        skip_confirm: bool = False,
    ) -> bool:
        """Ask the operator to type resource_name to go ahead.

        Returns False on any other answer, EOF or Ctrl+C.
        """
        if skip_confirm:
            return True

        self._console.print(
            f"\n[bold red]WARNING:[/bold red] You are about to {escape(operation)}.\n"
            "This action [bold]cannot be undone[/bold].\n"
        )

        try:
            response = self._console.input(
                f"Type [bold]{escape(resource_name)}[/bold] to confirm: "
            ).strip()
        except (EOFError, KeyboardInterrupt):
            return False

        return response == resource_name


# Global console instance
console = Console()
