"""Extension preseeding.

The restore role cannot create extensions, so every extension declared in
the dump is created beforehand as the admin user. The declarations are
then stripped from the dump by the sanitizer.
"""

import re
from pathlib import Path
from typing import Iterable

from odoo_restore.core.context import ExecutionContext
from odoo_restore.core.exceptions import ExecutionError, ExtensionCreationFailure
from odoo_restore.core.validation import quote_ident
from odoo_restore.services.collaborators import RoleDatabaseAdmin
from odoo_restore.services.sanitizer import statement_lines


CREATE_EXTENSION_PATTERN = re.compile(
    r'^\s*CREATE\s+EXTENSION(?:\s+IF\s+NOT\s+EXISTS)?\s+'
    r'(?:"(?P<quoted>(?:[^"]|"")+)"|(?P<bare>[A-Za-z0-9_]+))',
    re.IGNORECASE,
)


def find_extensions(lines: Iterable[str]) -> list[str]:
    """Collect extension names from CREATE EXTENSION lines.

    Quoted names are taken whole ("uuid-ossp" gives uuid-ossp). COPY data
    rows are skipped. Names are deduplicated; first-seen order is kept.
    """
    found: dict[str, None] = {}
    for line in statement_lines(lines):
        match = CREATE_EXTENSION_PATTERN.match(line)
        if not match:
            continue
        quoted = match.group("quoted")
        name = quoted.replace('""', '"') if quoted is not None else match.group("bare")
        found.setdefault(name, None)
    return list(found)


def find_extensions_in_file(dump_path: Path) -> list[str]:
    with dump_path.open(encoding="utf-8", errors="surrogateescape") as f:
        return find_extensions(f)


class ExtensionPreseeder:
    """Create declared extensions in the target database as the admin user."""

    def __init__(self, ctx: ExecutionContext, admin: RoleDatabaseAdmin) -> None:
        self.ctx = ctx
        self.admin = admin

    def seed(self, database: str, extensions: list[str]) -> list[str]:
        """Run CREATE EXTENSION IF NOT EXISTS for each name.

        Returns:
            The extensions that were (idempotently) created

        Raises:
            ExtensionCreationFailure: On the first failing extension
        """
        if not extensions:
            self.ctx.console.info("No extensions declared in dump")
            return []

        for name in extensions:
            try:
                self.admin.run_statements_as_elevated_role(
                    database,
                    f"CREATE EXTENSION IF NOT EXISTS {quote_ident(name)};",
                    description=f"CREATE EXTENSION IF NOT EXISTS \"{name}\"",
                )
            except ExecutionError as e:
                raise ExtensionCreationFailure(
                    f"Failed to create extension '{name}' in '{database}'",
                    extension=name,
                    hint="Install the package providing the extension on this host",
                    details=e.details,
                ) from e

        self.ctx.console.success(f"Extensions ready: {', '.join(extensions)}")
        return list(extensions)
