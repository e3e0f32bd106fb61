"""Post-restore cleanup of Odoo's signaling sequences.

Odoo uses sequences named base_registry_signaling and base_cache_signaling
to tell workers that the registry or caches are stale. Values carried over
from the source instance are meaningless here; Odoo recreates the
sequences on the next start.
"""

from dataclasses import dataclass

from odoo_restore.core.config import DEFAULT_SIGNALING_PATTERN
from odoo_restore.core.context import ExecutionContext
from odoo_restore.core.exceptions import ExecutionError, SequenceCleanupFailure
from odoo_restore.core.validation import quote_ident, quote_literal
from odoo_restore.services.collaborators import DatabaseIdentity, RoleDatabaseAdmin


FIELD_SEPARATOR = "|"


@dataclass(frozen=True)
class SignalingSequence:
    schema: str
    name: str

    @property
    def qualified_name(self) -> str:
        return f"{quote_ident(self.schema)}.{quote_ident(self.name)}"


def parse_sequence_rows(output: str) -> list[SignalingSequence]:
    """Parse psql unaligned tuples of the form schema|name."""
    sequences = []
    for row in output.splitlines():
        row = row.strip()
        if not row:
            continue
        schema, sep, name = row.partition(FIELD_SEPARATOR)
        if not sep or not schema or not name:
            continue
        sequences.append(SignalingSequence(schema=schema, name=name))
    return sequences


class SignalingSequenceCleaner:
    """Drop the signaling sequences of a freshly restored database."""

    def __init__(
        self,
        ctx: ExecutionContext,
        admin: RoleDatabaseAdmin,
        pattern: str = DEFAULT_SIGNALING_PATTERN,
    ) -> None:
        self.ctx = ctx
        self.admin = admin
        self.pattern = pattern

    def list_query(self) -> str:
        return (
            "SELECT sequence_schema, sequence_name "
            "FROM information_schema.sequences "
            f"WHERE sequence_name LIKE {quote_literal(self.pattern)} "
            "ORDER BY sequence_schema, sequence_name;"
        )

    def clean(self, identity: DatabaseIdentity) -> list[SignalingSequence]:
        """Drop every matching sequence as the database owner.

        Returns:
            The sequences that were dropped

        Raises:
            SequenceCleanupFailure: If listing or dropping fails
        """
        try:
            result = self.admin.run_statements_as_role(
                identity,
                sql=self.list_query(),
                description="Looking up signaling sequences",
            )
            sequences = parse_sequence_rows(result.stdout)

            if not sequences:
                self.ctx.console.info("No signaling sequences to drop")
                return []

            statements = "\n".join(
                f"DROP SEQUENCE IF EXISTS {seq.qualified_name} CASCADE;"
                for seq in sequences
            )
            self.admin.run_statements_as_role(
                identity,
                sql=statements,
                description=f"Dropping {len(sequences)} signaling sequence(s)",
            )
        except ExecutionError as e:
            raise SequenceCleanupFailure(
                f"Failed to drop signaling sequences in '{identity.database}'",
                details=e.details,
            ) from e

        for seq in sequences:
            self.ctx.console.verbose(f"Dropped {seq.schema}.{seq.name}")
        self.ctx.console.success(f"Dropped {len(sequences)} signaling sequence(s)")
        return sequences
