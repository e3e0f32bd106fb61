"""Dump sanitizer.

Strips the statements of a plain-format pg_dump that bind it to the
environment it came from, so it can be replayed by an unprivileged owner
under a different role and database name.

This is a line filter, not a SQL parser. Each line is matched against an
ordered rule table; the first matching rule decides its category. Lines in
the three environment-bound categories are dropped, everything else is
written through unchanged and in order. Rows of COPY ... FROM stdin blocks
are never classified.

Known gap: a statement whose keyword is not on its first line (for example
an ALTER ... split before OWNER TO) cannot be recognised. Such continuation
lines are passed through and reported as anomalies.
"""

import re
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, Iterator, Optional

from odoo_restore.core.exceptions import SanitizationAnomaly


class StatementCategory(Enum):
    """Classification of a dump line."""
    DATA_OR_SCHEMA = "data-or-schema"
    PRIVILEGE = "privilege"
    ENVIRONMENT_SWITCH = "environment-switch"
    EXTENSION_MANAGEMENT = "extension-management"

    @property
    def elided(self) -> bool:
        return self is not StatementCategory.DATA_OR_SCHEMA


def _rule(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


# Order matters: the first match wins
SANITIZE_RULES: tuple[tuple[re.Pattern[str], StatementCategory], ...] = (
    # Database switching and database-level statements
    (_rule(r"^\s*\\connect\b"), StatementCategory.ENVIRONMENT_SWITCH),
    (_rule(r"^\s*CREATE\s+DATABASE\b"), StatementCategory.ENVIRONMENT_SWITCH),
    (_rule(r"^\s*ALTER\s+DATABASE\b"), StatementCategory.ENVIRONMENT_SWITCH),
    (_rule(r"^\s*DROP\s+DATABASE\b"), StatementCategory.ENVIRONMENT_SWITCH),

    # Extensions (pre-created as the admin user)
    (_rule(r"^\s*CREATE\s+EXTENSION\b"), StatementCategory.EXTENSION_MANAGEMENT),
    (_rule(r"^\s*COMMENT\s+ON\s+EXTENSION\b"), StatementCategory.EXTENSION_MANAGEMENT),
    (_rule(r"^\s*ALTER\s+EXTENSION\b"), StatementCategory.EXTENSION_MANAGEMENT),

    # Ownership, privileges and role switching
    (_rule(r"^\s*ALTER\s+DEFAULT\s+PRIVILEGES\b"), StatementCategory.PRIVILEGE),
    (_rule(r"^\s*ALTER\s.*\sOWNER\s+TO\s"), StatementCategory.PRIVILEGE),
    (_rule(r"^\s*GRANT\b"), StatementCategory.PRIVILEGE),
    (_rule(r"^\s*REVOKE\b"), StatementCategory.PRIVILEGE),
    (_rule(r"^\s*SET\s+ROLE\b"), StatementCategory.PRIVILEGE),
    (_rule(r"^\s*SET\s+SESSION\s+AUTHORIZATION\b"), StatementCategory.PRIVILEGE),
)

# An OWNER TO clause that does not start its statement
OWNER_CONTINUATION_PATTERN = _rule(r"^\s*OWNER\s+TO\b")

COPY_FROM_STDIN_PATTERN = _rule(r"^\s*COPY\s.*\sFROM\s+stdin\s*;\s*$")
COPY_TERMINATOR = "\\."


def classify_line(line: str) -> StatementCategory:
    """Classify a single dump line (outside COPY data)."""
    for pattern, category in SANITIZE_RULES:
        if pattern.search(line):
            return category
    return StatementCategory.DATA_OR_SCHEMA


class CopyBlockTracker:
    """Follows COPY ... FROM stdin blocks across a stream of dump lines.

    The COPY statement itself and everything after the terminator are
    statement lines; the rows in between (terminator included) are data.
    """

    def __init__(self) -> None:
        self.in_copy = False

    def is_data(self, line: str) -> bool:
        if self.in_copy:
            if line.rstrip("\r\n") == COPY_TERMINATOR:
                self.in_copy = False
            return True
        if COPY_FROM_STDIN_PATTERN.match(line):
            self.in_copy = True
        return False


def statement_lines(lines: Iterable[str]) -> Iterator[str]:
    """Yield the lines that are not COPY data rows."""
    tracker = CopyBlockTracker()
    for line in lines:
        if not tracker.is_data(line):
            yield line


@dataclass
class SanitizeReport:
    """What the sanitizer kept, dropped and flagged."""
    kept: int = 0
    elided: Counter = field(default_factory=Counter)
    anomalies: list[tuple[int, str]] = field(default_factory=list)

    @property
    def elided_total(self) -> int:
        return sum(self.elided.values())

    def as_dict(self) -> dict[str, int]:
        data = {"kept": self.kept}
        for category in StatementCategory:
            if category.elided:
                data[category.value] = self.elided.get(category, 0)
        data["anomalies"] = len(self.anomalies)
        return data


class DumpSanitizer:
    """Stateful line filter for one dump stream.

    Usage:
        sanitizer = DumpSanitizer()
        output = "".join(sanitizer.sanitize_lines(lines))
        sanitizer.report.elided_total
    """

    def __init__(self, *, strict: bool = False) -> None:
        self.strict = strict
        self.report = SanitizeReport()
        self._copy = CopyBlockTracker()

    def _flag(self, line_number: int, line: str) -> None:
        text = line.rstrip("\r\n")
        if self.strict:
            raise SanitizationAnomaly(
                f"Unrecognised statement shape at line {line_number}",
                line_number=line_number,
                line=text,
                hint="Rerun without --strict-sanitize to pass such lines through",
                details=[text[:200]],
            )
        self.report.anomalies.append((line_number, text))

    def sanitize_lines(self, lines: Iterable[str]) -> Iterator[str]:
        """Yield the lines to keep, in their original order.

        Raises:
            SanitizationAnomaly: In strict mode, at the first anomaly
        """
        for line_number, line in enumerate(lines, start=1):
            if self._copy.is_data(line):
                self.report.kept += 1
                yield line
                continue

            category = classify_line(line)
            if category.elided:
                self.report.elided[category] += 1
                continue

            if OWNER_CONTINUATION_PATTERN.match(line):
                self._flag(line_number, line)

            self.report.kept += 1
            yield line


def sanitize_text(text: str, *, strict: bool = False) -> str:
    """Sanitize a whole dump held in memory."""
    sanitizer = DumpSanitizer(strict=strict)
    return "".join(sanitizer.sanitize_lines(text.splitlines(keepends=True)))


def sanitize_file(
    src: Path,
    dst: Path,
    *,
    strict: bool = False,
    sanitizer: Optional[DumpSanitizer] = None,
) -> SanitizeReport:
    """Stream src into dst, dropping environment-bound lines.

    Bytes that are not valid UTF-8 and line endings are preserved as-is.

    Returns:
        The sanitize report
    """
    sanitizer = sanitizer or DumpSanitizer(strict=strict)
    with src.open("r", encoding="utf-8", errors="surrogateescape", newline="") as fin, \
            dst.open("w", encoding="utf-8", errors="surrogateescape", newline="") as fout:
        for line in sanitizer.sanitize_lines(fin):
            fout.write(line)
    return sanitizer.report
