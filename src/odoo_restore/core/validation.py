"""Input validation utilities.

Provides validation for:
- PostgreSQL role names and Odoo database names
- Protected system names that must never be dropped
- Identifier and literal quoting for generated SQL

All validators return the validated value or raise ValidationError.
"""

import re

from odoo_restore.core.exceptions import ValidationError


# Role names: conservative PostgreSQL identifier
ROLE_NAME_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

# Odoo accepts dots and dashes in database names (its own dbfilter pattern)
DATABASE_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_][a-zA-Z0-9_.-]*$")

# Maximum identifier length
MAX_IDENTIFIER_LENGTH = 63

# Protected resources
PROTECTED_DATABASES: frozenset[str] = frozenset({"postgres", "template0", "template1"})
PROTECTED_USERS: frozenset[str] = frozenset({"postgres", "root"})


def _check_length(value: str, identifier_type: str) -> None:
    if not value:
        raise ValidationError(
            f"{identifier_type.title()} name cannot be empty",
            hint="Provide a valid name",
        )

    if len(value) > MAX_IDENTIFIER_LENGTH:
        raise ValidationError(
            f"{identifier_type.title()} name exceeds maximum length "
            f"({len(value)} > {MAX_IDENTIFIER_LENGTH})",
            hint=f"Use a name with {MAX_IDENTIFIER_LENGTH} or fewer characters",
            details=[f"Provided: {value[:50]}..."],
        )


def validate_role_name(value: str) -> str:
    """Validate a PostgreSQL role name for the restored database owner.

    Rules:
    - Must start with letter or underscore
    - Can contain letters, digits, underscores
    - Max 63 characters
    - Cannot be a protected system role

    Raises:
        ValidationError: If validation fails
    """
    _check_length(value, "user")

    if not ROLE_NAME_PATTERN.match(value):
        raise ValidationError(
            f"Invalid user name: '{value}'",
            hint="Must start with a letter or underscore, contain only letters, digits, and underscores",
        )

    if value.lower() in PROTECTED_USERS:
        raise ValidationError(
            f"Cannot restore as protected system user: {value}",
            hint="The target role is dropped and recreated; pick a dedicated role",
        )

    return value


def validate_database_name(value: str) -> str:
    """Validate an Odoo database name.

    Rules:
    - Letters, digits, underscores, dots and dashes
    - Cannot start with a dot or dash
    - Max 63 characters
    - Cannot be a protected system database

    Raises:
        ValidationError: If validation fails
    """
    _check_length(value, "database")

    if not DATABASE_NAME_PATTERN.match(value):
        raise ValidationError(
            f"Invalid database name: '{value}'",
            hint="Use letters, digits, '_', '.' or '-' (not as first character)",
        )

    if value.lower() in PROTECTED_DATABASES:
        raise ValidationError(
            f"Cannot restore into protected system database: {value}",
            hint="System databases (postgres, template0, template1) cannot be replaced",
        )

    return value


def validate_password(value: str) -> str:
    """Validate the password for the new role.

    Only emptiness is checked; the caller owns the password policy.
    """
    if not value:
        raise ValidationError(
            "Database password cannot be empty",
            hint="Pass the password the instance will connect with",
        )
    if "\x00" in value:
        raise ValidationError("Database password cannot contain NUL bytes")
    return value


def quote_ident(value: str) -> str:
    """Quote a SQL identifier (equivalent of PostgreSQL quote_ident)."""
    return '"' + value.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    """Quote a SQL string literal (equivalent of PostgreSQL quote_literal)."""
    escaped = value.replace("'", "''")
    if "\\" in escaped:
        return "E'" + escaped.replace("\\", "\\\\") + "'"
    return "'" + escaped + "'"
