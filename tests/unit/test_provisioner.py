"""Unit tests for role/database provisioning."""

from pathlib import Path
from unittest.mock import MagicMock, call

import pytest

from odoo_restore.core.context import create_context
from odoo_restore.core.exceptions import ExecutionError, ProvisioningFailure
from odoo_restore.services.collaborators import DatabaseIdentity
from odoo_restore.services.postgresql import PostgreSQLService
from odoo_restore.services.provisioner import RoleDatabaseProvisioner, ScriptRoleDatabaseAdmin


@pytest.fixture
def identity() -> DatabaseIdentity:
    return DatabaseIdentity.create("u1", "d1", "p1$secret")


@pytest.fixture
def executor() -> MagicMock:
    mock = MagicMock()
    mock.run_sql.return_value = ""
    return mock


class TestRoleDatabaseProvisioner:
    """Tests for delete-then-create provisioning."""

    def test_delete_before_create(self, identity):
        """The old pair is dropped before the new one is created."""
        admin = MagicMock()

        RoleDatabaseProvisioner(create_context(), admin).reprovision(identity)

        assert admin.mock_calls == [
            call.delete_role_and_database("u1", "d1"),
            call.create_role_and_database(identity),
        ]

    def test_delete_failure_stops(self, identity):
        """A failed drop aborts before anything is created."""
        admin = MagicMock()
        admin.delete_role_and_database.side_effect = ExecutionError(
            "Command failed", return_code=1, stderr="role \"u1\" cannot be dropped",
        )

        with pytest.raises(ProvisioningFailure) as exc:
            RoleDatabaseProvisioner(create_context(), admin).reprovision(identity)

        admin.create_role_and_database.assert_not_called()
        assert any("cannot be dropped" in d for d in exc.value.details)

    def test_create_failure(self, identity):
        """A failed create is a provisioning failure."""
        admin = MagicMock()
        admin.create_role_and_database.side_effect = ExecutionError("Command failed", return_code=1)

        with pytest.raises(ProvisioningFailure):
            RoleDatabaseProvisioner(create_context(), admin).reprovision(identity)


class TestPostgreSQLService:
    """Tests for the psql-backed collaborator."""

    def make_service(self, executor, **kwargs) -> PostgreSQLService:
        return PostgreSQLService(create_context(**kwargs), executor, host="db.local", port=5433)

    def test_delete_drops_database_then_role(self, executor):
        """DROP DATABASE comes before DROP ROLE, both IF EXISTS."""
        self.make_service(executor).delete_role_and_database("u1", "d1")

        statements = [c.args[0] for c in executor.run_sql.call_args_list]
        drops = [s for s in statements if s.startswith("DROP")]
        assert drops == ['DROP DATABASE IF EXISTS "d1"', 'DROP ROLE IF EXISTS "u1"']

    def test_delete_terminates_sessions_of_existing_database(self, executor):
        """Open sessions are terminated when the database exists."""
        executor.run_sql.side_effect = lambda sql, **kw: "1" if "pg_database" in sql else ""

        self.make_service(executor).delete_role_and_database("u1", "d1")

        statements = [c.args[0] for c in executor.run_sql.call_args_list]
        assert any("pg_terminate_backend" in s for s in statements)

    def test_create_role_and_database(self, executor, identity):
        """The role is created without elevated attributes and owns the database."""
        self.make_service(executor).create_role_and_database(identity)

        exists_sql, role_sql, db_sql = (c.args[0] for c in executor.run_sql.call_args_list)
        assert "pg_roles" in exists_sql
        assert "scram-sha-256" in role_sql
        assert 'CREATE ROLE "u1" WITH NOSUPERUSER NOCREATEDB NOCREATEROLE LOGIN' in role_sql
        assert "PASSWORD 'p1$secret';" in role_sql
        assert db_sql == 'CREATE DATABASE "d1" OWNER "u1" ENCODING \'UTF8\' TEMPLATE template0'

    def test_existing_role_is_altered(self, executor, identity):
        """A role that survived the drop gets its attributes and password reset."""
        executor.run_sql.side_effect = lambda sql, **kw: "1" if "pg_roles" in sql else ""

        self.make_service(executor).create_role_and_database(identity)

        role_sql = executor.run_sql.call_args_list[1].args[0]
        assert 'ALTER ROLE "u1" WITH NOSUPERUSER' in role_sql

    @pytest.mark.parametrize("password", ["pa$$word", "x$$; DROP ROLE postgres; --", "it's"])
    def test_password_is_a_single_literal(self, executor, password):
        """Dollar signs and quotes in the password stay inside one string literal."""
        identity = DatabaseIdentity.create("u1", "d1", password)

        self.make_service(executor).create_role_and_database(identity)

        role_sql = executor.run_sql.call_args_list[1].args[0]
        statement = role_sql.splitlines()[1]
        expected = "'" + password.replace("'", "''") + "'"
        assert statement.endswith(f"PASSWORD {expected};")
        assert "DO $" not in role_sql

    def test_backslash_password_uses_escape_literal(self, executor):
        """Backslashes are doubled inside an E'' literal."""
        identity = DatabaseIdentity.create("u1", "d1", "a\\b$$c")

        self.make_service(executor).create_role_and_database(identity)

        role_sql = executor.run_sql.call_args_list[1].args[0]
        assert "PASSWORD E'a\\\\b$$c';" in role_sql

    def test_role_statements_pass_credentials_per_call(self, identity):
        """Role SQL gets the password and connection target as call arguments."""
        executor = MagicMock()
        service = self.make_service(executor)

        service.run_statements_as_role(identity, sql="SELECT 1;")

        kwargs = executor.run_psql_as_role.call_args.kwargs
        assert kwargs["password"] == "p1$secret"
        assert kwargs["role"] == "u1"
        assert kwargs["database"] == "d1"
        assert kwargs["host"] == "db.local"
        assert kwargs["port"] == 5433

    def test_elevated_statements_use_admin_user(self, executor):
        """Elevated SQL runs as the admin OS user in the target database."""
        self.make_service(executor).run_statements_as_elevated_role("d1", "SELECT 1;")

        kwargs = executor.run_sql.call_args.kwargs
        assert kwargs["database"] == "d1"
        assert kwargs["as_user"] == "postgres"

    def test_dry_run_skips_existence_checks(self, executor):
        """Existence checks report False without querying in dry-run."""
        service = self.make_service(executor, dry_run=True)

        assert service.database_exists("d1") is False
        assert service.role_exists("u1") is False
        executor.run_sql.assert_not_called()

    def test_dry_run_create_plans_create_role(self, executor, identity):
        """In dry-run the role is planned as new without a lookup."""
        self.make_service(executor, dry_run=True).create_role_and_database(identity)

        role_sql = executor.run_sql.call_args_list[0].args[0]
        assert 'CREATE ROLE "u1"' in role_sql


class TestScriptRoleDatabaseAdmin:
    """Tests for the helper-script collaborator."""

    def make_admin(self, executor) -> ScriptRoleDatabaseAdmin:
        return ScriptRoleDatabaseAdmin(
            create_context(),
            executor,
            MagicMock(),
            delete_script=Path("/usr/local/bin/db-delete"),
            create_script=Path("/usr/local/bin/db-create"),
        )

    def test_delete_runs_helper(self):
        """delete_script receives user and database."""
        executor = MagicMock()
        self.make_admin(executor).delete_role_and_database("u1", "d1")

        assert executor.run.call_args.args[0] == ["/usr/local/bin/db-delete", "u1", "d1"]

    def test_create_runs_helper_as_sensitive(self, identity):
        """create_script receives the password and the command is masked."""
        executor = MagicMock()
        self.make_admin(executor).create_role_and_database(identity)

        assert executor.run.call_args.args[0] == ["/usr/local/bin/db-create", "u1", "d1", "p1$secret"]
        assert executor.run.call_args.kwargs["sensitive"] is True

    def test_statements_delegate_to_postgres(self, identity):
        """SQL execution goes through the psql service."""
        admin = self.make_admin(MagicMock())
        admin.run_statements_as_role(identity, sql="SELECT 1;")
        admin.run_statements_as_elevated_role("d1", "SELECT 1;")

        admin.pg.run_statements_as_role.assert_called_once_with(
            identity, sql="SELECT 1;", sql_file=None, description=None,
        )
        admin.pg.run_statements_as_elevated_role.assert_called_once_with(
            "d1", "SELECT 1;", description=None,
        )
