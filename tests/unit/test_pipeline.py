"""Unit tests for the restore orchestrator.

Runs the real stages against archives built in tmp_path, with a recording
fake in place of PostgreSQL.
"""

import json
import os
import signal
import zipfile
from pathlib import Path
from typing import Optional
from unittest.mock import patch

import pytest

from odoo_restore.core.audit import AuditLogger
from odoo_restore.core.config import AppConfig, EnvironmentOverrides, InstanceConfig, ToolConfig
from odoo_restore.core.context import create_context
from odoo_restore.core.exceptions import (
    ExecutionError,
    MissingArchiveMember,
    RestoreInterrupted,
    SanitizationAnomaly,
    SqlRestoreFailure,
    StageFailure,
)
from odoo_restore.core.executor import CommandResult
from odoo_restore.services.collaborators import DatabaseIdentity
from odoo_restore.services.filestore import FilestoreLayout, Ownership
from odoo_restore.services.pipeline import (
    STEPS,
    RestorePipeline,
    RestoreRequest,
    RestoreStage,
    termination_signals,
)


DUMP = """\
SET client_encoding = 'UTF8';
CREATE EXTENSION IF NOT EXISTS unaccent WITH SCHEMA public;
COMMENT ON EXTENSION unaccent IS 'text search dictionary';
ALTER TABLE t OWNER TO olduser;
GRANT ALL ON t TO olduser;
CREATE EXTENSION IF NOT EXISTS pg_trgm;
CREATE TABLE t (id int);
INSERT INTO t VALUES (1);
"""

SEQUENCES = "public|base_registry_signaling\npublic|base_cache_signaling\n"


class FakeAdmin:
    """Records every collaborator call in order."""

    def __init__(self, sequences: str = SEQUENCES, fail_restore: bool = False) -> None:
        self.sequences = sequences
        self.fail_restore = fail_restore
        self.calls: list[tuple] = []
        self.restored_sql: Optional[str] = None
        self.drop_sql: Optional[str] = None

    def delete_role_and_database(self, user, database):
        self.calls.append(("delete", user, database))

    def create_role_and_database(self, identity):
        self.calls.append(("create", identity.user, identity.database))

    def run_statements_as_role(self, identity, *, sql=None, sql_file=None, description=None):
        if sql_file is not None:
            self.calls.append(("restore", identity.user, identity.database))
            self.restored_sql = sql_file.read_text()
            if self.fail_restore:
                raise ExecutionError(
                    "Command failed",
                    return_code=3,
                    stderr='ERROR:  relation "t" already exists',
                )
            return CommandResult(command=["psql"], return_code=0, stdout="", stderr="")

        if "information_schema.sequences" in sql:
            self.calls.append(("list-sequences", identity.user))
            return CommandResult(command=["psql"], return_code=0, stdout=self.sequences, stderr="")

        self.calls.append(("drop-sequences", identity.user))
        self.drop_sql = sql
        return CommandResult(command=["psql"], return_code=0, stdout="", stderr="")

    def run_statements_as_elevated_role(self, database, sql, *, description=None):
        self.calls.append(("elevated", database, sql))
        return ""

    def names(self) -> list[str]:
        return [c[0] for c in self.calls]


def make_archive(path: Path, members: dict[str, str]) -> Path:
    with zipfile.ZipFile(path, "w") as archive:
        for name, content in members.items():
            archive.writestr(name, content)
    return path


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    path = tmp_path / "odoo"
    (path / "filestore").mkdir(parents=True)
    (path / "sessions").mkdir()
    return path


@pytest.fixture
def scratch_parent(tmp_path: Path) -> Path:
    path = tmp_path / "tmp"
    path.mkdir()
    return path


@pytest.fixture
def settings(tmp_path: Path, data_dir: Path) -> AppConfig:
    conf = tmp_path / "odoo.conf"
    conf.write_text(f"[options]\ndata_dir = {data_dir}\n")
    return AppConfig(
        config=ToolConfig(instance=InstanceConfig(config_path=conf)),
        overrides=EnvironmentOverrides(pg_host=None, pg_port=None, pg_admin_user=None, audit_log=None),
    )


@pytest.fixture
def audit(tmp_path: Path) -> AuditLogger:
    return AuditLogger(log_path=tmp_path / "audit.log")


@pytest.fixture
def identity() -> DatabaseIdentity:
    return DatabaseIdentity.create("u1", "d1", "p1")


@pytest.fixture
def archive(tmp_path: Path) -> Path:
    return make_archive(tmp_path / "backup.zip", {
        "dump.sql": DUMP,
        "filestore/ab/abcdef": "attachment",
    })


def make_pipeline(admin, settings, audit, scratch_parent, **ctx_kwargs) -> RestorePipeline:
    return RestorePipeline(
        create_context(**ctx_kwargs),
        admin,
        settings,
        audit=audit,
        scratch_parent=scratch_parent,
    )


def audit_events(audit: AuditLogger) -> list[dict]:
    return [json.loads(line) for line in audit.log_path.read_text().splitlines()]


class TestRestorePipelineSuccess:
    """A complete, successful restore."""

    def test_end_to_end(self, archive, identity, settings, audit, scratch_parent, data_dir):
        """Every stage runs and the result reflects what was done."""
        admin = FakeAdmin()

        result = make_pipeline(admin, settings, audit, scratch_parent).run(
            RestoreRequest(identity=identity, archive_path=archive)
        )

        assert result.stage is RestoreStage.DONE
        assert result.succeeded
        assert [o.name for o in result.outcomes] == [step.name for step in STEPS]
        assert result.layout is FilestoreLayout.BUCKET_HASH
        assert result.data_dir == data_dir
        assert result.extensions == ["unaccent", "pg_trgm"]
        assert [s.name for s in result.dropped_sequences] == [
            "base_registry_signaling", "base_cache_signaling",
        ]
        assert result.scratch_removed

    def test_filestore_deployed_with_parent_ownership(
        self, archive, identity, settings, audit, scratch_parent, data_dir,
    ):
        """The attachment lands under filestore/d1 owned like filestore/."""
        make_pipeline(FakeAdmin(), settings, audit, scratch_parent).run(
            RestoreRequest(identity=identity, archive_path=archive)
        )

        deployed = data_dir / "filestore" / "d1" / "ab" / "abcdef"
        assert deployed.read_text() == "attachment"
        assert Ownership.of(deployed) == Ownership.of(data_dir / "filestore")
        assert not (data_dir / "sessions").exists()

    def test_call_order(self, archive, identity, settings, audit, scratch_parent):
        """Delete precedes create; extensions precede the restore; cleanup is last."""
        admin = FakeAdmin()

        make_pipeline(admin, settings, audit, scratch_parent).run(
            RestoreRequest(identity=identity, archive_path=archive)
        )

        assert admin.names() == [
            "delete", "create", "elevated", "elevated",
            "restore", "list-sequences", "drop-sequences",
        ]
        assert admin.calls[2] == ("elevated", "d1", 'CREATE EXTENSION IF NOT EXISTS "unaccent";')

    def test_restored_sql_is_sanitized(self, archive, identity, settings, audit, scratch_parent):
        """Only environment-neutral statements reach psql."""
        admin = FakeAdmin()

        make_pipeline(admin, settings, audit, scratch_parent).run(
            RestoreRequest(identity=identity, archive_path=archive)
        )

        assert admin.restored_sql == (
            "SET client_encoding = 'UTF8';\n"
            "CREATE TABLE t (id int);\n"
            "INSERT INTO t VALUES (1);\n"
        )

    def test_scratch_removed(self, archive, identity, settings, audit, scratch_parent):
        """Nothing is left in the scratch parent."""
        make_pipeline(FakeAdmin(), settings, audit, scratch_parent).run(
            RestoreRequest(identity=identity, archive_path=archive)
        )

        assert list(scratch_parent.iterdir()) == []

    def test_nested_legacy_archive(self, tmp_path, identity, settings, audit, scratch_parent, data_dir):
        """A nested filestore is deployed without its wrapper directory."""
        archive = make_archive(tmp_path / "legacy.zip", {
            "dump.sql": "CREATE TABLE t (id int);\n",
            "filestore/mycompany/ab/abcdef": "legacy",
        })

        result = make_pipeline(FakeAdmin(sequences=""), settings, audit, scratch_parent).run(
            RestoreRequest(identity=identity, archive_path=archive)
        )

        assert result.layout is FilestoreLayout.NESTED_LEGACY
        assert (data_dir / "filestore" / "d1" / "ab" / "abcdef").read_text() == "legacy"
        assert result.extensions == []
        assert result.dropped_sequences == []

    def test_instance_config_from_request(
        self, tmp_path, archive, identity, settings, audit, scratch_parent,
    ):
        """An instance config passed in the request wins over the settings."""
        other = tmp_path / "other"
        (other / "filestore").mkdir(parents=True)
        conf = tmp_path / "other.conf"
        conf.write_text(f"[options]\ndata_dir = {other}\n")

        result = make_pipeline(FakeAdmin(), settings, audit, scratch_parent).run(
            RestoreRequest(identity=identity, archive_path=archive, instance_config_path=conf)
        )

        assert result.data_dir == other
        assert (other / "filestore" / "d1" / "ab" / "abcdef").exists()

    def test_audit_trail(self, archive, identity, settings, audit, scratch_parent):
        """One audit event per stage, framed by start, cleanup and complete."""
        make_pipeline(FakeAdmin(), settings, audit, scratch_parent).run(
            RestoreRequest(identity=identity, archive_path=archive)
        )

        events = audit_events(audit)
        types = [e["event_type"] for e in events]
        assert types[0] == "restore.start"
        assert types[1:10] == ["restore.stage"] * 9
        assert types[10:] == ["restore.cleanup", "restore.complete"]
        assert set(events[0]["parameters"]) == {"user", "archive", "instance_config", "strict_sanitize"}
        assert len({e["correlation_id"] for e in events}) == 1

    def test_dry_run(self, archive, identity, settings, audit, scratch_parent, data_dir):
        """Dry-run leaves the data directory untouched."""
        result = make_pipeline(FakeAdmin(), settings, audit, scratch_parent, dry_run=True).run(
            RestoreRequest(identity=identity, archive_path=archive)
        )

        assert result.stage is RestoreStage.DONE
        assert not (data_dir / "filestore" / "d1").exists()
        assert (data_dir / "sessions").exists()
        assert list(scratch_parent.iterdir()) == []


class TestRestorePipelineFailure:
    """Failures abort the run and still remove the scratch directory."""

    def test_missing_member_stops_before_mutation(
        self, tmp_path, identity, settings, audit, scratch_parent, data_dir,
    ):
        """An archive without filestore/ fails in extract; nothing else runs."""
        archive = make_archive(tmp_path / "bad.zip", {"dump.sql": DUMP})
        admin = FakeAdmin()
        pipeline = make_pipeline(admin, settings, audit, scratch_parent)

        with pytest.raises(MissingArchiveMember) as exc:
            pipeline.run(RestoreRequest(identity=identity, archive_path=archive))

        assert exc.value.stage == "extract"
        assert admin.calls == []
        assert (data_dir / "sessions").exists()
        assert list(scratch_parent.iterdir()) == []
        assert pipeline.last_result.stage is RestoreStage.FAILED
        assert pipeline.last_result.failed_stage == "extract"

    def test_restore_failure(self, archive, identity, settings, audit, scratch_parent):
        """A failing restore skips sequence cleanup and is audited."""
        admin = FakeAdmin(fail_restore=True)

        with pytest.raises(SqlRestoreFailure) as exc:
            make_pipeline(admin, settings, audit, scratch_parent).run(
                RestoreRequest(identity=identity, archive_path=archive)
            )

        assert exc.value.stage == "restore"
        assert "list-sequences" not in admin.names()
        assert list(scratch_parent.iterdir()) == []

        failed = [e for e in audit_events(audit) if e["event_type"] == "restore.failed"]
        assert len(failed) == 1
        assert failed[0]["stage"] == "restore"

    def test_unexpected_error_is_wrapped(self, archive, identity, settings, audit, scratch_parent):
        """Non-restore exceptions become StageFailure naming the stage."""
        with patch(
            "odoo_restore.services.pipeline.detect_layout",
            side_effect=RuntimeError("disk on fire"),
        ):
            with pytest.raises(StageFailure) as exc:
                make_pipeline(FakeAdmin(), settings, audit, scratch_parent).run(
                    RestoreRequest(identity=identity, archive_path=archive)
                )

        assert exc.value.stage == "detect-layout"
        assert isinstance(exc.value.__cause__, RuntimeError)
        assert list(scratch_parent.iterdir()) == []

    def test_missing_stage_output_is_a_stage_failure(
        self, archive, identity, settings, audit, scratch_parent,
    ):
        """A stage whose input was never produced fails explicitly."""
        with patch.object(RestorePipeline, "_extract", return_value="skipped"):
            with pytest.raises(StageFailure) as exc:
                make_pipeline(FakeAdmin(), settings, audit, scratch_parent).run(
                    RestoreRequest(identity=identity, archive_path=archive)
                )

        assert exc.value.stage == "detect-layout"
        assert "extracted backup" in exc.value.message
        assert list(scratch_parent.iterdir()) == []

    def test_strict_sanitize(self, tmp_path, identity, settings, audit, scratch_parent):
        """Strict mode aborts on an unclassifiable statement before restoring."""
        archive = make_archive(tmp_path / "odd.zip", {
            "dump.sql": "ALTER FUNCTION f()\n    OWNER TO olduser;\n",
            "filestore/ab/abcdef": "x",
        })
        admin = FakeAdmin()

        with pytest.raises(SanitizationAnomaly) as exc:
            make_pipeline(admin, settings, audit, scratch_parent, strict_sanitize=True).run(
                RestoreRequest(identity=identity, archive_path=archive)
            )

        assert exc.value.stage == "sanitize"
        assert "restore" not in admin.names()

    def test_anomaly_passes_without_strict(self, tmp_path, identity, settings, audit, scratch_parent):
        """Without strict mode the anomaly is reported and the restore continues."""
        archive = make_archive(tmp_path / "odd.zip", {
            "dump.sql": "ALTER FUNCTION f()\n    OWNER TO olduser;\n",
            "filestore/ab/abcdef": "x",
        })

        result = make_pipeline(FakeAdmin(), settings, audit, scratch_parent).run(
            RestoreRequest(identity=identity, archive_path=archive)
        )

        assert result.sanitize_report.anomalies == [(2, "    OWNER TO olduser;")]

    def test_sigterm_removes_scratch(self, archive, identity, settings, audit, scratch_parent):
        """SIGTERM mid-run aborts the stage and the scratch directory is removed."""
        admin = FakeAdmin()

        def terminate(identity):
            os.kill(os.getpid(), signal.SIGTERM)

        admin.create_role_and_database = terminate

        with pytest.raises(RestoreInterrupted) as exc:
            make_pipeline(admin, settings, audit, scratch_parent).run(
                RestoreRequest(identity=identity, archive_path=archive)
            )

        assert exc.value.stage == "provision"
        assert list(scratch_parent.iterdir()) == []


class TestTerminationSignals:
    """Tests for the signal handler scope."""

    def test_converts_and_restores(self):
        """SIGHUP raises inside the block; the previous handler is back afterwards."""
        before = signal.getsignal(signal.SIGHUP)

        with pytest.raises(RestoreInterrupted) as exc:
            with termination_signals():
                os.kill(os.getpid(), signal.SIGHUP)

        assert "SIGHUP" in str(exc.value)
        assert signal.getsignal(signal.SIGHUP) is before
