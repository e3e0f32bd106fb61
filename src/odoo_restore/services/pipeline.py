"""Restore orchestrator.

Runs the restore stages strictly in order inside a private scratch
directory. The first failure aborts the run; the scratch directory is
removed on success, on failure and on SIGTERM/SIGHUP.

Stages:
    1. extract               unpack dump.sql and filestore/
    2. detect-layout         bucket-hash or nested-legacy filestore
    3. resolve-data-dir      data_dir from the instance config
    4. relocate-filestore    replace <data_dir>/filestore/<db>
    5. provision             drop and recreate role + database
    6. preseed-extensions    CREATE EXTENSION as the admin user
    7. sanitize              strip ownership/privilege/extension lines
    8. restore               run the dump as the new role
    9. drop-signaling        drop base_*signaling* sequences
"""

import signal
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Generator, NamedTuple, Optional

from odoo_restore.core.audit import AuditLogger, get_audit_logger
from odoo_restore.core.config import AppConfig
from odoo_restore.core.context import ExecutionContext
from odoo_restore.core.exceptions import RestoreError, RestoreInterrupted, StageFailure
from odoo_restore.services.archive import ExtractedBackup, extract_backup, scratch_directory
from odoo_restore.services.collaborators import DatabaseIdentity, RoleDatabaseAdmin
from odoo_restore.services.datadir import resolve_data_dir
from odoo_restore.services.extensions import ExtensionPreseeder, find_extensions_in_file
from odoo_restore.services.filestore import (
    FilestoreLayout,
    FilestoreRelocator,
    FilestoreSource,
    detect_layout,
)
from odoo_restore.services.provisioner import RoleDatabaseProvisioner
from odoo_restore.services.restorer import SqlRestorer
from odoo_restore.services.sanitizer import SanitizeReport, sanitize_file
from odoo_restore.services.sequences import SignalingSequence, SignalingSequenceCleaner


EXTRACT_DIR_NAME = "backup"
SANITIZED_DUMP_NAME = "restore.sql"
TERMINATION_SIGNALS = (signal.SIGTERM, signal.SIGHUP)


class RestoreStage(Enum):
    """States of a restore run."""
    START = "start"
    EXTRACTED = "extracted"
    LAYOUT_KNOWN = "layout-known"
    DATA_DIR_KNOWN = "data-dir-known"
    FILESTORE_DEPLOYED = "filestore-deployed"
    PROVISIONED = "provisioned"
    EXTENSIONS_SEEDED = "extensions-seeded"
    SANITIZED = "sanitized"
    RESTORED = "restored"
    CLEANED = "cleaned"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class RestoreRequest:
    """Everything a single restore needs from the caller."""
    identity: DatabaseIdentity
    archive_path: Path
    instance_config_path: Optional[Path] = None


@dataclass
class StageOutcome:
    name: str
    reached: RestoreStage
    message: str


@dataclass
class RestoreResult:
    """What a restore run did, stage by stage."""
    database: str
    user: str
    stage: RestoreStage = RestoreStage.START
    outcomes: list[StageOutcome] = field(default_factory=list)
    failed_stage: Optional[str] = None
    layout: Optional[FilestoreLayout] = None
    data_dir: Optional[Path] = None
    filestore_path: Optional[Path] = None
    extensions: list[str] = field(default_factory=list)
    sanitize_report: Optional[SanitizeReport] = None
    dropped_sequences: list[SignalingSequence] = field(default_factory=list)
    scratch_removed: bool = False

    @property
    def succeeded(self) -> bool:
        return self.stage is RestoreStage.DONE

    def summary_items(self) -> dict[str, Any]:
        items: dict[str, Any] = {
            "Database": self.database,
            "Owner": self.user,
        }
        if self.layout is not None:
            items["Filestore layout"] = self.layout.value
        if self.filestore_path is not None:
            items["Filestore"] = str(self.filestore_path)
        items["Extensions"] = ", ".join(self.extensions) or "none"
        if self.sanitize_report is not None:
            items["Lines removed"] = self.sanitize_report.elided_total
            if self.sanitize_report.anomalies:
                items["Anomalies"] = len(self.sanitize_report.anomalies)
        items["Sequences dropped"] = len(self.dropped_sequences)
        return items


@dataclass
class _RunState:
    request: RestoreRequest
    scratch_dir: Path
    result: RestoreResult
    backup: Optional[ExtractedBackup] = None
    source: Optional[FilestoreSource] = None
    sanitized_dump: Optional[Path] = None

    @staticmethod
    def _available(value: Any, what: str) -> Any:
        if value is None:
            raise StageFailure(f"Restore stage run out of order: {what} is not available")
        return value

    @property
    def extracted(self) -> ExtractedBackup:
        return self._available(self.backup, "the extracted backup")

    @property
    def filestore_source(self) -> FilestoreSource:
        return self._available(self.source, "the filestore layout")

    @property
    def data_dir(self) -> Path:
        return self._available(self.result.data_dir, "the data directory")

    @property
    def restore_dump(self) -> Path:
        return self._available(self.sanitized_dump, "the sanitized dump")


class PipelineStep(NamedTuple):
    name: str
    title: str
    reaches: RestoreStage
    handler: str


STEPS: tuple[PipelineStep, ...] = (
    PipelineStep("extract", "Extracting backup archive", RestoreStage.EXTRACTED, "_extract"),
    PipelineStep("detect-layout", "Detecting filestore layout", RestoreStage.LAYOUT_KNOWN, "_detect_layout"),
    PipelineStep("resolve-data-dir", "Resolving data directory", RestoreStage.DATA_DIR_KNOWN, "_resolve_data_dir"),
    PipelineStep("relocate-filestore", "Deploying filestore", RestoreStage.FILESTORE_DEPLOYED, "_relocate_filestore"),
    PipelineStep("provision", "Provisioning role and database", RestoreStage.PROVISIONED, "_provision"),
    PipelineStep("preseed-extensions", "Creating extensions", RestoreStage.EXTENSIONS_SEEDED, "_preseed_extensions"),
    PipelineStep("sanitize", "Sanitizing dump", RestoreStage.SANITIZED, "_sanitize"),
    PipelineStep("restore", "Restoring database", RestoreStage.RESTORED, "_restore"),
    PipelineStep("drop-signaling", "Dropping signaling sequences", RestoreStage.CLEANED, "_drop_signaling"),
)


@contextmanager
def termination_signals(
    signals: tuple[signal.Signals, ...] = TERMINATION_SIGNALS,
) -> Generator[None, None, None]:
    """Turn SIGTERM/SIGHUP into RestoreInterrupted for the duration.

    Signal handlers can only be installed from the main thread; elsewhere
    this is a no-op.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _interrupt(signum: int, _frame: Any) -> None:
        raise RestoreInterrupted(
            f"Interrupted by {signal.Signals(signum).name}",
            hint="The target database and filestore may be incomplete; rerun the restore",
        )

    previous: dict[signal.Signals, Any] = {}
    for sig in signals:
        previous[sig] = signal.signal(sig, _interrupt)
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


class RestorePipeline:
    """Run a full restore for one request.

    Usage:
        pipeline = RestorePipeline(ctx, admin, ctx.config)
        result = pipeline.run(RestoreRequest(identity, Path("backup.zip")))
    """

    def __init__(
        self,
        ctx: ExecutionContext,
        admin: RoleDatabaseAdmin,
        settings: AppConfig,
        *,
        audit: Optional[AuditLogger] = None,
        scratch_parent: Optional[Path] = None,
    ) -> None:
        self.ctx = ctx
        self.admin = admin
        self.settings = settings
        self.audit = audit or get_audit_logger()
        self.scratch_parent = scratch_parent
        self.last_result: Optional[RestoreResult] = None

    def run(self, request: RestoreRequest) -> RestoreResult:
        """Execute every stage in order.

        Returns:
            RestoreResult in the DONE stage

        Raises:
            RestoreError: The first stage failure, with .stage set
        """
        identity = request.identity
        result = RestoreResult(database=identity.database, user=identity.user)
        self.last_result = result

        with self.audit.correlation("restore"):
            self.audit.log_start(
                identity.database,
                {
                    "user": identity.user,
                    "archive": str(request.archive_path),
                    "instance_config": str(request.instance_config_path or self.settings.instance.config_path),
                    "strict_sanitize": self.ctx.strict_sanitize,
                },
                dry_run=self.ctx.dry_run,
            )

            scratch: Optional[Path] = None
            try:
                with scratch_directory(parent=self.scratch_parent) as scratch, termination_signals():
                    self.ctx.console.debug(f"Scratch directory: {scratch}")
                    state = _RunState(request=request, scratch_dir=scratch, result=result)
                    for number, step in enumerate(STEPS, start=1):
                        self.ctx.console.stage(number, len(STEPS), step.title)
                        self._run_step(step, state)
            finally:
                if scratch is not None:
                    result.scratch_removed = not scratch.exists()
                    self.audit.log_cleanup(
                        identity.database,
                        scratch,
                        error=None if result.scratch_removed else "scratch directory left behind",
                    )

            result.stage = RestoreStage.DONE
            self.audit.log_complete(
                identity.database,
                f"Restored '{identity.database}' as '{identity.user}'",
                dry_run=self.ctx.dry_run,
            )

        return result

    def _run_step(self, step: PipelineStep, state: _RunState) -> None:
        result = state.result
        handler = getattr(self, step.handler)
        try:
            message = handler(state)
        except RestoreError as e:
            self._fail(step, result, e)
            raise
        except Exception as e:
            wrapped = StageFailure(
                f"Unexpected error in stage '{step.name}': {e}",
                details=[type(e).__name__],
            )
            self._fail(step, result, wrapped)
            raise wrapped from e

        result.stage = step.reaches
        result.outcomes.append(StageOutcome(name=step.name, reached=step.reaches, message=message))
        self.audit.log_stage(
            result.database,
            step.name,
            message,
            dry_run=self.ctx.dry_run,
        )

    def _fail(self, step: PipelineStep, result: RestoreResult, error: RestoreError) -> None:
        error.stage = step.name
        result.stage = RestoreStage.FAILED
        result.failed_stage = step.name
        self.audit.log_failure(result.database, step.name, error.message)

    # =========================================================================
    # Stages
    # =========================================================================

    def _extract(self, state: _RunState) -> str:
        target = state.scratch_dir / EXTRACT_DIR_NAME
        target.mkdir(mode=0o700)
        state.backup = extract_backup(state.request.archive_path, target)
        size = state.backup.dump_path.stat().st_size
        return f"dump.sql ({size} bytes) and filestore/ extracted"

    def _detect_layout(self, state: _RunState) -> str:
        state.source = detect_layout(state.extracted.filestore_root)
        state.result.layout = state.source.layout
        self.ctx.console.info(f"Filestore layout: {state.source.layout.value}")
        return state.source.layout.value

    def _resolve_data_dir(self, state: _RunState) -> str:
        instance = self.settings.instance
        data_dir = resolve_data_dir(
            state.request.instance_config_path or instance.config_path,
            default=instance.default_data_dir,
        )
        state.result.data_dir = data_dir
        self.ctx.console.info(f"Data directory: {data_dir}")
        return str(data_dir)

    def _relocate_filestore(self, state: _RunState) -> str:
        relocator = FilestoreRelocator(self.ctx, stale_dirs=self.settings.instance.stale_dirs)
        dest = relocator.deploy(
            state.filestore_source,
            state.data_dir,
            state.request.identity.database,
        )
        state.result.filestore_path = dest
        return str(dest)

    def _provision(self, state: _RunState) -> str:
        RoleDatabaseProvisioner(self.ctx, self.admin).reprovision(state.request.identity)
        identity = state.request.identity
        return f"role '{identity.user}' owns database '{identity.database}'"

    def _preseed_extensions(self, state: _RunState) -> str:
        extensions = find_extensions_in_file(state.extracted.dump_path)
        preseeder = ExtensionPreseeder(self.ctx, self.admin)
        state.result.extensions = preseeder.seed(state.request.identity.database, extensions)
        return ", ".join(state.result.extensions) or "none"

    def _sanitize(self, state: _RunState) -> str:
        sanitized = state.scratch_dir / SANITIZED_DUMP_NAME
        report = sanitize_file(
            state.extracted.dump_path,
            sanitized,
            strict=self.ctx.strict_sanitize,
        )
        state.sanitized_dump = sanitized
        state.result.sanitize_report = report

        self.ctx.console.success(
            f"Removed {report.elided_total} environment-bound line(s), kept {report.kept}"
        )
        for line_number, line in report.anomalies:
            self.ctx.console.warn(f"Passed through unrecognised statement at line {line_number}: {line[:120]}")
        return ", ".join(f"{key}={value}" for key, value in report.as_dict().items())

    def _restore(self, state: _RunState) -> str:
        dump = state.restore_dump
        SqlRestorer(self.ctx, self.admin).restore(state.request.identity, dump)
        return f"restored from {dump.name}"

    def _drop_signaling(self, state: _RunState) -> str:
        cleaner = SignalingSequenceCleaner(
            self.ctx,
            self.admin,
            self.settings.cleanup.signaling_pattern,
        )
        state.result.dropped_sequences = cleaner.clean(state.request.identity)
        return ", ".join(seq.name for seq in state.result.dropped_sequences) or "none"
