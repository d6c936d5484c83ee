"""Batch uninstall: preview, confirm, stop processes, remove, summarize.

One ``BatchUninstaller.run`` call walks

    IDLE -> PREVIEW -> CONFIRM -> TERMINATING -> REMOVING -> SUMMARIZED

or stops at ``CANCELLED`` when confirmation is refused; nothing is touched
before confirmation. All counters live in the returned ``BatchResult``.
"""

from __future__ import annotations

import dataclasses
import enum
import logging
from typing import Any, Callable, Sequence

from appsweep.apps import ApplicationRecord
from appsweep.catalog import (
    SERVICE_CATEGORIES,
    ArtifactPath,
    Category,
    PathCatalog,
    TemplateContext,
    is_absolute,
)
from appsweep.errors import NoApplicationsSelected, UnsafePathError
from appsweep.integrations import (
    LauncherIntegration,
    NullLauncher,
    NullServiceController,
    ServiceController,
    default_integrations,
)
from appsweep.processes import ProcessTerminator
from appsweep.remover import RemovalOutcome, RunMode, SafeRemover, default_elevator
from appsweep.resolver import ArtifactResolver
from appsweep.sizing import total_size
from appsweep.utils import APP_NAME, ask_yes_no, human_bytes, now_utc_iso

DEFAULT_PREVIEW_CAP = 5


class BatchState(str, enum.Enum):
    IDLE = "idle"
    PREVIEW = "preview"
    CONFIRM = "confirm"
    CANCELLED = "cancelled"
    TERMINATING = "terminating"
    REMOVING = "removing"
    SUMMARIZED = "summarized"


@dataclasses.dataclass(slots=True)
class RunConfig:
    mode: RunMode = RunMode.DRY_RUN
    preview_cap: int = DEFAULT_PREVIEW_CAP
    grace_period: float = 3.0
    assume_yes: bool = False
    allow_elevation: bool = True
    keep_bundle: bool = False
    terminate_processes: bool = True
    home: str | None = None
    platform: str | None = None
    catalog_extra: str | None = None


@dataclasses.dataclass(frozen=True, slots=True)
class RemovalBatch:
    """Bundle plus artifacts of one application; fixed once confirmed."""

    application: ApplicationRecord
    artifacts: tuple[ArtifactPath, ...]
    include_bundle: bool = True

    def targets(self) -> list[tuple[str, Category]]:
        """Removal order as (path, category) pairs, bundle first.

        The bundle path comes from the caller unchecked; the remover refuses it
        if it is not absolute.
        """
        items = [(a.absolute_path, a.category) for a in self.artifacts]
        if self.include_bundle and self.application.bundle_path:
            items.insert(0, (self.application.bundle_path, Category.BUNDLE))
        return items

    def size_kb(self) -> int:
        return total_size(path for path, _ in self.targets() if is_absolute(path))


@dataclasses.dataclass(slots=True)
class BatchResult:
    status: str
    mode: str
    started_at: str
    apps_selected: int = 0
    apps_processed: int = 0
    files_removed: int = 0
    bytes_removed: int = 0
    removed_paths: list[str] = dataclasses.field(default_factory=list)
    # Handed to an elevated child; not removed by this run.
    deferred_paths: list[str] = dataclasses.field(default_factory=list)
    failures: list[dict[str, str]] = dataclasses.field(default_factory=list)
    warnings: list[str] = dataclasses.field(default_factory=list)
    previews: list[dict[str, Any]] = dataclasses.field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return 1 if self.status == "failed" else 0

    def to_dict(self) -> dict[str, Any]:
        data = dataclasses.asdict(self)
        data["bytes_removed_human"] = human_bytes(self.bytes_removed)
        return data


def capped_listing(lines: Sequence[str], cap: int) -> list[str]:
    """Show at most ``cap`` lines plus a "+K more files" marker.

    A marker standing in for a single line would take that line's place, so
    lists of ``cap + 1`` entries are shown whole.
    """
    if cap <= 0 or len(lines) <= cap + 1:
        return list(lines)
    hidden = len(lines) - cap
    return [*lines[:cap], f"+{hidden} more files"]


class BatchUninstaller:
    """Drive one uninstall run for a selection of applications."""

    def __init__(
        self,
        config: RunConfig | None = None,
        *,
        resolver: ArtifactResolver | None = None,
        remover: SafeRemover | None = None,
        terminator: ProcessTerminator | None = None,
        services: ServiceController | None = None,
        launcher: LauncherIntegration | None = None,
        confirm: Callable[[list[RemovalBatch]], bool] | None = None,
        out: Callable[[str], None] | None = print,
        logger: logging.Logger | None = None,
    ):
        self.config = config or RunConfig()
        self.logger = logger or logging.getLogger(APP_NAME)
        mode = self.config.mode

        context = TemplateContext.from_environment(self.config.home)
        catalog = PathCatalog.for_platform(self.config.platform, self.config.catalog_extra)
        self.resolver = resolver or ArtifactResolver(catalog, context, logger=self.logger)
        self.remover = remover or SafeRemover(
            protected=catalog.base_directories(context),
            mode=mode,
            elevator=default_elevator(),
            allow_elevation=self.config.allow_elevation,
            logger=self.logger,
        )
        self.terminator = terminator or ProcessTerminator(self.config.grace_period, mode, logger=self.logger)
        if services is None or launcher is None:
            default_services, default_launcher = default_integrations(mode)
            services = services or default_services
            launcher = launcher or default_launcher
        self.services = services or NullServiceController()
        self.launcher = launcher or NullLauncher()
        self.confirm = confirm or self._ask
        self.out = out
        self.state = BatchState.IDLE

    # ------------------------------ Phases ----------------------------------- #

    def preview(self, apps: Sequence[ApplicationRecord], result: BatchResult | None = None) -> list[RemovalBatch]:
        self.state = BatchState.PREVIEW
        batches: list[RemovalBatch] = []
        for app in apps:
            artifacts = self.resolver.resolve_record(app)
            if result is not None:
                result.warnings.extend(
                    f"discovery skipped {w.category} at {w.location}: {w.error}" for w in self.resolver.warnings
                )
            if self.config.keep_bundle:
                artifacts = [a for a in artifacts if a.category is not Category.PACKAGE_RECEIPTS]
            batches.append(
                RemovalBatch(application=app, artifacts=tuple(artifacts), include_bundle=not self.config.keep_bundle)
            )
        return batches

    def render_preview(self, batch: RemovalBatch) -> list[str]:
        app = batch.application
        size = human_bytes(batch.size_kb() * 1024)
        ident = f" ({app.bundle_identifier})" if app.bundle_identifier else ""
        header = f"{app.label}{ident} - {size}, {len(batch.artifacts)} related files"
        entries = [f"  [{a.category.value}] {a.absolute_path}" for a in batch.artifacts]
        return [header, *capped_listing(entries, self.config.preview_cap)]

    def run(self, apps: Sequence[ApplicationRecord]) -> BatchResult:
        if not apps:
            raise NoApplicationsSelected("No applications selected")
        result = self._new_result(len(apps))
        batches = self.preview(apps, result)
        return self.run_batches(batches, result)

    def run_batches(self, batches: Sequence[RemovalBatch], result: BatchResult | None = None) -> BatchResult:
        """Confirm and execute batches that were already resolved."""
        if not batches:
            raise NoApplicationsSelected("No applications selected")
        result = result or self._new_result(len(batches))

        for batch in batches:
            lines = self.render_preview(batch)
            result.previews.append(
                {
                    "application": batch.application.label,
                    "bundle_path": batch.application.bundle_path,
                    "size_kb": batch.size_kb(),
                    "related_files": len(batch.artifacts),
                    "lines": lines,
                }
            )
            self._emit(*lines)

        self.state = BatchState.CONFIRM
        if not self._confirmed(list(batches)):
            self.state = BatchState.CANCELLED
            result.status = "cancelled"
            self._emit("Cancelled; nothing was changed.")
            self.logger.info("batch_cancelled apps=%s", len(batches))
            return result

        if self.config.terminate_processes:
            self.state = BatchState.TERMINATING
            for batch in batches:
                report = self.terminator.terminate(batch.application)
                result.warnings.extend(
                    f"could not stop {w.name or w.application} (pid {w.pid}): {w.error}" for w in report.warnings
                )

        self.state = BatchState.REMOVING
        total_ok = total_attempted = 0
        for batch in batches:
            ok, attempted = self._remove_batch(batch, result)
            total_ok += ok
            total_attempted += attempted
        self.remover.finish()

        self.state = BatchState.SUMMARIZED
        if total_attempted and not total_ok:
            result.status = "failed"
        elif result.failures:
            result.status = "partial"
        else:
            result.status = "ok"
        self._emit(*self.summary_lines(result))
        self.logger.info(
            "batch_complete status=%s apps=%s files=%s bytes=%s failures=%s",
            result.status,
            result.apps_processed,
            result.files_removed,
            result.bytes_removed,
            len(result.failures),
        )
        return result

    def summary_lines(self, result: BatchResult) -> list[str]:
        verb = "Would remove" if result.mode == RunMode.DRY_RUN.value else "Removed"
        lines = [
            f"{verb} {result.files_removed} items ({human_bytes(result.bytes_removed)}) "
            f"from {result.apps_processed}/{result.apps_selected} applications."
        ]
        if result.deferred_paths:
            lines.append(f"{len(result.deferred_paths)} items handed to an elevated process.")
        lines.extend(f"  failed: {f['path']}: {f['error']}" for f in result.failures)
        lines.extend(f"  warning: {w}" for w in result.warnings)
        return lines

    # ----------------------------- Internals --------------------------------- #

    def _remove_batch(self, batch: RemovalBatch, result: BatchResult) -> tuple[int, int]:
        app = batch.application
        outcomes: list[RemovalOutcome] = []

        for path, category in batch.targets():
            if category in SERVICE_CATEGORIES:
                self.services.unload(path)
            try:
                outcome = self.remover.remove(path)
            except UnsafePathError as exc:
                outcome = RemovalOutcome(path=exc.path, status="failed", error=str(exc))
            outcomes.append(outcome)

            if not outcome.ok:
                result.failures.append(
                    {"application": app.label, "path": outcome.path, "error": outcome.error or "unknown error"}
                )
            elif outcome.status == "deferred":
                result.deferred_paths.append(outcome.path)
            elif outcome.status != "absent":
                result.files_removed += 1
                result.bytes_removed += outcome.bytes_freed
                result.removed_paths.append(outcome.path)

        ok = sum(1 for o in outcomes if o.ok)
        if not outcomes or ok:
            result.apps_processed += 1
        if batch.include_bundle and ok and not self.launcher.unregister(app):
            result.warnings.append(f"could not unregister {app.label} from the launcher")
        return ok, len(outcomes)

    def _confirmed(self, batches: list[RemovalBatch]) -> bool:
        if self.config.mode is RunMode.DRY_RUN or self.config.assume_yes:
            return True
        return self.confirm(batches) is True

    def _ask(self, batches: list[RemovalBatch]) -> bool:
        files = sum(len(b.artifacts) for b in batches)
        return ask_yes_no(f"Remove {len(batches)} application(s) and {files} related files?")

    def _new_result(self, selected: int) -> BatchResult:
        return BatchResult(status="pending", mode=self.config.mode.value, started_at=now_utc_iso(), apps_selected=selected)

    def _emit(self, *lines: str) -> None:
        if self.out is None:
            return
        for line in lines:
            self.out(line)
