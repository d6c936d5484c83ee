"""Stop running instances of an application before its files are removed."""

from __future__ import annotations

import dataclasses
import logging
import os

import psutil

from appsweep.apps import ApplicationRecord
from appsweep.errors import ProcessTerminationWarning
from appsweep.remover import RunMode
from appsweep.utils import APP_NAME, is_subpath


@dataclasses.dataclass(slots=True)
class TerminationReport:
    matched: list[int] = dataclasses.field(default_factory=list)
    stopped: list[int] = dataclasses.field(default_factory=list)
    warnings: list[ProcessTerminationWarning] = dataclasses.field(default_factory=list)


class ProcessTerminator:
    """Graceful terminate, wait ``grace_period`` seconds, then kill."""

    def __init__(
        self,
        grace_period: float = 3.0,
        mode: RunMode = RunMode.DRY_RUN,
        logger: logging.Logger | None = None,
    ):
        self.grace_period = grace_period
        self.mode = mode
        self.logger = logger or logging.getLogger(APP_NAME)

    def find(self, record: ApplicationRecord) -> list[psutil.Process]:
        names = {n for n in (record.executable_name, record.display_name) if n}
        own_pid = os.getpid()
        found: list[psutil.Process] = []
        for proc in psutil.process_iter(["pid", "name", "exe"]):
            info = proc.info
            if info.get("pid") == own_pid:
                continue
            exe = info.get("exe") or ""
            if info.get("name") in names or (exe and record.bundle_path and is_subpath(exe, record.bundle_path)):
                found.append(proc)
        return found

    def terminate(self, record: ApplicationRecord) -> TerminationReport:
        report = TerminationReport()
        try:
            procs = self.find(record)
        except psutil.Error as exc:
            report.warnings.append(ProcessTerminationWarning(record.label, 0, "", f"process listing failed: {exc}"))
            return report

        report.matched = [p.pid for p in procs]
        if not procs:
            return report
        if self.mode is RunMode.DRY_RUN:
            self.logger.info("terminate_dry_run app=%s pids=%s", record.label, report.matched)
            return report

        signalled: list[psutil.Process] = []
        for proc in procs:
            try:
                proc.terminate()
                signalled.append(proc)
            except psutil.NoSuchProcess:
                report.stopped.append(proc.pid)
            except psutil.AccessDenied as exc:
                report.warnings.append(self._warning(record, proc, exc))

        gone, alive = psutil.wait_procs(signalled, timeout=self.grace_period)
        report.stopped.extend(p.pid for p in gone)

        killed: list[psutil.Process] = []
        for proc in alive:
            try:
                proc.kill()
                killed.append(proc)
            except psutil.NoSuchProcess:
                report.stopped.append(proc.pid)
            except psutil.AccessDenied as exc:
                report.warnings.append(self._warning(record, proc, exc))

        if killed:
            gone, still_alive = psutil.wait_procs(killed, timeout=self.grace_period)
            report.stopped.extend(p.pid for p in gone)
            for proc in still_alive:
                report.warnings.append(self._warning(record, proc, "still running after kill"))

        for w in report.warnings:
            self.logger.warning("terminate_failed app=%s pid=%s err=%s", w.application, w.pid, w.error)
        self.logger.info("terminate_complete app=%s stopped=%s", record.label, report.stopped)
        return report

    @staticmethod
    def _warning(record: ApplicationRecord, proc: psutil.Process, error: object) -> ProcessTerminationWarning:
        try:
            name = proc.name()
        except psutil.Error:
            name = ""
        return ProcessTerminationWarning(application=record.label, pid=proc.pid, name=name, error=str(error))
