"""Guarded, one-path-at-a-time removal with on-demand privilege elevation."""

from __future__ import annotations

import dataclasses
import enum
import logging
import ntpath
import os
import posixpath
import shutil
import subprocess
import sys
from pathlib import Path
from typing import Iterable, Protocol

from appsweep.catalog import is_absolute
from appsweep.errors import ElevationError, UnsafePathError
from appsweep.sizing import disk_usage_bytes
from appsweep.utils import APP_NAME, run_command


class RunMode(str, enum.Enum):
    LIVE = "live"
    DRY_RUN = "dry_run"


@dataclasses.dataclass(slots=True)
class RemovalOutcome:
    path: str
    status: str  # removed | absent | dry_run | deferred | failed
    bytes_freed: int = 0
    elevated: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status != "failed"


# ------------------------------ Elevation ----------------------------------- #


class Elevator(Protocol):
    def authorize(self) -> bool:
        """Ask for credentials once; True when elevated removal may proceed."""

    def remove(self, path: str) -> str:
        """Remove ``path`` with elevated privileges; returns the outcome status."""

    def finish(self) -> None:
        """Flush any work that was deferred until the end of the run."""


class NoElevator:
    def authorize(self) -> bool:
        return False

    def remove(self, path: str) -> str:
        raise ElevationError("elevation is not available")

    def finish(self) -> None:
        return None


class SudoElevator:
    """``sudo -v`` once, then reuse the cached ticket non-interactively."""

    def __init__(self, timeout: int = 120):
        self.timeout = timeout

    def authorize(self) -> bool:
        if hasattr(os, "geteuid") and os.geteuid() == 0:
            return True
        try:
            # Not captured: sudo needs the terminal for its password prompt.
            cp = subprocess.run(["sudo", "-v"], check=False, timeout=self.timeout)
        except (OSError, subprocess.SubprocessError):
            return False
        return cp.returncode == 0

    def remove(self, path: str) -> str:
        code, _, err = run_command(["sudo", "-n", "rm", "-rf", "--", path], timeout=self.timeout)
        if code != 0:
            raise ElevationError(err.strip() or f"sudo rm exited with {code}")
        return "removed"

    def finish(self) -> None:
        return None


class RunasElevator:
    """Windows: collect denied paths and remove them in one elevated child run.

    The child is ``python -m appsweep execute --token ...`` started through
    ShellExecute's ``runas`` verb, so the UAC prompt appears once per run.
    """

    def __init__(self, logger: logging.Logger | None = None):
        self.pending: list[str] = []
        self.logger = logger or logging.getLogger(APP_NAME)

    def authorize(self) -> bool:
        return sys.platform.startswith("win")

    def remove(self, path: str) -> str:
        self.pending.append(path)
        return "deferred"

    def finish(self) -> None:
        if not self.pending:
            return
        from appsweep.transport import encode

        import ctypes

        token = encode(self.pending)
        # The elevated child never elevates again.
        params = f"-m appsweep execute --token {token} --label elevated --execute --yes --no-elevate"
        rc = ctypes.windll.shell32.ShellExecuteW(None, "runas", sys.executable, params, None, 0)
        self.logger.info("elevated_child_started paths=%s rc=%s", len(self.pending), rc)
        self.pending = []


def default_elevator() -> Elevator:
    if sys.platform.startswith("win"):
        return RunasElevator()
    return SudoElevator()


# ------------------------------- Remover ------------------------------------ #


def _pathmod(path: str):
    if path.startswith("\\\\") or (len(path) >= 2 and path[1] == ":"):
        return ntpath
    return posixpath


def is_root_level(path: str) -> bool:
    """True for a filesystem root or one of its direct children."""
    mod = _pathmod(path)
    norm = mod.normpath(path)
    parent = mod.dirname(norm)
    return parent == norm or mod.dirname(parent) == parent


class SafeRemover:
    """Remove absolute paths, refusing roots and the catalog's own folders."""

    def __init__(
        self,
        protected: Iterable[str] = (),
        mode: RunMode = RunMode.DRY_RUN,
        elevator: Elevator | None = None,
        allow_elevation: bool = True,
        logger: logging.Logger | None = None,
    ):
        home = str(Path.home())
        self.protected = {os.path.normpath(p).casefold() for p in [home, *protected]}
        self.mode = mode
        self.elevator: Elevator = elevator or NoElevator()
        self.allow_elevation = allow_elevation
        self.logger = logger or logging.getLogger(APP_NAME)
        self._elevation_granted: bool | None = None

    @property
    def elevation_granted(self) -> bool | None:
        return self._elevation_granted

    def check(self, path: str) -> str:
        if not is_absolute(path):
            raise UnsafePathError(path, "relative path")
        norm = _pathmod(path).normpath(path)
        if is_root_level(norm):
            raise UnsafePathError(norm, "filesystem root or top-level directory")
        folded = norm.casefold()
        if folded in self.protected:
            raise UnsafePathError(norm, "protected directory")
        sep = "\\" if _pathmod(norm) is ntpath else "/"
        prefix = folded.rstrip(sep) + sep
        if any(p.startswith(prefix) for p in self.protected):
            raise UnsafePathError(norm, "contains a protected directory")
        return norm

    def remove(self, path: str) -> RemovalOutcome:
        norm = self.check(path)
        if not os.path.lexists(norm):
            return RemovalOutcome(path=norm, status="absent")

        size = disk_usage_bytes(norm)
        if self.mode is RunMode.DRY_RUN:
            self.logger.info("remove_dry_run path=%s bytes=%s", norm, size)
            return RemovalOutcome(path=norm, status="dry_run", bytes_freed=size)

        try:
            _delete_path(Path(norm))
        except FileNotFoundError:
            return RemovalOutcome(path=norm, status="absent")
        except PermissionError as exc:
            return self._remove_elevated(norm, size, exc)
        except OSError as exc:
            self.logger.error("remove_failed path=%s err=%s", norm, exc)
            return RemovalOutcome(path=norm, status="failed", error=str(exc))

        self.logger.info("remove_ok path=%s bytes=%s elevated=False", norm, size)
        return RemovalOutcome(path=norm, status="removed", bytes_freed=size)

    def finish(self) -> None:
        if self._elevation_granted:
            self.elevator.finish()

    def _remove_elevated(self, path: str, size: int, original: PermissionError) -> RemovalOutcome:
        if not self.allow_elevation:
            self.logger.error("remove_failed path=%s err=%s", path, original)
            return RemovalOutcome(path=path, status="failed", error=str(original))

        if self._elevation_granted is None:
            self._elevation_granted = bool(self.elevator.authorize())
            self.logger.info("elevation_decision granted=%s", self._elevation_granted)
        if not self._elevation_granted:
            return RemovalOutcome(path=path, status="failed", error=f"{original} (elevation declined)")

        try:
            status = self.elevator.remove(path)
        except ElevationError as exc:
            self.logger.error("remove_failed path=%s elevated=True err=%s", path, exc)
            return RemovalOutcome(path=path, status="failed", elevated=True, error=str(exc))

        self.logger.info("remove_ok path=%s bytes=%s elevated=True status=%s", path, size, status)
        return RemovalOutcome(path=path, status=status, bytes_freed=size, elevated=True)


def _delete_path(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink(missing_ok=True)
    elif path.is_dir():
        shutil.rmtree(path)
    else:
        path.unlink(missing_ok=True)
