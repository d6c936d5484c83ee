import ctypes
import sys
from pathlib import Path

import pytest

from appsweep import remover as remover_module
from appsweep.cli import build_parser
from appsweep.errors import UnsafePathError
from appsweep.remover import RunasElevator, RunMode, SafeRemover, is_root_level
from appsweep.transport import decode

from conftest import FakeElevator, write_file


def live_remover(tmp_path, **kwargs):
    protected = [str(tmp_path / "home"), str(tmp_path / "home" / "Library" / "Caches")]
    return SafeRemover(protected=protected, mode=RunMode.LIVE, **kwargs)


@pytest.mark.parametrize("path", ["relative/path", "Library/Caches", "", "./x"])
def test_relative_paths_are_refused(tmp_path, path):
    with pytest.raises(UnsafePathError):
        live_remover(tmp_path).remove(path)


@pytest.mark.parametrize("path", ["/", "/usr", "/Applications", "/Library/", "C:\\", "C:\\Windows"])
def test_roots_and_top_level_directories_are_refused(tmp_path, path):
    with pytest.raises(UnsafePathError):
        live_remover(tmp_path).check(path)


def test_root_level_detection():
    assert is_root_level("/")
    assert is_root_level("/System")
    assert not is_root_level("/Library/Caches")
    assert is_root_level("D:\\Program Files")
    assert not is_root_level("D:\\Program Files\\Vendor")


def test_home_and_catalog_roots_are_refused(tmp_path):
    remover = live_remover(tmp_path)
    caches = tmp_path / "home" / "Library" / "Caches"
    caches.mkdir(parents=True)

    for target in [Path.home(), tmp_path / "home", caches, tmp_path / "home" / "Library"]:
        with pytest.raises(UnsafePathError):
            remover.remove(str(target))
    assert caches.exists()


def test_files_and_directories_are_removed(tmp_path):
    remover = live_remover(tmp_path)
    f = write_file(tmp_path / "home" / "Library" / "Caches" / "com.example.TestApp" / "Cache.db", 4096)
    single = write_file(tmp_path / "home" / "Library" / "Preferences" / "com.example.TestApp.plist")

    d_outcome = remover.remove(str(f.parent))
    f_outcome = remover.remove(str(single))

    assert d_outcome.status == "removed" and d_outcome.bytes_freed >= 4096
    assert f_outcome.status == "removed"
    assert not f.parent.exists() and not single.exists()


def test_removing_absent_path_is_success(tmp_path):
    outcome = live_remover(tmp_path).remove(str(tmp_path / "home" / "gone"))

    assert outcome.ok
    assert outcome.status == "absent"


def test_symlink_is_removed_not_its_target(tmp_path):
    target = write_file(tmp_path / "keep" / "data")
    link = tmp_path / "home" / "link"
    link.parent.mkdir(parents=True)
    link.symlink_to(target.parent)

    live_remover(tmp_path).remove(str(link))

    assert not link.exists() and target.exists()


def test_dry_run_does_not_touch_disk(tmp_path):
    f = write_file(tmp_path / "home" / "Library" / "Logs" / "TestApp" / "run.log", 2000)
    remover = SafeRemover(protected=[], mode=RunMode.DRY_RUN)

    outcome = remover.remove(str(f.parent))

    assert outcome.status == "dry_run"
    assert outcome.bytes_freed >= 2000
    assert f.exists()


def _deny_everything(monkeypatch):
    def denied(path):
        raise PermissionError(13, "Permission denied", str(path))

    monkeypatch.setattr(remover_module, "_delete_path", denied)


def test_permission_failure_elevates_once_per_run(tmp_path, monkeypatch):
    _deny_everything(monkeypatch)
    elevator = FakeElevator(grant=True)
    remover = live_remover(tmp_path, elevator=elevator)
    paths = [write_file(tmp_path / "sys" / "LaunchDaemons" / f"com.example.d{i}.plist") for i in range(3)]

    outcomes = [remover.remove(str(p)) for p in paths]

    assert elevator.authorize_calls == 1
    assert elevator.removed == [str(p) for p in paths]
    assert all(o.ok and o.elevated for o in outcomes)


def test_declined_elevation_is_cached_and_recorded(tmp_path, monkeypatch):
    _deny_everything(monkeypatch)
    elevator = FakeElevator(grant=False)
    remover = live_remover(tmp_path, elevator=elevator)
    paths = [write_file(tmp_path / "sys" / f"helper{i}") for i in range(2)]

    outcomes = [remover.remove(str(p)) for p in paths]

    assert elevator.authorize_calls == 1
    assert [o.status for o in outcomes] == ["failed", "failed"]
    assert "elevation declined" in outcomes[0].error


def test_failed_elevated_removal_is_a_path_failure(tmp_path, monkeypatch):
    _deny_everything(monkeypatch)
    remover = live_remover(tmp_path, elevator=FakeElevator(grant=True, fail=True))

    outcome = remover.remove(str(write_file(tmp_path / "sys" / "helper")))

    assert outcome.status == "failed"
    assert outcome.elevated


def test_elevation_disabled_never_prompts(tmp_path, monkeypatch):
    _deny_everything(monkeypatch)
    elevator = FakeElevator(grant=True)
    remover = live_remover(tmp_path, elevator=elevator, allow_elevation=False)

    outcome = remover.remove(str(write_file(tmp_path / "sys" / "helper")))

    assert outcome.status == "failed"
    assert elevator.authorize_calls == 0


class FakeShell32:
    def __init__(self):
        self.calls = []

    def ShellExecuteW(self, hwnd, verb, file, params, directory, show):
        self.calls.append((verb, file, params))
        return 42


class FakeWindll:
    def __init__(self):
        self.shell32 = FakeShell32()


def test_runas_child_is_started_once_and_never_elevates_again(tmp_path, monkeypatch):
    windll = FakeWindll()
    monkeypatch.setattr(ctypes, "windll", windll, raising=False)
    monkeypatch.setattr(sys, "platform", "win32")
    _deny_everything(monkeypatch)
    elevator = RunasElevator()
    remover = live_remover(tmp_path, elevator=elevator)
    paths = [str(write_file(tmp_path / "sys" / f"helper{i}")) for i in range(2)]

    outcomes = [remover.remove(p) for p in paths]
    remover.finish()

    assert [o.status for o in outcomes] == ["deferred", "deferred"]
    assert len(windll.shell32.calls) == 1
    verb, file, params = windll.shell32.calls[0]
    assert verb == "runas"
    assert file == sys.executable
    args = params.split()
    assert args[:3] == ["-m", "appsweep", "execute"]
    assert "--no-elevate" in args
    assert decode(args[args.index("--token") + 1], "elevated") == paths
    child = build_parser().parse_args(args[2:])
    assert child.command == "execute" and child.no_elevate and child.execute and child.yes
    assert elevator.pending == []


def test_runas_finish_without_pending_paths_starts_nothing(monkeypatch):
    windll = FakeWindll()
    monkeypatch.setattr(ctypes, "windll", windll, raising=False)

    RunasElevator().finish()

    assert windll.shell32.calls == []


def test_package_exports_the_remover_run_mode():
    import appsweep

    assert appsweep.RunMode is RunMode
    assert "RunMode" in appsweep.__all__
