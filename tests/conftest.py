import plistlib
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

BUNDLE_ID = "com.example.TestApp"


class FakeElevator:
    def __init__(self, grant=True, fail=False, status="removed"):
        self.grant = grant
        self.fail = fail
        self.status = status
        self.authorize_calls = 0
        self.removed = []

    def authorize(self):
        self.authorize_calls += 1
        return self.grant

    def remove(self, path):
        from appsweep.errors import ElevationError

        if self.fail:
            raise ElevationError("sudo: a password is required")
        self.removed.append(path)
        return self.status

    def finish(self):
        return None


class FakeTerminator:
    def __init__(self):
        self.calls = []

    def terminate(self, record):
        from appsweep.processes import TerminationReport

        self.calls.append(record.display_name)
        return TerminationReport()


class FakeLauncher:
    def __init__(self, ok=True):
        self.ok = ok
        self.unregistered = []

    def unregister(self, record):
        self.unregistered.append(record.bundle_path)
        return self.ok


class FakeServices:
    def __init__(self):
        self.unloaded = []

    def unload(self, plist_path):
        self.unloaded.append(plist_path)
        return True


def write_file(path: Path, size: int = 16) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"x" * size)
    return path


@pytest.fixture
def home(tmp_path):
    h = tmp_path / "home"
    (h / "Library").mkdir(parents=True)
    return h


@pytest.fixture
def make_bundle(tmp_path):
    def _make(name="TestApp", bundle_id=BUNDLE_ID, executable=None):
        bundle = tmp_path / "Applications" / f"{name}.app"
        contents = bundle / "Contents"
        (contents / "MacOS").mkdir(parents=True)
        info = {"CFBundleName": name, "CFBundleIdentifier": bundle_id, "CFBundleExecutable": executable or name}
        with (contents / "Info.plist").open("wb") as fp:
            plistlib.dump(info, fp)
        write_file(contents / "MacOS" / (executable or name), 2048)
        return bundle

    return _make


@pytest.fixture
def leftovers(home):
    """The usual footprint of com.example.TestApp under a fake home."""
    lib = home / "Library"
    paths = [
        write_file(lib / "Application Support" / BUNDLE_ID / "state.db", 4096),
        write_file(lib / "Caches" / BUNDLE_ID / "Cache.db", 1500),
        write_file(lib / "Preferences" / f"{BUNDLE_ID}.plist", 300),
        write_file(lib / "LaunchAgents" / f"{BUNDLE_ID}.plist", 200),
        write_file(lib / "Containers" / BUNDLE_ID / "Data" / "blob", 10),
    ]
    return [
        lib / "Application Support" / BUNDLE_ID,
        lib / "Caches" / BUNDLE_ID,
        paths[2],
        paths[3],
        lib / "Containers" / BUNDLE_ID,
    ]
