"""Application records and the bundle manifest reader."""

from __future__ import annotations

import dataclasses
import os
import plistlib
import sys
from pathlib import Path
from typing import Any

from appsweep.sizing import total_size
from appsweep.utils import run_command

NEVER = "Never"


@dataclasses.dataclass(slots=True)
class ApplicationRecord:
    """One installed (or already deleted) application selected for removal."""

    bundle_path: str
    display_name: str
    bundle_identifier: str | None = None
    size_on_disk_kb: int = 0
    last_used: str = NEVER
    executable_name: str | None = None

    @property
    def label(self) -> str:
        return self.display_name or os.path.basename(self.bundle_path)

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


def read_info_plist(bundle_path: str) -> dict[str, Any]:
    """Return the parsed ``Contents/Info.plist`` of a bundle, or ``{}``."""
    plist_path = Path(bundle_path) / "Contents" / "Info.plist"
    if not plist_path.is_file():
        return {}
    try:
        with plist_path.open("rb") as fp:
            data = plistlib.load(fp)
    except (OSError, plistlib.InvalidFileException, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


def last_used_date(bundle_path: str) -> str:
    """Spotlight's last-used date as ``YYYY-MM-DD``, ``Never`` when unknown."""
    if sys.platform != "darwin":
        return NEVER
    code, out, _ = run_command(["mdls", "-name", "kMDItemLastUsedDate", "-raw", bundle_path], timeout=10)
    value = out.strip()
    if code != 0 or not value or value == "(null)":
        return NEVER
    return value.split(" ")[0]


def record_from_bundle(bundle_path: str, *, with_size: bool = True) -> ApplicationRecord:
    """Build a record from a ``.app`` bundle (or a plain executable path)."""
    path = os.path.abspath(os.path.expanduser(bundle_path))
    info = read_info_plist(path)
    stem = Path(path).name
    if stem.endswith(".app"):
        stem = stem[: -len(".app")]

    display_name = str(info.get("CFBundleName") or info.get("CFBundleDisplayName") or stem)
    executable = info.get("CFBundleExecutable")
    return ApplicationRecord(
        bundle_path=path,
        display_name=display_name,
        bundle_identifier=info.get("CFBundleIdentifier"),
        size_on_disk_kb=total_size([path]) if with_size else 0,
        last_used=last_used_date(path),
        executable_name=str(executable) if executable else None,
    )
