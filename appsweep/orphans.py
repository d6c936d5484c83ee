"""Find per-user data left by applications that are no longer installed."""

from __future__ import annotations

import dataclasses
import os
from pathlib import Path
from typing import Any, Iterable

from appsweep.apps import read_info_plist
from appsweep.sizing import total_size
from appsweep.utils import human_bytes

ORPHAN_SCAN_DIRS = [
    "Library/Containers",
    "Library/Application Support",
    "Library/Caches",
    "Library/Preferences",
    "Library/Saved Application State",
]

STRIP_SUFFIXES = (".plist", ".savedState")
SKIP_PREFIXES = ("com.apple.", "group.com.apple.")


@dataclasses.dataclass(slots=True)
class OrphanRecord:
    name: str
    path: str
    probable_id: str
    size_kb: int

    def to_dict(self) -> dict[str, Any]:
        data = dataclasses.asdict(self)
        data["size_human"] = human_bytes(self.size_kb * 1024)
        return data


def probable_identifier(entry: str) -> str | None:
    """Reverse-domain identifier an entry is named after, if it looks like one."""
    clean = entry
    for suffix in STRIP_SUFFIXES:
        if clean.endswith(suffix):
            clean = clean[: -len(suffix)]
            break
    parts = clean.split(".")
    if len(parts) < 3 or not all(parts):
        return None
    if clean.startswith(SKIP_PREFIXES):
        return None
    return clean


def find_orphans(installed_ids: Iterable[str], home: str | None = None) -> list[OrphanRecord]:
    home_dir = Path(home).expanduser() if home else Path.home()
    installed = {i for i in installed_ids if i}
    orphans: list[OrphanRecord] = []

    for rel in ORPHAN_SCAN_DIRS:
        directory = home_dir / rel
        try:
            entries = sorted(os.listdir(directory))
        except OSError:
            continue
        for entry in entries:
            ident = probable_identifier(entry)
            if not ident or ident in installed:
                continue
            if any(ident.startswith(i + ".") for i in installed):
                continue
            full_path = str(directory / entry)
            orphans.append(
                OrphanRecord(name=entry, path=full_path, probable_id=ident, size_kb=total_size([full_path]))
            )

    return sorted(orphans, key=lambda o: o.size_kb, reverse=True)


def installed_bundle_ids(app_dirs: Iterable[str]) -> list[str]:
    """Bundle identifiers of every ``.app`` directly inside ``app_dirs``."""
    ids: list[str] = []
    for folder in app_dirs:
        try:
            entries = os.listdir(os.path.expanduser(folder))
        except OSError:
            continue
        for entry in entries:
            if not entry.endswith(".app"):
                continue
            ident = read_info_plist(os.path.join(os.path.expanduser(folder), entry)).get("CFBundleIdentifier")
            if ident:
                ids.append(str(ident))
    return ids
