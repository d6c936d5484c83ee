"""OS integrations touched around removal: service unloading and the Dock."""

from __future__ import annotations

import logging
import os
import plistlib
import sys
from typing import Protocol
from urllib.parse import unquote, urlparse

from appsweep.apps import ApplicationRecord
from appsweep.remover import RunMode
from appsweep.utils import APP_NAME, run_command

DOCK_DOMAIN = "com.apple.dock"


class ServiceController(Protocol):
    def unload(self, plist_path: str) -> bool: ...


class LauncherIntegration(Protocol):
    def unregister(self, record: ApplicationRecord) -> bool: ...


class NullServiceController:
    def unload(self, plist_path: str) -> bool:
        return True


class NullLauncher:
    def unregister(self, record: ApplicationRecord) -> bool:
        return True


class LaunchctlController:
    """Boot out a LaunchAgent/LaunchDaemon before its plist is deleted."""

    def __init__(self, mode: RunMode = RunMode.DRY_RUN, logger: logging.Logger | None = None):
        self.mode = mode
        self.logger = logger or logging.getLogger(APP_NAME)

    def unload(self, plist_path: str) -> bool:
        if self.mode is RunMode.DRY_RUN:
            return True
        if plist_path.startswith("/Library/LaunchDaemons"):
            domain = "system"
        else:
            domain = f"gui/{os.getuid()}"
        code, _, err = run_command(["launchctl", "bootout", domain, plist_path], timeout=30)
        if code != 0:
            # Older launchctl, or the job was never loaded.
            code, _, err = run_command(["launchctl", "unload", plist_path], timeout=30)
        if code != 0:
            self.logger.info("launchctl_unload_skipped path=%s err=%s", plist_path, err.strip())
        return code == 0


class DockLauncher:
    """Drop an application's tile from the Dock's persistent-apps list."""

    def __init__(self, mode: RunMode = RunMode.DRY_RUN, logger: logging.Logger | None = None):
        self.mode = mode
        self.logger = logger or logging.getLogger(APP_NAME)

    def unregister(self, record: ApplicationRecord) -> bool:
        code, out, err = run_command(["defaults", "export", DOCK_DOMAIN, "-"], timeout=30)
        if code != 0 or not out.strip():
            self.logger.info("dock_export_failed err=%s", err.strip())
            return False
        try:
            prefs = plistlib.loads(out.encode("utf-8"))
        except (plistlib.InvalidFileException, ValueError) as exc:
            self.logger.info("dock_parse_failed err=%s", exc)
            return False

        tiles = prefs.get("persistent-apps", [])
        kept = [t for t in tiles if not tile_matches(t, record.bundle_path)]
        if len(kept) == len(tiles):
            return True
        if self.mode is RunMode.DRY_RUN:
            self.logger.info("dock_unregister_dry_run app=%s tiles=%s", record.label, len(tiles) - len(kept))
            return True

        prefs["persistent-apps"] = kept
        payload = plistlib.dumps(prefs).decode("utf-8")
        code, _, err = run_command(["defaults", "import", DOCK_DOMAIN, "-"], timeout=30, input_text=payload)
        if code != 0:
            self.logger.error("dock_import_failed app=%s err=%s", record.label, err.strip())
            return False
        run_command(["killall", "Dock"], timeout=30)
        self.logger.info("dock_unregistered app=%s", record.label)
        return True


def tile_matches(tile: object, bundle_path: str) -> bool:
    if not isinstance(tile, dict):
        return False
    file_data = tile.get("tile-data", {}).get("file-data", {})
    url = file_data.get("_CFURLString", "") if isinstance(file_data, dict) else ""
    if not url:
        return False
    path = unquote(urlparse(url).path) if url.startswith("file://") else url
    return path.rstrip("/") == bundle_path.rstrip("/")


def default_integrations(mode: RunMode) -> tuple[ServiceController, LauncherIntegration]:
    if sys.platform == "darwin":
        return LaunchctlController(mode), DockLauncher(mode)
    return NullServiceController(), NullLauncher()
