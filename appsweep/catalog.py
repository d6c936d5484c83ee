"""Per-OS catalog of the storage locations an application may leave behind.

The catalog is data: an ordered list of ``CatalogEntry(category, template)``.
Templates come in three closed variants and are expanded by the resolver:

- ``ExactPath``: one candidate built by substituting identifiers into a
  fixed location.
- ``GlobPath``: wildcard segments (versioned vendor folders, plug-in kinds)
  expanded with ``glob``; substituted values are escaped first.
- ``PrefixedEntries``: a directory whose entries are keyed by an identifier
  followed by free text (crash reports, launch agents, receipts). Every
  entry goes through the prefix-collision guard.

Placeholders: ``{home}``, ``{bundle_id}``, ``{name}``, ``{exe}``,
``{name_compact}`` and, on Windows, ``{appdata}``, ``{localappdata}``,
``{programdata}``, ``{temp}``.
"""

from __future__ import annotations

import dataclasses
import enum
import json
import os
import string
import sys
from pathlib import Path
from typing import Iterator, Union

MACOS = "darwin"
WINDOWS = "win32"

ROOT_PLACEHOLDERS = {"home", "appdata", "localappdata", "programdata", "temp"}
KNOWN_PLACEHOLDERS = ROOT_PLACEHOLDERS | {"bundle_id", "name", "exe", "name_compact"}


class Category(str, enum.Enum):
    APPLICATION_SUPPORT = "application_support"
    CACHES = "caches"
    PREFERENCES = "preferences"
    SAVED_STATE = "saved_state"
    CONTAINERS = "containers"
    GROUP_CONTAINERS = "group_containers"
    HTTP_STORAGE = "http_storage"
    COOKIES = "cookies"
    WEBKIT = "webkit"
    LOGS = "logs"
    DIAGNOSTIC_REPORTS = "diagnostic_reports"
    LAUNCH_AGENTS = "launch_agents"
    LAUNCH_DAEMONS = "launch_daemons"
    PRIVILEGED_HELPERS = "privileged_helpers"
    PACKAGE_RECEIPTS = "package_receipts"
    PLUGINS = "plugins"
    HIDDEN_FOLDERS = "hidden_folders"
    APP_DATA = "app_data"
    LOCAL_APP_DATA = "local_app_data"
    PROGRAM_DATA = "program_data"
    TEMP = "temp"
    CRASH_DUMPS = "crash_dumps"
    SHORTCUTS = "shortcuts"
    BUNDLE = "bundle"
    OTHER = "other"


# Categories whose entries are services that must be unloaded before removal.
SERVICE_CATEGORIES = {Category.LAUNCH_AGENTS, Category.LAUNCH_DAEMONS}


@dataclasses.dataclass(frozen=True, slots=True)
class ArtifactPath:
    """One existing filesystem entry that belongs to an application."""

    absolute_path: str
    category: Category

    def __post_init__(self) -> None:
        if not is_absolute(self.absolute_path):
            raise ValueError(f"ArtifactPath requires an absolute path: {self.absolute_path!r}")

    def to_dict(self) -> dict[str, str]:
        return {"path": self.absolute_path, "category": self.category.value}


@dataclasses.dataclass(frozen=True, slots=True)
class ExactPath:
    pattern: str


@dataclasses.dataclass(frozen=True, slots=True)
class GlobPath:
    pattern: str


@dataclasses.dataclass(frozen=True, slots=True)
class PrefixedEntries:
    directory: str
    key: str = "exe"
    # Group containers are named "<TEAMID>.<bundle id>"; the team id is ignored.
    team_prefixed: bool = False


PathTemplate = Union[ExactPath, GlobPath, PrefixedEntries]


@dataclasses.dataclass(frozen=True, slots=True)
class CatalogEntry:
    category: Category
    template: PathTemplate

    def placeholders(self) -> set[str]:
        fields = set(_fields(template_text(self.template)))
        if isinstance(self.template, PrefixedEntries):
            fields.add(self.template.key)
        return fields


def template_text(template: PathTemplate) -> str:
    if isinstance(template, PrefixedEntries):
        return template.directory
    return template.pattern


def _fields(pattern: str) -> Iterator[str]:
    for _, field_name, _, _ in string.Formatter().parse(pattern):
        if field_name:
            yield field_name


def is_absolute(path: str) -> bool:
    """True for POSIX absolute paths, ``C:\\`` style drive paths and UNC paths."""
    if not path:
        return False
    if path.startswith("/") or path.startswith("\\\\"):
        return True
    return len(path) >= 3 and path[0].isalpha() and path[1] == ":" and path[2] in "\\/"


_DIRECTORY_HINTS: list[tuple[str, Category]] = [
    ("/Library/LaunchAgents/", Category.LAUNCH_AGENTS),
    ("/Library/LaunchDaemons/", Category.LAUNCH_DAEMONS),
    ("/Library/PrivilegedHelperTools/", Category.PRIVILEGED_HELPERS),
    ("/var/db/receipts/", Category.PACKAGE_RECEIPTS),
    ("/Logs/DiagnosticReports/", Category.DIAGNOSTIC_REPORTS),
    ("/Library/Application Support/", Category.APPLICATION_SUPPORT),
    ("/Library/Caches/", Category.CACHES),
    ("/Library/Preferences/", Category.PREFERENCES),
    ("/Library/Saved Application State/", Category.SAVED_STATE),
    ("/Library/Group Containers/", Category.GROUP_CONTAINERS),
    ("/Library/Containers/", Category.CONTAINERS),
    ("/Library/Logs/", Category.LOGS),
    ("/AppData/Roaming/", Category.APP_DATA),
    ("/AppData/Local/CrashDumps/", Category.CRASH_DUMPS),
    ("/AppData/Local/Temp/", Category.TEMP),
    ("/AppData/Local/", Category.LOCAL_APP_DATA),
    ("/ProgramData/", Category.PROGRAM_DATA),
]


def categorize(path: str) -> Category:
    """Best-effort category for a bare path (e.g. one received in a token)."""
    normalized = path.replace("\\", "/")
    if normalized.endswith(".app") or normalized.endswith(".app/"):
        return Category.BUNDLE
    for hint, category in _DIRECTORY_HINTS:
        if hint.lower() in normalized.lower():
            return category
    return Category.OTHER


# ------------------------------- Catalogs ----------------------------------- #

DIAGNOSTIC_SUFFIXES = (".crash", ".ips", ".diag", ".hang", ".spin", ".cpu_resource.diag")

MACOS_ENTRIES: list[CatalogEntry] = [
    CatalogEntry(Category.APPLICATION_SUPPORT, ExactPath("{home}/Library/Application Support/{bundle_id}")),
    CatalogEntry(Category.APPLICATION_SUPPORT, ExactPath("{home}/Library/Application Support/{name}")),
    CatalogEntry(Category.CACHES, PrefixedEntries("{home}/Library/Caches", key="bundle_id")),
    CatalogEntry(Category.CACHES, ExactPath("{home}/Library/Caches/{name}")),
    CatalogEntry(Category.PREFERENCES, ExactPath("{home}/Library/Preferences/{bundle_id}.plist")),
    CatalogEntry(Category.PREFERENCES, PrefixedEntries("{home}/Library/Preferences/ByHost", key="bundle_id")),
    CatalogEntry(Category.SAVED_STATE, ExactPath("{home}/Library/Saved Application State/{bundle_id}.savedState")),
    CatalogEntry(Category.CONTAINERS, ExactPath("{home}/Library/Containers/{bundle_id}")),
    CatalogEntry(
        Category.GROUP_CONTAINERS,
        PrefixedEntries("{home}/Library/Group Containers", key="bundle_id", team_prefixed=True),
    ),
    CatalogEntry(Category.HTTP_STORAGE, ExactPath("{home}/Library/HTTPStorages/{bundle_id}")),
    CatalogEntry(Category.HTTP_STORAGE, ExactPath("{home}/Library/HTTPStorages/{bundle_id}.binarycookies")),
    CatalogEntry(Category.COOKIES, ExactPath("{home}/Library/Cookies/{bundle_id}.binarycookies")),
    CatalogEntry(Category.WEBKIT, ExactPath("{home}/Library/WebKit/{bundle_id}")),
    CatalogEntry(Category.LOGS, ExactPath("{home}/Library/Logs/{bundle_id}")),
    CatalogEntry(Category.LOGS, ExactPath("{home}/Library/Logs/{name}")),
    CatalogEntry(Category.DIAGNOSTIC_REPORTS, PrefixedEntries("{home}/Library/Logs/DiagnosticReports", key="exe")),
    CatalogEntry(Category.DIAGNOSTIC_REPORTS, PrefixedEntries("/Library/Logs/DiagnosticReports", key="exe")),
    CatalogEntry(Category.LAUNCH_AGENTS, PrefixedEntries("{home}/Library/LaunchAgents", key="bundle_id")),
    CatalogEntry(Category.LAUNCH_AGENTS, PrefixedEntries("/Library/LaunchAgents", key="bundle_id")),
    CatalogEntry(Category.LAUNCH_DAEMONS, PrefixedEntries("/Library/LaunchDaemons", key="bundle_id")),
    CatalogEntry(Category.PRIVILEGED_HELPERS, PrefixedEntries("/Library/PrivilegedHelperTools", key="bundle_id")),
    CatalogEntry(Category.PACKAGE_RECEIPTS, PrefixedEntries("/private/var/db/receipts", key="bundle_id")),
    CatalogEntry(Category.PLUGINS, GlobPath("/Library/Audio/Plug-Ins/*/{name}.*")),
    CatalogEntry(Category.PLUGINS, ExactPath("/Library/Internet Plug-Ins/{name}.plugin")),
    CatalogEntry(Category.PLUGINS, ExactPath("{home}/Library/PreferencePanes/{name}.prefPane")),
    CatalogEntry(Category.PLUGINS, ExactPath("/Library/PreferencePanes/{name}.prefPane")),
    CatalogEntry(Category.HIDDEN_FOLDERS, ExactPath("{home}/.{name_compact}")),
]

WINDOWS_ENTRIES: list[CatalogEntry] = [
    CatalogEntry(Category.APP_DATA, ExactPath("{appdata}/{name}")),
    CatalogEntry(Category.APP_DATA, ExactPath("{appdata}/{bundle_id}")),
    CatalogEntry(Category.APP_DATA, GlobPath("{appdata}/*/{name}")),
    CatalogEntry(Category.LOCAL_APP_DATA, ExactPath("{localappdata}/{name}")),
    CatalogEntry(Category.LOCAL_APP_DATA, ExactPath("{localappdata}/{bundle_id}")),
    CatalogEntry(Category.LOCAL_APP_DATA, GlobPath("{localappdata}/*/{name}")),
    CatalogEntry(Category.LOCAL_APP_DATA, ExactPath("{localappdata}/Programs/{name}")),
    CatalogEntry(Category.PROGRAM_DATA, ExactPath("{programdata}/{name}")),
    CatalogEntry(Category.PROGRAM_DATA, GlobPath("{programdata}/*/{name}")),
    CatalogEntry(Category.TEMP, PrefixedEntries("{temp}", key="exe")),
    CatalogEntry(Category.CRASH_DUMPS, PrefixedEntries("{localappdata}/CrashDumps", key="exe")),
    CatalogEntry(Category.SHORTCUTS, ExactPath("{appdata}/Microsoft/Windows/Start Menu/Programs/{name}.lnk")),
    CatalogEntry(Category.SHORTCUTS, ExactPath("{appdata}/Microsoft/Windows/Start Menu/Programs/{name}")),
    CatalogEntry(Category.SHORTCUTS, ExactPath("{programdata}/Microsoft/Windows/Start Menu/Programs/{name}.lnk")),
    CatalogEntry(Category.SHORTCUTS, ExactPath("{programdata}/Microsoft/Windows/Start Menu/Programs/{name}")),
]

# Directories that must never be removed themselves, whatever the catalog says.
MACOS_PROTECTED = [
    "{home}",
    "{home}/Library",
    "{home}/Applications",
    "{home}/Desktop",
    "{home}/Documents",
    "{home}/Downloads",
    "/Applications",
    "/Library",
    "/System",
    "/System/Library",
    "/private/var/db",
]

WINDOWS_PROTECTED = [
    "{home}",
    "{appdata}",
    "{localappdata}",
    "{programdata}",
    "{temp}",
    "{home}/Desktop",
    "{home}/Documents",
    "{home}/Downloads",
]


@dataclasses.dataclass(slots=True)
class TemplateContext:
    """Location roots substituted into catalog templates."""

    home: str
    appdata: str = ""
    localappdata: str = ""
    programdata: str = ""
    temp: str = ""

    @classmethod
    def from_environment(cls, home: str | None = None) -> "TemplateContext":
        home_dir = str(Path(home).expanduser()) if home else str(Path.home())
        env = os.environ
        return cls(
            home=home_dir,
            appdata=env.get("APPDATA") or os.path.join(home_dir, "AppData", "Roaming"),
            localappdata=env.get("LOCALAPPDATA") or os.path.join(home_dir, "AppData", "Local"),
            programdata=env.get("PROGRAMDATA") or "C:\\ProgramData",
            temp=env.get("TEMP") or os.path.join(home_dir, "AppData", "Local", "Temp"),
        )

    def roots(self) -> dict[str, str]:
        return dataclasses.asdict(self)


class PathCatalog:
    """Ordered, per-platform list of catalog entries."""

    def __init__(self, platform: str, entries: list[CatalogEntry], protected: list[str]):
        self.platform = platform
        self.entries = list(entries)
        self.protected = list(protected)

    @classmethod
    def for_platform(cls, platform: str | None = None, extra_file: str | None = None) -> "PathCatalog":
        platform = platform or sys.platform
        if platform.startswith("win"):
            catalog = cls(WINDOWS, WINDOWS_ENTRIES, WINDOWS_PROTECTED)
        else:
            catalog = cls(MACOS, MACOS_ENTRIES, MACOS_PROTECTED)
        if extra_file:
            catalog.merge_file(extra_file)
        return catalog

    def merge_file(self, extra_file: str) -> None:
        """Append entries from a JSON object mapping category -> list of patterns."""
        path = Path(extra_file)
        if not path.exists():
            raise FileNotFoundError(f"Catalog extra file not found: {extra_file}")
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("Catalog extra file must be a JSON object")
        for category_name, patterns in data.items():
            try:
                category = Category(category_name)
            except ValueError as exc:
                raise ValueError(f"Unknown catalog category: {category_name}") from exc
            if not isinstance(patterns, list):
                continue
            for pattern in patterns:
                text = str(pattern)
                if text.startswith("~"):
                    text = "{home}" + text[1:]
                unknown = set(_fields(text)) - KNOWN_PLACEHOLDERS
                if unknown:
                    raise ValueError(f"Unknown placeholder(s) {sorted(unknown)} in catalog pattern: {text}")
                template: PathTemplate = GlobPath(text) if "*" in text or "?" in text else ExactPath(text)
                self.entries.append(CatalogEntry(category, template))

    def base_directories(self, context: TemplateContext) -> set[str]:
        """Directories the catalog looks inside; never valid removal targets."""
        roots = context.roots()
        bases: set[str] = set()
        for pattern in self.protected:
            bases.add(os.path.normpath(pattern.format(**roots)))
        for entry in self.entries:
            text = template_text(entry.template)
            if isinstance(entry.template, PrefixedEntries):
                base = text
            else:
                base = _fixed_prefix(text)
            try:
                bases.add(os.path.normpath(base.format(**roots)))
            except (KeyError, IndexError):
                # Prefix still references an application placeholder.
                continue
        return {b for b in bases if b and b != "."}

    def __iter__(self) -> Iterator[CatalogEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)


def _fixed_prefix(pattern: str) -> str:
    """Leading directory of a pattern that contains no application placeholder or wildcard."""
    parts = pattern.replace("\\", "/").split("/")
    fixed: list[str] = []
    for part in parts[:-1]:
        names = set(_fields(part))
        if "*" in part or "?" in part or "[" in part or names - ROOT_PLACEHOLDERS:
            break
        fixed.append(part)
    return "/".join(fixed) or "/"
