"""Turn an application's identifiers into the concrete leftovers on disk."""

from __future__ import annotations

import glob
import logging
import os
import re
from typing import Iterable

from appsweep.apps import ApplicationRecord
from appsweep.catalog import (
    ArtifactPath,
    CatalogEntry,
    ExactPath,
    GlobPath,
    PathCatalog,
    PrefixedEntries,
    TemplateContext,
)
from appsweep.errors import DiscoveryWarning
from appsweep.utils import APP_NAME, is_subpath

TEAM_PREFIX_RE = re.compile(r"^[A-Z0-9]{10}\.")
APP_KEYS = ("bundle_id", "name", "exe", "name_compact")
# Nothing, or a suffix macOS appends to an identifier-named entry: preference
# lists, saved state, cookies, ByHost host UUIDs, package receipts.
BUNDLE_ID_SUFFIX_RE = re.compile(
    r"(?:\.plist|\.savedState|\.binarycookies"
    r"|\.(?:[0-9A-Fa-f]{12}|[0-9A-Fa-f]+(?:-[0-9A-Fa-f]+)+)\.plist"
    r"|\.pkg\.(?:bom|plist))?"
)


def matches_prefix(entry_name: str, key: str) -> bool:
    """Prefix-collision guard for entries keyed by an identifier.

    ``Foo.crash``, ``Foo_2024-01-02-101010_host.crash`` and
    ``Foo-2024-01-02-101010.ips`` belong to ``Foo``; ``Foobar.crash`` and
    ``Foo-Helper.plist`` do not.
    """
    if not key or not entry_name.startswith(key):
        return False
    rest = entry_name[len(key):]
    if not rest:
        return True
    if rest[0] in "._":
        return True
    return rest[0] in "- " and rest[1:2].isdigit()


def matches_identifier(entry_name: str, bundle_id: str) -> bool:
    """Guard for entries keyed by a bundle identifier.

    A dot cannot separate an identifier from free text, since
    ``com.example.App.Beta`` is another application's identifier. Only the
    bare identifier or one of the storage suffixes in ``BUNDLE_ID_SUFFIX_RE``
    may follow it.
    """
    if not bundle_id or not entry_name.startswith(bundle_id):
        return False
    return BUNDLE_ID_SUFFIX_RE.fullmatch(entry_name[len(bundle_id):]) is not None


def _safe_component(value: str | None) -> bool:
    if not value or value in {".", ".."}:
        return False
    return not any(ch in value for ch in ("/", "\\", "\x00"))


class ArtifactResolver:
    """Walk the catalog in order and collect existing paths for one application."""

    def __init__(
        self,
        catalog: PathCatalog,
        context: TemplateContext,
        logger: logging.Logger | None = None,
    ):
        self.catalog = catalog
        self.context = context
        self.logger = logger or logging.getLogger(APP_NAME)
        self.warnings: list[DiscoveryWarning] = []

    def resolve(
        self,
        bundle_identifier: str | None,
        display_name: str | None,
        executable_name: str | None = None,
        bundle_path: str | None = None,
    ) -> list[ArtifactPath]:
        self.warnings = []
        values = self._app_values(bundle_identifier, display_name, executable_name)
        found: list[ArtifactPath] = []
        seen: set[str] = set()

        for entry in self.catalog:
            if not all(k in values for k in entry.placeholders() if k in APP_KEYS):
                continue
            for path in self._expand(entry, values):
                path = os.path.normpath(path)
                if path in seen:
                    continue
                if bundle_path and is_subpath(path, bundle_path):
                    continue
                seen.add(path)
                found.append(ArtifactPath(absolute_path=path, category=entry.category))

        self.logger.info(
            "resolve_complete bundle_id=%s name=%s artifacts=%s warnings=%s",
            bundle_identifier,
            display_name,
            len(found),
            len(self.warnings),
        )
        return found

    def resolve_record(self, record: ApplicationRecord) -> list[ArtifactPath]:
        return self.resolve(
            record.bundle_identifier,
            record.display_name,
            record.executable_name,
            bundle_path=record.bundle_path,
        )

    @staticmethod
    def _app_values(
        bundle_identifier: str | None,
        display_name: str | None,
        executable_name: str | None,
    ) -> dict[str, str]:
        values: dict[str, str] = {}
        if _safe_component(bundle_identifier):
            values["bundle_id"] = str(bundle_identifier)
        if _safe_component(display_name):
            values["name"] = str(display_name)
            compact = str(display_name).lower().replace(" ", "")
            if _safe_component(compact):
                values["name_compact"] = compact
        exe = executable_name or display_name
        if _safe_component(exe):
            values["exe"] = str(exe)
        return values

    # ---------------------------- Interpreter -------------------------------- #

    def _expand(self, entry: CatalogEntry, values: dict[str, str]) -> Iterable[str]:
        template = entry.template
        roots = self.context.roots()
        if isinstance(template, ExactPath):
            candidate = template.pattern.format(**roots, **values)
            if os.path.lexists(candidate):
                yield candidate
        elif isinstance(template, GlobPath):
            escaped = {k: glob.escape(v) for k, v in {**roots, **values}.items()}
            pattern = template.pattern.format(**escaped)
            yield from sorted(glob.glob(pattern))
        elif isinstance(template, PrefixedEntries):
            yield from self._scan_prefixed(entry, template, roots, values)
        else:
            raise TypeError(f"Unsupported template: {template!r}")

    def _scan_prefixed(
        self,
        entry: CatalogEntry,
        template: PrefixedEntries,
        roots: dict[str, str],
        values: dict[str, str],
    ) -> Iterable[str]:
        directory = template.directory.format(**roots)
        key = values[template.key]
        try:
            with os.scandir(directory) as it:
                names = sorted(e.name for e in it)
        except (FileNotFoundError, NotADirectoryError):
            return
        except OSError as exc:
            self.warnings.append(DiscoveryWarning(category=entry.category.value, location=directory, error=str(exc)))
            self.logger.debug("discovery_skipped category=%s dir=%s err=%s", entry.category.value, directory, exc)
            return

        guard = matches_identifier if template.key == "bundle_id" else matches_prefix
        for name in names:
            candidate = TEAM_PREFIX_RE.sub("", name, count=1) if template.team_prefixed else name
            if guard(candidate, key):
                yield os.path.join(directory, name)
