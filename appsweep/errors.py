"""Error taxonomy shared by the discovery and removal layers.

Structural problems (a malformed transport token, an empty selection) are
raised. Per-path and per-category problems are recorded as warning objects
and collected by the caller instead.
"""

from __future__ import annotations

import dataclasses


class AppSweepError(Exception):
    """Base class for all appsweep errors."""


class DecodeError(AppSweepError):
    """Transport token is not valid base64 / UTF-8 data."""


class ValidationError(AppSweepError):
    """Decoded payload contains a line that is not an absolute path."""

    def __init__(self, label: str, line: str):
        self.label = label
        self.line = line
        super().__init__(f"{label}: not an absolute path: {line!r}")


class UnsafePathError(AppSweepError):
    """Removal target is relative or is a protected root."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"refusing to remove {path!r}: {reason}")


class ElevationError(AppSweepError):
    """Elevated removal was declined or failed."""


class NoApplicationsSelected(AppSweepError, ValueError):
    """A batch was started without any application."""


@dataclasses.dataclass(slots=True)
class DiscoveryWarning:
    category: str
    location: str
    error: str


@dataclasses.dataclass(slots=True)
class ProcessTerminationWarning:
    application: str
    pid: int
    name: str
    error: str
