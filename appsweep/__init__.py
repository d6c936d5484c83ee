"""appsweep: discover and remove application leftovers on macOS and Windows."""

from __future__ import annotations

from appsweep.apps import ApplicationRecord, record_from_bundle
from appsweep.catalog import ArtifactPath, Category, PathCatalog
from appsweep.errors import (
    AppSweepError,
    DecodeError,
    NoApplicationsSelected,
    UnsafePathError,
    ValidationError,
)
from appsweep.orchestrator import BatchResult, BatchUninstaller, RunConfig
from appsweep.remover import RunMode
from appsweep.resolver import ArtifactResolver
from appsweep.sizing import total_size
from appsweep.transport import decode, encode

__version__ = "0.3.0"

__all__ = [
    "AppSweepError",
    "ApplicationRecord",
    "ArtifactPath",
    "ArtifactResolver",
    "BatchResult",
    "BatchUninstaller",
    "Category",
    "DecodeError",
    "NoApplicationsSelected",
    "PathCatalog",
    "RunConfig",
    "RunMode",
    "UnsafePathError",
    "ValidationError",
    "decode",
    "encode",
    "record_from_bundle",
    "total_size",
]
