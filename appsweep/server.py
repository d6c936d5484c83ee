"""Local appsweep service (FastAPI).

Preview and uninstall over HTTP for a UI running in another process. The
preview response carries a transport token per application; the uninstall
call executes exactly the paths in that token, so nothing is re-resolved
between what the user saw and what gets removed.

Default host is 127.0.0.1 (localhost-only). Destructive calls require
``execute: true`` and ``confirm: true``.
"""

from __future__ import annotations

import argparse
import os
import tempfile
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from appsweep.apps import ApplicationRecord
from appsweep.catalog import ArtifactPath, categorize, is_absolute
from appsweep.errors import AppSweepError, DecodeError, NoApplicationsSelected, ValidationError
from appsweep.orchestrator import DEFAULT_PREVIEW_CAP, BatchUninstaller, RemovalBatch, RunConfig
from appsweep.remover import RunMode
from appsweep.transport import decode, encode
from appsweep.utils import APP_NAME, now_utc_iso, setup_logger

LOG_FILE = Path(os.getenv("APPSWEEP_LOG", str(Path(tempfile.gettempdir()) / APP_NAME / "server.log")))
LOGGER = setup_logger(LOG_FILE, stream=True)
CATALOG_EXTRA = os.getenv("APPSWEEP_CATALOG_EXTRA")


# ---------------------------- API Models ------------------------------------ #


class AppModel(BaseModel):
    bundle_path: str = ""
    display_name: str
    bundle_identifier: str | None = None
    executable_name: str | None = None

    @field_validator("bundle_path")
    @classmethod
    def bundle_path_is_absolute(cls, value: str) -> str:
        if value and not is_absolute(value):
            raise ValueError(f"bundle_path must be absolute: {value!r}")
        return value

    def to_record(self) -> ApplicationRecord:
        return ApplicationRecord(
            bundle_path=self.bundle_path,
            display_name=self.display_name,
            bundle_identifier=self.bundle_identifier,
            executable_name=self.executable_name,
        )


class PreviewRequest(BaseModel):
    apps: list[AppModel] = Field(default_factory=list)
    cap: int = DEFAULT_PREVIEW_CAP
    home: str | None = None


class UninstallRequest(BaseModel):
    app: AppModel
    token: str
    label: str = "request"
    include_bundle: bool = True
    execute: bool = False
    confirm: bool = False
    allow_elevation: bool = False
    terminate_processes: bool = True
    grace_period: float = 3.0
    home: str | None = None


# ---------------------------- Response Helpers ------------------------------ #


def api_ok(data: Any, *, meta: dict[str, Any] | None = None, warnings: list[str] | None = None) -> JSONResponse:
    body = {
        "status": "ok",
        "timestamp": now_utc_iso(),
        "meta": meta or {},
        "warnings": warnings or [],
        "data": data,
    }
    return JSONResponse(body)


def api_error(code: str, message: str, status_code: int = 400, details: dict[str, Any] | None = None) -> JSONResponse:
    body = {
        "status": "error",
        "timestamp": now_utc_iso(),
        "error": {
            "code": code,
            "message": message,
            "details": details or {},
        },
    }
    return JSONResponse(body, status_code=status_code)


app = FastAPI(
    title="appsweep",
    version="0.3.0",
    description="Local application leftover discovery and removal API (dry-run by default).",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost",
        "http://127.0.0.1",
    ],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


@app.exception_handler(DecodeError)
async def decode_error_handler(_: Request, exc: DecodeError):
    return api_error("DECODE_ERROR", str(exc))


@app.exception_handler(ValidationError)
async def validation_error_handler(_: Request, exc: ValidationError):
    return api_error("VALIDATION_ERROR", str(exc), details={"label": exc.label, "line": exc.line})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(_: Request, exc: RequestValidationError):
    errors = [{"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", "")} for err in exc.errors()]
    return api_error("INVALID_REQUEST", "Request body failed validation", details={"errors": errors})


@app.exception_handler(AppSweepError)
async def appsweep_error_handler(_: Request, exc: AppSweepError):
    return api_error("BAD_REQUEST", str(exc))


@app.exception_handler(Exception)
async def unhandled_exception_handler(_: Request, exc: Exception):
    LOGGER.exception("Unhandled server error: %s", exc)
    return api_error("INTERNAL_SERVER_ERROR", str(exc), status_code=500)


# ------------------------------ Endpoints ----------------------------------- #


@app.get("/healthz")
def healthz():
    return api_ok({"service": APP_NAME})


@app.post("/api/v1/preview", summary="Resolve leftovers and return transport tokens")
def preview(req: PreviewRequest):
    if not req.apps:
        raise NoApplicationsSelected("No applications selected")
    config = RunConfig(preview_cap=req.cap, home=req.home, catalog_extra=CATALOG_EXTRA)
    uninstaller = BatchUninstaller(config, out=None, logger=LOGGER)
    items = []
    warnings: list[str] = []
    for record in (a.to_record() for a in req.apps):
        batch = uninstaller.preview([record])[0]
        warnings.extend(f"{w.category}: {w.error}" for w in uninstaller.resolver.warnings)
        paths = [a.absolute_path for a in batch.artifacts]
        items.append(
            {
                "application": record.to_dict(),
                "size_kb": batch.size_kb(),
                "lines": uninstaller.render_preview(batch),
                "artifacts": [a.to_dict() for a in batch.artifacts],
                "token": encode(paths),
            }
        )
    return api_ok(items, meta={"count": len(items)}, warnings=warnings)


@app.post("/api/v1/uninstall", summary="Remove the bundle and the paths carried by a token")
def uninstall(req: UninstallRequest):
    paths = decode(req.token, req.label)
    record = req.app.to_record()
    batch = RemovalBatch(
        application=record,
        artifacts=tuple(ArtifactPath(p, categorize(p)) for p in paths),
        include_bundle=req.include_bundle and bool(record.bundle_path),
    )
    config = RunConfig(
        mode=RunMode.LIVE if req.execute else RunMode.DRY_RUN,
        allow_elevation=req.allow_elevation,
        terminate_processes=req.terminate_processes,
        grace_period=req.grace_period,
        home=req.home,
        catalog_extra=CATALOG_EXTRA,
    )
    uninstaller = BatchUninstaller(config, confirm=lambda _batches: req.confirm, out=None, logger=LOGGER)
    result = uninstaller.run_batches([batch])
    return api_ok(result.to_dict(), meta={"state": uninstaller.state.value})


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the appsweep FastAPI server")
    parser.add_argument("--host", default=os.getenv("APPSWEEP_HOST", "127.0.0.1"))
    parser.add_argument("--port", type=int, default=int(os.getenv("APPSWEEP_PORT", "8011")))
    parser.add_argument("--reload", action="store_true")
    return parser.parse_args()


def main() -> None:
    import uvicorn

    args = parse_args()
    LOGGER.info("Starting appsweep server host=%s port=%s", args.host, args.port)
    uvicorn.run(
        "appsweep.server:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="info",
    )


if __name__ == "__main__":
    main()
