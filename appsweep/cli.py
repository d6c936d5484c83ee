"""Command line entry point.

Human-readable previews and summaries go to stderr; the machine-readable
JSON result goes to stdout (and optionally to ``--output``).
"""

from __future__ import annotations

import argparse
import functools
import json
import os
import sys
from pathlib import Path
from typing import Any

from appsweep.apps import ApplicationRecord, record_from_bundle
from appsweep.catalog import ArtifactPath, categorize
from appsweep.errors import AppSweepError
from appsweep.orchestrator import DEFAULT_PREVIEW_CAP, BatchUninstaller, RemovalBatch, RunConfig
from appsweep.orphans import find_orphans, installed_bundle_ids
from appsweep.remover import RunMode
from appsweep.transport import decode, encode
from appsweep.utils import DEFAULT_LOG_FILE, export_json, now_utc_iso, setup_logger

DEFAULT_APP_DIRS = ["/Applications", str(Path.home() / "Applications")]

err_print = functools.partial(print, file=sys.stderr)


def selected_apps(args: argparse.Namespace) -> list[ApplicationRecord]:
    apps = [record_from_bundle(p) for p in (args.app or [])]
    if args.bundle_path or args.bundle_id or args.name:
        bundle_path = os.path.abspath(os.path.expanduser(args.bundle_path)) if args.bundle_path else ""
        name = args.name or (Path(bundle_path).stem if bundle_path else "")
        apps.append(
            ApplicationRecord(
                bundle_path=bundle_path,
                display_name=name,
                bundle_identifier=args.bundle_id,
                executable_name=args.executable,
            )
        )
    return apps


def build_config(args: argparse.Namespace) -> RunConfig:
    return RunConfig(
        mode=RunMode.LIVE if getattr(args, "execute", False) else RunMode.DRY_RUN,
        preview_cap=args.cap,
        grace_period=getattr(args, "grace", 3.0),
        assume_yes=getattr(args, "yes", False),
        allow_elevation=not getattr(args, "no_elevate", False),
        keep_bundle=getattr(args, "keep_bundle", False),
        terminate_processes=not getattr(args, "no_kill", False),
        home=args.home,
        catalog_extra=args.catalog_extra,
    )


def command_preview(args: argparse.Namespace, logger) -> dict[str, Any]:
    apps = selected_apps(args)
    if not apps:
        raise ValueError("No applications selected (use --app or --bundle-id/--name)")
    uninstaller = BatchUninstaller(build_config(args), out=err_print, logger=logger)
    previews = []
    for batch in uninstaller.preview(apps):
        for line in uninstaller.render_preview(batch):
            err_print(line)
        item: dict[str, Any] = {
            "application": batch.application.to_dict(),
            "size_kb": batch.size_kb(),
            "artifacts": [a.to_dict() for a in batch.artifacts],
        }
        if args.emit_token:
            item["token"] = encode([a.absolute_path for a in batch.artifacts])
        previews.append(item)
    return {"mode": "preview", "applications": previews}


def command_uninstall(args: argparse.Namespace, logger) -> dict[str, Any]:
    uninstaller = BatchUninstaller(build_config(args), out=err_print, logger=logger)
    result = uninstaller.run(selected_apps(args))
    return result.to_dict()


def command_execute(args: argparse.Namespace, logger) -> dict[str, Any]:
    paths = decode(args.token, args.label)
    bundle_path = os.path.abspath(os.path.expanduser(args.bundle_path)) if args.bundle_path else ""
    app = ApplicationRecord(
        bundle_path=bundle_path,
        display_name=args.name or args.label,
        bundle_identifier=args.bundle_id,
        executable_name=args.executable,
    )
    batch = RemovalBatch(
        application=app,
        artifacts=tuple(ArtifactPath(p, categorize(p)) for p in paths),
        include_bundle=bool(bundle_path),
    )
    config = build_config(args)
    config.terminate_processes = config.terminate_processes and bool(bundle_path or args.name)
    uninstaller = BatchUninstaller(config, out=err_print, logger=logger)
    return uninstaller.run_batches([batch]).to_dict()


def command_orphans(args: argparse.Namespace, logger) -> dict[str, Any]:
    ids = installed_bundle_ids(args.apps_dir)
    orphans = find_orphans(ids, home=args.home)
    logger.info("orphans_found count=%s installed=%s", len(orphans), len(ids))
    return {"mode": "orphans", "installed": len(ids), "orphans": [o.to_dict() for o in orphans]}


def command_encode(args: argparse.Namespace, logger) -> dict[str, Any]:
    return {"mode": "encode", "token": encode(args.paths)}


def command_decode(args: argparse.Namespace, logger) -> dict[str, Any]:
    return {"mode": "decode", "label": args.label, "paths": decode(args.token, args.label)}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="appsweep",
        description="Find and remove application leftovers (macOS / Windows)",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--log-file", default=os.getenv("APPSWEEP_LOG", str(DEFAULT_LOG_FILE)), help="Action log file")
    parser.add_argument("--output", default=None, help="Also write the JSON result to this file")

    sub = parser.add_subparsers(dest="command", required=True)

    def add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("--home", default=None, help="Home directory to resolve per-user locations against")
        p.add_argument(
            "--catalog-extra",
            default=os.getenv("APPSWEEP_CATALOG_EXTRA"),
            help="JSON file of extra catalog entries",
        )
        p.add_argument("--cap", type=int, default=DEFAULT_PREVIEW_CAP, help="Preview lines per application")

    def add_selection(p: argparse.ArgumentParser) -> None:
        p.add_argument("--app", action="append", help="Application bundle path (repeatable)")
        p.add_argument("--bundle-path", default=None)
        p.add_argument("--bundle-id", default=None)
        p.add_argument("--name", default=None, help="Display name")
        p.add_argument("--executable", default=None, help="Executable name, if it differs from the display name")

    def add_removal(p: argparse.ArgumentParser) -> None:
        p.add_argument("--execute", action="store_true", help="Actually remove files (otherwise dry-run)")
        p.add_argument("--yes", action="store_true", help="Non-interactive yes for the confirmation")
        p.add_argument("--no-elevate", action="store_true", help="Never ask for elevated privileges")
        p.add_argument("--no-kill", action="store_true", help="Do not stop running instances")
        p.add_argument("--grace", type=float, default=3.0, help="Seconds between terminate and kill")

    p = sub.add_parser("preview", help="List what an uninstall would remove")
    add_common(p)
    add_selection(p)
    p.add_argument("--emit-token", action="store_true", help="Include a transport token per application")

    p = sub.add_parser("uninstall", help="Remove applications and their leftovers")
    add_common(p)
    add_selection(p)
    add_removal(p)
    p.add_argument("--keep-bundle", action="store_true", help="Reset: remove leftovers but keep the bundle")

    p = sub.add_parser("execute", help="Remove the paths carried by a transport token")
    add_common(p)
    add_removal(p)
    p.add_argument("--token", required=True)
    p.add_argument("--label", default="token", help="Name used in error messages")
    p.add_argument("--bundle-path", default=None)
    p.add_argument("--bundle-id", default=None)
    p.add_argument("--name", default=None)
    p.add_argument("--executable", default=None)

    p = sub.add_parser("orphans", help="List data left by applications that are gone")
    p.add_argument("--home", default=None)
    p.add_argument("--apps-dir", nargs="+", default=DEFAULT_APP_DIRS)

    p = sub.add_parser("encode", help="Encode absolute paths as a transport token")
    p.add_argument("paths", nargs="*")

    p = sub.add_parser("decode", help="Decode a transport token")
    p.add_argument("--token", required=True)
    p.add_argument("--label", default="token")

    return parser


COMMANDS = {
    "preview": command_preview,
    "uninstall": command_uninstall,
    "execute": command_execute,
    "orphans": command_orphans,
    "encode": command_encode,
    "decode": command_decode,
}


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = setup_logger(Path(args.log_file))

    try:
        result = COMMANDS[args.command](args, logger)
    except (AppSweepError, ValueError, FileNotFoundError) as exc:
        logger.error("command_failed command=%s err=%s", args.command, exc)
        print(json.dumps({
            "status": "error",
            "command": args.command,
            "error": str(exc),
            "error_type": type(exc).__name__,
            "timestamp": now_utc_iso(),
        }, indent=2), file=sys.stderr)
        return 1

    if args.output:
        export_json(Path(args.output), result)
    status = result.get("status", "ok")
    print(json.dumps({"status": status, "command": args.command, "timestamp": now_utc_iso(), "result": result}, indent=2))
    return 1 if status == "failed" else 0


if __name__ == "__main__":
    raise SystemExit(main())
