"""Small helpers shared by the engine, CLI and server."""

from __future__ import annotations

import datetime as dt
import json
import logging
import os
import subprocess
from pathlib import Path
from typing import Any

APP_NAME = "appsweep"
DEFAULT_LOG_FILE = Path.home() / ".local" / "share" / APP_NAME / "actions.log"
LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"


def now_utc_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).replace(microsecond=0).isoformat()


def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def human_bytes(size: int) -> str:
    val = float(max(size, 0))
    for unit in ["B", "KB", "MB", "GB", "TB", "PB"]:
        if val < 1024.0 or unit == "PB":
            if unit == "B":
                return f"{int(val)} {unit}"
            return f"{val:.2f} {unit}"
        val /= 1024.0
    return f"{size} B"


def is_subpath(path: str, root: str) -> bool:
    p = os.path.normpath(path)
    r = os.path.normpath(root)
    return p == r or p.startswith(r.rstrip(os.sep) + os.sep)


def run_command(command: list[str], timeout: int = 120, input_text: str | None = None) -> tuple[int, str, str]:
    try:
        cp = subprocess.run(
            command,
            text=True,
            input=input_text,
            capture_output=True,
            timeout=timeout,
            check=False,
        )
        return cp.returncode, cp.stdout, cp.stderr
    except FileNotFoundError:
        return 127, "", f"command not found: {command[0]}"
    except (OSError, subprocess.SubprocessError) as exc:
        return 1, "", str(exc)


def setup_logger(log_file: Path = DEFAULT_LOG_FILE, *, stream: bool = False) -> logging.Logger:
    logger = logging.getLogger(APP_NAME)
    if logger.handlers:
        return logger

    chosen = log_file
    try:
        ensure_parent(log_file)
    except OSError:
        chosen = Path("/tmp") / APP_NAME / "actions.log"
        ensure_parent(chosen)

    logger.setLevel(logging.INFO)
    fmt = logging.Formatter(LOG_FORMAT)
    fh = logging.FileHandler(chosen, encoding="utf-8")
    fh.setFormatter(fmt)
    logger.addHandler(fh)

    if stream:
        sh = logging.StreamHandler()
        sh.setFormatter(fmt)
        logger.addHandler(sh)
    return logger


def export_json(path: Path, obj: Any) -> None:
    ensure_parent(path)
    path.write_text(json.dumps(obj, indent=2, ensure_ascii=True), encoding="utf-8")


def ask_yes_no(question: str, *, assume_yes: bool = False) -> bool:
    if assume_yes:
        return True
    try:
        raw = input(f"{question} [y/N]: ").strip().lower()
    except EOFError:
        return False
    return raw in {"y", "yes"}
