"""Disk usage of artifact lists, in the spirit of ``du -k``."""

from __future__ import annotations

import os
import stat
from typing import Iterable

BLOCK_SIZE = 512


def _entry_bytes(st: os.stat_result) -> int:
    blocks = getattr(st, "st_blocks", None)
    if blocks is None:
        return int(st.st_size)
    return max(int(st.st_size), int(blocks) * BLOCK_SIZE)


def _walk_usage(path: str, seen: set[tuple[int, int]], per_entry_kb: bool) -> int:
    """Usage of ``path`` in bytes (or ceil-KB units when ``per_entry_kb``)."""
    try:
        st = os.lstat(path)
    except OSError:
        return 0

    total = 0
    if st.st_nlink > 1 and not stat.S_ISDIR(st.st_mode):
        inode = (st.st_dev, st.st_ino)
        if inode in seen:
            return 0
        seen.add(inode)

    if not stat.S_ISDIR(st.st_mode):
        used = _entry_bytes(st)
        return -(-used // 1024) if per_entry_kb else used

    stack = [path]
    while stack:
        current = stack.pop()
        try:
            with os.scandir(current) as it:
                entries = list(it)
        except OSError:
            continue
        for entry in entries:
            try:
                est = entry.stat(follow_symlinks=False)
            except OSError:
                continue
            if stat.S_ISDIR(est.st_mode):
                stack.append(entry.path)
                continue
            if est.st_nlink > 1:
                inode = (est.st_dev, est.st_ino)
                if inode in seen:
                    continue
                seen.add(inode)
            used = _entry_bytes(est)
            total += -(-used // 1024) if per_entry_kb else used
    return total


def disk_usage_bytes(path: str) -> int:
    """Bytes used by one path; 0 when it is missing or unreadable."""
    return _walk_usage(path, set(), per_entry_kb=False)


def total_size(paths: Iterable[str]) -> int:
    """Whole kilobytes used by ``paths``; directories are summed recursively.

    Each file is charged its allocation rounded up to a kilobyte, so the
    total is never below the apparent size. Hard links count once and
    missing or unreadable paths count zero.
    """
    seen: set[tuple[int, int]] = set()
    return sum(_walk_usage(p, seen, per_entry_kb=True) for p in paths)


def total_bytes(paths: Iterable[str]) -> int:
    seen: set[tuple[int, int]] = set()
    return sum(_walk_usage(p, seen, per_entry_kb=False) for p in paths)
