"""Hand a resolved path list across a process boundary as one opaque token.

The token is base64 of the newline-joined UTF-8 paths, so it carries no
shell metacharacters and fits in a single argument or environment value.
"""

from __future__ import annotations

import base64
import binascii
import re
from typing import Sequence

from appsweep.catalog import is_absolute
from appsweep.errors import DecodeError, ValidationError

_WHITESPACE_RE = re.compile(r"\s+")


def encode(paths: Sequence[str]) -> str:
    for p in paths:
        if "\n" in p:
            raise ValueError(f"path contains a newline: {p!r}")
    payload = "\n".join(paths).encode("utf-8")
    return base64.b64encode(payload).decode("ascii")


def decode(token: str, label: str) -> list[str]:
    """Strictly decode ``token``; ``label`` names the source in errors.

    Line breaks inside the token (``base64 -b 76``, ``openssl base64``)
    are ignored. Nothing is returned unless every line is absolute.
    """
    compact = _WHITESPACE_RE.sub("", token or "")
    if not compact:
        return []
    try:
        raw = base64.b64decode(compact, validate=True)
        text = raw.decode("utf-8")
    except (binascii.Error, ValueError) as exc:
        raise DecodeError(f"{label}: invalid transport token: {exc}") from exc

    if text.endswith("\n"):
        text = text[:-1]
    if not text:
        return []

    paths = text.split("\n")
    for line in paths:
        if not is_absolute(line):
            raise ValidationError(label, line)
    return paths
