"""Source handle normalization utilities.

A source handle is either a plain filesystem path or a URI. This module
centralizes the rules for telling them apart:

- ``file://`` URIs and bare paths both resolve to the ``file`` scheme.
- Other schemes (``content://``, ``media://``...) are left for an injected
  content resolver.
- A stable, normalized key (forward slashes + drive letter normalization on
  Windows) is used for media-index lookups.

Keep this module free of Qt and pyvips dependencies.
"""

from __future__ import annotations

from pathlib import Path
from urllib.parse import unquote, urlparse

SCHEME_FILE = "file"

_DRIVE_PREFIX_LEN = 2


def _normalize_drive_letter(path_str: str) -> str:
    # Normalize drive letter casing on Windows ("c:\\" -> "C:\\").
    if len(path_str) >= _DRIVE_PREFIX_LEN and path_str[1] == ":":
        return path_str[0].upper() + path_str[1:]
    return path_str


def handle_scheme(handle: str) -> str:
    """Return the URI scheme of ``handle``; bare paths count as ``file``."""
    parsed = urlparse(handle)
    scheme = parsed.scheme.lower()
    # "C:/x.jpg" parses with scheme "c"; a one-letter scheme is a drive.
    if not scheme or len(scheme) == 1:
        return SCHEME_FILE
    return scheme


def handle_to_path(handle: str) -> Path | None:
    """Filesystem path for a ``file`` handle, None for any other scheme."""
    if handle_scheme(handle) != SCHEME_FILE:
        return None
    parsed = urlparse(handle)
    if parsed.scheme.lower() == SCHEME_FILE:
        path = unquote(parsed.path)
        if parsed.netloc and parsed.netloc != "localhost":
            path = f"//{parsed.netloc}{path}"
        return Path(path)
    return Path(handle).expanduser()


def abs_path(path: str | Path) -> Path:
    """Return an absolute path without requiring that it exists."""
    p = Path(path).expanduser()
    try:
        # strict=False avoids exceptions for non-existent paths.
        return p.resolve(strict=False)
    except OSError:
        return p.absolute()


def handle_key(handle: str) -> str:
    """Stable lookup key for a source handle.

    File handles are made absolute; other URIs are returned unchanged.
    """
    path = handle_to_path(handle)
    if path is None:
        return handle
    return _normalize_drive_letter(str(abs_path(path))).replace("\\", "/")
