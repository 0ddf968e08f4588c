"""Collaborators the loader talks to, and their default implementations.

The loader never touches the filesystem, a media index or the editing
session directly; it goes through the small protocols defined here.
"""

from __future__ import annotations

import contextlib
import mimetypes
import sqlite3
from collections.abc import Callable
from pathlib import Path
from typing import Any, BinaryIO, Protocol

from photo_editor.logger import get_logger
from photo_editor.path_utils import SCHEME_FILE, handle_key, handle_scheme, handle_to_path

from .decoder import _get_pyvips_module
from .errors import MalformedMetadata
from .orientation import OrientationCode, orientation_from_degrees

_logger = get_logger("content")

JPEG_MIME_TYPE = "image/jpeg"


class ContentAccess(Protocol):
    def open_stream(self, handle: str) -> BinaryIO:
        """Open ``handle`` for reading; raises OSError (FileNotFoundError) when missing."""
        ...

    def resolve_mime_type(self, handle: str) -> str | None: ...


class OrientationSource(Protocol):
    def get_orientation(self, handle: str) -> OrientationCode: ...


class ListenerSink(Protocol):
    def image_loaded(self) -> None: ...


class HighResCapabilityQuery(Protocol):
    def supports_high_res(self) -> bool: ...


class ResourceStore(Protocol):
    def open_resource(self, resource_id: str) -> BinaryIO: ...


class SavePipeline(Protocol):
    def submit(
        self,
        source: str,
        preset: Any,
        destination: Path,
        on_complete: Callable[[str | None], None] | None = None,
        *,
        quality: int = 95,
    ) -> None: ...


class FileContentAccess:
    """ContentAccess for bare paths and ``file://`` URIs."""

    def open_stream(self, handle: str) -> BinaryIO:
        path = handle_to_path(handle)
        if path is None:
            raise FileNotFoundError(f"unsupported scheme: {handle}")
        return open(path, "rb")

    def resolve_mime_type(self, handle: str) -> str | None:
        path = handle_to_path(handle)
        if path is None:
            return None
        mime, _encoding = mimetypes.guess_type(path.name)
        return mime


class DirectoryResources:
    """ResourceStore mapping resource ids to files under one directory."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def open_resource(self, resource_id: str) -> BinaryIO:
        path = (self.root / resource_id).resolve()
        if self.root.resolve() not in path.parents:
            raise FileNotFoundError(f"resource outside of {self.root}: {resource_id}")
        return open(path, "rb")


class StaticHighResCapability:
    def __init__(self, supported: bool = True):
        self.supported = supported

    def supports_high_res(self) -> bool:
        return self.supported


class ExifOrientationSource:
    """Orientation from the EXIF tag of local JPEG files, read through libvips."""

    def __init__(self, content: ContentAccess | None = None, jpeg_mime_type: str = JPEG_MIME_TYPE):
        self._content = content or FileContentAccess()
        self._jpeg_mime_type = jpeg_mime_type

    def read_tag(self, handle: str) -> int:
        """Raw orientation tag; raises MalformedMetadata when it cannot be read."""
        pyvips = _get_pyvips_module()
        try:
            with self._content.open_stream(handle) as stream:
                image = pyvips.Image.new_from_buffer(stream.read(), "")
        except (OSError, pyvips.Error) as e:
            raise MalformedMetadata(f"cannot read header: {e}", handle) from e
        if image.get_typeof("orientation") == 0:
            # no tag means the stored pixels are already upright
            return int(OrientationCode.NORMAL)
        try:
            return int(image.get("orientation"))
        except (TypeError, ValueError, pyvips.Error) as e:
            raise MalformedMetadata(f"bad orientation tag: {e}", handle) from e

    def get_orientation(self, handle: str) -> OrientationCode:
        if handle_scheme(handle) != SCHEME_FILE:
            return OrientationCode.UNKNOWN
        if self._content.resolve_mime_type(handle) != self._jpeg_mime_type:
            return OrientationCode.UNKNOWN
        try:
            return OrientationCode.coerce(self.read_tag(handle))
        except MalformedMetadata as e:
            _logger.warning("Failed to read EXIF orientation: %s", e)
            return OrientationCode.UNKNOWN


class MediaIndexOrientationSource:
    """Orientation from the rotation column of a SQLite media index.

    Expected schema: ``images(path TEXT PRIMARY KEY, orientation INTEGER)``
    where ``orientation`` holds degrees (0, 90, 180, 270) and ``path`` the
    normalized handle key.
    """

    def __init__(self, db_path: str | Path, table: str = "images"):
        self.db_path = Path(db_path)
        self.table = table

    def get_orientation(self, handle: str) -> OrientationCode:
        try:
            conn = sqlite3.connect(str(self.db_path))
        except sqlite3.Error as e:
            _logger.debug("media index unavailable: %s", e)
            return OrientationCode.UNKNOWN
        with contextlib.closing(conn):
            try:
                row = conn.execute(
                    f"SELECT orientation FROM {self.table} WHERE path = ?",  # noqa: S608
                    (handle_key(handle),),
                ).fetchone()
            except sqlite3.Error as e:
                _logger.debug("media index query failed for %s: %s", handle, e)
                return OrientationCode.UNKNOWN
        if row is None:
            return OrientationCode.UNKNOWN
        return orientation_from_degrees(row[0])


class ContentOrientationSource:
    """EXIF for file handles, the media index for everything else."""

    def __init__(self, exif: OrientationSource, media_index: OrientationSource | None = None):
        self._exif = exif
        self._media_index = media_index

    def get_orientation(self, handle: str) -> OrientationCode:
        if handle_scheme(handle) == SCHEME_FILE:
            return self._exif.get_orientation(handle)
        if self._media_index is None:
            return OrientationCode.UNKNOWN
        return self._media_index.get_orientation(handle)
