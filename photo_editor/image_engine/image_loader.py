"""ImageLoader: the tiered bitmap cache for the image being edited.

One loader tracks one source at a time and keeps up to four decoded
bitmaps for it:

- LARGE: the working preview, bounded to roughly twice the requested size
  and never more than ``max_bitmap_dim`` on a side unless it is already small,
- SMALL: a fixed-width (160px) copy of LARGE for thumbnails and filters,
- HIGHRES: an optional sharper decode for zoomed views,
- BACKGROUND: a bundled background bitmap, decoded once.

All state mutation happens under one re-entrant lock. Listeners are told
about changes through a dispatch callable after the lock has been released.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

import numpy as np

from photo_editor.logger import get_logger
from photo_editor.settings_manager import SettingsManager

from .content import (
    ContentAccess,
    ContentOrientationSource,
    ExifOrientationSource,
    JPEG_MIME_TYPE,
    FileContentAccess,
    HighResCapabilityQuery,
    ListenerSink,
    OrientationSource,
    ResourceStore,
    SavePipeline,
    StaticHighResCapability,
)
from .decoder import (
    BITMAP_LOAD_BACKOUT_ATTEMPTS,
    DecoderBackend,
    decode_region,
    decode_resource_with_backoff,
    decode_with_backoff,
    default_backend,
    is_allocation_failure,
    probe_bounds,
)
from .errors import DecodeError, DecodeOutOfMemory
from .geometry import Bounds, Rect
from .metrics import metrics
from .orientation import OrientationCode, needs_transform, rotate_to_portrait
from .sampling import MAX_BITMAP_DIM, preset_sample_size, solve_sample_size

_logger = get_logger("image_loader")

SMALL_BITMAP_DIM = 160
DEFAULT_BACKGROUND_RESOURCE = "filtershow_background.png"
DEFAULT_SAVE_DIRECTORY = "EditedOnlinePhotos"
DEFAULT_COMPRESS_QUALITY = 95


class BitmapTier(Enum):
    SMALL = "small"
    LARGE = "large"
    HIGHRES = "highres"
    BACKGROUND = "background"


class LoaderStatus(Enum):
    EMPTY = "empty"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


def call_now(fn: Callable[[], None]) -> None:
    """Synchronous dispatch, used when no event loop is involved."""
    fn()


@dataclass(frozen=True)
class _Decoded:
    bounds: Bounds
    orientation: OrientationCode
    large: np.ndarray
    small: np.ndarray


def _resolve_orientation(source: OrientationSource | None, handle: str) -> OrientationCode:
    if source is None:
        return OrientationCode.UNKNOWN
    try:
        return OrientationCode.coerce(source.get_orientation(handle))
    except (DecodeError, OSError) as e:
        _logger.warning("orientation lookup failed for %s: %s", handle, e)
        return OrientationCode.UNKNOWN


def load_mutable_bitmap(
    content: ContentAccess,
    handle: str,
    orientation_source: OrientationSource | None = None,
    sample_size: int = 1,
    *,
    backend: DecoderBackend | None = None,
    attempts: int = BITMAP_LOAD_BACKOUT_ATTEMPTS,
) -> np.ndarray | None:
    """Decode ``handle`` into a writable, upright bitmap (used by export paths)."""
    bitmap = decode_with_backoff(content, handle, sample_size, backend=backend, attempts=attempts)
    if bitmap is None:
        return None
    bitmap = rotate_to_portrait(bitmap, _resolve_orientation(orientation_source, handle))
    if not bitmap.flags.writeable:
        bitmap = bitmap.copy()
    return bitmap


class ImageLoader:
    """Tiered bitmap cache for a single active source."""

    def __init__(
        self,
        content: ContentAccess | None = None,
        orientation_source: OrientationSource | None = None,
        *,
        backend: DecoderBackend | None = None,
        high_res: HighResCapabilityQuery | None = None,
        resources: ResourceStore | None = None,
        save_pipeline: SavePipeline | None = None,
        dispatch: Callable[[Callable[[], None]], None] = call_now,
        settings: SettingsManager | None = None,
    ):
        self._content: ContentAccess = content or FileContentAccess()
        self._backend = backend
        self._high_res = high_res or StaticHighResCapability(False)
        self._resources = resources
        self._save_pipeline = save_pipeline
        self._dispatch = dispatch

        if settings is not None:
            self._max_dim = settings.max_bitmap_dim
            self._small_dim = settings.small_bitmap_dim
            self._attempts = settings.backoff_attempts
            self._background_resource = settings.background_resource
            self._save_directory = settings.default_save_directory
            self._compress_quality = settings.default_compress_quality
            jpeg_mime_type = settings.jpeg_mime_type
        else:
            self._max_dim = MAX_BITMAP_DIM
            self._small_dim = SMALL_BITMAP_DIM
            self._attempts = BITMAP_LOAD_BACKOUT_ATTEMPTS
            self._background_resource = DEFAULT_BACKGROUND_RESOURCE
            self._save_directory = DEFAULT_SAVE_DIRECTORY
            self._compress_quality = DEFAULT_COMPRESS_QUALITY
            jpeg_mime_type = JPEG_MIME_TYPE

        if orientation_source is None:
            exif = ExifOrientationSource(self._content, jpeg_mime_type=jpeg_mime_type)
            orientation_source = ContentOrientationSource(exif)
        self._orientation_source = orientation_source

        self._lock = threading.RLock()
        self._listeners: list[ListenerSink] = []
        self._status = LoaderStatus.EMPTY
        self._uri: str | None = None
        self._original_bounds: Bounds | None = None
        self._orientation = OrientationCode.UNKNOWN
        self._zoom_orientation = OrientationCode.NORMAL
        self._tiers: dict[BitmapTier, np.ndarray | None] = {tier: None for tier in BitmapTier}

    # ---- state accessors ------------------------------------------
    @property
    def uri(self) -> str | None:
        return self._uri

    @property
    def original_bounds(self) -> Bounds | None:
        return self._original_bounds

    @property
    def orientation(self) -> OrientationCode:
        return self._orientation

    @property
    def zoom_orientation(self) -> OrientationCode:
        """Orientation of the last successfully loaded source."""
        return self._zoom_orientation

    @property
    def status(self) -> LoaderStatus:
        return self._status

    def get_bitmap(self, tier: BitmapTier) -> np.ndarray | None:
        return self._tiers[tier]

    def get_original_bitmap_small(self) -> np.ndarray | None:
        return self._tiers[BitmapTier.SMALL]

    def get_original_bitmap_large(self) -> np.ndarray | None:
        return self._tiers[BitmapTier.LARGE]

    def get_original_bitmap_highres(self) -> np.ndarray | None:
        return self._tiers[BitmapTier.HIGHRES]

    # ---- loading ---------------------------------------------------
    def load_bitmap(self, handle: str, size: int) -> bool:
        """Load ``handle`` into the LARGE and SMALL tiers.

        Returns False when the source cannot be read; previously loaded tiers
        are left as they were. Raises DecodeOutOfMemory when decoding kept
        running out of memory.
        """
        with metrics.timed("image_loader.load_bitmap"), self._lock:
            self._status = LoaderStatus.LOADING
            try:
                decoded = self._decode_tiers(handle, size)
            except DecodeOutOfMemory:
                self._status = LoaderStatus.ERROR
                raise
            except Exception:
                self._status = self._settled_status()
                raise
            if decoded is None:
                metrics.inc("image_loader.load_failed")
                self._status = self._settled_status()
                return False

            self._uri = handle
            self._original_bounds = decoded.bounds
            self._orientation = decoded.orientation
            self._zoom_orientation = decoded.orientation
            self._tiers[BitmapTier.LARGE] = decoded.large
            self._tiers[BitmapTier.SMALL] = decoded.small
            # high-res pixels of the previous source must not outlive it
            self._tiers[BitmapTier.HIGHRES] = None
            self._status = LoaderStatus.READY
            _logger.debug(
                "load_bitmap: %s large=%sx%s small=%sx%s orientation=%s",
                handle,
                decoded.large.shape[1],
                decoded.large.shape[0],
                decoded.small.shape[1],
                decoded.small.shape[0],
                decoded.orientation.name,
            )
        self._warn_listeners_later()
        return True

    def _settled_status(self) -> LoaderStatus:
        if self._tiers[BitmapTier.LARGE] is not None:
            return LoaderStatus.READY
        return LoaderStatus.EMPTY

    def _decode_tiers(self, handle: str, size: int) -> _Decoded | None:
        orientation = _resolve_orientation(self._orientation_source, handle)
        bounds, error = probe_bounds(self._content, handle, self._backend)
        if bounds is None:
            _logger.warning("load_bitmap failed: %s", error)
            return None
        sample_size = solve_sample_size(bounds, size, enforce_max=True, max_dim=self._max_dim)
        _logger.debug("load_bitmap: %s bounds=%sx%s sample=%s", handle, bounds.width, bounds.height, sample_size)
        large = decode_with_backoff(
            self._content, handle, sample_size, backend=self._backend, attempts=self._attempts
        )
        if large is None:
            return None
        try:
            if needs_transform(orientation):
                large = rotate_to_portrait(large, orientation)
            small = self._scale_small(large)
        except Exception as e:
            if is_allocation_failure(e):
                raise DecodeOutOfMemory(
                    f"deriving tiers of {handle} ran out of memory", handle, attempts=1, sample_size=sample_size
                ) from e
            _logger.error("load_bitmap: could not derive tiers for %s: %s", handle, e)
            return None
        return _Decoded(bounds, orientation, large, small)

    def _scale_small(self, large: np.ndarray) -> np.ndarray:
        height, width = large.shape[:2]
        sw = self._small_dim
        sh = max(1, int(sw * float(height) / float(width)))
        backend = self._backend or default_backend()
        return backend.scale(large, sw, sh)

    def load_high_res_bitmap(self) -> None:
        """Decode a sharper copy of the current source into the HIGHRES tier.

        Does nothing unless the editing session supports high-res previews
        and a source is loaded.
        """
        if not self._high_res.supports_high_res():
            return
        with self._lock:
            large = self._tiers[BitmapTier.LARGE]
            bounds = self._original_bounds
            handle = self._uri
            if large is None or bounds is None or handle is None:
                _logger.debug("load_high_res_bitmap: nothing loaded")
                return
            preview_size = min(large.shape[1] * 2, bounds.width)
            sample_size = solve_sample_size(bounds, preview_size, enforce_max=False)
            highres = decode_with_backoff(
                self._content, handle, sample_size, backend=self._backend, attempts=self._attempts
            )
            if highres is None:
                _logger.warning("load_high_res_bitmap: decode failed for %s", handle)
                return
            if needs_transform(self._orientation):
                highres = rotate_to_portrait(highres, self._orientation)
            self._tiers[BitmapTier.HIGHRES] = highres
            _logger.debug("load_high_res_bitmap: %s -> %sx%s", handle, highres.shape[1], highres.shape[0])
        self._warn_listeners_later()

    def get_scale_one_image_for_preset(self, bounds: Rect, destination: Rect | None) -> np.ndarray | None:
        """Decode the ``bounds`` window of the current source for a preset render.

        The window is sampled down so that it is not much wider than
        ``destination``. Returns None when nothing is loaded or the window
        lies outside the source.
        """
        with self._lock:
            if self._uri is None:
                return None
            sample_size = preset_sample_size(bounds, destination)
            return decode_region(self._content, self._uri, bounds, sample_size, self._backend)

    # ---- resources -------------------------------------------------
    def get_background_bitmap(self) -> np.ndarray | None:
        with self._lock:
            background = self._tiers[BitmapTier.BACKGROUND]
            if background is None and self._resources is not None:
                background = decode_resource_with_backoff(
                    self._resources, self._background_resource, backend=self._backend, attempts=self._attempts
                )
                self._tiers[BitmapTier.BACKGROUND] = background
            return background

    def decode_image(self, resource_id: str, sample_size: int = 1) -> np.ndarray | None:
        """Decode a bundled resource once, without backoff."""
        if self._resources is None:
            return None
        backend = self._backend or default_backend()
        try:
            with self._resources.open_resource(resource_id) as stream:
                return backend.decode(stream, max(1, sample_size))
        except OSError as e:
            _logger.warning("could not open resource %s: %s", resource_id, e)
            return None
        except Exception as e:
            if is_allocation_failure(e):
                raise
            _logger.error("resource decode failed for %s: %s", resource_id, e)
            return None

    # ---- saving ----------------------------------------------------
    def save_image(
        self,
        preset: Any,
        destination: str | Path | None = None,
        on_complete: Callable[[str | None], None] | None = None,
        quality: int | None = None,
    ) -> None:
        """Hand the current source and ``preset`` to the save pipeline.

        ``destination`` defaults to the configured save directory and
        ``quality`` to the configured JPEG compress quality.
        """
        if self._save_pipeline is None:
            raise RuntimeError("no save pipeline configured")
        if self._uri is None:
            raise RuntimeError("no image loaded")
        if destination is None:
            destination = self._save_directory
        if quality is None:
            quality = self._compress_quality
        self._save_pipeline.submit(self._uri, preset, Path(destination), on_complete, quality=quality)

    # ---- listeners -------------------------------------------------
    def add_listener(self, listener: ListenerSink) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def remove_listener(self, listener: ListenerSink) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _warn_listeners_later(self) -> None:
        metrics.inc("image_loader.notifications")
        self._dispatch(self._warn_listeners)

    def _warn_listeners(self) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener.image_loaded()

    # ---- teardown --------------------------------------------------
    def close(self) -> None:
        with self._lock:
            for tier in BitmapTier:
                self._tiers[tier] = None
            self._listeners.clear()
            self._uri = None
            self._original_bounds = None
            self._orientation = OrientationCode.UNKNOWN
            self._status = LoaderStatus.EMPTY
