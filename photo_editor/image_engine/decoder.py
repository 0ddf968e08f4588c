"""Bitmap decoding on top of pyvips.

This module owns every call into libvips:

- bounds probes that read only the image header,
- sampled decodes wrapped in a bounded out-of-memory backoff,
- random-access region decodes,
- the fixed-size rescale used to derive the small tier.

Bitmaps are RGB ``uint8`` numpy arrays shaped ``(height, width, 3)``.
"""

from __future__ import annotations

import contextlib
import gc
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, BinaryIO, Protocol, TypeVar

import numpy as np

from photo_editor.logger import get_logger

from .errors import DecodeError, DecodeOutOfMemory, SourceNotFound, SourceUnreadable
from .geometry import Bounds, Rect
from .metrics import metrics

if TYPE_CHECKING:
    from .content import ContentAccess, ResourceStore

_logger = get_logger("decoder")

RGB_CHANNELS = 3
BITMAP_LOAD_BACKOUT_ATTEMPTS = 5

T = TypeVar("T")


_pyvips: Any | None = None


def _get_pyvips_module() -> Any:
    global _pyvips
    if _pyvips is None:
        import pyvips  # type: ignore

        # Configure pyvips caches to avoid memory growth
        with contextlib.suppress(Exception):
            pyvips.cache_set_max(0)
            pyvips.cache_set_max_mem(0)
            pyvips.cache_set_max_files(0)
        _pyvips = pyvips
    return _pyvips


def is_allocation_failure(exc: BaseException) -> bool:
    """True for Python allocation failures and libvips out-of-memory errors."""
    if isinstance(exc, MemoryError):
        return True
    module = type(exc).__module__ or ""
    return module.split(".")[0] == "pyvips" and "memory" in str(exc).lower()


class RegionContext(Protocol):
    width: int
    height: int

    def decode_region(self, rect: Rect, sample_size: int) -> np.ndarray: ...

    def close(self) -> None: ...

    def __enter__(self) -> RegionContext: ...

    def __exit__(self, *exc: object) -> None: ...


class DecoderBackend(Protocol):
    """The pixel decoding primitive the loader delegates to."""

    def read_bounds(self, stream: BinaryIO) -> Bounds: ...

    def decode(self, stream: BinaryIO, sample_size: int) -> np.ndarray: ...

    def open_region(self, stream: BinaryIO) -> RegionContext: ...

    def scale(self, bitmap: np.ndarray, width: int, height: int) -> np.ndarray: ...


def _to_rgb_array(image: Any) -> np.ndarray:
    """Materialize a pyvips image as an owned RGB uint8 array."""
    pyvips = _get_pyvips_module()
    image = image.copy_memory()
    with contextlib.suppress(pyvips.Error):
        image = image.colourspace("srgb")
    if image.hasalpha():
        image = image.flatten(background=[0, 0, 0])
    if image.bands > RGB_CHANNELS:
        image = image.extract_band(0, n=RGB_CHANNELS)
    elif image.bands < RGB_CHANNELS:
        image = pyvips.Image.bandjoin([image] * RGB_CHANNELS)
    if image.format != "uchar":
        image = image.cast("uchar")

    mem = image.write_to_memory()
    array = np.frombuffer(mem, dtype=np.uint8).reshape(image.height, image.width, image.bands)
    array = array.copy()
    if array.shape[2] != RGB_CHANNELS:
        raise RuntimeError(f"Unsupported band count after conversion: {array.shape[2]}")
    return array


def _shrink(image: Any, sample_size: int) -> Any:
    # libvips refuses to shrink below one pixel
    factor = min(sample_size, image.width, image.height)
    if factor <= 1:
        return image
    return image.shrink(factor, factor)


class VipsRegion:
    """Random-access decode context over one encoded source."""

    def __init__(self, data: bytes):
        pyvips = _get_pyvips_module()
        self._image: Any | None = pyvips.Image.new_from_buffer(data, "", access="random")
        self.width = int(self._image.width)
        self.height = int(self._image.height)

    def decode_region(self, rect: Rect, sample_size: int) -> np.ndarray:
        if self._image is None:
            raise RuntimeError("region decoder already closed")
        region = self._image.crop(rect.left, rect.top, rect.width, rect.height)
        return _to_rgb_array(_shrink(region, sample_size))

    def close(self) -> None:
        self._image = None

    def __enter__(self) -> VipsRegion:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class VipsBackend:
    """DecoderBackend backed by libvips."""

    def read_bounds(self, stream: BinaryIO) -> Bounds:
        pyvips = _get_pyvips_module()
        # new_from_buffer only parses the header; pixels are decoded on demand
        image = pyvips.Image.new_from_buffer(stream.read(), "")
        return Bounds(int(image.width), int(image.height))

    def decode(self, stream: BinaryIO, sample_size: int) -> np.ndarray:
        pyvips = _get_pyvips_module()
        image = pyvips.Image.new_from_buffer(stream.read(), "", access="sequential")
        return _to_rgb_array(_shrink(image, sample_size))

    def open_region(self, stream: BinaryIO) -> VipsRegion:
        return VipsRegion(stream.read())

    def scale(self, bitmap: np.ndarray, width: int, height: int) -> np.ndarray:
        pyvips = _get_pyvips_module()
        src = np.ascontiguousarray(bitmap, dtype=np.uint8)
        h, w, bands = src.shape
        image = pyvips.Image.new_from_memory(src.data, w, h, bands, "uchar")
        image = image.thumbnail_image(width, height=height, size="force")
        return _to_rgb_array(image)


_default_backend: VipsBackend | None = None


def default_backend() -> VipsBackend:
    global _default_backend
    if _default_backend is None:
        _default_backend = VipsBackend()
    return _default_backend


def probe_bounds(
    content: ContentAccess, handle: str, backend: DecoderBackend | None = None
) -> tuple[Bounds | None, DecodeError | None]:
    """Read the declared size of ``handle`` without decoding pixels.

    Returns (bounds|None, error|None); never raises for missing or broken sources.
    """
    backend = backend or default_backend()
    try:
        stream = content.open_stream(handle)
    except OSError as e:
        _logger.error("source not found: %s (%s)", handle, e)
        return None, SourceNotFound(f"cannot open {handle}: {e}", handle)
    with stream:
        try:
            bounds = backend.read_bounds(stream)
        except Exception as e:
            _logger.warning("bounds probe failed for %s: %s", handle, e)
            return None, SourceUnreadable(f"cannot read header of {handle}: {e}", handle)
    if bounds.width <= 0 or bounds.height <= 0:
        return None, SourceUnreadable(f"empty image: {handle}", handle)
    _logger.debug("probe_bounds: %s -> %sx%s", handle, bounds.width, bounds.height)
    return bounds, None


def retry_with_backoff(
    fn: Callable[[int], T],
    sample_size: int = 1,
    *,
    attempts: int = BITMAP_LOAD_BACKOUT_ATTEMPTS,
    is_allocation_failure: Callable[[BaseException], bool] = is_allocation_failure,
    label: str = "decode",
) -> T:
    """Call ``fn(sample_size)``, doubling the sample size after each allocation failure.

    Raises DecodeOutOfMemory once ``attempts`` calls have failed. Any other
    exception propagates unchanged.
    """
    sample_size = max(1, int(sample_size))
    tries = 0
    while True:
        try:
            return fn(sample_size)
        except DecodeOutOfMemory:
            raise
        except Exception as e:
            if not is_allocation_failure(e):
                raise
            tries += 1
            metrics.inc("decoder.allocation_failures")
            if tries >= attempts:
                metrics.inc("decoder.out_of_memory")
                _logger.error("%s: out of memory after %s attempts (sample=%s)", label, tries, sample_size)
                raise DecodeOutOfMemory(
                    f"{label}: out of memory after {tries} attempts", attempts=tries, sample_size=sample_size
                ) from e
            _logger.warning("%s: allocation failed at sample=%s, retrying at %s", label, sample_size, sample_size * 2)
            metrics.inc("decoder.backoff_retries")
            gc.collect()
            sample_size *= 2


def decode_with_backoff(
    content: ContentAccess,
    handle: str,
    sample_size: int = 1,
    *,
    backend: DecoderBackend | None = None,
    attempts: int = BITMAP_LOAD_BACKOUT_ATTEMPTS,
    is_allocation_failure: Callable[[BaseException], bool] = is_allocation_failure,
) -> np.ndarray | None:
    """Decode ``handle`` at ``sample_size``, backing off on allocation failures.

    Returns None when the source cannot be opened or decoded. Raises
    DecodeOutOfMemory when every attempt ran out of memory.
    """
    backend = backend or default_backend()

    def _attempt(sample: int) -> np.ndarray:
        # a fresh stream per attempt; the previous one is closed by the with block
        with content.open_stream(handle) as stream:
            return backend.decode(stream, sample)

    try:
        bitmap = retry_with_backoff(
            _attempt,
            sample_size,
            attempts=attempts,
            is_allocation_failure=is_allocation_failure,
            label=f"decode {handle}",
        )
    except DecodeOutOfMemory as e:
        e.handle = handle
        raise
    except OSError as e:
        _logger.warning("could not load bitmap %s: %s", handle, e)
        return None
    except Exception as e:
        _logger.error("decode failed for %s: %s", handle, e)
        return None
    _logger.debug("decoded %s: shape=%s", handle, bitmap.shape)
    return bitmap


def decode_resource_with_backoff(
    resources: ResourceStore,
    resource_id: str,
    sample_size: int = 1,
    *,
    backend: DecoderBackend | None = None,
    attempts: int = BITMAP_LOAD_BACKOUT_ATTEMPTS,
    is_allocation_failure: Callable[[BaseException], bool] = is_allocation_failure,
) -> np.ndarray | None:
    """Same policy as decode_with_backoff, for a bundled resource id."""
    backend = backend or default_backend()

    def _attempt(sample: int) -> np.ndarray:
        with resources.open_resource(resource_id) as stream:
            return backend.decode(stream, sample)

    try:
        return retry_with_backoff(
            _attempt,
            sample_size,
            attempts=attempts,
            is_allocation_failure=is_allocation_failure,
            label=f"decode resource {resource_id}",
        )
    except DecodeOutOfMemory as e:
        e.handle = resource_id
        raise
    except OSError as e:
        _logger.warning("could not load resource %s: %s", resource_id, e)
        return None
    except Exception as e:
        _logger.error("resource decode failed for %s: %s", resource_id, e)
        return None


def decode_region(
    content: ContentAccess,
    handle: str,
    rect: Rect,
    sample_size: int = 1,
    backend: DecoderBackend | None = None,
) -> np.ndarray | None:
    """Decode the ``rect`` window of ``handle``.

    Returns None when ``rect`` is not entirely inside the source, or when the
    source cannot be opened or decoded.
    """
    backend = backend or default_backend()
    try:
        with content.open_stream(handle) as stream, backend.open_region(stream) as region:
            native = Rect(0, 0, region.width, region.height)
            if not native.contains(rect):
                _logger.debug("region %s outside of %sx%s for %s", rect, region.width, region.height, handle)
                return None
            return region.decode_region(rect, max(1, int(sample_size)))
    except OSError as e:
        _logger.error("source not found: %s (%s)", handle, e)
    except Exception as e:
        if is_allocation_failure(e):
            metrics.inc("decoder.out_of_memory")
            raise DecodeOutOfMemory(f"region decode of {handle} ran out of memory", handle, attempts=1) from e
        _logger.error("region decode failed for %s: %s", handle, e)
    return None
