"""Image Engine - decoding and tiered bitmap caching for the editor.

This package provides:
- Bounds probing, sampled decoding with out-of-memory backoff and region
  decoding (decoder)
- Sample size selection (sampling)
- Orientation normalization (orientation)
- The tiered bitmap cache (image_loader)
- Content, orientation and resource collaborators (content)

Usage:
    from photo_editor.image_engine import ImageLoader

    loader = ImageLoader()
    loader.add_listener(view)
    if loader.load_bitmap("/path/to/photo.jpg", 480):
        preview = loader.get_original_bitmap_large()
"""

from .errors import DecodeError, DecodeOutOfMemory, MalformedMetadata, SourceNotFound, SourceUnreadable
from .geometry import Bounds, Rect
from .image_loader import BitmapTier, ImageLoader, LoaderStatus, load_mutable_bitmap
from .orientation import OrientationCode, rotate_to_portrait

__all__ = [
    "BitmapTier",
    "Bounds",
    "DecodeError",
    "DecodeOutOfMemory",
    "ImageLoader",
    "LoaderStatus",
    "MalformedMetadata",
    "OrientationCode",
    "Rect",
    "SourceNotFound",
    "SourceUnreadable",
    "load_mutable_bitmap",
    "rotate_to_portrait",
]
