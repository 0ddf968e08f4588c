"""Orientation codes and the pixel transforms that undo them.

Codes use the EXIF orientation tag values so that a value read from a JPEG
header can be used directly. Rotations are clockwise, matching how a viewer
has to turn the stored pixels to show the photo upright.
"""

from __future__ import annotations

from enum import IntEnum

import numpy as np

from photo_editor.logger import get_logger

_logger = get_logger("orientation")


class OrientationCode(IntEnum):
    UNKNOWN = -1
    NORMAL = 1
    FLIP_HORIZONTAL = 2
    ROTATE_180 = 3
    FLIP_VERTICAL = 4
    TRANSPOSE = 5
    ROTATE_90 = 6
    TRANSVERSE = 7
    ROTATE_270 = 8

    @classmethod
    def coerce(cls, value: object) -> OrientationCode:
        """Map a raw tag value to a code; anything unrecognized is UNKNOWN."""
        try:
            return cls(int(value))  # type: ignore[call-overload]
        except (TypeError, ValueError):
            return cls.UNKNOWN


_SWAPPING = frozenset(
    {
        OrientationCode.ROTATE_90,
        OrientationCode.ROTATE_270,
        OrientationCode.TRANSPOSE,
        OrientationCode.TRANSVERSE,
    }
)

_DEGREES = {
    0: OrientationCode.NORMAL,
    90: OrientationCode.ROTATE_90,
    180: OrientationCode.ROTATE_180,
    270: OrientationCode.ROTATE_270,
}


def orientation_from_degrees(degrees: object) -> OrientationCode:
    """Media-index rotation column (0/90/180/270) to an orientation code."""
    try:
        return _DEGREES.get(int(degrees), OrientationCode.UNKNOWN)  # type: ignore[call-overload]
    except (TypeError, ValueError):
        return OrientationCode.UNKNOWN


def swaps_dimensions(orientation: int) -> bool:
    return orientation in _SWAPPING


def needs_transform(orientation: int) -> bool:
    """True for every code except NORMAL and UNKNOWN."""
    return orientation > OrientationCode.NORMAL


def _rotate_cw(bitmap: np.ndarray, degrees: int) -> np.ndarray:
    # np.rot90 turns counter-clockwise for positive k
    return np.rot90(bitmap, k=-(degrees // 90))


def rotate_to_portrait(bitmap: np.ndarray, orientation: int) -> np.ndarray:
    """Return ``bitmap`` turned upright for the given orientation code.

    NORMAL and UNKNOWN hand back the same array. Every other code produces a
    new contiguous array; ROTATE_90, ROTATE_270, TRANSPOSE and TRANSVERSE swap
    width and height.
    """
    if orientation == OrientationCode.ROTATE_90:
        out = _rotate_cw(bitmap, 90)
    elif orientation == OrientationCode.ROTATE_180:
        out = _rotate_cw(bitmap, 180)
    elif orientation == OrientationCode.ROTATE_270:
        out = _rotate_cw(bitmap, 270)
    elif orientation == OrientationCode.FLIP_HORIZONTAL:
        out = bitmap[:, ::-1]
    elif orientation == OrientationCode.FLIP_VERTICAL:
        out = bitmap[::-1]
    elif orientation == OrientationCode.TRANSPOSE:
        out = _rotate_cw(bitmap[::-1], 90)
    elif orientation == OrientationCode.TRANSVERSE:
        out = _rotate_cw(bitmap[::-1], 270)
    else:
        return bitmap

    # slicing and rot90 return views; the result must own its pixels
    result = np.array(out, copy=True, order="C")
    _logger.debug(
        "rotate_to_portrait: orientation=%s %sx%s -> %sx%s",
        orientation,
        bitmap.shape[1],
        bitmap.shape[0],
        result.shape[1],
        result.shape[0],
    )
    return result
