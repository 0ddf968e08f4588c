"""Power-of-two sample size selection.

A sample size ``n`` makes the decoder produce every n-th pixel in both
directions, so a source is never materialized at a resolution nobody will
look at.
"""

from __future__ import annotations

from .geometry import Bounds, Rect

MAX_BITMAP_DIM = 900
_MIN_DIM = 2


def solve_sample_size(
    bounds: Bounds, target_size: int, enforce_max: bool = True, max_dim: int = MAX_BITMAP_DIM
) -> int:
    """Largest power-of-two sample size that keeps the decode at least ``target_size``.

    With ``enforce_max`` the source keeps halving until both sides are within
    ``max_dim`` even if that undershoots ``target_size``. Halving always stops
    once a side is down to 2px.
    """
    width, height = bounds.width, bounds.height
    scale = 1
    while True:
        if width <= _MIN_DIM or height <= _MIN_DIM:
            break
        if not enforce_max or (width <= max_dim and height <= max_dim):
            if width // 2 < target_size or height // 2 < target_size:
                break
        width //= 2
        height //= 2
        scale *= 2
    return scale


def preset_sample_size(bounds: Rect, destination: Rect | None) -> int:
    """Sample size for decoding ``bounds`` into a ``destination`` no wider than it."""
    if destination is None or bounds.width <= destination.width:
        return 1
    sample_size = 1
    width = bounds.width
    while width > destination.width:
        sample_size *= 2
        width //= sample_size
    return sample_size
