"""Plain geometry value types shared by the decoder and the loader."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Bounds:
    """Declared pixel size of an undecoded source."""

    width: int
    height: int

    def to_rect(self) -> Rect:
        return Rect(0, 0, self.width, self.height)


@dataclass(frozen=True)
class Rect:
    """Half-open pixel rectangle: ``left <= x < right``, ``top <= y < bottom``."""

    left: int
    top: int
    right: int
    bottom: int

    @property
    def width(self) -> int:
        return self.right - self.left

    @property
    def height(self) -> int:
        return self.bottom - self.top

    @property
    def is_empty(self) -> bool:
        return self.left >= self.right or self.top >= self.bottom

    def contains(self, other: Rect) -> bool:
        """True when ``other`` is non-empty and lies entirely inside this rect."""
        return (
            not self.is_empty
            and not other.is_empty
            and self.left <= other.left
            and self.top <= other.top
            and self.right >= other.right
            and self.bottom >= other.bottom
        )
