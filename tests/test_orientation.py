import numpy as np
import pytest

from photo_editor.image_engine.orientation import (
    OrientationCode,
    needs_transform,
    orientation_from_degrees,
    rotate_to_portrait,
    swaps_dimensions,
)
from tests.helpers.fakes import make_bitmap


@pytest.fixture
def bitmap() -> np.ndarray:
    return make_bitmap(7, 4, seed=3)


def test_normal_returns_same_bitmap(bitmap):
    out = rotate_to_portrait(bitmap, OrientationCode.NORMAL)
    assert out is bitmap
    assert rotate_to_portrait(bitmap, OrientationCode.UNKNOWN) is bitmap


def test_rotate_90_is_clockwise_and_swaps_dimensions(bitmap):
    out = rotate_to_portrait(bitmap, OrientationCode.ROTATE_90)
    assert out.shape == (7, 4, 3)
    # top-left of the output is the bottom-left of the input
    assert np.array_equal(out[0, 0], bitmap[-1, 0])
    assert np.array_equal(out, np.rot90(bitmap, k=-1))


def test_rotate_90_then_270_round_trips(bitmap):
    turned = rotate_to_portrait(bitmap, OrientationCode.ROTATE_90)
    back = rotate_to_portrait(turned, OrientationCode.ROTATE_270)
    assert back.shape == bitmap.shape
    assert np.array_equal(back, bitmap)


def test_rotate_180_twice_round_trips(bitmap):
    once = rotate_to_portrait(bitmap, OrientationCode.ROTATE_180)
    assert once.shape == bitmap.shape
    assert np.array_equal(once, bitmap[::-1, ::-1])
    assert np.array_equal(rotate_to_portrait(once, OrientationCode.ROTATE_180), bitmap)


def test_flips(bitmap):
    assert np.array_equal(rotate_to_portrait(bitmap, OrientationCode.FLIP_HORIZONTAL), bitmap[:, ::-1])
    assert np.array_equal(rotate_to_portrait(bitmap, OrientationCode.FLIP_VERTICAL), bitmap[::-1])


def test_transpose_and_transverse(bitmap):
    transposed = rotate_to_portrait(bitmap, OrientationCode.TRANSPOSE)
    assert np.array_equal(transposed, bitmap.transpose(1, 0, 2))

    transversed = rotate_to_portrait(bitmap, OrientationCode.TRANSVERSE)
    assert np.array_equal(transversed, bitmap[::-1, ::-1].transpose(1, 0, 2))


@pytest.mark.parametrize(
    "code",
    [c for c in OrientationCode if c not in (OrientationCode.NORMAL, OrientationCode.UNKNOWN)],
)
def test_transformed_output_owns_its_pixels(bitmap, code):
    out = rotate_to_portrait(bitmap, code)
    assert not np.shares_memory(out, bitmap)
    assert out.flags.c_contiguous
    expected = (bitmap.shape[1], bitmap.shape[0]) if swaps_dimensions(code) else bitmap.shape[:2]
    assert out.shape[:2] == expected


def test_orientation_from_degrees():
    assert orientation_from_degrees(0) == OrientationCode.NORMAL
    assert orientation_from_degrees(90) == OrientationCode.ROTATE_90
    assert orientation_from_degrees(180) == OrientationCode.ROTATE_180
    assert orientation_from_degrees(270) == OrientationCode.ROTATE_270
    assert orientation_from_degrees(45) == OrientationCode.UNKNOWN
    assert orientation_from_degrees(None) == OrientationCode.UNKNOWN


def test_coerce_and_needs_transform():
    assert OrientationCode.coerce(6) == OrientationCode.ROTATE_90
    assert OrientationCode.coerce("3") == OrientationCode.ROTATE_180
    assert OrientationCode.coerce(0) == OrientationCode.UNKNOWN
    assert OrientationCode.coerce("garbage") == OrientationCode.UNKNOWN
    assert not needs_transform(OrientationCode.NORMAL)
    assert not needs_transform(OrientationCode.UNKNOWN)
    assert needs_transform(OrientationCode.FLIP_HORIZONTAL)
