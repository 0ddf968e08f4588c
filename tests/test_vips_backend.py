import numpy as np
import pytest

pyvips = pytest.importorskip("pyvips")

from pathlib import Path

from photo_editor.image_engine.content import ExifOrientationSource, FileContentAccess
from photo_editor.image_engine.decoder import VipsBackend, decode_region, decode_with_backoff, probe_bounds
from photo_editor.image_engine.errors import SourceNotFound, SourceUnreadable
from photo_editor.image_engine.geometry import Bounds, Rect
from photo_editor.image_engine.image_loader import ImageLoader
from photo_editor.image_engine.orientation import OrientationCode


def _write_rgb(path: Path, width: int, height: int, color=(10, 20, 30), orientation: int | None = None) -> Path:
    image = (pyvips.Image.black(width, height, bands=3) + list(color)).cast("uchar")
    if orientation is not None:
        image = image.copy()
        image.set_type(pyvips.GValue.gint_type, "orientation", orientation)
    image.write_to_file(str(path))
    return path


def test_probe_bounds_reads_header(tmp_path: Path):
    path = _write_rgb(tmp_path / "a.png", 40, 30)
    bounds, error = probe_bounds(FileContentAccess(), str(path))
    assert bounds == Bounds(40, 30)
    assert error is None


def test_probe_bounds_errors(tmp_path: Path):
    empty = tmp_path / "empty.jpg"
    empty.write_bytes(b"")

    _, error = probe_bounds(FileContentAccess(), str(empty))
    assert isinstance(error, SourceUnreadable)

    _, error = probe_bounds(FileContentAccess(), str(tmp_path / "missing.jpg"))
    assert isinstance(error, SourceNotFound)


def test_sampled_decode(tmp_path: Path):
    path = _write_rgb(tmp_path / "a.png", 40, 30)
    bitmap = decode_with_backoff(FileContentAccess(), str(path), 2)
    assert bitmap.shape == (15, 20, 3)
    assert bitmap.dtype == np.uint8
    assert tuple(bitmap[0, 0]) == (10, 20, 30)


def test_region_decode(tmp_path: Path):
    path = _write_rgb(tmp_path / "a.png", 40, 30)
    content = FileContentAccess()

    region = decode_region(content, str(path), Rect(5, 5, 25, 15))
    assert region.shape == (10, 20, 3)
    assert tuple(region[3, 3]) == (10, 20, 30)

    assert decode_region(content, str(path), Rect(30, 0, 41, 10)) is None


def test_scale_is_exact():
    bitmap = np.full((30, 40, 3), 200, dtype=np.uint8)
    out = VipsBackend().scale(bitmap, 16, 12)
    assert out.shape == (12, 16, 3)


def test_exif_orientation_from_jpeg(tmp_path: Path):
    path = _write_rgb(tmp_path / "rotated.jpg", 64, 32, orientation=6)
    assert ExifOrientationSource().get_orientation(str(path)) == OrientationCode.ROTATE_90


def test_loader_end_to_end(tmp_path: Path):
    plain = _write_rgb(tmp_path / "plain.png", 400, 300)
    rotated = _write_rgb(tmp_path / "rotated.jpg", 64, 32, orientation=6)
    loader = ImageLoader()

    assert loader.load_bitmap(str(plain), 160)
    assert loader.get_original_bitmap_large().shape == (300, 400, 3)
    assert loader.get_original_bitmap_small().shape == (120, 160, 3)

    assert loader.load_bitmap(rotated.as_uri(), 32)
    assert loader.orientation == OrientationCode.ROTATE_90
    assert loader.get_original_bitmap_large().shape == (64, 32, 3)
    assert loader.get_original_bitmap_small().shape == (320, 160, 3)
