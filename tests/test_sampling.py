import pytest

from photo_editor.image_engine.geometry import Bounds, Rect
from photo_editor.image_engine.sampling import MAX_BITMAP_DIM, preset_sample_size, solve_sample_size


def _is_power_of_two(n: int) -> bool:
    return n >= 1 and n & (n - 1) == 0


def _would_stop(width: int, height: int, target: int, enforce_max: bool) -> bool:
    if width <= 2 or height <= 2:
        return True
    if not enforce_max or (width <= MAX_BITMAP_DIM and height <= MAX_BITMAP_DIM):
        return width // 2 < target or height // 2 < target
    return False


@pytest.mark.parametrize("enforce_max", [True, False])
@pytest.mark.parametrize(
    "width,height,target",
    [
        (4000, 3000, 160),
        (900, 900, 100),
        (1000, 50, 30),
        (3, 3, 1),
        (5000, 20, 1),
        (640, 480, 480),
        (10000, 10000, 1),
        (1200, 800, 2000),
    ],
)
def test_sample_size_is_a_power_of_two_that_cannot_halve_again(width, height, target, enforce_max):
    scale = solve_sample_size(Bounds(width, height), target, enforce_max=enforce_max)

    assert _is_power_of_two(scale)
    # repeated floor halving equals a single floor division by the scale
    assert _would_stop(width // scale, height // scale, target, enforce_max)
    if scale > 1:
        prev = scale // 2
        assert not _would_stop(width // prev, height // prev, target, enforce_max)


def test_large_source_is_capped_below_max_dim():
    # 4000x3000 -> 250x187 at 1/16
    assert solve_sample_size(Bounds(4000, 3000), 160) == 16


def test_without_max_dim_only_target_matters():
    assert solve_sample_size(Bounds(4000, 3000), 1000, enforce_max=False) == 2
    assert solve_sample_size(Bounds(4000, 3000), 2000, enforce_max=False) == 1


def test_tiny_sources_are_never_sampled():
    assert solve_sample_size(Bounds(2, 100), 1) == 1
    assert solve_sample_size(Bounds(100, 1), 1) == 1


def test_custom_max_dim():
    assert solve_sample_size(Bounds(800, 600), 300) == 2
    assert solve_sample_size(Bounds(800, 600), 300, max_dim=300) == 4


def test_preset_sample_size_shrinks_until_destination_fits():
    assert preset_sample_size(Rect(0, 0, 100, 100), Rect(0, 0, 50, 50)) == 2
    # width goes 400 -> 200 -> 50
    assert preset_sample_size(Rect(0, 0, 400, 400), Rect(0, 0, 50, 50)) == 4
    # width goes 1000 -> 500 -> 125 -> 15
    assert preset_sample_size(Rect(0, 0, 1000, 1000), Rect(0, 0, 100, 100)) == 8
    assert preset_sample_size(Rect(0, 0, 100, 100), Rect(0, 0, 60, 60)) == 2


def test_preset_sample_size_defaults_to_one():
    assert preset_sample_size(Rect(0, 0, 100, 100), None) == 1
    assert preset_sample_size(Rect(0, 0, 100, 100), Rect(0, 0, 100, 100)) == 1
    assert preset_sample_size(Rect(0, 0, 100, 100), Rect(0, 0, 300, 300)) == 1
