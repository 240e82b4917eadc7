"""
Unit tests for the overlay region cache.
"""
import numpy as np
import pytest

from shade.domains.detection.entities.detection import DetectionBox
from shade.domains.visualization.models import BitmapPool
from shade.domains.visualization.services import OverlayRegionCache

from conftest import noise_frame, solid_frame

VIEW = (1000, 2000)


@pytest.fixture
def pool():
    return BitmapPool(capacity=10)


@pytest.fixture
def cache(pool):
    region_cache = OverlayRegionCache(pool=pool)
    region_cache.set_pixelation_level(15)
    region_cache.set_opacity(100)
    return region_cache


def test_miss_builds_region_with_power_of_two_buffer(cache):
    frame = solid_frame(400, 800, (10, 200, 30))
    box = DetectionBox(0.1, 0.1, 0.5, 0.5)

    regions = cache.update([box], frame, VIEW)

    assert len(regions) == 1
    region = regions[0]
    # Source rect 160 x 320 pixels, factor 15
    assert (region.content_width, region.content_height) == (10, 21)
    assert region.content.shape == (32, 16, 4)
    assert region.bounds == pytest.approx((100.0, 200.0, 500.0, 1000.0))
    assert np.all(region.content_view[..., :3] == (10, 200, 30))
    assert cache.cache_misses == 1


def test_close_box_reuses_cached_region_and_buffer(cache, pool):
    frame = noise_frame(400, 800)
    first = cache.update([DetectionBox(0.1, 0.1, 0.5, 0.5)], frame, VIEW)[0]
    pool_misses = pool.misses

    second = cache.update([DetectionBox(0.12, 0.11, 0.52, 0.49)], frame, VIEW)[0]

    assert second is first
    assert second.content is first.content
    assert first.content not in pool
    assert pool.misses == pool_misses
    assert cache.cache_hits == 1


def test_moved_box_misses_cache(cache):
    frame = solid_frame(400, 800)
    first = cache.update([DetectionBox(0.1, 0.1, 0.5, 0.5)], frame, VIEW)[0]

    second = cache.update([DetectionBox(0.2, 0.1, 0.5, 0.5)], frame, VIEW)[0]

    assert second is not first


def test_each_cached_region_is_claimed_once(cache):
    frame = solid_frame(400, 800)
    box = DetectionBox(0.1, 0.1, 0.5, 0.5)
    original = cache.update([box], frame, VIEW)[0]

    regions = cache.update([box, box], frame, VIEW)

    assert regions[0] is original
    assert regions[1] is not original
    assert regions[1].content is not original.content


def test_unclaimed_regions_return_buffers_to_pool(cache, pool):
    frame = solid_frame(400, 800)
    old = cache.update([DetectionBox(0.1, 0.1, 0.5, 0.5)], frame, VIEW)[0]

    cache.update([DetectionBox(0.6, 0.6, 0.9, 0.9)], frame, VIEW)

    assert old.content in pool


def test_tiny_box_still_gets_one_pixel_content(cache):
    frame = solid_frame(100, 100)

    region = cache.update([DetectionBox(0.995, 0.995, 1.0, 1.0)], frame, VIEW)[0]

    assert (region.content_width, region.content_height) == (1, 1)
    assert region.content.shape == (8, 8, 4)


def test_pixelation_level_is_clamped_and_drops_cache(cache, pool):
    frame = solid_frame(400, 800)
    region = cache.update([DetectionBox(0.1, 0.1, 0.5, 0.5)], frame, VIEW)[0]

    assert cache.set_pixelation_level(2) == 5
    assert cache.set_pixelation_level(99) == 30
    assert region.content in pool
    assert cache.regions == []

    rebuilt = cache.update([DetectionBox(0.1, 0.1, 0.5, 0.5)], frame, VIEW)[0]
    assert rebuilt is not region
    assert (rebuilt.content_width, rebuilt.content_height) == (5, 10)


@pytest.mark.parametrize("percent,alpha", [(100, 255), (50, 127), (0, 0), (-10, 0), (150, 255)])
def test_opacity_is_clamped_and_scaled(cache, percent, alpha):
    assert cache.set_opacity(percent) == alpha


def test_opacity_does_not_affect_matching(cache):
    frame = solid_frame(400, 800)
    box = DetectionBox(0.1, 0.1, 0.5, 0.5)
    first = cache.update([box], frame, VIEW)[0]

    cache.set_opacity(30)
    second = cache.update([box], frame, VIEW)[0]

    assert second is first
    assert cache.patches()[0].opacity == int(0.3 * 255)


def test_patches_expose_content_window_bounds_and_opacity(cache):
    frame = solid_frame(400, 800)
    cache.update([DetectionBox(0.1, 0.1, 0.5, 0.5)], frame, VIEW)

    patch = cache.patches()[0]

    assert patch.content.shape == (21, 10, 4)
    assert patch.bounds == pytest.approx((100.0, 200.0, 500.0, 1000.0))
    assert patch.opacity == 255


def test_clear_returns_all_buffers(cache, pool):
    frame = solid_frame(400, 800)
    regions = cache.update([DetectionBox(0.1, 0.1, 0.3, 0.3), DetectionBox(0.5, 0.5, 0.9, 0.9)], frame, VIEW)

    cache.clear()

    assert cache.regions == []
    assert all(r.content in pool for r in regions)


def test_release_drains_pool(cache, pool):
    cache.update([DetectionBox(0.1, 0.1, 0.3, 0.3)], solid_frame(400, 800), VIEW)

    cache.release()

    assert len(pool) == 0


def test_synthesis_failure_is_skipped(cache, mocker):
    mocker.patch.object(cache.image_processor, "pixelate_into", side_effect=RuntimeError("boom"))

    regions = cache.update([DetectionBox(0.1, 0.1, 0.3, 0.3)], solid_frame(400, 800), VIEW)

    assert regions == []
    assert cache.synthesis_failures == 1
