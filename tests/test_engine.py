"""Tests for the synthesis engine: tolerance, matcher, library, flood fill."""

from __future__ import annotations

import asyncio
import itertools

import numpy as np
import pytest

from sample_mosaic.color_utils import anchor_to_key, key_to_anchor, mean_color, within_tolerance
from sample_mosaic.compositor import flood_fill, synthesize
from sample_mosaic.errors import (
    InvalidImageDimensions,
    NoMatchingSample,
    SampleAcquisitionFailed,
)
from sample_mosaic.matcher import RegionMatcher, find_closest
from sample_mosaic.samples import ColorSample, SampleLibrary

# -- Fixtures ----------------------------------------------------------

RED = (200, 30, 30)
RED_ANCHOR = (205, 28, 29)
GREEN = (20, 200, 20)
GREEN_ANCHOR = (22, 198, 25)

A, B, C, D = (10, 20, 30), (40, 50, 60), (70, 80, 90), (100, 110, 120)


class FakeFetcher:
    """Async fetcher serving in-memory tiles and recording every call."""

    def __init__(self, tiles: dict[tuple[int, int, int], np.ndarray]) -> None:
        self.tiles = {anchor_to_key(a): t for a, t in tiles.items()}
        self.calls: list[str] = []

    async def __call__(self, key: str) -> np.ndarray:
        self.calls.append(key)
        await asyncio.sleep(0)
        if key not in self.tiles:
            raise FileNotFoundError(f"no tile {key}")
        return self.tiles[key]


class BlockingFetcher:
    """Fetcher that never completes until released."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.release = asyncio.Event()

    async def __call__(self, key: str) -> np.ndarray:
        self.calls.append(key)
        await self.release.wait()
        return np.zeros((1, 1, 3), dtype=np.uint8)


class BoundsCheckedGrid:
    """Array wrapper failing on any out-of-range index and logging writes."""

    def __init__(self, array: np.ndarray) -> None:
        self.array = array
        self.shape = array.shape
        self.writes: list[tuple[int, int]] = []

    def _check(self, key: tuple[int, int]) -> None:
        y, x = key
        assert 0 <= y < self.shape[0], f"row {y} out of bounds"
        assert 0 <= x < self.shape[1], f"column {x} out of bounds"

    def __getitem__(self, key: tuple[int, int]):
        self._check(key)
        return self.array[key]

    def __setitem__(self, key: tuple[int, int], value) -> None:
        self._check(key)
        self.writes.append(key)
        self.array[key] = value


@pytest.fixture
def tile_2x2() -> np.ndarray:
    return np.array([[A, B], [C, D]], dtype=np.uint8)


def solid(h: int, w: int, color: tuple[int, int, int]) -> np.ndarray:
    img = np.empty((h, w, 3), dtype=np.uint8)
    img[:] = color
    return img


def run(coro):
    return asyncio.run(coro)


# -- Pixel proximity ---------------------------------------------------

class TestTolerance:
    def test_reflexive_and_symmetric(self) -> None:
        rng = np.random.default_rng(7)
        pixels = rng.integers(0, 256, size=(40, 3), dtype=np.uint8)
        for t in (1, 4, 16):
            for p1, p2 in itertools.product(pixels[:10], pixels):
                assert within_tolerance(p1, p1, t)
                assert within_tolerance(p1, p2, t) == within_tolerance(p2, p1, t)

    def test_strict_bound_per_channel(self) -> None:
        assert within_tolerance((100, 100, 100), (103, 97, 103), 4)
        assert not within_tolerance((100, 100, 100), (104, 100, 100), 4)
        assert not within_tolerance((100, 100, 100), (100, 100, 96), 4)

    def test_channels_not_combined(self) -> None:
        # Euclidean distance ~5.2 but every channel is within 3
        assert within_tolerance((10, 10, 10), (13, 13, 13), 4)

    def test_no_uint8_wraparound(self) -> None:
        lo = np.array([0, 0, 0], dtype=np.uint8)
        hi = np.array([255, 0, 0], dtype=np.uint8)
        assert not within_tolerance(lo, hi, 4)


class TestAnchorKeys:
    def test_to_key(self) -> None:
        assert anchor_to_key(RED) == "c81e1e"

    def test_from_key(self) -> None:
        assert key_to_anchor("#C81E1E") == RED
        assert key_to_anchor("00ff10") == (0, 255, 16)

    def test_bad_key(self) -> None:
        with pytest.raises(ValueError):
            key_to_anchor("abc")

    def test_mean_color(self) -> None:
        img = np.array([[[0, 0, 0], [10, 20, 31]]], dtype=np.uint8)
        assert mean_color(img) == (5, 10, 16)


# -- Region matcher ----------------------------------------------------

class TestMatcher:
    def test_exact_anchor_distance_zero(self) -> None:
        m = RegionMatcher([GREEN_ANCHOR, RED_ANCHOR, (0, 0, 0)])
        assert m.match(RED_ANCHOR) == RED_ANCHOR
        assert m.distance(RED_ANCHOR, RED_ANCHOR) == 0.0

    def test_nearest(self) -> None:
        m = RegionMatcher([GREEN_ANCHOR, RED_ANCHOR])
        assert m.match(RED) == RED_ANCHOR
        assert m.match(GREEN) == GREEN_ANCHOR

    def test_tie_keeps_first(self) -> None:
        query = (100, 100, 100)
        a, b = (110, 100, 100), (90, 100, 100)
        assert RegionMatcher([a, b]).match(query) == a
        assert RegionMatcher([b, a]).match(query) == b
        m = RegionMatcher([a, b])
        assert {m.match(query) for _ in range(20)} == {a}

    def test_find_closest_index(self) -> None:
        anchors = np.array([[0, 0, 0], [255, 255, 255], [250, 250, 250]], dtype=np.uint8)
        assert find_closest((252, 252, 252), anchors) == 2
        assert find_closest((0, 0, 0), np.empty((0, 3), dtype=np.uint8)) is None

    def test_empty(self) -> None:
        m = RegionMatcher([])
        assert m.match(RED) is None
        with pytest.raises(NoMatchingSample):
            m.best_match(RED)

    def test_max_distance(self) -> None:
        m = RegionMatcher([RED_ANCHOR], max_distance=10)
        assert m.match(RED) == RED_ANCHOR
        assert m.match(GREEN) is None
        with pytest.raises(NoMatchingSample, match="within 10"):
            m.best_match(GREEN)

    def test_duplicates_dropped(self) -> None:
        m = RegionMatcher([RED_ANCHOR, GREEN_ANCHOR, RED_ANCHOR])
        assert m.anchors == [RED_ANCHOR, GREEN_ANCHOR]

    def test_lab(self) -> None:
        m = RegionMatcher([GREEN_ANCHOR, RED_ANCHOR], color_space="lab")
        assert m.match(RED_ANCHOR) == RED_ANCHOR
        assert m.match(RED) == RED_ANCHOR

    def test_invalid_color_space(self) -> None:
        with pytest.raises(ValueError):
            RegionMatcher([RED_ANCHOR], color_space="hsv")


# -- Sample library ----------------------------------------------------

class TestSampleLibrary:
    def test_sample_identity_is_anchor(self, tile_2x2: np.ndarray) -> None:
        a = ColorSample(RED_ANCHOR, tile_2x2)
        b = ColorSample(RED_ANCHOR, np.zeros((3, 3, 3), dtype=np.uint8))
        assert a == b
        assert len({a, b}) == 1
        assert a.key == "cd1c1d"

    def test_add_is_insert_if_absent(self, tile_2x2: np.ndarray) -> None:
        lib = SampleLibrary(FakeFetcher({}))
        other = np.zeros((3, 3, 3), dtype=np.uint8)
        assert lib.add(ColorSample(RED_ANCHOR, tile_2x2))
        assert not lib.add(ColorSample(RED_ANCHOR, other))
        assert len(lib) == 1
        np.testing.assert_array_equal(lib.get(RED_ANCHOR).tile, tile_2x2)

    def test_miss_then_hit_identical(self, tile_2x2: np.ndarray) -> None:
        fetcher = FakeFetcher({RED_ANCHOR: tile_2x2})
        lib = SampleLibrary(fetcher)

        async def go():
            first = await lib.resolve(RED_ANCHOR)
            second = await lib.resolve(RED_ANCHOR)
            return first, second

        first, second = run(go())
        np.testing.assert_array_equal(first, second)
        np.testing.assert_array_equal(first, tile_2x2)
        assert fetcher.calls == ["cd1c1d"]
        assert RED_ANCHOR in lib

    def test_concurrent_misses_share_one_fetch(self, tile_2x2: np.ndarray) -> None:
        fetcher = FakeFetcher({RED_ANCHOR: tile_2x2})
        lib = SampleLibrary(fetcher)

        async def go():
            return await asyncio.gather(
                lib.resolve(RED_ANCHOR), lib.resolve(RED_ANCHOR), lib.resolve(RED_ANCHOR),
            )

        tiles = run(go())
        assert fetcher.calls == ["cd1c1d"]
        assert len(lib) == 1
        for t in tiles:
            np.testing.assert_array_equal(t, tile_2x2)

    def test_failure_not_retried(self) -> None:
        fetcher = FakeFetcher({})
        lib = SampleLibrary(fetcher)

        async def go():
            for _ in range(3):
                with pytest.raises(SampleAcquisitionFailed) as info:
                    await lib.resolve(RED_ANCHOR)
                assert info.value.anchor == RED_ANCHOR

        run(go())
        assert fetcher.calls == ["cd1c1d"]
        assert RED_ANCHOR in lib.failures
        assert "FileNotFoundError" in lib.failures[RED_ANCHOR]
        assert lib.pending == 0

    def test_bad_tile_is_a_failure(self) -> None:
        lib = SampleLibrary(FakeFetcher({RED_ANCHOR: np.zeros((0, 4, 3), dtype=np.uint8)}))
        with pytest.raises(SampleAcquisitionFailed, match="ValueError"):
            run(lib.resolve(RED_ANCHOR))

    def test_preload(self, tile_2x2: np.ndarray) -> None:
        fetcher = FakeFetcher({RED_ANCHOR: tile_2x2})
        lib = SampleLibrary(fetcher)
        loaded = run(lib.preload([RED_ANCHOR, GREEN_ANCHOR, RED_ANCHOR]))
        assert loaded == 1
        assert sorted(fetcher.calls) == sorted(["cd1c1d", "16c619"])
        assert GREEN_ANCHOR in lib.failures

    def test_cancel_pending(self) -> None:
        async def go():
            fetcher = BlockingFetcher()
            lib = SampleLibrary(fetcher)
            waiter = asyncio.create_task(lib.resolve(RED_ANCHOR))
            await asyncio.sleep(0)
            await asyncio.sleep(0)
            assert lib.pending == 1
            assert lib.cancel_pending() == 1
            with pytest.raises(asyncio.CancelledError):
                await waiter
            return lib

        lib = run(go())
        assert lib.pending == 0
        assert RED_ANCHOR not in lib
        assert RED_ANCHOR not in lib.failures


# -- Flood fill --------------------------------------------------------

class TestFloodFill:
    def _buffers(self, source: np.ndarray):
        h, w = source.shape[:2]
        return (
            np.zeros((h, w), dtype=bool),
            np.zeros((h, w, 3), dtype=np.uint8),
            np.zeros((h, w), dtype=bool),
        )

    def test_fills_connected_region_only(self, tile_2x2: np.ndarray) -> None:
        src = solid(3, 5, RED)
        src[:, 2] = GREEN  # wall splitting the image
        consumed, dest, filled = self._buffers(src)
        n = flood_fill(src, consumed, dest, filled, (0, 0), tile_2x2)
        assert n == 6
        assert filled[:, :2].all()
        assert not filled[:, 2:].any()
        np.testing.assert_array_equal(consumed, filled)

    def test_tolerance_membership(self, tile_2x2: np.ndarray) -> None:
        src = solid(1, 4, (100, 100, 100))
        src[0, 1] = (103, 100, 100)
        src[0, 2] = (104, 100, 100)
        consumed, dest, filled = self._buffers(src)
        assert flood_fill(src, consumed, dest, filled, (0, 0), tile_2x2, tolerance=4) == 2
        assert filled.tolist() == [[True, True, False, False]]

    def test_consumed_pixels_skipped(self, tile_2x2: np.ndarray) -> None:
        src = solid(2, 2, RED)
        consumed, dest, filled = self._buffers(src)
        consumed[0, 1] = True
        assert flood_fill(src, consumed, dest, filled, (0, 0), tile_2x2) == 3
        assert not filled[0, 1]

    def test_black_is_an_ordinary_colour(self, tile_2x2: np.ndarray) -> None:
        src = solid(3, 3, (0, 0, 0))
        consumed, dest, filled = self._buffers(src)
        assert flood_fill(src, consumed, dest, filled, (1, 1), tile_2x2) == 9

    def test_legacy_edge_rule(self, tile_2x2: np.ndarray) -> None:
        src = solid(3, 3, RED)
        consumed, dest, filled = self._buffers(src)
        n = flood_fill(src, consumed, dest, filled, (2, 2), tile_2x2, skip_edge_neighbors=True)
        assert n == 4
        assert not filled[0, :].any()
        assert not filled[:, 0].any()

        consumed, dest, filled = self._buffers(src)
        assert flood_fill(src, consumed, dest, filled, (2, 2), tile_2x2) == 9

    def test_large_region_is_iterative(self) -> None:
        src = solid(300, 300, RED)
        consumed, dest, filled = self._buffers(src)
        tile = solid(1, 1, RED_ANCHOR)
        assert flood_fill(src, consumed, dest, filled, (150, 150), tile) == 90_000

    @pytest.mark.parametrize("skip_edges", [False, True])
    def test_bounds_and_single_writes(self, tile_2x2: np.ndarray, skip_edges: bool) -> None:
        rng = np.random.default_rng(3)
        palette = np.array([RED, GREEN, (0, 0, 0)], dtype=np.uint8)
        src_arr = palette[rng.integers(0, 3, size=(9, 11))]
        h, w = src_arr.shape[:2]

        source = BoundsCheckedGrid(src_arr)
        consumed = BoundsCheckedGrid(np.zeros((h, w), dtype=bool))
        dest = BoundsCheckedGrid(np.zeros((h, w, 3), dtype=np.uint8))
        filled = BoundsCheckedGrid(np.zeros((h, w), dtype=bool))

        for y in range(h):
            for x in range(w):
                if not filled.array[y, x]:
                    flood_fill(
                        source, consumed, dest, filled, (x, y), tile_2x2,
                        skip_edge_neighbors=skip_edges,
                    )

        assert len(dest.writes) == len(set(dest.writes)) == h * w
        assert filled.array.all()


# -- Synthesis ---------------------------------------------------------

class TestSynthesize:
    def test_uniform_image_tiles_from_origin(self, tile_2x2: np.ndarray) -> None:
        quantized = solid(4, 4, RED)
        lib = SampleLibrary(FakeFetcher({RED_ANCHOR: tile_2x2}))
        result = run(synthesize(quantized, lib, RegionMatcher([RED_ANCHOR])))

        expected = np.tile(tile_2x2, (2, 2, 1))
        np.testing.assert_array_equal(result.image, expected)
        assert result.complete
        assert result.regions == 1
        assert result.failures == []

    def test_input_not_modified(self, tile_2x2: np.ndarray) -> None:
        quantized = solid(4, 4, RED)
        before = quantized.copy()
        lib = SampleLibrary(FakeFetcher({RED_ANCHOR: tile_2x2}))
        run(synthesize(quantized, lib, RegionMatcher([RED_ANCHOR])))
        np.testing.assert_array_equal(quantized, before)

    def test_second_region_unmatched_stays_unfilled(self, tile_2x2: np.ndarray) -> None:
        quantized = solid(4, 6, RED)
        quantized[:, 3:] = GREEN
        fetcher = FakeFetcher({RED_ANCHOR: tile_2x2})
        lib = SampleLibrary(fetcher)
        matcher = RegionMatcher([RED_ANCHOR], max_distance=10)
        result = run(synthesize(quantized, lib, matcher))

        assert result.filled[:, :3].all()
        assert not result.filled[:, 3:].any()
        assert result.unfilled_count == 12
        assert not result.complete
        assert result.coverage == pytest.approx(0.5)
        assert len(result.failures) == 1
        assert result.failures[0][0] is None
        assert fetcher.calls == ["cd1c1d"]

    def test_failed_acquisition_leaves_region_unfilled(self, tile_2x2: np.ndarray) -> None:
        quantized = solid(4, 6, RED)
        quantized[:, 3:] = GREEN
        fetcher = FakeFetcher({RED_ANCHOR: tile_2x2})
        lib = SampleLibrary(fetcher)
        result = run(synthesize(quantized, lib, RegionMatcher([RED_ANCHOR, GREEN_ANCHOR])))

        assert result.filled[:, :3].all()
        assert not result.filled[:, 3:].any()
        assert result.failures == [
            (GREEN_ANCHOR, str(SampleAcquisitionFailed(GREEN_ANCHOR, lib.failures[GREEN_ANCHOR]))),
        ]
        # Every pixel of the failed region asked again, but only one fetch happened
        assert fetcher.calls.count("16c619") == 1

    def test_one_fetch_for_disjoint_regions_of_one_anchor(self, tile_2x2: np.ndarray) -> None:
        quantized = solid(3, 7, RED)
        quantized[:, 3] = GREEN
        fetcher = FakeFetcher({RED_ANCHOR: tile_2x2, GREEN_ANCHOR: tile_2x2})
        lib = SampleLibrary(fetcher)
        result = run(synthesize(quantized, lib, RegionMatcher([RED_ANCHOR, GREEN_ANCHOR])))

        assert result.complete
        assert result.regions == 3
        assert fetcher.calls == ["cd1c1d", "16c619"]

    def test_tiling_anchored_at_image_origin(self) -> None:
        tile = np.arange(27, dtype=np.uint8).reshape(3, 3, 3)
        quantized = solid(6, 7, RED)
        quantized[:, 3] = GREEN
        lib = SampleLibrary(FakeFetcher({RED_ANCHOR: tile}))
        result = run(synthesize(quantized, lib, RegionMatcher([RED_ANCHOR], max_distance=10)))

        for y, x in zip(*np.nonzero(result.filled), strict=True):
            np.testing.assert_array_equal(result.image[y, x], tile[y % 3, x % 3])

    def test_black_source_pixels_are_filled(self, tile_2x2: np.ndarray) -> None:
        quantized = solid(3, 3, (0, 0, 0))
        lib = SampleLibrary(FakeFetcher({(0, 0, 0): tile_2x2}))
        result = run(synthesize(quantized, lib, RegionMatcher([(0, 0, 0)])))
        assert result.complete

    def test_legacy_edges_split_regions(self, tile_2x2: np.ndarray) -> None:
        quantized = solid(4, 4, RED)
        quantized[0, 0] = GREEN
        lib = SampleLibrary(FakeFetcher({RED_ANCHOR: tile_2x2, GREEN_ANCHOR: tile_2x2}))
        matcher = RegionMatcher([RED_ANCHOR, GREEN_ANCHOR])

        modern = run(synthesize(quantized, lib, matcher))
        legacy = run(synthesize(quantized, lib, matcher, skip_edge_neighbors=True))
        assert modern.regions == 2
        assert legacy.regions == 3
        assert modern.complete and legacy.complete
        np.testing.assert_array_equal(modern.image, legacy.image)

    def test_defaults_to_resident_anchors(self, tile_2x2: np.ndarray) -> None:
        fetcher = FakeFetcher({})
        lib = SampleLibrary(fetcher, [ColorSample(RED_ANCHOR, tile_2x2)])
        result = run(synthesize(solid(2, 2, RED), lib))
        assert result.complete
        assert fetcher.calls == []

    def test_empty_library_leaves_everything_unfilled(self) -> None:
        result = run(synthesize(solid(2, 3, RED), SampleLibrary(FakeFetcher({}))))
        assert result.unfilled_count == 6
        assert result.regions == 0
        assert len(result.failures) == 1

    def test_flatten(self, tile_2x2: np.ndarray) -> None:
        quantized = solid(2, 4, RED)
        quantized[:, 2:] = GREEN
        lib = SampleLibrary(FakeFetcher({RED_ANCHOR: tile_2x2}))
        result = run(synthesize(quantized, lib, RegionMatcher([RED_ANCHOR], max_distance=10)))
        flat = result.flatten((1, 2, 3))
        np.testing.assert_array_equal(flat[:, :2], tile_2x2)
        assert (flat[:, 2:] == (1, 2, 3)).all()

    @pytest.mark.parametrize("shape", [(0, 4, 3), (4, 0, 3), (4, 4), (4, 4, 4)])
    def test_invalid_dimensions(self, shape: tuple[int, ...]) -> None:
        fetcher = FakeFetcher({})
        lib = SampleLibrary(fetcher)
        with pytest.raises(InvalidImageDimensions):
            run(synthesize(np.zeros(shape, dtype=np.uint8), lib, RegionMatcher([RED_ANCHOR])))
        assert fetcher.calls == []

    def test_cancellation_cancels_acquisitions(self) -> None:
        async def go():
            fetcher = BlockingFetcher()
            lib = SampleLibrary(fetcher)
            task = asyncio.create_task(
                synthesize(solid(2, 2, RED), lib, RegionMatcher([RED_ANCHOR])),
            )
            for _ in range(3):
                await asyncio.sleep(0)
            assert fetcher.calls == ["cd1c1d"]
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            return lib

        lib = run(go())
        assert lib.pending == 0
