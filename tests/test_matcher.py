from __future__ import annotations

import logging
import threading

import numpy as np
import pytest

from color_spaces import ciede2000, rgb_to_lab
from converter import EmptyPaletteError, PaletteMatcher, quantize_key
from converter import matcher as converter_matcher
from palette import DEFAULT_PALETTE_ID, BeadPalette

from conftest import make_palette


def test_quantize_key_layout():
    assert quantize_key(0, 0, 0) == 0
    assert quantize_key(255, 255, 255) == (1 << 18) - 1
    assert quantize_key(4, 0, 0) == 1 << 12
    assert quantize_key(0, 4, 0) == 1 << 6
    assert quantize_key(0, 0, 7) == 1
    # 4 raw values per channel share one key
    assert quantize_key(8, 9, 10) == quantize_key(11, 11, 11)


def test_nearest_is_deterministic(white_red_palette):
    matcher = PaletteMatcher(white_red_palette)
    first = matcher.nearest((250, 10, 10))
    assert first == 1
    assert matcher.nearest((250, 10, 10)) == first
    assert matcher.nearest((240, 240, 240)) == 0


def test_first_query_activates_default_palette():
    matcher = PaletteMatcher()
    assert matcher.generation == 0
    index = matcher.nearest((0, 0, 0))
    assert matcher.generation == 1
    palette = matcher.active_palette()
    assert palette.id == DEFAULT_PALETTE_ID
    assert palette.built_in
    assert matcher.color_at(index).rgb == (0, 0, 0)


def test_color_at_out_of_range_is_none(white_red_palette):
    matcher = PaletteMatcher(white_red_palette)
    assert matcher.color_at(0).rgb == (255, 255, 255)
    assert matcher.color_at(2) is None
    assert matcher.color_at(-1) is None


def test_swap_does_not_reuse_stale_cache():
    palette_a = make_palette([(255, 255, 255), (0, 0, 0), (255, 0, 0)], palette_id="a")
    palette_b = make_palette([(0, 0, 255), (0, 128, 0), (255, 255, 255)], palette_id="b")
    matcher = PaletteMatcher(palette_a)
    assert matcher.nearest((255, 0, 0)) == 2
    assert matcher.cache_size == 1

    matcher.activate(palette_b)
    assert matcher.cache_size == 0
    assert matcher.active_palette() is palette_b
    index = matcher.nearest((255, 0, 0))
    expected = int(np.argmin(ciede2000(rgb_to_lab(np.array([255, 0, 0])), palette_b.lab_array)))
    assert index == expected
    assert matcher.palette_tag == palette_b.tag
    assert matcher.generation == 2


def test_nearest_many_agrees_with_nearest(rng):
    palette = make_palette(rng.integers(0, 256, size=(40, 3)), palette_id="random")
    pixels = rng.integers(0, 256, size=(300, 3))
    batch = PaletteMatcher(palette).nearest_many(pixels)
    single = PaletteMatcher(palette)
    assert batch.dtype == np.int32
    assert batch.shape == (300,)
    # same pixel order, so both matchers fill their caches from the same first pixels
    assert batch.tolist() == [single.nearest(px) for px in pixels]


def test_nearest_many_empty_input(white_red_palette):
    result = PaletteMatcher(white_red_palette).nearest_many(np.zeros((0, 3)))
    assert result.shape == (0,)


def test_nearest_clamps_out_of_range_input(white_red_palette):
    matcher = PaletteMatcher(white_red_palette)
    assert matcher.nearest((400, -30, -1)) == matcher.nearest((255, 0, 0))


def test_empty_palette_raises():
    matcher = PaletteMatcher(BeadPalette("empty", "empty", []))
    with pytest.raises(EmptyPaletteError):
        matcher.nearest((10, 20, 30))
    with pytest.raises(EmptyPaletteError):
        matcher.nearest_many(np.array([[10, 20, 30]]))
    assert matcher.color_at(0) is None


def test_clear_cache(white_red_palette):
    matcher = PaletteMatcher(white_red_palette)
    matcher.nearest((1, 2, 3))
    assert matcher.cache_size == 1
    matcher.clear_cache()
    assert matcher.cache_size == 0


def test_independent_matchers_do_not_share_state(white_red_palette):
    other = make_palette([(0, 0, 0)], palette_id="black")
    m1 = PaletteMatcher(white_red_palette)
    m2 = PaletteMatcher(other)
    assert m1.nearest((255, 0, 0)) == 1
    assert m2.nearest((255, 0, 0)) == 0
    assert m1.active_palette().id == "white-red"


def test_concurrent_swaps_always_yield_valid_indices():
    small = make_palette([(0, 0, 0), (255, 255, 255)], palette_id="small")
    large = make_palette([(i * 8, 255 - i * 8, (i * 37) % 256) for i in range(32)], palette_id="large")
    matcher = PaletteMatcher(small)
    errors = []

    def _swapper():
        for i in range(50):
            matcher.activate(large if i % 2 == 0 else small)

    def _query():
        for value in range(0, 256, 3):
            index = matcher.nearest((value, value, 255 - value))
            if not 0 <= index < 32:
                errors.append(index)

    threads = [threading.Thread(target=_swapper), threading.Thread(target=_query)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert errors == []


def test_match_cells_returns_the_palette_it_matched_against(monkeypatch, white_red_palette):
    swapped = make_palette([(255, 0, 0), (255, 255, 255)], palette_id="white-red", revision=1)
    matcher = PaletteMatcher(white_red_palette)
    original_lab = converter_matcher.rgb_to_lab
    calls = []

    def swap_mid_match(rgb):
        # another thread activating a palette while this batch is resolved
        if not calls:
            matcher.activate(swapped)
        calls.append(1)
        return original_lab(rgb)

    monkeypatch.setattr(converter_matcher, "rgb_to_lab", swap_mid_match)
    indices, palette = matcher.match_cells(np.array([[255, 0, 0], [255, 255, 255]]))
    assert palette is white_red_palette
    assert indices.tolist() == [1, 0]
    assert matcher.active_palette() is swapped


def test_match_cells_empty_input(white_red_palette):
    indices, palette = PaletteMatcher(white_red_palette).match_cells(np.zeros((0, 3)))
    assert indices.size == 0
    assert palette is white_red_palette


def test_activate_logs_its_own_generation(caplog, white_red_palette):
    matcher = PaletteMatcher()
    with caplog.at_level(logging.DEBUG, logger="converter.matcher"):
        matcher.activate(white_red_palette)
        matcher.activate(white_red_palette)
    messages = [r.getMessage() for r in caplog.records if "activated" in r.getMessage()]
    assert [m.rsplit(" ", 1)[-1] for m in messages] == ["1", "2"]
