from __future__ import annotations

import numpy as np
import pytest

from palette import BeadColor, BeadPalette


def make_palette(rgbs, palette_id="test", revision=0):
    colors = [BeadColor(id=f"T{idx:03d}", name=f"color {idx}", rgb=tuple(int(c) for c in rgb)) for idx, rgb in enumerate(rgbs)]
    return BeadPalette(palette_id, palette_id, colors, revision=revision)


@pytest.fixture
def white_red_palette() -> BeadPalette:
    return make_palette([(255, 255, 255), (255, 0, 0)], palette_id="white-red")


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(20240601)
