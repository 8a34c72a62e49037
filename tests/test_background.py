from __future__ import annotations

import numpy as np
import pytest

from converter import EMPTY, detect_edge_backgrounds, remove_background

E = EMPTY

ASYMMETRIC = [
    [9, 4, 4, 4, 9],
    [1, 1, 4, 1, 1],
    [1, 2, 2, 2, 1],
    [9, 1, 1, 1, 9],
]


def test_corner_flood_clears_uniform_grid():
    grid = [[5] * 3 for _ in range(3)]
    result = remove_background(grid, 3, 3, strategy="corner")
    assert result.tolist() == [[E] * 3 for _ in range(3)]


def test_corner_flood_keeps_enclosed_cells():
    grid = np.array(
        [
            [7, 7, 7, 7, 7],
            [7, 0, 0, 0, 7],
            [7, 0, 7, 0, 7],
            [7, 0, 0, 0, 7],
            [7, 7, 7, 7, 7],
        ]
    )
    for strategy in ("corner", "edge"):
        result = remove_background(grid, 5, 5, strategy=strategy)
        assert (result[0] == E).all() and (result[4] == E).all()
        assert (result[:, 0] == E).all() and (result[:, 4] == E).all()
        assert result[1:4, 1:4].tolist() == [[0, 0, 0], [0, 7, 0], [0, 0, 0]]


def test_input_grid_is_not_mutated():
    grid = np.full((3, 4), 2, dtype=np.int32)
    remove_background(grid, 4, 3)
    remove_background(grid, 4, 3, strategy="corner")
    assert (grid == 2).all()


def test_edge_dominant_differs_from_corner_flood_on_asymmetric_background():
    edge = remove_background(ASYMMETRIC, 5, 4, strategy="edge")
    assert edge.tolist() == [
        [9, E, E, E, 9],
        [1, 1, E, 1, 1],
        [1, 2, 2, 2, 1],
        [9, E, E, E, 9],
    ]
    corner = remove_background(ASYMMETRIC, 5, 4, strategy="corner")
    assert corner.tolist() == [
        [E, 4, 4, 4, E],
        [1, 1, 4, 1, 1],
        [1, 2, 2, 2, 1],
        [E, 1, 1, 1, E],
    ]


def test_detect_edge_backgrounds_threshold():
    assert detect_edge_backgrounds(ASYMMETRIC) == {"top": 4, "bottom": 1}
    # 2 of 5 is below 60 %
    grid = [[3, 3, 1, 2, 4], [0, 0, 0, 0, 0]]
    assert "top" not in detect_edge_backgrounds(grid)


def test_per_edge_colors_flood_their_own_color_only():
    grid = [
        [4, 4, 4, 4, 4],
        [1, 6, 2, 4, 1],
        [1, 2, 2, 2, 1],
        [6, 6, 6, 6, 6],
    ]
    result = remove_background(grid, 5, 4)
    assert result.tolist() == [
        [E, E, E, E, E],
        [1, 6, 2, E, 1],
        [1, 2, 2, 2, 1],
        [E, E, E, E, E],
    ]


def test_edge_removal_is_idempotent(rng):
    grids = [np.array(ASYMMETRIC)]
    for _ in range(30):
        h, w = rng.integers(1, 9, size=2)
        grid = rng.choice([-1, 0, 1, 2], size=(h, w), p=[0.1, 0.6, 0.2, 0.1])
        grids.append(grid)
    for grid in grids:
        once = remove_background(grid)
        twice = remove_background(once)
        np.testing.assert_array_equal(once, twice)


def test_empty_edges_are_ignored():
    grid = [[E, E, E], [E, 3, E], [E, E, E]]
    assert remove_background(grid).tolist() == grid
    assert remove_background(grid, strategy="corner").tolist() == grid


def test_single_row_and_column():
    assert remove_background([[2, 2, 2]], 3, 1).tolist() == [[E, E, E]]
    assert remove_background([[2], [2], [3]], 1, 3, strategy="corner").tolist() == [[E], [E], [E]]


def test_bad_arguments():
    with pytest.raises(ValueError):
        remove_background([[1]], strategy="magic")
    with pytest.raises(ValueError):
        remove_background([[1, 2]], 3, 1)
    with pytest.raises(ValueError):
        remove_background([1, 2, 3])
