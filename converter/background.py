"""完成した番号グリッドから背景を取り除く塗りつぶし（BFS）処理。"""

from __future__ import annotations

from collections import Counter, deque
from typing import Any, Deque, Dict, List, Optional, Tuple
import logging

import numpy as np

from .errors import InvalidImageError

_logger = logging.getLogger(__name__)

EMPTY = -1
EDGE_DOMINANCE_RATIO = 0.6
STRATEGIES = ("edge", "corner")
_NEIGHBORS = ((-1, 0), (1, 0), (0, -1), (0, 1))

Cell = Tuple[int, int]


def _as_index_grid(grid: Any, width: Optional[int], height: Optional[int]) -> np.ndarray:
    """入力グリッドを複製した (H, W) int32 配列にする。呼び出し元の配列は触らない。"""
    arr = np.array(grid, dtype=np.int32, copy=True)
    if arr.ndim != 2:
        raise InvalidImageError(f"番号グリッドは2次元である必要があります: {arr.shape}")
    h, w = arr.shape
    if (width is not None and int(width) != w) or (height is not None and int(height) != h):
        raise InvalidImageError(f"指定サイズ {width}x{height} とグリッド {w}x{h} が一致しません。")
    return arr


def _flood(result: np.ndarray, visited: np.ndarray, seeds: List[Tuple[Cell, int]]) -> int:
    """タグ付きシードから多始点BFS。各シードは自分の色と同じ4近傍だけを辿る。"""
    h, w = result.shape
    queue: Deque[Tuple[int, int, int]] = deque()
    for (row, col), color in seeds:
        if visited[row, col] or result[row, col] != color:
            continue
        visited[row, col] = True
        queue.append((row, col, color))

    cleared = 0
    while queue:
        row, col, color = queue.popleft()
        result[row, col] = EMPTY
        cleared += 1
        for dr, dc in _NEIGHBORS:
            nr, nc = row + dr, col + dc
            if nr < 0 or nr >= h or nc < 0 or nc >= w:
                continue
            if visited[nr, nc] or result[nr, nc] != color:
                continue
            visited[nr, nc] = True
            queue.append((nr, nc, color))
    return cleared


def _edge_cells(h: int, w: int) -> Dict[str, List[Cell]]:
    return {
        "top": [(0, c) for c in range(w)],
        "bottom": [(h - 1, c) for c in range(w)],
        "left": [(r, 0) for r in range(h)],
        "right": [(r, w - 1) for r in range(h)],
    }


def detect_edge_backgrounds(grid: Any, ratio: float = EDGE_DOMINANCE_RATIO) -> Dict[str, int]:
    """各辺の背景色を判定する。

    辺上で最も多い非空の番号が辺の長さの ratio 以上を占めれば、その番号を
    その辺の背景色とみなす。戻り値は {辺の名前: 番号}（背景なしの辺は含まない）。
    """
    arr = _as_index_grid(grid, None, None)
    h, w = arr.shape
    backgrounds: Dict[str, int] = {}
    for edge, cells in _edge_cells(h, w).items():
        counts = Counter(int(arr[r, c]) for r, c in cells if arr[r, c] >= 0)
        if not counts:
            continue
        color, count = counts.most_common(1)[0]
        # ちょうど60%も背景扱い
        if count >= ratio * len(cells) - 1e-9:
            backgrounds[edge] = color
    return backgrounds


def _remove_edge_dominant(result: np.ndarray, visited: np.ndarray) -> int:
    h, w = result.shape
    backgrounds = detect_edge_backgrounds(result)
    if not backgrounds:
        return 0
    edges = _edge_cells(h, w)
    seeds: List[Tuple[Cell, int]] = []
    for edge, color in backgrounds.items():
        seeds.extend((cell, color) for cell in edges[edge] if result[cell] == color)
    _logger.debug("edge backgrounds: %s (%d seeds)", backgrounds, len(seeds))
    return _flood(result, visited, seeds)


def _remove_corner_flood(result: np.ndarray, visited: np.ndarray) -> int:
    h, w = result.shape
    cleared = 0
    for row, col in ((0, 0), (0, w - 1), (h - 1, 0), (h - 1, w - 1)):
        color = int(result[row, col])
        # 既に空、または別の角から塗りつぶし済み
        if color < 0 or visited[row, col]:
            continue
        cleared += _flood(result, visited, [((row, col), color)])
    return cleared


def remove_background(
    grid: Any,
    width: Optional[int] = None,
    height: Optional[int] = None,
    strategy: str = "edge",
) -> np.ndarray:
    """背景と判定したセルを空 (-1) にした新しいグリッドを返す。

    strategy:
    - "edge": 辺ごとの優勢色から多始点BFS（既定。四隅を埋めない背景や
      辺ごとに色が違う背景も拾える）
    - "corner": 四隅それぞれの色で連結領域を塗りつぶす旧方式
    2つの方式は非対称な背景で結果が変わるため混ぜない。
    """
    strategy_lower = str(strategy).lower()
    if strategy_lower not in STRATEGIES:
        raise ValueError(f"背景除去の方式 {strategy!r} は未対応です。{STRATEGIES} から選んでください。")
    result = _as_index_grid(grid, width, height)
    if result.size == 0:
        return result
    visited = np.zeros(result.shape, dtype=bool)
    if strategy_lower == "edge":
        cleared = _remove_edge_dominant(result, visited)
    else:
        cleared = _remove_corner_flood(result, visited)
    _logger.debug("background removal (%s): %d cells cleared", strategy_lower, cleared)
    return result
