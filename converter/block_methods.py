"""ブロック分割による面積平均の縮小処理（アルファ考慮）。"""

from __future__ import annotations

from typing import Any, NamedTuple, Tuple

import numpy as np

from .errors import InvalidImageError
from .io_utils import _as_rgba_array, _check_size, _compute_fit_size

Size = Tuple[int, int]

ALPHA_THRESHOLD = 0.5  # ブロック平均アルファがこれ未満なら空セル
PLACEMENTS = ("stretch", "fit")


class CellGrid(NamedTuple):
    """縮小結果。mask が False のセルは透明（空）。"""

    rgb: np.ndarray  # (H, W, 3) uint8
    mask: np.ndarray  # (H, W) bool

    @property
    def width(self) -> int:
        return int(self.mask.shape[1])

    @property
    def height(self) -> int:
        return int(self.mask.shape[0])


def _block_edges(src: int, dst: int) -> np.ndarray:
    """floor(i * src / dst) を整数演算で求めたブロック境界 (dst+1 個)。"""
    return (np.arange(dst + 1, dtype=np.int64) * src) // dst


def _area_average(rgba: np.ndarray, dst_w: int, dst_h: int) -> CellGrid:
    """各ブロックをアルファ重み付きで平均する。reduceat で全ブロックを一括処理。"""
    src_h, src_w = rgba.shape[:2]
    alpha = rgba[:, :, 3].astype(np.float64) / 255.0
    weighted = np.empty((src_h, src_w, 4), dtype=np.float64)
    weighted[:, :, :3] = rgba[:, :, :3].astype(np.float64) * alpha[:, :, None]
    weighted[:, :, 3] = alpha

    x_edges = _block_edges(src_w, dst_w)
    y_edges = _block_edges(src_h, dst_h)
    x0, x1 = x_edges[:-1], x_edges[1:]
    y0, y1 = y_edges[:-1], y_edges[1:]

    # 行方向、列方向の順にブロック境界で畳み込む。始点は常に src 未満
    sums = np.add.reduceat(np.add.reduceat(weighted, y0, axis=0), x0, axis=1)
    counts = (y1 - y0)[:, None] * (x1 - x0)[None, :]

    # 縮小先の方が大きいと画素を含まないブロックが出る。左上の画素で代用する
    empty_blocks = counts == 0
    if empty_blocks.any():
        fy = np.minimum(y0, src_h - 1)
        fx = np.minimum(x0, src_w - 1)
        fallback = weighted[fy[:, None], fx[None, :]]
        sums = np.where(empty_blocks[:, :, None], fallback, sums)
        counts = np.where(empty_blocks, 1, counts)

    alpha_sum = sums[:, :, 3]
    mean_alpha = alpha_sum / counts
    mask = mean_alpha >= ALPHA_THRESHOLD
    safe_alpha = np.where(alpha_sum > 0, alpha_sum, 1.0)
    rgb = np.floor(sums[:, :, :3] / safe_alpha[:, :, None] + 0.5)
    rgb = np.clip(rgb, 0, 255).astype(np.uint8)
    rgb[~mask] = 0
    return CellGrid(rgb=rgb, mask=mask)


def downsample(
    pixels: Any,
    src_w: int,
    src_h: int,
    dst_w: int,
    dst_h: int,
    placement: str = "stretch",
) -> CellGrid:
    """画素バッファを dst_w x dst_h のセルへ面積平均で縮小する。

    placement:
    - "stretch": 縦横比を無視してグリッド全体を埋める
    - "fit": 縦横比を保って中央に配置し、余白は空セルにする
    """
    src_w, src_h = _check_size(src_w, src_h, "入力画像")
    dst_w, dst_h = _check_size(dst_w, dst_h, "出力グリッド")
    placement_lower = str(placement).lower()
    if placement_lower not in PLACEMENTS:
        raise InvalidImageError(f"配置モード {placement!r} は未対応です。{PLACEMENTS} から選んでください。")
    rgba = _as_rgba_array(pixels, src_w, src_h)

    if placement_lower == "stretch":
        return _area_average(rgba, dst_w, dst_h)

    fit_w, fit_h = _compute_fit_size((src_h, src_w), (dst_w, dst_h))
    inner = _area_average(rgba, fit_w, fit_h)
    off_x = (dst_w - fit_w) // 2
    off_y = (dst_h - fit_h) // 2
    rgb = np.zeros((dst_h, dst_w, 3), dtype=np.uint8)
    mask = np.zeros((dst_h, dst_w), dtype=bool)
    rgb[off_y : off_y + fit_h, off_x : off_x + fit_w] = inner.rgb
    mask[off_y : off_y + fit_h, off_x : off_x + fit_w] = inner.mask
    return CellGrid(rgb=rgb, mask=mask)
