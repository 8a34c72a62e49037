"""Lab空間のk-d木。パレット色の最近傍探索を高速化する。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple
import math

import numpy as np

from color_spaces import ciede2000_pair
from .errors import EmptyPaletteError

LabPoint = Tuple[float, float, float]

# CIEDE2000の重み関数から得られる下限用の定数
_SL_MAX = 1 + 0.015 * 50.0 ** 2 / math.sqrt(20 + 50.0 ** 2)
_RT_MAX = 2 * math.sin(math.radians(60.0))
_CROSS_FLOOR = math.sqrt(1 - _RT_MAX / 2)
_PRIME_CHROMA_SCALE = 1.5  # a' = (1+G)a, G <= 0.5


@dataclass
class _Node:
    lab: LabPoint
    index: int
    axis: int
    left: Optional["_Node"] = None
    right: Optional["_Node"] = None


class LabKDTree:
    """パレットのLab値から一度だけ構築する静的なk-d木。

    分割軸は深さに応じて L -> a -> b を巡回し、各段で中央値を節点にする。
    追加・削除は持たず、パレットが変わったら作り直す。

    exact=True なら兄弟部分木へ降りるかどうかを CIEDE2000 の下限で判定するため、
    結果は全探索と一致する。exact=False は軸方向の差 |Δ| をそのまま下限とみなす
    ユークリッド木流の枝刈りで、近似最近傍になる。
    """

    def __init__(self, points: Iterable[Sequence[float]], exact: bool = True) -> None:
        labeled = [((float(p[0]), float(p[1]), float(p[2])), idx) for idx, p in enumerate(points)]
        self.exact = exact
        self._size = len(labeled)
        self._max_chroma = max((math.hypot(lab[1], lab[2]) for lab, _ in labeled), default=0.0)
        self._root = self._build(labeled, 0)

    @classmethod
    def from_array(cls, lab_array: np.ndarray, exact: bool = True) -> "LabKDTree":
        return cls(np.asarray(lab_array, dtype=np.float64).reshape(-1, 3).tolist(), exact=exact)

    def __len__(self) -> int:
        return self._size

    def _build(self, items: List[Tuple[LabPoint, int]], depth: int) -> Optional[_Node]:
        if not items:
            return None
        axis = depth % 3
        items = sorted(items, key=lambda item: item[0][axis])
        mid = len(items) // 2
        lab, index = items[mid]
        return _Node(
            lab=lab,
            index=index,
            axis=axis,
            left=self._build(items[:mid], depth + 1),
            right=self._build(items[mid + 1 :], depth + 1),
        )

    def _axis_scales(self, target: LabPoint) -> Tuple[float, float, float]:
        """軸方向の差に掛けると CIEDE2000 の下限になる係数を返す。"""
        if not self.exact:
            return 1.0, 1.0, 1.0
        # 色度方向は SC = 1 + 0.045*C̄' が最大の分母。C̄' は両色の C の上限から見積もる
        target_chroma = math.hypot(target[1], target[2])
        avg_cp_max = _PRIME_CHROMA_SCALE * (target_chroma + self._max_chroma) / 2.0
        chroma_scale = _CROSS_FLOOR / (1 + 0.045 * avg_cp_max)
        return 1.0 / _SL_MAX, chroma_scale, chroma_scale

    def nearest(self, target: Sequence[float]) -> Tuple[int, float]:
        """最も近いパレット色の (インデックス, CIEDE2000距離) を返す。"""
        if self._root is None:
            raise EmptyPaletteError("パレットに色がありません。")
        t: LabPoint = (float(target[0]), float(target[1]), float(target[2]))
        scales = self._axis_scales(t)
        best_index = -1
        best_dist = math.inf

        # 再帰の代わりに明示スタック。(節点, その部分木の距離下限)
        stack: List[Tuple[_Node, float]] = [(self._root, 0.0)]
        while stack:
            node, bound = stack.pop()
            if bound >= best_dist:
                continue
            dist = ciede2000_pair(t, node.lab)
            if dist < best_dist:
                best_dist = dist
                best_index = node.index
            diff = t[node.axis] - node.lab[node.axis]
            near, far = (node.left, node.right) if diff < 0 else (node.right, node.left)
            # exact時のみ下限を子孫へ引き継ぐ（近似モードは兄弟判定だけ行う）
            inherited = bound if self.exact else 0.0
            if far is not None:
                stack.append((far, max(inherited, abs(diff) * scales[node.axis])))
            if near is not None:
                stack.append((near, inherited))
        return best_index, best_dist
