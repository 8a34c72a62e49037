"""パレット照合器: 有効パレット・k-d木・量子化キャッシュの3点セットを保持する。"""

from __future__ import annotations

from typing import Callable, Dict, Optional, Sequence, Tuple
import logging
import threading

import numpy as np

from color_spaces import rgb_to_lab
from palette import BeadColor, BeadPalette, PaletteTag, default_palette
from .errors import EmptyPaletteError
from .kd_tree import LabKDTree

_logger = logging.getLogger(__name__)

QUANT_SHIFT = 2  # 8bit -> 6bit/チャンネル
QUANT_BITS = 8 - QUANT_SHIFT
CACHE_KEY_SPACE = 1 << (QUANT_BITS * 3)  # 262144


def quantize_key(r: int, g: int, b: int) -> int:
    """RGBを 6bit/チャンネルのキャッシュキーへ畳み込む。"""
    return ((r >> QUANT_SHIFT) << (QUANT_BITS * 2)) | ((g >> QUANT_SHIFT) << QUANT_BITS) | (b >> QUANT_SHIFT)


def _quantize_keys(rgb: np.ndarray) -> np.ndarray:
    arr = rgb.astype(np.int32)
    return (
        ((arr[:, 0] >> QUANT_SHIFT) << (QUANT_BITS * 2))
        | ((arr[:, 1] >> QUANT_SHIFT) << QUANT_BITS)
        | (arr[:, 2] >> QUANT_SHIFT)
    )


def _clamp_rgb(rgb: np.ndarray) -> np.ndarray:
    """四捨五入して0-255に収めた整数RGBを返す。"""
    return np.clip(np.floor(np.asarray(rgb, dtype=np.float64) + 0.5), 0, 255).astype(np.int32)


class _MatcherState:
    """activate 1回分の不変なスナップショット。キャッシュだけは追記される。"""

    __slots__ = ("palette", "tree", "cache", "generation")

    def __init__(self, palette: BeadPalette, tree: LabKDTree, generation: int) -> None:
        self.palette = palette
        self.tree = tree
        self.cache: Dict[int, int] = {}
        self.generation = generation


class PaletteMatcher:
    """RGB -> パレット番号の最近傍照合を行う。

    有効パレット・k-d木・キャッシュは activate() でまとめて作り直し、ロック下で
    一括して差し替える。照合中に半端な状態が見えることはない。
    プロセス全体で共有する想定はなく、呼び出し側が必要な数だけ生成する。
    """

    def __init__(
        self,
        palette: Optional[BeadPalette] = None,
        exact: bool = True,
        default_factory: Callable[[], BeadPalette] = default_palette,
    ) -> None:
        self._lock = threading.RLock()
        self._exact = exact
        self._default_factory = default_factory
        self._generation = 0
        self._state: Optional[_MatcherState] = None
        if palette is not None:
            self.activate(palette)

    # --- パレット切替 ---
    def activate(self, palette: BeadPalette) -> None:
        """有効パレットを差し替え、k-d木を再構築しキャッシュを空にする。"""
        tree = LabKDTree.from_array(palette.lab_array, exact=self._exact)
        with self._lock:
            self._generation += 1
            generation = self._generation
            self._state = _MatcherState(palette, tree, generation)
        _logger.debug(
            "palette %s (rev %d) activated: %d colors, generation %d",
            palette.id,
            palette.revision,
            len(palette),
            generation,
        )

    def _ensure_state(self) -> _MatcherState:
        # 呼び出し元でロック取得済みであること
        if self._state is None:
            _logger.debug("no palette activated yet; falling back to the default palette")
            self.activate(self._default_factory())
        assert self._state is not None
        return self._state

    def clear_cache(self) -> None:
        with self._lock:
            if self._state is not None:
                self._state.cache.clear()

    # --- 参照 ---
    @property
    def generation(self) -> int:
        """activate() のたびに増える世代番号。"""
        with self._lock:
            return self._generation

    @property
    def palette_tag(self) -> PaletteTag:
        with self._lock:
            return self._ensure_state().palette.tag

    @property
    def cache_size(self) -> int:
        with self._lock:
            return len(self._state.cache) if self._state is not None else 0

    def active_palette(self) -> BeadPalette:
        with self._lock:
            return self._ensure_state().palette

    def color_at(self, index: int) -> Optional[BeadColor]:
        """番号に対応するパレット色。範囲外（負数を含む）は None。"""
        with self._lock:
            return self._ensure_state().palette.get(int(index))

    # --- 照合 ---
    def nearest(self, rgb: Sequence[float]) -> int:
        """1色ぶんの最近傍パレット番号を返す。"""
        r, g, b = (int(v) for v in _clamp_rgb(np.asarray(rgb).reshape(3)))
        key = quantize_key(r, g, b)
        with self._lock:
            state = self._ensure_state()
            if len(state.palette) == 0:
                raise EmptyPaletteError(f"パレット {state.palette.id} に色がありません。")
            cached = state.cache.get(key)
            if cached is not None:
                return cached
            index, _ = state.tree.nearest(rgb_to_lab(np.array([r, g, b], dtype=np.float64)))
            state.cache[key] = index
            return index

    def nearest_many(self, rgb: np.ndarray) -> np.ndarray:
        """(N, 3) のRGB配列をまとめて照合し、int32 の番号配列を返す。

        同じ量子化キーは1回だけ解決する。
        """
        indices, _ = self.match_cells(rgb)
        return indices

    def match_cells(self, rgb: np.ndarray) -> Tuple[np.ndarray, BeadPalette]:
        """nearest_many と同じ照合を行い、照合に使ったパレットも一緒に返す。

        番号とパレットは同じスナップショットから取るので、途中で activate
        されても食い違わない。
        """
        flat = _clamp_rgb(np.asarray(rgb).reshape(-1, 3))
        if len(flat) == 0:
            return np.zeros(0, dtype=np.int32), self.active_palette()
        keys = _quantize_keys(flat)
        unique_keys, first_pos, inverse = np.unique(keys, return_index=True, return_inverse=True)
        resolved = np.empty(len(unique_keys), dtype=np.int32)
        misses = 0
        with self._lock:
            state = self._ensure_state()
            if len(state.palette) == 0:
                raise EmptyPaletteError(f"パレット {state.palette.id} に色がありません。")
            cache = state.cache
            miss_slots = []
            for slot, key in enumerate(unique_keys.tolist()):
                cached = cache.get(key)
                if cached is None:
                    miss_slots.append(slot)
                else:
                    resolved[slot] = cached
            if miss_slots:
                # キャッシュキーを最初に生んだ画素の値で解決する（単発照合と同じ規則）
                miss_rgb = flat[first_pos[miss_slots]]
                miss_lab = rgb_to_lab(miss_rgb)
                for slot, lab in zip(miss_slots, miss_lab):
                    index, _ = state.tree.nearest(lab)
                    cache[int(unique_keys[slot])] = index
                    resolved[slot] = index
                misses = len(miss_slots)
            palette = state.palette
        _logger.debug("matched %d pixels (%d unique keys, %d cache misses)", len(flat), len(unique_keys), misses)
        return resolved[inverse.reshape(-1)], palette
