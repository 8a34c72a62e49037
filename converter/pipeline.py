"""変換パイプライン（縮小 + パレット写像 + 背景除去）。"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, List, Mapping, Optional, Tuple
import logging

import numpy as np

from palette import BeadColor, BeadPalette, PaletteTag
from .background import EMPTY, STRATEGIES, remove_background
from .block_methods import PLACEMENTS, downsample
from .errors import StalePatternError
from .io_utils import _as_rgba_array, _check_size
from .matcher import PaletteMatcher

_logger = logging.getLogger(__name__)

ProgressCb = Callable[[float], None]
Size = Tuple[int, int]


def _report(progress_callback: ProgressCb | None, value: float) -> None:
    if progress_callback:
        progress_callback(value)


@dataclass(eq=False)
class Pattern:
    """ビーズ図案。grid[row, col] は palette_tag のパレットの番号（-1 は空）。"""

    width: int
    height: int
    grid: np.ndarray
    palette_tag: PaletteTag

    def ensure_palette(self, palette: BeadPalette) -> None:
        """作成時と同じパレットでなければ StalePatternError。"""
        if palette.tag != self.palette_tag:
            _logger.warning("stale pattern: made with %s, asked to use %s", self.palette_tag, palette.tag)
            raise StalePatternError(self.palette_tag, palette.tag)

    def color_at(self, row: int, col: int, palette: BeadPalette) -> Optional[BeadColor]:
        """セルの色。空セルやパレット範囲外の番号は None として扱う。"""
        self.ensure_palette(palette)
        index = int(self.grid[row, col])
        if index >= len(palette):
            # 呼び出し側のバグ。落とさず空として扱う
            _logger.warning("cell (%d, %d) holds index %d outside palette %s", row, col, index, palette.id)
        return palette.get(index)

    def with_grid(self, grid: np.ndarray) -> "Pattern":
        return Pattern(self.width, self.height, np.asarray(grid, dtype=np.int32), self.palette_tag)

    def without_background(self, strategy: str = "edge") -> "Pattern":
        return self.with_grid(remove_background(self.grid, self.width, self.height, strategy=strategy))


@dataclass(frozen=True)
class BeadCount:
    """色ごとの使用数。"""

    color_index: int
    color: BeadColor
    count: int


def count_beads(pattern: Pattern, palette: BeadPalette) -> List[BeadCount]:
    """色ごとの使用ビーズ数を多い順に返す。範囲外の番号は空扱いで数えない。"""
    pattern.ensure_palette(palette)
    flat = pattern.grid.reshape(-1)
    valid = flat[(flat >= 0) & (flat < len(palette))]
    if valid.size == 0:
        return []
    counts = np.bincount(valid, minlength=len(palette))
    used = np.flatnonzero(counts)
    # 同数は番号順
    order = sorted(used.tolist(), key=lambda idx: (-int(counts[idx]), idx))
    return [BeadCount(color_index=idx, color=palette[idx], count=int(counts[idx])) for idx in order]


@dataclass(frozen=True)
class ConversionRequest:
    """変換パラメータ一式（設定の保存・復元に使う）。"""

    width: int
    height: int
    placement: str = "stretch"
    remove_background: bool = False
    background_strategy: str = "edge"

    def __post_init__(self) -> None:
        _check_size(self.width, self.height, "出力グリッド")
        if self.placement not in PLACEMENTS:
            raise ValueError(f"配置モード {self.placement!r} は未対応です。")
        if self.background_strategy not in STRATEGIES:
            raise ValueError(f"背景除去の方式 {self.background_strategy!r} は未対応です。")

    @classmethod
    def from_settings(cls, settings: Mapping[str, Any]) -> "ConversionRequest":
        """保存済み設定dictから生成する。未知のキーは無視する。"""
        try:
            width = int(settings["width"])
            height = int(settings["height"])
        except KeyError as exc:
            raise ValueError(f"設定に {exc.args[0]!r} がありません。") from exc
        except (TypeError, ValueError) as exc:
            raise ValueError("幅・高さは整数で指定してください。") from exc
        remove_bg = settings.get("remove_background", False)
        if isinstance(remove_bg, str):
            remove_bg = remove_bg.strip().lower() in {"1", "true", "yes", "on"}
        return cls(
            width=width,
            height=height,
            placement=str(settings.get("placement", "stretch")).lower(),
            remove_background=bool(remove_bg),
            background_strategy=str(settings.get("background_strategy", "edge")).lower(),
        )

    def to_settings(self) -> dict:
        return {
            "width": self.width,
            "height": self.height,
            "placement": self.placement,
            "remove_background": self.remove_background,
            "background_strategy": self.background_strategy,
        }


@dataclass(frozen=True)
class _PipelineConfig:
    """変換に共通する設定値をまとめて扱う内部用データクラス。"""

    target_size: Size
    placement: str
    remove_background: bool
    background_strategy: str
    progress_callback: ProgressCb | None = field(default=None, compare=False)


def _run_pipeline(rgba: np.ndarray, config: _PipelineConfig, matcher: PaletteMatcher) -> Pattern:
    target_w, target_h = config.target_size
    src_h, src_w = rgba.shape[:2]
    _report(config.progress_callback, 0.0)
    cells = downsample(rgba, src_w, src_h, target_w, target_h, placement=config.placement)
    _report(config.progress_callback, 0.4)

    # 番号とタグは照合に使ったスナップショットから取る
    grid = np.full((target_h, target_w), EMPTY, dtype=np.int32)
    opaque = cells.mask
    indices, palette = matcher.match_cells(cells.rgb[opaque])
    grid[opaque] = indices
    _report(config.progress_callback, 0.9)

    if config.remove_background:
        grid = remove_background(grid, target_w, target_h, strategy=config.background_strategy)
    _logger.debug(
        "converted %dx%d -> %dx%d (%s) with palette %s",
        src_w,
        src_h,
        target_w,
        target_h,
        config.placement,
        palette.id,
    )
    _report(config.progress_callback, 1.0)
    return Pattern(width=target_w, height=target_h, grid=grid, palette_tag=palette.tag)


def convert(
    image_pixels: Any,
    image_w: Optional[int],
    image_h: Optional[int],
    target_w: int,
    target_h: int,
    placement_mode: str = "stretch",
    matcher: Optional[PaletteMatcher] = None,
    remove_background: bool = False,
    background_strategy: str = "edge",
    progress_callback: ProgressCb | None = None,
) -> Pattern:
    """画素バッファをビーズ図案へ変換する。

    image_w/image_h は一次元バッファのときに必須、配列やPIL画像なら検証用。
    matcher を省略すると既定パレットの照合器を使い捨てで作る。
    入力不正は処理前に InvalidImageError で止め、途中結果は返さない。
    """
    target_w, target_h = _check_size(target_w, target_h, "出力グリッド")
    rgba = _as_rgba_array(image_pixels, image_w, image_h)
    if str(background_strategy).lower() not in STRATEGIES:
        raise ValueError(f"背景除去の方式 {background_strategy!r} は未対応です。")
    config = _PipelineConfig(
        target_size=(target_w, target_h),
        placement=str(placement_mode).lower(),
        remove_background=remove_background,
        background_strategy=str(background_strategy).lower(),
        progress_callback=progress_callback,
    )
    return _run_pipeline(rgba, config, matcher if matcher is not None else PaletteMatcher())


def convert_request(
    image_pixels: Any,
    request: ConversionRequest,
    matcher: Optional[PaletteMatcher] = None,
    progress_callback: ProgressCb | None = None,
) -> Pattern:
    """ConversionRequest を使って convert を呼ぶ薄いラッパー。"""
    return convert(
        image_pixels,
        None,
        None,
        request.width,
        request.height,
        placement_mode=request.placement,
        matcher=matcher,
        remove_background=request.remove_background,
        background_strategy=request.background_strategy,
        progress_callback=progress_callback,
    )
