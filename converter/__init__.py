"""Image-to-bead-pattern engine: downsample, match to a palette, remove background."""

from __future__ import annotations

from .background import EMPTY, detect_edge_backgrounds, remove_background
from .block_methods import CellGrid, downsample
from .errors import BeadConverterError, EmptyPaletteError, InvalidImageError, StalePatternError
from .kd_tree import LabKDTree
from .matcher import PaletteMatcher, quantize_key
from .pipeline import (
    BeadCount,
    ConversionRequest,
    Pattern,
    ProgressCb,
    Size,
    convert,
    convert_request,
    count_beads,
)

__all__ = [
    "EMPTY",
    "BeadConverterError",
    "BeadCount",
    "CellGrid",
    "ConversionRequest",
    "EmptyPaletteError",
    "InvalidImageError",
    "LabKDTree",
    "PaletteMatcher",
    "Pattern",
    "ProgressCb",
    "Size",
    "StalePatternError",
    "convert",
    "convert_request",
    "count_beads",
    "detect_edge_backgrounds",
    "downsample",
    "quantize_key",
    "remove_background",
]
