"""Bead palette model: colors, built-in palettes, import validation and registry."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Mapping, NamedTuple, Optional, Sequence, Tuple
import csv
import io
import itertools
import json
import logging
import re
import time
import uuid

import numpy as np

from color_spaces import Lab, to_lab

_logger = logging.getLogger(__name__)

RGB = Tuple[int, int, int]
DEFAULT_PALETTE_ID = "basic-48"
LARGE_PALETTE_WARNING = 500
_HEX_RE = re.compile(r"^#?([0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")


class PaletteFormatError(ValueError):
    """Raised when palette import text cannot be parsed."""


class PaletteTag(NamedTuple):
    """Identity of an exact palette content: id plus revision."""

    id: str
    revision: int


def parse_hex(text: str) -> Optional[RGB]:
    """'#RRGGBB', 'RRGGBB' or shorthand '#RGB' -> (r, g, b); None when malformed."""
    match = _HEX_RE.match(text.strip())
    if not match:
        return None
    digits = match.group(1)
    if len(digits) == 3:
        digits = "".join(ch * 2 for ch in digits)
    return tuple(int(digits[i : i + 2], 16) for i in (0, 2, 4))  # type: ignore[return-value]


def rgb_to_hex(rgb: Sequence[int]) -> str:
    return "#{:02X}{:02X}{:02X}".format(*(int(c) for c in rgb))


@dataclass(frozen=True)
class BeadColor:
    """One physical bead color. Lab is derived once at construction."""

    id: str
    name: str
    rgb: RGB
    category: Optional[str] = None
    lab: Lab = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        rgb = tuple(int(c) for c in self.rgb)
        if len(rgb) != 3 or any(c < 0 or c > 255 for c in rgb):
            raise ValueError(f"RGB values must be between 0 and 255: {self.rgb!r}")
        object.__setattr__(self, "rgb", rgb)
        object.__setattr__(self, "lab", to_lab(rgb))

    @classmethod
    def from_hex(cls, id: str, name: str, hex: str, category: Optional[str] = None) -> "BeadColor":
        rgb = parse_hex(hex)
        if rgb is None:
            raise ValueError(f"Invalid hex color {hex!r}")
        return cls(id=id, name=name, rgb=rgb, category=category)

    @property
    def hex(self) -> str:
        return rgb_to_hex(self.rgb)


class BeadPalette:
    """Ordered, immutable list of bead colors; list position is the color index."""

    def __init__(
        self,
        id: str,
        name: str,
        colors: Iterable[BeadColor],
        brand: str = "",
        description: Optional[str] = None,
        built_in: bool = False,
        revision: int = 0,
        created_at: Optional[float] = None,
    ) -> None:
        self._id = id
        self._name = name
        self._brand = brand
        self._description = description
        self._built_in = built_in
        self._revision = int(revision)
        self._created_at = created_at
        self._colors: Tuple[BeadColor, ...] = tuple(colors)
        seen: set[str] = set()
        for color in self._colors:
            if color.id in seen:
                raise ValueError(f"Duplicate color ID {color.id!r} in palette {id!r}")
            seen.add(color.id)
        rgb = np.array([c.rgb for c in self._colors], dtype=np.float32).reshape(-1, 3)
        lab = np.array([c.lab for c in self._colors], dtype=np.float64).reshape(-1, 3)
        rgb.setflags(write=False)
        lab.setflags(write=False)
        self._rgb_array = rgb
        self._lab_array = lab

    @property
    def id(self) -> str:
        return self._id

    @property
    def name(self) -> str:
        return self._name

    @property
    def brand(self) -> str:
        return self._brand

    @property
    def description(self) -> Optional[str]:
        return self._description

    @property
    def built_in(self) -> bool:
        return self._built_in

    @property
    def revision(self) -> int:
        return self._revision

    @property
    def created_at(self) -> Optional[float]:
        return self._created_at

    @property
    def colors(self) -> Tuple[BeadColor, ...]:
        return self._colors

    @property
    def rgb_array(self) -> np.ndarray:
        """(N, 3) float32, read-only."""
        return self._rgb_array

    @property
    def lab_array(self) -> np.ndarray:
        """(N, 3) float64, read-only."""
        return self._lab_array

    @property
    def tag(self) -> PaletteTag:
        return PaletteTag(self._id, self._revision)

    def get(self, index: int) -> Optional[BeadColor]:
        """Color at index, or None when out of range (negative indices included)."""
        if 0 <= index < len(self._colors):
            return self._colors[index]
        return None

    def index_of(self, color_id: str) -> int:
        for idx, color in enumerate(self._colors):
            if color.id == color_id:
                return idx
        return -1

    def with_revision(self, revision: int) -> "BeadPalette":
        return BeadPalette(
            self._id,
            self._name,
            self._colors,
            brand=self._brand,
            description=self._description,
            built_in=self._built_in,
            revision=revision,
            created_at=self._created_at,
        )

    def __len__(self) -> int:
        return len(self._colors)

    def __iter__(self) -> Iterator[BeadColor]:
        return iter(self._colors)

    def __getitem__(self, index: int) -> BeadColor:
        return self._colors[index]

    def __repr__(self) -> str:
        return f"BeadPalette(id={self._id!r}, colors={len(self._colors)}, revision={self._revision})"


# --- built-in palette ---
# Generic 5mm bead shades; ids follow the usual letter+number labelling.
_BASIC_COLORS: Tuple[Tuple[str, str, str], ...] = (
    ("B01", "White", "#FFFFFF"),
    ("B02", "Cream", "#F3EBCB"),
    ("B03", "Light Grey", "#C8C8C8"),
    ("B04", "Grey", "#8C8C8C"),
    ("B05", "Dark Grey", "#505050"),
    ("B06", "Black", "#000000"),
    ("B07", "Light Pink", "#F7C6D4"),
    ("B08", "Pink", "#EE82A9"),
    ("B09", "Hot Pink", "#E0307A"),
    ("B10", "Red", "#D11A2A"),
    ("B11", "Dark Red", "#8E1B25"),
    ("B12", "Burgundy", "#5C1A2B"),
    ("B13", "Salmon", "#F2937A"),
    ("B14", "Light Orange", "#F9B45B"),
    ("B15", "Orange", "#F07C19"),
    ("B16", "Rust", "#B4501E"),
    ("B17", "Pastel Yellow", "#FBEE98"),
    ("B18", "Yellow", "#F9D71C"),
    ("B19", "Cheddar", "#F3AE1B"),
    ("B20", "Mustard", "#C9A227"),
    ("B21", "Peach", "#F6CBA3"),
    ("B22", "Tan", "#D1A36F"),
    ("B23", "Light Brown", "#A26A3C"),
    ("B24", "Brown", "#6B4226"),
    ("B25", "Dark Brown", "#3E2716"),
    ("B26", "Pastel Green", "#B9E3A5"),
    ("B27", "Lime", "#8CC63F"),
    ("B28", "Green", "#2E9E45"),
    ("B29", "Dark Green", "#1D5E32"),
    ("B30", "Olive", "#6B7A2A"),
    ("B31", "Mint", "#8FD9C4"),
    ("B32", "Teal", "#128C86"),
    ("B33", "Pastel Blue", "#B3D7F2"),
    ("B34", "Light Blue", "#6EB6E8"),
    ("B35", "Turquoise", "#1FA8D0"),
    ("B36", "Blue", "#1F5BB8"),
    ("B37", "Dark Blue", "#1C2F6E"),
    ("B38", "Navy", "#141B3C"),
    ("B39", "Lavender", "#C9B6E4"),
    ("B40", "Light Purple", "#9B7BC8"),
    ("B41", "Purple", "#6A3D9A"),
    ("B42", "Plum", "#7A2A63"),
    ("B43", "Magenta", "#B5207F"),
    ("B44", "Skin Light", "#F4D7C0"),
    ("B45", "Skin Medium", "#DDA37F"),
    ("B46", "Skin Dark", "#8D5A3B"),
    ("B47", "Sand", "#E1CFA4"),
    ("B48", "Slate", "#5A6B7B"),
)


def _build_basic_palette() -> BeadPalette:
    colors = [BeadColor.from_hex(cid, name, hex_code) for cid, name, hex_code in _BASIC_COLORS]
    return BeadPalette(
        DEFAULT_PALETTE_ID,
        "Basic 48",
        colors,
        brand="Generic",
        description="Generic 5mm bead shades, 48 colors (B01-B48)",
        built_in=True,
    )


BUILTIN_PALETTES: Tuple[BeadPalette, ...] = (_build_basic_palette(),)


def get_builtin_palette(palette_id: str) -> Optional[BeadPalette]:
    for palette in BUILTIN_PALETTES:
        if palette.id == palette_id:
            return palette
    return None


def default_palette() -> BeadPalette:
    """Palette activated when nothing has been chosen yet."""
    palette = get_builtin_palette(DEFAULT_PALETTE_ID)
    assert palette is not None
    return palette


# --- import parsing / validation ---
@dataclass
class ValidationResult:
    valid: bool
    colors: List[BeadColor]
    errors: List[str]
    warnings: List[str]


def _coerce_channel(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    try:
        return int(str(value).strip(), 10)
    except ValueError:
        return None


def parse_palette_json(content: str) -> List[Dict[str, Any]]:
    """JSON text -> raw entries. Accepts a list or an object with 'colors'."""
    try:
        data = json.loads(content)
    except json.JSONDecodeError as exc:
        raise PaletteFormatError("Invalid JSON format: failed to parse") from exc
    colors = data if isinstance(data, list) else (data.get("colors") if isinstance(data, dict) else None)
    if not isinstance(colors, list):
        raise PaletteFormatError("Invalid JSON format: expected array or object with colors field")
    entries: List[Dict[str, Any]] = []
    for item in colors:
        if not isinstance(item, dict):
            raise PaletteFormatError("Invalid JSON format: every color must be an object")
        entries.append(
            {
                "id": str(item.get("id") or ""),
                "name": str(item.get("name") or ""),
                "hex": str(item["hex"]) if item.get("hex") else None,
                "r": item.get("r") if isinstance(item.get("r"), (int, float)) else None,
                "g": item.get("g") if isinstance(item.get("g"), (int, float)) else None,
                "b": item.get("b") if isinstance(item.get("b"), (int, float)) else None,
                "category": str(item["category"]) if item.get("category") else None,
            }
        )
    return entries


def parse_palette_csv(content: str) -> List[Dict[str, Any]]:
    """CSV text with header (id,name + hex and/or r,g,b [,category]) -> raw entries."""
    rows = [row for row in csv.reader(io.StringIO(content.strip())) if any(cell.strip() for cell in row)]
    if len(rows) < 2:
        raise PaletteFormatError("CSV must have at least a header row and one data row")
    header = [h.strip().lower() for h in rows[0]]
    if "id" not in header or "name" not in header:
        raise PaletteFormatError('CSV must have "id" and "name" columns')
    columns = {name: header.index(name) for name in ("id", "name", "hex", "r", "g", "b", "category") if name in header}

    def _cell(row: List[str], name: str) -> str:
        idx = columns.get(name)
        if idx is None or idx >= len(row):
            return ""
        return row[idx].strip()

    entries: List[Dict[str, Any]] = []
    for row in rows[1:]:
        entries.append(
            {
                "id": _cell(row, "id"),
                "name": _cell(row, "name"),
                "hex": _cell(row, "hex") or None,
                "r": _coerce_channel(_cell(row, "r")),
                "g": _coerce_channel(_cell(row, "g")),
                "b": _coerce_channel(_cell(row, "b")),
                "category": _cell(row, "category") or None,
            }
        )
    return entries


def parse_palette_text(content: str, filename: str = "") -> List[Dict[str, Any]]:
    """Pick the parser from the file extension, else sniff the content."""
    ext = filename.lower().rsplit(".", 1)[-1] if "." in filename else ""
    if ext == "json":
        return parse_palette_json(content)
    if ext == "csv":
        return parse_palette_csv(content)
    if content.lstrip().startswith(("[", "{")):
        return parse_palette_json(content)
    return parse_palette_csv(content)


def validate_entries(entries: Sequence[Mapping[str, Any]]) -> ValidationResult:
    """Normalize raw entries to BeadColor, collecting per-row errors."""
    errors: List[str] = []
    warnings: List[str] = []
    colors: List[BeadColor] = []
    seen_ids: set[str] = set()

    for row_num, entry in enumerate(entries, start=1):
        color_id = str(entry.get("id") or "").strip()
        name = str(entry.get("name") or "").strip()
        if not color_id:
            errors.append(f'Row {row_num}: Missing required field "id"')
            continue
        if not name:
            errors.append(f'Row {row_num}: Missing required field "name"')
            continue
        if color_id in seen_ids:
            errors.append(f'Row {row_num}: Duplicate color ID "{color_id}"')
            continue
        seen_ids.add(color_id)

        hex_value = entry.get("hex")
        channels = [_coerce_channel(entry.get(key)) for key in ("r", "g", "b")]
        if hex_value:
            rgb = parse_hex(str(hex_value))
            if rgb is None:
                errors.append(f'Row {row_num}: Invalid hex color "{hex_value}"')
                continue
        elif all(c is not None for c in channels):
            if any(c < 0 or c > 255 for c in channels):  # type: ignore[operator]
                errors.append(f"Row {row_num}: RGB values must be between 0 and 255")
                continue
            rgb = tuple(channels)  # type: ignore[assignment]
        else:
            errors.append(f'Row {row_num}: Must provide either "hex" or "r,g,b" values')
            continue
        category = entry.get("category") or None
        colors.append(BeadColor(id=color_id, name=name, rgb=rgb, category=category))

    if not colors and not errors:
        errors.append("No valid colors found")
    if len(colors) > LARGE_PALETTE_WARNING:
        warnings.append(f"Large palette with {len(colors)} colors may affect performance")
    for message in warnings:
        _logger.warning("palette import: %s", message)
    return ValidationResult(valid=not errors and bool(colors), colors=colors, errors=errors, warnings=warnings)


def create_custom_palette(
    colors: Iterable[BeadColor], name: str, brand: str, description: Optional[str] = None
) -> BeadPalette:
    """User palette with a freshly generated id."""
    palette_id = f"custom-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"
    return BeadPalette(
        palette_id,
        name,
        colors,
        brand=brand,
        description=description,
        built_in=False,
        created_at=time.time(),
    )


class PaletteRegistry:
    """Built-in palettes plus user palettes held in memory.

    Re-adding a user palette under an id seen before, even one removed since,
    bumps its revision so patterns made with the old contents can be told apart.
    """

    def __init__(self, builtin: Iterable[BeadPalette] = BUILTIN_PALETTES) -> None:
        self._builtin: Dict[str, BeadPalette] = {p.id: p for p in builtin}
        self._custom: Dict[str, BeadPalette] = {}
        # highest revision issued per id, kept across remove_custom
        self._revisions: Dict[str, int] = {}

    def builtin(self) -> List[BeadPalette]:
        return list(self._builtin.values())

    def custom(self) -> List[BeadPalette]:
        return list(self._custom.values())

    def all(self) -> List[BeadPalette]:
        return list(itertools.chain(self._builtin.values(), self._custom.values()))

    def get(self, palette_id: str) -> Optional[BeadPalette]:
        palette = self._builtin.get(palette_id)
        if palette is None:
            palette = self._custom.get(palette_id)
        return palette

    def get_or_default(self, palette_id: str) -> BeadPalette:
        palette = self.get(palette_id)
        if palette is None:
            palette = self._builtin.get(DEFAULT_PALETTE_ID)
        return palette if palette is not None else default_palette()

    def add_custom(self, palette: BeadPalette) -> BeadPalette:
        """Register (or replace) a user palette and return the stored instance."""
        if palette.id in self._builtin:
            raise ValueError(f"Cannot overwrite built-in palette {palette.id!r}")
        if palette.built_in:
            raise ValueError(f"Palette {palette.id!r} is flagged built-in and cannot be added as a user palette")
        mark = self._revisions.get(palette.id)
        if mark is not None:
            palette = palette.with_revision(max(mark, palette.revision) + 1)
        self._revisions[palette.id] = palette.revision
        self._custom[palette.id] = palette
        _logger.debug("custom palette %s stored (revision %d)", palette.id, palette.revision)
        return palette

    def remove_custom(self, palette_id: str) -> bool:
        if palette_id in self._builtin:
            return False
        return self._custom.pop(palette_id, None) is not None
