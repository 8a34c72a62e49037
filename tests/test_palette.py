from __future__ import annotations

import json

import pytest

from converter import EmptyPaletteError, PaletteMatcher
from palette import (
    BUILTIN_PALETTES,
    DEFAULT_PALETTE_ID,
    BeadColor,
    BeadPalette,
    PaletteFormatError,
    PaletteRegistry,
    create_custom_palette,
    default_palette,
    parse_hex,
    parse_palette_csv,
    parse_palette_json,
    parse_palette_text,
    validate_entries,
)

from conftest import make_palette


def test_bead_color_derives_lab_and_hex():
    color = BeadColor.from_hex("C01", "Red", "ff0000")
    assert color.rgb == (255, 0, 0)
    assert color.hex == "#FF0000"
    assert color.lab[0] == pytest.approx(53.24, abs=0.05)
    with pytest.raises(ValueError):
        BeadColor("X", "bad", (256, 0, 0))
    with pytest.raises(ValueError):
        BeadColor.from_hex("X", "bad", "#12345")


def test_parse_hex():
    assert parse_hex("#0a0B0c") == (10, 11, 12)
    assert parse_hex("#F00") == (255, 0, 0)
    assert parse_hex("a1c") == (170, 17, 204)
    assert parse_hex("zzzzzz") is None
    assert parse_hex("#F000") is None


def test_palette_is_ordered_and_indexed():
    palette = make_palette([(0, 0, 0), (255, 255, 255)])
    assert len(palette) == 2
    assert palette[1].rgb == (255, 255, 255)
    assert palette.get(2) is None
    assert palette.get(-1) is None
    assert palette.index_of("T001") == 1
    assert palette.rgb_array.shape == (2, 3)
    assert palette.lab_array.shape == (2, 3)
    assert not palette.lab_array.flags.writeable


def test_palette_rejects_duplicate_ids():
    color = BeadColor("A", "a", (1, 2, 3))
    with pytest.raises(ValueError):
        BeadPalette("dup", "dup", [color, color])


def test_builtin_default_palette():
    palette = default_palette()
    assert palette.id == DEFAULT_PALETTE_ID
    assert palette.built_in
    assert palette in BUILTIN_PALETTES
    assert len({c.id for c in palette}) == len(palette)


def test_parse_csv_with_hex_and_rgb_columns():
    text = "id,name,hex,r,g,b,category\nC01,White,#FFFFFF,,,,basic\nC02,\"Red, deep\",,200,10,20,\n\n"
    entries = parse_palette_csv(text)
    assert entries[0]["hex"] == "#FFFFFF"
    assert entries[0]["category"] == "basic"
    assert entries[1]["name"] == "Red, deep"
    assert (entries[1]["r"], entries[1]["g"], entries[1]["b"]) == (200, 10, 20)
    result = validate_entries(entries)
    assert result.valid
    assert [c.rgb for c in result.colors] == [(255, 255, 255), (200, 10, 20)]


@pytest.mark.parametrize("text", ["id,name\n", "code,label\nC01,White\n"])
def test_parse_csv_errors(text):
    with pytest.raises(PaletteFormatError):
        parse_palette_csv(text)


def test_parse_json_list_and_object():
    colors = [{"id": "P1", "name": "Blue", "hex": "#0000FF"}, {"id": "P2", "name": "Grey", "r": 128, "g": 128, "b": 128}]
    assert parse_palette_json(json.dumps(colors)) == parse_palette_json(json.dumps({"colors": colors}))
    result = validate_entries(parse_palette_json(json.dumps(colors)))
    assert [c.hex for c in result.colors] == ["#0000FF", "#808080"]


@pytest.mark.parametrize("text", ["{not json", '{"name": "x"}', "[1, 2]"])
def test_parse_json_errors(text):
    with pytest.raises(PaletteFormatError):
        parse_palette_json(text)


def test_parse_text_picks_format():
    json_text = '[{"id": "A", "name": "a", "hex": "#010203"}]'
    csv_text = "id,name,hex\nA,a,#010203\n"
    assert parse_palette_text(json_text) == parse_palette_text(csv_text, "colors.csv")
    assert parse_palette_text(json_text, "colors.JSON")[0]["hex"] == "#010203"


def test_validate_collects_row_errors():
    entries = [
        {"id": "", "name": "no id", "hex": "#000000"},
        {"id": "A", "name": "", "hex": "#000000"},
        {"id": "B", "name": "ok", "hex": "#000000"},
        {"id": "B", "name": "dup", "hex": "#000000"},
        {"id": "C", "name": "bad hex", "hex": "#00"},
        {"id": "D", "name": "range", "r": 10, "g": 300, "b": 0},
        {"id": "E", "name": "nothing"},
        {"id": "F", "name": "short", "hex": "#0F0"},
    ]
    result = validate_entries(entries)
    assert not result.valid
    assert [c.id for c in result.colors] == ["B", "F"]
    assert result.colors[1].rgb == (0, 255, 0)
    assert len(result.errors) == 6
    assert result.errors[0].startswith("Row 1:")


def test_validate_empty_and_large():
    assert validate_entries([]).errors == ["No valid colors found"]
    entries = [{"id": f"L{i}", "name": "x", "r": i % 256, "g": 0, "b": 0} for i in range(501)]
    result = validate_entries(entries)
    assert result.valid
    assert len(result.warnings) == 1


def test_create_custom_palette():
    colors = [BeadColor("A", "a", (1, 2, 3))]
    first = create_custom_palette(colors, "Mine", "Brand")
    second = create_custom_palette(colors, "Mine", "Brand")
    assert first.id != second.id
    assert first.id.startswith("custom-")
    assert not first.built_in
    assert first.created_at is not None


def test_registry_add_replace_remove():
    registry = PaletteRegistry()
    assert [p.id for p in registry.builtin()] == [DEFAULT_PALETTE_ID]
    mine = registry.add_custom(make_palette([(1, 1, 1)], palette_id="mine"))
    assert registry.get("mine") is mine
    assert mine.revision == 0
    again = registry.add_custom(make_palette([(2, 2, 2)], palette_id="mine"))
    assert again.revision == 1
    assert registry.get("mine")[0].rgb == (2, 2, 2)
    assert len(registry.all()) == 2
    assert registry.remove_custom("mine")
    assert not registry.remove_custom("mine")
    assert registry.get_or_default("mine").id == DEFAULT_PALETTE_ID


def test_registry_protects_builtins():
    registry = PaletteRegistry()
    assert not registry.remove_custom(DEFAULT_PALETTE_ID)
    with pytest.raises(ValueError):
        registry.add_custom(make_palette([(0, 0, 0)], palette_id=DEFAULT_PALETTE_ID))
    with pytest.raises(ValueError):
        registry.add_custom(BeadPalette("x", "x", [BeadColor("A", "a", (1, 2, 3))], built_in=True))


def test_registry_returns_empty_custom_palette_instead_of_default():
    registry = PaletteRegistry()
    empty = registry.add_custom(BeadPalette("empty", "Empty", []))
    assert registry.get("empty") is empty
    assert registry.get_or_default("empty") is empty
    with pytest.raises(EmptyPaletteError):
        PaletteMatcher(empty).nearest((0, 0, 0))
