"""Generate the Rust descriptor for every built atlas.

The output is deterministic: names are emitted in the order their documents
were discovered, rectangles come with UVs normalised by the cropped atlas
size, and floats use a fixed precision. The same inputs always produce a
byte-identical file.

Layout of the generated source:

    record types   Rect, Uv, Texture, Animation, Tile, Glyph, LoopDirection
    enums          AtlasId, TextureName, AnimationName (None = 0 first)
    tables         TEXTURES, ANIMATIONS (index = enum value - 1) + lookups
    per build      pub mod <label> { ATLAS_PATH, ATLAS_WIDTH/HEIGHT,
                   WHITE_RECT, WHITE_UV, TILES_<SET>, FONT_SIZE, CHARSET,
                   GLYPHS }
"""
from __future__ import annotations

from pathlib import Path

from atlas_types import LOOP_DIRECTIONS, BuildResult, Rect, Tileset, make_name

HEADER = "// Generated by tools/atlas_builder.py. Do not edit by hand."

RECORD_TYPES = """\
#[derive(Clone, Copy, Debug, PartialEq, Eq)]
pub struct Rect {
    pub x: u32,
    pub y: u32,
    pub w: u32,
    pub h: u32,
}

#[derive(Clone, Copy, Debug, PartialEq)]
pub struct Uv {
    pub u0: f32,
    pub v0: f32,
    pub u1: f32,
    pub v1: f32,
}

#[derive(Clone, Copy, Debug, PartialEq)]
pub struct Texture {
    pub atlas: AtlasId,
    pub rect: Rect,
    pub uv: Uv,
    pub trim_left: u32,
    pub trim_top: u32,
    pub trim_right: u32,
    pub trim_bottom: u32,
    pub source_width: u32,
    pub source_height: u32,
    pub duration_ms: Option<u32>,
}

#[derive(Clone, Copy, Debug, PartialEq, Eq)]
pub enum LoopDirection {
    Forward,
    Reverse,
    PingPong,
    PingPongReverse,
}

#[derive(Clone, Copy, Debug, PartialEq, Eq)]
pub struct Animation {
    pub first: TextureName,
    pub last: TextureName,
    pub direction: LoopDirection,
    pub repeat: u32,
    pub source_width: u32,
    pub source_height: u32,
}

#[derive(Clone, Copy, Debug, PartialEq)]
pub struct Tile {
    pub rect: Rect,
    pub uv: Uv,
}

#[derive(Clone, Copy, Debug, PartialEq)]
pub struct Glyph {
    pub rect: Rect,
    pub uv: Uv,
    pub ch: char,
    pub offset_x: i32,
    pub offset_y: i32,
    pub advance: f32,
}
"""


# ---------------------------------------------------------------------------
# Names
# ---------------------------------------------------------------------------

# Strict and reserved keywords. `self`, `Self`, `super` and `crate` cannot be
# raw identifiers, so keywords get a trailing underscore instead of `r#`.
RUST_KEYWORDS = frozenset("""
    as async await break const continue crate dyn else enum extern false fn for
    gen if impl in let loop match mod move mut pub ref return self Self static
    struct super trait true type unsafe use where while abstract become box do
    final macro override priv try typeof unsized virtual yield
""".split())


def rust_ident(name: str) -> str:
    return name + "_" if name in RUST_KEYWORDS else name


def module_name(label: str) -> str:
    return rust_ident(make_name(label))


def tiles_const(name: str) -> str:
    return "TILES_" + make_name(name).upper()


def variant_name(name: str) -> str:
    """snake_case -> enum variant: "hero_walk_0" -> "HeroWalk_0".

    Digit-led words keep their underscore so distinct names stay distinct.
    """
    out = ""
    for word in name.split("_"):
        if not word:
            continue
        if word[0].isdigit():
            out += "_" + word if out else "N" + word
        else:
            out += word[0].upper() + word[1:]
    return rust_ident(out or "Unnamed")


def _claim(name: str, used: set[str], key=variant_name) -> str:
    candidate = name
    n = 2
    while key(candidate) in used:
        candidate = f"{name}_v{n}"
        n += 1
    used.add(key(candidate))
    return candidate


def merge_results(results: list[BuildResult]) -> None:
    """Make texture and animation names unique across all builds.

    Clashing names get a numeric suffix (with a warning) and animation
    references in the same build follow the rename. Tileset names only
    need to be unique within their build, since each build is its own module. Textures that were not
    placed are dropped, as are animations that point at them.
    """
    used_textures = {"None"}
    used_animations = {"None"}
    for result in results:
        renames: dict[str, str] = {}
        seen_here: set[str] = set()
        result.textures = result.placed_textures()
        for texture in result.textures:
            new = _claim(texture.name, used_textures)
            if new != texture.name:
                print(f"  WARNING: {result.name}: duplicate texture name '{texture.name}' renamed to '{new}'")
                if texture.name not in seen_here:
                    renames[texture.name] = new
            seen_here.add(texture.name)
            texture.name = new

        placed = {t.name for t in result.textures}
        animations = []
        for anim in result.animations:
            anim.first = renames.get(anim.first, anim.first)
            anim.last = renames.get(anim.last, anim.last)
            if anim.first not in placed or anim.last not in placed:
                print(f"  WARNING: {result.name}: animation '{anim.name}' dropped, its frames were not placed")
                continue
            new = _claim(anim.name, used_animations)
            if new != anim.name:
                print(f"  WARNING: {result.name}: duplicate animation name '{anim.name}' renamed to '{new}'")
            anim.name = new
            animations.append(anim)
        result.animations = animations

        used_tiles: set[str] = set()
        for tileset in result.tilesets:
            new = _claim(tileset.name, used_tiles, key=tiles_const)
            if new != tileset.name:
                print(f"  WARNING: {result.name}: duplicate tileset name '{tileset.name}' renamed to '{new}'")
            tileset.name = new


# ---------------------------------------------------------------------------
# Literals
# ---------------------------------------------------------------------------


def _float(value: float) -> str:
    return f"{value:.8f}"


def rust_str(text: str) -> str:
    out = []
    for ch in text:
        if ch in ('"', "\\"):
            out.append("\\" + ch)
        elif ch == "\n":
            out.append("\\n")
        elif ch.isprintable():
            out.append(ch)
        else:
            out.append(f"\\u{{{ord(ch):x}}}")
    return '"' + "".join(out) + '"'


def rust_char(ch: str) -> str:
    if ch in ("'", "\\"):
        return f"'\\{ch}'"
    if ch == "\n":
        return "'\\n'"
    if ch.isprintable():
        return f"'{ch}'"
    return f"'\\u{{{ord(ch):x}}}'"


def rect_literal(rect: Rect) -> str:
    return f"Rect {{ x: {rect.x}, y: {rect.y}, w: {rect.w}, h: {rect.h} }}"


def uv_literal(rect: Rect, width: int, height: int) -> str:
    return (
        f"Uv {{ u0: {_float(rect.x / width)}, v0: {_float(rect.y / height)}, "
        f"u1: {_float(rect.right / width)}, v1: {_float(rect.bottom / height)} }}"
    )


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


def _enum(name: str, variants: list[str]) -> list[str]:
    lines = [
        "#[allow(non_camel_case_types)]",
        "#[derive(Clone, Copy, Debug, PartialEq, Eq, Hash, PartialOrd, Ord)]",
        "#[repr(u32)]",
        f"pub enum {name} {{",
        "    None = 0,",
    ]
    lines += [f"    {v} = {i}," for i, v in enumerate(variants, 1)]
    lines.append("}")
    return lines


def _texture_table(results: list[BuildResult]) -> list[str]:
    entries = []
    for result in results:
        atlas = variant_name(make_name(result.label))
        for t in result.textures:
            left, top, right, bottom = t.trim_edges()
            duration = f"Some({t.duration})" if t.duration is not None else "None"
            entries += [
                f"    // {t.name}",
                "    Texture {",
                f"        atlas: AtlasId::{atlas},",
                f"        rect: {rect_literal(t.placement)},",
                f"        uv: {uv_literal(t.placement, result.width, result.height)},",
                f"        trim_left: {left},",
                f"        trim_top: {top},",
                f"        trim_right: {right},",
                f"        trim_bottom: {bottom},",
                f"        source_width: {t.document_size[0]},",
                f"        source_height: {t.document_size[1]},",
                f"        duration_ms: {duration},",
                "    },",
            ]
    count = sum(len(r.textures) for r in results)
    return [f"pub static TEXTURES: [Texture; {count}] = ["] + entries + ["];"]


def _animation_table(results: list[BuildResult]) -> list[str]:
    entries = []
    for result in results:
        for a in result.animations:
            direction = a.direction if a.direction in LOOP_DIRECTIONS else LOOP_DIRECTIONS[0]
            entries += [
                f"    // {a.name}",
                "    Animation {",
                f"        first: TextureName::{variant_name(a.first)},",
                f"        last: TextureName::{variant_name(a.last)},",
                f"        direction: LoopDirection::{direction},",
                f"        repeat: {a.repeat},",
                f"        source_width: {a.document_size[0]},",
                f"        source_height: {a.document_size[1]},",
                "    },",
            ]
    count = sum(len(r.animations) for r in results)
    return [f"pub static ANIMATIONS: [Animation; {count}] = ["] + entries + ["];"]


def _lookup(enum: str, method: str, record: str, table: str) -> list[str]:
    return [
        f"impl {enum} {{",
        f"    pub fn {method}(self) -> Option<&'static {record}> {{",
        "        match self {",
        f"            {enum}::None => None,",
        f"            name => {table}.get(name as usize - 1),",
        "        }",
        "    }",
        "}",
    ]


def _tile_map(tileset: Tileset, width: int, height: int) -> list[str]:
    grid = {(t.column, t.row): t for t in tileset.tiles if t.placement is not None}
    cols, rows = tileset.columns, tileset.rows
    lines = [f"    pub static {tiles_const(tileset.name)}: [[Option<Tile>; {cols}]; {rows}] = ["]
    for row in range(rows):
        lines.append("        [")
        for col in range(cols):
            tile = grid.get((col, row))
            if tile is None:
                lines.append("            None,")
            else:
                lines.append(
                    f"            Some(Tile {{ rect: {rect_literal(tile.placement)}, "
                    f"uv: {uv_literal(tile.placement, width, height)} }}),"
                )
        lines.append("        ],")
    lines.append("    ];")
    return lines


def _build_module(result: BuildResult) -> list[str]:
    w, h = result.width, result.height
    swatch = result.swatch or Rect(0, 0, 0, 0)
    lines = [
        f"pub mod {module_name(result.label)} {{",
        "    #[allow(unused_imports)]",
        "    use super::*;",
        "",
        f"    pub const ATLAS_PATH: &str = {rust_str(result.atlas_path)};",
        f"    pub const ATLAS_WIDTH: u32 = {w};",
        f"    pub const ATLAS_HEIGHT: u32 = {h};",
        f"    pub const WHITE_RECT: Rect = {rect_literal(swatch)};",
        f"    pub const WHITE_UV: Uv = {uv_literal(swatch, w, h)};",
    ]
    if result.font_size is not None:
        glyphs = result.placed_glyphs()
        lines += [
            "",
            f"    pub const FONT_SIZE: u32 = {result.font_size};",
            f"    pub const CHARSET: &str = {rust_str(result.charset or '')};",
            f"    pub static GLYPHS: [Glyph; {len(glyphs)}] = [",
        ]
        for g in glyphs:
            lines.append(
                f"        Glyph {{ rect: {rect_literal(g.placement)}, uv: {uv_literal(g.placement, w, h)}, "
                f"ch: {rust_char(g.char)}, offset_x: {g.offset_x}, offset_y: {g.offset_y}, "
                f"advance: {_float(g.advance)} }},"
            )
        lines.append("    ];")
    for tileset in result.tilesets:
        lines.append("")
        lines += _tile_map(tileset, w, h)
    lines.append("}")
    return lines


def emit_descriptor(results: list[BuildResult]) -> str:
    """Render the descriptor source. Call merge_results() first."""
    textures = [variant_name(t.name) for r in results for t in r.textures]
    animations = [variant_name(a.name) for r in results for a in r.animations]
    if not textures:
        print("  No textures to describe")
    if not animations:
        print("  No animations to describe")

    atlas_ids = [variant_name(make_name(r.label)) for r in results]
    lines = [HEADER, "#![allow(dead_code)]", "", RECORD_TYPES.rstrip("\n"), ""]
    lines += ["#[derive(Clone, Copy, Debug, PartialEq, Eq, Hash)]", "pub enum AtlasId {"]
    lines += [f"    {a}," for a in atlas_ids] + ["}", ""]
    lines += _enum("TextureName", textures) + [""]
    lines += _enum("AnimationName", animations) + [""]
    lines += _texture_table(results) + [""]
    lines += _lookup("TextureName", "texture", "Texture", "TEXTURES") + [""]
    lines += _animation_table(results) + [""]
    lines += _lookup("AnimationName", "animation", "Animation", "ANIMATIONS")
    for result in results:
        lines.append("")
        lines += _build_module(result)
    return "\n".join(lines) + "\n"


def write_descriptor(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", newline="\n") as f:
        f.write(text)
