"""Rasterize font glyphs for the atlas.

Each requested character is drawn white-on-transparent with Pillow's
FreeType binding. Fonts are tried in order; the first one that actually
has the character wins.

Requires: Pillow (PIL) built with FreeType
"""
from __future__ import annotations

from pathlib import Path

from PIL import Image, ImageDraw, ImageFont

from atlas_types import Glyph

FONT_EXTENSIONS = (".ttf", ".otf")

# A noncharacter: every font renders it with its .notdef glyph.
_NOTDEF_PROBE = "\uffff"


def _render_mask(font: ImageFont.FreeTypeFont, char: str) -> tuple[Image.Image, int, int]:
    """Draw one character into a tight coverage mask.

    Returns (mask, left, top) where left/top are the mask's offset from the
    pen position on the baseline. Characters without ink get a 1x1 mask.
    """
    left, top, right, bottom = font.getbbox(char, anchor="ls")
    width = max(1, right - left)
    height = max(1, bottom - top)
    mask = Image.new("L", (width, height), 0)
    ImageDraw.Draw(mask).text((-left, -top), char, font=font, fill=255, anchor="ls")
    if mask.getbbox() is None:
        return Image.new("L", (1, 1), 0), 0, 0
    return mask, left, top


def _signature(font: ImageFont.FreeTypeFont, char: str) -> tuple:
    mask, left, top = _render_mask(font, char)
    return (mask.size, left, top, mask.tobytes())


def has_glyph(font: ImageFont.FreeTypeFont, char: str, notdef: tuple | None = None) -> bool:
    """Whether ``font`` has its own glyph for ``char`` rather than .notdef."""
    if char.isspace():
        return True
    if notdef is None:
        notdef = _signature(font, _NOTDEF_PROBE)
    return _signature(font, char) != notdef


def rasterize(font: ImageFont.FreeTypeFont, char: str) -> Glyph:
    mask, left, top = _render_mask(font, char)
    bitmap = Image.new("RGBA", mask.size, (255, 255, 255, 0))
    bitmap.putalpha(mask)
    return Glyph(
        char=char,
        image=bitmap,
        offset_x=left,
        offset_y=top,
        advance=font.getlength(char),
    )


def load_fonts(paths: list[Path], size: int) -> list[ImageFont.FreeTypeFont]:
    fonts = []
    for path in paths:
        try:
            fonts.append(ImageFont.truetype(str(path), size))
        except OSError as e:
            print(f"  WARNING: cannot load font {path.name}: {e}")
    return fonts


def extract_glyphs(font_paths: list[Path], size: int, charset: str) -> list[Glyph]:
    """Rasterize every distinct character of ``charset``, in order.

    Characters missing from every font are reported and skipped.
    """
    fonts = load_fonts(font_paths, size)
    if not fonts:
        print("  No font files found, no glyphs generated")
        return []

    notdefs = [_signature(font, _NOTDEF_PROBE) for font in fonts]
    glyphs = []
    seen = set()
    for char in charset:
        if char in seen:
            continue
        seen.add(char)
        for font, notdef in zip(fonts, notdefs):
            if has_glyph(font, char, notdef):
                glyphs.append(rasterize(font, char))
                break
        else:
            print(f"  WARNING: character {char!r} (U+{ord(char):04X}) not found in any font")
    return glyphs
