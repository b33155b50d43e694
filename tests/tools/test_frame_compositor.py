"""Tests for tools/frame_compositor.py: frame flattening and layer export."""
from __future__ import annotations

import sys
from pathlib import Path

import pytest
from PIL import Image

# Ensure tools/ is importable
TOOLS_DIR = Path(__file__).resolve().parent.parent.parent / "tools"
sys.path.insert(0, str(TOOLS_DIR))

import frame_compositor as fc
from ase_document import parse_document
from ase_fixtures import (
    cel_chunk,
    document,
    frame,
    indexed,
    layer_chunk,
    linked_cel_chunk,
    palette_chunk,
    solid,
    tags_chunk,
)
from atlas_types import Rect

RED = (255, 0, 0, 255)
GREEN = (0, 255, 0, 255)
BLUE = (0, 0, 255, 255)
CLEAR = (0, 0, 0, 0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def load(data, name="doc"):
    doc = parse_document(data)
    return fc.make_context(name, doc), doc


def pixels(image):
    return list(image.getdata())


def checker(width, height):
    """Opaque buffer with a distinct colour per pixel."""
    out = b""
    for y in range(height):
        for x in range(width):
            out += bytes((x * 40 % 256, y * 40 % 256, (x + y) * 10 % 256, 255))
    return out


# ---------------------------------------------------------------------------
# Blending
# ---------------------------------------------------------------------------


class TestBlendPixel:
    def test_copy_onto_transparent(self):
        src = (10, 20, 30, 77)
        assert fc.blend_pixel(CLEAR, src) == src

    def test_copy_onto_transparent_with_colour(self):
        # Alpha 0 destination counts as untouched even if it has colour data.
        src = (200, 100, 50, 128)
        assert fc.blend_pixel((9, 9, 9, 0), src) == src

    def test_transparent_source_keeps_destination(self):
        assert fc.blend_pixel(RED, (0, 255, 0, 0)) == RED

    def test_opaque_source_replaces(self):
        assert fc.blend_pixel(RED, BLUE) == BLUE

    def test_half_alpha(self):
        out = fc.blend_pixel((0, 0, 0, 255), (255, 255, 255, 128))
        a = 128 / 255
        assert out[:3] == (round(255 * a),) * 3
        assert out[3] == 255

    def test_alpha_accumulates(self):
        out = fc.blend_pixel((0, 0, 0, 100), (0, 0, 0, 100))
        assert out[3] == round(100 + 100 * (1 - 100 / 255))

    def test_paint_order_is_sequential_over(self):
        layer1 = (0, 0, 255, 200)
        layer2 = (255, 0, 0, 90)
        base = (0, 255, 0, 255)
        after_l1 = fc.blend_pixel(base, layer1)
        assert fc.blend_pixel(after_l1, layer2) == fc.blend_pixel(fc.blend_pixel(base, layer1), layer2)


class TestPaint:
    def test_paint_two_layers_matches_stepwise(self):
        canvas_both = Image.new("RGBA", (2, 1), CLEAR)
        l1 = Image.new("RGBA", (2, 1), (0, 0, 255, 200))
        l2 = Image.new("RGBA", (2, 1), (255, 0, 0, 90))
        fc.paint(canvas_both, l1, 0, 0)
        fc.paint(canvas_both, l2, 0, 0)

        canvas_l1 = Image.new("RGBA", (2, 1), CLEAR)
        fc.paint(canvas_l1, l1, 0, 0)
        expected = [fc.blend_pixel(p, (255, 0, 0, 90)) for p in pixels(canvas_l1)]
        assert pixels(canvas_both) == expected

    def test_paint_clips_to_canvas(self):
        canvas = Image.new("RGBA", (2, 2), CLEAR)
        fc.paint(canvas, Image.new("RGBA", (2, 2), RED), 1, 1)
        assert canvas.getpixel((1, 1)) == RED
        assert canvas.getpixel((0, 0)) == CLEAR


# ---------------------------------------------------------------------------
# Layer visibility
# ---------------------------------------------------------------------------


class TestVisibleLayers:
    def test_hidden_and_reference_excluded(self):
        ctx, _ = load(document(4, 4, [frame([
            layer_chunk("a"),
            layer_chunk("hidden", visible=False),
            layer_chunk("ref", reference=True),
            layer_chunk("b"),
        ])]))
        assert ctx.visible == frozenset({0, 3})

    def test_children_of_hidden_group_excluded(self):
        ctx, _ = load(document(4, 4, [frame([
            layer_chunk("group", visible=False, layer_type=1),
            layer_chunk("child", child_level=1),
            layer_chunk("top"),
        ])]))
        assert ctx.visible == frozenset({2})

    def test_visible_group_children_included(self):
        ctx, _ = load(document(4, 4, [frame([
            layer_chunk("group", layer_type=1),
            layer_chunk("child", child_level=1),
        ])]))
        assert ctx.visible == frozenset({1})

    def test_no_visible_layers_warns(self, capsys):
        ctx, doc = load(document(4, 4, [frame([layer_chunk("a", visible=False), cel_chunk(0, 0, 0, 1, 1, solid(1, 1, RED))])]))
        assert "no visible layers" in capsys.readouterr().out
        assert fc.flatten_document(ctx, doc) == []


# ---------------------------------------------------------------------------
# Flattening
# ---------------------------------------------------------------------------


class TestCompositeFrame:
    def test_single_opaque_layer_round_trip(self):
        src = checker(3, 2)
        ctx, doc = load(document(8, 8, [frame([layer_chunk("a"), cel_chunk(0, 2, 5, 3, 2, src)])]))
        flat = fc.composite_frame(ctx, doc, 0)
        assert flat.source_rect == Rect(2, 5, 3, 2)
        assert flat.trim_offset == (2, 5)
        assert flat.image.tobytes() == src

    def test_two_frame_document_scenario(self):
        ctx, doc = load(document(4, 4, [
            frame([layer_chunk("a")]),
            frame([cel_chunk(0, 1, 1, 2, 2, solid(2, 2, RED))]),
        ]))
        textures = fc.flatten_document(ctx, doc)
        assert len(textures) == 1
        tex = textures[0]
        assert tex.frame == 1
        assert tex.source_rect == Rect(1, 1, 2, 2)
        assert tex.trim_offset == (1, 1)
        assert pixels(tex.image) == [RED] * 4

    def test_union_of_cels(self):
        ctx, doc = load(document(8, 8, [frame([
            layer_chunk("a"),
            layer_chunk("b"),
            cel_chunk(0, 1, 1, 1, 1, solid(1, 1, RED)),
            cel_chunk(1, 4, 3, 1, 1, solid(1, 1, BLUE)),
        ])]))
        flat = fc.composite_frame(ctx, doc, 0)
        assert flat.source_rect == Rect(1, 1, 4, 3)
        assert flat.image.getpixel((0, 0)) == RED
        assert flat.image.getpixel((3, 2)) == BLUE
        assert flat.image.getpixel((1, 1)) == CLEAR

    def test_paint_order_follows_layer_index(self):
        # Cel for layer 1 is stored first but must be painted last.
        ctx, doc = load(document(2, 2, [frame([
            layer_chunk("bottom"),
            layer_chunk("top"),
            cel_chunk(1, 0, 0, 2, 2, solid(2, 2, BLUE)),
            cel_chunk(0, 0, 0, 2, 2, solid(2, 2, RED)),
        ])]))
        flat = fc.composite_frame(ctx, doc, 0)
        assert pixels(flat.image) == [BLUE] * 4

    def test_hidden_layer_ignored(self):
        ctx, doc = load(document(2, 2, [frame([
            layer_chunk("bottom"),
            layer_chunk("top", visible=False),
            cel_chunk(0, 0, 0, 2, 2, solid(2, 2, RED)),
            cel_chunk(1, 0, 0, 2, 2, solid(2, 2, BLUE)),
        ])]))
        assert pixels(fc.composite_frame(ctx, doc, 0).image) == [RED] * 4

    def test_cel_outside_bounds_is_clipped(self):
        ctx, doc = load(document(4, 4, [frame([layer_chunk("a"), cel_chunk(0, -2, -1, 4, 3, checker(4, 3))])]))
        flat = fc.composite_frame(ctx, doc, 0)
        assert flat.source_rect == Rect(0, 0, 2, 2)
        assert flat.trim_offset == (0, 0)
        full = Image.frombytes("RGBA", (4, 3), checker(4, 3))
        assert flat.image.getpixel((0, 0)) == full.getpixel((2, 1))

    def test_cel_entirely_outside_gives_nothing(self):
        ctx, doc = load(document(4, 4, [frame([layer_chunk("a"), cel_chunk(0, 10, 10, 2, 2, solid(2, 2, RED))])]))
        assert fc.composite_frame(ctx, doc, 0) is None

    def test_cel_opacity(self):
        ctx, doc = load(document(1, 1, [frame([layer_chunk("a"), cel_chunk(0, 0, 0, 1, 1, solid(1, 1, RED), opacity=128)])]))
        assert fc.composite_frame(ctx, doc, 0).image.getpixel((0, 0)) == (255, 0, 0, 128)

    def test_linked_cel_reuses_source(self):
        ctx, doc = load(document(4, 4, [
            frame([layer_chunk("a"), cel_chunk(0, 1, 1, 1, 1, solid(1, 1, RED))]),
            frame([linked_cel_chunk(0, 1, 1, 0)]),
        ]))
        textures = fc.flatten_document(ctx, doc)
        assert [t.name for t in textures] == ["doc_0", "doc_1"]
        assert pixels(textures[1].image) == [RED]

    def test_render_canvas_is_document_sized(self):
        ctx, doc = load(document(4, 4, [frame([layer_chunk("a"), cel_chunk(0, 2, 2, 1, 1, solid(1, 1, RED))])]))
        canvas = fc.render_canvas(ctx, doc)
        assert canvas.size == (4, 4)
        assert canvas.getpixel((2, 2)) == RED
        assert canvas.getpixel((0, 0)) == CLEAR


class TestIndexed:
    def test_palette_resolves_to_blue(self):
        palette = [CLEAR, (9, 9, 9, 255), (8, 8, 8, 255), BLUE]
        ctx, doc = load(document(3, 3, [frame([
            layer_chunk("a"), palette_chunk(palette), cel_chunk(0, 0, 0, 3, 3, indexed(3, 3, 3)),
        ])], depth=8))
        flat = fc.composite_frame(ctx, doc, 0)
        assert pixels(flat.image) == [BLUE] * 9

    def test_transparent_index(self):
        palette = [(255, 255, 255, 255), BLUE]
        ctx, doc = load(document(2, 1, [frame([
            layer_chunk("a"), palette_chunk(palette), cel_chunk(0, 0, 0, 2, 1, bytes([0, 1])),
        ])], depth=8))
        flat = fc.composite_frame(ctx, doc, 0)
        assert pixels(flat.image) == [CLEAR, BLUE]

    def test_header_transparent_index_nonzero(self):
        palette = [BLUE, (255, 255, 255, 255), RED]
        ctx, doc = load(document(3, 1, [frame([
            layer_chunk("a"), palette_chunk(palette), cel_chunk(0, 0, 0, 3, 1, bytes([0, 1, 2])),
        ])], depth=8, transparent_index=1))
        flat = fc.composite_frame(ctx, doc, 0)
        assert pixels(flat.image) == [BLUE, CLEAR, RED]

    def test_missing_palette_is_transparent(self, capsys):
        ctx, doc = load(document(2, 2, [frame([layer_chunk("a"), cel_chunk(0, 0, 0, 2, 2, indexed(2, 2, 3))])], depth=8))
        assert "no palette" in capsys.readouterr().out
        flat = fc.composite_frame(ctx, doc, 0)
        assert pixels(flat.image) == [CLEAR] * 4

    def test_out_of_range_index(self, capsys):
        ctx, doc = load(document(2, 1, [frame([
            layer_chunk("a"), palette_chunk([CLEAR, RED]), cel_chunk(0, 0, 0, 2, 1, bytes([1, 7])),
        ])], depth=8))
        flat = fc.composite_frame(ctx, doc, 0)
        assert "palette index 7" in capsys.readouterr().out
        assert pixels(flat.image) == [RED, CLEAR]


# ---------------------------------------------------------------------------
# Export modes
# ---------------------------------------------------------------------------


class TestFlattenDocument:
    def test_single_frame_named_after_document(self):
        ctx, doc = load(document(2, 2, [frame([layer_chunk("a"), cel_chunk(0, 0, 0, 2, 2, solid(2, 2, RED))], duration=50)]), "Hero Idle")
        textures = fc.flatten_document(ctx, doc)
        assert [t.name for t in textures] == ["hero_idle"]
        assert textures[0].duration == 50
        assert textures[0].document_size == (2, 2)

    def test_trim_edges(self):
        ctx, doc = load(document(10, 8, [frame([layer_chunk("a"), cel_chunk(0, 2, 3, 4, 1, solid(4, 1, RED))])]))
        tex = fc.flatten_document(ctx, doc)[0]
        assert tex.trim_edges() == (2, 3, 4, 4)


class TestSplitLayers:
    def test_each_layer_is_its_own_texture(self):
        ctx, doc = load(document(4, 4, [frame([
            layer_chunk("Frame"),
            layer_chunk("Icon"),
            layer_chunk("hidden", visible=False),
            cel_chunk(0, 0, 0, 4, 4, solid(4, 4, RED)),
            cel_chunk(1, 1, 1, 2, 2, solid(2, 2, (0, 0, 255, 128))),
            cel_chunk(2, 0, 0, 1, 1, solid(1, 1, GREEN)),
        ])]), "button")
        textures = fc.split_layers(ctx, doc)
        assert [t.name for t in textures] == ["button_frame", "button_icon"]
        # No blending between layers.
        assert pixels(textures[1].image) == [(0, 0, 255, 128)] * 4
        assert textures[1].trim_offset == (1, 1)

    def test_multi_frame_names_include_frame(self):
        ctx, doc = load(document(2, 2, [
            frame([layer_chunk("bg"), cel_chunk(0, 0, 0, 1, 1, solid(1, 1, RED))]),
            frame([cel_chunk(0, 0, 0, 1, 1, solid(1, 1, GREEN))]),
        ]), "panel")
        assert [t.name for t in fc.split_layers(ctx, doc)] == ["panel_bg_0", "panel_bg_1"]


class TestAnimations:
    def _doc(self, chunks_first=()):
        return document(2, 2, [
            frame([layer_chunk("a"), cel_chunk(0, 0, 0, 1, 1, solid(1, 1, RED)), *chunks_first]),
            frame([cel_chunk(0, 0, 0, 1, 1, solid(1, 1, GREEN))]),
            frame([]),
            frame([cel_chunk(0, 0, 0, 1, 1, solid(1, 1, BLUE))]),
        ])

    def test_implicit_animation_without_tags(self):
        ctx, doc = load(self._doc(), "slime")
        textures = fc.flatten_document(ctx, doc)
        anims = fc.document_animations(ctx, doc, textures)
        assert len(anims) == 1
        assert (anims[0].name, anims[0].first, anims[0].last) == ("slime", "slime_0", "slime_3")
        assert anims[0].direction == "Forward"

    def test_tags_replace_implicit_animation(self):
        ctx, doc = load(self._doc([tags_chunk([("bounce", 1, 2, 2, 4)])]), "slime")
        textures = fc.flatten_document(ctx, doc)
        anims = fc.document_animations(ctx, doc, textures)
        assert len(anims) == 1
        anim = anims[0]
        assert anim.name == "slime_bounce"
        # Frame 2 is empty, so the range collapses to frame 1.
        assert (anim.first, anim.last) == ("slime_1", "slime_1")
        assert anim.direction == "PingPong"
        assert anim.repeat == 4
        assert anim.document_size == (2, 2)

    def test_tag_without_content_is_skipped(self, capsys):
        ctx, doc = load(self._doc([tags_chunk([("gap", 2, 2, 0, 0)])]), "slime")
        anims = fc.document_animations(ctx, doc, fc.flatten_document(ctx, doc))
        assert anims == []
        assert "covers no visible frames" in capsys.readouterr().out

    def test_single_frame_has_no_implicit_animation(self):
        ctx, doc = load(document(1, 1, [frame([layer_chunk("a"), cel_chunk(0, 0, 0, 1, 1, solid(1, 1, RED))])]))
        assert fc.document_animations(ctx, doc, fc.flatten_document(ctx, doc)) == []


class TestStaticTexture:
    def test_trims_to_content(self, tmp_path):
        img = Image.new("RGBA", (8, 6), CLEAR)
        img.putpixel((2, 1), RED)
        img.putpixel((4, 3), RED)
        path = tmp_path / "coin.png"
        img.save(path)
        tex = fc.load_static_texture(path, "coin")
        assert tex.source_rect == Rect(2, 1, 3, 3)
        assert tex.trim_offset == (2, 1)
        assert tex.document_size == (8, 6)
        assert tex.duration is None

    def test_fully_transparent_skipped(self, tmp_path, capsys):
        path = tmp_path / "empty.png"
        Image.new("RGBA", (4, 4), CLEAR).save(path)
        assert fc.load_static_texture(path, "empty") is None
        assert "fully transparent" in capsys.readouterr().out
