"""Cut a flattened tileset image into fixed-size tiles.

Grid cells whose every pixel is fully transparent are dropped; they are
neither packed nor listed in the tile map. Surviving cells keep their
(column, row) grid coordinate in row-major order.

Requires: Pillow (PIL)
"""
from __future__ import annotations

from PIL import Image

from atlas_types import TileRecord, Tileset, make_name


class TilesetError(ValueError):
    """Raised when a tileset image cannot be cut into whole tiles."""


def check_tileset_size(name: str, width: int, height: int, tile_size: int) -> None:
    if tile_size <= 0:
        raise TilesetError(f"{name}: tile size must be positive, got {tile_size}")
    if width % tile_size or height % tile_size:
        raise TilesetError(
            f"{name}: size {width}x{height} is not a multiple of the {tile_size}px tile size"
        )


def is_blank(tile: Image.Image) -> bool:
    """True when every pixel of the tile has alpha 0."""
    return tile.getchannel("A").getbbox() is None


def slice_tileset(name: str, image: Image.Image, tile_size: int) -> Tileset:
    """Slice ``image`` into a Tileset, skipping blank cells.

    Raises TilesetError when the image is not an exact multiple of
    ``tile_size`` in both directions.
    """
    check_tileset_size(name, image.width, image.height, tile_size)
    tileset = Tileset(name=make_name(name), image=image, tile_size=tile_size)

    for row in range(image.height // tile_size):
        for col in range(image.width // tile_size):
            left = col * tile_size
            top = row * tile_size
            tile = image.crop((left, top, left + tile_size, top + tile_size))
            if is_blank(tile):
                continue
            tileset.tiles.append(TileRecord(column=col, row=row, image=tile))
    return tileset
