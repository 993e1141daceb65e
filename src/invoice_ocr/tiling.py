"""Tile planning: decide how a page image is cut into model-sized pieces.

Pages whose sides both fit within ``max_side`` are sent whole. Larger pages
are cut along a single axis. Wide pages (aspect ratio above the trigger) are
cut into side-by-side columns so every tile keeps the full page height; tall
pages are cut into stacked bands so every tile keeps full text-line width.
Consecutive windows overlap so text straddling a cut appears whole in at
least one tile.
"""

import logging
from enum import Enum
from typing import List

from .models.page_models import TileRect

log = logging.getLogger(__name__)


class TileStrategy(str, Enum):
    SINGLE = "single"
    HORIZONTAL = "horizontal"
    VERTICAL = "vertical"


def choose_strategy(
    width: int, height: int, max_side: int, aspect_trigger: float
) -> TileStrategy:
    if width <= max_side and height <= max_side:
        return TileStrategy.SINGLE
    if width / height > aspect_trigger:
        return TileStrategy.HORIZONTAL
    return TileStrategy.VERTICAL


def overlap_pixels(window: int, overlap_fraction: float) -> int:
    return int(window * overlap_fraction)


def split_axis(length: int, max_side: int, overlap_fraction: float) -> List[tuple]:
    """Return (start, size) windows covering ``[0, length)``."""
    window = min(max_side, length)
    overlap = overlap_pixels(window, overlap_fraction)
    windows = []
    start = 0
    while True:
        end = min(start + window, length)
        windows.append((start, end - start))
        if end >= length:
            break
        start = end - overlap
    return windows


def plan_tiles(
    width: int,
    height: int,
    max_side: int,
    aspect_trigger: float,
    overlap_fraction: float,
) -> List[TileRect]:
    """Plan the tiles for a ``width`` x ``height`` page.

    Args:
        width: Page width in pixels
        height: Page height in pixels
        max_side: Largest tile side the vision model should receive
        aspect_trigger: width/height ratio above which columns are cut
        overlap_fraction: Share of a window repeated in the next one, in (0, 1)

    Returns:
        Tiles in generation order with chunk_index counting up from 0
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid page dimensions {width}x{height}")
    if max_side <= 0:
        raise ValueError(f"Invalid max tile side {max_side}")
    if not 0 < overlap_fraction < 1:
        raise ValueError(f"Overlap fraction must be in (0, 1), got {overlap_fraction}")

    strategy = choose_strategy(width, height, max_side, aspect_trigger)

    if strategy is TileStrategy.SINGLE:
        log.debug(f"Page {width}x{height} fits in one tile")
        return [TileRect(0, 0, 0, width, height)]

    if strategy is TileStrategy.HORIZONTAL:
        rects = [
            TileRect(i, start, 0, size, height)
            for i, (start, size) in enumerate(
                split_axis(width, max_side, overlap_fraction)
            )
        ]
    else:
        rects = [
            TileRect(i, 0, start, width, size)
            for i, (start, size) in enumerate(
                split_axis(height, max_side, overlap_fraction)
            )
        ]

    log.debug(
        f"Page {width}x{height} (aspect {width / height:.2f}) "
        f"split {strategy.value}ly into {len(rects)} tiles"
    )
    return rects
