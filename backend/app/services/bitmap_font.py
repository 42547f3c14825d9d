"""
Fixed 5x7 bitmap font for view labels.

Each glyph is seven row masks, top row first; bit 4 is the leftmost
column.  The table only covers what labels need (digits, capitals and
a little punctuation).  Lowercase input is drawn with the capital
glyphs and any other character renders blank.
"""

from __future__ import annotations

from typing import Dict, Sequence, Tuple

import numpy as np

GLYPH_WIDTH = 5
GLYPH_HEIGHT = 7
GLYPH_ADVANCE = GLYPH_WIDTH + 1

Glyph = Tuple[int, int, int, int, int, int, int]

BLANK_GLYPH: Glyph = (0, 0, 0, 0, 0, 0, 0)

GLYPHS: Dict[str, Glyph] = {
    "0": (0x0E, 0x11, 0x13, 0x15, 0x19, 0x11, 0x0E),
    "1": (0x04, 0x0C, 0x04, 0x04, 0x04, 0x04, 0x0E),
    "2": (0x0E, 0x11, 0x01, 0x02, 0x04, 0x08, 0x1F),
    "3": (0x1F, 0x02, 0x04, 0x02, 0x01, 0x11, 0x0E),
    "4": (0x02, 0x06, 0x0A, 0x12, 0x1F, 0x02, 0x02),
    "5": (0x1F, 0x10, 0x1E, 0x01, 0x01, 0x11, 0x0E),
    "6": (0x06, 0x08, 0x10, 0x1E, 0x11, 0x11, 0x0E),
    "7": (0x1F, 0x01, 0x02, 0x04, 0x08, 0x08, 0x08),
    "8": (0x0E, 0x11, 0x11, 0x0E, 0x11, 0x11, 0x0E),
    "9": (0x0E, 0x11, 0x11, 0x0F, 0x01, 0x02, 0x0C),
    "A": (0x0E, 0x11, 0x11, 0x11, 0x1F, 0x11, 0x11),
    "B": (0x1E, 0x11, 0x11, 0x1E, 0x11, 0x11, 0x1E),
    "C": (0x0E, 0x11, 0x10, 0x10, 0x10, 0x11, 0x0E),
    "D": (0x1C, 0x12, 0x11, 0x11, 0x11, 0x12, 0x1C),
    "E": (0x1F, 0x10, 0x10, 0x1E, 0x10, 0x10, 0x1F),
    "F": (0x1F, 0x10, 0x10, 0x1E, 0x10, 0x10, 0x10),
    "G": (0x0E, 0x11, 0x10, 0x17, 0x11, 0x11, 0x0F),
    "H": (0x11, 0x11, 0x11, 0x1F, 0x11, 0x11, 0x11),
    "I": (0x0E, 0x04, 0x04, 0x04, 0x04, 0x04, 0x0E),
    "J": (0x07, 0x02, 0x02, 0x02, 0x02, 0x12, 0x0C),
    "K": (0x11, 0x12, 0x14, 0x18, 0x14, 0x12, 0x11),
    "L": (0x10, 0x10, 0x10, 0x10, 0x10, 0x10, 0x1F),
    "M": (0x11, 0x1B, 0x15, 0x15, 0x11, 0x11, 0x11),
    "N": (0x11, 0x11, 0x19, 0x15, 0x13, 0x11, 0x11),
    "O": (0x0E, 0x11, 0x11, 0x11, 0x11, 0x11, 0x0E),
    "P": (0x1E, 0x11, 0x11, 0x1E, 0x10, 0x10, 0x10),
    "Q": (0x0E, 0x11, 0x11, 0x11, 0x15, 0x12, 0x0D),
    "R": (0x1E, 0x11, 0x11, 0x1E, 0x14, 0x12, 0x11),
    "S": (0x0F, 0x10, 0x10, 0x0E, 0x01, 0x01, 0x1E),
    "T": (0x1F, 0x04, 0x04, 0x04, 0x04, 0x04, 0x04),
    "U": (0x11, 0x11, 0x11, 0x11, 0x11, 0x11, 0x0E),
    "V": (0x11, 0x11, 0x11, 0x11, 0x11, 0x0A, 0x04),
    "W": (0x11, 0x11, 0x11, 0x15, 0x15, 0x15, 0x0A),
    "X": (0x11, 0x11, 0x0A, 0x04, 0x0A, 0x11, 0x11),
    "Y": (0x11, 0x11, 0x11, 0x0A, 0x04, 0x04, 0x04),
    "Z": (0x1F, 0x01, 0x02, 0x04, 0x08, 0x10, 0x1F),
    " ": BLANK_GLYPH,
    ".": (0x00, 0x00, 0x00, 0x00, 0x00, 0x0C, 0x0C),
    ":": (0x00, 0x0C, 0x0C, 0x00, 0x0C, 0x0C, 0x00),
    "_": (0x00, 0x00, 0x00, 0x00, 0x00, 0x00, 0x1F),
    "-": (0x00, 0x00, 0x00, 0x1F, 0x00, 0x00, 0x00),
    "(": (0x02, 0x04, 0x08, 0x08, 0x08, 0x04, 0x02),
    ")": (0x08, 0x04, 0x02, 0x02, 0x02, 0x04, 0x08),
    "/": (0x00, 0x01, 0x02, 0x04, 0x08, 0x10, 0x00),
}


def glyph_for(char: str) -> Glyph:
    """Return the glyph for ``char``, falling back to a blank cell."""
    return GLYPHS.get(char.upper(), BLANK_GLYPH)


def text_width(text: str, scale: int = 1) -> int:
    """Pixel width of ``text`` without trailing spacing."""
    if not text:
        return 0
    return (len(text) * GLYPH_ADVANCE - 1) * scale


def draw_text(
    pixels: np.ndarray,
    x: int,
    y: int,
    text: str,
    color: Sequence[int],
    scale: int = 1,
) -> None:
    """Blit ``text`` into an RGBA buffer with its top-left corner at ``(x, y)``.

    Pixels falling outside the buffer are clipped.
    """
    height, width = pixels.shape[:2]
    rgba = np.asarray(tuple(color) + (255,) * (4 - len(color)), dtype=np.uint8)
    cursor = x
    for char in text:
        rows = glyph_for(char)
        for row_index, mask in enumerate(rows):
            if not mask:
                continue
            for col in range(GLYPH_WIDTH):
                if not mask & (1 << (GLYPH_WIDTH - 1 - col)):
                    continue
                px = cursor + col * scale
                py = y + row_index * scale
                x0, x1 = max(px, 0), min(px + scale, width)
                y0, y1 = max(py, 0), min(py + scale, height)
                if x0 < x1 and y0 < y1:
                    pixels[y0:y1, x0:x1] = rgba
        cursor += GLYPH_ADVANCE * scale
