"""
Uncompressed BMP serialisation for rendered previews.

BMP is used so that the service has no dependency on an image codec.
Files are written as 24-bit BGR with a negative height in the info
header, which marks the rows as stored top-down and lets the pixel
buffer be written in its natural order.  Each row is padded to a
multiple of four bytes.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass

import numpy as np

from .errors import EncodeError

FILE_HEADER_SIZE = 14
INFO_HEADER_SIZE = 40
PIXEL_OFFSET = FILE_HEADER_SIZE + INFO_HEADER_SIZE
BITS_PER_PIXEL = 24
PIXELS_PER_METRE = 2835  # 72 dpi

_FILE_HEADER = struct.Struct("<2sIHHI")
_INFO_HEADER = struct.Struct("<IiiHHIIiiII")


@dataclass(frozen=True)
class BmpHeader:
    """Fields recovered from a BMP header."""

    width: int
    height: int
    top_down: bool
    bits_per_pixel: int
    file_size: int
    pixel_offset: int


def row_stride(width: int) -> int:
    """Bytes per stored row: three per pixel, rounded up to four."""
    return (width * 3 + 3) & ~3


def bmp_file_size(width: int, height: int) -> int:
    return PIXEL_OFFSET + row_stride(width) * height


def encode_bmp(pixels: np.ndarray, width: int, height: int) -> bytes:
    """Serialise an RGBA pixel buffer as a BMP file.

    Args:
        pixels: ``uint8`` array of shape ``(height, width, 4)``, row 0 at
            the top.  Alpha is discarded.
        width: Image width in pixels.
        height: Image height in pixels.

    Returns:
        The complete BMP file as bytes.

    Raises:
        EncodeError: If the buffer does not match the dimensions or is
            not 8-bit.
    """
    if width <= 0 or height <= 0:
        raise EncodeError(f"Invalid image size {width}x{height}")
    if pixels.dtype != np.uint8:
        raise EncodeError(f"Pixel buffer must be uint8, got {pixels.dtype}")
    if pixels.shape != (height, width, 4):
        raise EncodeError(
            f"Pixel buffer shape {pixels.shape} does not match {width}x{height} RGBA"
        )

    stride = row_stride(width)
    image_size = stride * height
    rows = np.zeros((height, stride), dtype=np.uint8)
    rows[:, : width * 3] = pixels[:, :, 2::-1].reshape(height, width * 3)

    file_header = _FILE_HEADER.pack(b"BM", PIXEL_OFFSET + image_size, 0, 0, PIXEL_OFFSET)
    info_header = _INFO_HEADER.pack(
        INFO_HEADER_SIZE,
        width,
        -height,
        1,
        BITS_PER_PIXEL,
        0,  # BI_RGB
        image_size,
        PIXELS_PER_METRE,
        PIXELS_PER_METRE,
        0,
        0,
    )
    return file_header + info_header + rows.tobytes()


def read_bmp_header(data: bytes) -> BmpHeader:
    """Parse the file and info headers of a BMP produced by :func:`encode_bmp`.

    Raises:
        EncodeError: If ``data`` is too short or lacks the ``BM`` magic.
    """
    if len(data) < PIXEL_OFFSET:
        raise EncodeError("Data too short for a BMP header")
    magic, file_size, _, _, offset = _FILE_HEADER.unpack_from(data, 0)
    if magic != b"BM":
        raise EncodeError(f"Not a BMP file (magic {magic!r})")
    fields = _INFO_HEADER.unpack_from(data, FILE_HEADER_SIZE)
    width, signed_height, bpp = fields[1], fields[2], fields[4]
    return BmpHeader(
        width=width,
        height=abs(signed_height),
        top_down=signed_height < 0,
        bits_per_pixel=bpp,
        file_size=file_size,
        pixel_offset=offset,
    )
