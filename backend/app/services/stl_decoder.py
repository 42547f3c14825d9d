"""
STL decoding service.

Uploaded STL files are frequently truncated or carry a bogus header, so
decoding is organised as an ordered chain of strategies.  Each strategy
is a plain function taking the raw bytes and returning a
``TriangleMesh``; the first one producing at least one triangle wins.
The default chain is:

- ``detected`` – text parse when the file starts with ``solid``,
  binary parse otherwise.
- ``binary`` – binary parse using the declared triangle count, trimmed
  to what the buffer actually holds.
- ``text`` – forced ASCII parse, for binary-looking files that are
  really text.
- ``binary_repair`` – binary parse ignoring the declared count and
  reading as many 50-byte records as fit.

A triangle with any non-finite coordinate is dropped entirely; partial
triangles never reach the renderer.
"""

from __future__ import annotations

import logging
import re
import struct
from dataclasses import dataclass, replace
from typing import Callable, List, Sequence, Tuple

import numpy as np

from .errors import ParseError

logger = logging.getLogger(__name__)

# Binary layout: 80-byte header, uint32 triangle count, then one record
# per triangle (normal, three vertices, attribute byte count).
HEADER_SIZE = 80
PREAMBLE_SIZE = 84
RECORD_SIZE = 50
MAX_TRIANGLES = 10_000_000
MIN_FILE_SIZE = 5

RECORD_DTYPE = np.dtype(
    [
        ("normal", "<f4", (3,)),
        ("vertices", "<f4", (3, 3)),
        ("attribute", "<u2"),
    ]
)

ASCII_KEYWORDS = ("vertex", "facet", "normal")
_NUMBER_RE = re.compile(r"[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")


@dataclass(frozen=True, eq=False)
class TriangleMesh:
    """Triangle soup decoded from an STL file.

    Attributes:
        triangles: ``float32`` array of shape ``(N, 3, 3)``.
        strategy: Name of the decoding strategy that produced the mesh.
        declared_count: Triangle count stated by the file (binary header)
            or number of ``endfacet`` lines seen (text).
        dropped_count: Triangles discarded for non-finite coordinates.
    """

    triangles: np.ndarray
    strategy: str = ""
    declared_count: int = 0
    dropped_count: int = 0

    @property
    def triangle_count(self) -> int:
        return int(self.triangles.shape[0])

    @property
    def vertex_count(self) -> int:
        return self.triangle_count * 3

    @property
    def vertices(self) -> np.ndarray:
        """Flat ``x, y, z, x, y, z, ...`` view of all vertices."""
        return self.triangles.reshape(-1)

    @classmethod
    def from_vertices(cls, vertices: Sequence[float], strategy: str = "") -> "TriangleMesh":
        """Build a mesh from a flat coordinate list, dropping a trailing partial triangle."""
        flat = np.asarray(vertices, dtype=np.float32).reshape(-1)
        usable = (flat.size // 9) * 9
        triangles = flat[:usable].reshape(-1, 3, 3)
        kept, dropped = _drop_non_finite(triangles)
        return cls(triangles=kept, strategy=strategy, declared_count=triangles.shape[0], dropped_count=dropped)


DecodeStrategy = Tuple[str, Callable[[bytes], TriangleMesh]]


def _drop_non_finite(triangles: np.ndarray) -> tuple[np.ndarray, int]:
    mask = np.isfinite(triangles).all(axis=(1, 2))
    kept = np.ascontiguousarray(triangles[mask], dtype=np.float32)
    return kept, int(triangles.shape[0] - kept.shape[0])


def parse_binary_stl(data: bytes, repair: bool = False) -> TriangleMesh:
    """Parse the binary STL layout.

    Args:
        data: Raw file contents.
        repair: When true the header's triangle count is ignored and the
            largest number of whole records the buffer can hold is read.

    Returns:
        TriangleMesh with every finite triangle found.

    Raises:
        ParseError: If the buffer is shorter than the 84-byte preamble,
            the declared count is zero or implausible, or no whole record
            fits in the buffer.
    """
    size = len(data)
    if size < PREAMBLE_SIZE:
        raise ParseError(
            f"Binary STL file too small (minimum {PREAMBLE_SIZE} bytes required, got {size})"
        )
    declared = struct.unpack_from("<I", data, HEADER_SIZE)[0]
    available = (size - PREAMBLE_SIZE) // RECORD_SIZE

    if repair:
        count = available
        logger.debug("Binary repair: header claims %d triangles, buffer holds %d", declared, available)
    else:
        if declared > MAX_TRIANGLES:
            raise ParseError(
                f"Unrealistic triangle count: {declared}. File may be corrupted."
            )
        if declared == 0:
            raise ParseError("STL file claims to have 0 triangles")
        count = declared
        expected_size = PREAMBLE_SIZE + declared * RECORD_SIZE
        if expected_size > size:
            logger.warning(
                "Binary STL size mismatch: expected %d bytes, got %d; salvaging %d of %d triangles",
                expected_size,
                size,
                available,
                declared,
            )
            count = available
    if count <= 0:
        raise ParseError("File too small to contain any triangles")

    records = np.frombuffer(data, dtype=RECORD_DTYPE, count=count, offset=PREAMBLE_SIZE)
    triangles, dropped = _drop_non_finite(records["vertices"].astype(np.float32))
    if dropped:
        logger.warning("Dropped %d binary triangles with non-finite coordinates", dropped)
    if triangles.shape[0] == 0:
        raise ParseError("No valid vertices found in STL file")
    return TriangleMesh(triangles=triangles, declared_count=int(declared), dropped_count=dropped)


def parse_binary_stl_repair(data: bytes) -> TriangleMesh:
    """Binary parse that trusts the buffer length instead of the header."""
    return parse_binary_stl(data, repair=True)


def parse_ascii_stl(data: bytes) -> TriangleMesh:
    """Parse the ASCII STL variant line by line.

    Only ``vertex`` lines carry geometry; the last three numeric tokens
    on such a line are its coordinates.  Vertices are grouped in threes
    in file order.  ``endfacet`` lines are counted for diagnostics.

    Raises:
        ParseError: If the text has none of the STL keywords or yields no
            finite triangle.
    """
    text = bytes(data).decode("utf-8", errors="replace").lower()
    if not any(keyword in text for keyword in ASCII_KEYWORDS):
        raise ParseError("File does not appear to be a valid ASCII STL")

    coords: List[Tuple[float, float, float]] = []
    facets = 0
    invalid = (float("nan"),) * 3
    for line in text.splitlines():
        if "vertex" in line:
            numbers = _NUMBER_RE.findall(line)
            if len(numbers) < 3:
                logger.debug("Vertex line without three coordinates: %r", line.strip())
                coords.append(invalid)
                continue
            x, y, z = (float(n) for n in numbers[-3:])
            coords.append((x, y, z))
        elif "endfacet" in line:
            facets += 1

    usable = (len(coords) // 3) * 3
    if usable != len(coords):
        logger.warning("ASCII STL ends with %d dangling vertices", len(coords) - usable)
    if usable == 0:
        raise ParseError("No valid vertices found in ASCII STL file")
    with np.errstate(over="ignore", invalid="ignore"):
        triangles = np.asarray(coords[:usable], dtype=np.float64).astype(np.float32).reshape(-1, 3, 3)
    triangles, dropped = _drop_non_finite(triangles)
    if dropped:
        logger.warning("Dropped %d ASCII triangles with non-finite coordinates", dropped)
    if triangles.shape[0] == 0:
        raise ParseError("No valid vertices found in ASCII STL file")
    logger.debug("ASCII STL: %d facets, %d triangles kept", facets, triangles.shape[0])
    return TriangleMesh(triangles=triangles, declared_count=facets, dropped_count=dropped)


def parse_detected_stl(data: bytes) -> TriangleMesh:
    """Dispatch on the ``solid`` signature of the first five bytes."""
    if bytes(data[:5]) == b"solid":
        logger.debug("Detected ASCII STL signature")
        return parse_ascii_stl(data)
    logger.debug("Detected binary STL")
    return parse_binary_stl(data)


DEFAULT_STRATEGIES: Tuple[DecodeStrategy, ...] = (
    ("detected", parse_detected_stl),
    ("binary", parse_binary_stl),
    ("text", parse_ascii_stl),
    ("binary_repair", parse_binary_stl_repair),
)


def decode_stl(data: bytes, strategies: Sequence[DecodeStrategy] = DEFAULT_STRATEGIES) -> TriangleMesh:
    """Decode STL bytes into a triangle mesh.

    Strategies are tried in order; the first yielding at least one
    triangle wins and its name is recorded on the returned mesh.

    Args:
        data: Raw file contents.
        strategies: Ordered ``(name, function)`` pairs.

    Returns:
        TriangleMesh: The decoded triangles.

    Raises:
        ParseError: If the buffer is under five bytes or every strategy
            fails.  The message carries the last strategy's reason.
    """
    if len(data) < MIN_FILE_SIZE:
        raise ParseError("File too small to be a valid STL file")

    failures: List[Tuple[str, Exception]] = []
    for name, strategy in strategies:
        try:
            mesh = strategy(data)
        except (ParseError, ValueError) as exc:
            logger.warning("STL strategy %s failed: %s", name, exc)
            failures.append((name, exc))
            continue
        if mesh.triangle_count == 0:
            failures.append((name, ParseError("No triangles decoded")))
            continue
        logger.info(
            "Decoded %d triangles with strategy %s (%d bytes, %d dropped)",
            mesh.triangle_count,
            name,
            len(data),
            mesh.dropped_count,
        )
        return replace(mesh, strategy=name)

    attempts = [name for name, _ in failures]
    if failures:
        reason = str(failures[-1][1])
    else:
        reason = "no decoding strategies configured"
    raise ParseError(f"Unable to decode STL data: {reason}", attempts=attempts)
