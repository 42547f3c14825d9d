"""
Tests for the STL decoding strategies.

Binary fixtures are assembled with ``struct`` so that truncation,
corrupt headers and non-finite coordinates can be produced exactly.
"""

import math
import struct
import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from app.services.errors import ParseError  # type: ignore
from app.services.stl_decoder import (  # type: ignore
    DEFAULT_STRATEGIES,
    TriangleMesh,
    decode_stl,
    parse_ascii_stl,
    parse_binary_stl,
)


def _binary_stl(triangles, declared=None, header=b"binary test"):
    """Build a binary STL from a list of 3x3 vertex lists."""
    count = len(triangles) if declared is None else declared
    out = bytearray(header.ljust(80, b"\0")[:80])
    out += struct.pack("<I", count)
    for tri in triangles:
        out += struct.pack("<3f", 0.0, 0.0, 1.0)
        for vertex in tri:
            out += struct.pack("<3f", *vertex)
        out += struct.pack("<H", 0)
    return bytes(out)


def _triangles(n):
    return [[(i, 0.0, 0.0), (i + 1.0, 0.0, 0.0), (i, 1.0, 0.5)] for i in range(n)]


ONE_FACET = b"""solid tiny
  facet normal 0 0 1
    outer loop
      vertex 0 0 0
      vertex 1 0 0
      vertex 0 1 0
    endloop
  endfacet
endsolid tiny
"""


def test_valid_binary_returns_declared_triangles() -> None:
    data = _binary_stl(_triangles(5))
    mesh = decode_stl(data)
    assert mesh.triangle_count == 5
    assert mesh.vertex_count == 15
    assert mesh.vertices.shape == (45,)
    assert mesh.strategy == "detected"
    np.testing.assert_allclose(mesh.triangles[2, 0], (2.0, 0.0, 0.0))
    np.testing.assert_allclose(mesh.triangles[4, 2], (4.0, 1.0, 0.5))


def test_truncated_binary_salvages_whole_records() -> None:
    full = _binary_stl(_triangles(10))
    # Keep four whole records plus a partial fifth one
    data = full[: 84 + 4 * 50 + 20]
    mesh = decode_stl(data)
    assert mesh.triangle_count == (len(data) - 84) // 50 == 4
    assert mesh.declared_count == 10


def test_too_short_buffer_is_rejected() -> None:
    with pytest.raises(ParseError):
        decode_stl(b"soli")
    with pytest.raises(ParseError):
        decode_stl(b"")


def test_ascii_single_facet() -> None:
    mesh = decode_stl(ONE_FACET)
    assert mesh.triangle_count == 1
    assert mesh.vertex_count == 3
    assert mesh.declared_count == 1
    np.testing.assert_allclose(mesh.triangles[0], [[0, 0, 0], [1, 0, 0], [0, 1, 0]])


def test_ascii_number_formats() -> None:
    text = b"solid s\nfacet normal 0 0 1\nouter loop\n vertex -1.5e2 +2 3.\n vertex 1E1 0.25 -0\n VERTEX 7 8 9\nendloop\nendfacet\nendsolid\n"
    mesh = parse_ascii_stl(text)
    np.testing.assert_allclose(mesh.triangles[0], [[-150.0, 2.0, 3.0], [10.0, 0.25, 0.0], [7.0, 8.0, 9.0]])


def test_ascii_without_keywords_is_rejected() -> None:
    with pytest.raises(ParseError):
        parse_ascii_stl(b"solid but nothing else here")


def test_non_finite_vertex_drops_whole_triangle() -> None:
    tris = _triangles(3)
    tris[1][2] = (float("nan"), 0.0, 0.0)
    mesh = decode_stl(_binary_stl(tris))
    assert mesh.triangle_count == 2
    assert mesh.dropped_count == 1
    assert np.isfinite(mesh.triangles).all()
    assert mesh.vertex_count % 3 == 0


def test_ascii_infinite_vertex_drops_whole_triangle() -> None:
    text = ONE_FACET.replace(b"vertex 1 0 0", b"vertex 1e999 0 0") + ONE_FACET
    mesh = decode_stl(text)
    assert mesh.triangle_count == 1
    assert mesh.dropped_count == 1


def test_binary_with_solid_header_falls_back_to_binary() -> None:
    data = _binary_stl(_triangles(2), header=b"solid exported by cad tool")
    mesh = decode_stl(data)
    assert mesh.triangle_count == 2
    assert mesh.strategy == "binary"


def test_implausible_count_uses_repair_strategy() -> None:
    data = _binary_stl(_triangles(3), declared=0xFFFFFFFF)
    with pytest.raises(ParseError):
        parse_binary_stl(data)
    mesh = decode_stl(data)
    assert mesh.triangle_count == 3
    assert mesh.strategy == "binary_repair"


def test_zero_declared_count_uses_repair_strategy() -> None:
    data = _binary_stl(_triangles(2), declared=0)
    mesh = decode_stl(data)
    assert mesh.triangle_count == 2
    assert mesh.strategy == "binary_repair"


def test_all_strategies_failing_reports_attempts() -> None:
    with pytest.raises(ParseError) as excinfo:
        decode_stl(b"this is definitely not a mesh file")
    assert excinfo.value.attempts == [name for name, _ in DEFAULT_STRATEGIES]
    assert "Unable to decode" in str(excinfo.value)


def test_custom_strategy_chain_is_respected() -> None:
    data = _binary_stl(_triangles(1))
    with pytest.raises(ParseError):
        decode_stl(data, strategies=[("text", parse_ascii_stl)])


def test_from_vertices_with_only_non_finite_values_is_empty() -> None:
    mesh = TriangleMesh.from_vertices([math.inf] * 9 + [math.nan] * 9)
    assert mesh.triangle_count == 0
    assert mesh.dropped_count == 2
