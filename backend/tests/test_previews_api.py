"""
Tests for the synchronous screenshot endpoint.

These tests use FastAPI's TestClient to post STL files to
``/api/screenshot-stl`` and check the parallel arrays of the response.
"""

import base64
import io
import struct
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Add the backend directory to sys.path so we can import the app
sys.path.append(str(Path(__file__).resolve().parents[1]))

from app.main import app  # type: ignore
from app.services import storage  # type: ignore
from app.services.preview_cache import clear_preview_cache  # type: ignore


EXPECTED_NAMES = [
    "right", "left", "top", "bottom", "front", "back",
    "iso_1", "iso_2", "iso_3", "iso_4",
    "corner_1", "corner_2", "corner_3", "corner_4",
    "angle_1", "angle_2",
]

TETRA = [
    [(0, 0, 0), (1, 0, 0), (0, 1, 0)],
    [(0, 0, 0), (0, 0, 1), (1, 0, 0)],
    [(0, 0, 0), (0, 1, 0), (0, 0, 1)],
    [(1, 0, 0), (0, 0, 1), (0, 1, 0)],
]

ASCII_FACET = b"""solid single
facet normal 0 0 1
 outer loop
  vertex 0 0 0
  vertex 10 0 0
  vertex 0 10 0
 endloop
endfacet
endsolid single
"""


def _binary_stl(triangles):
    out = bytearray(b"tetra".ljust(80, b"\0"))
    out += struct.pack("<I", len(triangles))
    for tri in triangles:
        out += struct.pack("<3f", 0.0, 0.0, 0.0)
        for vertex in tri:
            out += struct.pack("<3f", *vertex)
        out += struct.pack("<H", 0)
    return bytes(out)


@pytest.fixture
def client() -> TestClient:
    clear_preview_cache()
    with TestClient(app) as c:
        yield c


def _post(client, content, filename="model.stl", **params):
    return client.post(
        "/api/screenshot-stl",
        params=params,
        files={"stl": (filename, io.BytesIO(content), "application/octet-stream")},
    )


def test_health(client: TestClient) -> None:
    assert client.get("/api/health").json() == {"status": "ok"}


def test_status_endpoint(client: TestClient) -> None:
    data = client.get("/api/screenshot-stl").json()
    assert data["status"] == "operational"
    assert data["method"] == "POST"
    assert data["endpoint"] == "/api/screenshot-stl"


def test_cameras_endpoint(client: TestClient) -> None:
    cameras = client.get("/api/cameras").json()
    assert [c["name"] for c in cameras] == EXPECTED_NAMES
    assert cameras[0]["index"] == 1
    assert cameras[4]["position"] == {"x": 0.0, "y": 0.0, "z": 5.0}


def test_binary_upload_returns_sixteen_images(client: TestClient) -> None:
    response = _post(client, _binary_stl(TETRA), "tetra.stl", width=64, height=48)
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["count"] == 16
    assert data["filename"] == "tetra.stl"
    assert data["triangles"] == 4
    assert data["failedViews"] == 0
    assert data["viewNames"] == EXPECTED_NAMES
    assert data["viewDescriptions"][0] == "Right Side View"
    assert len(data["screenshots"]) == len(data["viewNames"]) == len(data["viewDescriptions"]) == 16
    assert data["bbox"] == {"min": [0.0, 0.0, 0.0], "max": [1.0, 1.0, 1.0]}
    prefix = "data:image/bmp;base64,"
    assert all(s.startswith(prefix) for s in data["screenshots"])
    image = base64.b64decode(data["screenshots"][0][len(prefix):])
    assert image[:2] == b"BM"
    assert struct.unpack_from("<i", image, 18)[0] == 64


def test_ascii_upload_and_repeat_request_is_cached(client: TestClient) -> None:
    first = _post(client, ASCII_FACET, "facet.STL", width=32, height=32, projection="shear")
    assert first.status_code == 200
    assert first.json()["triangles"] == 1
    assert first.json()["strategy"] == "detected"
    second = _post(client, ASCII_FACET, "facet.STL", width=32, height=32, projection="shear")
    assert second.json()["screenshots"] == first.json()["screenshots"]


def test_wrong_extension_is_rejected(client: TestClient) -> None:
    response = _post(client, _binary_stl(TETRA), "tetra.obj")
    assert response.status_code == 400
    assert "STL" in response.json()["detail"]


def test_tiny_file_is_rejected(client: TestClient) -> None:
    response = _post(client, b"abc", "tiny.stl")
    assert response.status_code == 400


def test_undecodable_file_is_rejected(client: TestClient) -> None:
    response = _post(client, b"this is not a mesh at all", "junk.stl")
    assert response.status_code == 400
    assert response.json()["detail"].startswith("Invalid STL file format")


def test_degenerate_geometry_is_rejected(client: TestClient) -> None:
    response = _post(client, _binary_stl([[(3, 3, 3)] * 3]), "point.stl")
    assert response.status_code == 400
    assert "no geometry" in response.json()["detail"]


def test_missing_file_and_bad_size_are_validation_errors(client: TestClient) -> None:
    assert client.post("/api/screenshot-stl").status_code == 422
    response = _post(client, _binary_stl(TETRA), width=4)
    assert response.status_code == 422


def test_oversized_upload_is_rejected_while_streaming(client: TestClient, monkeypatch) -> None:
    monkeypatch.setattr(storage, "MAX_UPLOAD_BYTES", 150)
    monkeypatch.setattr(storage, "UPLOAD_CHUNK_SIZE", 50)
    data = _binary_stl(TETRA)
    assert len(data) > 150
    response = _post(client, data, "tetra.stl", width=32, height=32)
    assert response.status_code == 400
    assert response.json()["detail"].startswith("File too large")
