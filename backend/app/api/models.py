"""
Pydantic data models for the STL preview API.

These models define the shapes of requests and responses used by the
backend.  Field names use the camelCase the web client already
consumes (``viewNames``, ``viewDescriptions``, ``jobId`` ...), so the
parallel arrays of the synchronous endpoint line up 1:1 with the
camera rig order.
"""

from __future__ import annotations

from typing import List, Any
from pydantic import BaseModel, Field
from typing import Literal


class CameraPoint(BaseModel):
    """Nominal camera location relative to the model centre."""

    x: float
    y: float
    z: float


class CameraView(BaseModel):
    """One entry of the fixed camera rig."""

    index: int = Field(..., description="1-based position of the view in the rig")
    name: str = Field(..., description="Short view identifier, e.g. 'iso_1'")
    description: str = Field(..., description="Human readable view name")
    position: CameraPoint = Field(..., description="Camera position used for the view")


class MeshBBox(BaseModel):
    """Axis‑aligned bounding box for a mesh."""

    min: List[float] = Field(..., description="Minimum x, y, z coordinates of the mesh")
    max: List[float] = Field(..., description="Maximum x, y, z coordinates of the mesh")


class RenderResponse(BaseModel):
    """Result of the synchronous screenshot endpoint."""

    success: bool = Field(default=True)
    screenshots: List[str] = Field(..., description="Base64 data URLs of the rendered BMP images")
    viewNames: List[str] = Field(..., description="Camera names, parallel to screenshots")
    viewDescriptions: List[str] = Field(
        ..., description="Camera descriptions, prefixed with 'Error: ' for placeholder images"
    )
    count: int = Field(..., description="Number of images returned (always 16)")
    filename: str = Field(..., description="Original filename provided by the client")
    triangles: int = Field(..., description="Number of triangles decoded from the file")
    strategy: str = Field(..., description="Decoding strategy that produced the mesh")
    failedViews: int = Field(default=0, description="Number of placeholder images in the batch")
    bbox: MeshBBox = Field(..., description="Bounding box of the decoded mesh")
    views: List[CameraView] = Field(..., description="Camera rig entries used for the images")


class ServiceStatus(BaseModel):
    """Status message returned by GET on the screenshot endpoint."""

    message: str
    endpoint: str
    method: str
    status: str
    timestamp: Any
    version: str


class JobInfo(BaseModel):
    """Metadata returned after an STL file is uploaded to the job API."""

    jobId: str = Field(..., description="Unique identifier for the preview job")
    filename: str = Field(..., description="Original filename provided by the client")
    status: str = Field(..., description="Initial job status")


class JobView(BaseModel):
    """A stored view of a completed job."""

    index: int = Field(..., description="0-based position of the view in the rig")
    name: str
    description: str
    url: str = Field(..., description="Address of the stored image")
    error: str | None = Field(default=None, description="Reason when the image is a placeholder")


class JobStatusInfo(BaseModel):
    """Progress and results of a preview job."""

    jobId: str
    filename: str
    status: Literal["pending", "processing", "completed", "failed"]
    progress: int = Field(..., ge=0, le=100, description="Completion percentage")
    message: str
    error: str | None = Field(default=None, description="Failure reason when status is 'failed'")
    width: int
    height: int
    projection: str
    triangles: int | None = Field(default=None, description="Decoded triangle count once known")
    strategy: str | None = Field(default=None, description="Decoding strategy once known")
    createdAt: Any = Field(..., description="Timestamp of when the job was created")
    views: List[JobView] = Field(default_factory=list)


class MeshResponse(BaseModel):
    """Decoded triangle soup of a job's upload."""

    jobId: str = Field(..., description="Identifier of the associated job")
    vertices: List[float] = Field(..., description="Flat list of vertex positions (x, y, z …), 9 per triangle")
    triangleCount: int = Field(..., description="Number of triangles")
    bbox: MeshBBox = Field(..., description="Bounding box around the mesh")
