"""
Exception hierarchy for the preview pipeline.

``ParseError`` and ``GeometryError`` abort a whole request because no
preview is meaningful without geometry.  ``RenderError`` (and its
``RenderTimeout`` subclass) is always recovered per view by the
pipeline, which substitutes a labelled placeholder image.
``EncodeError`` indicates a programming error (a pixel buffer that does
not match the requested dimensions) and is allowed to propagate.
"""

from __future__ import annotations

from typing import List, Optional


class PreviewError(Exception):
    """Base class for all preview pipeline failures."""


class ParseError(PreviewError):
    """Raised when no decoding strategy could read a triangle from the input.

    Attributes:
        attempts: Names of the strategies that were tried, in order.
    """

    def __init__(self, message: str, attempts: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.attempts = list(attempts or [])


class GeometryError(PreviewError):
    """Raised for empty meshes or meshes collapsing to a single point."""


class RenderError(PreviewError):
    """Raised when a single view cannot be rasterised."""


class RenderTimeout(RenderError):
    """Raised when a view did not finish inside the batch time budget."""


class EncodeError(PreviewError):
    """Raised when a pixel buffer cannot be serialised."""
