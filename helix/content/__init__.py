"""
Content Module - Stitch content retrieval and buffering.

Components:
- schemas: pydantic models for stitches, questions and the manifest
- client: HTTP client for the content API
- bundled: first-stitch content and default manifest shipped with the package
- emergency: generated placeholder content
- buffer: layered cache with two-phase prefetch
"""

from helix.content.buffer import BufferStatus, ContentBuffer
from helix.content.client import ContentClient
from helix.content.schemas import ContentManifest, Question, StitchContent

__all__ = [
    "BufferStatus",
    "ContentBuffer",
    "ContentClient",
    "ContentManifest",
    "Question",
    "StitchContent",
]
