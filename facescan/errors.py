"""Exceptions raised by the face scanning pipeline.

Not every unhappy path is an exception: a frame without a face and an empty
gallery are normal outcomes reported through ``NoMatch``.
"""
from __future__ import annotations

from typing import Optional


class FaceScanError(Exception):
    """Base class for scanner errors."""


class ModelNotReadyError(FaceScanError):
    """The embedding model is not loaded (or failed to load)."""


class ImageDecodeError(FaceScanError):
    """An image could not be decoded or has an unusable layout."""


class DimensionMismatchError(FaceScanError):
    """Probe and gallery embeddings have different lengths (model version skew)."""

    def __init__(self, probe_dim: int, gallery_dim: int, identity_id: Optional[str] = None):
        self.probe_dim = int(probe_dim)
        self.gallery_dim = int(gallery_dim)
        self.identity_id = identity_id
        where = f" (identity {identity_id})" if identity_id else ""
        super().__init__(f"Embedding dimension mismatch: {self.probe_dim} vs {self.gallery_dim}{where}")


class ReferenceImageUnavailable(FaceScanError):
    """A candidate's reference image could not be fetched or decoded."""

    def __init__(self, ref: str, reason: str = ""):
        self.ref = ref
        self.reason = reason
        msg = f"Reference image unavailable: {ref}"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)


class GalleryBuildFailure(FaceScanError):
    """The identity directory could not be read, so no gallery was built."""


class BuildCancelled(FaceScanError):
    """A gallery build was cancelled before completion."""


class ScanCancelled(FaceScanError):
    """A scan was cancelled before a decision was reached."""
