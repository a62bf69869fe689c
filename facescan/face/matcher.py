"""Nearest-neighbour match decision over a gallery snapshot.

Pure and synchronous: no I/O, no persistence. Raising the alert for a match is
the caller's job (see `facescan.scanner`).
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

import numpy as np

from facescan import config
from facescan.errors import DimensionMismatchError
from facescan.face.extractor import ProbeResult
from facescan.face.gallery import Gallery
from facescan.utils.math import confidence_from_distance, euclidean_distances


@dataclass
class MatcherConfig:
    # Accept when min distance < threshold (strict).
    threshold: float = config.THRESHOLD


class NoMatchReason(str, Enum):
    NO_FACE = "no_face"
    EMPTY_GALLERY = "empty_gallery"
    NOT_CLOSE_ENOUGH = "not_close_enough"


@dataclass(frozen=True)
class NoMatch:
    reason: NoMatchReason
    # Only set for NOT_CLOSE_ENOUGH: the nearest identity that was rejected.
    nearest_id: Optional[str] = None
    distance: Optional[float] = None

    @property
    def is_match(self) -> bool:
        return False


@dataclass(frozen=True)
class Match:
    identity_id: str
    display_name: str
    contact_email: str
    reference_image_ref: str
    distance: float
    # Display heuristic derived from distance, not a probability.
    confidence: int

    @property
    def is_match(self) -> bool:
        return True


MatchDecision = Union[Match, NoMatch]


class EuclideanMatcher:
    def __init__(self, cfg: Optional[MatcherConfig] = None):
        self.config = cfg or MatcherConfig()

    def match(self, probe: ProbeResult, gallery: Gallery, threshold: Optional[float] = None) -> MatchDecision:
        """Return Match for the nearest gallery entry if it is closer than the threshold.

        Ties on the minimum distance resolve to the entry that comes first in
        gallery order.
        """
        # Checked before the gallery is touched at all.
        if not probe.detected:
            return NoMatch(NoMatchReason.NO_FACE)
        if probe.embedding is None:
            raise ValueError("Detected probe has no embedding")
        if len(gallery) == 0:
            return NoMatch(NoMatchReason.EMPTY_GALLERY)

        thr = float(self.config.threshold if threshold is None else threshold)
        vec = np.asarray(probe.embedding, dtype=np.float64).reshape(-1)
        if int(vec.shape[0]) != int(gallery.dimension):
            raise DimensionMismatchError(int(vec.shape[0]), int(gallery.dimension))

        dists = euclidean_distances(gallery.matrix, vec)
        # argmin returns the first occurrence of the minimum.
        best_row = int(np.argmin(dists))
        best_dist = float(dists[best_row])
        entry = gallery.entry_at(best_row)

        if best_dist < thr:
            return Match(
                identity_id=entry.identity_id,
                display_name=entry.display_name,
                contact_email=entry.contact_email,
                reference_image_ref=entry.reference_image_ref,
                distance=best_dist,
                confidence=confidence_from_distance(best_dist),
            )
        return NoMatch(NoMatchReason.NOT_CLOSE_ENOUGH, nearest_id=entry.identity_id, distance=best_dist)


def match(probe: ProbeResult, gallery: Gallery, threshold: float = config.THRESHOLD) -> MatchDecision:
    """Functional form of `EuclideanMatcher.match`."""
    return EuclideanMatcher(MatcherConfig(threshold=threshold)).match(probe, gallery)
