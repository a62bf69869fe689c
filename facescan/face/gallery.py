from __future__ import annotations

import threading

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence

import numpy as np

from facescan import config
from facescan.directory import Candidate
from facescan.errors import BuildCancelled, DimensionMismatchError, ReferenceImageUnavailable
from facescan.utils.log import get_logger

logger = get_logger(__name__)


@dataclass
class GalleryConfig:
    # Process at most this many candidates per build (directory order); None = all.
    # Candidates beyond the bound never become matchable until the bound is raised.
    max_candidates: Optional[int] = config.MAX_CANDIDATES


@dataclass(frozen=True, eq=False)
class GalleryEntry:
    identity_id: str
    display_name: str
    contact_email: str
    reference_image_ref: str
    embedding: np.ndarray


@dataclass
class GalleryStats:
    candidates: int = 0
    entries: int = 0
    skipped_no_reference: int = 0
    skipped_duplicate: int = 0
    skipped_over_limit: int = 0
    skipped_unavailable: int = 0
    skipped_no_face: int = 0
    skipped_ids: List[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "candidates": self.candidates,
            "entries": self.entries,
            "skipped_no_reference": self.skipped_no_reference,
            "skipped_duplicate": self.skipped_duplicate,
            "skipped_over_limit": self.skipped_over_limit,
            "skipped_unavailable": self.skipped_unavailable,
            "skipped_no_face": self.skipped_no_face,
        }


class Gallery(Mapping):
    """Read-only snapshot: identity id -> GalleryEntry.

    Iteration order is insertion order. The stacked (N, D) embedding matrix is
    built once so matching is a single vectorized pass.
    """

    def __init__(self, entries: Iterable[GalleryEntry] = (), stats: Optional[GalleryStats] = None):
        index: Dict[str, GalleryEntry] = {}
        dim = None
        for entry in entries:
            if entry.identity_id in index:
                raise ValueError(f"Duplicate identity id in gallery: {entry.identity_id}")
            vec = np.asarray(entry.embedding).reshape(-1)
            if dim is None:
                dim = int(vec.shape[0])
            elif int(vec.shape[0]) != dim:
                raise DimensionMismatchError(int(vec.shape[0]), dim, entry.identity_id)
            index[entry.identity_id] = entry

        self._index = index
        self._ids = tuple(index.keys())
        if index:
            mat = np.vstack([np.asarray(e.embedding, dtype=np.float64).reshape(1, -1) for e in index.values()])
        else:
            mat = np.zeros((0, 0), dtype=np.float64)
        mat.setflags(write=False)
        self._matrix = mat
        self._dim = 0 if dim is None else dim
        self.stats = stats or GalleryStats(candidates=len(index), entries=len(index))

    @classmethod
    def empty(cls) -> "Gallery":
        return cls(())

    @classmethod
    def from_embeddings(cls, embeddings: Dict[str, Sequence[float]]) -> "Gallery":
        """Gallery keyed by id with blank contact fields; handy for fixtures and tooling."""
        entries = []
        for identity_id, emb in embeddings.items():
            vec = np.array(emb, dtype=np.float64).reshape(-1)
            vec.setflags(write=False)
            entries.append(GalleryEntry(str(identity_id), str(identity_id), "", "", vec))
        return cls(entries)

    def __getitem__(self, identity_id: str) -> GalleryEntry:
        return self._index[identity_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._ids)

    def __len__(self) -> int:
        return len(self._ids)

    @property
    def matrix(self) -> np.ndarray:
        return self._matrix

    @property
    def dimension(self) -> int:
        return self._dim

    def entry_at(self, row: int) -> GalleryEntry:
        return self._index[self._ids[row]]


class GalleryBuilder:
    """Turns directory candidates into a Gallery by embedding each reference photo.

    A candidate whose photo is missing, unreadable or faceless is skipped with a
    warning; it never aborts the build.
    """

    def __init__(
        self,
        extractor,
        image_loader: Optional[Callable[[str], np.ndarray]] = None,
        cfg: Optional[GalleryConfig] = None,
    ):
        self.extractor = extractor
        if image_loader is None:
            from facescan.face.images import ImageLoader

            image_loader = ImageLoader()
        self.image_loader = image_loader
        self.config = cfg or GalleryConfig()

    def _select(self, candidates: Sequence[Candidate], stats: GalleryStats) -> List[Candidate]:
        selected: List[Candidate] = []
        seen = set()
        for cand in candidates:
            if not cand.reference_image_ref:
                stats.skipped_no_reference += 1
                stats.skipped_ids.append(cand.identity_id)
                logger.warning(f"Skipping {cand.identity_id}: no reference image")
                continue
            if cand.identity_id in seen:
                stats.skipped_duplicate += 1
                logger.warning(f"Skipping duplicate identity id {cand.identity_id}")
                continue
            seen.add(cand.identity_id)
            selected.append(cand)

        limit = self.config.max_candidates
        if limit is not None and len(selected) > int(limit):
            dropped = selected[int(limit) :]
            stats.skipped_over_limit = len(dropped)
            stats.skipped_ids.extend(c.identity_id for c in dropped)
            logger.warning(
                f"max_candidates={limit}: {len(dropped)} candidates not processed and will not be matchable"
            )
            selected = selected[: int(limit)]
        return selected

    def build(self, candidates: Iterable[Candidate], cancel_event: Optional[threading.Event] = None) -> Gallery:
        """Build a fresh Gallery. Raises BuildCancelled if `cancel_event` is set mid-build."""
        candidates = list(candidates)
        stats = GalleryStats(candidates=len(candidates))
        logger.info(f"Building gallery from {len(candidates)} candidates...")

        entries: List[GalleryEntry] = []
        for cand in self._select(candidates, stats):
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Gallery build cancelled")
                raise BuildCancelled("Gallery build cancelled")

            try:
                image = self.image_loader(cand.reference_image_ref)
            except ReferenceImageUnavailable as e:
                stats.skipped_unavailable += 1
                stats.skipped_ids.append(cand.identity_id)
                logger.warning(f"Skipping {cand.identity_id} ({cand.display_name}): {e}")
                continue

            probe = self.extractor.extract(image)
            if not probe.detected:
                stats.skipped_no_face += 1
                stats.skipped_ids.append(cand.identity_id)
                logger.warning(f"Skipping {cand.identity_id} ({cand.display_name}): no face in reference image")
                continue

            entries.append(
                GalleryEntry(
                    identity_id=cand.identity_id,
                    display_name=cand.display_name,
                    contact_email=cand.contact_email,
                    reference_image_ref=cand.reference_image_ref,
                    embedding=probe.embedding,
                )
            )

        if cancel_event is not None and cancel_event.is_set():
            logger.info("Gallery build cancelled")
            raise BuildCancelled("Gallery build cancelled")

        stats.entries = len(entries)
        gallery = Gallery(entries, stats=stats)
        logger.info(f"Gallery built: {len(gallery)} entries from {stats.candidates} candidates")
        return gallery
