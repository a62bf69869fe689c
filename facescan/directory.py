"""Identity directory adapters.

The directory is read-only from the scanner's point of view: it supplies the
candidate identities whose reference photos make up the gallery.
"""
from __future__ import annotations

import json

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Mapping, Optional

from facescan import config
from facescan.errors import GalleryBuildFailure
from facescan.utils.log import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Candidate:
    identity_id: str
    display_name: str = ""
    contact_email: str = ""
    reference_image_ref: Optional[str] = None


class IdentityDirectory:
    """Source of gallery candidates."""

    def list_candidates(self) -> List[Candidate]:
        raise NotImplementedError


class StaticDirectory(IdentityDirectory):
    """In-memory directory, mostly for tests and embedding in other tools."""

    def __init__(self, candidates: Iterable[Candidate]):
        self._candidates = list(candidates)

    def list_candidates(self) -> List[Candidate]:
        return list(self._candidates)


def candidate_from_record(record: Mapping) -> Optional[Candidate]:
    """Map a user record (`id`/`uid`, `name`, `email`, `faceRef`) to a Candidate."""
    identity_id = record.get("id") or record.get("uid")
    if not identity_id:
        return None
    ref = record.get("faceRef")
    if ref is not None and not isinstance(ref, str):
        logger.warning(f"Ignoring non-string faceRef for {identity_id}: {type(ref).__name__}")
        ref = None
    return Candidate(
        identity_id=str(identity_id),
        display_name=str(record.get("name") or ""),
        contact_email=str(record.get("email") or ""),
        reference_image_ref=ref or None,
    )


class JsonDirectory(IdentityDirectory):
    """Reads user records from a JSON file.

    Accepts either a list of records or an object with a `users` list. Only
    records whose `role` equals `role` and that carry a `faceRef` are returned.
    """

    def __init__(self, path, role: Optional[str] = config.CANDIDATE_ROLE):
        self.path = Path(path)
        self.role = role

    def _read_records(self) -> list:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise GalleryBuildFailure(f"Cannot read identity directory {self.path}: {e}") from e

        if isinstance(data, dict):
            data = data.get("users")
        if not isinstance(data, list):
            raise GalleryBuildFailure(f"Identity directory {self.path} has no user list")
        return data

    def list_candidates(self) -> List[Candidate]:
        out: List[Candidate] = []
        for record in self._read_records():
            if not isinstance(record, dict):
                continue
            if self.role and record.get("role") != self.role:
                continue
            if record.get("faceRef") is None:
                continue
            cand = candidate_from_record(record)
            if cand is None:
                logger.warning(f"Skipping directory record without id: {record.get('name', '?')}")
                continue
            out.append(cand)
        logger.info(f"Identity directory {self.path.name}: {len(out)} candidates")
        return out
