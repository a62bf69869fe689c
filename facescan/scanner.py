"""Scanning session: owns the current gallery snapshot and runs scans against it.

Concurrency model:
- The gallery is replaced as a whole (build, then swap); scans read whatever
  snapshot was current when they started.
- Rebuilds are serialised by a lock. A second rebuild request waits for the
  running one, then reuses its result unless `force=True`.
- `cancel_rebuild()` aborts a running build; the previous snapshot stays.
"""
from __future__ import annotations

import threading

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

import numpy as np

from facescan import config
from facescan.alerts import AlertSink, build_match_alert
from facescan.directory import IdentityDirectory
from facescan.errors import BuildCancelled, GalleryBuildFailure, ScanCancelled
from facescan.face.extractor import ProbeResult
from facescan.face.gallery import Gallery, GalleryBuilder, GalleryConfig
from facescan.face.matcher import EuclideanMatcher, MatchDecision, MatcherConfig, NoMatchReason
from facescan.utils.log import get_logger
from facescan.utils.serializer import serialize_decision, serialize_probe

logger = get_logger(__name__)


class ScanStatus(str, Enum):
    MATCH = "match"
    NO_MATCH = "no_match"
    NO_FACE = "no_face"
    NO_REFERENCE_DATA = "no_reference_data"


STATUS_MESSAGES = {
    ScanStatus.MATCH: "Match found. Alert dispatched to dashboard.",
    ScanStatus.NO_MATCH: "Scanned, no match found.",
    ScanStatus.NO_FACE: "No face detected. Please position your face in the camera.",
    ScanStatus.NO_REFERENCE_DATA: "No reference data available.",
}

_REASON_STATUS = {
    NoMatchReason.NO_FACE: ScanStatus.NO_FACE,
    NoMatchReason.EMPTY_GALLERY: ScanStatus.NO_REFERENCE_DATA,
    NoMatchReason.NOT_CLOSE_ENOUGH: ScanStatus.NO_MATCH,
}


@dataclass
class ScannerConfig:
    threshold: float = config.THRESHOLD
    # Rebuild the gallery on every scan that finds a face (always-fresh, O(candidates) per scan).
    rebuild_on_scan: bool = config.REBUILD_ON_SCAN


@dataclass
class ScanOutcome:
    status: ScanStatus
    decision: MatchDecision
    probe: ProbeResult
    alert: Optional[Dict] = None
    alert_dispatched: bool = False
    message: str = ""

    def to_dict(self, frame_shape=None) -> Dict:
        return {
            "status": self.status.value,
            "message": self.message,
            "decision": serialize_decision(self.decision),
            "probe": serialize_probe(self.probe, frame_shape=frame_shape),
            "alert": self.alert,
            "alert_dispatched": bool(self.alert_dispatched),
        }


class FaceScanner:
    def __init__(
        self,
        directory: IdentityDirectory,
        extractor,
        alert_sink: Optional[AlertSink] = None,
        image_loader=None,
        cfg: Optional[ScannerConfig] = None,
        gallery_cfg: Optional[GalleryConfig] = None,
    ):
        self.directory = directory
        self.extractor = extractor
        self.alert_sink = alert_sink
        self.config = cfg or ScannerConfig()
        self.builder = GalleryBuilder(extractor, image_loader=image_loader, cfg=gallery_cfg)
        self.matcher = EuclideanMatcher(MatcherConfig(threshold=float(self.config.threshold)))

        self._gallery: Optional[Gallery] = None
        self._rebuild_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._build_cancel: Optional[threading.Event] = None

    def prepare(self) -> "FaceScanner":
        """Load the extractor's models if it supports lazy loading."""
        load = getattr(self.extractor, "load", None)
        if callable(load):
            load()
        return self

    @property
    def gallery(self) -> Optional[Gallery]:
        """Current snapshot, or None if no build has completed yet."""
        return self._gallery

    @property
    def is_rebuilding(self) -> bool:
        with self._state_lock:
            return self._build_cancel is not None

    def rebuild_gallery(self, force: bool = False) -> Gallery:
        """Return the current gallery, building it first if missing or if `force`.

        Raises GalleryBuildFailure if the directory cannot be read and
        BuildCancelled if `cancel_rebuild()` was called; in both cases the
        previous snapshot is left in place.
        """
        with self._rebuild_lock:
            current = self._gallery
            if current is not None and not force:
                return current

            cancel = threading.Event()
            with self._state_lock:
                self._build_cancel = cancel
            try:
                try:
                    candidates = self.directory.list_candidates()
                except GalleryBuildFailure:
                    logger.error("Identity directory unavailable; gallery not rebuilt")
                    raise
                except Exception as e:
                    logger.error(f"Identity directory unavailable; gallery not rebuilt: {e}")
                    raise GalleryBuildFailure(f"Identity directory unavailable: {e}") from e

                gallery = self.builder.build(candidates, cancel_event=cancel)

                with self._state_lock:
                    if cancel.is_set():
                        raise BuildCancelled("Gallery build cancelled")
                    self._gallery = gallery
                return gallery
            finally:
                with self._state_lock:
                    self._build_cancel = None

    def cancel_rebuild(self) -> bool:
        """Cancel the running rebuild, if any. Returns True if one was running."""
        with self._state_lock:
            if self._build_cancel is None:
                return False
            self._build_cancel.set()
            return True

    def scan(
        self,
        frame: np.ndarray,
        officer_id: str = "",
        cancel_event: Optional[threading.Event] = None,
    ) -> ScanOutcome:
        """Extract a probe from `frame`, match it, and dispatch an alert on a match."""
        if cancel_event is not None and cancel_event.is_set():
            raise ScanCancelled("Scan cancelled")

        probe = self.extractor.extract(frame)
        if cancel_event is not None and cancel_event.is_set():
            raise ScanCancelled("Scan cancelled")

        if probe.detected and self.config.rebuild_on_scan:
            self.rebuild_gallery(force=True)

        gallery = self._gallery if self._gallery is not None else Gallery.empty()
        decision = self.matcher.match(probe, gallery)

        if not decision.is_match:
            status = _REASON_STATUS[decision.reason]
            logger.info(f"Scan by {officer_id or '?'}: {status.value} (gallery={len(gallery)})")
            return ScanOutcome(status=status, decision=decision, probe=probe, message=STATUS_MESSAGES[status])

        alert = build_match_alert(decision, officer_id).to_dict()
        dispatched = False
        if self.alert_sink is not None:
            try:
                self.alert_sink.emit(alert)
                dispatched = True
            except Exception as e:
                logger.error(f"Error creating alert {alert['alertId']}: {e}")

        logger.info(
            f"Scan by {officer_id or '?'}: match {decision.identity_id} "
            f"(distance={decision.distance:.4f}, confidence={decision.confidence}%)"
        )
        message = STATUS_MESSAGES[ScanStatus.MATCH] if dispatched else "Match found. Alert was not dispatched."
        return ScanOutcome(
            status=ScanStatus.MATCH,
            decision=decision,
            probe=probe,
            alert=alert,
            alert_dispatched=dispatched,
            message=message,
        )
