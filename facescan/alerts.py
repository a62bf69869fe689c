"""Alert records for match decisions and the sinks that receive them."""
from __future__ import annotations

import json
import random
import threading

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional

from facescan.face.matcher import Match
from facescan.utils.log import get_logger

logger = get_logger(__name__)

ALERT_STATUS_NEW = "New"


def generate_alert_id(rng: Optional[random.Random] = None) -> str:
    """Short display id of the form ALT-NNNN."""
    r = rng or random
    return f"ALT-{r.randint(0, 9999):04d}"


def sanitize_record(data: Dict) -> Dict:
    """Drop keys whose value is None; the alert store rejects undefined fields."""
    return {k: v for k, v in data.items() if v is not None}


@dataclass(frozen=True)
class AlertRecord:
    alert_id: str
    citizen_id: str
    citizen_name: str
    officer_id: str
    confidence: int
    timestamp: str
    details: str
    status: str = ALERT_STATUS_NEW
    distance: Optional[float] = None

    def to_dict(self) -> Dict:
        return sanitize_record(
            {
                "alertId": self.alert_id,
                "citizenId": self.citizen_id,
                "citizenName": self.citizen_name,
                "officerId": self.officer_id,
                "confidence": int(self.confidence),
                "status": self.status,
                "timestamp": self.timestamp,
                "details": self.details,
                "distance": None if self.distance is None else float(self.distance),
            }
        )


def build_match_alert(
    decision: Match,
    officer_id: str,
    now: Optional[datetime] = None,
    id_factory: Callable[[], str] = generate_alert_id,
) -> AlertRecord:
    ts = (now or datetime.now(timezone.utc)).isoformat()
    return AlertRecord(
        alert_id=id_factory(),
        citizen_id=decision.identity_id,
        citizen_name=decision.display_name,
        officer_id=str(officer_id or ""),
        confidence=int(decision.confidence),
        timestamp=ts,
        details=f"Face match detected via Officer Scan - Confidence: {int(decision.confidence)}%",
        distance=float(decision.distance),
    )


class AlertSink:
    """Receives plain alert dicts and records them durably."""

    def emit(self, record: Dict) -> None:
        raise NotImplementedError


class MemoryAlertSink(AlertSink):
    def __init__(self):
        self.records: List[Dict] = []
        self._lock = threading.Lock()

    def emit(self, record: Dict) -> None:
        with self._lock:
            self.records.append(dict(record))


class JsonlAlertSink(AlertSink):
    """Appends one JSON object per line."""

    def __init__(self, path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def emit(self, record: Dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(record, ensure_ascii=False)
        with self._lock:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
        logger.info(f"Alert {record.get('alertId', '?')} written to {self.path}")
