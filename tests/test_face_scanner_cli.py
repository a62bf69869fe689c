from __future__ import annotations

import json
import sys

from pathlib import Path

import cv2
import numpy as np
import pytest

repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

import face_scanner

from facescan.face.extractor import ProbeResult


class _DummyExtractor:
    """Embeds an image as [mean_pixel / 255, 0]; uniform images give exact distances."""

    def __init__(self, *args, **kwargs) -> None:
        self.loaded = False

    def load(self):
        self.loaded = True
        return self

    def extract(self, image):
        value = float(np.mean(image)) / 255.0
        if value >= 0.99:
            # Treat near-white images as "no face".
            return ProbeResult.undetected()
        return ProbeResult.from_embedding([value, 0.0])


def _write_png(path: Path, value: int) -> Path:
    ok, buf = cv2.imencode(".png", np.full((32, 32, 3), value, dtype=np.uint8))
    assert ok
    path.write_bytes(buf.tobytes())
    return path


@pytest.fixture
def directory_file(tmp_path: Path) -> Path:
    users = [
        {"id": "c1", "name": "Ada", "email": "ada@example.org", "role": "Citizen",
         "faceRef": str(_write_png(tmp_path / "c1.png", 0))},
        {"id": "c2", "name": "Bob", "email": "bob@example.org", "role": "Citizen",
         "faceRef": str(_write_png(tmp_path / "c2.png", 200))},
        {"id": "c3", "name": "Gone", "email": "", "role": "Citizen", "faceRef": str(tmp_path / "missing.png")},
        {"id": "o1", "name": "Officer", "role": "Officer", "faceRef": str(tmp_path / "c1.png")},
    ]
    fp = tmp_path / "users.json"
    fp.write_text(json.dumps(users), encoding="utf-8")
    return fp


def test_cli_match_writes_outcome_and_alert(tmp_path: Path, directory_file: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(face_scanner, "EmbeddingExtractor", _DummyExtractor)
    probe = _write_png(tmp_path / "probe.png", 10)
    out_json = tmp_path / "out" / "outcome.json"
    alerts = tmp_path / "alerts.jsonl"

    code = face_scanner.main(
        [
            "--directory", str(directory_file),
            "--image", str(probe),
            "--officer-id", "officer-1",
            "--alerts-jsonl", str(alerts),
            "--output-json", str(out_json),
        ]
    )

    assert code == 0
    outcome = json.loads(out_json.read_text(encoding="utf-8"))
    assert outcome["status"] == "match"
    assert outcome["decision"]["identity_id"] == "c1"
    assert outcome["alert_dispatched"] is True
    records = [json.loads(line) for line in alerts.read_text(encoding="utf-8").splitlines()]
    assert len(records) == 1
    assert records[0]["citizenId"] == "c1"
    assert records[0]["officerId"] == "officer-1"


def test_cli_no_face(tmp_path: Path, directory_file: Path, monkeypatch: pytest.MonkeyPatch, capsys):
    monkeypatch.setattr(face_scanner, "EmbeddingExtractor", _DummyExtractor)
    probe = _write_png(tmp_path / "blank.png", 255)

    code = face_scanner.main(["--directory", str(directory_file), "--image", str(probe)])

    assert code == 0
    printed = json.loads(capsys.readouterr().out)
    assert printed["status"] == "no_face"


def test_cli_missing_directory_fails(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(face_scanner, "EmbeddingExtractor", _DummyExtractor)
    probe = _write_png(tmp_path / "probe.png", 10)

    code = face_scanner.main(["--directory", str(tmp_path / "nope.json"), "--image", str(probe)])

    assert code == 2


def test_cli_threshold_override(tmp_path: Path, directory_file: Path, monkeypatch: pytest.MonkeyPatch, capsys):
    monkeypatch.setattr(face_scanner, "EmbeddingExtractor", _DummyExtractor)
    probe = _write_png(tmp_path / "probe.png", 10)

    code = face_scanner.main(
        ["--directory", str(directory_file), "--image", str(probe), "--threshold", "0.01"]
    )

    assert code == 0
    printed = json.loads(capsys.readouterr().out)
    assert printed["status"] == "no_match"
    assert printed["decision"]["nearest_id"] == "c1"
