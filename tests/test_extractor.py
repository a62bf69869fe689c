from __future__ import annotations

import sys

from pathlib import Path
from types import SimpleNamespace

import cv2
import numpy as np
import pytest

repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from facescan.errors import ImageDecodeError, ModelNotReadyError
from facescan.face import extractor as extractor_mod
from facescan.face.extractor import EmbeddingExtractor, ExtractorConfig


def _face(bbox, det_score, embedding):
    return SimpleNamespace(
        bbox=np.asarray(bbox, dtype=np.float32),
        det_score=det_score,
        embedding=np.asarray(embedding, dtype=np.float32),
    )


class _DummyFaceApp:
    """Stands in for insightface.app.FaceAnalysis."""

    def __init__(self, faces=None):
        self.faces = faces or []
        self.seen = []

    def get(self, img):
        self.seen.append(img)
        return list(self.faces)


def _frame(h: int = 48, w: int = 64) -> np.ndarray:
    rng = np.random.default_rng(0)
    return rng.integers(0, 255, size=(h, w, 3), dtype=np.uint8)


def test_extract_without_loaded_model_raises():
    with pytest.raises(ModelNotReadyError):
        EmbeddingExtractor().extract(_frame())


def test_no_face_is_not_an_error():
    ext = EmbeddingExtractor(app=_DummyFaceApp([]))

    probe = ext.extract(_frame())

    assert probe.detected is False
    assert probe.embedding is None
    assert probe.face_count == 0


def test_most_prominent_face_wins():
    faces = [
        _face([0, 0, 10, 10], 0.70, [1.0, 0.0, 0.0]),
        _face([5, 5, 40, 40], 0.95, [0.0, 3.0, 4.0]),
        _face([0, 0, 60, 40], 0.60, [0.0, 0.0, 1.0]),
    ]
    ext = EmbeddingExtractor(app=_DummyFaceApp(faces))

    probe = ext.extract(_frame())

    assert probe.detected
    assert probe.face_count == 3
    assert probe.det_score == pytest.approx(0.95)
    assert probe.bbox == (5.0, 5.0, 40.0, 40.0)
    np.testing.assert_allclose(probe.embedding, [0.0, 0.6, 0.8])


def test_equal_scores_prefer_larger_face():
    faces = [
        _face([0, 0, 10, 10], 0.9, [1.0, 0.0]),
        _face([0, 0, 30, 30], 0.9, [0.0, 1.0]),
    ]
    probe = EmbeddingExtractor(app=_DummyFaceApp(faces)).extract(_frame())

    np.testing.assert_allclose(probe.embedding, [0.0, 1.0])


def test_embedding_normalization_can_be_disabled():
    faces = [_face([0, 0, 10, 10], 0.9, [3.0, 4.0])]
    ext = EmbeddingExtractor(ExtractorConfig(normalize=False), app=_DummyFaceApp(faces))

    probe = ext.extract(_frame())

    np.testing.assert_allclose(probe.embedding, [3.0, 4.0])
    assert not probe.embedding.flags.writeable


def test_input_frame_is_not_modified():
    frame = _frame()
    before = frame.copy()
    app = _DummyFaceApp([_face([0, 0, 10, 10], 0.9, [1.0, 2.0])])

    EmbeddingExtractor(app=app).extract(frame)

    np.testing.assert_array_equal(frame, before)


def test_repeated_extraction_is_stable():
    app = _DummyFaceApp([_face([0, 0, 10, 10], 0.9, [0.5, 0.25, 0.125])])
    ext = EmbeddingExtractor(app=app)
    frame = _frame()

    a = ext.extract(frame)
    b = ext.extract(frame)

    np.testing.assert_array_equal(a.embedding, b.embedding)


def test_grayscale_and_bgra_frames_are_converted():
    app = _DummyFaceApp([])
    ext = EmbeddingExtractor(app=app)

    ext.extract(np.zeros((20, 20), dtype=np.uint8))
    ext.extract(np.zeros((20, 20, 4), dtype=np.uint8))

    assert [img.shape for img in app.seen] == [(20, 20, 3), (20, 20, 3)]


@pytest.mark.parametrize(
    "bad",
    [
        None,
        "not an image",
        np.zeros((0, 0, 3), dtype=np.uint8),
        np.zeros((10, 10, 3), dtype=np.float32),
        np.zeros((10, 10, 2), dtype=np.uint8),
    ],
)
def test_unusable_images_raise(bad):
    ext = EmbeddingExtractor(app=_DummyFaceApp([]))

    with pytest.raises(ImageDecodeError):
        ext.extract(bad)


def test_extract_bytes():
    ok, buf = cv2.imencode(".png", _frame())
    assert ok
    app = _DummyFaceApp([_face([0, 0, 10, 10], 0.9, [1.0, 0.0])])
    ext = EmbeddingExtractor(app=app)

    assert ext.extract_bytes(buf.tobytes()).detected
    with pytest.raises(ImageDecodeError):
        ext.extract_bytes(b"definitely not a jpeg")


def test_load_falls_back_to_default_model_root(monkeypatch: pytest.MonkeyPatch):
    attempts = []

    def _create_app(self, root):
        attempts.append(root)
        if root is not None:
            raise FileNotFoundError(f"no models under {root}")
        return _DummyFaceApp([])

    monkeypatch.setattr(EmbeddingExtractor, "_create_app", _create_app)
    ext = EmbeddingExtractor(ExtractorConfig(model_root="/nonexistent/models", device="cpu"))

    ext.load()

    assert ext.ready
    assert attempts == ["/nonexistent/models", None]
    assert ext.providers == ["CPUExecutionProvider"]


def test_load_failure_raises_model_not_ready(monkeypatch: pytest.MonkeyPatch):
    def _create_app(self, root):
        raise RuntimeError("download failed")

    monkeypatch.setattr(EmbeddingExtractor, "_create_app", _create_app)
    ext = EmbeddingExtractor(ExtractorConfig(model_root="", device="cpu"))

    with pytest.raises(ModelNotReadyError):
        ext.load()
    assert not ext.ready


def test_gpu_device_selects_cuda_provider(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(EmbeddingExtractor, "_create_app", lambda self, root: _DummyFaceApp([]))
    ext = EmbeddingExtractor(ExtractorConfig(device="gpu"))

    ext.load()

    assert ext.ctx_id == 0
    assert ext.providers[0] == "CUDAExecutionProvider"


def test_explicit_device_is_not_probed():
    assert extractor_mod._resolve_device("cpu") == "cpu"
    assert extractor_mod._resolve_device("gpu") == "gpu"
