"""Embedding extractor: InsightFace detection + recognition behind a small contract.

`EmbeddingExtractor.extract(image)` returns a `ProbeResult`. A frame without a
usable face is a normal outcome (`detected=False`); only infrastructure problems
(model not loaded, unreadable image) raise.
"""
from __future__ import annotations

import io

from contextlib import redirect_stderr, redirect_stdout
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import cv2
import numpy as np

from facescan import config
from facescan.errors import ImageDecodeError, ModelNotReadyError
from facescan.face.images import decode_image
from facescan.utils.log import get_logger, suppress_fds
from facescan.utils.math import l2_normalize

logger = get_logger(__name__)

# In-process model cache; building FaceAnalysis is slow (several seconds per instance).
# Key must cover everything that changes the output: model name/root, providers, ctx_id, det_size.
_FACEAPP_CACHE: Dict[Tuple, Any] = {}


@dataclass(frozen=True, eq=False)
class ProbeResult:
    """Outcome of one extraction. `embedding` is None whenever `detected` is False."""

    detected: bool
    embedding: Optional[np.ndarray] = None
    bbox: Optional[Tuple[float, float, float, float]] = None
    det_score: float = 0.0
    face_count: int = 0

    @classmethod
    def undetected(cls, face_count: int = 0) -> "ProbeResult":
        return cls(detected=False, face_count=int(face_count))

    @classmethod
    def from_embedding(cls, embedding, det_score: float = 1.0) -> "ProbeResult":
        """Build a detected probe from a precomputed embedding."""
        vec = np.array(embedding, dtype=np.float64).reshape(-1)
        vec.setflags(write=False)
        return cls(detected=True, embedding=vec, det_score=float(det_score), face_count=1)

    @property
    def dimension(self) -> int:
        return 0 if self.embedding is None else int(self.embedding.shape[0])


@dataclass
class ExtractorConfig:
    model_name: str = config.MODEL_NAME
    # Tried first; on failure we fall back to the InsightFace default root (downloads if needed).
    model_root: str = config.MODEL_ROOT
    det_size: int = config.DET_SIZE
    det_thresh: float = config.DET_THRESH
    device: str = config.DEVICE
    # L2-normalize embeddings so Euclidean distances are on a fixed scale.
    normalize: bool = True


def _resolve_device(device: str) -> str:
    if device != "auto":
        return device
    try:
        # Lazy import: only needed to probe CUDA.
        import torch

        return "gpu" if torch.cuda.is_available() else "cpu"
    except Exception:
        return "cpu"


def _face_area(face) -> float:
    try:
        x1, y1, x2, y2 = [float(v) for v in np.asarray(face.bbox).reshape(-1)[:4]]
    except Exception:
        return 0.0
    return max(0.0, x2 - x1) * max(0.0, y2 - y1)


class EmbeddingExtractor:
    """Wraps an InsightFace `FaceAnalysis` app.

    `app` may be injected (anything with `.get(image) -> list[face]` where faces
    expose `bbox`, `det_score` and `embedding`); otherwise `load()` builds one.
    """

    def __init__(self, cfg: Optional[ExtractorConfig] = None, app: Any = None):
        self.config = cfg or ExtractorConfig()
        self._app = app
        self.ctx_id = -1
        self.providers: List[str] = []

    @property
    def ready(self) -> bool:
        return self._app is not None

    def load(self) -> "EmbeddingExtractor":
        """Load the detection + recognition models (idempotent)."""
        if self._app is not None:
            return self

        device = _resolve_device(self.config.device)
        if device == "gpu":
            self.providers = ["CUDAExecutionProvider", "CPUExecutionProvider"]
            self.ctx_id = 0
        else:
            self.providers = ["CPUExecutionProvider"]
            self.ctx_id = -1

        roots: List[Optional[str]] = []
        if self.config.model_root:
            roots.append(self.config.model_root)
        roots.append(None)

        last_error: Optional[Exception] = None
        for root in roots:
            try:
                self._app = self._create_app(root)
                return self
            except Exception as e:
                last_error = e
                if root is not None:
                    logger.warning(f"Local model load failed from {root}: {e}; trying default model root")
        logger.error(f"Model initialisation failed: {last_error}")
        raise ModelNotReadyError(f"Failed to load face models '{self.config.model_name}': {last_error}")

    def _create_app(self, root: Optional[str]):
        det_size = (int(self.config.det_size), int(self.config.det_size))
        key = (
            str(self.config.model_name),
            str(root or ""),
            tuple(self.providers),
            int(self.ctx_id),
            det_size,
            float(self.config.det_thresh),
        )
        cached = _FACEAPP_CACHE.get(key)
        if cached is not None:
            return cached

        # Lazy import: keeps the decision modules importable without the model runtime.
        from insightface.app import FaceAnalysis

        kwargs = {
            "name": self.config.model_name,
            "providers": self.providers,
            "allowed_modules": ["detection", "recognition"],
        }
        if root:
            kwargs["root"] = root
        with suppress_fds():
            app = FaceAnalysis(**kwargs)

        buf = io.StringIO()
        with redirect_stdout(buf), redirect_stderr(buf):
            app.prepare(ctx_id=self.ctx_id, det_thresh=float(self.config.det_thresh), det_size=det_size)
        logger.info(f"Loaded InsightFace model: {self.config.model_name} (ctx_id={self.ctx_id})")

        _FACEAPP_CACHE[key] = app
        return app

    def _as_bgr(self, image) -> np.ndarray:
        if image is None:
            raise ImageDecodeError("No image given")
        if not isinstance(image, np.ndarray):
            raise ImageDecodeError(f"Expected a numpy image, got {type(image).__name__}")
        if image.size == 0:
            raise ImageDecodeError("Empty image")
        if image.dtype != np.uint8:
            raise ImageDecodeError(f"Unsupported image dtype {image.dtype}")
        # Conversions allocate new arrays; the caller's frame is never written to.
        if image.ndim == 2:
            return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
        if image.ndim == 3 and image.shape[2] == 4:
            return cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)
        if image.ndim == 3 and image.shape[2] == 3:
            return image
        raise ImageDecodeError(f"Unsupported image shape {image.shape}")

    def _most_prominent(self, faces: List) -> Any:
        # Highest detection score; larger box breaks ties; then detector order.
        best = None
        best_key = None
        for face in faces:
            key = (float(getattr(face, "det_score", 0.0) or 0.0), _face_area(face))
            if best_key is None or key > best_key:
                best = face
                best_key = key
        return best

    def extract(self, image: np.ndarray) -> ProbeResult:
        """Detect the most prominent face in a BGR image and return its embedding."""
        if self._app is None:
            raise ModelNotReadyError("Extractor not loaded. Call load() first.")

        img = self._as_bgr(image)
        faces = self._app.get(img) or []
        faces = [f for f in faces if getattr(f, "embedding", None) is not None]
        if not faces:
            return ProbeResult.undetected()

        best = self._most_prominent(faces)
        emb = np.array(best.embedding, dtype=np.float64).reshape(-1)
        if self.config.normalize:
            emb = l2_normalize(emb)
        emb.setflags(write=False)

        bbox = None
        if getattr(best, "bbox", None) is not None:
            bbox = tuple(float(v) for v in np.asarray(best.bbox).reshape(-1)[:4])
        return ProbeResult(
            detected=True,
            embedding=emb,
            bbox=bbox,
            det_score=float(getattr(best, "det_score", 0.0) or 0.0),
            face_count=len(faces),
        )

    def extract_bytes(self, raw: bytes) -> ProbeResult:
        return self.extract(decode_image(raw))
