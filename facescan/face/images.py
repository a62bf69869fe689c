"""Image decoding and reference image loading.

Reference images come from the identity directory as URLs (http/https) or, for
local setups, as file paths / ``file://`` URIs.
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

import cv2
import numpy as np
import requests

from facescan import config
from facescan.errors import ImageDecodeError, ReferenceImageUnavailable
from facescan.utils.log import get_logger

logger = get_logger(__name__)


def decode_image(raw: bytes) -> np.ndarray:
    """Decode encoded image bytes (JPEG/PNG/...) into a BGR uint8 array."""
    if not raw:
        raise ImageDecodeError("Empty image payload")
    img = cv2.imdecode(np.frombuffer(raw, np.uint8), cv2.IMREAD_COLOR)
    if img is None:
        raise ImageDecodeError("Invalid image payload")
    return img


def read_image_file(path) -> np.ndarray:
    """Read an image file into a BGR array.

    Uses np.fromfile + imdecode instead of cv2.imread so non-ASCII paths work.
    """
    p = Path(path)
    if not p.is_file():
        raise FileNotFoundError(f"Image not found: {p}")
    return decode_image(np.fromfile(str(p), dtype=np.uint8).tobytes())


class ImageLoader:
    """Loads a reference image by its ref, raising ReferenceImageUnavailable on any failure."""

    def __init__(
        self,
        timeout: float = config.FETCH_TIMEOUT,
        max_mb: int = config.IMG_MAX_MB,
        session: Optional[requests.Session] = None,
    ):
        self.timeout = float(timeout)
        self.max_bytes = int(max_mb) * 1024 * 1024
        self.session = session or requests.Session()

    def __call__(self, ref: str) -> np.ndarray:
        return self.load(ref)

    def load(self, ref: str) -> np.ndarray:
        if not isinstance(ref, str):
            raise ReferenceImageUnavailable(repr(ref), "reference is not a string")
        if not ref:
            raise ReferenceImageUnavailable(ref, "empty reference")

        parsed = urlparse(ref)
        if parsed.scheme in ("http", "https"):
            raw = self._fetch(ref)
        elif parsed.scheme == "file":
            raw = self._read(Path(unquote(parsed.path)), ref)
        else:
            raw = self._read(Path(ref), ref)

        try:
            return decode_image(raw)
        except ImageDecodeError as e:
            raise ReferenceImageUnavailable(ref, str(e)) from e

    def _fetch(self, url: str) -> bytes:
        try:
            resp = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise ReferenceImageUnavailable(url, f"request failed: {e}") from e
        if resp.status_code != 200:
            raise ReferenceImageUnavailable(url, f"HTTP {resp.status_code}")
        raw = resp.content
        if len(raw) > self.max_bytes:
            raise ReferenceImageUnavailable(url, f"image exceeds {self.max_bytes // (1024 * 1024)}MB")
        return raw

    def _read(self, path: Path, ref: str) -> bytes:
        if not path.is_file():
            raise ReferenceImageUnavailable(ref, "file not found")
        try:
            raw = path.read_bytes()
        except OSError as e:
            raise ReferenceImageUnavailable(ref, str(e)) from e
        if len(raw) > self.max_bytes:
            raise ReferenceImageUnavailable(ref, f"image exceeds {self.max_bytes // (1024 * 1024)}MB")
        return raw
