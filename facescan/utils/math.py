from __future__ import annotations

import math

import numpy as np


def l2_normalize(vec: np.ndarray, eps: float = 1e-12) -> np.ndarray:
    """L2-normalize a vector (or 2D array row-wise) safely."""
    arr = np.asarray(vec, dtype=np.float64)
    if arr.ndim == 1:
        denom = float(np.linalg.norm(arr))
        if denom < eps:
            return arr
        return arr / denom
    if arr.ndim == 2:
        norms = np.linalg.norm(arr, axis=1, keepdims=True)
        norms = np.maximum(norms, eps)
        return arr / norms
    raise ValueError(f"Unsupported ndim={arr.ndim}")


def euclidean_distances(matrix: np.ndarray, vec: np.ndarray) -> np.ndarray:
    """Row-wise Euclidean distance between an (N, D) matrix and a (D,) vector."""
    mat = np.asarray(matrix, dtype=np.float64)
    v = np.asarray(vec, dtype=np.float64).reshape(-1)
    diff = mat - v
    return np.sqrt(np.sum(diff * diff, axis=1))


def confidence_from_distance(distance: float) -> int:
    """Display-only confidence percentage: round((1 - distance) * 100) in [0, 100].

    Rounds half up. Not a calibrated probability.
    """
    raw = math.floor((1.0 - float(distance)) * 100.0 + 0.5)
    return int(max(0, min(100, raw)))
