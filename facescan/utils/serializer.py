from typing import Dict, Optional, Tuple

import numpy as np


def serialize_probe(probe, frame_shape: Optional[Tuple[int, int]] = None) -> Dict:
    """Serialize a ProbeResult into JSON-safe form; the raw embedding is replaced by its norm.

    frame_shape: (h, w) to add normalized bbox coordinates.
    """
    out: Dict = {
        "detected": bool(probe.detected),
        "face_count": int(probe.face_count),
        "det_score": float(probe.det_score),
        "bbox": None,
        "embedding_dim": int(probe.dimension),
        "embedding_norm": None,
    }
    if probe.bbox is not None:
        try:
            out["bbox"] = [int(round(x)) for x in probe.bbox]
        except Exception:
            out["bbox"] = None

    if probe.embedding is not None:
        out["embedding_norm"] = float(np.linalg.norm(probe.embedding))

    if frame_shape is not None and out["bbox"]:
        h, w = frame_shape[0], frame_shape[1]
        if h > 0 and w > 0:
            x1, y1, x2, y2 = out["bbox"]
            out["bbox_norm"] = [round(x1 / w, 4), round(y1 / h, 4), round(x2 / w, 4), round(y2 / h, 4)]

    return out


def serialize_decision(decision) -> Dict:
    """Serialize a Match / NoMatch decision."""
    if getattr(decision, "is_match", False):
        return {
            "match": True,
            "identity_id": decision.identity_id,
            "display_name": decision.display_name,
            "contact_email": decision.contact_email,
            "reference_image_ref": decision.reference_image_ref,
            "distance": round(float(decision.distance), 6),
            "confidence": int(decision.confidence),
        }
    return {
        "match": False,
        "reason": getattr(decision.reason, "value", str(decision.reason)),
        "nearest_id": decision.nearest_id,
        "distance": None if decision.distance is None else round(float(decision.distance), 6),
    }
