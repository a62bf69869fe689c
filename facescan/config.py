import os

from dotenv import load_dotenv

load_dotenv()


def _optional_int(name: str):
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else None


# ====== Matching ======
# Euclidean distance threshold; a face matches only when distance < THRESHOLD.
# Embeddings are L2-normalised, so distance = sqrt(2 - 2 * cosine): 0.6 needs cosine > 0.82,
# 0.9 needs cosine > 0.595, 1.0 needs cosine > 0.5. For buffalo_l reference-vs-live photos start
# around 1.0-1.1 and tune on your own pairs.
THRESHOLD = float(os.getenv("FACESCAN_THRESHOLD", "0.6"))


# ====== Model ======
MODEL_NAME = os.getenv("FACESCAN_MODEL_NAME", "buffalo_l")
# Local model directory tried first; empty means the InsightFace default (~/.insightface).
MODEL_ROOT = os.getenv("FACESCAN_MODEL_ROOT", "")
DET_SIZE = int(os.getenv("FACESCAN_DET_SIZE", "640"))
DET_THRESH = float(os.getenv("FACESCAN_DET_THRESH", "0.5"))
# auto / cpu / gpu
DEVICE = os.getenv("FACESCAN_DEVICE", "auto")


# ====== Gallery ======
# Upper bound on candidates processed per build; None means all of them.
MAX_CANDIDATES = _optional_int("FACESCAN_MAX_CANDIDATES")
FETCH_TIMEOUT = float(os.getenv("FACESCAN_FETCH_TIMEOUT", "8"))
IMG_MAX_MB = int(os.getenv("FACESCAN_IMG_MAX_MB", "8"))
REBUILD_ON_SCAN = os.getenv("FACESCAN_REBUILD_ON_SCAN", "0") in ("1", "true", "True")


# ====== Directory ======
CANDIDATE_ROLE = os.getenv("FACESCAN_CANDIDATE_ROLE", "Citizen")
