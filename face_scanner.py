"""Command-line scanning station: build the gallery, scan one image or camera frame.

Example:
    python face_scanner.py --directory data/users.json --image probe.jpg --officer-id OFF-1
"""

from __future__ import annotations

import argparse
import json
import sys
import time

from pathlib import Path

import cv2

from facescan import config
from facescan.alerts import JsonlAlertSink, MemoryAlertSink
from facescan.directory import JsonDirectory
from facescan.errors import FaceScanError
from facescan.face.extractor import EmbeddingExtractor, ExtractorConfig
from facescan.face.gallery import GalleryConfig
from facescan.face.images import read_image_file
from facescan.scanner import FaceScanner, ScannerConfig
from facescan.utils.log import get_logger

logger = get_logger(__name__)


def grab_camera_frame(index: int, width: int = 640, height: int = 480):
    """Capture a single frame from a local camera."""
    cap = cv2.VideoCapture(int(index))
    if not cap.isOpened():
        raise RuntimeError(f"Failed to open camera {index}")
    try:
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
        # First frames are often dark while exposure settles.
        frame = None
        for _ in range(5):
            ok, frame = cap.read()
            if not ok:
                frame = None
        if frame is None:
            raise RuntimeError(f"Failed to read a frame from camera {index}")
        return frame
    finally:
        cap.release()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Face scan & verification against the citizen directory")
    parser.add_argument("--directory", "-d", required=True, help="JSON file with user records (id, name, email, faceRef, role)")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--image", "-i", help="Probe image path")
    source.add_argument("--camera", "-c", type=int, help="Camera index to capture one frame from")
    parser.add_argument("--officer-id", default="", help="Id of the scanning officer, recorded on alerts")
    parser.add_argument("--threshold", "-t", type=float, default=config.THRESHOLD, help="Match distance threshold (strict <); on unit embeddings d = sqrt(2 - 2*cos), try ~1.0 for live photos")
    parser.add_argument("--max-candidates", type=int, default=config.MAX_CANDIDATES, help="Bound on candidates per gallery build")
    parser.add_argument("--role", default=config.CANDIDATE_ROLE, help="Directory role to build the gallery from")
    parser.add_argument("--model", default=config.MODEL_NAME, help="InsightFace model pack name")
    parser.add_argument("--model-root", default=config.MODEL_ROOT, help="Local model directory tried first")
    parser.add_argument("--det-size", type=int, default=config.DET_SIZE, help="InsightFace det_size")
    parser.add_argument("--device", default=config.DEVICE, choices=["auto", "cpu", "gpu"], help="Compute device")
    parser.add_argument("--alerts-jsonl", default=None, help="Append match alerts to this JSONL file")
    parser.add_argument("--output-json", "-o", default=None, help="Write the scan outcome to this JSON file")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    extractor = EmbeddingExtractor(
        ExtractorConfig(
            model_name=args.model,
            model_root=args.model_root or "",
            det_size=int(args.det_size),
            device=str(args.device),
        )
    )
    sink = JsonlAlertSink(args.alerts_jsonl) if args.alerts_jsonl else MemoryAlertSink()
    scanner = FaceScanner(
        directory=JsonDirectory(args.directory, role=args.role or None),
        extractor=extractor,
        alert_sink=sink,
        cfg=ScannerConfig(threshold=float(args.threshold), rebuild_on_scan=False),
        gallery_cfg=GalleryConfig(max_candidates=args.max_candidates),
    )

    try:
        scanner.prepare()
        gallery = scanner.rebuild_gallery()
        logger.info(f"Gallery ready: {len(gallery)} identities ({gallery.stats.as_dict()})")

        frame = read_image_file(args.image) if args.image else grab_camera_frame(args.camera)
        outcome = scanner.scan(frame, officer_id=args.officer_id)
    except (FaceScanError, RuntimeError, FileNotFoundError) as e:
        logger.error(f"Scan failed: {e}")
        return 2

    result = outcome.to_dict(frame_shape=frame.shape[:2])
    text = json.dumps(result, ensure_ascii=False, indent=2)
    print(text)
    if args.output_json:
        out = Path(args.output_json)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(text, encoding="utf-8")
        logger.info(f"Outcome written to {out}")
    return 0


if __name__ == "__main__":
    st = time.time()
    code = main()
    ed = time.time()
    logger.info(f"Total time: {ed - st:.2f} s")
    sys.exit(code)
