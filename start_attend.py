"""
Blink-Attend — Launcher
========================
Runs one blink-verified attendance (or registration) session against a
local camera and the file-backed stores.

Usage:
  python start_attend.py --user-id u123 --name "Ada" --register
  python start_attend.py --user-id u123
  python start_attend.py --user-id u123 --source 1 --config my_config.yaml
"""

import argparse
import asyncio
import os
import sys

# Add root
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from attend_camera import AttendanceCamera
from attend_comparator import EmbeddingComparator
from attend_embedding import ArcFaceEmbedder
from attend_errors import AttendanceError
from attend_face_pipeline import AttendFacePipeline
from attend_liveness import LivenessPolicy
from attend_logger import get_logger
from attend_session import SessionController
from attend_store import LocalAttendanceStore, LocalEnrollmentStore
from attend_types import DeviceOrientation, LensFacing, StatusLevel, StatusUpdate
from attend_utils import config_section, level_from_config, load_config, resolve_path, setup_logger

_LEVEL_TAGS = {
    StatusLevel.INFO: "INFO",
    StatusLevel.SUCCESS: " OK ",
    StatusLevel.WARNING: "WARN",
    StatusLevel.ERROR: "FAIL",
}


def print_status(update: StatusUpdate) -> None:
    print(f"[{_LEVEL_TAGS[update.level]}] {update.message}")


def build_session(args, config: dict, audit) -> SessionController:
    camera_cfg = config_section("camera", config)
    models_cfg = config_section("models", config)
    storage_cfg = config_section("storage", config)

    source = args.source if args.source is not None else str(camera_cfg.get("id", 0))
    camera = AttendanceCamera(
        camera_id=int(source) if source.isdigit() else source,
        width=int(camera_cfg.get("width", 640)),
        height=int(camera_cfg.get("height", 480)),
        lens_facing=LensFacing(camera_cfg.get("lens_facing", "front")),
        sensor_orientation=int(camera_cfg.get("sensor_orientation", 0)),
        device_orientation=DeviceOrientation(camera_cfg.get("device_orientation", "portrait_up")),
        capture_dir=resolve_path(camera_cfg.get("capture_dir", "captures")),
    )
    try:
        detector = AttendFacePipeline(
            landmarker_model=resolve_path(models_cfg.get("face_landmarker", "models/face_landmarker.task")),
        )
        embedder = ArcFaceEmbedder(
            resolve_path(models_cfg.get("arcface", "models/arcface_w600k_r50.onnx")),
            face_locator=detector,
        )
    except AttendanceError:
        camera.release()
        raise

    enrollments = LocalEnrollmentStore(resolve_path(storage_cfg.get("enrollment_path", "data/enrollments.json")))
    attendance = LocalAttendanceStore(resolve_path(storage_cfg.get("attendance_path", "data/attendance.jsonl")))

    session_cfg = config_section("session", config)
    matching_cfg = config_section("matching", config)
    return SessionController(
        camera=camera,
        detector=detector,
        embedder=embedder,
        enrollment_store=enrollments,
        attendance_store=attendance,
        user_context=enrollments.user_context(args.user_id, args.name or ""),
        registration=args.register,
        comparator=EmbeddingComparator(float(matching_cfg.get("similarity_threshold", 0.7))),
        policy=LivenessPolicy.from_config(config_section("liveness", config)),
        config={"external_call_timeout_s": session_cfg.get("external_call_timeout_s")},
        on_status=print_status,
        audit_logger=audit,
    )


def main():
    parser = argparse.ArgumentParser(description="Blink-Attend Launcher")
    parser.add_argument("--user-id", required=True, help="User to register or check in")
    parser.add_argument("--name", default=None, help="Display name (stored on first use)")
    parser.add_argument("--register", action="store_true", help="Enroll the user's face instead of checking in")
    parser.add_argument("--source", type=str, default=None, help="Camera ID (0, 1, etc.) or video file path")
    parser.add_argument("--config", type=str, default=None, help="Path to config.yaml")

    args = parser.parse_args()
    config = load_config(args.config)
    setup_logger("", level_from_config(config))

    print("=" * 60)
    print("  Blink-Attend — Starting...")
    print(f"  User:   {args.user_id}")
    print(f"  Mode:   {'Registration' if args.register else 'Attendance'}")
    print("=" * 60)

    audit = get_logger(resolve_path(config_section("logging", config).get("log_dir", "logs")))
    try:
        session = build_session(args, config, audit)
    except AttendanceError as exc:
        audit.error("Session setup failed", exc)
        audit.close()
        print_status(StatusUpdate(exc.user_message, StatusLevel.ERROR))
        return 1

    result = None
    try:
        result = asyncio.run(session.run())
    except KeyboardInterrupt:
        print("\n[ATTEND] Interrupted — shutting down...")
    finally:
        session.close()
        session.detector.release()
        audit.close()

    if result is None:
        return 1
    print(f"[ATTEND] Result: {result.outcome.value} — {result.message}")
    return 0 if result.succeeded else 1


if __name__ == "__main__":
    sys.exit(main())
