"""
Blink-Attend — Face Detection Pipeline
=======================================
Owns ALL face detection. No other module should call MediaPipe directly.

For each face MediaPipe FaceLandmarker reports, the pipeline produces a
DetectedFace with:
  - bbox from the 478-point mesh extents (+10 px padding)
  - eye-open probabilities from the eyeBlinkLeft / eyeBlinkRight
    blendshapes (open = 1 - blink score); Unknown when blendshapes
    are missing
  - head yaw via solvePnP against a generic 3D face model

Faces are returned largest first.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Optional

import cv2
import numpy as np

from attend_errors import DetectorError
from attend_preprocess import to_bgr_image
from attend_types import CanonicalFrame, DetectedFace, UNKNOWN, Known

_log = logging.getLogger("AttendFacePipeline")

_SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))

# 3D model points for head-pose estimation (generic face model, mm)
# Points: nose tip, chin, left eye corner, right eye corner,
#         left mouth corner, right mouth corner
_MODEL_POINTS_3D = np.array([
    (0.0, 0.0, 0.0),            # Nose tip
    (0.0, -330.0, -65.0),       # Chin
    (-225.0, 170.0, -135.0),    # Left eye left corner
    (225.0, 170.0, -135.0),     # Right eye right corner
    (-150.0, -150.0, -125.0),   # Left mouth corner
    (150.0, -150.0, -125.0),    # Right mouth corner
], dtype=np.float64)

# MediaPipe 478-mesh indices matching _MODEL_POINTS_3D
_MP_POSE_INDICES = [1, 152, 33, 263, 61, 291]

_BLINK_LEFT = "eyeBlinkLeft"
_BLINK_RIGHT = "eyeBlinkRight"

_BBOX_PADDING = 10


class AttendFacePipeline:
    """MediaPipe FaceLandmarker wrapper producing DetectedFace records."""

    def __init__(
        self,
        landmarker_model: str = "models/face_landmarker.task",
        max_faces: int = 2,
        min_detection_confidence: float = 0.5,
        landmarker=None,
    ) -> None:
        """Initialize face detection pipeline.

        Args:
            landmarker_model: Path to the MediaPipe FaceLandmarker model
                (must include blendshapes).
            max_faces: Maximum number of faces to detect per image.
            min_detection_confidence: Minimum confidence to accept a face.
            landmarker: Pre-built landmarker (tests inject a fake).
        """
        self._max_faces = max_faces
        self._landmarker = landmarker

        if self._landmarker is None:
            self._init_mediapipe(landmarker_model, max_faces, min_detection_confidence)

        _log.info("AttendFacePipeline initialized — max_faces=%d", max_faces)

    def _init_mediapipe(self, model_path: str, max_faces: int, min_confidence: float) -> None:
        full_path = model_path if os.path.isabs(model_path) else os.path.join(_SCRIPT_DIR, model_path)
        if not os.path.exists(full_path):
            raise DetectorError(log_message=f"MediaPipe model not found: {full_path}")

        from mediapipe.tasks import python
        from mediapipe.tasks.python import vision

        base_options = python.BaseOptions(
            model_asset_path=full_path,
            delegate=python.BaseOptions.Delegate.CPU,
        )
        options = vision.FaceLandmarkerOptions(
            base_options=base_options,
            running_mode=vision.RunningMode.IMAGE,
            num_faces=max_faces,
            min_face_detection_confidence=min_confidence,
            min_face_presence_confidence=min_confidence,
            output_face_blendshapes=True,
        )
        self._landmarker = vision.FaceLandmarker.create_from_options(options)

    # ── Public API ────────────────────────────────────────────

    async def detect_faces(self, frame: CanonicalFrame) -> list[DetectedFace]:
        """Detect faces in a canonical frame (largest first).

        Raises:
            DetectorError: if the frame cannot be decoded or inference fails.
        """
        return await asyncio.to_thread(self._detect_canonical, frame)

    def _detect_canonical(self, frame: CanonicalFrame) -> list[DetectedFace]:
        # Decode and rotate on the worker thread with inference.
        return self.locate_faces(to_bgr_image(frame))

    def locate_faces(self, image: np.ndarray) -> list[DetectedFace]:
        """Detect faces in an upright BGR image (largest first)."""
        if self._landmarker is None:
            raise DetectorError(log_message="MediaPipe landmarker released")
        if image is None or image.ndim != 3 or image.shape[2] != 3:
            raise DetectorError(log_message="Expected an HxWx3 BGR image")

        h, w = image.shape[:2]
        rgb = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)

        try:
            result = self._landmarker.detect(self._to_mp_image(rgb))
        except Exception as exc:
            raise DetectorError(log_message=f"MediaPipe detection failed: {exc}") from exc

        if not result or not result.face_landmarks:
            return []

        faces: list[DetectedFace] = []
        for i, face_lms in enumerate(result.face_landmarks):
            lm_pixel = np.array([[lm.x * w, lm.y * h] for lm in face_lms], dtype=np.float32)

            blendshapes = result.face_blendshapes[i] if result.face_blendshapes else None
            left_blink = _blendshape_score(blendshapes, _BLINK_LEFT)
            right_blink = _blendshape_score(blendshapes, _BLINK_RIGHT)

            faces.append(DetectedFace(
                bbox=_bbox_from_landmarks(lm_pixel, w, h),
                left_eye_open=UNKNOWN if left_blink is None else Known(1.0 - left_blink),
                right_eye_open=UNKNOWN if right_blink is None else Known(1.0 - right_blink),
                head_yaw=estimate_head_yaw(lm_pixel, (w, h)),
            ))

        faces.sort(key=lambda f: f.area, reverse=True)
        return faces

    @staticmethod
    def _to_mp_image(rgb: np.ndarray):
        import mediapipe as mp
        return mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb)

    def release(self) -> None:
        """Release detector resources."""
        if self._landmarker is not None:
            self._landmarker.close()
            self._landmarker = None
        _log.info("AttendFacePipeline released")

    def __enter__(self) -> "AttendFacePipeline":
        return self

    def __exit__(self, *args) -> None:
        self.release()


# ── Geometry helpers ──────────────────────────────────────────

def estimate_head_yaw(landmarks_2d: np.ndarray, image_size: tuple[int, int]) -> Optional[float]:
    """Head yaw in degrees from the 478-mesh via solvePnP.

    Returns None when the mesh is incomplete or PnP does not converge,
    which leaves the pose gate open.
    """
    if landmarks_2d.shape[0] < max(_MP_POSE_INDICES) + 1:
        return None

    image_points = np.array([landmarks_2d[idx] for idx in _MP_POSE_INDICES], dtype=np.float64)

    # Camera intrinsics approximation from image dimensions
    w, h = image_size
    camera_matrix = np.array([
        [w, 0, w / 2.0],
        [0, w, h / 2.0],
        [0, 0, 1],
    ], dtype=np.float64)
    dist_coeffs = np.zeros((4, 1), dtype=np.float64)

    success, rotation_vec, translation_vec = cv2.solvePnP(
        _MODEL_POINTS_3D,
        image_points,
        camera_matrix,
        dist_coeffs,
        flags=cv2.SOLVEPNP_ITERATIVE,
    )
    if not success:
        return None

    rotation_mat, _ = cv2.Rodrigues(rotation_vec)
    proj_matrix = np.hstack((rotation_mat, translation_vec))
    euler_angles = cv2.decomposeProjectionMatrix(proj_matrix)[6]

    return round(_normalize_angle(float(euler_angles[1, 0])), 1)


def _normalize_angle(angle: float) -> float:
    """Fold decomposeProjectionMatrix output into [-90, +90]."""
    if angle > 90.0:
        angle -= 180.0
    elif angle < -90.0:
        angle += 180.0
    return angle


def _bbox_from_landmarks(lm_pixel: np.ndarray, w: int, h: int) -> tuple[int, int, int, int]:
    xs, ys = lm_pixel[:, 0], lm_pixel[:, 1]
    x_min = max(0, int(xs.min()) - _BBOX_PADDING)
    y_min = max(0, int(ys.min()) - _BBOX_PADDING)
    x_max = min(w, int(xs.max()) + _BBOX_PADDING)
    y_max = min(h, int(ys.max()) + _BBOX_PADDING)
    return (x_min, y_min, x_max - x_min, y_max - y_min)


def _blendshape_score(blendshapes, name: str) -> Optional[float]:
    if not blendshapes:
        return None
    for category in blendshapes:
        if getattr(category, "category_name", None) == name:
            return float(np.clip(category.score, 0.0, 1.0))
    return None
