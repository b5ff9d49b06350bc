"""
Blink-Attend — ArcFace Embedding Capability
============================================
Generates the face embedding for a captured still image.

Pipeline per image:
  1. Locate the largest face (optional detector) and crop it
  2. Resize to 112x112, BGR → RGB, (x - 127.5) / 128, NCHW
  3. ONNX Runtime inference → 512-d vector
  4. L2-normalize and encode as comma-separated text

The model runs in a worker thread (asyncio.to_thread) so the event loop
that owns the frame channel is never blocked by inference.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Optional

import cv2
import numpy as np

from attend_comparator import format_embedding
from attend_errors import ModelError
from attend_types import CapturedImage

_log = logging.getLogger("AttendEmbedding")

ARCFACE_INPUT_SIZE = 112
_CROP_MARGIN = 0.15


class ArcFaceEmbedder:
    """ArcFace (ONNX) face-embedding generator."""

    def __init__(
        self,
        model_path: str = "models/arcface_w600k_r50.onnx",
        face_locator=None,
        session=None,
    ) -> None:
        """Load the ONNX model.

        Args:
            model_path: ArcFace ONNX model file.
            face_locator: Object with ``locate_faces(bgr) -> list[DetectedFace]``
                used to crop the face. Without one the whole image is used.
            session: Pre-built inference session (tests inject a mock).
        """
        self.model_path = model_path
        self.face_locator = face_locator
        self.session = session

        if self.session is None:
            if not os.path.exists(model_path):
                raise ModelError(log_message=f"ArcFace model not found at {model_path}")
            try:
                import onnxruntime as ort
                self.session = ort.InferenceSession(model_path, providers=["CPUExecutionProvider"])
            except Exception as exc:
                raise ModelError(log_message=f"Failed to init ArcFace: {exc}") from exc

        self.input_name = self.session.get_inputs()[0].name
        _log.info("ArcFaceEmbedder ready — model=%s", model_path)

    async def generate_embedding(self, image: CapturedImage) -> str:
        """Embedding of the face in ``image`` as comma-separated text."""
        return await asyncio.to_thread(self.embed_sync, image)

    def embed_sync(self, image: CapturedImage) -> str:
        pixels = image.pixels
        if pixels is None:
            pixels = cv2.imread(image.path)
        if pixels is None or pixels.size == 0:
            raise ModelError(log_message=f"Unreadable captured image: {image.path}")

        crop = self._crop_face(pixels)
        tensor = self.preprocess(crop)

        try:
            raw = self.session.run(None, {self.input_name: tensor})[0][0]
        except Exception as exc:
            raise ModelError(log_message=f"ArcFace inference failed: {exc}") from exc

        vector = np.asarray(raw, dtype=np.float32).ravel()
        norm = float(np.linalg.norm(vector))
        if norm < 1e-8:
            raise ModelError(log_message="ArcFace returned a zero vector")
        return format_embedding(vector / norm)

    @staticmethod
    def preprocess(face_bgr: np.ndarray) -> np.ndarray:
        """Resize + normalize a BGR crop into a (1, 3, 112, 112) tensor."""
        img = cv2.resize(face_bgr, (ARCFACE_INPUT_SIZE, ARCFACE_INPUT_SIZE))
        img = cv2.cvtColor(img, cv2.COLOR_BGR2RGB)
        img = np.transpose(img, (2, 0, 1)).astype(np.float32)
        img = (img - 127.5) / 128.0
        return np.expand_dims(img, axis=0)

    def _crop_face(self, pixels: np.ndarray) -> np.ndarray:
        if self.face_locator is None:
            return pixels

        faces = self.face_locator.locate_faces(pixels)
        if not faces:
            raise ModelError("No face found in the captured image")

        x, y, w, h = max(faces, key=lambda f: f.area).bbox
        H, W = pixels.shape[:2]
        mx, my = int(w * _CROP_MARGIN), int(h * _CROP_MARGIN)
        x1, y1 = max(0, x - mx), max(0, y - my)
        x2, y2 = min(W, x + w + mx), min(H, y + h + my)
        if x2 <= x1 or y2 <= y1:
            raise ModelError(log_message=f"Degenerate face box {x, y, w, h}")
        return pixels[y1:y2, x1:x2]
