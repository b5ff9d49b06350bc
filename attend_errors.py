"""
Blink-Attend — Error Taxonomy
==============================
Every failure the pipeline can surface derives from AttendanceError and
carries the message shown to the user. Capabilities wrap third-party
failures (OpenCV, ONNX Runtime, MediaPipe) into these types.
"""

from __future__ import annotations

from typing import Optional


class AttendanceError(Exception):
    """Base exception for the attendance pipeline."""

    default_message = "Something went wrong. Please try again."
    #: False only for failures that end the session until an explicit retry.
    retryable = True

    def __init__(self, user_message: Optional[str] = None, *, log_message: Optional[str] = None) -> None:
        self.user_message = user_message or self.default_message
        super().__init__(log_message or self.user_message)


# ── Informational (never leave the scanning loop) ─────────────

class FrameDropped(AttendanceError):
    """Frame could not be mapped to a supported rotation."""


class NoFaceDetected(AttendanceError):
    default_message = "Position your face in the frame"


class PoseRejected(AttendanceError):
    default_message = "Please look straight at the camera"


# ── Capability failures ───────────────────────────────────────

class CameraError(AttendanceError):
    """Raised when camera access fails."""
    default_message = "Camera initialization failed"


class DetectorError(AttendanceError):
    """Raised when face detection cannot run on an image."""
    default_message = "Face detection failed"


class ModelError(AttendanceError):
    """Raised when the embedding model cannot produce an embedding."""
    default_message = "Face embedding model unavailable"


# ── Recoverable session failures ──────────────────────────────

class CaptureFailed(AttendanceError):
    default_message = "Could not capture an image. Please try again."


class EmbeddingFailed(AttendanceError):
    default_message = "Could not read your face. Please try again."


class InvalidEmbedding(AttendanceError):
    default_message = "Stored face data is invalid"


class MismatchedEmbeddingLength(InvalidEmbedding):
    default_message = "Stored face data does not match the current model"


class VerificationMismatch(AttendanceError):
    default_message = "Face verification failed. Try again."


class PersistenceFailed(AttendanceError):
    default_message = "Saving failed. Please try again."


class NotEnrolled(AttendanceError):
    default_message = "Face not registered. Please register first."
    retryable = False
