from __future__ import annotations

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import List, Optional, Tuple, Union

import numpy as np


class PixelFormat(str, Enum):
    NV21 = "nv21"
    BGRA8888 = "bgra8888"
    BGR888 = "bgr888"


class DeviceOrientation(str, Enum):
    PORTRAIT_UP = "portrait_up"
    LANDSCAPE_LEFT = "landscape_left"
    PORTRAIT_DOWN = "portrait_down"
    LANDSCAPE_RIGHT = "landscape_right"


class LensFacing(str, Enum):
    FRONT = "front"
    BACK = "back"
    EXTERNAL = "external"


@dataclass
class ImagePlane:
    """One plane of a raw camera image."""
    data: bytes
    bytes_per_row: int


@dataclass
class RawFrame:
    """What a camera stream emits per tick."""
    planes: List[ImagePlane]
    width: int
    height: int
    pixel_format: PixelFormat = PixelFormat.BGR888


@dataclass
class CanonicalFrame:
    """Detector input: one contiguous buffer plus rotation metadata."""
    pixel_buffer: bytes
    width: int
    height: int
    rotation_degrees: int                # 0, 90, 180 or 270
    pixel_format: PixelFormat
    bytes_per_row: int


# ── Eye-open probability: Known(p) | Unknown ──────────────────

@dataclass(frozen=True)
class Known:
    value: float


@dataclass(frozen=True)
class Unknown:
    pass


EyeOpenness = Union[Known, Unknown]
UNKNOWN = Unknown()


def eye_openness(value: Optional[float]) -> EyeOpenness:
    """Wrap an optional detector probability."""
    return UNKNOWN if value is None else Known(float(value))


@dataclass
class DetectedFace:
    """A single face reported by the detector for one tick."""
    bbox: Tuple[int, int, int, int]                  # x, y, w, h
    left_eye_open: EyeOpenness = UNKNOWN
    right_eye_open: EyeOpenness = UNKNOWN
    head_yaw: Optional[float] = None                 # degrees

    @property
    def area(self) -> int:
        return self.bbox[2] * self.bbox[3]


class LivenessState(str, Enum):
    IDLE = "idle"
    EYES_OPEN = "eyes_open"
    EYES_CLOSED = "eyes_closed"
    COMPLETE = "complete"


@dataclass
class CapturedImage:
    """A still image taken after the blink check."""
    path: str
    pixels: Optional[np.ndarray] = field(default=None, repr=False)


class StatusLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class StatusUpdate:
    message: str
    level: StatusLevel = StatusLevel.INFO


class SessionOutcome(str, Enum):
    REGISTERED = "registered"
    VERIFIED = "verified"
    FAILED = "failed"


@dataclass(frozen=True)
class SessionResult:
    """Terminal value of a session."""
    outcome: SessionOutcome
    message: str
    captured_image_path: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome is not SessionOutcome.FAILED

    def to_dict(self) -> dict:
        return asdict(self)
