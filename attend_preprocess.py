"""
Blink-Attend — Frame Preprocessor
==================================
Turns a raw camera frame into the canonical descriptor the detector
consumes, and decodes canonical frames into upright BGR images.

Rotation compensation:
  base = table[device_orientation]
  front lens:  (sensor + base) % 360
  other lens:  (sensor - base + 360) % 360
Unmappable orientations and rotations outside {0, 90, 180, 270} drop
the frame (None) without raising.
"""

from __future__ import annotations

import logging
from typing import Optional

import cv2
import numpy as np

from attend_errors import DetectorError, FrameDropped
from attend_types import (
    CanonicalFrame,
    DeviceOrientation,
    LensFacing,
    PixelFormat,
    RawFrame,
)

_log = logging.getLogger("AttendPreprocess")

ORIENTATION_ROTATION = {
    DeviceOrientation.PORTRAIT_UP: 0,
    DeviceOrientation.LANDSCAPE_LEFT: 90,
    DeviceOrientation.PORTRAIT_DOWN: 180,
    DeviceOrientation.LANDSCAPE_RIGHT: 270,
}

VALID_ROTATIONS = (0, 90, 180, 270)

_CV2_ROTATE = {
    90: cv2.ROTATE_90_CLOCKWISE,
    180: cv2.ROTATE_180,
    270: cv2.ROTATE_90_COUNTERCLOCKWISE,
}


def require_rotation(
    sensor_orientation: int,
    device_orientation,
    lens_facing: LensFacing,
) -> int:
    """Rotation (degrees) the detector must apply.

    Raises:
        FrameDropped: if the orientation or the resulting rotation is
            not one of the supported right angles.
    """
    try:
        base = ORIENTATION_ROTATION.get(DeviceOrientation(device_orientation))
    except ValueError:
        base = None
    if base is None:
        raise FrameDropped(log_message=f"Unknown device orientation {device_orientation!r}")

    if lens_facing == LensFacing.FRONT:
        rotation = (sensor_orientation + base) % 360
    else:
        rotation = (sensor_orientation - base + 360) % 360

    if rotation not in VALID_ROTATIONS:
        raise FrameDropped(log_message=f"Unsupported rotation {rotation} (sensor={sensor_orientation})")
    return rotation


def rotation_compensation(
    sensor_orientation: int,
    device_orientation,
    lens_facing: LensFacing,
) -> Optional[int]:
    """Rotation (degrees) the detector must apply, or None if unmappable."""
    try:
        return require_rotation(sensor_orientation, device_orientation, lens_facing)
    except FrameDropped:
        return None


def preprocess(
    raw_frame: RawFrame,
    sensor_orientation: int,
    device_orientation,
    lens_facing: LensFacing,
) -> Optional[CanonicalFrame]:
    """Normalize a raw frame for detection. Pure; returns None to skip the tick."""
    try:
        rotation = require_rotation(sensor_orientation, device_orientation, lens_facing)
    except FrameDropped as exc:
        _log.debug("Frame dropped — %s (lens=%s)", exc, lens_facing)
        return None

    buffer = b"".join(plane.data for plane in raw_frame.planes)

    return CanonicalFrame(
        pixel_buffer=buffer,
        width=raw_frame.width,
        height=raw_frame.height,
        rotation_degrees=rotation,
        pixel_format=raw_frame.pixel_format,
        bytes_per_row=raw_frame.planes[0].bytes_per_row,
    )


def to_bgr_image(frame: CanonicalFrame) -> np.ndarray:
    """Decode a canonical frame into an upright BGR uint8 image.

    Raises:
        DetectorError: if the buffer size does not match the declared
            geometry and pixel format.
    """
    w, h = frame.width, frame.height
    data = np.frombuffer(frame.pixel_buffer, dtype=np.uint8)

    try:
        if frame.pixel_format == PixelFormat.NV21:
            # Y rows then interleaved VU rows, both at the same stride
            stride = frame.bytes_per_row or w
            if stride < w:
                raise DetectorError(log_message=f"NV21 stride {stride} shorter than width {w}")
            rows = h * 3 // 2
            _check_size(data, stride * rows, frame)
            yuv = data[: stride * rows].reshape(rows, stride)[:, :w]
            image = cv2.cvtColor(np.ascontiguousarray(yuv), cv2.COLOR_YUV2BGR_NV21)
        elif frame.pixel_format == PixelFormat.BGRA8888:
            image = _rows(data, frame, channels=4)
            image = cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)
        else:
            image = _rows(data, frame, channels=3)
    except cv2.error as exc:
        raise DetectorError(log_message=f"Frame decode failed: {exc}") from exc

    if frame.rotation_degrees in _CV2_ROTATE:
        image = cv2.rotate(image, _CV2_ROTATE[frame.rotation_degrees])
    return np.ascontiguousarray(image)


def _rows(data: np.ndarray, frame: CanonicalFrame, channels: int) -> np.ndarray:
    """Reshape a packed buffer honoring row padding (bytes_per_row)."""
    stride = frame.bytes_per_row or frame.width * channels
    _check_size(data, stride * frame.height, frame)
    rows = data[: stride * frame.height].reshape(frame.height, stride)
    return rows[:, : frame.width * channels].reshape(frame.height, frame.width, channels)


def _check_size(data: np.ndarray, expected: int, frame: CanonicalFrame) -> None:
    if data.size < expected:
        raise DetectorError(
            log_message=(
                f"Invalid image: {data.size} bytes for {frame.width}x{frame.height} "
                f"{frame.pixel_format.value} (need {expected})"
            )
        )
