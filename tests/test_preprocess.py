"""
Blink-Attend — Frame Preprocessor Tests
========================================
Rotation compensation table, plane concatenation and BGR decoding.
All frames are synthetic NumPy buffers.
"""

from __future__ import annotations

import sys
from pathlib import Path

import cv2
import numpy as np
import pytest

# Add project root to path
_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from attend_errors import DetectorError, FrameDropped
from attend_preprocess import preprocess, require_rotation, rotation_compensation, to_bgr_image
from attend_types import (
    CanonicalFrame,
    DeviceOrientation,
    ImagePlane,
    LensFacing,
    PixelFormat,
    RawFrame,
)


def _make_raw_frame(width: int = 4, height: int = 2) -> RawFrame:
    pixels = np.arange(width * height * 3, dtype=np.uint8).reshape(height, width, 3)
    return RawFrame(
        planes=[ImagePlane(pixels.tobytes(), bytes_per_row=width * 3)],
        width=width,
        height=height,
        pixel_format=PixelFormat.BGR888,
    )


# ─── Test 1: Front lens adds the device rotation ──────────────

@pytest.mark.parametrize("orientation, expected", [
    (DeviceOrientation.PORTRAIT_UP, 270),
    (DeviceOrientation.LANDSCAPE_LEFT, 0),
    (DeviceOrientation.PORTRAIT_DOWN, 90),
    (DeviceOrientation.LANDSCAPE_RIGHT, 180),
])
def test_front_lens_rotation(orientation, expected):
    assert rotation_compensation(270, orientation, LensFacing.FRONT) == expected


# ─── Test 2: Back lens subtracts the device rotation ──────────

@pytest.mark.parametrize("orientation, expected", [
    (DeviceOrientation.PORTRAIT_UP, 90),
    (DeviceOrientation.LANDSCAPE_LEFT, 0),
    (DeviceOrientation.PORTRAIT_DOWN, 270),
    (DeviceOrientation.LANDSCAPE_RIGHT, 180),
])
def test_back_lens_rotation(orientation, expected):
    assert rotation_compensation(90, orientation, LensFacing.BACK) == expected


# ─── Test 3: Unknown orientation drops the frame ──────────────

def test_unknown_orientation_returns_none():
    assert rotation_compensation(0, "upside_sideways", LensFacing.FRONT) is None
    assert preprocess(_make_raw_frame(), 0, "upside_sideways", LensFacing.FRONT) is None


def test_unrecognized_rotation_returns_none():
    """A sensor angle that is not a right angle cannot be mapped."""
    assert rotation_compensation(45, DeviceOrientation.PORTRAIT_UP, LensFacing.BACK) is None


def test_require_rotation_raises_frame_dropped():
    with pytest.raises(FrameDropped):
        require_rotation(45, DeviceOrientation.PORTRAIT_UP, LensFacing.BACK)
    with pytest.raises(FrameDropped):
        require_rotation(0, "upside_sideways", LensFacing.FRONT)
    assert require_rotation(90, DeviceOrientation.LANDSCAPE_LEFT, LensFacing.FRONT) == 180


def test_string_orientation_accepted():
    assert rotation_compensation(0, "landscape_left", LensFacing.FRONT) == 90


# ─── Test 4: Planes are concatenated in order ─────────────────

def test_planes_concatenated_in_order():
    raw = RawFrame(
        planes=[ImagePlane(b"\x01\x02", 8), ImagePlane(b"\x03", 4), ImagePlane(b"\x04\x05", 4)],
        width=2,
        height=2,
        pixel_format=PixelFormat.NV21,
    )
    frame = preprocess(raw, 0, DeviceOrientation.PORTRAIT_UP, LensFacing.BACK)

    assert frame is not None
    assert frame.pixel_buffer == b"\x01\x02\x03\x04\x05"
    assert frame.bytes_per_row == 8, "bytes_per_row comes from the first plane"
    assert frame.pixel_format == PixelFormat.NV21
    assert frame.rotation_degrees == 0
    assert (frame.width, frame.height) == (2, 2)


# ─── Test 5: BGR decode honours rotation ──────────────────────

def test_to_bgr_image_rotates():
    raw = _make_raw_frame(width=4, height=2)
    frame = preprocess(raw, 90, DeviceOrientation.PORTRAIT_UP, LensFacing.BACK)
    image = to_bgr_image(frame)

    assert image.shape == (4, 2, 3)
    original = np.frombuffer(raw.planes[0].data, dtype=np.uint8).reshape(2, 4, 3)
    assert np.array_equal(image, cv2.rotate(original, cv2.ROTATE_90_CLOCKWISE))


def test_to_bgr_image_honours_row_padding():
    width, height, stride = 2, 2, 8
    rows = np.zeros((height, stride), dtype=np.uint8)
    rows[:, :6] = 100
    rows[:, 6:] = 255  # padding
    frame = CanonicalFrame(rows.tobytes(), width, height, 0, PixelFormat.BGR888, stride)

    image = to_bgr_image(frame)
    assert image.shape == (2, 2, 3)
    assert np.all(image == 100)


def test_to_bgr_image_bgra():
    pixels = np.full((2, 2, 4), 50, dtype=np.uint8)
    frame = CanonicalFrame(pixels.tobytes(), 2, 2, 0, PixelFormat.BGRA8888, 8)
    image = to_bgr_image(frame)
    assert image.shape == (2, 2, 3)
    assert np.all(image == 50)


def test_to_bgr_image_nv21():
    width, height = 4, 2
    buffer = np.full(width * height * 3 // 2, 128, dtype=np.uint8).tobytes()
    frame = CanonicalFrame(buffer, width, height, 180, PixelFormat.NV21, width)
    image = to_bgr_image(frame)
    assert image.shape == (2, 4, 3)
    assert image.dtype == np.uint8


def _nv21_rows() -> np.ndarray:
    """4x2 NV21 image: two Y rows with a luma ramp, one neutral VU row."""
    return np.array([
        [40, 80, 160, 200],
        [200, 160, 80, 40],
        [128, 128, 128, 128],
    ], dtype=np.uint8)


def _pad_rows(rows: np.ndarray, stride: int, fill: int = 0) -> bytes:
    padded = np.full((rows.shape[0], stride), fill, dtype=np.uint8)
    padded[:, : rows.shape[1]] = rows
    return padded.tobytes()


def test_to_bgr_image_nv21_honours_row_padding():
    rows = _nv21_rows()
    expected = cv2.cvtColor(rows, cv2.COLOR_YUV2BGR_NV21)
    assert not np.array_equal(expected[0, 0], expected[0, 3]), "fixture must not be uniform"

    unpadded = CanonicalFrame(rows.tobytes(), 4, 2, 0, PixelFormat.NV21, 4)
    padded = CanonicalFrame(_pad_rows(rows, stride=8), 4, 2, 0, PixelFormat.NV21, 8)

    assert np.array_equal(to_bgr_image(unpadded), expected)
    assert np.array_equal(to_bgr_image(padded), expected)


def test_nv21_padded_buffer_too_short_raises():
    rows = _nv21_rows()
    frame = CanonicalFrame(rows.tobytes(), 4, 2, 0, PixelFormat.NV21, 8)
    with pytest.raises(DetectorError):
        to_bgr_image(frame)


def test_nv21_stride_shorter_than_width_raises():
    frame = CanonicalFrame(_nv21_rows().tobytes(), 4, 2, 0, PixelFormat.NV21, 2)
    with pytest.raises(DetectorError):
        to_bgr_image(frame)


# ─── Test 6: Short buffer is a detector error ─────────────────

def test_short_buffer_raises_detector_error():
    frame = CanonicalFrame(b"\x00" * 5, 4, 4, 0, PixelFormat.BGR888, 12)
    with pytest.raises(DetectorError):
        to_bgr_image(frame)
