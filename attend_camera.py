"""
Blink-Attend — Camera Module
=============================
Owns ALL camera interaction. No other file should touch
cv2.VideoCapture directly.

Features:
  - Frame validation (shape, dtype, channel count, brightness)
  - Continuous frame stream on a reader thread, with stop/resume
  - Single still capture written to disk as JPEG
  - Health monitoring (FPS, drop count)
  - Exclusive access to the capture handle (stream vs still capture)
"""

from __future__ import annotations

import asyncio
import logging
import os
import threading
import time
from collections import deque
from typing import Callable, Optional

import cv2
import numpy as np

from attend_errors import CameraError
from attend_types import (
    CapturedImage,
    DeviceOrientation,
    ImagePlane,
    LensFacing,
    PixelFormat,
    RawFrame,
)

_log = logging.getLogger("AttendCamera")

FrameCallback = Callable[[RawFrame], None]


class AttendanceCamera:
    """Validated OpenCV camera with a streaming mode and still capture."""

    # ── Validation constants ──────────────────────────────────
    MIN_HEIGHT: int = 120
    MIN_WIDTH: int = 160
    EXPECTED_CHANNELS: int = 3
    MIN_MEAN_BRIGHTNESS: float = 5.0    # lens cap / hw failure
    MAX_MEAN_BRIGHTNESS: float = 250.0  # sensor saturation
    FPS_WINDOW: int = 30
    CAPTURE_ATTEMPTS: int = 5

    def __init__(
        self,
        camera_id: int = 0,
        width: int = 640,
        height: int = 480,
        lens_facing: LensFacing = LensFacing.FRONT,
        sensor_orientation: int = 0,
        device_orientation: DeviceOrientation = DeviceOrientation.PORTRAIT_UP,
        capture_dir: str = "captures",
        backend: int = cv2.CAP_ANY,
    ) -> None:
        """Open the capture device with a 1-frame buffer.

        Raises:
            CameraError: if the device cannot be opened.
        """
        self.camera_id = camera_id
        self.lens_facing = LensFacing(lens_facing)
        self.sensor_orientation = int(sensor_orientation)
        self.device_orientation = device_orientation
        self.capture_dir = capture_dir

        self._cap = cv2.VideoCapture(camera_id, backend)
        if not self._cap.isOpened():
            raise CameraError(log_message=f"Unable to open camera {camera_id}")

        self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
        self._cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)

        self._cap_lock = threading.Lock()
        self._stream_thread: Optional[threading.Thread] = None
        self._streaming = threading.Event()

        self._frames_total: int = 0
        self._frames_dropped: int = 0
        self._frame_times: deque[float] = deque(maxlen=self.FPS_WINDOW)

        _log.info(
            "AttendanceCamera initialized — id=%s lens=%s sensor=%d resolution=%sx%s",
            camera_id, self.lens_facing.value, self.sensor_orientation,
            int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
        )

    # ── Streaming ─────────────────────────────────────────────

    @property
    def streaming(self) -> bool:
        return self._streaming.is_set()

    def start_stream(self, on_frame: FrameCallback) -> None:
        """Deliver validated frames to ``on_frame`` from a reader thread."""
        if self.streaming:
            return
        self._streaming.set()
        self._stream_thread = threading.Thread(
            target=self._stream_loop, args=(on_frame,), name="AttendCameraStream", daemon=True,
        )
        self._stream_thread.start()
        _log.debug("Frame stream started")

    def stop_stream(self) -> None:
        """Stop the frame stream. No callback runs after this returns."""
        if not self.streaming:
            return
        self._streaming.clear()
        thread = self._stream_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=1.0)
        self._stream_thread = None
        _log.debug("Frame stream stopped")

    def _stream_loop(self, on_frame: FrameCallback) -> None:
        while self._streaming.is_set():
            frame = self.read_validated_frame()
            if frame is None:
                time.sleep(0.01)
                continue
            if not self._streaming.is_set():
                break
            try:
                on_frame(to_raw_frame(frame))
            except Exception:
                _log.exception("Frame callback failed")

    # ── Still capture ─────────────────────────────────────────

    async def take_picture(self) -> CapturedImage:
        """Capture one validated frame and save it as JPEG."""
        return await asyncio.to_thread(self.take_picture_sync)

    def take_picture_sync(self) -> CapturedImage:
        frame = None
        for _ in range(self.CAPTURE_ATTEMPTS):
            frame = self.read_validated_frame()
            if frame is not None:
                break
        if frame is None:
            raise CameraError(
                "Could not capture an image. Please try again.",
                log_message=f"No valid frame after {self.CAPTURE_ATTEMPTS} attempts",
            )

        os.makedirs(self.capture_dir, exist_ok=True)
        stamp = f"{time.strftime('%Y%m%d_%H%M%S')}_{time.time_ns() % 1_000_000:06d}"
        path = os.path.join(self.capture_dir, f"capture_{stamp}.jpg")
        if not cv2.imwrite(path, frame):
            raise CameraError(log_message=f"Failed to write {path}")
        _log.info("Captured still image → %s", path)
        return CapturedImage(path=path, pixels=frame)

    # ── Frames ────────────────────────────────────────────────

    def read_validated_frame(self) -> Optional[np.ndarray]:
        """Read one frame under the capture lock; None if it fails validation."""
        with self._cap_lock:
            self._frames_total += 1
            ret, frame = self._cap.read()

        if not self._validate_frame(ret, frame):
            self._frames_dropped += 1
            return None
        self._frame_times.append(time.monotonic())
        return frame

    def _validate_frame(self, ret: bool, frame: Optional[np.ndarray]) -> bool:
        if not ret or frame is None:
            return False
        if frame.ndim != 3 or frame.shape[2] != self.EXPECTED_CHANNELS:
            _log.debug("Validation FAIL: shape=%s", getattr(frame, "shape", None))
            return False
        if frame.dtype != np.uint8:
            _log.debug("Validation FAIL: dtype=%s (expected uint8)", frame.dtype)
            return False
        h, w = frame.shape[:2]
        if h < self.MIN_HEIGHT or w < self.MIN_WIDTH:
            _log.debug("Validation FAIL: resolution %dx%d", w, h)
            return False
        mean_brightness = float(frame.mean())
        if not self.MIN_MEAN_BRIGHTNESS < mean_brightness < self.MAX_MEAN_BRIGHTNESS:
            _log.debug("Validation FAIL: mean brightness %.2f", mean_brightness)
            return False
        return True

    # ── Health / lifecycle ────────────────────────────────────

    def get_health_status(self) -> dict:
        return {
            "connected": self._cap.isOpened(),
            "streaming": self.streaming,
            "fps_actual": self._calculate_fps(),
            "frames_total": self._frames_total,
            "frames_dropped": self._frames_dropped,
        }

    def _calculate_fps(self) -> float:
        if len(self._frame_times) < 2:
            return 0.0
        elapsed = self._frame_times[-1] - self._frame_times[0]
        if elapsed <= 0:
            return 0.0
        return (len(self._frame_times) - 1) / elapsed

    def release(self) -> None:
        """Stop streaming and release the device."""
        self.stop_stream()
        health = self.get_health_status()
        _log.info(
            "AttendanceCamera releasing — total=%d dropped=%d avg_fps=%.1f",
            health["frames_total"], health["frames_dropped"], health["fps_actual"],
        )
        with self._cap_lock:
            self._cap.release()

    def __enter__(self) -> "AttendanceCamera":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()


def to_raw_frame(frame: np.ndarray) -> RawFrame:
    """Wrap a BGR OpenCV frame as a single-plane RawFrame."""
    h, w = frame.shape[:2]
    return RawFrame(
        planes=[ImagePlane(data=np.ascontiguousarray(frame).tobytes(), bytes_per_row=w * 3)],
        width=w,
        height=h,
        pixel_format=PixelFormat.BGR888,
    )
