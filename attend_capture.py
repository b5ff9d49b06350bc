"""
Blink-Attend — Capture & Embedding Pipeline
============================================
Runs once per completed blink:

  1. suspend intake (channel suspended, camera stream stopped)
  2. take one still image
  3. generate its embedding

Any failure in 2–3 resumes intake before the error propagates, so the
session can go straight back to scanning. A call made while another
capture is in flight is a no-op and returns None.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Optional, Type, TypeVar

from attend_channel import FrameChannel
from attend_errors import AttendanceError, CaptureFailed, EmbeddingFailed
from attend_types import CapturedImage

_log = logging.getLogger("AttendCapture")

T = TypeVar("T")


@dataclass(frozen=True)
class CaptureOutcome:
    image: CapturedImage
    embedding: str


async def call_with_timeout(
    awaitable: Awaitable[T],
    timeout: Optional[float],
    error_type: Type[AttendanceError],
) -> T:
    """Await an external call, mapping failures and timeouts to ``error_type``."""
    try:
        if timeout is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as exc:
        raise error_type(log_message=f"{error_type.__name__}: timed out after {timeout}s") from exc
    except error_type:
        raise
    except AttendanceError as exc:
        raise error_type(exc.user_message, log_message=str(exc)) from exc
    except Exception as exc:
        raise error_type(log_message=f"{error_type.__name__}: {exc}") from exc


class CapturePipeline:
    """Still capture + embedding with an in-flight guard."""

    def __init__(
        self,
        camera,
        embedder,
        channel: FrameChannel,
        timeout: Optional[float] = None,
    ) -> None:
        self.camera = camera
        self.embedder = embedder
        self.channel = channel
        self.timeout = timeout
        self._in_flight = False
        self.attempts = 0

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    # ── Intake control ────────────────────────────────────────

    def suspend_intake(self) -> None:
        self.channel.suspend()
        self.camera.stop_stream()

    def resume_intake(self) -> None:
        self.channel.resume()
        self.camera.start_stream(self.channel.offer_threadsafe)

    # ── Capture ───────────────────────────────────────────────

    async def run(self) -> Optional[CaptureOutcome]:
        """Capture and embed one still image.

        Returns:
            CaptureOutcome, or None if a capture was already in flight.

        Raises:
            CaptureFailed / EmbeddingFailed: after intake has been resumed.
        """
        if self._in_flight:
            _log.debug("Capture already in flight — ignoring re-entrant call")
            return None

        self._in_flight = True
        self.attempts += 1
        try:
            self.suspend_intake()
            image = await call_with_timeout(self.camera.take_picture(), self.timeout, CaptureFailed)
            embedding = await call_with_timeout(
                self.embedder.generate_embedding(image), self.timeout, EmbeddingFailed,
            )
            _log.info("Capture #%d embedded — %s", self.attempts, image.path)
            return CaptureOutcome(image=image, embedding=embedding)
        except AttendanceError as exc:
            _log.warning("Capture #%d failed: %s", self.attempts, exc)
            self.resume_intake()
            raise
        finally:
            self._in_flight = False
