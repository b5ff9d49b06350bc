"""
Blink-Attend — Frame Intake Channel
====================================
Single-consumer, single-slot channel between the camera reader thread
and the session's event loop.

DROP-LATEST: a frame offered while
  - the consumer is still processing the previous frame,
  - the slot already holds an unconsumed frame, or
  - intake is suspended (capture in progress)
is discarded and counted. Nothing is queued behind the slot.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from attend_types import RawFrame

_log = logging.getLogger("AttendChannel")


class FrameChannel:
    """Drop-latest frame slot with explicit suspend/resume."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Optional[RawFrame]] = asyncio.Queue(maxsize=1)
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._busy = False
        self._suspended = False
        self._closed = False
        self.frames_offered = 0
        self.frames_dropped = 0

    # ── Producer side ─────────────────────────────────────────

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        """Attach the event loop that owns the consumer.

        Rebinding to a different loop starts a fresh slot; a queue that
        has waited on one loop cannot be awaited from another.
        """
        if loop is self._loop:
            return
        self._loop = loop
        self._queue = asyncio.Queue(maxsize=1)
        self._busy = False

    def offer_threadsafe(self, frame: RawFrame) -> None:
        """Hand a frame over from a foreign thread (camera callback)."""
        loop = self._loop
        if loop is None or loop.is_closed():
            self.frames_dropped += 1
            return
        try:
            loop.call_soon_threadsafe(self.offer, frame)
        except RuntimeError:
            # Loop shut down between the check and the call.
            self.frames_dropped += 1

    def offer(self, frame: RawFrame) -> bool:
        """Offer a frame on the loop thread. Returns False if it was dropped."""
        self.frames_offered += 1
        if self._closed or self._suspended or self._busy or self._queue.full():
            self.frames_dropped += 1
            return False
        self._queue.put_nowait(frame)
        return True

    # ── Consumer side ─────────────────────────────────────────

    async def receive(self) -> Optional[RawFrame]:
        """Wait for the next frame; None once the channel is closed.

        The channel counts as busy until task_done() is called.
        """
        if self._closed:
            return None
        frame = await self._queue.get()
        if frame is None:
            return None
        self._busy = True
        return frame

    def task_done(self) -> None:
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    # ── Control ───────────────────────────────────────────────

    @property
    def suspended(self) -> bool:
        return self._suspended

    def suspend(self) -> None:
        """Stop accepting frames and discard any pending one."""
        self._suspended = True
        self._drain()

    def resume(self) -> None:
        self._suspended = False

    def close(self) -> None:
        """Wake a waiting consumer with None and refuse further frames."""
        if self._closed:
            return
        self._closed = True
        self._drain()
        self._queue.put_nowait(None)
        _log.debug(
            "FrameChannel closed — offered=%d dropped=%d",
            self.frames_offered, self.frames_dropped,
        )

    def _drain(self) -> None:
        while not self._queue.empty():
            self._queue.get_nowait()
