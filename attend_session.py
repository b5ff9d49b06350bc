"""
Blink-Attend — Session Controller
==================================
Orchestrates one attendance (or registration) session:

  SCANNING ──blink──► CAPTURING ──► REGISTERING | VERIFYING ──► SUCCEEDED
      ▲                   │                │                   └► FAILED
      └───── retryable failure (liveness reset, intake resumed) ◄┘

Frames arrive through a FrameChannel fed by the camera's reader thread.
While any stage is running the processing flag is set and new ticks are
dropped. Every failure except NotEnrolled returns the session to SCANNING;
NotEnrolled ends it as FAILED until retry().

The controller's observable state is an immutable SessionState that is
replaced on every transition.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Optional

from attend_capture import CaptureOutcome, CapturePipeline, call_with_timeout
from attend_channel import FrameChannel
from attend_comparator import EmbeddingComparator
from attend_errors import AttendanceError, DetectorError, NotEnrolled, PersistenceFailed, VerificationMismatch
from attend_liveness import (
    DEFAULT_POLICY,
    MSG_CAPTURING,
    MSG_LOOK_STRAIGHT,
    MSG_NO_FACE,
    LivenessPolicy,
    LivenessTracker,
)
from attend_logger import get_logger
from attend_preprocess import preprocess
from attend_types import (
    LivenessState,
    RawFrame,
    SessionOutcome,
    SessionResult,
    StatusLevel,
    StatusUpdate,
)
from attend_utils import SIMILARITY_THRESHOLD

_log = logging.getLogger("AttendSession")

MSG_REGISTERED = "Face registered successfully!"
MSG_REGISTER_FAILED = "Face registration failed. Please try again."
MSG_CHECKED_IN = "Attendance recorded successfully!"
MSG_CHECKIN_FAILED = "Attendance recording failed"

DEFAULT_CONFIG = {
    "similarity_threshold": SIMILARITY_THRESHOLD,
    "external_call_timeout_s": None,
    "log_dir": "logs",
}

_LIVENESS_LEVELS = {
    MSG_LOOK_STRAIGHT: StatusLevel.WARNING,
    MSG_CAPTURING: StatusLevel.SUCCESS,
}

StatusCallback = Callable[[StatusUpdate], None]


class SessionPhase(str, Enum):
    SCANNING = "scanning"
    CAPTURING = "capturing"
    REGISTERING = "registering"
    VERIFYING = "verifying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class SessionState:
    phase: SessionPhase = SessionPhase.SCANNING
    liveness: LivenessState = LivenessState.IDLE
    status: StatusUpdate = StatusUpdate(MSG_NO_FACE)
    processing: bool = False
    result: Optional[SessionResult] = None

    @property
    def terminal(self) -> bool:
        return self.phase in (SessionPhase.SUCCEEDED, SessionPhase.FAILED)


class SessionController:
    """Drives scanning, capture and registration/verification for one user."""

    def __init__(
        self,
        camera,
        detector,
        embedder,
        enrollment_store,
        attendance_store,
        user_context,
        registration: bool = False,
        comparator: Optional[EmbeddingComparator] = None,
        policy: Optional[LivenessPolicy] = None,
        config: Optional[dict] = None,
        on_status: Optional[StatusCallback] = None,
        audit_logger=None,
        channel: Optional[FrameChannel] = None,
    ):
        self.config = {**DEFAULT_CONFIG, **(config or {})}
        self.camera = camera
        self.detector = detector
        self.enrollment_store = enrollment_store
        self.attendance_store = attendance_store
        self.user_context = user_context
        self.registration = registration
        self.comparator = comparator or EmbeddingComparator(float(self.config["similarity_threshold"]))
        self.on_status = on_status
        self.audit = audit_logger if audit_logger is not None else get_logger(self.config["log_dir"])

        timeout = self.config["external_call_timeout_s"]
        self.timeout: Optional[float] = float(timeout) if timeout is not None else None

        self.tracker = LivenessTracker(policy or DEFAULT_POLICY)
        self.channel = channel or FrameChannel()
        self.pipeline = CapturePipeline(camera, embedder, self.channel, timeout=self.timeout)

        self.state = SessionState()
        self.frames_skipped = 0

        self.audit.log({
            "user_id": user_context.user_id,
            "mode": "registration" if registration else "attendance",
            "threshold": self.comparator.threshold,
            "timeout_s": self.timeout,
        }, event="session_init")

    # ── State ─────────────────────────────────────────────────

    def _set_state(self, **changes) -> None:
        previous = self.state
        self.state = replace(previous, **changes)

        if self.state.phase != previous.phase:
            _log.info("Session %s → %s", previous.phase.value, self.state.phase.value)
            self.audit.log({
                "from": previous.phase,
                "to": self.state.phase,
                "liveness": self.state.liveness,
            }, event="phase_change")

        if self.state.status != previous.status and self.on_status is not None:
            try:
                self.on_status(self.state.status)
            except Exception:
                _log.exception("Status callback failed")

    # ── Frame processing ──────────────────────────────────────

    async def process_frame(self, raw: RawFrame) -> None:
        """Handle one camera tick. Ignored while busy or outside SCANNING."""
        if self.state.processing or self.state.phase is not SessionPhase.SCANNING:
            self.frames_skipped += 1
            return

        self._set_state(processing=True)
        try:
            await self._scan(raw)
        finally:
            self._set_state(processing=False)

    async def _scan(self, raw: RawFrame) -> None:
        frame = preprocess(
            raw,
            self.camera.sensor_orientation,
            self.camera.device_orientation,
            self.camera.lens_facing,
        )
        if frame is None:
            self.frames_skipped += 1
            return

        try:
            faces = await call_with_timeout(self.detector.detect_faces(frame), self.timeout, DetectorError)
        except DetectorError as exc:
            self.audit.warn(f"Face detection failed: {exc}", {"error": type(exc).__name__})
            self.tracker.reset()
            self._set_state(liveness=self.tracker.state)
            return

        result = self.tracker.update(faces[0] if faces else None)
        level = _LIVENESS_LEVELS.get(result.status_message, StatusLevel.INFO)
        self._set_state(liveness=result.next_state, status=StatusUpdate(result.status_message, level))

        if result.should_capture:
            await self._capture_and_submit()

    # ── Capture → register / verify ───────────────────────────

    async def _capture_and_submit(self) -> None:
        self._set_state(phase=SessionPhase.CAPTURING)
        self.audit.log({"attempt": self.pipeline.attempts + 1}, event="capture_start")
        try:
            outcome = await self.pipeline.run()
            if outcome is None:
                return
            if self.registration:
                self._set_state(phase=SessionPhase.REGISTERING)
                await self._register(outcome)
            else:
                self._set_state(phase=SessionPhase.VERIFYING)
                await self._verify(outcome)
        except AttendanceError as exc:
            if exc.retryable:
                self._recover(exc)
            else:
                self._fail(exc)

    async def _register(self, outcome: CaptureOutcome) -> None:
        saved = await self._persist(
            self.enrollment_store.update_face_embedding(self.user_context.user_id, outcome.embedding),
            MSG_REGISTER_FAILED,
        )
        if not saved:
            raise PersistenceFailed(MSG_REGISTER_FAILED, log_message="Enrollment store rejected the embedding")
        self._succeed(SessionOutcome.REGISTERED, MSG_REGISTERED, outcome.image.path)

    async def _verify(self, outcome: CaptureOutcome) -> None:
        stored = self.user_context.face_embedding or ""
        if not stored.strip():
            raise NotEnrolled()

        score = self.comparator.compare(stored, outcome.embedding)
        matched = score >= self.comparator.threshold
        self.audit.log({
            "user_id": self.user_context.user_id,
            "similarity": score,
            "threshold": self.comparator.threshold,
            "matched": matched,
        }, event="verification")
        if not matched:
            raise VerificationMismatch(
                log_message=f"Similarity {score:.3f} below threshold {self.comparator.threshold}",
            )

        checked_in = await self._persist(
            self.attendance_store.check_in(
                self.user_context.user_id, self.user_context.name, outcome.image.path,
            ),
            MSG_CHECKIN_FAILED,
        )
        if not checked_in:
            raise PersistenceFailed(MSG_CHECKIN_FAILED, log_message="Attendance store rejected the check-in")
        self._succeed(SessionOutcome.VERIFIED, MSG_CHECKED_IN, outcome.image.path)

    async def _persist(self, awaitable, failure_message: str) -> bool:
        try:
            return bool(await call_with_timeout(awaitable, self.timeout, PersistenceFailed))
        except PersistenceFailed as exc:
            raise PersistenceFailed(failure_message, log_message=str(exc)) from exc

    # ── Outcomes ──────────────────────────────────────────────

    def _succeed(self, outcome: SessionOutcome, message: str, image_path: Optional[str]) -> None:
        result = SessionResult(outcome, message, image_path)
        self.audit.log(result.to_dict(), event="session_result")
        self._set_state(
            phase=SessionPhase.SUCCEEDED,
            status=StatusUpdate(message, StatusLevel.SUCCESS),
            result=result,
        )

    def _fail(self, exc: AttendanceError) -> None:
        _log.warning("Session failed: %s", exc)
        result = SessionResult(SessionOutcome.FAILED, exc.user_message)
        self.audit.log(result.to_dict(), event="session_result")
        self._set_state(
            phase=SessionPhase.FAILED,
            status=StatusUpdate(exc.user_message, StatusLevel.ERROR),
            result=result,
        )

    def _recover(self, exc: AttendanceError) -> None:
        """Back to SCANNING after a retryable failure."""
        self.audit.warn(f"Retryable failure: {exc}", {"error": type(exc).__name__})
        self.tracker.reset()
        if self.channel.suspended:
            self.pipeline.resume_intake()
        self._set_state(
            phase=SessionPhase.SCANNING,
            liveness=self.tracker.state,
            status=StatusUpdate(exc.user_message, StatusLevel.ERROR),
        )

    # ── Lifecycle ─────────────────────────────────────────────

    async def run(self) -> Optional[SessionResult]:
        """Consume frames until the session reaches a terminal result.

        Returns None if the channel is closed first.
        """
        self.channel.bind(asyncio.get_running_loop())
        self.pipeline.resume_intake()
        self.audit.log({"user_id": self.user_context.user_id}, event="session_start")
        try:
            while not self.state.terminal:
                raw = await self.channel.receive()
                if raw is None:
                    break
                try:
                    await self.process_frame(raw)
                finally:
                    self.channel.task_done()
        finally:
            self.pipeline.suspend_intake()
        return self.state.result

    def retry(self) -> bool:
        """Return a FAILED session to SCANNING. False if not FAILED."""
        if self.state.phase is not SessionPhase.FAILED:
            return False
        self.tracker.reset()
        self._set_state(
            phase=SessionPhase.SCANNING,
            liveness=self.tracker.state,
            status=StatusUpdate(MSG_NO_FACE),
            result=None,
        )
        return True

    def close(self) -> None:
        """Stop intake and release the camera."""
        self.channel.close()
        self.camera.release()
        self.audit.log({
            "frames_offered": self.channel.frames_offered,
            "frames_dropped": self.channel.frames_dropped,
            "frames_skipped": self.frames_skipped,
            "capture_attempts": self.pipeline.attempts,
        }, event="session_closed")
