"""
Blink-Attend — Blink Liveness State Machine
============================================
Proves the subject is a live human with a deliberate
eyes-open → eyes-closed → eyes-open blink.

States: IDLE → EYES_OPEN → EYES_CLOSED → COMPLETE

  Tick input          | Effect
  --------------------|--------------------------------------------
  no face             | → IDLE, "Position your face in the frame"
  |yaw| > max yaw     | hold state, "Please look straight at the camera"
  IDLE, both > open   | → EYES_OPEN (status "Face detected...")
  EYES_OPEN, both < closed | → EYES_CLOSED
  EYES_CLOSED, both > open | → COMPLETE, capture fires once
  COMPLETE            | terminal

HYSTERESIS: the open (0.8) and closed (0.2) thresholds form a band, so
probability noise around 0.5 never completes a blink on its own.

A tick advances at most one state. Unknown eye probabilities count as
open, and that default is applied here and nowhere earlier.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from attend_errors import NoFaceDetected, PoseRejected
from attend_types import DetectedFace, EyeOpenness, Known, LivenessState
from attend_utils import (
    CLOSED_EYE_THRESHOLD,
    MAX_HEAD_YAW_DEGREES,
    OPEN_EYE_THRESHOLD,
)

_log = logging.getLogger("AttendLiveness")

MSG_NO_FACE = NoFaceDetected.default_message
MSG_LOOK_STRAIGHT = PoseRejected.default_message
MSG_BLINK = "Face detected. Now, please blink."
MSG_CAPTURING = "Blink detected! Capturing..."

UNKNOWN_EYE_DEFAULT = 1.0


@dataclass(frozen=True)
class LivenessPolicy:
    """Threshold bundle for one session. Fixed once the session starts."""
    open_eye_threshold: float = OPEN_EYE_THRESHOLD
    closed_eye_threshold: float = CLOSED_EYE_THRESHOLD
    max_head_yaw_degrees: float = MAX_HEAD_YAW_DEGREES

    def __post_init__(self) -> None:
        if not 0.0 <= self.closed_eye_threshold < self.open_eye_threshold <= 1.0:
            raise ValueError(
                "Liveness thresholds must satisfy 0 <= closed < open <= 1, got "
                f"closed={self.closed_eye_threshold} open={self.open_eye_threshold}"
            )

    @classmethod
    def from_config(cls, section: Optional[dict]) -> "LivenessPolicy":
        section = section or {}
        return cls(
            open_eye_threshold=float(section.get("open_eye_threshold", OPEN_EYE_THRESHOLD)),
            closed_eye_threshold=float(section.get("closed_eye_threshold", CLOSED_EYE_THRESHOLD)),
            max_head_yaw_degrees=float(section.get("max_head_yaw_degrees", MAX_HEAD_YAW_DEGREES)),
        )


DEFAULT_POLICY = LivenessPolicy()


@dataclass(frozen=True)
class LivenessStep:
    next_state: LivenessState
    status_message: str
    should_capture: bool = False


def open_probability(eye: EyeOpenness) -> float:
    """Resolve Known(p) | Unknown into a probability; Unknown reads as open."""
    if isinstance(eye, Known):
        return eye.value
    return UNKNOWN_EYE_DEFAULT


def step(
    state: LivenessState,
    face: Optional[DetectedFace],
    current_status: str = MSG_NO_FACE,
    policy: LivenessPolicy = DEFAULT_POLICY,
) -> LivenessStep:
    """Advance the blink state machine by one tick. Pure function."""
    if face is None:
        return LivenessStep(LivenessState.IDLE, MSG_NO_FACE)

    if face.head_yaw is not None and abs(face.head_yaw) > policy.max_head_yaw_degrees:
        return LivenessStep(state, MSG_LOOK_STRAIGHT)

    left = open_probability(face.left_eye_open)
    right = open_probability(face.right_eye_open)
    both_open = left > policy.open_eye_threshold and right > policy.open_eye_threshold
    both_closed = left < policy.closed_eye_threshold and right < policy.closed_eye_threshold

    if state == LivenessState.IDLE:
        next_state = LivenessState.EYES_OPEN if both_open else LivenessState.IDLE
        return LivenessStep(next_state, MSG_BLINK)

    if state == LivenessState.EYES_OPEN:
        if both_closed:
            return LivenessStep(LivenessState.EYES_CLOSED, current_status)
        return LivenessStep(state, current_status)

    if state == LivenessState.EYES_CLOSED:
        if both_open:
            return LivenessStep(LivenessState.COMPLETE, MSG_CAPTURING, should_capture=True)
        return LivenessStep(state, current_status)

    # COMPLETE: terminal
    return LivenessStep(state, current_status)


class LivenessTracker:
    """Per-session holder around step().

    Keeps the current state and status line, and guarantees the capture
    signal is raised at most once until reset().
    """

    def __init__(self, policy: LivenessPolicy = DEFAULT_POLICY):
        self.policy = policy
        self.state = LivenessState.IDLE
        self.status = MSG_NO_FACE
        self._capture_fired = False

    def update(self, face: Optional[DetectedFace]) -> LivenessStep:
        """Process one tick and return the step that was applied."""
        result = step(self.state, face, self.status, self.policy)

        should_capture = result.should_capture and not self._capture_fired
        if should_capture:
            self._capture_fired = True

        if result.next_state != self.state:
            _log.debug("Liveness %s → %s", self.state.value, result.next_state.value)

        self.state = result.next_state
        self.status = result.status_message
        # Face loss from COMPLETE re-arms the tracker.
        if self.state == LivenessState.IDLE:
            self._capture_fired = False

        return LivenessStep(result.next_state, result.status_message, should_capture)

    @property
    def complete(self) -> bool:
        return self.state == LivenessState.COMPLETE

    def reset(self) -> None:
        """Return to IDLE and re-arm the capture signal."""
        self.state = LivenessState.IDLE
        self.status = MSG_NO_FACE
        self._capture_fired = False
