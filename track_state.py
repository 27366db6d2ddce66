"""
Landmark-Track — Detect/Track State Machine
===========================================
Decides per frame between full face detection (cold start) and a
regression-only update seeded by the previous landmarks (warm start).

States:
  NO_TRACK:  run the face detector; first candidate seeds the landmark model
  TRACKING:  skip the detector; re-align the mean shape onto the last
              landmarks' box and run the model from there

  ┌──────────┐  face found + landmarks   ┌──────────┐
  │ NO_TRACK │ ────────────────────────▶ │ TRACKING │ ◀─┐ track kept
  └──────────┘ ◀──────────────────────── └──────────┘ ──┘
       ▲  │ no face        track-loss policy fires
       └──┘

With continue_tracking=False the machine never enters TRACKING and every
frame runs full detection, like a plain per-frame detector loop.

Track loss is a pluggable policy: a callable
    (result: LandmarkSet, frame_shape, previous_state) -> Optional[str]
returning a reason string when the track should be dropped.
"""

from __future__ import annotations

import logging
import time
from dataclasses import replace
from typing import Callable, Optional

import numpy as np

from track_detector import FaceDetector
from track_geometry import enclosing_bounding_box, warm_start_shape
from track_landmarks import LandmarkModel
from track_types import FrameResult, LandmarkSet, TrackState

_log = logging.getLogger("TrackState")

TrackLossPolicy = Callable[[LandmarkSet, tuple, TrackState], Optional[str]]


# ═══════════════════════════════════════════════════════════════
# Track-loss policies
# ═══════════════════════════════════════════════════════════════

def empty_result(result: LandmarkSet, frame_shape: tuple, state: TrackState) -> Optional[str]:
    """Drop the track when the regression returned no landmarks."""
    return "empty_result" if result.is_empty() else None


def degenerate_box(min_size: float = 10.0) -> TrackLossPolicy:
    """Drop the track when the landmarks' box collapses below min_size pixels."""
    def _policy(result, frame_shape, state):
        if result.is_empty():
            return "degenerate_box"
        box = enclosing_bounding_box(result)
        if box.width < min_size or box.height < min_size:
            return "degenerate_box"
        return None
    return _policy


def outside_frame(min_visible_fraction: float = 0.5) -> TrackLossPolicy:
    """Drop the track when too many landmarks fall outside the image."""
    def _policy(result, frame_shape, state):
        if result.is_empty():
            return None
        h, w = frame_shape[:2]
        inside = (
            (result.xs >= 0) & (result.xs < w)
            & (result.ys >= 0) & (result.ys < h)
        )
        if float(np.mean(inside)) < min_visible_fraction:
            return "outside_frame"
        return None
    return _policy


def reanchor_every(n_frames: int) -> TrackLossPolicy:
    """Force a full detection after n_frames tracked frames. 0 disables."""
    def _policy(result, frame_shape, state):
        if n_frames > 0 and state.frames_since_anchor + 1 >= n_frames:
            return "reanchor"
        return None
    return _policy


def scale_jump(max_ratio: float = 1.5) -> TrackLossPolicy:
    """Drop the track when the face size changes by more than max_ratio in one frame."""
    def _policy(result, frame_shape, state):
        if result.is_empty() or state.last_landmarks.is_empty():
            return None
        prev = enclosing_bounding_box(state.last_landmarks)
        cur = enclosing_bounding_box(result)
        if prev.width <= 0 or prev.height <= 0:
            return None
        for ratio in (cur.width / prev.width, cur.height / prev.height):
            if ratio > max_ratio or ratio < 1.0 / max_ratio:
                return "scale_jump"
        return None
    return _policy


def any_of(*policies: TrackLossPolicy) -> TrackLossPolicy:
    """First reason reported by any policy, checked in order."""
    def _policy(result, frame_shape, state):
        for policy in policies:
            reason = policy(result, frame_shape, state)
            if reason:
                return reason
        return None
    return _policy


def policy_from_config(tracking_cfg: dict) -> TrackLossPolicy:
    """Build the default track-loss policy from the `tracking` config section."""
    policies: list[TrackLossPolicy] = [
        empty_result,
        degenerate_box(tracking_cfg.get("min_box_size", 10.0)),
        outside_frame(tracking_cfg.get("min_visible_fraction", 0.5)),
    ]
    if tracking_cfg.get("reanchor_every", 0):
        policies.append(reanchor_every(int(tracking_cfg["reanchor_every"])))
    if tracking_cfg.get("max_scale_jump"):
        policies.append(scale_jump(float(tracking_cfg["max_scale_jump"])))
    return any_of(*policies)


# ═══════════════════════════════════════════════════════════════
# TrackingStateMachine
# ═══════════════════════════════════════════════════════════════

class TrackingStateMachine:
    """NO_TRACK / TRACKING transitions for a single face."""

    def __init__(
        self,
        detector: FaceDetector,
        model: LandmarkModel,
        loss_policy: Optional[TrackLossPolicy] = None,
        continue_tracking: bool = True,
    ) -> None:
        """
        Args:
            detector: Face detector used in NO_TRACK.
            model: Landmark model for cold and warm starts.
            loss_policy: Track-loss predicate. None falls back to empty_result.
            continue_tracking: Enter TRACKING after a successful cold start.
                False re-runs full detection every frame.
        """
        self.detector = detector
        self.model = model
        self.loss_policy = loss_policy or empty_result
        self.continue_tracking = continue_tracking

    def step(self, frame: np.ndarray, state: TrackState) -> tuple[FrameResult, TrackState]:
        """Run one transition. Returns the frame outcome and the next state."""
        if state.has_track and not state.last_landmarks.is_empty():
            return self._warm_start(frame, state)
        return self._cold_start(frame, state)

    # ── NO_TRACK ──────────────────────────────────────────────

    def _cold_start(self, frame: np.ndarray, state: TrackState) -> tuple[FrameResult, TrackState]:
        timing: dict = {}
        result = FrameResult(
            frame_index=state.frame_index,
            mode_before=state.mode,
            mode_after=state.mode,
            ran_detection=True,
            timing=timing,
        )

        t0 = time.monotonic()
        faces = self.detector.detect_faces(frame)
        timing["detect_ms"] = (time.monotonic() - t0) * 1000
        result.faces_detected = len(faces)

        if not faces:
            next_state = replace(
                state,
                has_track=False,
                last_landmarks=LandmarkSet.empty(),
                frame_index=state.frame_index + 1,
                frames_since_anchor=0,
            )
            result.mode_after = next_state.mode
            return result, next_state

        box = faces[0]
        result.detection_box = box

        t0 = time.monotonic()
        landmarks = self.model.cold_detect(frame, box)
        timing["landmarks_ms"] = (time.monotonic() - t0) * 1000
        result.landmarks = landmarks

        if landmarks.is_empty():
            _log.debug("Cold start returned no landmarks for box %s", box.as_int_tuple())
            has_track = False
        else:
            has_track = self.continue_tracking

        next_state = replace(
            state,
            has_track=has_track,
            last_landmarks=landmarks,
            frame_index=state.frame_index + 1,
            frames_since_anchor=0,
        )
        result.mode_after = next_state.mode
        if has_track:
            _log.info("Track acquired at frame %d", state.frame_index)
        return result, next_state

    # ── TRACKING ──────────────────────────────────────────────

    def _warm_start(self, frame: np.ndarray, state: TrackState) -> tuple[FrameResult, TrackState]:
        timing: dict = {}
        result = FrameResult(
            frame_index=state.frame_index,
            mode_before=state.mode,
            mode_after=state.mode,
            timing=timing,
        )

        initial_shape = warm_start_shape(state.last_landmarks, self.model.mean_shape)
        result.initial_shape = initial_shape

        t0 = time.monotonic()
        landmarks = self.model.warm_detect(frame, initial_shape)
        timing["landmarks_ms"] = (time.monotonic() - t0) * 1000
        result.landmarks = landmarks

        # A track never survives without landmarks, whatever the policy says
        if landmarks.is_empty():
            reason = "empty_result"
        else:
            reason = self.loss_policy(landmarks, frame.shape, state)
        if reason:
            _log.info("Track lost at frame %d (%s)", state.frame_index, reason)
            result.track_lost_reason = reason
            next_state = replace(
                state,
                has_track=False,
                last_landmarks=landmarks,
                frame_index=state.frame_index + 1,
                frames_since_anchor=0,
            )
        else:
            next_state = replace(
                state,
                has_track=True,
                last_landmarks=landmarks,
                frame_index=state.frame_index + 1,
                frames_since_anchor=state.frames_since_anchor + 1,
            )
        result.mode_after = next_state.mode
        return result, next_state
