"""
Landmark-Track — Overlay Renderer
=================================
Draws the tracker's per-frame outcome onto a copy of the frame.

  - Landmarks as filled dots (green when tracked, yellow on cold start)
  - Face detector box when full detection ran (blue)
  - Optional warm-start initial shape (gray), for debugging the re-alignment
  - Status bar with mode and FD/LM timings, FPS counter

Frames where detection found no face are returned as a plain copy.
"""

import logging
import time
from typing import Optional, Tuple

import cv2
import numpy as np

from track_types import FrameResult, LandmarkSet, TrackMode

_log = logging.getLogger("TrackHUD")


class TrackerHUD:
    """Overlay for the landmark tracker."""

    COLORS = {
        "detection_box": (255, 0, 0),      # Blue
        "cold_start": (0, 255, 255),       # Yellow
        "tracked": (0, 255, 0),            # Green
        "initial_shape": (160, 160, 160),  # Gray
        "track_lost": (0, 0, 255),         # Red
    }

    MODE_LABELS = {
        TrackMode.NO_TRACK: "DETECTING",
        TrackMode.TRACKING: "TRACKING",
    }

    def __init__(
        self,
        show_status: bool = True,
        show_initial_shape: bool = False,
        landmark_radius: int = 2,
    ):
        self.show_status = show_status
        self.show_initial_shape = show_initial_shape
        self.landmark_radius = landmark_radius
        _log.info("TrackerHUD initialized")

    def render(
        self,
        frame: np.ndarray,
        result: FrameResult,
        fps: Optional[float] = None,
    ) -> Tuple[Optional[np.ndarray], float]:
        """Draw overlay onto a copy of the frame.

        Args:
            frame: BGR image. Never modified.
            result: Outcome of the frame from the state machine.
            fps: Loop FPS to display, if known.

        Returns:
            (annotated_frame, render_time_seconds)
        """
        t_start = time.monotonic()

        if frame is None:
            return None, 0.0

        viz = frame.copy()

        if result.detection_box is not None:
            x, y, w, h = result.detection_box.as_int_tuple()
            cv2.rectangle(viz, (x, y), (x + w, y + h), self.COLORS["detection_box"], 1)

        if self.show_initial_shape and result.initial_shape is not None:
            self.draw_landmarks(viz, result.initial_shape, self.COLORS["initial_shape"])

        if not result.landmarks.is_empty():
            if result.track_lost_reason:
                color = self.COLORS["track_lost"]
            elif result.ran_detection:
                color = self.COLORS["cold_start"]
            else:
                color = self.COLORS["tracked"]
            self.draw_landmarks(viz, result.landmarks, color)

        no_face = result.ran_detection and result.faces_detected == 0
        if self.show_status and not no_face:
            self._draw_status_bar(viz, result)
            if fps is not None:
                self._draw_fps(viz, fps)

        return viz, time.monotonic() - t_start

    def draw_landmarks(
        self,
        frame: np.ndarray,
        landmarks: LandmarkSet,
        color: Tuple[int, int, int],
    ) -> None:
        for _, x, y in landmarks.points():
            cv2.circle(frame, (int(round(x)), int(round(y))), self.landmark_radius, color, -1)

    def _draw_status_bar(self, frame: np.ndarray, result: FrameResult):
        h, w = frame.shape[:2]
        bar_h = 30
        overlay = frame.copy()
        cv2.rectangle(overlay, (0, h - bar_h), (w, h), (0, 0, 0), -1)
        alpha = 0.6
        cv2.addWeighted(overlay, alpha, frame, 1 - alpha, 0, frame)

        label = self.MODE_LABELS.get(result.mode_after, str(result.mode_after))
        if result.track_lost_reason:
            label = f"{label} (lost: {result.track_lost_reason})"
        cv2.putText(frame, label, (10, h - 10),
            cv2.FONT_HERSHEY_SIMPLEX, 0.5, (255, 255, 255), 1)

        timing = result.timing
        parts = []
        if "detect_ms" in timing:
            parts.append(f"FD: {timing['detect_ms']:.0f}ms")
        if "landmarks_ms" in timing:
            parts.append(f"LM: {timing['landmarks_ms']:.0f}ms")
        if parts:
            text = " | ".join(parts)
            text_w = cv2.getTextSize(text, cv2.FONT_HERSHEY_SIMPLEX, 0.5, 1)[0][0]
            cv2.putText(frame, text, (w - text_w - 10, h - 10),
                cv2.FONT_HERSHEY_SIMPLEX, 0.5, (200, 200, 200), 1)

    def _draw_fps(self, frame: np.ndarray, fps: float):
        cv2.putText(frame, f"FPS: {fps:.1f}", (10, 25),
            cv2.FONT_HERSHEY_SIMPLEX, 0.6, (0, 255, 0), 2)
