"""
Landmark-Track — Frame Source
=============================
Owns ALL capture. No other file should touch cv2.VideoCapture directly.

Features:
  - Camera index or video file path
  - End-of-stream as a None frame (not an error)
  - Grayscale / BGRA frames converted to 3-channel BGR
  - Health monitoring (rolling FPS, frame count, resolution)
"""

from __future__ import annotations

import logging
import time
from collections import deque
from typing import Optional, Union

import cv2
import numpy as np

from track_types import SourceOpenError

_log = logging.getLogger("TrackCamera")


class VideoSource:
    """Pull source of BGR frames from a camera or a video file."""

    FPS_WINDOW: int = 30  # frames used for rolling FPS

    def __init__(
        self,
        source: Union[int, str] = 0,
        backend: int = cv2.CAP_ANY,
        width: Optional[int] = None,
        height: Optional[int] = None,
    ) -> None:
        """Open the capture.

        Args:
            source: Camera index, or path to a video file.
            backend: OpenCV capture backend.
            width: Requested capture width (cameras only).
            height: Requested capture height (cameras only).

        Raises:
            SourceOpenError: If the camera or file cannot be opened.
        """
        self._source = source
        self._cap: cv2.VideoCapture = cv2.VideoCapture(source, backend)
        if not self._cap.isOpened():
            raise SourceOpenError(f"Couldn't open the given file or camera {source!r}.")

        if isinstance(source, int):
            if width:
                self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
            if height:
                self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)

        self._resolution: tuple[int, int] = (
            int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
        )
        self._frames_read: int = 0
        self._frame_times: deque[float] = deque(maxlen=self.FPS_WINDOW)
        self._exhausted: bool = False

        _log.info(
            "VideoSource opened — source=%r resolution=%s fps_cap=%.1f",
            source,
            self._resolution,
            self._cap.get(cv2.CAP_PROP_FPS),
        )

    # ── Public API ────────────────────────────────────────────

    def read_frame(self) -> Optional[np.ndarray]:
        """Read the next frame. Returns None once the stream is exhausted."""
        if self._exhausted:
            return None

        ret, frame = self._cap.read()
        if not ret or frame is None or frame.size == 0:
            self._exhausted = True
            _log.info("VideoSource exhausted after %d frames", self._frames_read)
            return None

        frame = self._to_bgr(frame)
        self._frames_read += 1
        self._frame_times.append(time.monotonic())
        return frame

    def get_health_status(self) -> dict:
        return {
            "connected": self._cap.isOpened(),
            "exhausted": self._exhausted,
            "fps_actual": self._calculate_fps(),
            "frames_read": self._frames_read,
            "resolution": self._resolution,
            "source": str(self._source),
        }

    def release(self) -> None:
        _log.info(
            "VideoSource releasing — frames=%d avg_fps=%.1f",
            self._frames_read,
            self._calculate_fps(),
        )
        self._cap.release()

    def __enter__(self) -> "VideoSource":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()

    # ── Private helpers ───────────────────────────────────────

    @staticmethod
    def _to_bgr(frame: np.ndarray) -> np.ndarray:
        if frame.ndim == 2:
            return cv2.cvtColor(frame, cv2.COLOR_GRAY2BGR)
        if frame.shape[2] == 4:
            return cv2.cvtColor(frame, cv2.COLOR_BGRA2BGR)
        return frame

    def _calculate_fps(self) -> float:
        if len(self._frame_times) < 2:
            return 0.0
        elapsed = self._frame_times[-1] - self._frame_times[0]
        if elapsed <= 0:
            return 0.0
        return (len(self._frame_times) - 1) / elapsed
