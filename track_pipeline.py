"""
Landmark-Track — Frame Pipeline
===============================
One iteration of the tracker: detect-or-track, then render.

    frame ─▶ TrackingStateMachine.step ─▶ TrackerHUD.render ─▶ overlay
                     │
                     └─▶ new TrackState

process_frame takes the TrackState in and hands the next one back, so the
pipeline itself holds no per-session state and can sit behind a threaded
capture front end unchanged. It performs no I/O.

An empty frame (None or zero-size) is the end-of-stream signal: the call
returns (None, state) without touching the detector or the model.
"""

from __future__ import annotations

import logging
import time
from dataclasses import replace
from typing import Optional

import numpy as np

from track_hud import TrackerHUD
from track_state import TrackingStateMachine
from track_types import FrameResult, TrackState

_log = logging.getLogger("TrackPipeline")


def is_end_of_stream(frame: Optional[np.ndarray]) -> bool:
    return frame is None or frame.size == 0


class FramePipeline:
    """Sequences detection, regression, and overlay rendering for one frame."""

    def __init__(
        self,
        state_machine: TrackingStateMachine,
        hud: Optional[TrackerHUD] = None,
    ) -> None:
        self.state_machine = state_machine
        self.hud = hud or TrackerHUD()
        self.last_result: Optional[FrameResult] = None

    def process_frame(
        self,
        frame: Optional[np.ndarray],
        state: TrackState,
        fps: Optional[float] = None,
    ) -> tuple[Optional[np.ndarray], TrackState]:
        """Process one frame.

        Args:
            frame: BGR image, or None/empty at end of stream.
            state: Current tracking state.
            fps: Optional loop FPS shown on the overlay.

        Returns:
            (overlay_frame, new_state). overlay_frame is None at end of
            stream, in which case new_state is state unchanged.
        """
        if is_end_of_stream(frame):
            _log.info("End of stream after %d frames", state.frame_index)
            self.last_result = None
            return None, state

        t_start = time.monotonic()
        result, new_state = self.state_machine.step(frame, state)

        overlay, t_render = self.hud.render(frame, result, fps=fps)

        timing = dict(result.timing)
        timing["render_ms"] = t_render * 1000
        timing["total_ms"] = (time.monotonic() - t_start) * 1000
        result.timing = timing

        _log.debug(
            "frame=%d %s->%s FD: %.1f LM: %.1f",
            result.frame_index,
            result.mode_before.value,
            result.mode_after.value,
            timing.get("detect_ms", 0.0),
            timing.get("landmarks_ms", 0.0),
        )

        self.last_result = result
        return overlay, replace(new_state, timing=timing)
