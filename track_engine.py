"""
Landmark-Track — TrackerEngine (Session Core)
=============================================
Sets up the collaborators and drives the synchronous frame loop.

  1. Load config (config.yaml merged over DEFAULT_CONFIG)
  2. Load face detector, landmark model, frame source — any failure is
     raised as a TrackerSetupError and the session does not start
  3. Loop: read frame → FramePipeline.process_frame → sink(overlay)
     until end of stream or the stop event is set

One frame is fully processed before the next is read. TrackState lives in
the loop and is handed in and out of the pipeline every iteration.
"""

import logging
import os
import threading
import time
from collections import deque
from typing import Callable, Optional

import numpy as np
import psutil
import yaml

from track_camera import VideoSource
from track_detector import FaceDetector, HaarFaceDetector
from track_geometry import scale_factor
from track_hud import TrackerHUD
from track_landmarks import LandmarkModel, MediaPipeLandmarkModel
from track_logger import get_logger
from track_pipeline import FramePipeline
from track_state import TrackingStateMachine, policy_from_config
from track_types import (
    DegenerateGeometryError,
    InvalidInputError,
    ModelLoadError,
    TrackerSetupError,
    TrackState,
)

_log = logging.getLogger("TrackEngine")

_SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
DEFAULT_CONFIG_PATH = os.path.join(_SCRIPT_DIR, "config.yaml")

DEFAULT_CONFIG = {
    "source": 0,
    "face_detector": {
        "cascade_path": "haarcascade_frontalface_alt2.xml",
        "scale_factor": 1.2,
        "min_neighbors": 2,
        "min_size": [50, 50],
        "equalize_hist": False,
    },
    "landmark_model": {
        "model_path": "models/face_landmarker.task",
        "margin": 0.25,
        "warm_margin": 0.8,
    },
    "tracking": {
        "continue_tracking": True,
        "min_box_size": 10.0,
        "min_visible_fraction": 0.5,
        "reanchor_every": 0,  # 0 = only re-detect on track loss
        "max_scale_jump": 0,  # 0 = disabled
    },
    "hud": {
        "show_status": True,
        "show_initial_shape": False,
    },
    "log_path": "logs/track_session.jsonl",
}

FrameSink = Callable[[np.ndarray], None]


def load_config(path: Optional[str] = None) -> dict:
    """Load a YAML config and merge it over DEFAULT_CONFIG.

    Sections are merged one level deep so a file may override single keys.
    A missing default config.yaml is not an error; a missing explicit path is.
    """
    target = path or DEFAULT_CONFIG_PATH
    if path is None and not os.path.exists(target):
        return merge_config({})
    try:
        with open(target, "r", encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise TrackerSetupError(f"Error reading config {target}: {e}") from e
    return merge_config(loaded)


def merge_config(overrides: dict) -> dict:
    merged = {}
    for key, default in DEFAULT_CONFIG.items():
        value = overrides.get(key, default)
        if isinstance(default, dict):
            value = {**default, **(value or {})}
        merged[key] = value
    for key, value in overrides.items():
        merged.setdefault(key, value)
    return merged


class TrackerEngine:
    """Single-face landmark tracking session."""

    def __init__(
        self,
        config: Optional[dict] = None,
        detector: Optional[FaceDetector] = None,
        model: Optional[LandmarkModel] = None,
        source: Optional[VideoSource] = None,
    ):
        """Build the session. Collaborators not passed in are created from config.

        Raises:
            TrackerSetupError: If detector, model or source fail to load, or
                the model's mean shape is degenerate (ModelLoadError).
        """
        self.config = merge_config(config or {})
        self.logger = get_logger(self.config["log_path"])
        self.logger.log({"event": "engine_init_start", "config": self.config})

        # Collaborators built here are released again if setup fails
        created = []
        try:
            self.detector = detector or self._load_detector(self.config["face_detector"])
            if detector is None:
                created.append(self.detector)
            self.model = model or self._load_model(self.config["landmark_model"])
            if model is None:
                created.append(self.model)
            self._check_mean_shape(self.model)
            self.source = source or VideoSource(self.config["source"])
            if source is None:
                created.append(self.source)
        except TrackerSetupError as e:
            self.logger.error(f"Session setup failed: {e}", exception=e)
            for collaborator in reversed(created):
                collaborator.release()
            self.logger.close()
            raise

        tracking_cfg = self.config["tracking"]
        self.state_machine = TrackingStateMachine(
            self.detector,
            self.model,
            loss_policy=policy_from_config(tracking_cfg),
            continue_tracking=tracking_cfg["continue_tracking"],
        )
        hud_cfg = self.config["hud"]
        self.pipeline = FramePipeline(
            self.state_machine,
            TrackerHUD(
                show_status=hud_cfg["show_status"],
                show_initial_shape=hud_cfg["show_initial_shape"],
            ),
        )

        self.state = TrackState.initial()
        self.stop_event = threading.Event()
        self._frame_times: deque = deque(maxlen=60)

        self.logger.log({"event": "engine_init_complete"})

    @staticmethod
    def _load_detector(cfg: dict) -> FaceDetector:
        return HaarFaceDetector(
            cascade_path=cfg["cascade_path"],
            scale_factor=cfg["scale_factor"],
            min_neighbors=cfg["min_neighbors"],
            min_size=tuple(cfg["min_size"]),
            equalize_hist=cfg.get("equalize_hist", False),
        )

    @staticmethod
    def _load_model(cfg: dict) -> LandmarkModel:
        return MediaPipeLandmarkModel(
            model_path=cfg["model_path"],
            margin=cfg["margin"],
            warm_margin=cfg["warm_margin"],
        )

    @staticmethod
    def _check_mean_shape(model: LandmarkModel) -> None:
        mean = model.mean_shape
        try:
            scale_factor(mean, mean)
        except (DegenerateGeometryError, InvalidInputError) as e:
            raise ModelLoadError(f"Landmark model has an unusable mean shape: {e}") from e

    @property
    def fps(self) -> float:
        total = sum(self._frame_times)
        return len(self._frame_times) / total if total > 0 else 0.0

    def stop(self) -> None:
        """Ask the loop to exit after the current frame."""
        self.stop_event.set()

    def step(self) -> Optional[np.ndarray]:
        """Read and process one frame. Returns the overlay, or None at end of stream."""
        t0 = time.monotonic()
        frame = self.source.read_frame()
        overlay, new_state = self.pipeline.process_frame(frame, self.state, fps=self.fps)
        if overlay is None:
            return None

        prev_state, self.state = self.state, new_state
        self._frame_times.append(time.monotonic() - t0)
        self._audit(prev_state)
        return overlay

    def run(self, sink: Optional[FrameSink] = None, max_frames: Optional[int] = None) -> int:
        """Run until end of stream, stop(), or max_frames. Returns frames processed.

        DegenerateGeometryError and InvalidInputError are not caught per
        frame; they are logged and re-raised.
        """
        processed = 0
        self.logger.log({"event": "loop_start"})
        try:
            while not self.stop_event.is_set():
                if max_frames is not None and processed >= max_frames:
                    break
                overlay = self.step()
                if overlay is None:
                    break
                processed += 1
                if sink is not None:
                    sink(overlay)
        except DegenerateGeometryError as e:
            self.logger.error(f"Reference shape is degenerate, model is corrupt: {e}", exception=e)
            raise
        except Exception as e:
            self.logger.error(f"Tracking loop failed at frame {self.state.frame_index}: {e}", exception=e)
            raise
        finally:
            self.logger.log({"event": "loop_end", "frames": processed})
        return processed

    def release(self) -> None:
        self.source.release()
        self.model.release()
        self.detector.release()
        self.logger.close()

    def __enter__(self) -> "TrackerEngine":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()

    # ── Private ───────────────────────────────────────────────

    def _audit(self, prev_state: TrackState) -> None:
        result = self.pipeline.last_result
        if result is None:
            return
        entry = result.to_dict()
        entry["fps"] = self.fps
        entry["memory_mb"] = psutil.Process().memory_info().rss / 1e6
        self.logger.log_frame(entry)

        if not prev_state.has_track and self.state.has_track:
            self.logger.log({"frame_index": result.frame_index}, event="track_acquired")
        elif result.track_lost_reason:
            self.logger.log(
                {"frame_index": result.frame_index, "reason": result.track_lost_reason},
                event="track_lost",
            )
