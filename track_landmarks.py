"""
Landmark-Track — Landmark Model
===============================
The landmark regressor consumed by the tracker, as a black box.

LandmarkModel contract:
  - mean_shape: canonical LandmarkSet, immutable after load
  - cold_detect(image, box): landmarks from a detector-provided face box
  - warm_detect(image, initial_shape): landmarks seeded by an initial shape
    (the previous frame's landmarks re-aligned onto the mean shape)

MediaPipeLandmarkModel implements it with MediaPipe FaceLandmarker run on a
crop around the seed region, reduced to a 5-point layout:

    left eye, right eye, nose tip, left mouth corner, right mouth corner
    FaceMesh indices 33, 263, 1, 61, 291

The mean shape is the 112x112 five-point alignment template.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from typing import Sequence

import cv2
import numpy as np

from track_geometry import enclosing_bounding_box
from track_types import BoundingBox, LandmarkSet, ModelLoadError

_log = logging.getLogger("TrackLandmarks")

# ─── 5-point layout ───────────────────────────────────────────
LANDMARK_IDS = (
    "left_eye",
    "right_eye",
    "nose_tip",
    "mouth_left",
    "mouth_right",
)
MESH_INDICES_5PT = [33, 263, 1, 61, 291]

# 112x112 alignment template, same order as LANDMARK_IDS
MEAN_SHAPE_5PT = np.array([
    [38.2946, 51.6963],
    [73.5318, 51.5014],
    [56.0252, 71.7366],
    [41.5493, 92.3655],
    [70.7299, 92.2041],
], dtype=np.float64)


class LandmarkModel(ABC):
    """Previously trained landmark regressor."""

    @property
    @abstractmethod
    def mean_shape(self) -> LandmarkSet:
        """Canonical landmark configuration learned at training time."""

    @abstractmethod
    def cold_detect(self, image: np.ndarray, box: BoundingBox) -> LandmarkSet:
        """Landmarks initialized from a face detector box."""

    @abstractmethod
    def warm_detect(self, image: np.ndarray, initial_shape: LandmarkSet) -> LandmarkSet:
        """Landmarks initialized from a provided shape instead of a box."""

    def release(self) -> None:
        """Optional cleanup logic on shutdown."""


def mesh_to_pixels(
    face_landmarks: Sequence,
    indices: Sequence[int],
    region: tuple[int, int, int, int],
) -> np.ndarray:
    """Map normalized mesh landmarks of a crop back to frame pixels.

    Args:
        face_landmarks: MediaPipe landmarks with normalized .x/.y in the crop.
        indices: Mesh indices to keep, in output order.
        region: (x, y, w, h) of the crop in the full frame.

    Returns:
        (len(indices), 2) float64 pixel coordinates.
    """
    x0, y0, w, h = region
    return np.array(
        [[x0 + face_landmarks[i].x * w, y0 + face_landmarks[i].y * h] for i in indices],
        dtype=np.float64,
    )


def clip_region(box: BoundingBox, frame_shape: tuple) -> tuple[int, int, int, int]:
    """Clip a box to the frame. Returns (x, y, w, h) ints, w/h may be 0."""
    fh, fw = frame_shape[:2]
    x1 = max(0, int(np.floor(box.x)))
    y1 = max(0, int(np.floor(box.y)))
    x2 = min(fw, int(np.ceil(box.x + box.width)))
    y2 = min(fh, int(np.ceil(box.y + box.height)))
    return (x1, y1, max(0, x2 - x1), max(0, y2 - y1))


class MediaPipeLandmarkModel(LandmarkModel):
    """5-point landmark model on top of MediaPipe FaceLandmarker."""

    def __init__(
        self,
        model_path: str = "models/face_landmarker.task",
        margin: float = 0.25,
        warm_margin: float = 0.8,
    ) -> None:
        """Load the FaceLandmarker asset.

        Args:
            model_path: Path to the MediaPipe .task model.
            margin: Crop margin around a detector box (fraction of box size).
            warm_margin: Crop margin around the initial shape's box. The
                5-point box only spans eyes to mouth so it needs more context.

        Raises:
            ModelLoadError: If the file is missing or cannot be loaded.
        """
        self.model_path = model_path
        self.margin = margin
        self.warm_margin = warm_margin
        self._mean_shape = LandmarkSet(MEAN_SHAPE_5PT, LANDMARK_IDS)

        if not os.path.exists(model_path):
            raise ModelLoadError(f"Landmark model not found: {model_path}")

        try:
            import mediapipe as mp
            from mediapipe.tasks import python
            from mediapipe.tasks.python import vision

            base_options = python.BaseOptions(model_asset_path=model_path)
            options = vision.FaceLandmarkerOptions(
                base_options=base_options,
                running_mode=vision.RunningMode.IMAGE,
                num_faces=1,
            )
            self._landmarker = vision.FaceLandmarker.create_from_options(options)
        except Exception as e:
            raise ModelLoadError(f"Error reading the landmark model {model_path}: {e}") from e

        self._mp = mp
        _log.info(
            "MediaPipeLandmarkModel loaded — %s (%.1f MB), %d landmarks",
            model_path,
            os.path.getsize(model_path) / 1024 / 1024,
            len(self._mean_shape),
        )

    @property
    def mean_shape(self) -> LandmarkSet:
        return self._mean_shape

    def cold_detect(self, image: np.ndarray, box: BoundingBox) -> LandmarkSet:
        return self._detect_in_region(image, box.expanded(self.margin))

    def warm_detect(self, image: np.ndarray, initial_shape: LandmarkSet) -> LandmarkSet:
        seed_box = enclosing_bounding_box(initial_shape)
        return self._detect_in_region(image, seed_box.expanded(self.warm_margin))

    def release(self) -> None:
        if self._landmarker is not None:
            self._landmarker.close()
            self._landmarker = None
        _log.info("MediaPipeLandmarkModel released")

    # ── Private ───────────────────────────────────────────────

    def _detect_in_region(self, image: np.ndarray, box: BoundingBox) -> LandmarkSet:
        region = clip_region(box, image.shape)
        x, y, w, h = region
        if w == 0 or h == 0:
            return LandmarkSet.empty()

        crop = np.ascontiguousarray(image[y:y + h, x:x + w])
        rgb = cv2.cvtColor(crop, cv2.COLOR_BGR2RGB)
        mp_image = self._mp.Image(image_format=self._mp.ImageFormat.SRGB, data=rgb)

        result = self._landmarker.detect(mp_image)
        if not result or not result.face_landmarks:
            return LandmarkSet.empty()

        coords = mesh_to_pixels(result.face_landmarks[0], MESH_INDICES_5PT, region)
        return LandmarkSet(coords, LANDMARK_IDS)
