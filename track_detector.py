"""
Landmark-Track — Face Detector
==============================
Owns ALL face detection. The tracker only runs it in NO_TRACK mode.

Features:
  - FaceDetector interface: detect_faces(image) -> ordered list of boxes
  - HaarFaceDetector: OpenCV cascade classifier (detectMultiScale)
  - Candidate order is whatever the detector returns, never re-ranked
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from typing import Optional

import cv2
import numpy as np

from track_types import BoundingBox, DetectorLoadError

_log = logging.getLogger("TrackDetector")

DEFAULT_CASCADE = "haarcascade_frontalface_alt2.xml"


class FaceDetector(ABC):
    """Binary face classifier over image regions."""

    @abstractmethod
    def detect_faces(self, image: np.ndarray) -> list[BoundingBox]:
        """Return candidate face boxes in detector order. May be empty."""

    def release(self) -> None:
        """Optional cleanup logic on shutdown."""


class HaarFaceDetector(FaceDetector):
    """OpenCV Haar cascade face detector.

    Detection parameters default to the ones the tracker was tuned with:
    scale step 1.2, 2 neighbours, 50x50 minimum face.
    """

    def __init__(
        self,
        cascade_path: Optional[str] = None,
        scale_factor: float = 1.2,
        min_neighbors: int = 2,
        min_size: tuple[int, int] = (50, 50),
        equalize_hist: bool = False,
    ) -> None:
        """Load the cascade.

        Args:
            cascade_path: Path to a cascade XML. A bare file name is looked
                up in cv2.data.haarcascades. None uses DEFAULT_CASCADE.
            scale_factor: Image pyramid step for detectMultiScale.
            min_neighbors: Neighbour count a candidate needs to be kept.
            min_size: Smallest face (w, h) in pixels.
            equalize_hist: Equalize the grayscale image before detection.

        Raises:
            DetectorLoadError: If the cascade file cannot be loaded.
        """
        self.cascade_path = self._resolve_path(cascade_path or DEFAULT_CASCADE)
        self.scale_factor = scale_factor
        self.min_neighbors = min_neighbors
        self.min_size = tuple(min_size)
        self.equalize_hist = equalize_hist

        self._cascade = cv2.CascadeClassifier()
        if not self._cascade.load(self.cascade_path):
            raise DetectorLoadError(f"Error loading the face detector {self.cascade_path}")

        _log.info(
            "HaarFaceDetector loaded — cascade=%s scale=%.2f neighbors=%d min_size=%s",
            os.path.basename(self.cascade_path),
            scale_factor,
            min_neighbors,
            self.min_size,
        )

    def detect_faces(self, image: np.ndarray) -> list[BoundingBox]:
        if image.ndim == 3:
            gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        else:
            gray = image
        if self.equalize_hist:
            gray = cv2.equalizeHist(gray)

        rects = self._cascade.detectMultiScale(
            gray,
            scaleFactor=self.scale_factor,
            minNeighbors=self.min_neighbors,
            minSize=self.min_size,
        )
        return [BoundingBox.from_xywh(r) for r in rects]

    @staticmethod
    def _resolve_path(path: str) -> str:
        if os.path.exists(path):
            return path
        bundled = os.path.join(cv2.data.haarcascades, path)
        if os.path.exists(bundled):
            return bundled
        return path
