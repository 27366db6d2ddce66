"""
Landmark-Track — Shared Data Types
==================================
Plain data containers passed between the tracker modules.

  - BoundingBox: axis-aligned (x, y, width, height) in pixels
  - LandmarkSet: ordered (N, 2) points tagged with stable identifiers
  - TrackState: the per-session detect/track state, replaced every frame
  - FrameResult: per-frame outcome used by the HUD and the audit log
  - Error types raised by geometry and session setup
"""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from typing import Iterator, Optional, Sequence

import numpy as np


class TrackMode(str, enum.Enum):
    """Tracker modes. NO_TRACK runs the face detector, TRACKING does not."""
    NO_TRACK = "NO_TRACK"
    TRACKING = "TRACKING"


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box in image pixel coordinates."""
    x: float
    y: float
    width: float
    height: float

    @property
    def origin(self) -> tuple[float, float]:
        return (self.x, self.y)

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def is_degenerate(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def as_int_tuple(self) -> tuple[int, int, int, int]:
        """(x, y, w, h) rounded to ints, as OpenCV drawing calls expect."""
        return (
            int(round(self.x)),
            int(round(self.y)),
            int(round(self.width)),
            int(round(self.height)),
        )

    def expanded(self, margin: float) -> "BoundingBox":
        """Grow the box by ``margin`` of its size on every side."""
        dx = self.width * margin
        dy = self.height * margin
        return BoundingBox(
            self.x - dx, self.y - dy, self.width + 2 * dx, self.height + 2 * dy
        )

    @classmethod
    def from_xywh(cls, rect: Sequence[float]) -> "BoundingBox":
        x, y, w, h = rect
        return cls(float(x), float(y), float(w), float(h))

    def to_dict(self) -> dict:
        return asdict(self)


class LandmarkSet:
    """Ordered landmark points, one per model-defined identifier.

    Point order is the canonical landmark order and must match the model's
    mean shape. Coordinates are stored as a read-only (N, 2) float64 array.
    """

    __slots__ = ("_coords", "_ids")

    def __init__(self, coords, ids: Optional[Sequence[str]] = None) -> None:
        arr = np.array(coords, dtype=np.float64).reshape(-1, 2)
        arr.setflags(write=False)
        if ids is None:
            ids = tuple(f"lm_{i}" for i in range(arr.shape[0]))
        ids = tuple(ids)
        if len(ids) != arr.shape[0]:
            raise ValueError(
                f"Got {len(ids)} identifiers for {arr.shape[0]} landmark points"
            )
        self._coords = arr
        self._ids = ids

    @classmethod
    def empty(cls) -> "LandmarkSet":
        return cls(np.empty((0, 2)), ())

    @property
    def coords(self) -> np.ndarray:
        return self._coords

    @property
    def ids(self) -> tuple[str, ...]:
        return self._ids

    @property
    def xs(self) -> np.ndarray:
        return self._coords[:, 0]

    @property
    def ys(self) -> np.ndarray:
        return self._coords[:, 1]

    def is_empty(self) -> bool:
        return self._coords.shape[0] == 0

    def points(self) -> Iterator[tuple[str, float, float]]:
        """Yield (identifier, x, y) for every landmark in canonical order."""
        for ident, (x, y) in zip(self._ids, self._coords):
            yield ident, float(x), float(y)

    def with_coords(self, coords) -> "LandmarkSet":
        """Same identifiers, new coordinates."""
        return LandmarkSet(coords, self._ids)

    def __len__(self) -> int:
        return self._coords.shape[0]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LandmarkSet):
            return NotImplemented
        return self._ids == other._ids and np.array_equal(self._coords, other._coords)

    def __repr__(self) -> str:
        return f"LandmarkSet(n={len(self)}, ids={list(self._ids)})"

    def to_dict(self) -> dict:
        return {ident: [x, y] for ident, x, y in self.points()}


@dataclass(frozen=True)
class TrackState:
    """Detect/track state threaded through FramePipeline.process_frame.

    Attributes:
        has_track: True when last_landmarks came from a successful
            detect/track on the immediately preceding processed frame.
        last_landmarks: Last landmark estimate. Ignored when has_track is False.
        frame_index: Number of frames processed so far.
        frames_since_anchor: Frames since the last full face detection.
        timing: Per-stage milliseconds of the last processed frame.
    """
    has_track: bool = False
    last_landmarks: LandmarkSet = field(default_factory=LandmarkSet.empty)
    frame_index: int = 0
    frames_since_anchor: int = 0
    timing: dict = field(default_factory=dict)

    @classmethod
    def initial(cls) -> "TrackState":
        return cls()

    @property
    def mode(self) -> TrackMode:
        return TrackMode.TRACKING if self.has_track else TrackMode.NO_TRACK


@dataclass
class FrameResult:
    """Outcome of one processed frame."""
    frame_index: int
    mode_before: TrackMode
    mode_after: TrackMode
    ran_detection: bool = False
    faces_detected: int = 0
    detection_box: Optional[BoundingBox] = None
    landmarks: LandmarkSet = field(default_factory=LandmarkSet.empty)
    initial_shape: Optional[LandmarkSet] = None
    track_lost_reason: Optional[str] = None
    timing: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "frame_index": self.frame_index,
            "mode_before": self.mode_before.value,
            "mode_after": self.mode_after.value,
            "ran_detection": self.ran_detection,
            "faces_detected": self.faces_detected,
            "detection_box": self.detection_box.to_dict() if self.detection_box else None,
            "num_landmarks": len(self.landmarks),
            "landmarks": self.landmarks.to_dict(),
            "track_lost_reason": self.track_lost_reason,
            "timing": dict(self.timing),
        }


# ═══════════════════════════════════════════════════════════════
# Errors
# ═══════════════════════════════════════════════════════════════

class InvalidInputError(ValueError):
    """Geometry operation called with an empty landmark set."""


class DegenerateGeometryError(RuntimeError):
    """Reference shape has a zero-width or zero-height bounding box."""


class TrackerSetupError(RuntimeError):
    """A collaborator could not be initialized. Fatal to the session."""


class DetectorLoadError(TrackerSetupError):
    """Face detector cascade could not be loaded."""


class ModelLoadError(TrackerSetupError):
    """Landmark model file is missing or could not be deserialized."""


class SourceOpenError(TrackerSetupError):
    """Camera or video file could not be opened."""
