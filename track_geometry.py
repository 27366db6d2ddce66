"""
Landmark-Track — Landmark Geometry
==================================
Bounding-box bookkeeping that lets a cold-start result seed a track.

  - enclosing_bounding_box: tight axis-aligned box around a landmark set
  - scale_factor: per-axis size ratio between two shapes' boxes
  - align_mean_shape: place the model mean shape onto a target box
  - warm_start_shape: the initial shape for a warm-start regression

All functions are pure. Empty input raises InvalidInputError; a reference
shape with a zero-area box raises DegenerateGeometryError. Neither is a
per-frame condition, both indicate a bug or a corrupt model.
"""

from __future__ import annotations

import numpy as np

from track_types import (
    BoundingBox,
    DegenerateGeometryError,
    InvalidInputError,
    LandmarkSet,
)


def enclosing_bounding_box(landmarks: LandmarkSet) -> BoundingBox:
    """Compute the tight axis-aligned box around all landmark points.

    Args:
        landmarks: Non-empty landmark set.

    Returns:
        BoundingBox(min_x, min_y, max_x - min_x, max_y - min_y).

    Raises:
        InvalidInputError: If the set has no points.
    """
    if landmarks.is_empty():
        raise InvalidInputError("Cannot compute a bounding box of an empty landmark set")

    min_x, max_x = float(np.min(landmarks.xs)), float(np.max(landmarks.xs))
    min_y, max_y = float(np.min(landmarks.ys)), float(np.max(landmarks.ys))
    return BoundingBox(min_x, min_y, max_x - min_x, max_y - min_y)


def _box_scale(subject_box: BoundingBox, reference_box: BoundingBox) -> tuple[float, float]:
    if reference_box.width == 0 or reference_box.height == 0:
        raise DegenerateGeometryError(
            f"Reference shape has a degenerate bounding box "
            f"({reference_box.width:.3f} x {reference_box.height:.3f})"
        )
    return (
        subject_box.width / reference_box.width,
        subject_box.height / reference_box.height,
    )


def scale_factor(subject: LandmarkSet, reference: LandmarkSet) -> tuple[float, float]:
    """Per-axis scale from the reference shape's box to the subject's box.

    Returns:
        (scale_x, scale_y) = (subject.width / reference.width,
                              subject.height / reference.height)

    Raises:
        InvalidInputError: If either set is empty.
        DegenerateGeometryError: If the reference box has zero width or height.
    """
    return _box_scale(enclosing_bounding_box(subject), enclosing_bounding_box(reference))


def align_mean_shape(mean_shape: LandmarkSet, target_box: BoundingBox) -> LandmarkSet:
    """Scale and translate the mean shape so its enclosing box is target_box.

    The mean shape is moved to the origin, scaled per axis by
    target_box size / mean box size, then moved to target_box's origin.
    """
    mean_box = enclosing_bounding_box(mean_shape)
    sx, sy = _box_scale(target_box, mean_box)

    coords = mean_shape.coords - np.array(mean_box.origin)
    coords = coords * np.array([sx, sy]) + np.array(target_box.origin)
    return mean_shape.with_coords(coords)


def warm_start_shape(last_landmarks: LandmarkSet, mean_shape: LandmarkSet) -> LandmarkSet:
    """Initial shape for a warm-start regression seeded by the last frame.

    The mean shape scaled by scale_factor(last_landmarks, mean_shape) and
    translated so its box origin matches the box origin of last_landmarks.
    Identifiers and order are those of the mean shape.
    """
    bbox = enclosing_bounding_box(last_landmarks)
    return align_mean_shape(mean_shape, bbox)
