"""
Landmark-Track — Detect/Track State Machine Tests
=================================================
Scripted fake detector and landmark model — no camera, cascade, or
MediaPipe model needed.
"""

from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pytest

# Project root
_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from track_detector import FaceDetector
from track_geometry import enclosing_bounding_box
from track_landmarks import LandmarkModel
from track_state import (
    TrackingStateMachine,
    any_of,
    degenerate_box,
    empty_result,
    outside_frame,
    policy_from_config,
    reanchor_every,
    scale_jump,
)
from track_types import (
    BoundingBox,
    DegenerateGeometryError,
    LandmarkSet,
    TrackMode,
    TrackState,
)

_IDS = ("left_eye", "right_eye", "nose_tip", "mouth_left", "mouth_right")
_MEAN = [[20, 30], [30, 30], [25, 35], [20, 40], [30, 40]]


# ─── Fakes ────────────────────────────────────────────────────

class ScriptedDetector(FaceDetector):
    """Returns the next list of boxes from a script on every call."""

    def __init__(self, script):
        self.script = list(script)
        self.calls = 0

    def detect_faces(self, image):
        self.calls += 1
        if not self.script:
            return []
        return self.script.pop(0)


class FakeModel(LandmarkModel):
    """Places the mean shape inside the seed box; records every call."""

    def __init__(self, mean=_MEAN, warm_results=None):
        self._mean = LandmarkSet(mean, _IDS)
        self.cold_calls = []
        self.warm_calls = []
        self.warm_results = list(warm_results or [])

    @property
    def mean_shape(self):
        return self._mean

    def cold_detect(self, image, box):
        self.cold_calls.append(box)
        coords = np.array([
            [box.x + 0.3 * box.width, box.y + 0.4 * box.height],
            [box.x + 0.7 * box.width, box.y + 0.4 * box.height],
            [box.x + 0.5 * box.width, box.y + 0.6 * box.height],
            [box.x + 0.35 * box.width, box.y + 0.8 * box.height],
            [box.x + 0.65 * box.width, box.y + 0.8 * box.height],
        ])
        return LandmarkSet(coords, _IDS)

    def warm_detect(self, image, initial_shape):
        self.warm_calls.append(initial_shape)
        if self.warm_results:
            return self.warm_results.pop(0)
        # Drift by one pixel to the right
        return initial_shape.with_coords(initial_shape.coords + [1.0, 0.0])


def _frame(height: int = 240, width: int = 320) -> np.ndarray:
    return np.full((height, width, 3), 128, dtype=np.uint8)


_FACE = BoundingBox(100.0, 50.0, 80.0, 80.0)


# ─── NO_TRACK ─────────────────────────────────────────────────

def test_no_faces_stays_in_no_track():
    detector = ScriptedDetector([[]] * 5)
    model = FakeModel()
    sm = TrackingStateMachine(detector, model)
    state = TrackState.initial()

    for _ in range(5):
        result, state = sm.step(_frame(), state)
        assert state.mode == TrackMode.NO_TRACK
        assert result.ran_detection
        assert result.faces_detected == 0
        assert result.landmarks.is_empty()
        assert result.detection_box is None

    assert detector.calls == 5
    assert model.cold_calls == []
    assert model.warm_calls == []
    assert state.frame_index == 5


def test_detected_face_enters_tracking():
    detector = ScriptedDetector([[_FACE]])
    model = FakeModel()
    sm = TrackingStateMachine(detector, model, continue_tracking=True)

    result, state = sm.step(_frame(), TrackState.initial())

    assert model.cold_calls == [_FACE]
    assert result.detection_box == _FACE
    assert result.mode_before == TrackMode.NO_TRACK
    assert result.mode_after == TrackMode.TRACKING
    assert state.has_track
    assert not state.last_landmarks.is_empty()
    assert state.last_landmarks == result.landmarks
    assert "detect_ms" in result.timing and "landmarks_ms" in result.timing


def test_detected_face_without_continue_tracking_keeps_detecting():
    detector = ScriptedDetector([[_FACE], [_FACE]])
    model = FakeModel()
    sm = TrackingStateMachine(detector, model, continue_tracking=False)

    _, state = sm.step(_frame(), TrackState.initial())
    assert state.mode == TrackMode.NO_TRACK
    assert not state.last_landmarks.is_empty()

    _, state = sm.step(_frame(), state)
    assert detector.calls == 2
    assert len(model.cold_calls) == 2
    assert model.warm_calls == []


def test_first_candidate_is_used_without_reranking():
    small = BoundingBox(10.0, 10.0, 60.0, 60.0)
    large = BoundingBox(150.0, 40.0, 120.0, 120.0)
    detector = ScriptedDetector([[small, large]])
    model = FakeModel()
    sm = TrackingStateMachine(detector, model)

    result, _ = sm.step(_frame(), TrackState.initial())
    assert model.cold_calls == [small]
    assert result.faces_detected == 2


def test_empty_cold_start_result_stays_in_no_track():
    class EmptyModel(FakeModel):
        def cold_detect(self, image, box):
            self.cold_calls.append(box)
            return LandmarkSet.empty()

    sm = TrackingStateMachine(ScriptedDetector([[_FACE]]), EmptyModel())
    result, state = sm.step(_frame(), TrackState.initial())
    assert state.mode == TrackMode.NO_TRACK
    assert result.detection_box == _FACE
    assert result.landmarks.is_empty()


# ─── TRACKING ─────────────────────────────────────────────────

def test_tracking_skips_detector_and_seeds_with_aligned_mean():
    detector = ScriptedDetector([[_FACE]])
    model = FakeModel()
    sm = TrackingStateMachine(detector, model)

    _, state = sm.step(_frame(), TrackState.initial())
    last = state.last_landmarks

    result, state = sm.step(_frame(), state)

    assert detector.calls == 1
    assert len(model.warm_calls) == 1
    assert state.mode == TrackMode.TRACKING
    assert not result.ran_detection

    # Mean shape scaled by the box ratio and moved to the last box origin
    mean = model.mean_shape
    mean_box = enclosing_bounding_box(mean)
    last_box = enclosing_bounding_box(last)
    sx = last_box.width / mean_box.width
    sy = last_box.height / mean_box.height
    expected = (mean.coords - np.array(mean_box.origin)) * [sx, sy] + np.array(last_box.origin)

    initial = model.warm_calls[0]
    assert np.allclose(initial.coords, expected)
    assert initial.ids == mean.ids
    assert result.initial_shape == initial


def test_tracking_updates_last_landmarks_every_frame():
    sm = TrackingStateMachine(ScriptedDetector([[_FACE]]), FakeModel())
    _, state = sm.step(_frame(), TrackState.initial())

    previous = state.last_landmarks
    for i in range(3):
        result, state = sm.step(_frame(), state)
        assert state.has_track
        assert state.last_landmarks == result.landmarks
        assert state.last_landmarks != previous
        assert state.frames_since_anchor == i + 1
        previous = state.last_landmarks


def test_track_loss_falls_back_to_detection():
    detector = ScriptedDetector([[_FACE], [_FACE]])
    model = FakeModel(warm_results=[LandmarkSet.empty()])
    sm = TrackingStateMachine(detector, model, loss_policy=empty_result)

    _, state = sm.step(_frame(), TrackState.initial())
    result, state = sm.step(_frame(), state)
    assert result.track_lost_reason == "empty_result"
    assert result.mode_after == TrackMode.NO_TRACK
    assert state.mode == TrackMode.NO_TRACK

    result, state = sm.step(_frame(), state)
    assert result.ran_detection
    assert detector.calls == 2
    assert state.mode == TrackMode.TRACKING


def test_empty_warm_result_drops_track_even_with_permissive_policy():
    detector = ScriptedDetector([[_FACE]])
    model = FakeModel(warm_results=[LandmarkSet.empty()])
    sm = TrackingStateMachine(detector, model, loss_policy=lambda r, s, st: None)

    _, state = sm.step(_frame(), TrackState.initial())
    result, state = sm.step(_frame(), state)

    assert result.track_lost_reason == "empty_result"
    assert result.mode_after == TrackMode.NO_TRACK
    assert not state.has_track
    assert state.frames_since_anchor == 0


def test_custom_policy_receives_result_and_previous_state():
    seen = []

    def policy(result, frame_shape, state):
        seen.append((len(result), frame_shape, state.frames_since_anchor))
        return "custom" if len(seen) == 2 else None

    sm = TrackingStateMachine(ScriptedDetector([[_FACE]]), FakeModel(), loss_policy=policy)
    _, state = sm.step(_frame(), TrackState.initial())
    _, state = sm.step(_frame(), state)
    assert state.has_track
    result, state = sm.step(_frame(), state)
    assert result.track_lost_reason == "custom"
    assert not state.has_track
    assert seen == [(5, (240, 320, 3), 0), (5, (240, 320, 3), 1)]


def test_degenerate_mean_shape_is_fatal():
    flat_mean = [[0, 5], [10, 5], [20, 5], [30, 5], [40, 5]]
    sm = TrackingStateMachine(ScriptedDetector([[_FACE]]), FakeModel(mean=flat_mean))
    _, state = sm.step(_frame(), TrackState.initial())
    with pytest.raises(DegenerateGeometryError):
        sm.step(_frame(), state)


# ─── Track-loss policies ──────────────────────────────────────

def _lms(coords):
    return LandmarkSet(coords)


_SQUARE = [[100, 100], [140, 100], [100, 140], [140, 140]]


def test_empty_result_policy():
    assert empty_result(LandmarkSet.empty(), (240, 320, 3), TrackState()) == "empty_result"
    assert empty_result(_lms(_SQUARE), (240, 320, 3), TrackState()) is None


def test_degenerate_box_policy():
    policy = degenerate_box(min_size=10)
    assert policy(_lms(_SQUARE), (240, 320, 3), TrackState()) is None
    collapsed = [[100, 100], [104, 100], [100, 150]]
    assert policy(_lms(collapsed), (240, 320, 3), TrackState()) == "degenerate_box"
    assert policy(LandmarkSet.empty(), (240, 320, 3), TrackState()) == "degenerate_box"


def test_outside_frame_policy():
    policy = outside_frame(min_visible_fraction=0.5)
    assert policy(_lms(_SQUARE), (240, 320, 3), TrackState()) is None
    mostly_out = [[-10, 10], [400, 10], [10, 500], [10, 10]]
    assert policy(_lms(mostly_out), (240, 320, 3), TrackState()) == "outside_frame"


def test_reanchor_every_policy():
    policy = reanchor_every(3)
    assert policy(_lms(_SQUARE), (240, 320), TrackState(frames_since_anchor=0)) is None
    assert policy(_lms(_SQUARE), (240, 320), TrackState(frames_since_anchor=1)) is None
    assert policy(_lms(_SQUARE), (240, 320), TrackState(frames_since_anchor=2)) == "reanchor"
    assert reanchor_every(0)(_lms(_SQUARE), (240, 320), TrackState(frames_since_anchor=99)) is None


def test_scale_jump_policy():
    policy = scale_jump(max_ratio=1.5)
    prev = TrackState(has_track=True, last_landmarks=_lms(_SQUARE))
    similar = [[98, 98], [142, 98], [98, 142], [142, 142]]
    doubled = [[80, 80], [160, 80], [80, 160], [160, 160]]
    assert policy(_lms(similar), (240, 320), prev) is None
    assert policy(_lms(doubled), (240, 320), prev) == "scale_jump"


def test_any_of_returns_first_reason():
    policy = any_of(
        lambda r, s, st: None,
        lambda r, s, st: "second",
        lambda r, s, st: "third",
    )
    assert policy(_lms(_SQUARE), (240, 320), TrackState()) == "second"


def test_policy_from_config():
    policy = policy_from_config({
        "min_box_size": 10.0,
        "min_visible_fraction": 0.5,
        "reanchor_every": 2,
    })
    state = TrackState(has_track=True, last_landmarks=_lms(_SQUARE), frames_since_anchor=0)
    assert policy(_lms(_SQUARE), (240, 320, 3), state) is None
    assert policy(LandmarkSet.empty(), (240, 320, 3), state) == "empty_result"
    state = TrackState(has_track=True, last_landmarks=_lms(_SQUARE), frames_since_anchor=1)
    assert policy(_lms(_SQUARE), (240, 320, 3), state) == "reanchor"
