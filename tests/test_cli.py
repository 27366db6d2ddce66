"""
Landmark-Track — Launcher Tests
===============================
Flag parsing, config overrides and exit codes of start_tracker.main.
"""

from __future__ import annotations

import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

# Add project root to path
_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

import start_tracker
from track_engine import merge_config
from track_types import ModelLoadError


def test_defaults_leave_config_untouched():
    args = start_tracker.build_parser().parse_args([])
    config = start_tracker.apply_args(merge_config({}), args)

    assert config == merge_config({})
    assert args.wait_ms == 30
    assert not args.headless


def test_flags_override_config():
    args = start_tracker.build_parser().parse_args([
        "-i", "clip.mp4",
        "-f", "my_cascade.xml",
        "-m", "my_model.task",
        "--detect-every-frame",
        "--reanchor-every", "4",
        "--show-initial-shape",
    ])
    config = start_tracker.apply_args(merge_config({}), args)

    assert config["source"] == "clip.mp4"
    assert config["face_detector"]["cascade_path"] == "my_cascade.xml"
    assert config["landmark_model"]["model_path"] == "my_model.task"
    assert config["tracking"]["continue_tracking"] is False
    assert config["tracking"]["reanchor_every"] == 4
    assert config["hud"]["show_initial_shape"] is True


def test_numeric_source_string_becomes_camera_index():
    args = start_tracker.build_parser().parse_args([])
    config = start_tracker.apply_args(merge_config({"source": "1"}), args)
    assert config["source"] == 1


def test_setup_failure_exits_with_error(capsys):
    with patch("start_tracker.TrackerEngine", side_effect=ModelLoadError("model.task missing")):
        code = start_tracker.main(["--headless"])

    assert code == 1
    assert "model.task missing" in capsys.readouterr().out


def test_headless_run(capsys):
    engine = MagicMock()
    engine.__enter__.return_value = engine
    engine.run.return_value = 7

    with patch("start_tracker.TrackerEngine", return_value=engine):
        code = start_tracker.main(["--headless", "-i", "clip.mp4"])

    assert code == 0
    engine.run.assert_called_once()
    engine.__exit__.assert_called_once()
    assert "Processed 7 frames" in capsys.readouterr().out


def test_unknown_flag_rejected():
    with pytest.raises(SystemExit):
        start_tracker.build_parser().parse_args(["--no-such-flag"])
