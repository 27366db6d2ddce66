"""
Landmark-Track — Launcher
=========================
Tracks facial landmarks in a video file or a camera stream and shows the
overlay in a window. The face detector runs until a face is found; after
that the landmark model tracks from the previous frame's landmarks until
the track is lost.

Usage:
  python start_tracker.py                         (camera 0)
  python start_tracker.py --image video.mp4
  python start_tracker.py -f haarcascade_frontalface_alt2.xml -m models/face_landmarker.task
  python start_tracker.py --detect-every-frame    (never enter tracking)

Press any key in the window to quit.
"""

import argparse
import logging
import sys

import cv2

from track_engine import TrackerEngine, load_config
from track_types import TrackerSetupError

WINDOW_NAME = "video"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Landmark-Track: real-time facial landmark tracking")
    parser.add_argument("-c", "--config", type=str, default=None, help="YAML config file (default: config.yaml)")
    parser.add_argument("-f", "--facedetector", type=str, default=None,
                        help="Path to OpenCV's face detector (haarcascade_frontalface_alt2.xml)")
    parser.add_argument("-m", "--model", type=str, default=None, help="Learned landmark detection model")
    parser.add_argument("-i", "--image", type=str, default=None,
                        help="Input video file. If not specified, camera 0 will be used.")
    parser.add_argument("--detect-every-frame", action="store_true",
                        help="Run full face detection on every frame instead of tracking")
    parser.add_argument("--reanchor-every", type=int, default=None,
                        help="Force a full detection after N tracked frames (0 = never)")
    parser.add_argument("--show-initial-shape", action="store_true",
                        help="Draw the warm-start initial shape")
    parser.add_argument("--headless", action="store_true", help="Run without UI window")
    parser.add_argument("--wait-ms", type=int, default=30, help="Display delay per frame in ms")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log per-frame FD/LM timings")
    return parser


def apply_args(config: dict, args: argparse.Namespace) -> dict:
    """Command-line flags override config file values."""
    if args.image is not None:
        config["source"] = args.image
    elif isinstance(config.get("source"), str) and config["source"].isdigit():
        config["source"] = int(config["source"])
    if args.facedetector is not None:
        config["face_detector"]["cascade_path"] = args.facedetector
    if args.model is not None:
        config["landmark_model"]["model_path"] = args.model
    if args.detect_every_frame:
        config["tracking"]["continue_tracking"] = False
    if args.reanchor_every is not None:
        config["tracking"]["reanchor_every"] = args.reanchor_every
    if args.show_initial_shape:
        config["hud"]["show_initial_shape"] = True
    return config


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    if args.verbose:
        logging.getLogger("TrackPipeline").setLevel(logging.DEBUG)

    try:
        config = apply_args(load_config(args.config), args)
        engine = TrackerEngine(config)
    except TrackerSetupError as e:
        print(f"[TRACK] {e}")
        return 1

    if not args.headless:
        cv2.namedWindow(WINDOW_NAME, cv2.WINDOW_AUTOSIZE)

    def show(overlay):
        if args.headless:
            return
        cv2.imshow(WINDOW_NAME, overlay)
        if cv2.waitKey(args.wait_ms) >= 0:
            engine.stop()

    print(f"[TRACK] Source: {config['source']} | Tracking: {config['tracking']['continue_tracking']}")
    print("[TRACK] Press any key in the window to exit.")

    try:
        with engine:
            frames = engine.run(sink=show)
        print(f"[TRACK] Processed {frames} frames.")
    except KeyboardInterrupt:
        print("\n[TRACK] Interrupted by User.")
    finally:
        if not args.headless:
            cv2.destroyAllWindows()
    return 0


if __name__ == "__main__":
    sys.exit(main())
