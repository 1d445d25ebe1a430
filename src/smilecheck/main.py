from __future__ import annotations

import argparse
import os
import time
from dataclasses import dataclass
from typing import List, Optional

import cv2

from .hud import draw_face_boxes, draw_hud
from .log import setup_logger
from .session import CaptureSession
from .tracker import FaceTracker


@dataclass
class AppConfig:
    camera_index: int = 0
    width: int = 1280
    height: int = 720
    mirror: bool = True
    max_faces: int = 4
    model_path: str = "face_landmarker.task"
    snapshot_dir: str = "snapshots"
    hud: bool = True
    debug_boxes: bool = False
    log_level: str = "INFO"


def parse_args(argv: Optional[List[str]] = None) -> AppConfig:
    p = argparse.ArgumentParser(description="SmileCheck - one centered, smiling face passes")
    p.add_argument("--camera", type=int, default=0, help="Camera index (default: 0)")
    p.add_argument("--width", type=int, default=1280, help="Capture width")
    p.add_argument("--height", type=int, default=720, help="Capture height")
    p.add_argument("--mirror", type=int, default=1, help="Mirror the preview (1=yes, 0=no)")
    p.add_argument("--max-faces", type=int, default=4, help="Faces tracked per frame (more than one always fails)")
    p.add_argument("--model", default=os.getenv("SMILECHECK_MODEL", "face_landmarker.task"),
                   help="Path to the MediaPipe face_landmarker.task model")
    p.add_argument("--snapshot-dir", default="snapshots", help="Where 'c' saves camera frames")
    p.add_argument("--no-hud", action="store_true", help="Start with HUD disabled")
    p.add_argument("--debug-boxes", action="store_true", help="Draw every tracked face box")
    p.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, WARNING, ...)")
    a = p.parse_args(argv)
    return AppConfig(
        camera_index=a.camera,
        width=a.width,
        height=a.height,
        mirror=bool(a.mirror),
        max_faces=max(1, a.max_faces),
        model_path=a.model,
        snapshot_dir=a.snapshot_dir,
        hud=not a.no_hud,
        debug_boxes=a.debug_boxes,
        log_level=a.log_level,
    )


def main(argv: Optional[List[str]] = None) -> None:
    cfg = parse_args(argv)
    logger = setup_logger(cfg.log_level)

    tracker = FaceTracker(cfg.model_path, max_faces=cfg.max_faces)
    session = CaptureSession(
        tracker,
        camera_index=cfg.camera_index,
        width=cfg.width,
        height=cfg.height,
        mirror=cfg.mirror,
    )
    session.start()

    win = "SmileCheck - q quit | h HUD | p pause | c capture | d boxes"
    cv2.namedWindow(win, cv2.WINDOW_NORMAL)

    last_index = -1
    last_ts = time.time()
    fps = 0.0

    try:
        while session.is_running:
            state = session.latest()
            if state is not None and state.frame_index != last_index:
                now = time.time()
                dt = max(1e-3, now - last_ts)
                last_ts = now
                fps = 0.9 * fps + 0.1 * (1.0 / dt) if fps > 0 else 1.0 / dt
                last_index = state.frame_index

            if state is not None:
                frame = state.frame.copy()
                if cfg.hud:
                    draw_hud(frame, state, fps=fps, paused=session.is_paused)
                if cfg.debug_boxes:
                    draw_face_boxes(frame, state)
                cv2.imshow(win, frame)

            k = cv2.waitKey(15) & 0xFF

            if k == ord("q"):
                break
            if k == ord("h"):
                cfg.hud = not cfg.hud
            if k == ord("d"):
                cfg.debug_boxes = not cfg.debug_boxes
            if k == ord("p"):
                if session.is_paused:
                    session.resume()
                else:
                    session.pause()
            if k == ord("c"):
                session.capture_image(cfg.snapshot_dir)
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        session.stop()
        cv2.destroyAllWindows()


if __name__ == "__main__":
    main()
