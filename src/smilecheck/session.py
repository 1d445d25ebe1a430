from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

import cv2
import numpy as np

from .metrics import FaceObservation, FaceValidityResult, ViewportBounds, evaluate_faces
from .smile import SmileCategory, SmileCoefficients, can_pass, classify_smile
from .tracker import FaceTracker, TrackingResult


logger = logging.getLogger("smilecheck")


@dataclass
class FrameState:
    frame: np.ndarray
    validity: FaceValidityResult
    smile: SmileCategory
    coefficients: SmileCoefficients
    observations: List[FaceObservation] = field(default_factory=list)
    frame_index: int = 0
    timestamp: float = 0.0
    raw_frame: Optional[np.ndarray] = None  # camera frame before mirroring

    @property
    def can_pass(self) -> bool:
        return can_pass(self.validity, self.smile)


def evaluate_frame(frame: np.ndarray, tracking: TrackingResult, frame_index: int = 0,
                   timestamp: Optional[float] = None, raw_frame: Optional[np.ndarray] = None) -> FrameState:
    h, w = frame.shape[:2]
    viewport = ViewportBounds(width=float(w), height=float(h))
    coeffs = tracking.coefficients
    return FrameState(
        frame=frame,
        validity=evaluate_faces(tracking.observations, viewport),
        smile=classify_smile(coeffs.left, coeffs.right),
        coefficients=coeffs,
        observations=list(tracking.observations),
        frame_index=frame_index,
        timestamp=time.time() if timestamp is None else timestamp,
        raw_frame=raw_frame,
    )


class LatestFrame:
    '''Single-slot mailbox between the capture thread and the UI thread. Newest value wins.'''

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._value: Optional[FrameState] = None

    def put(self, state: FrameState) -> None:
        with self._lock:
            self._value = state

    def peek(self) -> Optional[FrameState]:
        with self._lock:
            return self._value

    def take(self) -> Optional[FrameState]:
        with self._lock:
            value, self._value = self._value, None
            return value

    def clear(self) -> None:
        with self._lock:
            self._value = None


class CaptureSession:
    '''
    Owns the camera and the face tracker.
    Frames are read, tracked and evaluated on a background thread; the
    presentation side only ever sees the latest FrameState.
    '''

    def __init__(
        self,
        tracker: FaceTracker,
        camera_index: int = 0,
        width: int = 1280,
        height: int = 720,
        mirror: bool = True,
        capture_factory: Callable = cv2.VideoCapture,
        max_read_failures: int = 30,
        stop_timeout: float = 2.0,
    ) -> None:
        self.tracker = tracker
        self.camera_index = camera_index
        self.width = width
        self.height = height
        self.mirror = mirror
        self.max_read_failures = max_read_failures
        self.stop_timeout = stop_timeout
        self._capture_factory = capture_factory

        self._cap = None
        self._thread: Optional[threading.Thread] = None
        self._running = False
        self._active = threading.Event()
        self._mailbox = LatestFrame()
        self._frame_index = 0

    # ---- lifecycle ----
    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_paused(self) -> bool:
        return self._running and not self._active.is_set()

    def start(self) -> None:
        if self._running:
            return

        cap = self._capture_factory(self.camera_index)
        if not cap.isOpened():
            raise SystemExit(f"Could not open camera index {self.camera_index}")
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        self.tracker.load()

        self._cap = cap
        self._mailbox.clear()
        self._running = True
        self._active.set()
        self._thread = threading.Thread(target=self._capture_loop, name="smilecheck-capture", daemon=True)
        self._thread.start()
        logger.info(f"Session started on camera {self.camera_index}")

    def pause(self) -> None:
        if not self._running or not self._active.is_set():
            return
        self._active.clear()
        logger.info("Session paused")

    def resume(self) -> None:
        if not self._running:
            self.start()
            return
        if self._active.is_set():
            return
        self._active.set()
        logger.info("Session resumed")

    def stop(self) -> None:
        was_running = self._running
        self._running = False
        self._active.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.stop_timeout)
            if thread.is_alive():
                # still inside read/process
                logger.warning("Capture thread did not finish in time, leaving camera and tracker open")
                self._mailbox.clear()
                return
        if self._cap is not None:
            self._cap.release()
            self._cap = None
        self.tracker.close()
        self._mailbox.clear()
        if was_running:
            logger.info("Session stopped")

    # ---- presentation side ----
    def latest(self) -> Optional[FrameState]:
        return self._mailbox.peek()

    def capture_image(self, out_dir: str) -> Optional[Path]:
        '''Save the latest unmirrored camera frame as a JPEG. Returns the path, or None without a frame.'''
        state = self._mailbox.peek()
        if state is None:
            logger.warning("Failed to get current frame")
            return None
        return save_snapshot(state.raw_frame if state.raw_frame is not None else state.frame, out_dir)

    # ---- capture thread ----
    def _capture_loop(self) -> None:
        try:
            self._read_frames()
        except Exception:
            logger.exception("Capture thread failed, stopping session")
        finally:
            self._running = False

    def _read_frames(self) -> None:
        failures = 0
        while self._running:
            if not self._active.wait(timeout=0.1):
                continue
            if not self._running:
                break

            ok, raw = self._cap.read()
            if not ok:
                failures += 1
                if failures >= self.max_read_failures:
                    logger.error(f"Camera returned no frames {failures} times in a row, stopping")
                    break
                time.sleep(0.05)
                continue
            failures = 0

            frame = cv2.flip(raw, 1) if self.mirror else raw
            tracking = self.tracker.process(frame)

            # paused or stopped while this frame was in flight
            if not (self._running and self._active.is_set()):
                continue
            self._frame_index += 1
            self._mailbox.put(evaluate_frame(frame, tracking, frame_index=self._frame_index, raw_frame=raw))


def save_snapshot(frame: np.ndarray, out_dir: str) -> Path:
    out = Path(out_dir)
    out.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
    path = out / f"smilecheck_{stamp}.jpg"
    if not cv2.imwrite(str(path), frame):
        raise OSError(f"Could not write snapshot to {path}")
    logger.info(f"Saved snapshot to {path}")
    return path
