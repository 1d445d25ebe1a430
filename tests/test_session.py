"""Tests for the capture session lifecycle and the latest-frame hand-off."""

import threading
import time
from unittest.mock import MagicMock

import numpy as np
import pytest

from smilecheck.metrics import FaceObservation
from smilecheck import session as session_module
from smilecheck.session import CaptureSession, LatestFrame, evaluate_frame, save_snapshot
from smilecheck.smile import SmileCategory, SmileCoefficients
from smilecheck.tracker import TrackingResult


class FakeCapture:
    def __init__(self, opened=True, ok=True, h=120, w=160):
        self.opened = opened
        self.ok = ok
        self.h = h
        self.w = w
        self.released = False

    def isOpened(self):
        return self.opened

    def set(self, prop, value):
        return True

    def read(self):
        time.sleep(0.002)
        if not self.ok:
            return False, None
        return True, np.zeros((self.h, self.w, 3), dtype=np.uint8)

    def release(self):
        self.released = True


def _passing_tracker():
    tracker = MagicMock()
    tracker.process.return_value = TrackingResult(
        observations=[FaceObservation(bbox=(0.0, 0.0, 1.0, 1.0), yaw=0.0)],
        coefficients=SmileCoefficients(left=0.8, right=0.8),
    )
    return tracker


def _wait_for(predicate, timeout=2.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return False


def _make_session(cap=None, tracker=None, **kwargs):
    cap = cap or FakeCapture()
    calls = []

    def factory(index):
        calls.append(index)
        return cap

    session = CaptureSession(tracker or _passing_tracker(), capture_factory=factory, **kwargs)
    return session, cap, calls


class TestLatestFrame:
    def test_newest_value_wins(self):
        box = LatestFrame()
        a = MagicMock()
        b = MagicMock()
        box.put(a)
        box.put(b)
        assert box.peek() is b
        assert box.peek() is b

    def test_take_clears(self):
        box = LatestFrame()
        box.put(MagicMock())
        assert box.take() is not None
        assert box.take() is None
        assert box.peek() is None


class TestEvaluateFrame:
    def test_viewport_comes_from_frame_shape(self):
        frame = np.zeros((100, 200, 3), dtype=np.uint8)
        tracking = TrackingResult(
            observations=[FaceObservation(bbox=(0.25, 0.1, 0.5, 0.8), yaw=None)],
            coefficients=SmileCoefficients(left=0.9, right=0.7),
        )
        state = evaluate_frame(frame, tracking, frame_index=7, timestamp=1.5)
        assert state.validity.count == 1
        assert state.smile is SmileCategory.SMILING
        assert state.can_pass is True
        assert state.frame_index == 7
        assert state.timestamp == 1.5

    def test_empty_tracking_fails(self):
        state = evaluate_frame(np.zeros((10, 10, 3), dtype=np.uint8), TrackingResult())
        assert state.validity.count == 0
        assert state.validity.any_detected is False
        assert state.smile is SmileCategory.ANGRY
        assert state.can_pass is False

    def test_two_faces_never_pass(self):
        tracking = TrackingResult(
            observations=[
                FaceObservation(bbox=(0.25, 0.3, 0.22, 0.4), yaw=0.0),
                FaceObservation(bbox=(0.53, 0.3, 0.22, 0.4), yaw=0.0),
            ],
            coefficients=SmileCoefficients(left=1.0, right=1.0),
        )
        state = evaluate_frame(np.zeros((500, 500, 3), dtype=np.uint8), tracking)
        assert state.validity.count == 2
        assert state.can_pass is False


class TestCaptureSession:
    def test_start_publishes_frames(self):
        session, cap, _ = _make_session()
        session.start()
        try:
            assert _wait_for(lambda: session.latest() is not None)
            state = session.latest()
            assert state.validity.count == 1
            assert state.smile is SmileCategory.SMILING
            assert state.can_pass is True
            assert state.frame.shape == (120, 160, 3)
        finally:
            session.stop()

    def test_stop_releases_resources(self):
        tracker = _passing_tracker()
        session, cap, _ = _make_session(tracker=tracker)
        session.start()
        assert _wait_for(lambda: session.latest() is not None)
        session.stop()

        assert session.is_running is False
        assert cap.released is True
        tracker.close.assert_called()
        assert session.latest() is None

    def test_start_twice_is_noop(self):
        session, _, calls = _make_session()
        session.start()
        session.start()
        session.stop()
        assert calls == [0]

    def test_camera_not_opened(self):
        tracker = _passing_tracker()
        session, _, _ = _make_session(cap=FakeCapture(opened=False), tracker=tracker)
        with pytest.raises(SystemExit):
            session.start()
        tracker.load.assert_not_called()
        assert session.is_running is False

    def test_pause_and_resume(self):
        session, _, _ = _make_session()
        session.start()
        try:
            assert _wait_for(lambda: session.latest() is not None)
            session.pause()
            assert session.is_paused is True
            time.sleep(0.05)
            idx = session.latest().frame_index
            time.sleep(0.1)
            assert session.latest().frame_index == idx

            session.resume()
            assert session.is_paused is False
            assert _wait_for(lambda: session.latest().frame_index > idx)
        finally:
            session.stop()

    def test_resume_starts_stopped_session(self):
        session, _, calls = _make_session()
        session.resume()
        try:
            assert session.is_running is True
            assert calls == [0]
        finally:
            session.stop()

    def test_repeated_read_failures_end_session(self):
        session, _, _ = _make_session(cap=FakeCapture(ok=False), max_read_failures=3)
        session.start()
        try:
            assert _wait_for(lambda: not session.is_running)
            assert session.latest() is None
        finally:
            session.stop()

    def test_mirror_flips_frame(self):
        tracker = MagicMock()
        tracker.process.return_value = TrackingResult()
        cap = FakeCapture()
        frame = np.zeros((4, 6, 3), dtype=np.uint8)
        frame[:, 0] = 255
        cap.read = lambda: (True, frame.copy())
        session, _, _ = _make_session(cap=cap, tracker=tracker, mirror=True)
        session.start()
        try:
            assert _wait_for(lambda: session.latest() is not None)
            out = session.latest().frame
            assert out[:, -1].min() == 255
            assert out[:, 0].max() == 0
        finally:
            session.stop()


class TestSnapshots:
    def test_capture_without_frame(self, tmp_path):
        session, _, _ = _make_session()
        assert session.capture_image(str(tmp_path)) is None
        assert list(tmp_path.iterdir()) == []

    def test_capture_writes_latest_frame(self, tmp_path):
        session, _, _ = _make_session()
        session.start()
        try:
            assert _wait_for(lambda: session.latest() is not None)
            path = session.capture_image(str(tmp_path / "shots"))
        finally:
            session.stop()
        assert path is not None
        assert path.exists()
        assert path.suffix == ".jpg"

    def test_save_snapshot_creates_directory(self, tmp_path):
        path = save_snapshot(np.zeros((8, 8, 3), dtype=np.uint8), str(tmp_path / "a" / "b"))
        assert path.parent == tmp_path / "a" / "b"
        assert path.name.startswith("smilecheck_")


class BlockingTracker:
    """Tracker whose process() can be held mid-frame."""

    def __init__(self):
        self.hold = threading.Event()
        self.entered = threading.Event()
        self.release = threading.Event()
        self.closed = False

    def load(self):
        pass

    def process(self, frame):
        if self.hold.is_set():
            self.entered.set()
            self.release.wait(timeout=2.0)
        return TrackingResult(
            observations=[FaceObservation(bbox=(0.0, 0.0, 1.0, 1.0), yaw=0.0)],
            coefficients=SmileCoefficients(left=0.8, right=0.8),
        )

    def close(self):
        self.closed = True


class TestCaptureErrors:
    def test_read_exception_ends_session(self):
        cap = FakeCapture()

        def broken_read():
            raise RuntimeError("camera unplugged")

        cap.read = broken_read
        session, _, _ = _make_session(cap=cap)
        session.start()
        try:
            assert _wait_for(lambda: not session.is_running)
        finally:
            session.stop()
        assert cap.released is True

    def test_tracker_exception_ends_session(self):
        tracker = _passing_tracker()
        tracker.process.side_effect = ValueError("bad frame")
        session, _, _ = _make_session(tracker=tracker)
        session.start()
        try:
            assert _wait_for(lambda: not session.is_running)
            assert session.latest() is None
        finally:
            session.stop()

    def test_stop_leaves_resources_while_thread_is_busy(self):
        tracker = BlockingTracker()
        tracker.hold.set()
        session, cap, _ = _make_session(tracker=tracker, stop_timeout=0.05)
        session.start()
        try:
            assert tracker.entered.wait(timeout=2.0)
            session.stop()
            assert cap.released is False
            assert tracker.closed is False
            assert session.is_running is False
        finally:
            tracker.release.set()


class TestPauseInFlight:
    def test_frame_in_flight_is_not_published_after_pause(self):
        tracker = BlockingTracker()
        session, _, _ = _make_session(tracker=tracker)
        session.start()
        try:
            assert _wait_for(lambda: session.latest() is not None)
            tracker.hold.set()
            assert tracker.entered.wait(timeout=2.0)
            session.pause()
            idx = session.latest().frame_index

            tracker.release.set()
            time.sleep(0.1)
            assert session.latest().frame_index == idx
        finally:
            tracker.release.set()
            session.stop()


class TestRawSnapshot:
    def test_snapshot_uses_unmirrored_frame(self, tmp_path, monkeypatch):
        frame = np.zeros((4, 6, 3), dtype=np.uint8)
        frame[:, 0] = 255
        cap = FakeCapture()
        cap.read = lambda: (True, frame.copy())
        saved = []
        monkeypatch.setattr(session_module, "save_snapshot", lambda img, out_dir: saved.append(img) or tmp_path)

        session, _, _ = _make_session(cap=cap, mirror=True)
        session.start()
        try:
            assert _wait_for(lambda: session.latest() is not None)
            session.capture_image(str(tmp_path))
        finally:
            session.stop()

        assert len(saved) == 1
        assert saved[0][:, 0].min() == 255
        assert saved[0][:, -1].max() == 0

    def test_evaluate_frame_without_raw_falls_back_to_frame(self, tmp_path, monkeypatch):
        saved = []
        monkeypatch.setattr(session_module, "save_snapshot", lambda img, out_dir: saved.append(img) or tmp_path)
        session, _, _ = _make_session()
        state = evaluate_frame(np.zeros((4, 4, 3), dtype=np.uint8), TrackingResult())
        session._mailbox.put(state)
        session.capture_image(str(tmp_path))
        assert saved[0] is state.frame
