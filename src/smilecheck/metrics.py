from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

import numpy as np

# Validity thresholds, as fractions of the viewport (yaw in radians).
MIN_FACE_FRACTION = 0.2
MAX_CENTER_OFFSET = 0.3
MAX_ABS_YAW = 0.2

Rect = Tuple[float, float, float, float]  # x, y, w, h


@dataclass(frozen=True)
class FaceObservation:
    '''
    One detected face in one frame.
    bbox is normalized to the unit square with a bottom-left origin.
    '''
    bbox: Rect
    yaw: Optional[float] = None


@dataclass(frozen=True)
class ViewportBounds:
    width: float
    height: float

    @property
    def is_degenerate(self) -> bool:
        return self.width <= 0 or self.height <= 0

    @property
    def center(self) -> np.ndarray:
        return np.array([self.width / 2.0, self.height / 2.0], dtype=np.float64)


@dataclass(frozen=True)
class FaceValidityResult:
    count: int = 0
    any_detected: bool = False

    @classmethod
    def empty(cls) -> "FaceValidityResult":
        return cls(count=0, any_detected=False)


def _dist(a: np.ndarray, b: np.ndarray) -> float:
    return float(np.linalg.norm(a - b))


def to_viewport_rect(bbox: Rect, viewport: ViewportBounds) -> Rect:
    # flip y: detector boxes are bottom-left origin, viewport is top-left
    x, y, w, h = bbox
    return (
        x * viewport.width,
        (1 - y - h) * viewport.height,
        w * viewport.width,
        h * viewport.height,
    )


def is_large_enough(rect: Rect, viewport: ViewportBounds) -> bool:
    _, _, w, h = rect
    return w > viewport.width * MIN_FACE_FRACTION and h > viewport.height * MIN_FACE_FRACTION


def is_centered(rect: Rect, viewport: ViewportBounds) -> bool:
    x, y, w, h = rect
    face_center = np.array([x + w / 2.0, y + h / 2.0], dtype=np.float64)
    return _dist(face_center, viewport.center) < viewport.width * MAX_CENTER_OFFSET


def is_straight(yaw: Optional[float]) -> bool:
    # unknown yaw counts as facing the camera
    return abs(yaw if yaw is not None else 0.0) < MAX_ABS_YAW


def is_in_bounds(rect: Rect, viewport: ViewportBounds) -> bool:
    x, y, w, h = rect
    return x >= 0 and y >= 0 and x + w <= viewport.width and y + h <= viewport.height


def is_valid_face(obs: FaceObservation, viewport: ViewportBounds) -> bool:
    if viewport.is_degenerate:
        return False
    rect = to_viewport_rect(obs.bbox, viewport)
    return (
        is_large_enough(rect, viewport)
        and is_centered(rect, viewport)
        and is_straight(obs.yaw)
        and is_in_bounds(rect, viewport)
    )


def evaluate_faces(observations: Iterable[FaceObservation], viewport: ViewportBounds) -> FaceValidityResult:
    '''
    Count the observations that pass all four checks (size, centering,
    straightness, containment). Always builds a fresh result; nothing is
    carried over from earlier frames.
    '''
    if viewport.is_degenerate:
        return FaceValidityResult.empty()

    count = sum(1 for obs in observations if is_valid_face(obs, viewport))
    return FaceValidityResult(count=count, any_detected=count > 0)
