from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import cv2
import mediapipe as mp
import numpy as np
from mediapipe.tasks.python import BaseOptions, vision

from .metrics import FaceObservation, Rect
from .smile import SmileCoefficients


logger = logging.getLogger("smilecheck")

SMILE_LEFT = "mouthSmileLeft"
SMILE_RIGHT = "mouthSmileRight"


@dataclass
class TrackingResult:
    observations: List[FaceObservation] = field(default_factory=list)
    coefficients: SmileCoefficients = field(default_factory=SmileCoefficients)


def landmarks_to_bbox(landmarks: Sequence) -> Rect:
    '''
    Extent of a face mesh as a normalized box with a bottom-left origin.
    MediaPipe landmarks are top-left origin; values outside [0, 1] are kept
    so off-screen faces still fail the containment check.
    '''
    xs = np.array([p.x for p in landmarks], dtype=np.float64)
    ys = np.array([p.y for p in landmarks], dtype=np.float64)
    x0, x1 = float(xs.min()), float(xs.max())
    y0, y1 = float(ys.min()), float(ys.max())
    return (x0, 1.0 - y1, x1 - x0, y1 - y0)


def yaw_from_matrix(matrix) -> float:
    '''Rotation about the vertical axis, in radians, from a 4x4 face pose matrix.'''
    r = np.asarray(matrix, dtype=np.float64)[:3, :3]
    return float(math.atan2(-r[2][0], math.sqrt(r[2][1] ** 2 + r[2][2] ** 2)))


def smile_coefficients(blendshapes: Optional[Sequence]) -> SmileCoefficients:
    if not blendshapes:
        return SmileCoefficients()
    scores = {b.category_name: float(b.score) for b in blendshapes}
    return SmileCoefficients(left=scores.get(SMILE_LEFT, 0.0), right=scores.get(SMILE_RIGHT, 0.0))


def convert_result(detection) -> TrackingResult:
    '''Turn a FaceLandmarkerResult into observations plus first-face smile scores.'''
    faces = detection.face_landmarks or []
    if not faces:
        return TrackingResult()

    matrices = detection.facial_transformation_matrixes or []
    observations = []
    for i, lm in enumerate(faces):
        yaw = yaw_from_matrix(matrices[i]) if i < len(matrices) else None
        observations.append(FaceObservation(bbox=landmarks_to_bbox(lm), yaw=yaw))

    blendshapes = detection.face_blendshapes[0] if detection.face_blendshapes else None
    return TrackingResult(observations=observations, coefficients=smile_coefficients(blendshapes))


class FaceTracker:
    def __init__(self, model_path: str, max_faces: int = 4, min_confidence: float = 0.5) -> None:
        self.model_path = model_path
        self.max_faces = max_faces
        self.min_confidence = min_confidence
        self._landmarker = None

    def load(self) -> None:
        if not os.path.exists(self.model_path):
            raise SystemExit(f"FaceLandmarker model not found: {self.model_path}")

        opts = vision.FaceLandmarkerOptions(
            base_options=BaseOptions(model_asset_path=self.model_path),
            running_mode=vision.RunningMode.IMAGE,
            num_faces=self.max_faces,
            output_face_blendshapes=True,
            output_facial_transformation_matrixes=True,
            min_face_detection_confidence=self.min_confidence,
            min_face_presence_confidence=self.min_confidence,
        )
        self._landmarker = vision.FaceLandmarker.create_from_options(opts)
        logger.info(f"Loaded FaceLandmarker from {self.model_path} (max faces: {self.max_faces})")

    def process(self, frame_bgr: np.ndarray) -> TrackingResult:
        if self._landmarker is None:
            self.load()

        rgb = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)
        image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb)
        try:
            detection = self._landmarker.detect(image)
        except Exception as e:
            # a failed request reads as "no faces" for this frame
            logger.warning(f"Face tracking failed on frame ({e})")
            return TrackingResult()
        return convert_result(detection)

    def close(self) -> None:
        if self._landmarker is not None:
            self._landmarker.close()
            self._landmarker = None
