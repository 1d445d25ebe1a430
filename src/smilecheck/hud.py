from __future__ import annotations

from typing import Optional, Tuple

import cv2
import numpy as np

from .metrics import ViewportBounds, to_viewport_rect
from .session import FrameState
from .smile import SmileCategory


PASS_COLOR = (70, 170, 90)
FAIL_COLOR = (40, 40, 220)
ORANGE = (0, 150, 255)
CARD_BG = (245, 245, 245)


# ---------- small UI helpers ----------

def _rounded_rect(img, x: int, y: int, w: int, h: int, r: int, color) -> None:
    """Filled rounded rectangle: center + side rects + 4 circles."""
    r = max(0, min(r, min(w, h) // 2))
    cv2.rectangle(img, (x + r, y), (x + w - r, y + h), color, -1)
    cv2.rectangle(img, (x, y + r), (x + w, y + h - r), color, -1)
    for cx, cy in ((x + r, y + r), (x + w - r, y + r), (x + r, y + h - r), (x + w - r, y + h - r)):
        cv2.circle(img, (cx, cy), r, color, -1)


def _text(img, s: str, x: int, y: int, scale: float, color, thickness: int = 1, shadow: bool = True) -> None:
    font = cv2.FONT_HERSHEY_SIMPLEX
    if shadow:
        cv2.putText(img, s, (x + 1, y + 1), font, scale, (0, 0, 0), thickness + 2, cv2.LINE_AA)
    cv2.putText(img, s, (x, y), font, scale, color, thickness, cv2.LINE_AA)


def _pill(img, x: int, y: int, text: str, bg, fg, scale: float = 0.7, pad_x: int = 16, pad_y: int = 12) -> Tuple[int, int]:
    """Rounded label centered on x. Returns (w, h)."""
    font = cv2.FONT_HERSHEY_SIMPLEX
    (tw, th), _ = cv2.getTextSize(text, font, scale, 2)
    w = tw + 2 * pad_x
    h = th + 2 * pad_y
    left = x - w // 2
    _rounded_rect(img, left, y, w, h, h // 2, bg)
    _text(img, text, left + pad_x, y + pad_y + th, scale, fg, 2, shadow=False)
    return w, h


def oval_geometry(frame) -> Tuple[Tuple[int, int], Tuple[int, int]]:
    """Center and half-axes of the viewing oval."""
    H, W = frame.shape[:2]
    center = (W // 2, H // 2)
    axes = (max(1, int(W * 0.32)), max(1, int(H * 0.45)))
    return center, axes


def _dim_outside_oval(img, alpha: float = 0.6) -> None:
    center, axes = oval_geometry(img)
    mask = np.zeros(img.shape[:2], dtype=np.uint8)
    cv2.ellipse(mask, center, axes, 0, 0, 360, 255, -1)
    dimmed = (img.astype(np.float32) * (1.0 - alpha)).astype(np.uint8)
    img[mask == 0] = dimmed[mask == 0]


# ---------- main HUD ----------

def outline_color(state: Optional[FrameState]):
    return PASS_COLOR if state is not None and state.can_pass else FAIL_COLOR


def draw_hud(frame, state: Optional[FrameState], fps: float = 0.0, paused: bool = False) -> None:
    H, W = frame.shape[:2]

    _dim_outside_oval(frame)
    center, axes = oval_geometry(frame)
    cv2.ellipse(frame, center, axes, 0, 0, 360, outline_color(state), 3, cv2.LINE_AA)

    faces = state.validity.count if state is not None else 0
    smile = state.smile if state is not None else SmileCategory.ANGRY

    _, ph = _pill(frame, W // 2, 16, f"Number of Faces {faces}", bg=CARD_BG, fg=ORANGE)
    smile_fg = PASS_COLOR if smile is SmileCategory.SMILING else FAIL_COLOR
    _pill(frame, W // 2, 16 + ph + 10, smile.label, bg=CARD_BG, fg=smile_fg)

    if fps > 0:
        _text(frame, f"{fps:0.0f} FPS", W - 110, H - 20, 0.55, (210, 210, 210), 1, shadow=True)

    if paused:
        _pill(frame, W // 2, H // 2 - 20, "Paused - press p to resume", bg=(60, 60, 60), fg=(255, 255, 255))


def draw_face_boxes(frame, state: FrameState) -> None:
    """Debug overlay: every tracked face box in pixel space, before validity checks."""
    H, W = frame.shape[:2]
    viewport = ViewportBounds(width=float(W), height=float(H))
    for obs in state.observations:
        x, y, w, h = (int(round(v)) for v in to_viewport_rect(obs.bbox, viewport))
        cv2.rectangle(frame, (x, y), (x + w, y + h), (255, 255, 255), 1, cv2.LINE_AA)
        if obs.yaw is not None:
            _text(frame, f"yaw {obs.yaw:+.2f}", x, max(12, y - 6), 0.45, (255, 255, 255), 1)
