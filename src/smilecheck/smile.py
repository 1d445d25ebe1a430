from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

from .metrics import FaceValidityResult


class SmileCategory(IntEnum):
    ANGRY = 0
    NO_SMILE = 1
    SIMPLE_SMILE = 2
    SMILING = 3

    @property
    def label(self) -> str:
        return _LABELS[self]


_LABELS = {
    SmileCategory.ANGRY: "Angry",
    SmileCategory.NO_SMILE: "Not Smiling",
    SmileCategory.SIMPLE_SMILE: "Simple Smile",
    SmileCategory.SMILING: "Smiling",
}


@dataclass(frozen=True)
class SmileCoefficients:
    '''mouthSmileLeft / mouthSmileRight blend-shape scores. Not clamped.'''
    left: float = 0.0
    right: float = 0.0

    @property
    def value(self) -> float:
        return (self.left + self.right) / 2.0


def classify_smile(left: float, right: float) -> SmileCategory:
    value = (left + right) / 2.0

    if value > 0.5:
        return SmileCategory.SMILING
    if value > 0.2:
        return SmileCategory.SIMPLE_SMILE
    if value > 0.0:
        return SmileCategory.NO_SMILE
    return SmileCategory.ANGRY


def can_pass(result: FaceValidityResult, smile: SmileCategory) -> bool:
    return result.any_detected and result.count == 1 and smile is SmileCategory.SMILING
