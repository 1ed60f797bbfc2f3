from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

import numpy as np


class AngleLabel(str, Enum):
    STRAIGHT = "Straight"
    UP = "Up"
    DOWN = "Down"
    RIGHT = "Right"
    LEFT = "Left"


class Camera(str, Enum):
    FRONT = "front"
    BACK = "back"


@dataclass(frozen=True)
class BoundingBox:
    """Center-based box in relative [0, 1] frame coordinates."""

    center_x: float
    center_y: float
    width: float
    height: float

    def to_pixels(self, frame_w: int, frame_h: int) -> Tuple[int, int, int, int]:
        """Return a clamped (x1, y1, x2, y2) pixel box that is at least 1px wide/tall."""
        x1 = int(round((self.center_x - self.width / 2.0) * frame_w))
        y1 = int(round((self.center_y - self.height / 2.0) * frame_h))
        x2 = int(round((self.center_x + self.width / 2.0) * frame_w))
        y2 = int(round((self.center_y + self.height / 2.0) * frame_h))
        x1 = max(0, min(frame_w - 1, x1))
        y1 = max(0, min(frame_h - 1, y1))
        x2 = max(x1 + 1, min(frame_w, x2))
        y2 = max(y1 + 1, min(frame_h, y2))
        return x1, y1, x2, y2


@dataclass(frozen=True)
class Detection:
    bbox: BoundingBox
    confidence: float


@dataclass(frozen=True)
class AngleSample:
    angle: AngleLabel
    embedding: np.ndarray  # read-only float32, see utils.math.as_embedding
    camera: Camera
    captured_at: float  # epoch seconds


@dataclass
class Identity:
    name: str
    samples: List[AngleSample]
    registered_at: float
    last_seen_at: Optional[float] = None
    recognition_count: int = 0
    # Device/camera context at registration time; free-form.
    registered_with: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class MatchResult:
    name: str
    matched_angle: AngleLabel
    score: float
