from __future__ import annotations

import cv2
import numpy as np

from homeface.config import EMBED_INPUT_SIZE
from homeface.face.types import BoundingBox


def crop_face(frame_bgr: np.ndarray, bbox: BoundingBox, size: int = EMBED_INPUT_SIZE) -> np.ndarray:
    """Crop a relative bbox out of a BGR frame and prepare it for the embedder.

    Returns a (size, size, 3) float32 RGB image with values in [0, 1].
    """
    if frame_bgr is None or frame_bgr.ndim != 3:
        raise ValueError("Expected an HxWx3 frame")
    h, w = frame_bgr.shape[:2]
    x1, y1, x2, y2 = bbox.to_pixels(w, h)
    crop = frame_bgr[y1:y2, x1:x2]
    resized = cv2.resize(crop, (size, size), interpolation=cv2.INTER_NEAREST)
    rgb = cv2.cvtColor(resized, cv2.COLOR_BGR2RGB)
    return rgb.astype(np.float32) / 255.0


def to_uint8_bgr(face_rgb01: np.ndarray) -> np.ndarray:
    """Inverse of the normalization in `crop_face` (for models that want uint8 BGR)."""
    arr = np.clip(np.asarray(face_rgb01, dtype=np.float32) * 255.0, 0, 255).astype(np.uint8)
    return cv2.cvtColor(arr, cv2.COLOR_RGB2BGR)
