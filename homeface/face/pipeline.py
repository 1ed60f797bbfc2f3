"""Per-frame driver tying detection, recognition and enrollment together.

A single `Mode` flag decides what a frame is used for. Recognition never runs while
an enrollment is in progress.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence

import numpy as np

from homeface.errors import NoFaceError, StateError, ValidationError
from homeface.face.enrollment import EnrollmentSession
from homeface.face.gallery import Gallery
from homeface.face.preprocess import crop_face
from homeface.face.throttle import RecognitionThrottle
from homeface.face.types import AngleSample, Detection, Identity, MatchResult
from homeface.utils.log import get_logger

logger = get_logger(__name__)

DetectFn = Callable[[np.ndarray], Sequence[Detection]]
EmbedImageFn = Callable[[np.ndarray], np.ndarray]


class Mode(str, Enum):
    IDLE = "idle"
    RECOGNIZING = "recognizing"
    ENROLLING = "enrolling"


@dataclass
class FrameResult:
    mode: Mode
    detections: List[Detection] = field(default_factory=list)
    match: Optional[MatchResult] = None


class FramePipeline:
    def __init__(
        self,
        detect_fn: DetectFn,
        embed_fn: EmbedImageFn,
        gallery: Gallery,
        throttle: RecognitionThrottle,
        session: EnrollmentSession,
    ):
        self.detect_fn = detect_fn
        self.embed_fn = embed_fn
        self.gallery = gallery
        self.throttle = throttle
        self.session = session

        self.mode = Mode.IDLE
        self._resume_recognition = False
        self._last_frame: Optional[np.ndarray] = None
        self._last_detections: List[Detection] = []

    def _embed_detection(self, frame: np.ndarray, det: Detection) -> np.ndarray:
        return self.embed_fn(crop_face(frame, det.bbox))

    def process_frame(self, frame: np.ndarray) -> FrameResult:
        detections = list(self.detect_fn(frame))
        self._last_frame = frame
        self._last_detections = detections
        result = FrameResult(mode=self.mode, detections=detections)

        if self.mode == Mode.RECOGNIZING and detections:
            best = max(detections, key=lambda d: float(d.confidence))
            result.match = self.throttle.recognize(lambda: self._embed_detection(frame, best))
        return result

    def toggle_recognition(self) -> str:
        if self.mode == Mode.ENROLLING:
            raise StateError("Finish or cancel the current registration before starting recognition")
        if self.mode == Mode.RECOGNIZING:
            self.mode = Mode.IDLE
            return "Recognition stopped"
        if len(self.gallery) == 0:
            raise StateError("No family members registered yet. Register someone first")
        self.mode = Mode.RECOGNIZING
        return f"Recognition started ({len(self.gallery)} members)"

    def start_enrollment(self, name: str, overwrite: bool = False) -> str:
        clean = (name or "").strip()
        if clean and clean in self.gallery and not overwrite:
            raise ValidationError(f"{clean} is already registered. Confirm to overwrite the existing entry")
        self.session.begin(clean)
        self._resume_recognition = self.mode == Mode.RECOGNIZING
        self.mode = Mode.ENROLLING
        return self.session.prompt()

    def capture(self) -> Optional[AngleSample]:
        if self.mode != Mode.ENROLLING:
            raise StateError("Start a registration before capturing")
        if self._last_frame is None or not self._last_detections:
            raise NoFaceError("No face detected. Position your face in the frame and try again")
        frame = self._last_frame
        return self.session.capture_angle(self._last_detections, lambda det: self._embed_detection(frame, det))

    def commit(self) -> Identity:
        identity = self.session.commit()
        self._leave_enrollment()
        return identity

    def cancel_enrollment(self) -> None:
        self.session.cancel()
        self._leave_enrollment()

    def _leave_enrollment(self) -> None:
        self.mode = Mode.RECOGNIZING if self._resume_recognition else Mode.IDLE
        self._resume_recognition = False
