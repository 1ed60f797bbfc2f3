"""Multi-angle enrollment.

One session at a time walks the required head poses in order::

    IDLE -> AWAITING_ANGLE(0) -> ... -> AWAITING_ANGLE(n-1) -> COMPLETE -> (commit) -> IDLE

`cancel()` returns to IDLE from any non-idle state and drops everything captured so
far. Nothing reaches the gallery before `commit()`.
"""

from __future__ import annotations

import time

from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np

from homeface.config import REQUIRED_ANGLES
from homeface.errors import NoFaceError, StateError, ValidationError
from homeface.face.gallery import Gallery
from homeface.face.types import AngleLabel, AngleSample, Camera, Detection, Identity
from homeface.utils.log import get_logger
from homeface.utils.math import as_embedding

logger = get_logger(__name__)

EmbedFn = Callable[[Detection], np.ndarray]


class EnrollmentState(str, Enum):
    IDLE = "idle"
    AWAITING_ANGLE = "awaiting_angle"
    COMPLETE = "complete"


class EnrollmentSession:
    def __init__(
        self,
        gallery: Gallery,
        angles: Optional[Sequence[str]] = None,
        clock: Callable[[], float] = time.time,
        device_info: Optional[Dict[str, str]] = None,
    ):
        self.gallery = gallery
        self.angles: List[AngleLabel] = [AngleLabel(a) for a in (angles or REQUIRED_ANGLES)]
        self.clock = clock
        self.device_info = dict(device_info or {})
        self.camera = Camera.FRONT

        self.state = EnrollmentState.IDLE
        self.target_name: Optional[str] = None
        self.captured: List[AngleSample] = []
        self.current_angle_index = 0
        # Bumped on begin/cancel so a capture that outlives its session can be detected.
        self._generation = 0

    @property
    def required_angle_count(self) -> int:
        return len(self.angles)

    @property
    def current_angle(self) -> Optional[AngleLabel]:
        if self.state != EnrollmentState.AWAITING_ANGLE:
            return None
        return self.angles[self.current_angle_index]

    @property
    def active(self) -> bool:
        return self.state != EnrollmentState.IDLE

    def set_camera(self, camera) -> None:
        self.camera = Camera(camera)

    def prompt(self) -> str:
        """Human-readable guidance for the current step."""
        if self.state == EnrollmentState.IDLE:
            return "Enrollment not started"
        if self.state == EnrollmentState.COMPLETE:
            return f"All {self.required_angle_count} angles captured for {self.target_name}, ready to save"
        angle = self.current_angle
        step = self.current_angle_index + 1
        if angle == AngleLabel.STRAIGHT:
            hint = "look straight at the camera"
        else:
            hint = f"turn your head {angle.value.lower()}"
        return f"Step {step}/{self.required_angle_count}: {hint}"

    def begin(self, name: str) -> None:
        """Start enrolling `name`.

        Overwriting an existing identity is allowed; confirming that with the user is
        the caller's job (commit replaces silently).
        """
        if self.state != EnrollmentState.IDLE:
            raise StateError(f"Enrollment for {self.target_name} is already in progress")
        clean = (name or "").strip()
        if not clean:
            raise ValidationError("Please enter a name before registering")
        self._generation += 1
        self.target_name = clean
        self.captured = []
        self.current_angle_index = 0
        self.state = EnrollmentState.AWAITING_ANGLE
        logger.info(f"Enrollment started for {clean}")

    def capture_angle(
        self, detections: Sequence[Detection], embed_fn: EmbedFn, camera=None
    ) -> Optional[AngleSample]:
        """Embed the best detected face as the sample for the current angle.

        Returns None when the session was cancelled or restarted while the embedding
        was being computed; the late result is discarded.
        """
        if self.state != EnrollmentState.AWAITING_ANGLE:
            raise StateError(f"Cannot capture in state {self.state.value}")
        if not detections:
            raise NoFaceError("No face detected. Position your face in the frame and try again")

        best = max(detections, key=lambda d: float(d.confidence))
        generation = self._generation
        angle = self.angles[self.current_angle_index]

        embedding = as_embedding(embed_fn(best))

        if generation != self._generation or self.state != EnrollmentState.AWAITING_ANGLE:
            logger.info(f"Discarding {angle.value} embedding from a cancelled enrollment")
            return None
        if embedding.size == 0:
            raise ValidationError("Embedder returned an empty vector")

        sample = AngleSample(
            angle=angle,
            embedding=embedding,
            camera=Camera(camera) if camera is not None else self.camera,
            captured_at=self.clock(),
        )
        self.captured.append(sample)
        self.current_angle_index += 1
        logger.info(f"Captured {angle.value} for {self.target_name} ({len(self.captured)}/{self.required_angle_count})")
        if self.current_angle_index == self.required_angle_count:
            self.state = EnrollmentState.COMPLETE
        return sample

    def cancel(self) -> None:
        if self.state == EnrollmentState.IDLE:
            raise StateError("No enrollment in progress")
        logger.info(f"Enrollment for {self.target_name} cancelled ({len(self.captured)} samples dropped)")
        self._generation += 1
        self._reset()

    def commit(self) -> Identity:
        if self.state != EnrollmentState.COMPLETE:
            raise StateError(
                f"Cannot save {self.target_name or 'enrollment'}: "
                f"{len(self.captured)}/{self.required_angle_count} angles captured"
            )
        registered_with = {"camera": self.captured[0].camera.value}
        registered_with.update(self.device_info)
        identity = Identity(
            name=self.target_name,
            samples=list(self.captured),
            registered_at=self.clock(),
            last_seen_at=None,
            recognition_count=0,
            registered_with=registered_with,
        )
        self.gallery.upsert(identity)
        self._reset()
        return identity

    def _reset(self) -> None:
        self.state = EnrollmentState.IDLE
        self.target_name = None
        self.captured = []
        self.current_angle_index = 0
