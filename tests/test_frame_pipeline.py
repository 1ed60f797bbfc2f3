from __future__ import annotations

import sys

from pathlib import Path

import numpy as np
import pytest

repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from homeface.errors import NoFaceError, StateError, ValidationError
from homeface.face.enrollment import EnrollmentSession
from homeface.face.gallery import Gallery, MemoryBackend
from homeface.face.matcher import CosineMatcher
from homeface.face.pipeline import FramePipeline, Mode
from homeface.face.preprocess import crop_face
from homeface.face.throttle import RecognitionThrottle
from homeface.face.types import BoundingBox, Detection

FACE = Detection(bbox=BoundingBox(0.5, 0.5, 0.25, 0.5), confidence=0.92)


class _DummyDetector:
    def __init__(self):
        self.faces = [FACE]

    def __call__(self, frame):
        return list(self.faces)


class _DummyEmbedder:
    """Returns whatever vector the test put in `current`; records input shapes."""

    def __init__(self, dim: int = 32):
        self.current = np.random.default_rng(0).normal(size=dim).astype(np.float32)
        self.calls = 0
        self.shapes = []

    def __call__(self, face_img):
        self.calls += 1
        self.shapes.append(face_img.shape)
        return self.current


class _FakeClock:
    def __init__(self):
        self.t = 0.0

    def __call__(self):
        return self.t


def _frame():
    return np.full((240, 320, 3), 128, dtype=np.uint8)


def _pipeline():
    gallery = Gallery(MemoryBackend()).load()
    clock = _FakeClock()
    detector, embedder = _DummyDetector(), _DummyEmbedder()
    throttle = RecognitionThrottle(CosineMatcher(), gallery, clock=clock)
    session = EnrollmentSession(gallery)
    return FramePipeline(detector, embedder, gallery, throttle, session), detector, embedder, clock


def _enroll(pipeline: FramePipeline, name: str, overwrite: bool = False):
    pipeline.start_enrollment(name, overwrite=overwrite)
    for _ in range(5):
        pipeline.process_frame(_frame())
        pipeline.capture()
    return pipeline.commit()


def test_crop_face_produces_normalized_model_input():
    frame = np.zeros((240, 320, 3), dtype=np.uint8)
    frame[:, :, 2] = 255  # red in BGR
    out = crop_face(frame, FACE.bbox)
    assert out.shape == (160, 160, 3)
    assert out.dtype == np.float32
    assert out.min() >= 0.0 and out.max() <= 1.0
    assert np.allclose(out[..., 0], 1.0)  # red lands in channel 0 after BGR->RGB
    assert np.allclose(out[..., 2], 0.0)


def test_crop_face_clamps_boxes_outside_the_frame():
    out = crop_face(_frame(), BoundingBox(1.0, 1.0, 0.5, 0.5))
    assert out.shape == (160, 160, 3)
    tiny = crop_face(_frame(), BoundingBox(0.0, 0.0, 0.0, 0.0))
    assert tiny.shape == (160, 160, 3)


def test_enroll_then_recognize():
    pipeline, _, embedder, _ = _pipeline()
    identity = _enroll(pipeline, "Alice")
    assert len(identity.samples) == 5
    assert embedder.shapes[0] == (160, 160, 3)
    assert pipeline.mode == Mode.IDLE

    assert "started" in pipeline.toggle_recognition()
    result = pipeline.process_frame(_frame())
    assert result.mode == Mode.RECOGNIZING
    assert result.match is not None
    assert result.match.name == "Alice"
    assert pipeline.gallery.get("Alice").recognition_count == 1


def test_recognition_is_suppressed_while_enrolling():
    pipeline, _, embedder, _ = _pipeline()
    _enroll(pipeline, "Alice")
    pipeline.toggle_recognition()

    pipeline.start_enrollment("Bob")
    assert pipeline.mode == Mode.ENROLLING
    calls = embedder.calls
    result = pipeline.process_frame(_frame())
    assert result.match is None
    assert embedder.calls == calls
    with pytest.raises(StateError):
        pipeline.toggle_recognition()

    pipeline.cancel_enrollment()
    assert pipeline.mode == Mode.RECOGNIZING
    assert "Bob" not in pipeline.gallery


def test_existing_name_needs_explicit_overwrite():
    pipeline, _, embedder, _ = _pipeline()
    _enroll(pipeline, "Alice")
    with pytest.raises(ValidationError):
        pipeline.start_enrollment("Alice")
    assert pipeline.mode == Mode.IDLE

    embedder.current = np.ones(32, dtype=np.float32)
    replaced = _enroll(pipeline, "Alice", overwrite=True)
    assert pipeline.gallery.get("Alice") is replaced
    assert len(pipeline.gallery) == 1


def test_capture_without_detection_raises_no_face():
    pipeline, detector, _, _ = _pipeline()
    pipeline.start_enrollment("Alice")
    with pytest.raises(NoFaceError):
        pipeline.capture()
    detector.faces = []
    pipeline.process_frame(_frame())
    with pytest.raises(NoFaceError):
        pipeline.capture()


def test_toggle_requires_members_and_capture_requires_enrollment():
    pipeline, _, _, _ = _pipeline()
    with pytest.raises(StateError):
        pipeline.toggle_recognition()
    with pytest.raises(StateError):
        pipeline.capture()


def test_no_recognition_without_faces():
    pipeline, detector, embedder, _ = _pipeline()
    _enroll(pipeline, "Alice")
    pipeline.toggle_recognition()
    detector.faces = []
    calls = embedder.calls
    result = pipeline.process_frame(_frame())
    assert result.detections == []
    assert result.match is None
    assert embedder.calls == calls
    assert "stopped" in pipeline.toggle_recognition()


def test_overlay_draws_on_a_copy_without_touching_capture_frame():
    from homeface.utils.draw import draw_frame_overlay

    pipeline, _, _, _ = _pipeline()
    _enroll(pipeline, "Alice")
    pipeline.toggle_recognition()
    frame = _frame()
    result = pipeline.process_frame(frame)

    shown = draw_frame_overlay(frame.copy(), result, "欢迎回家, Alice!")
    assert shown.shape == frame.shape
    assert not np.array_equal(shown, frame)
    assert np.all(frame == 128)
