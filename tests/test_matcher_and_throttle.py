from __future__ import annotations

import sys

from pathlib import Path

import numpy as np
import pytest

repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from homeface.face.gallery import Gallery, MemoryBackend
from homeface.face.matcher import CosineMatcher, MatcherConfig
from homeface.face.throttle import RecognitionThrottle, ThrottleConfig
from homeface.face.types import AngleLabel, AngleSample, Camera, Identity
from homeface.utils.math import as_embedding

ANGLES = [AngleLabel.STRAIGHT, AngleLabel.UP, AngleLabel.DOWN, AngleLabel.RIGHT, AngleLabel.LEFT]
DIM = 128


class _FakeClock:
    def __init__(self, t: float = 100.0):
        self.t = t

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds


def _identity(name: str, vectors) -> Identity:
    samples = [
        AngleSample(angle=ANGLES[i], embedding=as_embedding(v), camera=Camera.FRONT, captured_at=0.0)
        for i, v in enumerate(vectors)
    ]
    return Identity(name=name, samples=samples, registered_at=0.0)


def _random_vectors(seed: int, n: int = 5):
    rng = np.random.default_rng(seed)
    return [rng.normal(size=DIM).astype(np.float32) for _ in range(n)]


def _gallery(*identities: Identity) -> Gallery:
    gallery = Gallery(MemoryBackend()).load()
    for identity in identities:
        gallery.upsert(identity)
    return gallery


def test_empty_gallery_never_matches():
    matcher = CosineMatcher()
    query = np.linspace(0.1, 1.0, DIM, dtype=np.float32)
    assert matcher.match(query, []) is None


def test_exact_stored_embedding_matches_its_identity():
    alice_vecs = _random_vectors(1)
    gallery = _gallery(_identity("Alice", alice_vecs), _identity("Bob", _random_vectors(2)))
    result = CosineMatcher().match(alice_vecs[0], gallery.list())
    assert result is not None
    assert result.name == "Alice"
    assert result.matched_angle == AngleLabel.STRAIGHT
    assert result.score == pytest.approx(1.0, abs=1e-5)

    left = CosineMatcher().match(alice_vecs[4], gallery.list())
    assert left.matched_angle == AngleLabel.LEFT


@pytest.mark.parametrize("seed", range(5))
def test_every_stored_sample_is_recognized_above_threshold(seed: int):
    vecs = _random_vectors(100 + seed)
    gallery = _gallery(_identity("Alice", vecs), _identity("Bob", _random_vectors(200 + seed)))
    matcher = CosineMatcher()
    for i, vec in enumerate(vecs):
        result = matcher.match(vec, gallery.list())
        assert result.name == "Alice"
        assert result.matched_angle == ANGLES[i]
        assert result.score >= matcher.config.threshold


def test_score_equal_to_threshold_is_rejected():
    # 24 / 25, exact in binary arithmetic
    stored = [np.array([3.0, 4.0], dtype=np.float32)] * 5
    query = np.array([4.0, 3.0], dtype=np.float32)
    identity = _identity("Alice", stored)
    assert CosineMatcher(MatcherConfig(threshold=0.96)).match(query, [identity]) is None
    assert CosineMatcher(MatcherConfig(threshold=0.95)).match(query, [identity]).name == "Alice"


def test_ties_keep_first_identity_and_first_sample():
    vec = np.array([1.0, 2.0, 3.0], dtype=np.float32)
    first = _identity("First", [vec] * 5)
    second = _identity("Second", [vec] * 5)
    result = CosineMatcher().match(vec, [first, second])
    assert result.name == "First"
    assert result.matched_angle == AngleLabel.STRAIGHT


def test_best_sample_across_identities_wins():
    base = np.array([1.0, 0.0, 0.0], dtype=np.float32)
    close = np.array([1.0, 0.1, 0.0], dtype=np.float32)
    far = np.array([1.0, 0.5, 0.0], dtype=np.float32)
    a = _identity("A", [far] * 5)
    b = _identity("B", [far, far, close, far, far])
    result = CosineMatcher().match(base, [a, b])
    assert result.name == "B"
    assert result.matched_angle == AngleLabel.DOWN


def test_zero_query_never_matches():
    gallery = _gallery(_identity("Alice", _random_vectors(1)))
    assert CosineMatcher(MatcherConfig(threshold=0.0)).match(np.zeros(DIM), gallery.list()) is None


def test_mismatched_dimension_samples_are_skipped():
    vecs = _random_vectors(3)
    odd = _identity("Odd", [np.ones(4, dtype=np.float32)] * 5)
    result = CosineMatcher().match(vecs[1], [odd, _identity("Alice", vecs)])
    assert result.name == "Alice"


def test_throttle_skips_embedding_inside_cooldown():
    vecs = _random_vectors(7)
    gallery = _gallery(_identity("Alice", vecs))
    clock = _FakeClock()
    throttle = RecognitionThrottle(
        CosineMatcher(), gallery, ThrottleConfig(cooldown_ms=2000), clock=clock, wall_clock=lambda: 1_700_000_000.0
    )
    calls = {"n": 0}

    def _embed():
        calls["n"] += 1
        return vecs[0]

    assert throttle.recognize(_embed).name == "Alice"
    assert calls["n"] == 1

    clock.advance(1.5)
    assert throttle.recognize(_embed) is None
    assert calls["n"] == 1
    assert throttle.skipped == 1

    clock.advance(0.5)
    assert throttle.recognize(_embed).name == "Alice"
    assert calls["n"] == 2


def test_cooldown_is_global_across_identities():
    alice, bob = _random_vectors(1), _random_vectors(2)
    gallery = _gallery(_identity("Alice", alice), _identity("Bob", bob))
    clock = _FakeClock()
    throttle = RecognitionThrottle(CosineMatcher(), gallery, clock=clock)

    assert throttle.recognize(lambda: alice[0]).name == "Alice"
    clock.advance(1.0)
    assert throttle.recognize(lambda: bob[0]) is None


def test_rejected_attempt_does_not_start_cooldown():
    alice = _random_vectors(1)
    stranger = _random_vectors(99)
    gallery = _gallery(_identity("Alice", alice))
    clock = _FakeClock()
    throttle = RecognitionThrottle(CosineMatcher(), gallery, clock=clock)

    assert throttle.recognize(lambda: stranger[0]) is None
    assert throttle.recognize(lambda: alice[0]).name == "Alice"


def test_accepted_match_records_one_sighting():
    alice = _random_vectors(1)
    gallery = _gallery(_identity("Alice", alice))
    clock = _FakeClock()
    throttle = RecognitionThrottle(CosineMatcher(), gallery, clock=clock, wall_clock=lambda: 1_700_000_123.0)

    throttle.recognize(lambda: alice[2])
    throttle.recognize(lambda: alice[2])  # inside cooldown
    identity = gallery.get("Alice")
    assert identity.recognition_count == 1
    assert identity.last_seen_at == 1_700_000_123.0
