from __future__ import annotations

import json
import sys

from pathlib import Path

import numpy as np
import pytest

repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from homeface.errors import StorageError, ValidationError
from homeface.face.gallery import Gallery, JsonFileBackend, MemoryBackend
from homeface.face.types import AngleLabel, AngleSample, Camera, Identity
from homeface.utils.math import as_embedding

ANGLES = [AngleLabel.STRAIGHT, AngleLabel.UP, AngleLabel.DOWN, AngleLabel.RIGHT, AngleLabel.LEFT]


def _identity(name: str, seed: int, n: int = 5, dim: int = 16) -> Identity:
    rng = np.random.default_rng(seed)
    samples = [
        AngleSample(
            angle=ANGLES[i % len(ANGLES)],
            embedding=as_embedding(rng.normal(size=dim)),
            camera=Camera.FRONT,
            captured_at=1_700_000_000.0 + i,
        )
        for i in range(n)
    ]
    return Identity(name=name, samples=samples, registered_at=1_700_000_100.0, registered_with={"camera": "front"})


class _FailingBackend(MemoryBackend):
    def save(self, document):
        raise StorageError("disk full")


def test_upsert_persists_and_reloads_from_json_file(tmp_path: Path):
    backend = JsonFileBackend(tmp_path)
    gallery = Gallery(backend).load()
    alice = _identity("Alice", seed=1)
    assert gallery.upsert(alice) is True

    assert backend.path.exists()
    assert backend.backup_path.exists()

    reloaded = Gallery(JsonFileBackend(tmp_path)).load()
    got = reloaded.get("Alice")
    assert got is not None
    assert [s.angle for s in got.samples] == ANGLES
    assert np.allclose(got.samples[0].embedding, alice.samples[0].embedding)
    assert got.recognition_count == 0
    assert got.last_seen_at is None
    assert got.registered_at == pytest.approx(alice.registered_at, abs=1e-3)


def test_persisted_document_shape(tmp_path: Path):
    backend = JsonFileBackend(tmp_path)
    Gallery(backend).load().upsert(_identity("Bob", seed=2))
    doc = json.loads(backend.path.read_text(encoding="utf-8"))
    entry = doc["Bob"]
    assert set(entry) == {"embeddings", "registeredAt", "lastSeen", "recognitionCount", "registeredWith"}
    assert entry["embeddings"][0]["angle"] == "Straight"
    assert entry["embeddings"][0]["camera"] == "front"
    assert isinstance(entry["embeddings"][0]["embedding"], list)
    assert entry["lastSeen"] is None


def test_load_is_fail_soft_on_corrupt_file(tmp_path: Path, caplog):
    backend = JsonFileBackend(tmp_path)
    tmp_path.mkdir(exist_ok=True)
    backend.path.write_text("{not json", encoding="utf-8")
    gallery = Gallery(backend).load()
    assert len(gallery) == 0
    assert gallery.degraded
    assert "starting empty" in caplog.text


def test_load_skips_unreadable_and_incomplete_entries():
    good = Gallery(MemoryBackend()).load()
    good.upsert(_identity("Alice", seed=1))
    doc = good.to_document()
    doc["Broken"] = {"embeddings": "nope"}
    doc["Partial"] = dict(doc["Alice"], embeddings=doc["Alice"]["embeddings"][:2])

    gallery = Gallery(MemoryBackend(doc)).load()
    assert [i.name for i in gallery.list()] == ["Alice"]


def test_primary_write_failure_still_reports_success():
    backend = _FailingBackend()
    gallery = Gallery(backend).load()
    assert gallery.upsert(_identity("Alice", seed=1)) is True
    assert "Alice" in gallery
    assert gallery.degraded
    assert backend.raw is None


def test_upsert_rejects_wrong_sample_count_and_blank_name():
    gallery = Gallery(MemoryBackend()).load()
    with pytest.raises(ValidationError):
        gallery.upsert(_identity("Short", seed=3, n=3))
    with pytest.raises(ValidationError):
        gallery.upsert(_identity("   ", seed=3))
    assert len(gallery) == 0


def test_list_keeps_insertion_order_and_replace_keeps_position():
    gallery = Gallery(MemoryBackend()).load()
    for i, name in enumerate(["Zoe", "Adam", "Mia"]):
        gallery.upsert(_identity(name, seed=i))
    gallery.upsert(_identity("Zoe", seed=42))
    assert [i.name for i in gallery.list()] == ["Zoe", "Adam", "Mia"]
    assert len(gallery) == 3


def test_record_sighting_updates_and_persists():
    backend = MemoryBackend()
    gallery = Gallery(backend).load()
    gallery.upsert(_identity("Alice", seed=1))
    saves = backend.save_calls

    gallery.record_sighting("Alice", 1_800_000_000.0)
    gallery.record_sighting("Alice", 1_800_000_005.0)
    alice = gallery.get("Alice")
    assert alice.recognition_count == 2
    assert alice.last_seen_at == 1_800_000_005.0
    assert backend.save_calls == saves + 2

    stored = json.loads(backend.raw)["Alice"]
    assert stored["recognitionCount"] == 2
    assert stored["lastSeen"].startswith("2027-01-15")


def test_record_sighting_for_unknown_name_is_noop():
    backend = MemoryBackend()
    gallery = Gallery(backend).load()
    gallery.record_sighting("Nobody", 1.0)
    assert backend.save_calls == 0


def test_remove_and_export(tmp_path: Path):
    gallery = Gallery(MemoryBackend(), clock=lambda: 1_700_000_500.0).load()
    gallery.upsert(_identity("Alice", seed=1))
    gallery.upsert(_identity("Bob", seed=2))
    assert gallery.remove("Bob") is True
    assert gallery.remove("Bob") is False

    fp = gallery.write_export(tmp_path / "export" / "family.json", device_info={"platform": "test"})
    doc = json.loads(fp.read_text(encoding="utf-8"))
    assert doc["totalMembers"] == 1
    assert list(doc["members"]) == ["Alice"]
    assert doc["device"]["platform"] == "test"
    assert doc["exportedAt"].endswith("Z")
    assert "appVersion" in doc


def test_non_mapping_document_starts_empty_and_degraded():
    gallery = Gallery(MemoryBackend([1, 2, 3])).load()
    assert len(gallery) == 0
    assert gallery.degraded
